import pytest
from eth_abi import encode as abi_encode
from eth_utils import keccak

from shielded_indexer.app.application.services.extract_facts import (
    COMMITMENT_CIPHERTEXT,
    HASH_SOURCE_EVENT,
    HASH_SOURCE_PREIMAGE_KECCAK,
    LEGACY_COMMITMENT_CIPHERTEXT,
    LEGACY_ENCRYPTED_COMMITMENT,
    LEGACY_ENCRYPTED_RANDOM,
    LEGACY_GENERATED_COMMITMENT,
    SHIELD_CIPHERTEXT,
    SHIELD_COMMITMENT,
    SNARK_SCALAR_FIELD,
    TRANSACT_COMMITMENT,
    FactExtractor,
    railgun_token_id,
)
from shielded_indexer.app.domain.errors import DecodeError
from shielded_indexer.app.domain.models import (
    AppendToTransaction,
    DecodedEvent,
    NewCommitment,
    NewCommitmentCiphertext,
    NewCommitmentPreimage,
    NewNullifier,
    NewToken,
    NewUnshield,
    NewVerificationHash,
    positional_id,
)
from shielded_indexer.app.infrastructure.abi.signature_parser import parse_event_signature
from shielded_indexer.app.infrastructure.decoders.log_decoder import AbiLogDecoder

from tests.conftest import SHIELD_V2_1_TOPIC, TOKEN_ADDRESS


@pytest.fixture
def extractor():
    return FactExtractor()


@pytest.fixture
def decode(registry, log_factory):
    decoder = AbiLogDecoder()

    def _decode(canonical_or_topic, fields, **log_kwargs):
        if canonical_or_topic.startswith("0x"):
            signature = registry.lookup(canonical_or_topic)
        else:
            signature = registry.lookup(keccak(text=canonical_or_topic))
        log = log_factory(signature, fields, **log_kwargs)
        return decoder.decode(log, signature), log

    return _decode


def test_shield_emits_commitments_and_one_append(extractor, decode, shield_fields):
    event, log = decode(SHIELD_V2_1_TOPIC, shield_fields, log_index=4)

    facts = extractor.extract(event, log)

    commitments = [f for f in facts if isinstance(f, NewCommitment)]
    appends = [f for f in facts if isinstance(f, AppendToTransaction)]
    assert len(commitments) == 2
    assert len(appends) == 1

    expected = [
        keccak(abi_encode(["(bytes32,(uint8,address,uint256),uint120)"], [(b"\x11" * 32, (0, TOKEN_ADDRESS, 0), 1_000)])),
        keccak(abi_encode(["(bytes32,(uint8,address,uint256),uint120)"], [(b"\x12" * 32, (0, TOKEN_ADDRESS, 0), 2_500)])),
    ]
    assert [c.commitment for c in commitments] == expected
    assert [c.tree_position for c in commitments] == [41, 42]
    assert [c.id for c in commitments] == [
        positional_id(log.transaction_hash, 4, 0),
        positional_id(log.transaction_hash, 4, 1),
    ]
    assert all(c.commitment_type == SHIELD_COMMITMENT for c in commitments)
    assert all(c.hash_source == HASH_SOURCE_PREIMAGE_KECCAK for c in commitments)

    assert appends[0].commitments == tuple(expected)
    assert appends[0].nullifiers is None
    assert appends[0].id == log.transaction_hash_hex
    assert appends[0].log_index == 4


def test_shield_emits_token_preimages_and_ciphertexts(extractor, decode, shield_fields):
    event, log = decode(SHIELD_V2_1_TOPIC, shield_fields, log_index=4)

    facts = extractor.extract(event, log)

    tokens = [f for f in facts if isinstance(f, NewToken)]
    assert tokens == [
        NewToken(
            id="0x" + "00" * 12 + "22" * 20,
            token_type=0,
            token_address=b"\x22" * 20,
            token_sub_id=0,
        )
    ]

    preimages = [f for f in facts if isinstance(f, NewCommitmentPreimage)]
    assert [(p.id, p.npk, p.value) for p in preimages] == [
        (positional_id(log.transaction_hash, 4, 0), b"\x11" * 32, 1_000),
        (positional_id(log.transaction_hash, 4, 1), b"\x12" * 32, 2_500),
    ]
    assert {p.token_id for p in preimages} == {tokens[0].id}

    ciphertexts = [f for f in facts if isinstance(f, NewCommitmentCiphertext)]
    assert [c.id for c in ciphertexts] == [p.id for p in preimages]
    assert ciphertexts[0].ciphertext_type == SHIELD_CIPHERTEXT
    assert ciphertexts[0].ciphertext == (b"\x01" * 32, b"\x02" * 32, b"\x03" * 32)
    assert ciphertexts[0].keys == (b"\x04" * 32,)
    assert [c.fee for c in ciphertexts] == [3, 7]


def test_shield_ciphertext_count_must_match_commitments(extractor, decode, shield_fields):
    fields = dict(shield_fields, shieldCiphertext=shield_fields["shieldCiphertext"][:1])
    event, log = decode(SHIELD_V2_1_TOPIC, fields)

    with pytest.raises(DecodeError, match="shieldCiphertext"):
        extractor.extract(event, log)


def test_railgun_token_id():
    address = b"\x22" * 20

    assert railgun_token_id(0, address, 0) == b"\x00" * 12 + address

    nft_id = railgun_token_id(1, address, 5)
    expected = int.from_bytes(keccak(abi_encode(["uint8", "address", "uint256"], [1, address, 5])), "big")
    assert int.from_bytes(nft_id, "big") == expected % SNARK_SCALAR_FIELD
    assert int.from_bytes(nft_id, "big") < SNARK_SCALAR_FIELD


def test_legacy_shield_without_fees_uses_same_commitment_rule(extractor, decode, shield_fields):
    fields = {k: v for k, v in shield_fields.items() if k != "fees"}
    canonical = "Shield(uint256,uint256,(bytes32,(uint8,address,uint256),uint120)[],(bytes32[3],bytes32)[])"

    event, log = decode(canonical, fields)
    facts = extractor.extract(event, log)

    assert event.signature.version == "v2"
    assert sum(isinstance(f, NewCommitment) for f in facts) == 2
    assert all(c.fee is None for c in facts if isinstance(c, NewCommitmentCiphertext))


def test_transact_uses_hash_array(extractor, decode):
    hashes = [b"\xa1" * 32, b"\xa2" * 32, b"\xa3" * 32]
    ciphertext = {
        "ciphertext": [b"\x00" * 32] * 4,
        "blindedSenderViewingKey": b"\x01" * 32,
        "blindedReceiverViewingKey": b"\x02" * 32,
        "annotationData": b"\xde\xad",
        "memo": b"",
    }
    event, log = decode(
        "Transact(uint256,uint256,bytes32[],(bytes32[4],bytes32,bytes32,bytes,bytes)[])",
        {"treeNumber": 1, "startPosition": 7, "hash": hashes, "ciphertext": [ciphertext] * 3},
    )

    facts = extractor.extract(event, log)

    commitments = [f for f in facts if isinstance(f, NewCommitment)]
    assert [c.commitment for c in commitments] == hashes
    assert [c.tree_number for c in commitments] == [1, 1, 1]
    assert [c.tree_position for c in commitments] == [7, 8, 9]
    assert all(c.commitment_type == TRANSACT_COMMITMENT for c in commitments)
    assert all(c.hash_source == HASH_SOURCE_EVENT for c in commitments)
    assert facts[-1] == AppendToTransaction(
        transaction_hash=log.transaction_hash,
        block_number=log.block_number,
        block_timestamp=log.block_timestamp,
        log_index=log.log_index,
        commitments=tuple(hashes),
    )

    ciphertexts = [f for f in facts if isinstance(f, NewCommitmentCiphertext)]
    assert len(ciphertexts) == 3
    assert ciphertexts[0].ciphertext_type == COMMITMENT_CIPHERTEXT
    assert ciphertexts[0].keys == (b"\x01" * 32, b"\x02" * 32)
    assert ciphertexts[0].annotation_data == b"\xde\xad"
    assert not any(isinstance(f, NewToken) for f in facts)


def test_repeated_commitment_values_keep_their_slots(extractor, decode):
    ciphertext = {
        "ciphertext": [b"\x00" * 32] * 4,
        "blindedSenderViewingKey": b"\x01" * 32,
        "blindedReceiverViewingKey": b"\x02" * 32,
        "annotationData": b"",
        "memo": b"",
    }
    event, log = decode(
        "Transact(uint256,uint256,bytes32[],(bytes32[4],bytes32,bytes32,bytes,bytes)[])",
        {"treeNumber": 0, "startPosition": 0, "hash": [b"\xa1" * 32] * 2, "ciphertext": [ciphertext] * 2},
    )

    facts = extractor.extract(event, log)

    assert [c.tree_position for c in facts if isinstance(c, NewCommitment)] == [0, 1]
    assert facts[-1].commitments == (b"\xa1" * 32, b"\xa1" * 32)


def test_nullified_emits_nullifiers_append_and_verification_hash(extractor, decode):
    nullifiers = [b"\x0a" * 32, b"\x0b" * 32]
    event, log = decode("Nullified(uint16,bytes32[])", {"treeNumber": 2, "nullifier": nullifiers})

    facts = extractor.extract(event, log)

    assert [type(f) for f in facts] == [
        NewNullifier,
        NewNullifier,
        AppendToTransaction,
        NewVerificationHash,
    ]
    assert [f.nullifier for f in facts[:2]] == nullifiers
    assert facts[0].tree_number == 2
    assert facts[2].nullifiers == tuple(nullifiers)
    assert facts[2].commitments is None
    assert facts[3].verification_hash == keccak(b"".join(nullifiers))


def test_legacy_uint256_nullifiers_become_bytes32(extractor, decode):
    event, log = decode("Nullifiers(uint256,uint256[])", {"treeNumber": 0, "nullifier": [1, 2**255]})

    facts = extractor.extract(event, log)

    assert facts[0].nullifier == (1).to_bytes(32, "big")
    assert facts[1].nullifier == (2**255).to_bytes(32, "big")


def test_empty_nullifier_list_emits_nothing(extractor, decode):
    event, log = decode("Nullified(uint16,bytes32[])", {"treeNumber": 0, "nullifier": []})

    assert extractor.extract(event, log) == []


def test_legacy_commitment_batch(extractor, decode):
    ciphertext = {"ciphertext": [1, 2, 3, 4], "ephemeralKeys": [5, 6], "memo": []}
    event, log = decode(
        "CommitmentBatch(uint256,uint256,uint256[],(uint256[4],uint256[2],uint256[])[])",
        {"treeNumber": 0, "startPosition": 0, "hash": [9], "ciphertext": [ciphertext]},
    )

    facts = extractor.extract(event, log)

    assert facts[0].commitment == (9).to_bytes(32, "big")
    assert facts[0].commitment_type == LEGACY_ENCRYPTED_COMMITMENT

    (stored,) = [f for f in facts if isinstance(f, NewCommitmentCiphertext)]
    assert stored.ciphertext_type == LEGACY_COMMITMENT_CIPHERTEXT
    assert stored.ciphertext == tuple(n.to_bytes(32, "big") for n in (1, 2, 3, 4))
    assert stored.keys == ((5).to_bytes(32, "big"), (6).to_bytes(32, "big"))
    assert stored.memo == b""


def test_legacy_generated_commitment_batch(extractor, decode):
    preimage = {
        "npk": 77,
        "token": {"tokenType": 0, "tokenAddress": TOKEN_ADDRESS, "tokenSubID": 0},
        "value": 10,
    }
    event, log = decode(
        "GeneratedCommitmentBatch(uint256,uint256,(uint256,(uint8,address,uint256),uint120)[],uint256[2][])",
        {"treeNumber": 0, "startPosition": 3, "commitments": [preimage], "encryptedRandom": [[1, 2]]},
    )

    facts = extractor.extract(event, log)
    (commitment,) = [f for f in facts if isinstance(f, NewCommitment)]
    (preimage,) = [f for f in facts if isinstance(f, NewCommitmentPreimage)]
    (stored,) = [f for f in facts if isinstance(f, NewCommitmentCiphertext)]

    assert preimage.npk == (77).to_bytes(32, "big")
    assert stored.ciphertext_type == LEGACY_ENCRYPTED_RANDOM
    assert stored.ciphertext == ((1).to_bytes(32, "big"), (2).to_bytes(32, "big"))
    assert commitment.commitment_type == LEGACY_GENERATED_COMMITMENT
    assert commitment.commitment == keccak(
        abi_encode(["(uint256,(uint8,address,uint256),uint120)"], [(77, (0, TOKEN_ADDRESS, 0), 10)])
    )


def test_unshield(extractor, decode):
    recipient = "0x" + "33" * 20
    event, log = decode(
        "Unshield(address,(uint8,address,uint256),uint256,uint256)",
        {
            "to": recipient,
            "token": {"tokenType": 1, "tokenAddress": TOKEN_ADDRESS, "tokenSubID": 5},
            "amount": 10**30,
            "fee": 25,
        },
        log_index=9,
    )

    facts = extractor.extract(event, log)

    assert facts == [
        NewUnshield(
            id=positional_id(log.transaction_hash, 9, 0),
            block_number=log.block_number,
            block_timestamp=log.block_timestamp,
            transaction_hash=log.transaction_hash,
            to_address=b"\x33" * 20,
            token_type=1,
            token_address=b"\x22" * 20,
            token_sub_id=5,
            amount=10**30,
            fee=25,
            event_log_index=9,
        )
    ]


def test_events_without_facts(extractor, decode):
    event, log = decode("FeeChange(uint256,uint256,uint256)", {"shieldFee": 25, "unshieldFee": 25, "nftFee": 0})

    assert extractor.extract(event, log) == []


def test_positional_fallback_for_candidate_schemas(extractor, log_factory):
    signature = parse_event_signature("Nullified(uint16,bytes32[])")
    event = DecodedEvent(signature=signature, fields={"arg0": 1, "arg1": [b"\x0c" * 32]})

    facts = extractor.extract(event, log_factory(signature, event.fields))

    assert facts[0].tree_number == 1
    assert facts[0].nullifier == b"\x0c" * 32


def test_unexpected_payload_shape_raises_decode_error(extractor, log_factory):
    signature = parse_event_signature("Nullified(uint16,bytes32[])")
    event = DecodedEvent(signature=signature, fields={"arg0": 1, "arg1": [b"\x0c" * 31]})
    log = log_factory(signature, {}, data=b"")

    with pytest.raises(DecodeError) as exc_info:
        extractor.extract(event, log)

    assert exc_info.value.topic_hash == signature.topic_hash_hex


def test_missing_field_raises_decode_error(extractor, log_factory):
    signature = parse_event_signature("Transact(uint256)")
    event = DecodedEvent(signature=signature, fields={"arg0": 1})

    with pytest.raises(DecodeError, match="missing field"):
        extractor.extract(event, log_factory(signature, event.fields))
