from __future__ import annotations

import logging
from typing import Any, Callable, Final, Mapping, Sequence

from eth_abi import encode as abi_encode
from eth_utils import keccak, to_canonical_address

from shielded_indexer.app.domain.errors import DecodeError
from shielded_indexer.app.domain.models import (
    AppendToTransaction,
    DecodedEvent,
    Fact,
    NewCommitment,
    NewCommitmentCiphertext,
    NewCommitmentPreimage,
    NewNullifier,
    NewToken,
    NewUnshield,
    NewVerificationHash,
    RawLog,
    positional_id,
    to_hex,
)
from shielded_indexer.app.domain.signatures import AbiParam
from shielded_indexer.app.infrastructure.decoders.log_decoder import encode_value


logger = logging.getLogger(__name__)

SHIELD_COMMITMENT: Final[str] = "ShieldCommitment"
TRANSACT_COMMITMENT: Final[str] = "TransactCommitment"
LEGACY_GENERATED_COMMITMENT: Final[str] = "LegacyGeneratedCommitment"
LEGACY_ENCRYPTED_COMMITMENT: Final[str] = "LegacyEncryptedCommitment"

SHIELD_CIPHERTEXT: Final[str] = "ShieldCiphertext"
COMMITMENT_CIPHERTEXT: Final[str] = "CommitmentCiphertext"
LEGACY_COMMITMENT_CIPHERTEXT: Final[str] = "LegacyCommitmentCiphertext"
LEGACY_ENCRYPTED_RANDOM: Final[str] = "LegacyEncryptedRandom"

HASH_SOURCE_EVENT: Final[str] = "event"
HASH_SOURCE_PREIMAGE_KECCAK: Final[str] = "preimage_keccak"

ERC20_TOKEN_TYPE: Final[int] = 0
SNARK_SCALAR_FIELD: Final[int] = (
    21888242871839275222246405745257275088548364400416034343698204186575808495617
)


def railgun_token_id(token_type: int, token_address: bytes, token_sub_id: int) -> bytes:
    """
    Token id as used inside commitment preimages.

    ERC20 tokens are identified by their address; NFTs by the keccak256 of
    the encoded token data reduced into the SNARK scalar field.
    """
    if token_type == ERC20_TOKEN_TYPE:
        return bytes(token_address).rjust(32, b"\x00")
    encoded = abi_encode(["uint8", "address", "uint256"], [token_type, bytes(token_address), token_sub_id])
    return (int.from_bytes(keccak(encoded), "big") % SNARK_SCALAR_FIELD).to_bytes(32, "big")


class _MissingField(LookupError):
    pass


class FactExtractor:
    """
    Maps decoded events to domain facts.

    Event shapes differ across contract eras, so fields are looked up by
    name first and by position second (candidate-resolved schemas carry only
    positional names). Facts keep the source order of the arrays they come
    from: array position is the merkle leaf position.

    Per commitment the extractor emits the commitment itself, its token and
    preimage (shield-style events) and its ciphertext, all keyed by the same
    positional id.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, Callable[[DecodedEvent, RawLog], list[Fact]]] = {
            "Shield": self._shield,
            "GeneratedCommitmentBatch": self._generated_commitment_batch,
            "Transact": self._transact,
            "CommitmentBatch": self._commitment_batch,
            "Nullified": self._nullifiers,
            "Nullifiers": self._nullifiers,
            "Unshield": self._unshield,
        }

    def extract(self, event: DecodedEvent, log: RawLog) -> list[Fact]:
        handler = self._handlers.get(event.name)
        if handler is None:
            logger.debug("No facts for event %s (tx=%s)", event.name, log.transaction_hash_hex)
            return []
        try:
            return handler(event, log)
        except (_MissingField, TypeError, ValueError, OverflowError) as exc:
            raise DecodeError(
                f"Unexpected {event.signature.canonical} payload: {exc}",
                transaction_hash=log.transaction_hash_hex,
                log_index=log.log_index,
                topic_hash=event.signature.topic_hash_hex,
            ) from exc

    # ---------------------------------------------------------------------
    # Handlers
    # ---------------------------------------------------------------------

    def _shield(self, event: DecodedEvent, log: RawLog) -> list[Fact]:
        entries = _field(event.fields, "commitments", 2)
        bundles = _paired(entries, _field(event.fields, "shieldCiphertext", 3), "shieldCiphertext")
        fees = _optional_field(event.fields, "fees", 4)
        if fees is not None:
            fees = _paired(entries, fees, "fees")

        ciphertexts = [
            _ciphertext(
                log,
                i,
                SHIELD_CIPHERTEXT,
                ciphertext=_words(_field(bundle, "encryptedBundle", 0)),
                keys=(_as_bytes32(_field(bundle, "shieldKey", 1)),),
                fee=None if fees is None else int(fees[i]),
            )
            for i, bundle in enumerate(bundles)
        ]
        return self._preimage_commitments(event, log, SHIELD_COMMITMENT, ciphertexts)

    def _generated_commitment_batch(self, event: DecodedEvent, log: RawLog) -> list[Fact]:
        entries = _field(event.fields, "commitments", 2)
        randoms = _paired(entries, _field(event.fields, "encryptedRandom", 3), "encryptedRandom")
        ciphertexts = [
            _ciphertext(log, i, LEGACY_ENCRYPTED_RANDOM, ciphertext=_words(random))
            for i, random in enumerate(randoms)
        ]
        return self._preimage_commitments(event, log, LEGACY_GENERATED_COMMITMENT, ciphertexts)

    def _transact(self, event: DecodedEvent, log: RawLog) -> list[Fact]:
        hashes = [_as_bytes32(v) for v in _field(event.fields, "hash", 2)]
        records = _paired(hashes, _field(event.fields, "ciphertext", 3), "ciphertext")
        ciphertexts = [
            _ciphertext(
                log,
                i,
                COMMITMENT_CIPHERTEXT,
                ciphertext=_words(_field(record, "ciphertext", 0)),
                keys=(
                    _as_bytes32(_field(record, "blindedSenderViewingKey", 1)),
                    _as_bytes32(_field(record, "blindedReceiverViewingKey", 2)),
                ),
                annotation_data=bytes(_field(record, "annotationData", 3)),
                memo=bytes(_field(record, "memo", 4)),
            )
            for i, record in enumerate(records)
        ]
        return self._commitment_facts(
            event, log, hashes, TRANSACT_COMMITMENT, HASH_SOURCE_EVENT, ciphertexts
        )

    def _commitment_batch(self, event: DecodedEvent, log: RawLog) -> list[Fact]:
        hashes = [_as_bytes32(v) for v in _field(event.fields, "hash", 2)]
        records = _paired(hashes, _field(event.fields, "ciphertext", 3), "ciphertext")
        ciphertexts = [
            _ciphertext(
                log,
                i,
                LEGACY_COMMITMENT_CIPHERTEXT,
                ciphertext=_words(_field(record, "ciphertext", 0)),
                keys=_words(_field(record, "ephemeralKeys", 1)),
                memo=b"".join(_words(_field(record, "memo", 2))),
            )
            for i, record in enumerate(records)
        ]
        return self._commitment_facts(
            event, log, hashes, LEGACY_ENCRYPTED_COMMITMENT, HASH_SOURCE_EVENT, ciphertexts
        )

    def _preimage_commitments(
        self,
        event: DecodedEvent,
        log: RawLog,
        commitment_type: str,
        ciphertexts: list[NewCommitmentCiphertext],
    ) -> list[Fact]:
        entries = _field(event.fields, "commitments", 2)
        element = _param(event, "commitments", 2).element()

        tokens: dict[str, NewToken] = {}
        preimages: list[Fact] = []
        hashes: list[bytes] = []
        for i, entry in enumerate(entries):
            token = _token(_field(entry, "token", 1))
            tokens.setdefault(token.id, token)
            preimages.append(
                NewCommitmentPreimage(
                    id=positional_id(log.transaction_hash, log.log_index, i),
                    npk=_as_bytes32(_field(entry, "npk", 0)),
                    token_id=token.id,
                    value=int(_field(entry, "value", 2)),
                )
            )
            # Surrogate leaf: keccak256 over the ABI-encoded preimage tuple
            hashes.append(keccak(encode_value(element, entry)))

        return [
            *tokens.values(),
            *preimages,
            *self._commitment_facts(
                event, log, hashes, commitment_type, HASH_SOURCE_PREIMAGE_KECCAK, ciphertexts
            ),
        ]

    def _commitment_facts(
        self,
        event: DecodedEvent,
        log: RawLog,
        hashes: list[bytes],
        commitment_type: str,
        hash_source: str,
        ciphertexts: Sequence[NewCommitmentCiphertext] = (),
    ) -> list[Fact]:
        tree_number = int(_field(event.fields, "treeNumber", 0))
        start_position = int(_field(event.fields, "startPosition", 1))

        facts: list[Fact] = [
            NewCommitment(
                id=positional_id(log.transaction_hash, log.log_index, i),
                block_number=log.block_number,
                block_timestamp=log.block_timestamp,
                transaction_hash=log.transaction_hash,
                tree_number=tree_number,
                tree_position=start_position + i,
                commitment=commitment,
                commitment_type=commitment_type,
                hash_source=hash_source,
            )
            for i, commitment in enumerate(hashes)
        ]
        facts.extend(ciphertexts)
        if hashes:
            facts.append(
                AppendToTransaction(
                    transaction_hash=log.transaction_hash,
                    block_number=log.block_number,
                    block_timestamp=log.block_timestamp,
                    log_index=log.log_index,
                    commitments=tuple(hashes),
                )
            )
        return facts

    def _nullifiers(self, event: DecodedEvent, log: RawLog) -> list[Fact]:
        tree_number = int(_field(event.fields, "treeNumber", 0))
        nullifiers = [_as_bytes32(v) for v in _field(event.fields, "nullifier", 1)]
        if not nullifiers:
            return []

        facts: list[Fact] = [
            NewNullifier(
                id=positional_id(log.transaction_hash, log.log_index, i),
                block_number=log.block_number,
                block_timestamp=log.block_timestamp,
                transaction_hash=log.transaction_hash,
                tree_number=tree_number,
                nullifier=nullifier,
            )
            for i, nullifier in enumerate(nullifiers)
        ]
        facts.append(
            AppendToTransaction(
                transaction_hash=log.transaction_hash,
                block_number=log.block_number,
                block_timestamp=log.block_timestamp,
                log_index=log.log_index,
                nullifiers=tuple(nullifiers),
            )
        )
        facts.append(NewVerificationHash(verification_hash=keccak(b"".join(nullifiers))))
        return facts

    def _unshield(self, event: DecodedEvent, log: RawLog) -> list[Fact]:
        token = _field(event.fields, "token", 1)
        if not isinstance(token, Mapping):
            raise TypeError(f"token must be a record, got {type(token).__name__}")
        return [
            NewUnshield(
                id=positional_id(log.transaction_hash, log.log_index, 0),
                block_number=log.block_number,
                block_timestamp=log.block_timestamp,
                transaction_hash=log.transaction_hash,
                to_address=to_canonical_address(_field(event.fields, "to", 0)),
                token_type=int(_field(token, "tokenType", 0)),
                token_address=to_canonical_address(_field(token, "tokenAddress", 1)),
                token_sub_id=int(_field(token, "tokenSubID", 2)),
                amount=int(_field(event.fields, "amount", 2)),
                fee=int(_field(event.fields, "fee", 3)),
                event_log_index=log.log_index,
            )
        ]


# ---------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------


def _token(record: Any) -> NewToken:
    if not isinstance(record, Mapping):
        raise TypeError(f"token must be a record, got {type(record).__name__}")
    token_type = int(_field(record, "tokenType", 0))
    token_address = to_canonical_address(_field(record, "tokenAddress", 1))
    token_sub_id = int(_field(record, "tokenSubID", 2))
    return NewToken(
        id=to_hex(railgun_token_id(token_type, token_address, token_sub_id)),
        token_type=token_type,
        token_address=token_address,
        token_sub_id=token_sub_id,
    )


def _ciphertext(
    log: RawLog,
    position: int,
    ciphertext_type: str,
    *,
    ciphertext: tuple[bytes, ...],
    keys: tuple[bytes, ...] = (),
    annotation_data: bytes = b"",
    memo: bytes = b"",
    fee: int | None = None,
) -> NewCommitmentCiphertext:
    return NewCommitmentCiphertext(
        id=positional_id(log.transaction_hash, log.log_index, position),
        block_number=log.block_number,
        transaction_hash=log.transaction_hash,
        ciphertext_type=ciphertext_type,
        ciphertext=ciphertext,
        keys=keys,
        annotation_data=annotation_data,
        memo=memo,
        fee=fee,
    )


# ---------------------------------------------------------------------
# Field access helpers
# ---------------------------------------------------------------------


def _field(record: Mapping[str, Any], name: str, position: int) -> Any:
    if name in record:
        return record[name]
    values = list(record.values())
    if position < len(values):
        return values[position]
    raise _MissingField(f"missing field {name!r} (position {position})")


def _optional_field(record: Mapping[str, Any], name: str, position: int) -> Any:
    try:
        return _field(record, name, position)
    except _MissingField:
        return None


def _param(event: DecodedEvent, name: str, position: int) -> AbiParam:
    param = event.signature.param(name)
    if param is not None:
        return param
    params = event.signature.params
    if position < len(params):
        return params[position]
    raise _MissingField(f"missing param {name!r} (position {position})")


def _paired(primary: Sequence[Any], secondary: Sequence[Any], name: str) -> Sequence[Any]:
    if len(primary) != len(secondary):
        raise ValueError(f"{name} has {len(secondary)} entries for {len(primary)} commitments")
    return secondary


def _words(values: Sequence[Any]) -> tuple[bytes, ...]:
    return tuple(_as_bytes32(v) for v in values)


def _as_bytes32(value: Any) -> bytes:
    if isinstance(value, int) and not isinstance(value, bool):
        return value.to_bytes(32, byteorder="big", signed=False)
    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        if len(raw) == 32:
            return raw
        raise ValueError(f"Expected 32 bytes, got len={len(raw)} ({to_hex(raw)})")
    raise TypeError(f"Expected bytes32 or uint256, got {type(value).__name__}")
