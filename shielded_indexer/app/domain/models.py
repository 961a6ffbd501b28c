from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence, Union

from shielded_indexer.app.domain.signatures import EventSignature


def to_hex(value: bytes) -> str:
    return "0x" + bytes(value).hex()


# -------------------------------------------------------------------------
# Chain input
# -------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RawLog:
    """
    A single EVM log as observed from the chain source.

    Binary identifiers (address, hashes, topics) are kept as raw bytes.
    """

    contract_address: bytes
    block_number: int
    block_timestamp: int
    transaction_hash: bytes
    log_index: int
    topics: tuple[bytes, ...]
    data: bytes

    @property
    def topic0(self) -> bytes | None:
        return self.topics[0] if self.topics else None

    @property
    def transaction_hash_hex(self) -> str:
        return to_hex(self.transaction_hash)

    @property
    def sort_key(self) -> tuple[int, int]:
        return self.block_number, self.log_index


@dataclass(frozen=True, slots=True)
class IndexedTopicHash:
    """
    Value of an indexed reference-type field (bytes, string, array, tuple).

    Only the keccak hash of the original value is on-chain, so the topic is
    exposed verbatim.
    """

    topic: bytes


@dataclass(frozen=True, slots=True)
class DecodedEvent:
    signature: EventSignature
    fields: dict[str, Any]

    @property
    def name(self) -> str:
        return self.signature.name


# -------------------------------------------------------------------------
# Facts (transient, produced by the extractor)
# -------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class NewNullifier:
    id: str
    block_number: int
    block_timestamp: int
    transaction_hash: bytes
    tree_number: int
    nullifier: bytes


@dataclass(frozen=True, slots=True)
class NewCommitment:
    id: str
    block_number: int
    block_timestamp: int
    transaction_hash: bytes
    tree_number: int
    tree_position: int
    commitment: bytes
    commitment_type: str
    # "event": leaf hash emitted on-chain; "preimage_keccak": keccak256 of
    # the ABI-encoded preimage, standing in for the Poseidon leaf
    hash_source: str


@dataclass(frozen=True, slots=True)
class NewToken:
    """Token descriptor referenced by commitment preimages; `id` is the Railgun token id."""

    id: str
    token_type: int
    token_address: bytes
    token_sub_id: int


@dataclass(frozen=True, slots=True)
class NewCommitmentPreimage:
    """Plaintext note of a shield-style commitment, keyed like the commitment."""

    id: str
    npk: bytes
    token_id: str
    value: int


@dataclass(frozen=True, slots=True)
class NewCommitmentCiphertext:
    """
    Encrypted note data emitted alongside a commitment, keyed like the commitment.

    `ciphertext` and `keys` hold the event's words verbatim:
    - ShieldCiphertext: encryptedBundle / (shieldKey,), plus the shield fee,
    - CommitmentCiphertext: ciphertext / (blindedSender, blindedReceiver) viewing keys,
    - LegacyCommitmentCiphertext: ciphertext / ephemeralKeys, memo words concatenated,
    - LegacyEncryptedRandom: encryptedRandom / ().
    """

    id: str
    block_number: int
    transaction_hash: bytes
    ciphertext_type: str
    ciphertext: tuple[bytes, ...]
    keys: tuple[bytes, ...] = ()
    annotation_data: bytes = b""
    memo: bytes = b""
    fee: int | None = None


@dataclass(frozen=True, slots=True)
class NewVerificationHash:
    verification_hash: bytes

    @property
    def id(self) -> str:
        return to_hex(self.verification_hash)


@dataclass(frozen=True, slots=True)
class AppendToTransaction:
    """
    Append one log's nullifiers and/or commitments to a Transaction aggregate.

    None means "not touched by this fact"; it never means "empty". The
    append is keyed by `log_index`: each log contributes its array slots
    exactly once, equal values included.
    """

    transaction_hash: bytes
    block_number: int
    block_timestamp: int
    log_index: int
    nullifiers: tuple[bytes, ...] | None = None
    commitments: tuple[bytes, ...] | None = None

    @property
    def id(self) -> str:
        return transaction_id(self.transaction_hash)


@dataclass(frozen=True, slots=True)
class NewUnshield:
    id: str
    block_number: int
    block_timestamp: int
    transaction_hash: bytes
    to_address: bytes
    token_type: int
    token_address: bytes
    token_sub_id: int
    amount: int
    fee: int
    event_log_index: int


@dataclass(frozen=True, slots=True)
class QuarantinedLog:
    """A log set aside because it could not be resolved or decoded."""

    transaction_hash: bytes
    log_index: int
    block_number: int
    contract_address: bytes
    topics: tuple[bytes, ...]
    data: bytes
    reason: str
    detail: str

    @property
    def id(self) -> str:
        return f"{to_hex(self.transaction_hash)}:{self.log_index}"

    @classmethod
    def from_log(cls, log: RawLog, *, reason: str, detail: str) -> QuarantinedLog:
        return cls(
            transaction_hash=log.transaction_hash,
            log_index=log.log_index,
            block_number=log.block_number,
            contract_address=log.contract_address,
            topics=log.topics,
            data=log.data,
            reason=reason,
            detail=detail,
        )


Fact = Union[
    NewNullifier,
    NewCommitment,
    NewToken,
    NewCommitmentPreimage,
    NewCommitmentCiphertext,
    NewVerificationHash,
    AppendToTransaction,
    NewUnshield,
    QuarantinedLog,
]


# -------------------------------------------------------------------------
# Persisted entities (owned by the store writer)
# -------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Transaction:
    id: str
    transaction_hash: bytes
    block_number: int
    block_timestamp: int
    nullifiers: tuple[bytes, ...] = ()
    commitments: tuple[bytes, ...] = ()
    # log indexes whose appends are already folded into the arrays
    applied_logs: tuple[int, ...] = ()


@dataclass(frozen=True, slots=True, order=True)
class TreePointer:
    """Merkle tree slot of the highest commitment seen so far."""

    tree_number: int = 0
    tree_position: int = 0


@dataclass(frozen=True, slots=True)
class Checkpoint:
    """Highest fully-applied block of a stream, with the commitment tree pointer at that block."""

    block_number: int
    tree_pointer: TreePointer = TreePointer()


# -------------------------------------------------------------------------
# Keys / merge helpers
# -------------------------------------------------------------------------


def transaction_id(transaction_hash: bytes) -> str:
    return to_hex(transaction_hash).lower()


def positional_id(transaction_hash: bytes, log_index: int, position: int) -> str:
    """Deterministic key for one element emitted by one log."""
    return f"{to_hex(transaction_hash)}:{log_index}:{position}"


def merge_append(
    applied_logs: Sequence[int],
    nullifiers: Sequence[bytes],
    commitments: Sequence[bytes],
    fact: AppendToTransaction,
) -> tuple[tuple[int, ...], tuple[bytes, ...], tuple[bytes, ...]] | None:
    """
    Fold one log's append into a transaction's arrays.

    Every array slot of a new log is appended, duplicates by value included,
    since array position is the merkle leaf position. Returns None when the
    log was already applied, which makes replays no-ops.
    """
    if fact.log_index in applied_logs:
        return None
    return (
        (*applied_logs, fact.log_index),
        (*(bytes(x) for x in nullifiers), *(bytes(x) for x in fact.nullifiers or ())),
        (*(bytes(x) for x in commitments), *(bytes(x) for x in fact.commitments or ())),
    )
