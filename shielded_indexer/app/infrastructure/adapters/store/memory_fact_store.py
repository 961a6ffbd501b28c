from __future__ import annotations

from typing import Iterable

from shielded_indexer.app.domain.models import (
    AppendToTransaction,
    Fact,
    NewCommitment,
    NewCommitmentCiphertext,
    NewCommitmentPreimage,
    NewNullifier,
    NewToken,
    NewUnshield,
    NewVerificationHash,
    QuarantinedLog,
    Transaction,
    merge_append,
)


class InMemoryFactStore:
    """
    Dict-backed FactStore with the same idempotence contract as the
    SQLAlchemy adapter. Used for dry runs and tests.

    No awaits happen between reading and writing an entry, so each apply
    is atomic with respect to other coroutines.
    """

    def __init__(self) -> None:
        self.nullifiers: dict[str, NewNullifier] = {}
        self.commitments: dict[str, NewCommitment] = {}
        self.tokens: dict[str, NewToken] = {}
        self.commitment_preimages: dict[str, NewCommitmentPreimage] = {}
        self.commitment_ciphertexts: dict[str, NewCommitmentCiphertext] = {}
        self.verification_hashes: dict[str, NewVerificationHash] = {}
        self.transactions: dict[str, Transaction] = {}
        self.unshields: dict[str, NewUnshield] = {}
        self.quarantined: dict[str, QuarantinedLog] = {}

        self._insert_if_absent: dict[type, dict] = {
            NewNullifier: self.nullifiers,
            NewCommitment: self.commitments,
            NewToken: self.tokens,
            NewCommitmentPreimage: self.commitment_preimages,
            NewCommitmentCiphertext: self.commitment_ciphertexts,
            NewUnshield: self.unshields,
        }

    async def apply(self, fact: Fact) -> None:
        table = self._insert_if_absent.get(type(fact))
        if table is not None:
            table.setdefault(fact.id, fact)
        elif isinstance(fact, NewVerificationHash):
            self.verification_hashes[fact.id] = fact
        elif isinstance(fact, QuarantinedLog):
            self.quarantined[fact.id] = fact
        elif isinstance(fact, AppendToTransaction):
            self._merge_transaction(fact)
        else:
            raise TypeError(f"Unsupported fact type: {type(fact).__name__}")

    async def apply_all(self, facts: Iterable[Fact]) -> int:
        applied = 0
        for fact in facts:
            await self.apply(fact)
            applied += 1
        return applied

    def _merge_transaction(self, fact: AppendToTransaction) -> None:
        current = self.transactions.get(fact.id) or Transaction(
            id=fact.id,
            transaction_hash=fact.transaction_hash,
            block_number=fact.block_number,
            block_timestamp=fact.block_timestamp,
        )
        merged = merge_append(current.applied_logs, current.nullifiers, current.commitments, fact)
        if merged is None:
            return

        applied_logs, nullifiers, commitments = merged
        self.transactions[fact.id] = Transaction(
            id=current.id,
            transaction_hash=current.transaction_hash,
            block_number=current.block_number,
            block_timestamp=current.block_timestamp,
            nullifiers=nullifiers,
            commitments=commitments,
            applied_logs=applied_logs,
        )

    def snapshot(self) -> dict[str, dict[str, object]]:
        return {
            "nullifiers": dict(self.nullifiers),
            "commitments": dict(self.commitments),
            "tokens": dict(self.tokens),
            "commitment_preimages": dict(self.commitment_preimages),
            "commitment_ciphertexts": dict(self.commitment_ciphertexts),
            "verification_hashes": dict(self.verification_hashes),
            "transactions": dict(self.transactions),
            "unshields": dict(self.unshields),
            "quarantined": dict(self.quarantined),
        }

    def counts(self) -> dict[str, int]:
        return {name: len(rows) for name, rows in self.snapshot().items()}
