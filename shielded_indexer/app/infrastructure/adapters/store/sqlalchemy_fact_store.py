from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Awaitable, Callable, Iterable

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

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
    merge_append,
)
from shielded_indexer.app.infrastructure.adapters.store.retry import (
    StoreRetryPolicy,
    run_with_retry,
)
from shielded_indexer.app.infrastructure.db.models.domain.commitment_ciphertexts import (
    CommitmentCiphertextsDB,
)
from shielded_indexer.app.infrastructure.db.models.domain.commitment_preimages import (
    CommitmentPreimagesDB,
)
from shielded_indexer.app.infrastructure.db.models.domain.commitments import CommitmentsDB
from shielded_indexer.app.infrastructure.db.models.domain.nullifiers import NullifiersDB
from shielded_indexer.app.infrastructure.db.models.domain.tokens import TokensDB
from shielded_indexer.app.infrastructure.db.models.domain.transactions import TransactionsDB
from shielded_indexer.app.infrastructure.db.models.domain.unshields import UnshieldsDB
from shielded_indexer.app.infrastructure.db.models.domain.verification_hashes import (
    VerificationHashesDB,
)
from shielded_indexer.app.infrastructure.db.models.ingest.quarantined_logs import (
    QuarantinedLogsDB,
)


logger = logging.getLogger(__name__)

_Writer = Callable[[AsyncConnection, Any], Awaitable[None]]


def describe_fact(fact: Fact) -> str:
    return f"{type(fact).__name__}({getattr(fact, 'id', '')})"


class SqlAlchemyFactStore:
    """
    PostgreSQL/SQLAlchemy implementation of FactStore.

    - NewNullifier / NewCommitment / NewToken / NewCommitmentPreimage /
      NewCommitmentCiphertext / NewUnshield: INSERT ... ON CONFLICT DO NOTHING,
    - NewVerificationHash / QuarantinedLog: INSERT ... ON CONFLICT DO UPDATE,
    - AppendToTransaction: insert-if-absent, then SELECT ... FOR UPDATE,
      fold the log's slots in Python unless its log index was already
      applied, and UPDATE the arrays together.

    `apply` writes one fact per database transaction; `apply_all` writes a
    whole group (one chain transaction's facts) in a single database
    transaction, so a crash never leaves it half-applied. Transient failures
    are retried with capped exponential backoff.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        retry_policy: StoreRetryPolicy | None = None,
    ) -> None:
        self._engine = engine
        self._retry_policy = retry_policy or StoreRetryPolicy()
        self._writers: dict[type, _Writer] = {
            NewNullifier: self._write_nullifier,
            NewCommitment: self._write_commitment,
            NewToken: self._write_token,
            NewCommitmentPreimage: self._write_commitment_preimage,
            NewCommitmentCiphertext: self._write_commitment_ciphertext,
            NewVerificationHash: self._write_verification_hash,
            AppendToTransaction: self._write_transaction,
            NewUnshield: self._write_unshield,
            QuarantinedLog: self._write_quarantined_log,
        }

    async def apply(self, fact: Fact) -> None:
        await self._write_group([fact], description=describe_fact(fact))

    async def apply_all(self, facts: Iterable[Fact]) -> int:
        group = list(facts)
        if not group:
            return 0
        await self._write_group(
            group,
            description=f"{len(group)} facts from {describe_fact(group[0])}",
        )
        return len(group)

    async def _write_group(self, facts: list[Fact], *, description: str) -> None:
        writers = []
        for fact in facts:
            writer = self._writers.get(type(fact))
            if writer is None:
                raise TypeError(f"Unsupported fact type: {type(fact).__name__}")
            writers.append((writer, fact))

        async def _write() -> None:
            async with self._engine.begin() as conn:
                for writer, fact in writers:
                    await writer(conn, fact)

        await run_with_retry(_write, policy=self._retry_policy, description=description)

    # ---------------------------------------------------------------------
    # Insert-if-absent
    # ---------------------------------------------------------------------

    async def _write_nullifier(self, conn: AsyncConnection, fact: NewNullifier) -> None:
        stmt = insert(NullifiersDB).values(
            id=fact.id,
            block_number=fact.block_number,
            block_timestamp=fact.block_timestamp,
            transaction_hash=fact.transaction_hash,
            tree_number=fact.tree_number,
            nullifier=fact.nullifier,
        )
        await conn.execute(stmt.on_conflict_do_nothing(index_elements=[NullifiersDB.id]))

    async def _write_commitment(self, conn: AsyncConnection, fact: NewCommitment) -> None:
        stmt = insert(CommitmentsDB).values(
            id=fact.id,
            block_number=fact.block_number,
            block_timestamp=fact.block_timestamp,
            transaction_hash=fact.transaction_hash,
            tree_number=fact.tree_number,
            tree_position=fact.tree_position,
            commitment=fact.commitment,
            commitment_type=fact.commitment_type,
            hash_source=fact.hash_source,
        )
        await conn.execute(stmt.on_conflict_do_nothing(index_elements=[CommitmentsDB.id]))

    async def _write_token(self, conn: AsyncConnection, fact: NewToken) -> None:
        stmt = insert(TokensDB).values(
            id=fact.id,
            token_type=fact.token_type,
            token_address=fact.token_address,
            token_sub_id=Decimal(fact.token_sub_id),
        )
        await conn.execute(stmt.on_conflict_do_nothing(index_elements=[TokensDB.id]))

    async def _write_commitment_preimage(
        self, conn: AsyncConnection, fact: NewCommitmentPreimage
    ) -> None:
        stmt = insert(CommitmentPreimagesDB).values(
            id=fact.id,
            npk=fact.npk,
            token_id=fact.token_id,
            value=Decimal(fact.value),
        )
        await conn.execute(stmt.on_conflict_do_nothing(index_elements=[CommitmentPreimagesDB.id]))

    async def _write_commitment_ciphertext(
        self, conn: AsyncConnection, fact: NewCommitmentCiphertext
    ) -> None:
        stmt = insert(CommitmentCiphertextsDB).values(
            id=fact.id,
            block_number=fact.block_number,
            transaction_hash=fact.transaction_hash,
            ciphertext_type=fact.ciphertext_type,
            ciphertext=list(fact.ciphertext),
            keys=list(fact.keys),
            annotation_data=fact.annotation_data,
            memo=fact.memo,
            fee=None if fact.fee is None else Decimal(fact.fee),
        )
        await conn.execute(stmt.on_conflict_do_nothing(index_elements=[CommitmentCiphertextsDB.id]))

    async def _write_unshield(self, conn: AsyncConnection, fact: NewUnshield) -> None:
        stmt = insert(UnshieldsDB).values(
            id=fact.id,
            block_number=fact.block_number,
            block_timestamp=fact.block_timestamp,
            transaction_hash=fact.transaction_hash,
            to_address=fact.to_address,
            token_type=fact.token_type,
            token_address=fact.token_address,
            token_sub_id=Decimal(fact.token_sub_id),
            amount=Decimal(fact.amount),
            fee=Decimal(fact.fee),
            event_log_index=fact.event_log_index,
        )
        await conn.execute(stmt.on_conflict_do_nothing(index_elements=[UnshieldsDB.id]))

    # ---------------------------------------------------------------------
    # Upserts
    # ---------------------------------------------------------------------

    async def _write_verification_hash(
        self, conn: AsyncConnection, fact: NewVerificationHash
    ) -> None:
        stmt = insert(VerificationHashesDB).values(
            id=fact.id,
            verification_hash=fact.verification_hash,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[VerificationHashesDB.id],
            set_={"verification_hash": stmt.excluded.verification_hash},
        )
        await conn.execute(stmt)

    async def _write_quarantined_log(self, conn: AsyncConnection, fact: QuarantinedLog) -> None:
        stmt = insert(QuarantinedLogsDB).values(
            transaction_hash=fact.transaction_hash,
            log_index=fact.log_index,
            block_number=fact.block_number,
            contract_address=fact.contract_address,
            topic0=fact.topics[0] if fact.topics else None,
            topics=list(fact.topics),
            data=fact.data,
            reason=fact.reason,
            detail=fact.detail,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[QuarantinedLogsDB.transaction_hash, QuarantinedLogsDB.log_index],
            set_={
                "reason": stmt.excluded.reason,
                "detail": stmt.excluded.detail,
                "quarantined_at": func.now(),
            },
        )
        await conn.execute(stmt)

    # ---------------------------------------------------------------------
    # Read-modify-write merge
    # ---------------------------------------------------------------------

    async def _write_transaction(self, conn: AsyncConnection, fact: AppendToTransaction) -> None:
        await conn.execute(
            insert(TransactionsDB)
            .values(
                id=fact.id,
                transaction_hash=fact.transaction_hash,
                block_number=fact.block_number,
                block_timestamp=fact.block_timestamp,
                nullifiers=[],
                commitments=[],
                applied_log_indexes=[],
            )
            .on_conflict_do_nothing(index_elements=[TransactionsDB.id])
        )

        # Row lock serializes concurrent merges into the same transaction
        result = await conn.execute(
            select(
                TransactionsDB.applied_log_indexes,
                TransactionsDB.nullifiers,
                TransactionsDB.commitments,
            )
            .where(TransactionsDB.id == fact.id)
            .with_for_update()
        )
        row = result.one()

        merged = merge_append(
            row.applied_log_indexes or [],
            row.nullifiers or [],
            row.commitments or [],
            fact,
        )
        if merged is None:
            logger.debug("Transaction %s already holds log %s", fact.id, fact.log_index)
            return

        applied_logs, nullifiers, commitments = merged
        await conn.execute(
            update(TransactionsDB)
            .where(TransactionsDB.id == fact.id)
            .values(
                applied_log_indexes=list(applied_logs),
                nullifiers=list(nullifiers),
                commitments=list(commitments),
            )
        )

        logger.debug(
            "Merged transaction %s: nullifiers=%s, commitments=%s",
            fact.id,
            len(nullifiers),
            len(commitments),
        )
