from __future__ import annotations

import logging

from sqlalchemy import case, func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncEngine

from shielded_indexer.app.domain.models import Checkpoint, TreePointer
from shielded_indexer.app.infrastructure.adapters.store.retry import (
    StoreRetryPolicy,
    run_with_retry,
)
from shielded_indexer.app.infrastructure.db.models.ingest.checkpoints import CheckpointsDB


logger = logging.getLogger(__name__)


class SqlAlchemyCheckpointStore:
    """
    Checkpoints persisted in ingest.checkpoints.

    Saves never move a checkpoint backwards (GREATEST on conflict), so
    re-running an older range cannot rewind a stream. The tree pointer is
    only replaced by a save at or beyond the stored block.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        retry_policy: StoreRetryPolicy | None = None,
    ) -> None:
        self._engine = engine
        self._retry_policy = retry_policy or StoreRetryPolicy()

    async def load(self, checkpoint_id: str) -> Checkpoint | None:
        async def _load() -> Checkpoint | None:
            async with self._engine.connect() as conn:
                result = await conn.execute(
                    select(
                        CheckpointsDB.block_number,
                        CheckpointsDB.tree_number,
                        CheckpointsDB.tree_position,
                    ).where(CheckpointsDB.id == checkpoint_id)
                )
                row = result.one_or_none()
            if row is None:
                return None
            return Checkpoint(
                block_number=row.block_number,
                tree_pointer=TreePointer(row.tree_number, row.tree_position),
            )

        return await run_with_retry(
            _load,
            policy=self._retry_policy,
            description=f"Checkpoint({checkpoint_id})",
        )

    async def save(self, checkpoint_id: str, checkpoint: Checkpoint) -> None:
        stmt = insert(CheckpointsDB).values(
            id=checkpoint_id,
            block_number=checkpoint.block_number,
            tree_number=checkpoint.tree_pointer.tree_number,
            tree_position=checkpoint.tree_pointer.tree_position,
        )
        advances = stmt.excluded.block_number >= CheckpointsDB.block_number
        stmt = stmt.on_conflict_do_update(
            index_elements=[CheckpointsDB.id],
            set_={
                "block_number": func.greatest(CheckpointsDB.block_number, stmt.excluded.block_number),
                "tree_number": case(
                    (advances, stmt.excluded.tree_number), else_=CheckpointsDB.tree_number
                ),
                "tree_position": case(
                    (advances, stmt.excluded.tree_position), else_=CheckpointsDB.tree_position
                ),
                "updated_at": func.now(),
            },
        )

        async def _save() -> None:
            async with self._engine.begin() as conn:
                await conn.execute(stmt)

        await run_with_retry(
            _save,
            policy=self._retry_policy,
            description=f"Checkpoint({checkpoint_id})",
        )
        logger.debug(
            "Checkpoint %s saved at block %s (tree %s, position %s)",
            checkpoint_id,
            checkpoint.block_number,
            checkpoint.tree_pointer.tree_number,
            checkpoint.tree_pointer.tree_position,
        )


class InMemoryCheckpointStore:
    def __init__(self, initial: dict[str, Checkpoint] | None = None) -> None:
        self.checkpoints: dict[str, Checkpoint] = dict(initial or {})

    async def load(self, checkpoint_id: str) -> Checkpoint | None:
        return self.checkpoints.get(checkpoint_id)

    async def save(self, checkpoint_id: str, checkpoint: Checkpoint) -> None:
        current = self.checkpoints.get(checkpoint_id)
        if current is None or checkpoint.block_number >= current.block_number:
            self.checkpoints[checkpoint_id] = checkpoint
