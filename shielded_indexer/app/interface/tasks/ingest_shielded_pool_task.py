from __future__ import annotations

import logging

from shielded_indexer.app.application.services.block_bounds import resolve_block_bounds
from shielded_indexer.app.application.services.ingest_shielded_pool import IngestStats
from shielded_indexer.app.config import settings
from shielded_indexer.app.infrastructure.db.engine import create_app_async_engine
from shielded_indexer.app.infrastructure.factories.ingest_service_factory import (
    ingest_service_factory,
)


logger = logging.getLogger(__name__)


async def ingest_shielded_pool_task(
    *,
    chain_id: int,
    from_block: int | str,
    to_block: int | str,
    backend: str = "sqlalchemy",
) -> IngestStats:
    """
    Task: ingest shielded pool events into the domain store.

    from_block / to_block can be:
    - int (a specific block number),
    - "earliest" (resume after the stored checkpoint, or the deployment block),
    - "latest" (the current chain head).
    """
    engine = create_app_async_engine() if backend == "sqlalchemy" else None
    try:
        service = ingest_service_factory(
            backend=backend,
            engine=engine,
            chain_id=chain_id,
        )

        block_range = await resolve_block_bounds(
            log_source=service.log_source,
            checkpoints=service.checkpoints,
            checkpoint_id=service.checkpoint_id,
            from_block=from_block,
            to_block=to_block,
            deployment_block=settings.deployment_block,
        )
        if block_range.from_block > block_range.to_block:
            logger.info(
                "Nothing to ingest: checkpoint already at block %s",
                block_range.from_block - 1,
            )
            return IngestStats()

        return await service.run(block_range)
    finally:
        if engine is not None:
            await engine.dispose()
