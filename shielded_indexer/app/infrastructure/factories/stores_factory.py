from __future__ import annotations

from typing import Callable, Dict

from sqlalchemy.ext.asyncio import AsyncEngine

from shielded_indexer.app.config import settings
from shielded_indexer.app.domain.ports.out import CheckpointStore, FactStore
from shielded_indexer.app.infrastructure.adapters.store.checkpoint_stores import (
    InMemoryCheckpointStore,
    SqlAlchemyCheckpointStore,
)
from shielded_indexer.app.infrastructure.adapters.store.memory_fact_store import InMemoryFactStore
from shielded_indexer.app.infrastructure.adapters.store.retry import StoreRetryPolicy
from shielded_indexer.app.infrastructure.adapters.store.sqlalchemy_fact_store import (
    SqlAlchemyFactStore,
)

StoresFactory = Callable[[AsyncEngine | None], tuple[FactStore, CheckpointStore]]

_STORES_REGISTRY: Dict[str, StoresFactory] = {}


def _retry_policy() -> StoreRetryPolicy:
    return StoreRetryPolicy(
        max_retries=settings.store_max_retries,
        base_delay_s=settings.store_retry_base_delay_s,
        max_delay_s=settings.store_retry_max_delay_s,
    )


def _make_sqlalchemy_stores(engine: AsyncEngine | None) -> tuple[FactStore, CheckpointStore]:
    if engine is None:
        raise ValueError("sqlalchemy backend requires an AsyncEngine")
    policy = _retry_policy()
    return (
        SqlAlchemyFactStore(engine, retry_policy=policy),
        SqlAlchemyCheckpointStore(engine, retry_policy=policy),
    )


def _make_memory_stores(engine: AsyncEngine | None) -> tuple[FactStore, CheckpointStore]:
    _ = engine  # intentionally unused
    return InMemoryFactStore(), InMemoryCheckpointStore()


# Register backends
_STORES_REGISTRY["sqlalchemy"] = _make_sqlalchemy_stores
_STORES_REGISTRY["memory"] = _make_memory_stores


def stores_factory(
    *,
    backend: str,
    engine: AsyncEngine | None,
) -> tuple[FactStore, CheckpointStore]:
    """
    Create the fact store and checkpoint store for the given backend.

    - "sqlalchemy": PostgreSQL via the shared AsyncEngine,
    - "memory": process-local dicts (dry runs, tests).
    """
    try:
        factory = _STORES_REGISTRY[backend]
    except KeyError:
        raise ValueError(f"Unsupported store backend: {backend!r}")

    return factory(engine)


def supported_backends() -> list[str]:
    return sorted(_STORES_REGISTRY)
