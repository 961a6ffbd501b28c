from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from .ingest_shielded_pool_task import ingest_shielded_pool_task
from .resolve_topic_task import resolve_topic_task

TaskFn = Callable[..., Awaitable[Any]]

TASKS: dict[str, TaskFn] = {
    "domain__ingest_shielded_pool_task": ingest_shielded_pool_task,
    "registry__resolve_topic_task": resolve_topic_task,
}
