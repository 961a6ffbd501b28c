from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Final, TypeVar

from sqlalchemy.exc import (
    DataError,
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    ProgrammingError,
    SQLAlchemyError,
)

from shielded_indexer.app.domain.errors import StoreFatalError, StoreTransientError


logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected, connection_exception family,
# admin_shutdown, cannot_connect_now
_TRANSIENT_SQLSTATES: Final[frozenset[str]] = frozenset(
    {"40001", "40P01", "08000", "08001", "08003", "08006", "57P01", "57P03"}
)


@dataclass(frozen=True)
class StoreRetryPolicy:
    max_retries: int = 5
    base_delay_s: float = 0.25
    max_delay_s: float = 5.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.base_delay_s < 0 or self.max_delay_s < 0:
            raise ValueError("retry delays must be non-negative")

    def delay(self, attempt: int) -> float:
        """Capped exponential backoff for the given 1-based attempt."""
        return min(self.max_delay_s, self.base_delay_s * (2 ** (attempt - 1)))


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = exc.orig
    for candidate in (orig, getattr(orig, "__cause__", None)):
        for attr in ("sqlstate", "pgcode"):
            value = getattr(candidate, attr, None)
            if isinstance(value, str):
                return value
    return None


def is_transient(exc: BaseException) -> bool:
    """
    Connection loss and serialization conflicts are worth retrying;
    constraint and schema violations are not.
    """
    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated:
            return True
        if _sqlstate(exc) in _TRANSIENT_SQLSTATES:
            return True
        if isinstance(exc, (IntegrityError, DataError, ProgrammingError)):
            return False
        return isinstance(exc, (OperationalError, InterfaceError))
    return isinstance(exc, (OSError, asyncio.TimeoutError))


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: StoreRetryPolicy,
    description: str,
) -> T:
    attempt = 0
    while True:
        try:
            return await operation()
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
            if not is_transient(exc):
                logger.error("Fatal store error while writing %s: %s", description, exc)
                raise StoreFatalError(f"Store rejected write: {exc}", fact=description) from exc

            attempt += 1
            if attempt > policy.max_retries:
                logger.error(
                    "Giving up on %s after %s attempts: %s",
                    description,
                    attempt,
                    exc,
                )
                raise StoreTransientError(
                    f"Store still unavailable after {policy.max_retries} retries: {exc}",
                    fact=description,
                ) from exc

            delay = policy.delay(attempt)
            logger.warning(
                "Transient store error on %s (attempt %s/%s), retrying in %.2fs: %s",
                description,
                attempt,
                policy.max_retries,
                delay,
                exc,
            )
            await asyncio.sleep(delay)
