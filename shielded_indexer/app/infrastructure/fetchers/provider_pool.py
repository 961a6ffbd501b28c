from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from web3 import AsyncWeb3


logger = logging.getLogger(__name__)


@dataclass
class ProviderStatus:
    label: str
    w3: AsyncWeb3
    consecutive_failures: int = 0
    cooldown_until: float | None = None


class ProviderPool:
    """
    Round-robin over RPC providers.

    A provider that fails is parked for `cooldown_s` seconds and skipped by
    `acquire` until the cooldown elapses; a success clears its failure
    streak. `acquire` returns None when every provider is cooling down.
    """

    def __init__(
        self,
        providers: Sequence[AsyncWeb3],
        *,
        labels: Sequence[str] | None = None,
        cooldown_s: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not providers:
            raise ValueError("At least one RPC provider must be configured")
        names = list(labels) if labels is not None else [f"rpc-{i}" for i in range(len(providers))]
        if len(names) != len(providers):
            raise ValueError("labels must match providers")
        self._providers = [ProviderStatus(label=n, w3=w3) for n, w3 in zip(names, providers)]
        self._cooldown_s = cooldown_s
        self._clock = clock
        self._cursor = 0

    def __len__(self) -> int:
        return len(self._providers)

    @property
    def providers(self) -> list[ProviderStatus]:
        return list(self._providers)

    def acquire(self) -> ProviderStatus | None:
        now = self._clock()
        for attempt in range(len(self._providers)):
            index = (self._cursor + attempt) % len(self._providers)
            status = self._providers[index]
            if status.cooldown_until is not None and status.cooldown_until > now:
                continue
            self._cursor = (index + 1) % len(self._providers)
            return status
        return None

    def soonest_available(self) -> ProviderStatus:
        """Provider whose cooldown ends first; used when all are cooling down."""
        return min(self._providers, key=lambda s: s.cooldown_until or 0.0)

    def report_success(self, status: ProviderStatus) -> None:
        status.consecutive_failures = 0
        status.cooldown_until = None

    def report_failure(self, status: ProviderStatus, cooldown_s: float | None = None) -> None:
        status.consecutive_failures += 1
        status.cooldown_until = self._clock() + (self._cooldown_s if cooldown_s is None else cooldown_s)
        logger.warning(
            "RPC provider %s cooling down (consecutive failures: %s)",
            status.label,
            status.consecutive_failures,
        )
