from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Final, Mapping, Sequence, TypeVar

from eth_utils import to_canonical_address, to_checksum_address
from web3 import AsyncWeb3
from web3.exceptions import Web3Exception

from shielded_indexer.app.domain.errors import ChainSourceError
from shielded_indexer.app.domain.models import RawLog, to_hex
from shielded_indexer.app.infrastructure.fetchers.provider_pool import ProviderPool


logger = logging.getLogger(__name__)

T = TypeVar("T")

# -32005 / -32016: provider rate limits; -32000 / -32603: generic server errors
_RETRYABLE_RPC_CODES: Final[frozenset[int]] = frozenset({-32005, -32016, -32000, -32603})


def _rpc_error_code(exc: BaseException) -> int | None:
    payload: Any = getattr(exc, "rpc_response", None)
    if isinstance(payload, Mapping):
        payload = payload.get("error")
    elif exc.args and isinstance(exc.args[0], Mapping):
        payload = exc.args[0]
    if isinstance(payload, Mapping) and isinstance(payload.get("code"), int):
        return payload["code"]
    return None


def is_retryable_rpc_error(exc: BaseException) -> bool:
    code = _rpc_error_code(exc)
    if code is not None:
        return code in _RETRYABLE_RPC_CODES
    # No JSON-RPC error object: transport failure (timeouts, resets, HTTP 429/5xx)
    return True


class Web3LogSource:
    """
    ChainLogSource backed by AsyncWeb3 (eth_getLogs + eth_getBlockByNumber).

    Requests go to the next provider of the pool; a retryable failure parks
    that provider and the request is retried on another one with linear
    backoff. Exhausted retries raise ChainSourceError. Block timestamps are
    fetched once per block within a single get_logs call.
    """

    def __init__(
        self,
        *,
        pool: ProviderPool,
        max_retries: int = 5,
        retry_delay_s: float = 0.25,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        self._pool = pool
        self._max_retries = max_retries
        self._retry_delay_s = retry_delay_s

    async def latest_block(self) -> int:
        return int(await self._call(lambda w3: w3.eth.block_number, "eth_blockNumber"))

    async def get_logs(
        self,
        *,
        address: str,
        topics: Sequence[bytes],
        from_block: int,
        to_block: int,
    ) -> list[RawLog]:
        filter_params: dict[str, Any] = {
            "address": to_checksum_address(address),
            "fromBlock": from_block,
            "toBlock": to_block,
        }
        if topics:
            # Single topic0 position, OR-ed across the given signatures
            filter_params["topics"] = [[to_hex(t) for t in topics]]
        entries = await self._call(
            lambda w3: w3.eth.get_logs(filter_params),
            f"eth_getLogs[{from_block}, {to_block}]",
        )

        # Per-call cache; blocks can be reorged between calls
        block_timestamps: dict[int, int] = {}
        logs: list[RawLog] = []
        for entry in entries:
            if entry.get("removed"):
                continue
            block_number = int(entry["blockNumber"])
            timestamp = entry.get("blockTimestamp")
            if timestamp is None:
                timestamp = await self._block_timestamp(block_number, block_timestamps)
            logs.append(
                RawLog(
                    contract_address=to_canonical_address(entry["address"]),
                    block_number=block_number,
                    block_timestamp=int(timestamp, 16) if isinstance(timestamp, str) else int(timestamp),
                    transaction_hash=bytes(entry["transactionHash"]),
                    log_index=int(entry["logIndex"]),
                    topics=tuple(bytes(t) for t in entry["topics"]),
                    data=bytes(entry["data"]),
                )
            )

        logs.sort(key=lambda log: log.sort_key)
        logger.debug(
            "Fetched %s logs for blocks [%s, %s]",
            len(logs),
            from_block,
            to_block,
        )
        return logs

    async def _block_timestamp(self, block_number: int, cache: dict[int, int]) -> int:
        cached = cache.get(block_number)
        if cached is not None:
            return cached
        block = await self._call(
            lambda w3: w3.eth.get_block(block_number),
            f"eth_getBlockByNumber[{block_number}]",
        )
        timestamp = int(block["timestamp"])
        cache[block_number] = timestamp
        return timestamp

    async def _call(
        self,
        request: Callable[[AsyncWeb3], Awaitable[T]],
        description: str,
    ) -> T:
        attempt = 0
        while True:
            provider = self._pool.acquire() or self._pool.soonest_available()
            try:
                result = await request(provider.w3)
            except (Web3Exception, ValueError, OSError, asyncio.TimeoutError) as exc:
                attempt += 1
                if not is_retryable_rpc_error(exc):
                    raise ChainSourceError(f"{description} failed on {provider.label}: {exc}") from exc
                self._pool.report_failure(provider)
                if attempt > self._max_retries:
                    raise ChainSourceError(f"{description} failed: {exc}") from exc
                delay = self._retry_delay_s * attempt
                logger.warning(
                    "RPC %s failed on %s (attempt %s/%s), retrying in %.2fs: %s",
                    description,
                    provider.label,
                    attempt,
                    self._max_retries,
                    delay,
                    exc,
                )
                await asyncio.sleep(delay)
                continue
            self._pool.report_success(provider)
            return result
