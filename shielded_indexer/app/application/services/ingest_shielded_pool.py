from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, fields
from typing import Final, Sequence

from shielded_indexer.app.application.services.block_bounds import BlockRange
from shielded_indexer.app.application.services.chunk_scheduler import AdaptiveChunkScheduler
from shielded_indexer.app.application.services.extract_facts import FactExtractor
from shielded_indexer.app.domain.errors import DecodeError, SignatureUnresolved
from shielded_indexer.app.domain.models import (
    Checkpoint,
    Fact,
    NewCommitment,
    QuarantinedLog,
    RawLog,
    TreePointer,
    to_hex,
)
from shielded_indexer.app.domain.ports.out import (
    ChainLogSource,
    CheckpointStore,
    EventLogDecoder,
    FactStore,
)
from shielded_indexer.app.infrastructure.registry.topic_resolver import TopicResolver


logger = logging.getLogger(__name__)

_DEFAULT_BLOCK_BATCH_SIZE: Final[int] = 2_000
_DEFAULT_CONCURRENCY: Final[int] = 4

REASON_UNRESOLVED: Final[str] = "unresolved"
REASON_DECODE_ERROR: Final[str] = "decode_error"


def checkpoint_id_for_chain(chain_id: int) -> str:
    return f"shielded-pool-{chain_id}"


@dataclass
class IngestStats:
    """
    Per-range counters exposed to operators.

    `resolved` counts logs that were resolved and decoded; `decode_failed`
    counts logs whose signature resolved but whose payload did not decode.
    A rising `unresolved` count is the signal of a new contract version.
    `tree_pointer` is the highest commitment slot applied, if any.
    """

    batches: int = 0
    logs: int = 0
    resolved: int = 0
    unresolved: int = 0
    decode_failed: int = 0
    facts_applied: int = 0
    tree_pointer: TreePointer | None = None

    def merge(self, other: IngestStats) -> None:
        for f in fields(self):
            if f.name == "tree_pointer":
                continue
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))
        self.tree_pointer = max_pointer(self.tree_pointer, other.tree_pointer)


def max_pointer(a: TreePointer | None, b: TreePointer | None) -> TreePointer | None:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


class IngestShieldedPoolService:
    """
    Drives raw logs through resolve -> decode -> extract -> apply.

    Concurrency model:
    - a bounded pool of workers pulls block batches in ascending order,
    - a batch is handled by one worker, logs grouped per transaction and
      applied in (block_number, log_index) order,
    - decoding is pure; only the chain source and the store are awaited,
    - the checkpoint advances to the end of the highest contiguous run of
      fully-applied batches, so a crash resumes without gaps,
    - the commitment tree pointer is saved with the checkpoint and covers
      exactly the batches the checkpoint covers.

    Unresolved and undecodable logs are quarantined and counted. Store and
    chain source errors stop new batches from starting; in-flight batches
    finish and the first error is re-raised.
    """

    def __init__(
        self,
        *,
        log_source: ChainLogSource,
        resolver: TopicResolver,
        decoder: EventLogDecoder,
        extractor: FactExtractor,
        store: FactStore,
        checkpoints: CheckpointStore,
        contract_address: str,
        topics: Sequence[bytes],
        checkpoint_id: str,
        concurrency: int = _DEFAULT_CONCURRENCY,
        block_batch_size: int = _DEFAULT_BLOCK_BATCH_SIZE,
        scheduler: AdaptiveChunkScheduler | None = None,
    ) -> None:
        if concurrency <= 0:
            raise ValueError("concurrency must be positive")
        if block_batch_size <= 0:
            raise ValueError("block_batch_size must be positive")
        self._log_source = log_source
        self._resolver = resolver
        self._decoder = decoder
        self._extractor = extractor
        self._store = store
        self._checkpoints = checkpoints
        self._contract_address = contract_address
        self._topics = list(topics)
        self._checkpoint_id = checkpoint_id
        self._concurrency = concurrency
        self._block_batch_size = block_batch_size
        self._scheduler = scheduler

        self._stop = asyncio.Event()
        self._checkpoint_lock = asyncio.Lock()

    def stop(self) -> None:
        """Let in-flight batches finish, start no new ones."""
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    @property
    def log_source(self) -> ChainLogSource:
        return self._log_source

    @property
    def checkpoints(self) -> CheckpointStore:
        return self._checkpoints

    @property
    def checkpoint_id(self) -> str:
        return self._checkpoint_id

    async def run(self, block_range: BlockRange) -> IngestStats:
        block_range.validate()

        logger.info(
            "Ingesting shielded pool logs: contract=%s, blocks=[%s, %s], concurrency=%s",
            self._contract_address,
            block_range.from_block,
            block_range.to_block,
            self._concurrency,
        )

        totals = IngestStats()
        cursor = block_range.from_block
        completed: dict[int, tuple[int, TreePointer | None]] = {}
        stored = await self._checkpoints.load(self._checkpoint_id)
        pointer = None if stored is None else stored.tree_pointer
        contiguous_from = block_range.from_block
        failures: list[BaseException] = []

        def next_batch() -> BlockRange | None:
            nonlocal cursor
            if self._stop.is_set() or cursor > block_range.to_block:
                return None
            size = self._scheduler.next_size() if self._scheduler else self._block_batch_size
            batch = BlockRange(
                from_block=cursor,
                to_block=min(cursor + size - 1, block_range.to_block),
            )
            cursor = batch.to_block + 1
            return batch

        async def mark_done(batch: BlockRange, batch_pointer: TreePointer | None) -> None:
            nonlocal contiguous_from, pointer
            async with self._checkpoint_lock:
                completed[batch.from_block] = (batch.to_block, batch_pointer)
                advanced: int | None = None
                while contiguous_from in completed:
                    advanced, done_pointer = completed.pop(contiguous_from)
                    pointer = max_pointer(pointer, done_pointer)
                    contiguous_from = advanced + 1
                if advanced is not None:
                    checkpoint = Checkpoint(
                        block_number=advanced,
                        tree_pointer=pointer or TreePointer(),
                    )
                    await self._checkpoints.save(self._checkpoint_id, checkpoint)
                    logger.debug(
                        "Checkpoint %s advanced to %s (tree %s, position %s)",
                        self._checkpoint_id,
                        advanced,
                        checkpoint.tree_pointer.tree_number,
                        checkpoint.tree_pointer.tree_position,
                    )

        async def worker(worker_id: int) -> None:
            while True:
                batch = next_batch()
                if batch is None:
                    return
                started = time.monotonic()
                try:
                    stats = await self._process_batch(batch)
                    await mark_done(batch, stats.tree_pointer)
                except Exception as exc:
                    if self._scheduler:
                        self._scheduler.feedback(time.monotonic() - started, success=False)
                    logger.error(
                        "Worker %s halted on blocks [%s, %s]: %s",
                        worker_id,
                        batch.from_block,
                        batch.to_block,
                        exc,
                    )
                    failures.append(exc)
                    self._stop.set()
                    return
                if self._scheduler:
                    self._scheduler.feedback(time.monotonic() - started)
                totals.merge(stats)

        await asyncio.gather(*(worker(i) for i in range(self._concurrency)))

        logger.info(
            "Finished ingesting blocks [%s, %s]: batches=%s, logs=%s, resolved=%s, "
            "unresolved=%s, decode_failed=%s, facts_applied=%s, tree_pointer=%s",
            block_range.from_block,
            min(contiguous_from - 1, block_range.to_block),
            totals.batches,
            totals.logs,
            totals.resolved,
            totals.unresolved,
            totals.decode_failed,
            totals.facts_applied,
            totals.tree_pointer,
        )

        if failures:
            raise failures[0]
        return totals

    async def _process_batch(self, batch: BlockRange) -> IngestStats:
        logs = await self._log_source.get_logs(
            address=self._contract_address,
            topics=self._topics,
            from_block=batch.from_block,
            to_block=batch.to_block,
        )
        stats = await self.process_logs(logs)
        stats.batches = 1

        logger.info(
            "Batch [%s, %s]: logs=%s, resolved=%s, unresolved=%s, decode_failed=%s, facts=%s",
            batch.from_block,
            batch.to_block,
            stats.logs,
            stats.resolved,
            stats.unresolved,
            stats.decode_failed,
            stats.facts_applied,
        )
        return stats

    async def process_logs(self, logs: Sequence[RawLog]) -> IngestStats:
        """Resolve, decode, extract and apply one batch of logs."""
        stats = IngestStats(logs=len(logs))

        by_transaction: dict[bytes, list[RawLog]] = {}
        for log in sorted(logs, key=lambda log: log.sort_key):
            by_transaction.setdefault(log.transaction_hash, []).append(log)

        for tx_logs in by_transaction.values():
            facts: list[Fact] = []
            for log in tx_logs:
                facts.extend(self._facts_for_log(log, stats))
            stats.facts_applied += await self._store.apply_all(facts)
            for fact in facts:
                if isinstance(fact, NewCommitment):
                    stats.tree_pointer = max_pointer(
                        stats.tree_pointer,
                        TreePointer(fact.tree_number, fact.tree_position),
                    )

        return stats

    def _facts_for_log(self, log: RawLog, stats: IngestStats) -> list[Fact]:
        topic0 = log.topic0
        try:
            signature = None if topic0 is None else self._resolver.lookup_or_resolve(topic0)
        except ValueError as exc:
            # Topic is not a 32-byte hash; no schema can ever match it
            logger.warning("Malformed topic0 %s: %s", to_hex(topic0), exc)
            signature = None
        if signature is None:
            stats.unresolved += 1
            error = SignatureUnresolved(
                topic_hash="<anonymous>" if topic0 is None else to_hex(topic0),
                transaction_hash=log.transaction_hash_hex,
                log_index=log.log_index,
            )
            logger.warning("Quarantining log: %s", error)
            return [QuarantinedLog.from_log(log, reason=REASON_UNRESOLVED, detail=str(error))]

        try:
            event = self._decoder.decode(log, signature)
            facts = self._extractor.extract(event, log)
        except DecodeError as exc:
            stats.decode_failed += 1
            logger.warning("Quarantining log: %s", exc)
            return [QuarantinedLog.from_log(log, reason=REASON_DECODE_ERROR, detail=str(exc))]

        stats.resolved += 1
        return facts
