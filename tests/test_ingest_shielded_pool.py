import asyncio
from unittest.mock import MagicMock

import pytest
from eth_utils import keccak

from shielded_indexer.app.application.services.block_bounds import BlockRange
from shielded_indexer.app.application.services.chunk_scheduler import AdaptiveChunkScheduler
from shielded_indexer.app.application.services.extract_facts import FactExtractor
from shielded_indexer.app.application.services.ingest_shielded_pool import (
    REASON_DECODE_ERROR,
    REASON_UNRESOLVED,
    IngestShieldedPoolService,
    checkpoint_id_for_chain,
)
from shielded_indexer.app.domain.errors import ChainSourceError, StoreFatalError
from shielded_indexer.app.domain.models import (
    AppendToTransaction,
    Checkpoint,
    NewCommitment,
    NewNullifier,
    RawLog,
    TreePointer,
)
from shielded_indexer.app.infrastructure.adapters.store.checkpoint_stores import (
    InMemoryCheckpointStore,
)
from shielded_indexer.app.infrastructure.adapters.store.memory_fact_store import InMemoryFactStore
from shielded_indexer.app.infrastructure.decoders.log_decoder import AbiLogDecoder

from tests.conftest import POOL_ADDRESS, SHIELD_V2_1_TOPIC


CHECKPOINT_ID = checkpoint_id_for_chain(1)
UNKNOWN_TOPIC = keccak(text="Mystery(uint256)")


class FakeLogSource:
    def __init__(self, logs, *, head=100, delays=None, fail_from=None):
        self.logs = list(logs)
        self.head = head
        self.delays = delays or {}
        self.fail_from = fail_from
        self.calls: list[tuple[int, int]] = []

    async def latest_block(self) -> int:
        return self.head

    async def get_logs(self, *, address, topics, from_block, to_block):
        self.calls.append((from_block, to_block))
        await asyncio.sleep(self.delays.get(from_block, 0))
        if self.fail_from is not None and from_block >= self.fail_from:
            raise ChainSourceError(f"eth_getLogs[{from_block}, {to_block}] failed")
        return [log for log in self.logs if from_block <= log.block_number <= to_block]


class RecordingStore(InMemoryFactStore):
    def __init__(self, *, fail_at_block=None):
        super().__init__()
        self.applied = []
        self.fail_at_block = fail_at_block

    async def apply(self, fact):
        if self.fail_at_block is not None and getattr(fact, "block_number", -1) >= self.fail_at_block:
            raise StoreFatalError("constraint violated", fact=type(fact).__name__)
        self.applied.append(fact)
        await super().apply(fact)


class RecordingCheckpoints(InMemoryCheckpointStore):
    def __init__(self, initial=None):
        super().__init__(initial)
        self.saves: list[int] = []

    async def save(self, checkpoint_id, checkpoint):
        self.saves.append(checkpoint.block_number)
        await super().save(checkpoint_id, checkpoint)


def _service(log_source, store, checkpoints, resolver, *, decoder=None, **kwargs):
    params = dict(concurrency=2, block_batch_size=10)
    params.update(kwargs)
    return IngestShieldedPoolService(
        log_source=log_source,
        resolver=resolver,
        decoder=decoder or AbiLogDecoder(),
        extractor=FactExtractor(),
        store=store,
        checkpoints=checkpoints,
        contract_address=POOL_ADDRESS,
        topics=[],
        checkpoint_id=CHECKPOINT_ID,
        **params,
    )


@pytest.fixture
def nullified(registry):
    return registry.lookup(keccak(text="Nullified(uint16,bytes32[])"))


@pytest.fixture
def transact(registry):
    return registry.lookup(
        keccak(text="Transact(uint256,uint256,bytes32[],(bytes32[4],bytes32,bytes32,bytes,bytes)[])")
    )


@pytest.fixture
def mixed_logs(registry, log_factory, nullified, shield_fields):
    shield = registry.lookup(SHIELD_V2_1_TOPIC)
    unknown = RawLog(
        contract_address=bytes.fromhex(POOL_ADDRESS[2:]),
        block_number=15,
        block_timestamp=1,
        transaction_hash=(3).to_bytes(32, "big"),
        log_index=0,
        topics=(UNKNOWN_TOPIC,),
        data=b"\x00" * 32,
    )
    return [
        log_factory(shield, shield_fields, tx=1, block_number=5, log_index=0),
        log_factory(
            nullified,
            {"treeNumber": 0, "nullifier": [b"\x0a" * 32]},
            tx=2,
            block_number=5,
            log_index=1,
        ),
        unknown,
        log_factory(nullified, {}, tx=4, block_number=25, log_index=0, data=b"\x01\x02"),
    ]


@pytest.mark.asyncio
async def test_mixed_batch_counts_and_quarantine(mixed_logs, memory_store, memory_checkpoints, resolver):
    service = _service(FakeLogSource(mixed_logs), memory_store, memory_checkpoints, resolver)

    stats = await service.run(BlockRange(0, 29))

    assert stats.batches == 3
    assert stats.logs == 4
    assert stats.resolved == 2
    assert stats.unresolved == 1
    assert stats.decode_failed == 1
    # shield: token + 2 preimages + 2 commitments + 2 ciphertexts + append;
    # nullified: nullifier + append + hash; 2 quarantined
    assert stats.facts_applied == 8 + 3 + 2
    assert stats.tree_pointer == TreePointer(0, 42)

    reasons = sorted(q.reason for q in memory_store.quarantined.values())
    assert reasons == sorted([REASON_UNRESOLVED, REASON_DECODE_ERROR])
    unresolved = next(q for q in memory_store.quarantined.values() if q.reason == REASON_UNRESOLVED)
    assert unresolved.topics == (UNKNOWN_TOPIC,)
    assert unresolved.data == b"\x00" * 32

    assert await memory_checkpoints.load(CHECKPOINT_ID) == Checkpoint(29, TreePointer(0, 42))


@pytest.mark.asyncio
async def test_replay_is_idempotent(mixed_logs, memory_store, resolver):
    source = FakeLogSource(mixed_logs)

    await _service(source, memory_store, InMemoryCheckpointStore(), resolver).run(BlockRange(0, 29))
    first = memory_store.snapshot()
    await _service(source, memory_store, InMemoryCheckpointStore(), resolver).run(BlockRange(0, 29))

    assert memory_store.snapshot() == first


@pytest.mark.asyncio
async def test_identical_commitments_in_one_log_keep_both_slots(
    registry, log_factory, shield_fields, memory_store, resolver
):
    shield = registry.lookup(SHIELD_V2_1_TOPIC)
    twin = shield_fields["commitments"][0]
    fields = dict(shield_fields, commitments=[twin, twin])
    log = log_factory(shield, fields, tx=9, block_number=5, log_index=2)
    service = _service(FakeLogSource([log]), memory_store, InMemoryCheckpointStore(), resolver)

    await service.run(BlockRange(0, 9))
    first = memory_store.snapshot()
    await service.run(BlockRange(0, 9))

    assert memory_store.snapshot() == first
    rows = list(memory_store.commitments.values())
    assert len(rows) == 2
    assert rows[0].commitment == rows[1].commitment
    tx = memory_store.transactions[log.transaction_hash_hex]
    assert tx.commitments == (rows[0].commitment, rows[0].commitment)
    assert tx.applied_logs == (2,)


@pytest.mark.asyncio
async def test_malformed_topic0_is_quarantined(memory_store, memory_checkpoints, resolver):
    short = RawLog(
        contract_address=bytes.fromhex(POOL_ADDRESS[2:]),
        block_number=3,
        block_timestamp=1,
        transaction_hash=(5).to_bytes(32, "big"),
        log_index=0,
        topics=(b"\x01" * 31,),
        data=b"",
    )
    service = _service(FakeLogSource([short]), memory_store, memory_checkpoints, resolver)

    stats = await service.run(BlockRange(0, 9))

    assert stats.unresolved == 1
    (quarantined,) = memory_store.quarantined.values()
    assert quarantined.reason == REASON_UNRESOLVED
    assert quarantined.topics == (b"\x01" * 31,)
    assert (await memory_checkpoints.load(CHECKPOINT_ID)).block_number == 9


@pytest.mark.asyncio
async def test_tree_pointer_advances_from_stored_checkpoint(
    registry, log_factory, shield_fields, nullified, memory_store, resolver
):
    shield = registry.lookup(SHIELD_V2_1_TOPIC)
    logs = [
        log_factory(nullified, {"treeNumber": 0, "nullifier": [b"\x0a" * 32]}, tx=1, block_number=12),
        log_factory(shield, shield_fields, tx=2, block_number=25),
    ]
    checkpoints = RecordingCheckpoints({CHECKPOINT_ID: Checkpoint(9, TreePointer(0, 40))})
    service = _service(FakeLogSource(logs), memory_store, checkpoints, resolver, concurrency=1)

    await service.run(BlockRange(10, 19))
    assert await checkpoints.load(CHECKPOINT_ID) == Checkpoint(19, TreePointer(0, 40))

    await service.run(BlockRange(20, 29))
    assert await checkpoints.load(CHECKPOINT_ID) == Checkpoint(29, TreePointer(0, 42))


@pytest.mark.asyncio
async def test_unresolved_log_is_never_decoded(mixed_logs, memory_store, memory_checkpoints, resolver):
    decoder = MagicMock()
    only_unknown = [log for log in mixed_logs if log.topic0 == UNKNOWN_TOPIC]
    service = _service(
        FakeLogSource(only_unknown), memory_store, memory_checkpoints, resolver, decoder=decoder
    )

    stats = await service.run(BlockRange(10, 19))

    decoder.decode.assert_not_called()
    assert stats.unresolved == 1
    assert stats.resolved == 0


@pytest.mark.asyncio
async def test_fatal_store_error_halts_and_keeps_checkpoint(log_factory, nullified, resolver):
    logs = [
        log_factory(nullified, {"treeNumber": 0, "nullifier": [bytes([n]) * 32]}, tx=n, block_number=b)
        for n, b in ((1, 5), (2, 25), (3, 35))
    ]
    store = RecordingStore(fail_at_block=20)
    checkpoints = InMemoryCheckpointStore({CHECKPOINT_ID: Checkpoint(0)})
    source = FakeLogSource(logs)
    service = _service(source, store, checkpoints, resolver, concurrency=1)

    with pytest.raises(StoreFatalError):
        await service.run(BlockRange(1, 40))

    assert (await checkpoints.load(CHECKPOINT_ID)).block_number == 20
    assert service.stopping
    assert (31, 40) not in source.calls
    assert all(getattr(f, "block_number", 0) < 20 for f in store.applied)


@pytest.mark.asyncio
async def test_chain_source_error_propagates(memory_store, resolver):
    checkpoints = InMemoryCheckpointStore()
    service = _service(FakeLogSource([], fail_from=10), memory_store, checkpoints, resolver, concurrency=1)

    with pytest.raises(ChainSourceError):
        await service.run(BlockRange(0, 49))

    assert (await checkpoints.load(CHECKPOINT_ID)).block_number == 9


@pytest.mark.asyncio
async def test_stop_before_run_starts_no_batches(memory_store, memory_checkpoints, resolver):
    source = FakeLogSource([])
    service = _service(source, memory_store, memory_checkpoints, resolver)

    service.stop()
    stats = await service.run(BlockRange(0, 99))

    assert source.calls == []
    assert stats.batches == 0
    assert await memory_checkpoints.load(CHECKPOINT_ID) is None


@pytest.mark.asyncio
async def test_logs_of_one_transaction_apply_in_log_index_order(
    log_factory, nullified, transact, resolver
):
    ciphertext = {
        "ciphertext": [b"\x00" * 32] * 4,
        "blindedSenderViewingKey": b"\x01" * 32,
        "blindedReceiverViewingKey": b"\x02" * 32,
        "annotationData": b"",
        "memo": b"",
    }
    later = log_factory(nullified, {"treeNumber": 0, "nullifier": [b"\x0a" * 32]}, tx=7, log_index=3)
    earlier = log_factory(
        transact,
        {"treeNumber": 0, "startPosition": 0, "hash": [b"\xc1" * 32], "ciphertext": [ciphertext]},
        tx=7,
        log_index=1,
    )
    store = RecordingStore()
    service = _service(FakeLogSource([]), store, InMemoryCheckpointStore(), resolver)

    stats = await service.process_logs([later, earlier])

    kinds = [type(f) for f in store.applied]
    assert kinds.index(NewCommitment) < kinds.index(NewNullifier)
    appends = [f for f in store.applied if isinstance(f, AppendToTransaction)]
    assert [a.commitments is not None for a in appends] == [True, False]
    tx = store.transactions[appends[0].id]
    assert tx.commitments == (b"\xc1" * 32,)
    assert tx.nullifiers == (b"\x0a" * 32,)
    assert stats.resolved == 2


@pytest.mark.asyncio
async def test_checkpoint_only_advances_over_contiguous_batches(memory_store, resolver):
    # Earlier batches finish last
    delays = {0: 0.03, 10: 0.02, 20: 0.01}
    checkpoints = RecordingCheckpoints()
    service = _service(
        FakeLogSource([], delays=delays), memory_store, checkpoints, resolver, concurrency=4
    )

    stats = await service.run(BlockRange(0, 39))

    assert stats.batches == 4
    assert checkpoints.saves == sorted(checkpoints.saves)
    assert checkpoints.saves[-1] == 39
    assert checkpoints.saves[0] >= 9


@pytest.mark.asyncio
async def test_adaptive_scheduler_sizes_batches(memory_store, memory_checkpoints, resolver):
    scheduler = AdaptiveChunkScheduler(initial=5, minimum=5, maximum=5, target_duration_s=1.0)
    source = FakeLogSource([])
    service = _service(
        source, memory_store, memory_checkpoints, resolver, concurrency=1, scheduler=scheduler
    )

    await service.run(BlockRange(0, 11))

    assert source.calls == [(0, 4), (5, 9), (10, 11)]


def test_invalid_pool_settings(memory_store, memory_checkpoints, resolver):
    with pytest.raises(ValueError):
        _service(FakeLogSource([]), memory_store, memory_checkpoints, resolver, concurrency=0)
    with pytest.raises(ValueError):
        _service(FakeLogSource([]), memory_store, memory_checkpoints, resolver, block_batch_size=0)
