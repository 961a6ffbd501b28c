from __future__ import annotations

from typing import Iterable, Protocol, Sequence

from shielded_indexer.app.domain.models import Checkpoint, DecodedEvent, Fact, RawLog
from shielded_indexer.app.domain.signatures import EventSignature


class ChainLogSource(Protocol):
    """
    Port for reading raw event logs from a chain.

    The core depends only on the RawLog fields, never on a specific
    provider's transport. Implementations return logs ordered by
    (block_number, log_index) and raise ChainSourceError once their own
    retry budget is exhausted. An empty `topics` sequence means all logs
    emitted by `address`.
    """

    async def latest_block(self) -> int: ...

    async def get_logs(
        self,
        *,
        address: str,
        topics: Sequence[bytes],
        from_block: int,
        to_block: int,
    ) -> list[RawLog]: ...


class EventLogDecoder(Protocol):
    def decode(self, log: RawLog, signature: EventSignature) -> DecodedEvent:
        """
        Decode topics + data against a resolved signature.

        Raises DecodeError for malformed input; never anything else.
        """
        ...


class FactStore(Protocol):
    """
    Port for persisting extracted facts.

    The store exclusively owns persisted entities. Every fact is applied
    idempotently:
      - nullifiers/commitments/unshields: insert-if-absent by positional id,
      - verification hashes: upsert keyed by the hash itself,
      - tokens/preimages/ciphertexts: insert-if-absent by id,
      - transactions: read-modify-write append keyed by log index,
      - quarantined logs: upsert keyed by (transaction_hash, log_index).

    `apply_all` applies its facts atomically: all of them or none.

    Raises StoreTransientError when retries are exhausted and StoreFatalError
    for schema/constraint violations.
    """

    async def apply(self, fact: Fact) -> None: ...

    async def apply_all(self, facts: Iterable[Fact]) -> int: ...


class CheckpointStore(Protocol):
    """
    Port for recording the highest fully-applied block per ingestion stream,
    together with the commitment tree pointer reached at that block.
    """

    async def load(self, checkpoint_id: str) -> Checkpoint | None: ...

    async def save(self, checkpoint_id: str, checkpoint: Checkpoint) -> None: ...
