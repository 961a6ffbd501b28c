from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from shielded_indexer.app.domain.ports.out import ChainLogSource, CheckpointStore


BlockSelector = int | str
_EARLIEST: Literal["earliest"] = "earliest"
_LATEST: Literal["latest"] = "latest"


@dataclass(frozen=True)
class BlockRange:
    from_block: int
    to_block: int

    def validate(self) -> None:
        if self.from_block < 0 or self.to_block < 0:
            raise ValueError("Block numbers must be non-negative")
        if self.from_block > self.to_block:
            raise ValueError("from_block must be <= to_block")


def _as_block_number(value: BlockSelector) -> int | None:
    if isinstance(value, int):
        return value
    stripped = value.strip()
    if stripped.isdigit():
        return int(stripped)
    return None


async def resolve_block_bounds(
    *,
    log_source: ChainLogSource,
    checkpoints: CheckpointStore,
    checkpoint_id: str,
    from_block: BlockSelector,
    to_block: BlockSelector,
    deployment_block: int = 0,
) -> BlockRange:
    """
    Resolve from_block / to_block into concrete block numbers.

    - ints (or digit strings) are returned as-is,
    - from_block "earliest" / "" -> block after the stored checkpoint, or the
      contract deployment block when the stream has never run,
    - to_block "latest" / ""     -> current chain head.
    """
    fb = _as_block_number(from_block)
    if fb is None:
        fb_str = str(from_block).strip().lower()
        if fb_str not in ("", _EARLIEST):
            raise ValueError(f"Unsupported from_block value: {from_block!r}")
        checkpoint = await checkpoints.load(checkpoint_id)
        fb = (
            deployment_block
            if checkpoint is None
            else max(checkpoint.block_number + 1, deployment_block)
        )

    tb = _as_block_number(to_block)
    if tb is None:
        tb_str = str(to_block).strip().lower()
        if tb_str not in ("", _LATEST):
            raise ValueError(f"Unsupported to_block value: {to_block!r}")
        tb = await log_source.latest_block()

    return BlockRange(from_block=fb, to_block=tb)
