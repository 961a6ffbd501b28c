"""
Static signature configuration.

Each contract era ships the event ABI it emitted on-chain. Eras are loaded
in the order below, so an event whose canonical signature did not change
across upgrades (Transact, Nullified, Unshield) is attributed to the first
era that emitted it.
"""
from __future__ import annotations

from pathlib import Path
from typing import Final


ABI_DIR: Final[Path] = Path(__file__).resolve().parent / "abi"

SIGNATURE_ERAS: Final[dict[str, Path]] = {
    # RailgunLogic (legacy): uint256-encoded nullifiers and commitment batches
    "v1": ABI_DIR / "RailgunLogic_V1.json",
    # RailgunSmartWallet before shield fees were emitted
    "v2": ABI_DIR / "RailgunSmartWallet_V2.json",
    # RailgunSmartWallet with per-commitment shield fees
    "v2.1": ABI_DIR / "RailgunSmartWallet_V2_1.json",
}

# Tried in order against topic hashes missing from the eras above.
# Most likely shapes first.
CANDIDATE_SIGNATURES: Final[tuple[str, ...]] = (
    "Shield(uint256,uint256,(bytes32,(uint8,address,uint256),uint120)[],(bytes32[3],bytes32)[],uint256[])",
    "Shield(uint256,uint256,(bytes32,(uint8,address,uint256),uint120)[],(bytes32[3],bytes32)[])",
    "Transact(uint256,uint256,bytes32[],(bytes32[4],bytes32,bytes32,bytes,bytes)[])",
    "Nullified(uint16,bytes32[])",
    "Nullifiers(uint256,uint256[])",
    "Unshield(address,(uint8,address,uint256),uint256,uint256)",
    "CommitmentBatch(uint256,uint256,uint256[],(uint256[4],uint256[2],uint256[])[])",
    "GeneratedCommitmentBatch(uint256,uint256,(uint256,(uint8,address,uint256),uint120)[],uint256[2][])",
    "Shield(bytes32[],bytes32[],bytes32[],uint256,uint256,uint256,uint256,uint256)",
    "Shield(bytes32[],bytes32[],uint256,uint256,uint256)",
    "Transact(bytes32[],bytes32[],bytes32[],uint256,uint256,uint256)",
    "Nullifiers(bytes32[])",
    "Commitments(bytes32[])",
)
