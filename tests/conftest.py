from typing import Any, Callable, Mapping, Sequence
from unittest.mock import AsyncMock

import pytest

from shielded_indexer.app.domain.models import RawLog
from shielded_indexer.app.domain.signatures import EventSignature
from shielded_indexer.app.infrastructure.adapters.store.checkpoint_stores import (
    InMemoryCheckpointStore,
)
from shielded_indexer.app.infrastructure.adapters.store.memory_fact_store import InMemoryFactStore
from shielded_indexer.app.infrastructure.decoders.log_decoder import encode_data
from shielded_indexer.app.infrastructure.registry.signature_registry import SignatureRegistry
from shielded_indexer.app.infrastructure.registry.topic_resolver import TopicResolver
from shielded_indexer.app.registry.eras import CANDIDATE_SIGNATURES

SHIELD_V2_1_TOPIC = "0x3a5b9dc26075a3801a6ddccf95fec485bb7500a91b44cec1add984c21ee6db3b"
POOL_ADDRESS = "0x" + "ee" * 20
TOKEN_ADDRESS = "0x" + "22" * 20

LogFactory = Callable[..., RawLog]


@pytest.fixture(scope="session")
def registry() -> SignatureRegistry:
    return SignatureRegistry.from_eras()


@pytest.fixture
def resolver(registry: SignatureRegistry) -> TopicResolver:
    return TopicResolver(registry=registry, candidates=CANDIDATE_SIGNATURES)


@pytest.fixture
def memory_store() -> InMemoryFactStore:
    return InMemoryFactStore()


@pytest.fixture
def memory_checkpoints() -> InMemoryCheckpointStore:
    return InMemoryCheckpointStore()


@pytest.fixture
def mock_log_source() -> AsyncMock:
    source = AsyncMock()
    source.get_logs = AsyncMock(return_value=[])
    source.latest_block = AsyncMock(return_value=100)
    return source


@pytest.fixture
def log_factory() -> LogFactory:
    def _make(
        signature: EventSignature,
        fields: Mapping[str, Any],
        *,
        tx: int = 1,
        log_index: int = 0,
        block_number: int = 10,
        indexed_topics: Sequence[bytes] = (),
        data: bytes | None = None,
    ) -> RawLog:
        return RawLog(
            contract_address=bytes.fromhex(POOL_ADDRESS[2:]),
            block_number=block_number,
            block_timestamp=1_700_000_000 + block_number,
            transaction_hash=tx.to_bytes(32, "big"),
            log_index=log_index,
            topics=(signature.topic_hash, *indexed_topics),
            data=encode_data(signature, fields) if data is None else data,
        )

    return _make


@pytest.fixture
def shield_fields() -> dict[str, Any]:
    return {
        "treeNumber": 0,
        "startPosition": 41,
        "commitments": [
            {
                "npk": b"\x11" * 32,
                "token": {"tokenType": 0, "tokenAddress": TOKEN_ADDRESS, "tokenSubID": 0},
                "value": 1_000,
            },
            {
                "npk": b"\x12" * 32,
                "token": {"tokenType": 0, "tokenAddress": TOKEN_ADDRESS, "tokenSubID": 0},
                "value": 2_500,
            },
        ],
        "shieldCiphertext": [
            {"encryptedBundle": [b"\x01" * 32, b"\x02" * 32, b"\x03" * 32], "shieldKey": b"\x04" * 32},
            {"encryptedBundle": [b"\x05" * 32, b"\x06" * 32, b"\x07" * 32], "shieldKey": b"\x08" * 32},
        ],
        "fees": [3, 7],
    }
