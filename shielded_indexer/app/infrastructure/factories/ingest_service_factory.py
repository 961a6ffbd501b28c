from __future__ import annotations

from urllib.parse import urlsplit

from sqlalchemy.ext.asyncio import AsyncEngine
from web3 import AsyncHTTPProvider, AsyncWeb3

from shielded_indexer.app.application.services.chunk_scheduler import AdaptiveChunkScheduler
from shielded_indexer.app.application.services.extract_facts import FactExtractor
from shielded_indexer.app.application.services.ingest_shielded_pool import (
    IngestShieldedPoolService,
    checkpoint_id_for_chain,
)
from shielded_indexer.app.config import settings
from shielded_indexer.app.domain.ports.out import ChainLogSource
from shielded_indexer.app.infrastructure.decoders.log_decoder import AbiLogDecoder
from shielded_indexer.app.infrastructure.factories.stores_factory import stores_factory
from shielded_indexer.app.infrastructure.fetchers.provider_pool import ProviderPool
from shielded_indexer.app.infrastructure.fetchers.web3_log_source import Web3LogSource
from shielded_indexer.app.infrastructure.registry.signature_registry import SignatureRegistry
from shielded_indexer.app.infrastructure.registry.topic_resolver import TopicResolver
from shielded_indexer.app.registry.eras import CANDIDATE_SIGNATURES


def make_topic_resolver(registry: SignatureRegistry | None = None) -> TopicResolver:
    if registry is None:
        registry = SignatureRegistry.from_eras(settings.signature_eras)
    return TopicResolver(registry=registry, candidates=CANDIDATE_SIGNATURES)


def make_log_source() -> Web3LogSource:
    endpoints = settings.rpc_endpoints
    providers = [
        AsyncWeb3(AsyncHTTPProvider(url, request_kwargs={"timeout": settings.rpc_timeout_s}))
        for url in endpoints
    ]
    pool = ProviderPool(
        providers,
        labels=[urlsplit(url).netloc or url for url in endpoints],
        cooldown_s=settings.rpc_provider_cooldown_s,
    )
    return Web3LogSource(
        pool=pool,
        max_retries=settings.rpc_max_retries,
        retry_delay_s=settings.rpc_retry_delay_s,
    )


def ingest_service_factory(
    *,
    backend: str,
    engine: AsyncEngine | None,
    chain_id: int,
    log_source: ChainLogSource | None = None,
) -> IngestShieldedPoolService:
    """
    Wire the ingestion pipeline:
    - signature registry (static eras) + candidate-backed topic resolver,
    - ABI log decoder and fact extractor,
    - fact/checkpoint stores for the backend,
    - web3 log source rotating over the configured RPC providers.

    By default every log of the pool contract is fetched (no topic filter)
    so that unknown event shapes surface as unresolved instead of being
    skipped. INGEST_TOPIC_FILTER narrows eth_getLogs to registry topics.
    """
    if not settings.shielded_pool_address:
        raise ValueError("SHIELDED_POOL_ADDRESS must be configured")

    store, checkpoints = stores_factory(backend=backend, engine=engine)
    registry = SignatureRegistry.from_eras(settings.signature_eras)
    topics = registry.topics() if settings.ingest_topic_filter else []

    scheduler = None
    if settings.ingest_adaptive_chunks:
        scheduler = AdaptiveChunkScheduler(
            initial=settings.ingest_block_batch_size,
            minimum=max(1, settings.ingest_block_batch_size // 4),
            maximum=settings.ingest_block_batch_size * 4,
        )

    return IngestShieldedPoolService(
        log_source=log_source or make_log_source(),
        resolver=make_topic_resolver(registry),
        decoder=AbiLogDecoder(),
        extractor=FactExtractor(),
        store=store,
        checkpoints=checkpoints,
        contract_address=settings.shielded_pool_address,
        topics=topics,
        checkpoint_id=checkpoint_id_for_chain(chain_id),
        concurrency=settings.ingest_concurrency,
        block_batch_size=settings.ingest_block_batch_size,
        scheduler=scheduler,
    )
