from __future__ import annotations

import logging
from collections.abc import Sequence

from shielded_indexer.app.domain.signatures import EventSignature
from shielded_indexer.app.infrastructure.factories.ingest_service_factory import make_topic_resolver


logger = logging.getLogger(__name__)


async def resolve_topic_task(
    *,
    topic_hash: str,
    candidates: Sequence[str] = (),
) -> EventSignature | None:
    """
    Task: identify an event signature for a topic hash.

    Looks the hash up in the static registry first, then tries the given
    candidates (or the configured candidate list when none are given).
    """
    resolver = make_topic_resolver()
    if candidates:
        signature = resolver.resolve(topic_hash, candidates)
    else:
        signature = resolver.lookup_or_resolve(topic_hash)

    if signature is None:
        logger.warning("No known or candidate signature matches %s", topic_hash)
    else:
        logger.info(
            "Topic %s -> %s (version=%s)",
            topic_hash,
            signature.canonical,
            signature.version,
        )
    return signature
