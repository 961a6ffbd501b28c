from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from types import MappingProxyType
from typing import Mapping

from shielded_indexer.app.domain.signatures import EventSignature
from shielded_indexer.app.infrastructure.abi.signature_parser import parse_event_signature
from shielded_indexer.app.infrastructure.registry.signature_registry import (
    SignatureRegistry,
    normalize_topic,
)


logger = logging.getLogger(__name__)


class TopicResolver:
    """
    Recovers schemas for topic hashes missing from the registry.

    Candidate signature strings are hashed in caller-supplied order and the
    first exact match wins. Successful resolutions are cached for the life
    of the process.

    The cache is read without locking: writers build a new mapping under a
    lock and publish it with a single reference swap.
    """

    def __init__(
        self,
        *,
        registry: SignatureRegistry,
        candidates: Sequence[str] = (),
    ) -> None:
        self._registry = registry
        self._candidates: tuple[str, ...] = tuple(candidates)
        self._cache: Mapping[bytes, EventSignature] = MappingProxyType({})
        self._write_lock = threading.Lock()
        # Parsed candidate schemas; parsing is deterministic so races are harmless.
        self._parsed: dict[str, EventSignature | None] = {}

    @property
    def cached(self) -> Mapping[bytes, EventSignature]:
        return self._cache

    def resolve(
        self,
        topic_hash: bytes | str,
        candidates: Sequence[str] | None = None,
    ) -> EventSignature | None:
        target = normalize_topic(topic_hash)

        hit = self._cache.get(target)
        if hit is not None:
            return hit

        for candidate in self._candidates if candidates is None else candidates:
            signature = self._parse_candidate(candidate)
            if signature is None or signature.topic_hash != target:
                continue
            logger.info(
                "Resolved topic %s via candidate %s",
                signature.topic_hash_hex,
                signature.canonical,
            )
            return self._publish(target, signature)

        logger.debug("No candidate matched topic 0x%s", target.hex())
        return None

    def lookup_or_resolve(self, topic_hash: bytes | str) -> EventSignature | None:
        """Registry first, then cached or freshly brute-forced candidates."""
        signature = self._registry.lookup(topic_hash)
        if signature is not None:
            return signature
        return self.resolve(topic_hash)

    def _parse_candidate(self, candidate: str) -> EventSignature | None:
        if candidate in self._parsed:
            return self._parsed[candidate]
        try:
            signature: EventSignature | None = parse_event_signature(candidate)
        except ValueError as exc:
            logger.warning("Skipping malformed candidate signature %r: %s", candidate, exc)
            signature = None
        self._parsed[candidate] = signature
        return signature

    def _publish(self, topic_hash: bytes, signature: EventSignature) -> EventSignature:
        with self._write_lock:
            current = self._cache.get(topic_hash)
            if current is not None:
                return current
            updated = dict(self._cache)
            updated[topic_hash] = signature
            self._cache = MappingProxyType(updated)
        return signature
