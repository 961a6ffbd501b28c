from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from eth_utils import to_bytes

from shielded_indexer.app.domain.signatures import EventSignature
from shielded_indexer.app.infrastructure.abi.signature_parser import (
    event_signatures_from_abi_file,
)
from shielded_indexer.app.registry.eras import SIGNATURE_ERAS


logger = logging.getLogger(__name__)


def normalize_topic(topic: bytes | str) -> bytes:
    """Accept raw 32 bytes or a 0x-hex string (any case)."""
    if isinstance(topic, str):
        raw = to_bytes(hexstr=topic.strip())
    else:
        raw = bytes(topic)
    if len(raw) != 32:
        raise ValueError(f"Topic hash must be 32 bytes, got len={len(raw)}")
    return raw


class SignatureRegistry:
    """
    Static table of known event signatures keyed by topic hash.

    Populated once at process start; read-only afterwards. Several versions
    may share an event name (e.g. Shield with and without fees), each with
    its own topic hash.
    """

    def __init__(self, signatures: Iterable[EventSignature] = ()) -> None:
        self._by_topic: dict[bytes, EventSignature] = {}
        self._by_name: dict[str, list[EventSignature]] = {}
        for signature in signatures:
            self._register(signature)

    @classmethod
    def from_eras(cls, eras: Sequence[str] | None = None) -> SignatureRegistry:
        selected = list(SIGNATURE_ERAS) if eras is None else list(eras)
        signatures: list[EventSignature] = []
        for era in selected:
            try:
                abi_path = SIGNATURE_ERAS[era]
            except KeyError:
                raise ValueError(f"Unknown signature era: {era!r}")
            signatures.extend(event_signatures_from_abi_file(abi_path, version=era))

        registry = cls(signatures)
        logger.info(
            "Loaded signature registry: eras=%s, signatures=%s",
            selected,
            len(registry),
        )
        return registry

    def _register(self, signature: EventSignature) -> None:
        existing = self._by_topic.get(signature.topic_hash)
        if existing is not None:
            if existing.canonical != signature.canonical:
                raise ValueError(
                    f"Topic hash collision between {existing.canonical!r} "
                    f"and {signature.canonical!r}"
                )
            logger.debug(
                "Signature %s already registered by era %s; skipping era %s",
                signature.canonical,
                existing.version,
                signature.version,
            )
            return
        self._by_topic[signature.topic_hash] = signature
        self._by_name.setdefault(signature.name, []).append(signature)

    def lookup(self, topic_hash: bytes | str) -> EventSignature | None:
        return self._by_topic.get(normalize_topic(topic_hash))

    def all_candidates(self, event_name: str) -> tuple[EventSignature, ...]:
        return tuple(self._by_name.get(event_name, ()))

    def topics(self) -> list[bytes]:
        return list(self._by_topic)

    def __len__(self) -> int:
        return len(self._by_topic)

    def __contains__(self, topic_hash: object) -> bool:
        if not isinstance(topic_hash, (bytes, str)):
            return False
        return self.lookup(topic_hash) is not None
