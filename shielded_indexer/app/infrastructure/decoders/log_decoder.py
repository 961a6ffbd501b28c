from __future__ import annotations

from typing import Any, Mapping

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.exceptions import DecodingError

from shielded_indexer.app.domain.errors import DecodeError
from shielded_indexer.app.domain.models import DecodedEvent, IndexedTopicHash, RawLog, to_hex
from shielded_indexer.app.domain.signatures import AbiParam, EventSignature


# eth_abi surfaces malformed payloads as DecodingError subclasses
# (InsufficientDataBytes, InvalidPointer, NonEmptyPaddingBytes); offset
# arithmetic can still escape as OverflowError / ValueError.
_DECODE_FAILURES = (DecodingError, OverflowError, ValueError)


class AbiLogDecoder:
    """
    Schema-driven decoder for raw EVM logs.

    - indexed value types (address, bool, intN, uintN, bytesN) are decoded
      from their 32-byte topic,
    - indexed reference types are exposed as `IndexedTopicHash`, the original
      value is not recoverable,
    - non-indexed fields are decoded from `data` with eth_abi (head/tail
      layout, nested tuples and arrays of any depth),
    - tuples become dicts keyed by component name, arrays become lists.

    Any malformed input raises DecodeError carrying tx hash, log index and
    topic0; nothing else escapes.
    """

    def decode(self, log: RawLog, signature: EventSignature) -> DecodedEvent:
        topic0 = log.topic0
        context = {
            "transaction_hash": log.transaction_hash_hex,
            "log_index": log.log_index,
            "topic_hash": None if topic0 is None else to_hex(topic0),
        }

        if topic0 != signature.topic_hash:
            raise DecodeError(
                f"topic0 does not match signature {signature.canonical}",
                **context,
            )

        indexed = signature.indexed_params
        if len(log.topics) != len(indexed) + 1:
            raise DecodeError(
                f"{signature.canonical} expects {len(indexed) + 1} topics, got {len(log.topics)}",
                **context,
            )

        decoded: dict[str, Any] = {}

        for param, topic in zip(indexed, log.topics[1:]):
            decoded[param.name] = self._decode_topic(param, topic, context)

        data_params = signature.data_params
        if data_params:
            try:
                values = abi_decode(
                    [p.canonical_type for p in data_params],
                    bytes(log.data),
                )
            except _DECODE_FAILURES as exc:
                raise DecodeError(
                    f"Malformed data for {signature.canonical}: {exc}",
                    **context,
                ) from exc

            for param, value in zip(data_params, values):
                decoded[param.name] = _to_record(param, value)

        # Keep declaration order regardless of indexed/data split
        fields = {p.name: decoded[p.name] for p in signature.params}
        return DecodedEvent(signature=signature, fields=fields)

    @staticmethod
    def _decode_topic(param: AbiParam, topic: bytes, context: dict[str, Any]) -> Any:
        if not param.is_value_type:
            return IndexedTopicHash(topic=bytes(topic))
        if len(topic) != 32:
            raise DecodeError(
                f"Indexed field {param.name!r} topic must be 32 bytes, got {len(topic)}",
                **context,
            )
        try:
            (value,) = abi_decode([param.type], bytes(topic))
        except _DECODE_FAILURES as exc:
            raise DecodeError(
                f"Malformed indexed field {param.name!r} ({param.type}): {exc}",
                **context,
            ) from exc
        return value


# ---------------------------------------------------------------------
# Value <-> record mapping
# ---------------------------------------------------------------------


def _to_record(param: AbiParam, value: Any) -> Any:
    if param.is_array:
        element = param.element()
        return [_to_record(element, v) for v in value]
    if param.is_tuple:
        return {c.name: _to_record(c, v) for c, v in zip(param.components, value, strict=True)}
    return value


def _from_record(param: AbiParam, value: Any) -> Any:
    if param.is_array:
        element = param.element()
        return [_from_record(element, v) for v in value]
    if param.is_tuple:
        if isinstance(value, Mapping):
            return tuple(_from_record(c, value[c.name]) for c in param.components)
        return tuple(_from_record(c, v) for c, v in zip(param.components, value, strict=True))
    return value


def encode_value(param: AbiParam, value: Any) -> bytes:
    """ABI-encode a single (possibly nested) decoded value of `param`'s type."""
    return abi_encode([param.canonical_type], [_from_record(param, value)])


def encode_data(signature: EventSignature, fields: Mapping[str, Any]) -> bytes:
    """Re-encode the non-indexed fields of a decoded event into log `data`."""
    params = signature.data_params
    return abi_encode(
        [p.canonical_type for p in params],
        [_from_record(p, fields[p.name]) for p in params],
    )
