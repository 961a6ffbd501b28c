from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache

from eth_abi.exceptions import ParseError
from eth_abi.grammar import ABIType, parse
from eth_utils import keccak


_TUPLE: str = "tuple"


@lru_cache(maxsize=1024)
def _parse_abi_type(canonical_type: str) -> ABIType:
    try:
        abi_type = parse(canonical_type)
    except ParseError as exc:
        raise ValueError(f"Invalid ABI type {canonical_type!r}: {exc}") from exc
    # ABITypeError is a ValueError
    abi_type.validate()
    return abi_type


@dataclass(frozen=True, slots=True)
class AbiParam:
    """
    One typed field of an event argument schema.

    `type` follows the JSON ABI convention: scalars are spelled out
    ("uint120", "bytes32[3]"), tuples are "tuple" plus an optional array
    suffix ("tuple[]", "tuple[2][]") with their shape in `components`.
    """

    name: str
    type: str
    components: tuple[AbiParam, ...] = ()
    indexed: bool = False

    @property
    def is_tuple(self) -> bool:
        return self.type.startswith(_TUPLE)

    @property
    def is_array(self) -> bool:
        return self.type.endswith("]")

    @property
    def canonical_type(self) -> str:
        """Type as it appears in the canonical signature: `(comp1,comp2,...)` + array suffix."""
        if self.is_tuple:
            inner = ",".join(c.canonical_type for c in self.components)
            return f"({inner}){self.type[len(_TUPLE):]}"
        return self.type

    @property
    def abi_type(self) -> ABIType:
        return _parse_abi_type(self.canonical_type)

    @property
    def is_dynamic(self) -> bool:
        """True when any component is dynamic (bytes, string, T[]), recursively."""
        return self.abi_type.is_dynamic

    @property
    def is_value_type(self) -> bool:
        """
        Value types occupy exactly one 32-byte word when indexed.

        Everything else (bytes, string, arrays, tuples) is stored in a topic
        as the keccak hash of its encoding.
        """
        return not self.is_tuple and not self.is_array and self.type not in ("bytes", "string")

    def element(self) -> AbiParam:
        """Drop the outermost array dimension: `T[2][]` -> `T[2]`."""
        if not self.is_array:
            raise ValueError(f"Param {self.name!r} of type {self.type!r} is not an array")
        return AbiParam(
            name=self.name,
            type=self.type[: self.type.rindex("[")],
            components=self.components,
        )


def _check_unique_names(owner: str, params: tuple[AbiParam, ...]) -> None:
    seen: set[str] = set()
    for param in params:
        if param.name in seen:
            raise ValueError(f"Duplicate field name {param.name!r} in {owner}")
        seen.add(param.name)
        if param.components:
            _check_unique_names(f"{owner}.{param.name}", param.components)


@dataclass(frozen=True, slots=True)
class EventSignature:
    """
    Immutable event schema.

    `topic_hash` is derived from the canonical signature at construction, so
    `topic_hash == keccak256(canonical)` holds for every instance.
    """

    name: str
    params: tuple[AbiParam, ...]
    version: str = "candidate"
    topic_hash: bytes = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        for param in self.params:
            # Fail fast on malformed types like "uint7" or "bytes33".
            _ = param.abi_type
        # Decoded fields are keyed by name, so names must be unique per level
        _check_unique_names(self.name, self.params)
        object.__setattr__(self, "topic_hash", keccak(text=self.canonical))

    @property
    def canonical(self) -> str:
        return f"{self.name}({','.join(p.canonical_type for p in self.params)})"

    @property
    def topic_hash_hex(self) -> str:
        return "0x" + self.topic_hash.hex()

    @property
    def indexed_params(self) -> tuple[AbiParam, ...]:
        return tuple(p for p in self.params if p.indexed)

    @property
    def data_params(self) -> tuple[AbiParam, ...]:
        return tuple(p for p in self.params if not p.indexed)

    def param(self, name: str) -> AbiParam | None:
        for p in self.params:
            if p.name == name:
                return p
        return None
