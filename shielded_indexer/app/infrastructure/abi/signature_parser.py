"""
Helpers turning event definitions into `EventSignature` objects.

Two input shapes are supported:
- JSON ABI event entries (`{"type": "event", "name": ..., "inputs": [...]}`),
- human-readable fragments such as
  "Shield(uint256 treeNumber, (bytes32 npk, (uint8,address,uint256) token, uint120 value)[] commitments)".
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping

from eth_abi.grammar import normalize

from shielded_indexer.app.domain.signatures import AbiParam, EventSignature


_INDEXED: str = "indexed"
_TUPLE: str = "tuple"


# ---------------------------------------------------------------------
# Human-readable fragments
# ---------------------------------------------------------------------


def _split_params(params_str: str) -> list[str]:
    """Split a parameter list by top-level commas, respecting nested tuples."""
    items: list[str] = []
    depth = 0
    buf: list[str] = []
    for ch in params_str:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                raise ValueError(f"Unbalanced parentheses in {params_str!r}")
        elif ch == "," and depth == 0:
            items.append("".join(buf).strip())
            buf = []
            continue
        buf.append(ch)
    if depth != 0:
        raise ValueError(f"Unbalanced parentheses in {params_str!r}")
    if buf:
        items.append("".join(buf).strip())
    return [i for i in items if i]


def _matching_paren(s: str, open_idx: int) -> int:
    depth = 0
    for i in range(open_idx, len(s)):
        if s[i] == "(":
            depth += 1
        elif s[i] == ")":
            depth -= 1
            if depth == 0:
                return i
    raise ValueError(f"Unbalanced parentheses in {s!r}")


def _parse_param(fragment: str, fallback_name: str) -> AbiParam:
    """Parse one parameter fragment: `<type> [indexed] [name]`."""
    s = " ".join(fragment.split())
    if s.startswith(_TUPLE + "("):
        s = s[len(_TUPLE):]

    if s.startswith("("):
        close = _matching_paren(s, 0)
        inner = s[1:close]
        rest = s[close + 1:]
        suffix_end = 0
        while suffix_end < len(rest) and rest[suffix_end] != " ":
            suffix_end += 1
        array_suffix = rest[:suffix_end]
        tail = rest[suffix_end:].split()
        components = tuple(
            _parse_param(part, fallback_name=f"arg{i}")
            for i, part in enumerate(_split_params(inner))
        )
        abi_type = _TUPLE + array_suffix
    else:
        tokens = s.split()
        if not tokens:
            raise ValueError(f"Empty parameter fragment: {fragment!r}")
        abi_type = normalize(tokens[0])
        tail = tokens[1:]
        components = ()

    indexed = False
    if tail and tail[0] == _INDEXED:
        indexed = True
        tail = tail[1:]
    if len(tail) > 1:
        raise ValueError(f"Cannot parse parameter fragment: {fragment!r}")
    name = tail[0] if tail else fallback_name

    return AbiParam(name=name, type=abi_type, components=components, indexed=indexed)


def parse_event_signature(signature: str, *, version: str = "candidate") -> EventSignature:
    """
    Build an EventSignature from a Solidity-style event fragment.

    Parameter names and `indexed` markers are optional; unnamed params get
    positional names (`arg0`, `arg1`, ...).
    """
    sig = signature.strip()
    if sig.startswith("event "):
        sig = sig[len("event "):].strip()
    open_paren = sig.find("(")
    if open_paren <= 0 or not sig.endswith(")"):
        raise ValueError(f"Invalid event signature: {signature!r}")
    if _matching_paren(sig, open_paren) != len(sig) - 1:
        raise ValueError(f"Invalid event signature: {signature!r}")

    name = sig[:open_paren].strip()
    params = tuple(
        _parse_param(part, fallback_name=f"arg{i}")
        for i, part in enumerate(_split_params(sig[open_paren + 1 : -1]))
    )
    return EventSignature(name=name, params=params, version=version)


# ---------------------------------------------------------------------
# JSON ABI
# ---------------------------------------------------------------------


def _param_from_abi(entry: Mapping[str, Any], fallback_name: str) -> AbiParam:
    if not isinstance(entry, Mapping) or "type" not in entry:
        raise ValueError(f"Invalid ABI input: {entry!r}")
    abi_type = str(entry["type"])
    components: tuple[AbiParam, ...] = ()
    if abi_type.startswith(_TUPLE):
        components = tuple(
            _param_from_abi(c, fallback_name=f"arg{i}")
            for i, c in enumerate(entry.get("components", []))
        )
    else:
        abi_type = normalize(abi_type)
    return AbiParam(
        name=entry.get("name") or fallback_name,
        type=abi_type,
        components=components,
        indexed=bool(entry.get("indexed", False)),
    )


def event_signature_from_abi(event_abi: Mapping[str, Any], *, version: str) -> EventSignature:
    name = event_abi.get("name")
    inputs = event_abi.get("inputs", [])
    if not isinstance(name, str) or not isinstance(inputs, list):
        raise ValueError("Invalid event ABI: missing name/inputs")
    params = tuple(_param_from_abi(inp, fallback_name=f"arg{i}") for i, inp in enumerate(inputs))
    return EventSignature(name=name, params=params, version=version)


def load_abi(abi_path: Path) -> list[dict[str, Any]]:
    if not abi_path.exists():
        raise FileNotFoundError(f"ABI file not found: {abi_path}")
    data = json.loads(abi_path.read_text(encoding="utf-8"))

    # Common formats:
    # - [ ... ] (ABI list)
    # - { "abi": [ ... ] } (artifact)
    if isinstance(data, list):
        abi = data
    elif isinstance(data, dict) and isinstance(data.get("abi"), list):
        abi = data["abi"]
    else:
        raise ValueError(
            f"Unsupported ABI JSON format in {abi_path}. Expected list or dict with 'abi' list."
        )
    return [x for x in abi if isinstance(x, dict)]


def event_signatures_from_abi_file(abi_path: Path, *, version: str) -> list[EventSignature]:
    return [
        event_signature_from_abi(entry, version=version)
        for entry in load_abi(abi_path)
        if entry.get("type") == "event" and not entry.get("anonymous", False)
    ]
