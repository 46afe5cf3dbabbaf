"""
ABI event parsing and log decoding.

Subscribe requests carry their ABI as a list of fragment strings. Two
fragment forms are understood:

    Human-readable:  "event Transfer(address indexed from, address indexed to, uint amount)"
    JSON entry:      '{"type": "event", "name": "Transfer", "inputs": [...]}'

Non-event fragments (functions, constructors, errors) are ignored.

Usage:
    spec = find_event(abi, "Transfer")
    args = decode_log(spec, log)   # {"from": "0x..", "to": "0x..", "amount": 100000}
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from eth_abi.abi import decode as abi_decode
from web3 import Web3

logger = logging.getLogger(__name__)

EVENT_DECL_RE = re.compile(r"^event\s+([A-Za-z_][A-Za-z0-9_]*)\s*\((.*)\)\s*(anonymous)?\s*;?$", re.S)

# Solidity shorthand -> canonical ABI type
_TYPE_ALIASES = {
    "uint": "uint256",
    "int": "int256",
    "byte": "bytes1",
}

_DYNAMIC_BASE_TYPES = ("string", "bytes")


class AbiEventError(ValueError):
    """Raised when an event cannot be found or a log cannot be decoded."""


@dataclass(frozen=True)
class EventInput:
    name: str
    abi_type: str  # canonical, e.g. "uint256", "(address,uint256)[]"
    indexed: bool

    @property
    def is_dynamic(self) -> bool:
        t = self.abi_type
        return t in _DYNAMIC_BASE_TYPES or t.endswith("]") or t.startswith("(")


@dataclass(frozen=True)
class EventSpec:
    name: str
    inputs: tuple[EventInput, ...]
    anonymous: bool = False

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(i.abi_type for i in self.inputs)})"

    @property
    def topic0(self) -> str:
        return "0x" + bytes(Web3.keccak(text=self.signature)).hex()


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def canonical_type(raw_type: str) -> str:
    t = raw_type.strip()
    m = re.fullmatch(r"([a-z]+)(\[[0-9]*\])*", t)
    if m:
        base = m.group(1)
        suffix = t[len(base):]
        return _TYPE_ALIASES.get(base, base) + suffix
    return t


def _split_params(raw: str) -> list[str]:
    text = raw.strip()
    if not text:
        return []
    out: list[str] = []
    depth = 0
    start = 0
    for idx, ch in enumerate(text):
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                raise AbiEventError("unbalanced parentheses in event parameters")
        elif ch == "," and depth == 0:
            out.append(text[start:idx].strip())
            start = idx + 1
    if depth != 0:
        raise AbiEventError("unbalanced parentheses in event parameters")
    out.append(text[start:].strip())
    if any(not item for item in out):
        raise AbiEventError("empty parameter in event declaration")
    return out


def _parse_human_readable(fragment: str) -> EventSpec | None:
    m = EVENT_DECL_RE.fullmatch(fragment.strip())
    if not m:
        return None
    name, params, anonymous = m.group(1), m.group(2), m.group(3)

    inputs = []
    for idx, token in enumerate(_split_params(params)):
        parts = token.split()
        if parts[0].startswith("("):
            raise AbiEventError(f"tuple parameters need a JSON ABI entry: {fragment}")
        abi_type = canonical_type(parts[0])
        indexed = "indexed" in parts[1:]
        names = [p for p in parts[1:] if p != "indexed"]
        inputs.append(EventInput(name=names[-1] if names else f"arg{idx}",
                                 abi_type=abi_type, indexed=indexed))
    return EventSpec(name=name, inputs=tuple(inputs), anonymous=bool(anonymous))


def _json_input_type(entry: dict[str, Any]) -> str:
    t = entry["type"]
    if t.startswith("tuple"):
        inner = ",".join(_json_input_type(c) for c in entry.get("components", []))
        return f"({inner}){t[len('tuple'):]}"
    return canonical_type(t)


def _parse_json_entry(entry: dict[str, Any]) -> EventSpec | None:
    if entry.get("type") != "event":
        return None
    inputs = tuple(
        EventInput(
            name=inp.get("name") or f"arg{idx}",
            abi_type=_json_input_type(inp),
            indexed=bool(inp.get("indexed", False)),
        )
        for idx, inp in enumerate(entry.get("inputs", []))
    )
    return EventSpec(name=entry["name"], inputs=inputs, anonymous=bool(entry.get("anonymous", False)))


def parse_fragment(fragment: str) -> EventSpec | None:
    """Parse one ABI fragment string; returns None for non-event fragments."""
    text = fragment.strip()
    if text.startswith("{"):
        try:
            entry = json.loads(text)
        except json.JSONDecodeError as e:
            raise AbiEventError(f"invalid JSON ABI fragment: {e}") from e
        if not isinstance(entry, dict):
            raise AbiEventError("JSON ABI fragment must be an object")
        try:
            return _parse_json_entry(entry)
        except (KeyError, TypeError, AttributeError) as e:
            raise AbiEventError(f"incomplete JSON ABI event entry: {e!r}") from e
    return _parse_human_readable(text)


def find_event(abi: Sequence[str], event_name: str) -> EventSpec:
    """
    Return the first event named ``event_name`` declared in ``abi``.

    Fragments that fail to parse are logged and skipped; they only surface
    in the error when no fragment declares the event.
    """
    skipped: list[AbiEventError] = []
    for fragment in abi:
        try:
            spec = parse_fragment(fragment)
        except AbiEventError as e:
            logger.warning("Skipping unparseable ABI fragment %.120r: %s", fragment, e)
            skipped.append(e)
            continue
        if spec is not None and spec.name == event_name:
            return spec
    message = f"event '{event_name}' not found in ABI"
    if skipped:
        message += f" ({len(skipped)} unparseable fragment(s), first: {skipped[0]})"
    raise AbiEventError(message)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    text = str(value)
    if text.startswith("0x") or text.startswith("0X"):
        text = text[2:]
    return bytes.fromhex(text)


def _normalize_value(abi_type: str, value: Any) -> Any:
    if abi_type == "address" and isinstance(value, str):
        return Web3.to_checksum_address(value)
    return value


def decode_log(spec: EventSpec, log: dict[str, Any]) -> dict[str, Any]:
    """
    Decode a raw log (``topics`` + ``data``) into ``{arg_name: value}``.

    Indexed dynamic values (string, bytes, arrays, tuples) are only present
    as their keccak hash and are returned as ``0x`` hex strings.
    """
    try:
        topics = [_to_bytes(t) for t in log.get("topics") or []]
        data = _to_bytes(log.get("data", "0x") or "0x")
    except (TypeError, ValueError) as e:
        raise AbiEventError(f"malformed log for {spec.name}: {e}") from e

    cursor = 0
    if not spec.anonymous:
        if not topics:
            raise AbiEventError(f"missing topic0 for {spec.name}")
        if "0x" + topics[0].hex() != spec.topic0:
            raise AbiEventError(f"topic0 does not match {spec.signature}")
        cursor = 1

    indexed = [i for i in spec.inputs if i.indexed]
    if len(topics) - cursor < len(indexed):
        raise AbiEventError(f"insufficient indexed topics for {spec.signature}")

    non_indexed = [i for i in spec.inputs if not i.indexed]
    try:
        data_values = list(abi_decode([i.abi_type for i in non_indexed], data)) if non_indexed else []
    except Exception as e:
        raise AbiEventError(f"failed to decode data for {spec.signature}: {e}") from e

    args: dict[str, Any] = {}
    data_iter = iter(data_values)
    for inp in spec.inputs:
        if inp.indexed:
            word = topics[cursor]
            cursor += 1
            if inp.is_dynamic:
                args[inp.name] = "0x" + word.hex()
            else:
                try:
                    (value,) = abi_decode([inp.abi_type], word)
                except Exception as e:
                    raise AbiEventError(
                        f"failed to decode topic '{inp.name}' for {spec.signature}: {e}"
                    ) from e
                args[inp.name] = _normalize_value(inp.abi_type, value)
        else:
            args[inp.name] = _normalize_value(inp.abi_type, next(data_iter))
    return args
