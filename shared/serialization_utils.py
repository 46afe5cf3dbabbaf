"""
Serialization utilities for the Ethereum Event Engine.

Provides JSON encoding for Decimal, HexBytes, large integers and web3 types,
plus the canonical serialization used for content-addressed keys.

Usage:
    from shared.serialization_utils import DecimalEncoder, canonical_json
    json.dumps(data, cls=DecimalEncoder)
"""

import json
from decimal import Decimal
from json import JSONEncoder
from typing import Any

from hexbytes import HexBytes


class DecimalEncoder(JSONEncoder):
    """
    Custom JSON encoder handling Decimal, HexBytes, large integers, and web3.py types.

    Sources:
    - RFC 7159 section 6 (JSON number limits)
    - IEEE 754-2008 (double precision safe integer limit: 2^53 - 1)
    """

    # IEEE 754 double precision safe integer limit
    _MAX_SAFE_INTEGER = 2**53 - 1

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return str(obj)
        # Handle HexBytes from web3.py (addresses, tx hashes, raw bytes)
        if isinstance(obj, HexBytes):
            return "0x" + bytes(obj).hex()
        if isinstance(obj, bytes):
            return "0x" + obj.hex()
        # Handle web3.py AttributeDict (common in transaction/block responses)
        if hasattr(obj, "__iter__") and hasattr(obj, "keys"):
            return dict(obj)
        return super().default(obj)

    def encode(self, obj: Any) -> str:
        """Override encode to convert large integers to strings before JSON serialization."""
        return super().encode(self._convert_large_ints(obj))

    def _convert_large_ints(self, obj: Any) -> Any:
        """
        Recursively convert integers exceeding IEEE 754 safe limits to strings.

        EVM uint256 amounts routinely exceed JavaScript Number.MAX_SAFE_INTEGER.
        """
        if isinstance(obj, dict):
            return {k: self._convert_large_ints(v) for k, v in obj.items()}
        elif isinstance(obj, (list, tuple)):
            return [self._convert_large_ints(item) for item in obj]
        elif isinstance(obj, bool):
            return obj
        elif isinstance(obj, int) and (obj > self._MAX_SAFE_INTEGER or obj < -self._MAX_SAFE_INTEGER):
            return str(obj)
        return obj


def canonical_json(obj: Any) -> str:
    """
    Deterministic JSON text for hashing.

    Object keys are sorted at every depth and separators carry no whitespace,
    so the output never depends on dict insertion order. Sequence order is
    kept as-is.
    """
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
        default=_canonical_default,
    )


def _canonical_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (bytes, bytearray)):
        return "0x" + bytes(obj).hex()
    raise TypeError(f"Object of type {type(obj).__name__} is not canonically serializable")
