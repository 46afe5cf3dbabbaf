"""
Content-addressed keys for the subscription multiplexer and the command gateway.

Two digests are derived here:

    derive_canonical_key(abi, address, event_name)
        Identifies one underlying on-chain event stream. Requests that resolve
        to the same (abi, address, eventName) triple share one listener no
        matter their type, trigger value or label.

    content_hash(payload)
        Digest of a full inbound command, used as the name of the response
        channel. Requesters recompute it from the object they published.

Both are SHA-256 over canonical JSON (sorted keys, compact separators), so
they are stable across processes and independent of dict ordering. ABI
fragment order is significant.
"""

from __future__ import annotations

import hashlib
from collections.abc import Sequence
from typing import Any

from shared.serialization_utils import canonical_json


def _digest(obj: Any) -> str:
    return hashlib.sha256(canonical_json(obj).encode("utf-8")).hexdigest()


def canonical_key_material(abi: Sequence[str], address: str, event_name: str) -> dict[str, Any]:
    """The exact object hashed by derive_canonical_key."""
    return {"abi": list(abi), "address": address, "eventName": event_name}


def derive_canonical_key(abi: Sequence[str], address: str, event_name: str) -> str:
    return _digest(canonical_key_material(abi, address, event_name))


def content_hash(payload: Any) -> str:
    return _digest(payload)
