"""
Schema check for inbound subscribe/unsubscribe commands.

Every command on the subscribe and unsubscribe channels must be a JSON object:

    {
        "address":      "0x..."  (20-byte hex, valid EIP-55 checksum if mixed case)
        "abi":          ["event Transfer(...)", ...]  (non-empty list of strings)
        "type":         "largeBuy"  (non-empty string)
        "triggerValue": 200  (int or float, not bool)
        "label":        "Tether Token"  (string)
    }

Failures raise PayloadValidationError listing each offending field.
"""

from __future__ import annotations

import math
import re
from typing import Any

from web3 import Web3

from shared.constants import (
    FIELD_ABI,
    FIELD_ADDRESS,
    FIELD_LABEL,
    FIELD_TRIGGER_VALUE,
    FIELD_TYPE,
    REQUIRED_PAYLOAD_FIELDS,
)
from shared.serialization_utils import canonical_json
from shared.types import SubscribeRequest

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class PayloadValidationError(ValueError):
    """Raised when an inbound command does not match the SubscribeRequest shape."""

    def __init__(self, errors: list[tuple[str, str]]) -> None:
        self.errors = errors
        detail = "; ".join(f"{name}: {reason}" for name, reason in errors)
        super().__init__(f"Invalid subscribe payload ({detail})")

    @property
    def fields(self) -> list[str]:
        return [name for name, _ in self.errors]


def _check_address(value: Any) -> str | None:
    if not isinstance(value, str):
        return "must be a string"
    if not ADDRESS_RE.fullmatch(value):
        return "must be a 0x-prefixed 20-byte hex address"
    if not Web3.is_address(value):
        return "invalid EIP-55 checksum"
    return None


def _check_abi(value: Any) -> str | None:
    if not isinstance(value, list):
        return "must be an array"
    if not value:
        return "must not be empty"
    for idx, fragment in enumerate(value):
        if not isinstance(fragment, str) or not fragment.strip():
            return f"entry {idx} must be a non-empty string"
    return None


def _check_type(value: Any) -> str | None:
    if not isinstance(value, str):
        return "must be a string"
    if not value.strip():
        return "must not be empty"
    return None


def _check_trigger_value(value: Any) -> str | None:
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return "must be a number"
    if isinstance(value, float) and not math.isfinite(value):
        return "must be finite"
    return None


def _check_label(value: Any) -> str | None:
    if not isinstance(value, str):
        return "must be a string"
    return None


_FIELD_CHECKS = {
    FIELD_ADDRESS: _check_address,
    FIELD_ABI: _check_abi,
    FIELD_TYPE: _check_type,
    FIELD_TRIGGER_VALUE: _check_trigger_value,
    FIELD_LABEL: _check_label,
}


def collect_payload_errors(payload: Any) -> list[tuple[str, str]]:
    """Return (field, reason) pairs for every problem found; empty when valid."""
    if not isinstance(payload, dict):
        return [("payload", "must be a JSON object")]

    errors: list[tuple[str, str]] = []
    for name in REQUIRED_PAYLOAD_FIELDS:
        if name not in payload:
            errors.append((name, "missing"))
            continue
        reason = _FIELD_CHECKS[name](payload[name])
        if reason:
            errors.append((name, reason))
    if not errors:
        # Error responses are keyed by a hash of the canonical payload text
        try:
            canonical_json(payload)
        except (TypeError, ValueError):
            errors.append(("payload", "must be canonical JSON (no NaN or Infinity)"))
    return errors


def is_valid_payload(payload: Any) -> bool:
    return not collect_payload_errors(payload)


def validate_subscribe_payload(payload: Any) -> SubscribeRequest:
    """Validate a decoded command and build the immutable request from it."""
    errors = collect_payload_errors(payload)
    if errors:
        raise PayloadValidationError(errors)

    return SubscribeRequest(
        address=Web3.to_checksum_address(payload[FIELD_ADDRESS]),
        abi=tuple(payload[FIELD_ABI]),
        event_type=payload[FIELD_TYPE],
        trigger_value=payload[FIELD_TRIGGER_VALUE],
        label=payload[FIELD_LABEL],
    )
