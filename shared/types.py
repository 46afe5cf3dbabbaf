"""
Shared data types for the Ethereum Event Engine.

Centralized dataclasses used by the registry, multiplexer, gateway and sink.
Wire payloads use camelCase keys (``triggerValue``, ``eventName``); the
dataclasses use snake_case attributes and convert at the edges.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Union

Numeric = Union[int, float, Decimal]

# Decoded event arguments keyed by ABI input name
RawEventArgs = dict[str, Any]

# Subscriber callbacks may be plain functions or coroutine functions
EventCallback = Callable[[RawEventArgs], Union[None, Awaitable[None]]]


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SubscribeRequest:
    """Validated subscribe/unsubscribe command."""

    address: str  # EIP-55 checksum address
    abi: tuple[str, ...]  # ABI fragments, order preserved
    event_type: str  # logical subscription type, e.g. "largeBuy"
    trigger_value: Numeric
    label: str

    def to_payload(self) -> dict[str, Any]:
        """Wire representation (the shape requesters publish)."""
        return {
            "address": self.address,
            "abi": list(self.abi),
            "type": self.event_type,
            "triggerValue": self.trigger_value,
            "label": self.label,
        }


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EventDescriptor:
    event_name: str  # event emitted on-chain, e.g. "Transfer"
    event_field: str  # decoded argument compared against the trigger value

    def to_dict(self) -> dict[str, str]:
        return {"eventName": self.event_name, "eventField": self.event_field}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventDescriptor:
        return cls(event_name=str(data["eventName"]), event_field=str(data["eventField"]))


# ---------------------------------------------------------------------------
# Multiplexer state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Subscriber:
    """One logical interest in a canonical key."""

    address: str
    event_type: str
    trigger_value: Numeric
    label: str
    event_field: str
    callback: EventCallback = field(compare=False, repr=False)
    # Global subscribe order, used to snapshot subscribers across keys
    seq: int = field(default=0, compare=False, repr=False)

    def matches(self, address: str, event_type: str, event_field: str,
                trigger_value: Numeric, label: str) -> bool:
        """Identity used by unsubscribe; the callback is not part of it."""
        return (
            self.address.lower() == address.lower()
            and self.event_type == event_type
            and self.event_field == event_field
            and self.trigger_value == trigger_value
            and self.label == label
        )


@dataclass(frozen=True)
class AttachmentHandle:
    """Live eth_subscribe attachment owned by the connection layer."""

    handle_id: int
    address: str
    event_name: str


@dataclass
class ListenerEntry:
    canonical_key: str
    handle: AttachmentHandle
    subscribers: list[Subscriber] = field(default_factory=list)


@dataclass(frozen=True)
class SubscribedEvent:
    address: str
    event_type: str

    def to_dict(self) -> dict[str, str]:
        return {"address": self.address, "type": self.event_type}
