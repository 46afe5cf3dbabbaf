"""
Event registry interface.

A registry maps (contract address, logical subscription type) to the raw
on-chain event and the decoded field compared against a trigger value:

    ("0xdAC1...", "largeBuy")  ->  EventDescriptor("Transfer", "value")

Registries are shared and may be written by external actors at any time.
Addresses are case-insensitive keys.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from shared.types import EventDescriptor


class RegistryLookupError(KeyError):
    """Raised when no descriptor is registered for an (address, type) pair."""

    def __init__(self, address: str, event_type: str, detail: str = "") -> None:
        self.address = address
        self.event_type = event_type
        message = f"No event registered for address {address} and type '{event_type}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return self.args[0]


def normalize_address(address: str) -> str:
    return address.lower()


class EventRegistry(ABC):
    """Every registry backend implements get/set against this interface."""

    def __init__(self, registry_id: int, name: str) -> None:
        self.registry_id = registry_id
        self.name = name

    @abstractmethod
    async def get(self, address: str, event_type: str) -> EventDescriptor:
        """Resolve a descriptor; raises RegistryLookupError when absent."""

    @abstractmethod
    async def set(self, address: str, event_type: str, descriptor: EventDescriptor) -> bool:
        """Store a descriptor; returns False when the write failed."""
