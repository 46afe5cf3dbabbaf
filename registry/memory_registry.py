"""In-process event registry backed by a dict."""

from __future__ import annotations

from typing import Any, Iterable

from registry.base import EventRegistry, RegistryLookupError, normalize_address
from shared.constants import MEMORY_REGISTRY_ID
from shared.types import EventDescriptor


class MemoryRegistry(EventRegistry):
    def __init__(self, registry_id: int = MEMORY_REGISTRY_ID, name: str = "memory") -> None:
        super().__init__(registry_id, name)
        self._entries: dict[tuple[str, str], EventDescriptor] = {}

    async def get(self, address: str, event_type: str) -> EventDescriptor:
        try:
            return self._entries[(normalize_address(address), event_type)]
        except KeyError:
            raise RegistryLookupError(address, event_type) from None

    async def set(self, address: str, event_type: str, descriptor: EventDescriptor) -> bool:
        self._entries[(normalize_address(address), event_type)] = descriptor
        return True

    def load_seed(self, entries: Iterable[dict[str, Any]]) -> int:
        """Load ``{address, type, eventName, eventField}`` rows; returns the count loaded."""
        count = 0
        for entry in entries:
            self._entries[(normalize_address(entry["address"]), entry["type"])] = (
                EventDescriptor.from_dict(entry)
            )
            count += 1
        return count

    def __len__(self) -> int:
        return len(self._entries)
