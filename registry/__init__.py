from registry.base import EventRegistry, RegistryLookupError
from registry.memory_registry import MemoryRegistry
from registry.redis_registry import RedisRegistry

__all__ = [
    "EventRegistry",
    "MemoryRegistry",
    "RedisRegistry",
    "RegistryLookupError",
]
