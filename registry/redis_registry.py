"""
Redis-backed event registry.

Layout: one hash per contract address.

    HSET eth-engine:registry:0xdac17f...  largeBuy  '{"eventName":"Transfer","eventField":"value"}'

Any process with access to the same Redis can write mappings (see
scripts/seed_registry.py); lookups always read through to Redis.
"""

from __future__ import annotations

import json

import redis.asyncio as redis
from redis.exceptions import RedisError

from engine_logging.logger_manager import setup_module_logger
from registry.base import EventRegistry, RegistryLookupError, normalize_address
from shared.constants import DEFAULT_REGISTRY_PREFIX, REDIS_REGISTRY_ID
from shared.types import EventDescriptor


class RedisRegistry(EventRegistry):
    def __init__(
        self,
        redis_client: redis.Redis,
        key_prefix: str = DEFAULT_REGISTRY_PREFIX,
        registry_id: int = REDIS_REGISTRY_ID,
        name: str = "redis",
    ) -> None:
        super().__init__(registry_id, name)
        self._redis = redis_client
        self._key_prefix = key_prefix
        self._logger = setup_module_logger(
            "redis_registry", "redis_registry.log", module_folder="Registry_Logs"
        )

    def _key(self, address: str) -> str:
        return f"{self._key_prefix}:{normalize_address(address)}"

    async def get(self, address: str, event_type: str) -> EventDescriptor:
        try:
            raw = await self._redis.hget(self._key(address), event_type)
        except RedisError as e:
            self._logger.error("Registry read failed for %s/%s: %s", address, event_type, e)
            raise RegistryLookupError(address, event_type, f"registry unavailable ({e})") from e

        if raw is None:
            raise RegistryLookupError(address, event_type)

        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return EventDescriptor.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            self._logger.error(
                "Malformed registry entry for %s/%s: %r", address, event_type, raw
            )
            raise RegistryLookupError(address, event_type, "malformed registry entry") from e

    async def set(self, address: str, event_type: str, descriptor: EventDescriptor) -> bool:
        try:
            await self._redis.hset(
                self._key(address), event_type, json.dumps(descriptor.to_dict())
            )
        except RedisError as e:
            self._logger.error("Registry write failed for %s/%s: %s", address, event_type, e)
            return False
        self._logger.info(
            "Registered %s/%s -> %s.%s",
            address,
            event_type,
            descriptor.event_name,
            descriptor.event_field,
        )
        return True
