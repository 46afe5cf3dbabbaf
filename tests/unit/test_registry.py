"""
Unit tests for registry/memory_registry.py and registry/redis_registry.py.

Tests cover case-insensitive address lookup, missing and malformed
entries, seed loading and Redis failure handling.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from registry.base import RegistryLookupError, normalize_address
from registry.memory_registry import MemoryRegistry
from shared.types import EventDescriptor

USDT_ADDRESS = "0xdAC17F958D2ee523a2206206994597C13D831ec7"
TRANSFER = EventDescriptor(event_name="Transfer", event_field="value")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_redis():
    client = MagicMock()
    client.hget = AsyncMock(return_value=None)
    client.hset = AsyncMock(return_value=1)
    return client


@pytest.fixture
def redis_registry(mock_redis):
    with patch("registry.redis_registry.setup_module_logger") as mock_logger:
        mock_logger.return_value = MagicMock()

        from registry.redis_registry import RedisRegistry
        registry = RedisRegistry(mock_redis, key_prefix="test:registry")
    return registry


# ---------------------------------------------------------------------------
# A. Base
# ---------------------------------------------------------------------------


class TestRegistryLookupError:
    def test_message_names_address_and_type(self):
        err = RegistryLookupError(USDT_ADDRESS, "largeBuy")
        assert str(err) == f"No event registered for address {USDT_ADDRESS} and type 'largeBuy'"

    def test_detail_appended(self):
        err = RegistryLookupError(USDT_ADDRESS, "largeBuy", "registry unavailable")
        assert str(err).endswith(": registry unavailable")

    def test_is_key_error(self):
        assert isinstance(RegistryLookupError(USDT_ADDRESS, "x"), KeyError)

    def test_normalize_address(self):
        assert normalize_address(USDT_ADDRESS) == USDT_ADDRESS.lower()


# ---------------------------------------------------------------------------
# B. MemoryRegistry
# ---------------------------------------------------------------------------


class TestMemoryRegistry:
    async def test_set_then_get(self):
        registry = MemoryRegistry()
        assert await registry.set(USDT_ADDRESS, "largeBuy", TRANSFER) is True
        assert await registry.get(USDT_ADDRESS, "largeBuy") == TRANSFER

    async def test_address_case_insensitive(self):
        registry = MemoryRegistry()
        await registry.set(USDT_ADDRESS.lower(), "largeBuy", TRANSFER)
        assert await registry.get(USDT_ADDRESS, "largeBuy") == TRANSFER

    async def test_missing_raises(self):
        registry = MemoryRegistry()
        with pytest.raises(RegistryLookupError):
            await registry.get(USDT_ADDRESS, "largeBuy")

    async def test_type_is_case_sensitive(self):
        registry = MemoryRegistry()
        await registry.set(USDT_ADDRESS, "largeBuy", TRANSFER)
        with pytest.raises(RegistryLookupError):
            await registry.get(USDT_ADDRESS, "LARGEBUY")

    async def test_set_overwrites(self):
        registry = MemoryRegistry()
        await registry.set(USDT_ADDRESS, "largeBuy", TRANSFER)
        await registry.set(USDT_ADDRESS, "largeBuy", EventDescriptor("Approval", "value"))
        assert (await registry.get(USDT_ADDRESS, "largeBuy")).event_name == "Approval"

    async def test_load_seed(self):
        registry = MemoryRegistry()
        loaded = registry.load_seed([
            {"address": USDT_ADDRESS, "type": "largeBuy", "eventName": "Transfer", "eventField": "value"},
            {"address": USDT_ADDRESS, "type": "largeSell", "eventName": "Transfer", "eventField": "value"},
        ])
        assert loaded == 2
        assert len(registry) == 2
        assert await registry.get(USDT_ADDRESS, "largeSell") == TRANSFER

    def test_identity(self):
        registry = MemoryRegistry()
        assert registry.registry_id == 0
        assert registry.name == "memory"


# ---------------------------------------------------------------------------
# C. RedisRegistry
# ---------------------------------------------------------------------------


class TestRedisRegistry:
    async def test_set_writes_hash_field(self, redis_registry, mock_redis):
        ok = await redis_registry.set(USDT_ADDRESS, "largeBuy", TRANSFER)

        assert ok is True
        key, field, value = mock_redis.hset.call_args[0]
        assert key == f"test:registry:{USDT_ADDRESS.lower()}"
        assert field == "largeBuy"
        assert json.loads(value) == {"eventName": "Transfer", "eventField": "value"}

    async def test_get_decodes_bytes(self, redis_registry, mock_redis):
        mock_redis.hget.return_value = b'{"eventName": "Transfer", "eventField": "value"}'

        assert await redis_registry.get(USDT_ADDRESS, "largeBuy") == TRANSFER
        mock_redis.hget.assert_awaited_once_with(
            f"test:registry:{USDT_ADDRESS.lower()}", "largeBuy"
        )

    async def test_get_accepts_str(self, redis_registry, mock_redis):
        mock_redis.hget.return_value = '{"eventName": "Transfer", "eventField": "value"}'
        assert await redis_registry.get(USDT_ADDRESS, "largeBuy") == TRANSFER

    async def test_missing_raises(self, redis_registry):
        with pytest.raises(RegistryLookupError):
            await redis_registry.get(USDT_ADDRESS, "largeBuy")

    @pytest.mark.parametrize("raw", [b"not json", b'{"eventName": "Transfer"}', b"[]"])
    async def test_malformed_entry_raises(self, redis_registry, mock_redis, raw):
        mock_redis.hget.return_value = raw
        with pytest.raises(RegistryLookupError, match="malformed"):
            await redis_registry.get(USDT_ADDRESS, "largeBuy")

    async def test_read_failure_raises_lookup_error(self, redis_registry, mock_redis):
        mock_redis.hget.side_effect = RedisConnectionError("down")
        with pytest.raises(RegistryLookupError, match="unavailable"):
            await redis_registry.get(USDT_ADDRESS, "largeBuy")

    async def test_write_failure_returns_false(self, redis_registry, mock_redis):
        mock_redis.hset.side_effect = RedisConnectionError("down")
        assert await redis_registry.set(USDT_ADDRESS, "largeBuy", TRANSFER) is False
        redis_registry._logger.error.assert_called()

    def test_identity(self, redis_registry):
        assert redis_registry.registry_id == 2
        assert redis_registry.name == "redis"
