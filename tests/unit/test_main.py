"""
Unit tests for main.py registry wiring.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from registry.memory_registry import MemoryRegistry
from registry.redis_registry import RedisRegistry

USDT_ADDRESS = "0xdAC17F958D2ee523a2206206994597C13D831ec7"
SEED = [{"address": USDT_ADDRESS, "type": "largeBuy", "eventName": "Transfer", "eventField": "value"}]


@pytest.fixture
def mock_loader():
    loader = MagicMock()
    loader.get_registry_config.return_value = {"backend": "memory", "seed": SEED}
    return loader


class TestBuildRegistry:
    async def test_memory_backend_loads_seed(self, mock_loader):
        import main

        with patch("main.get_config", return_value=mock_loader):
            registry = main.build_registry("memory", MagicMock())

        assert isinstance(registry, MemoryRegistry)
        assert (await registry.get(USDT_ADDRESS, "largeBuy")).event_field == "value"

    def test_redis_backend(self, mock_loader):
        import main

        with patch("main.get_config", return_value=mock_loader), \
             patch("registry.redis_registry.setup_module_logger"):
            registry = main.build_registry("redis", MagicMock())

        assert isinstance(registry, RedisRegistry)

    async def test_seed_written_to_redis(self, mock_loader):
        import main

        registry = MagicMock()
        registry.set = AsyncMock(return_value=True)
        with patch("main.get_config", return_value=mock_loader):
            await main._seed_redis_registry(registry)

        address, event_type, descriptor = registry.set.call_args[0]
        assert (address, event_type) == (USDT_ADDRESS, "largeBuy")
        assert descriptor.event_name == "Transfer"
