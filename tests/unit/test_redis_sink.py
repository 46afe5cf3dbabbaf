"""
Unit tests for sinks/redis_sink.py.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from core.payload_validator import validate_subscribe_payload


@pytest.fixture
def mock_redis():
    client = MagicMock()
    client.publish = AsyncMock(return_value=1)
    return client


@pytest.fixture
def sink(mock_redis):
    with patch("sinks.redis_sink.get_config") as mock_cfg, \
         patch("sinks.redis_sink.setup_module_logger") as mock_logger:
        mock_loader = MagicMock()
        mock_loader.get_app_config.return_value = {"source_name": "eth_engine_test"}
        mock_cfg.return_value = mock_loader
        mock_logger.return_value = MagicMock()

        from sinks.redis_sink import RedisSink
        return RedisSink(mock_redis, channel="test-events")


@pytest.fixture
def request_obj(make_payload):
    return validate_subscribe_payload(make_payload(trigger_value=200))


class TestBuildPayload:
    def test_fields(self, sink, request_obj):
        payload = sink.build_payload(request_obj, {"value": 100000})

        assert payload["address"] == request_obj.address
        assert payload["type"] == "largeBuy"
        assert payload["label"] == "Tether Token"
        assert payload["triggerValue"] == 200
        assert payload["args"] == {"value": 100000}
        assert payload["_source"] == "eth_engine_test"
        assert "-SNK-" in payload["_trace_id"]
        assert payload["_timestamp"]

    def test_trace_ids_are_unique(self, sink, request_obj):
        a = sink.build_payload(request_obj, {})["_trace_id"]
        b = sink.build_payload(request_obj, {})["_trace_id"]
        assert a != b


class TestPublish:
    async def test_publishes_json_to_channel(self, sink, mock_redis, request_obj):
        ok = await sink.publish(request_obj, {"value": 2**200})

        assert ok is True
        channel, body = mock_redis.publish.call_args[0]
        assert channel == "test-events"
        message = json.loads(body)
        assert message["args"]["value"] == str(2**200)
        assert message["type"] == "largeBuy"

    async def test_bytes_args_serialized_as_hex(self, sink, mock_redis, request_obj):
        await sink.publish(request_obj, {"name": b"\x01\x02"})

        body = mock_redis.publish.call_args[0][1]
        assert json.loads(body)["args"]["name"] == "0x0102"

    async def test_redis_failure_returns_false(self, sink, mock_redis, request_obj):
        mock_redis.publish.side_effect = ConnectionError("redis down")

        assert await sink.publish(request_obj, {"value": 1}) is False
        sink._logger.error.assert_called_once()

    async def test_matched_event_logged(self, sink, request_obj):
        await sink.publish(request_obj, {"value": 1})
        sink._payload_logger.info.assert_called_once()

    def test_channel_property(self, sink):
        assert sink.channel == "test-events"
