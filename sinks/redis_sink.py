"""
Redis sink for matched events.

Republishes every event that crossed a subscriber's threshold to the
matched-events channel as JSON (DecimalEncoder keeps uint256 precision).
Publish failures are logged and swallowed; the sink offers no
acknowledgment contract.
"""

from __future__ import annotations

import itertools
import json
import time
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as redis

from config.loader import get_config
from engine_logging.logger_manager import setup_module_logger
from shared.constants import DEFAULT_EVENTS_CHANNEL
from shared.serialization_utils import DecimalEncoder
from shared.types import RawEventArgs, SubscribeRequest


class RedisSink:
    def __init__(self, redis_client: redis.Redis, channel: str = DEFAULT_EVENTS_CHANNEL) -> None:
        self._redis = redis_client
        self._channel = channel
        self._source = get_config().get_app_config().get("source_name", "eth_engine")
        self._trace_counter = itertools.count(1)

        self._logger = setup_module_logger("redis_sink", "redis_sink.log", module_folder="Sink_Logs")
        self._payload_logger = setup_module_logger(
            "redis_sink_payloads",
            "matched_events.log",
            module_folder="Sink_Logs",
            use_raw_formatter=True,
        )

    @property
    def channel(self) -> str:
        return self._channel

    def _generate_trace_id(self) -> str:
        """Lightweight trace ID: timestamp_ms-SNK-counter."""
        return f"{int(time.time() * 1000)}-SNK-{next(self._trace_counter):08d}"

    def build_payload(self, request: SubscribeRequest, raw_args: RawEventArgs) -> dict[str, Any]:
        return {
            "address": request.address,
            "type": request.event_type,
            "label": request.label,
            "triggerValue": request.trigger_value,
            "args": raw_args,
            "_trace_id": self._generate_trace_id(),
            "_timestamp": datetime.now(timezone.utc).isoformat(),
            "_source": self._source,
        }

    async def publish(self, request: SubscribeRequest, raw_args: RawEventArgs) -> bool:
        """Publish one matched event; returns False when Redis rejected it."""
        payload = self.build_payload(request, raw_args)
        try:
            payload_str = json.dumps(payload, cls=DecimalEncoder)
            await self._redis.publish(self._channel, payload_str)
        except Exception as e:
            self._logger.error(
                "Failed to publish match for %s/%s to %s: %s",
                request.address,
                request.event_type,
                self._channel,
                e,
            )
            return False
        self._payload_logger.info(payload_str)
        return True
