"""
Command gateway: Redis pub/sub front door of the event engine.

Requesters publish SubscribeRequest-shaped JSON to two channels:

    eth-engine-sub    -> multiplexer.subscribe(request, forward-to-sink callback)
    eth-engine-unsub  -> multiplexer.unsubscribe(request)

Malformed commands are logged and dropped without a response. When a
subscribe fails, {"error": true, "reason": "..."} is published to the
channel named by content_hash(command), which the requester can compute from
the object it sent. A successful subscribe publishes nothing.

Each message is handled on its own: a bad or failing command never stops
the listen loop.

Usage:
    gateway = CommandGateway(redis_client, multiplexer, sink)
    asyncio.create_task(gateway.run())
"""

from __future__ import annotations

import asyncio
import json
import random
from typing import TYPE_CHECKING, Any

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError

from config.loader import get_config
from core.canonical_key import content_hash
from core.payload_validator import PayloadValidationError, validate_subscribe_payload
from engine_logging.logger_manager import setup_module_logger
from shared.constants import DEFAULT_SUBSCRIBE_CHANNEL, DEFAULT_UNSUBSCRIBE_CHANNEL
from shared.types import RawEventArgs, SubscribeRequest

if TYPE_CHECKING:
    from core.multiplexer import SubscriptionMultiplexer
    from sinks.redis_sink import RedisSink


def _as_text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8")
    return str(value)


class CommandGateway:
    def __init__(
        self,
        redis_client: redis.Redis,
        multiplexer: SubscriptionMultiplexer,
        sink: RedisSink,
        subscribe_channel: str = DEFAULT_SUBSCRIBE_CHANNEL,
        unsubscribe_channel: str = DEFAULT_UNSUBSCRIBE_CHANNEL,
    ) -> None:
        self._redis = redis_client
        self._multiplexer = multiplexer
        self._sink = sink
        self._subscribe_channel = subscribe_channel
        self._unsubscribe_channel = unsubscribe_channel

        timing_cfg = get_config().get_timing_config().get("gateway", {})
        self._max_retries: int = timing_cfg.get("max_reconnect_attempts", 10)
        self._base_delay: float = timing_cfg.get("reconnect_base_delay_seconds", 1)
        self._max_delay: float = timing_cfg.get("reconnect_max_delay_seconds", 30)

        self._running = False

        self._logger = setup_module_logger("gateway", "gateway.log", module_folder="Gateway_Logs")

    @property
    def channels(self) -> tuple[str, str]:
        return self._subscribe_channel, self._unsubscribe_channel

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Listen on both command channels until stop() or retries are exhausted."""
        self._running = True
        retry_count = 0

        while self._running and retry_count < self._max_retries:
            pubsub = self._redis.pubsub()
            try:
                await pubsub.subscribe(*self.channels)
                self._logger.info("Listening on %s, %s", *self.channels)
                retry_count = 0

                async for message in pubsub.listen():
                    if not self._running:
                        break
                    if message.get("type") != "message":
                        continue
                    await self.handle_message(message["channel"], message["data"])

            except asyncio.CancelledError:
                self._logger.info("Gateway cancelled, shutting down.")
                raise
            except RedisConnectionError as e:
                retry_count += 1
                delay = min(self._base_delay * (2 ** retry_count), self._max_delay)
                delay += random.uniform(0, 1)
                self._logger.warning(
                    "Redis connection lost: %s. Retry %d/%d in %.1fs",
                    e,
                    retry_count,
                    self._max_retries,
                    delay,
                )
                await asyncio.sleep(delay)
            except Exception as e:
                retry_count += 1
                delay = min(self._base_delay * (2 ** retry_count), self._max_delay)
                self._logger.error(
                    "Unexpected gateway error: %s. Retry %d/%d in %.1fs",
                    e,
                    retry_count,
                    self._max_retries,
                    delay,
                    exc_info=True,
                )
                await asyncio.sleep(delay)
            finally:
                try:
                    await pubsub.unsubscribe(*self.channels)
                    await pubsub.aclose()
                except Exception as e:
                    self._logger.debug("Error closing pubsub: %s", e)

        if retry_count >= self._max_retries:
            self._logger.critical("Exhausted %d Redis reconnect attempts", self._max_retries)
        self._running = False

    def stop(self) -> None:
        """Cooperative stop; takes effect at the next message."""
        self._running = False

    # ------------------------------------------------------------------
    # Message handling
    # ------------------------------------------------------------------

    async def handle_message(self, channel: Any, data: Any) -> None:
        """Validate and route one command. Never raises (except on cancellation)."""
        try:
            channel = _as_text(channel)
            try:
                payload = json.loads(_as_text(data))
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                self._logger.warning("Dropping undecodable command on %s: %s", channel, e)
                return

            try:
                request = validate_subscribe_payload(payload)
            except PayloadValidationError as e:
                self._logger.warning(
                    "Dropping invalid command on %s: fields=%s (%s)", channel, e.fields, e
                )
                return

            if channel == self._subscribe_channel:
                await self._handle_subscribe(request, payload)
            elif channel == self._unsubscribe_channel:
                await self._handle_unsubscribe(request)
            else:
                self._logger.debug("Ignoring message on unexpected channel %s", channel)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.error("Error processing command on %s: %s", channel, e, exc_info=True)

    async def _handle_subscribe(self, request: SubscribeRequest, payload: dict[str, Any]) -> None:
        response_key = content_hash(payload)
        self._logger.info(
            "Subscribing %s/%s (label=%r, response channel %s)",
            request.address,
            request.event_type,
            request.label,
            response_key,
        )
        try:
            await self._multiplexer.subscribe(request, self._forward_to_sink(request))
        except Exception as e:
            self._logger.warning(
                "Subscribe failed for %s/%s: %s", request.address, request.event_type, e
            )
            await self._publish_failure(response_key, str(e))

    async def _handle_unsubscribe(self, request: SubscribeRequest) -> None:
        self._logger.info("Unsubscribing %s/%s", request.address, request.event_type)
        await self._multiplexer.unsubscribe(request)

    async def _publish_failure(self, response_key: str, reason: str) -> None:
        try:
            await self._redis.publish(response_key, json.dumps({"error": True, "reason": reason}))
        except Exception as e:
            self._logger.error("Failed to publish error to %s: %s", response_key, e)

    def _forward_to_sink(self, request: SubscribeRequest):
        async def _forward(raw_args: RawEventArgs) -> None:
            await self._sink.publish(request, raw_args)

        return _forward
