"""
Ethereum Event Engine main entrypoint.

Single-process asyncio runner. Components are built once, in dependency
order, and handed to each other explicitly:

    1. Config validation (.env + config/*.json)
    2. Redis client           : command channels, registry, sink
    3. EthConnection          : shared WebSocket to the node
    4. Event registry         : redis (default) or memory
    5. SubscriptionMultiplexer: one attachment per canonical key
    6. RedisSink              : matched-event republisher
    7. CommandGateway         : subscribe/unsubscribe listener

Teardown runs in reverse: gateway stop, listeners detached, callbacks
drained, node connection closed, Redis closed. Subscriptions live in memory
only and must be re-sent by requesters after a restart.

Usage:
    WEBSOCKET_URL=ws://localhost:8545 python main.py
"""

from __future__ import annotations

import asyncio
import signal
import sys

import redis.asyncio as redis
from dotenv import load_dotenv

from config.loader import get_channel, get_config, get_env_var, get_key_prefix
from config.validate import ConfigValidationError, validate_all_configs
from core.gateway import CommandGateway
from core.multiplexer import SubscriptionMultiplexer
from engine_logging.logger_manager import create_module_log_directories, setup_module_logger
from registry.base import EventRegistry
from registry.memory_registry import MemoryRegistry
from registry.redis_registry import RedisRegistry
from shared.constants import DEFAULT_CALLBACK_DRAIN_TIMEOUT, DEFAULT_REDIS_URL, REDIS_REGISTRY_ID
from shared.types import EventDescriptor
from sinks.redis_sink import RedisSink
from sources.eth_connection import EthConnection

# ---------------------------------------------------------------------------
# Module logger
# ---------------------------------------------------------------------------
_logger = setup_module_logger("main", "main.log", module_folder="Main_Logs", console=True)


def _log_banner(ws_url: str, redis_url: str, registry_backend: str, channels: tuple[str, ...]) -> None:
    """Log a concise startup summary."""
    _logger.info("=" * 60)
    _logger.info("Ethereum Event Engine starting")
    _logger.info("=" * 60)
    _logger.info("  node            : %s", ws_url)
    _logger.info("  redis           : %s", redis_url)
    _logger.info("  registry        : %s", registry_backend)
    _logger.info("  command channels: %s", ", ".join(channels))
    _logger.info("=" * 60)


def build_registry(backend: str, redis_client: redis.Redis) -> EventRegistry:
    """Create the configured registry backend and load any seed mappings."""
    cfg = get_config().get_registry_config()
    seed = cfg.get("seed", [])

    if backend == "memory":
        registry = MemoryRegistry()
        loaded = registry.load_seed(seed)
        _logger.info("Memory registry seeded with %d mapping(s)", loaded)
        return registry

    return RedisRegistry(
        redis_client,
        key_prefix=get_key_prefix("registry"),
        registry_id=cfg.get("registry_id", REDIS_REGISTRY_ID),
    )


async def _seed_redis_registry(registry: EventRegistry) -> None:
    """Write configured seed mappings through to the shared Redis registry."""
    for entry in get_config().get_registry_config().get("seed", []):
        ok = await registry.set(entry["address"], entry["type"], EventDescriptor.from_dict(entry))
        if not ok:
            _logger.warning("Could not seed %s/%s", entry["address"], entry["type"])


# ---------------------------------------------------------------------------
# Main async entry
# ---------------------------------------------------------------------------


async def _run() -> None:
    """Wire all components and run the gateway until a shutdown signal."""
    # ------------------------------------------------------------------
    # 1. Load environment and validate configuration
    # ------------------------------------------------------------------
    load_dotenv()

    try:
        validate_all_configs()
    except ConfigValidationError as exc:
        _logger.critical("Config validation failed:\n%s", exc)
        sys.exit(1)

    cfg = get_config()
    ws_url: str = get_env_var("WEBSOCKET_URL", "", str)
    redis_url: str = get_env_var(
        "REDIS_URL", cfg.get_redis_channels().get("redis_url", DEFAULT_REDIS_URL), str
    )
    registry_backend: str = get_env_var(
        "REGISTRY_BACKEND", cfg.get_registry_config().get("backend", "redis"), str
    )
    drain_timeout: float = cfg.get_timing_config().get("shutdown", {}).get(
        "callback_drain_timeout_seconds", DEFAULT_CALLBACK_DRAIN_TIMEOUT
    )
    subscribe_channel = get_channel("subscribe")
    unsubscribe_channel = get_channel("unsubscribe")

    if not ws_url:
        _logger.critical("WEBSOCKET_URL must be defined in env")
        sys.exit(1)

    _log_banner(ws_url, redis_url, registry_backend, (subscribe_channel, unsubscribe_channel))

    # ------------------------------------------------------------------
    # 2. Redis
    # ------------------------------------------------------------------
    redis_client = redis.Redis.from_url(redis_url, decode_responses=False)
    try:
        await redis_client.ping()
    except Exception as e:
        _logger.critical("Redis connection failed (%s): %s", redis_url, e)
        await redis_client.aclose()
        sys.exit(1)
    _logger.info("Redis connected: %s", redis_url)

    # ------------------------------------------------------------------
    # 3. Node connection
    # ------------------------------------------------------------------
    connection = EthConnection(ws_url)
    try:
        await connection.connect()
    except ConnectionError as e:
        _logger.critical("Could not connect to the Ethereum node: %s", e)
        await redis_client.aclose()
        sys.exit(1)

    # ------------------------------------------------------------------
    # 4-7. Registry, multiplexer, sink, gateway
    # ------------------------------------------------------------------
    registry = build_registry(registry_backend, redis_client)
    if isinstance(registry, RedisRegistry):
        await _seed_redis_registry(registry)
    multiplexer = SubscriptionMultiplexer(connection, registry)
    sink = RedisSink(redis_client, channel=get_channel("events"))
    gateway = CommandGateway(
        redis_client,
        multiplexer,
        sink,
        subscribe_channel=subscribe_channel,
        unsubscribe_channel=unsubscribe_channel,
    )

    # ------------------------------------------------------------------
    # Signal handling for graceful shutdown
    # ------------------------------------------------------------------
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(sig: signal.Signals) -> None:
        _logger.info("Received %s, initiating graceful shutdown", sig.name)
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    gateway_task = asyncio.create_task(gateway.run(), name="command_gateway")
    gateway_task.add_done_callback(lambda _t: shutdown_event.set())
    _logger.info("Initialized event engine")

    # ------------------------------------------------------------------
    # Wait for shutdown, then tear down in reverse order
    # ------------------------------------------------------------------
    try:
        await shutdown_event.wait()
    finally:
        _logger.info("Shutting down")

        gateway.stop()
        if not gateway_task.done():
            gateway_task.cancel()
        results = await asyncio.gather(gateway_task, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                _logger.error("Gateway exited with error: %s", result)

        await multiplexer.close(drain_timeout=drain_timeout)
        await connection.close()
        await redis_client.aclose()
        _logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    """Synchronous entry point."""
    create_module_log_directories()
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        _logger.info("Interrupted by user")


if __name__ == "__main__":
    main()
