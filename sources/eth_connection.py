"""
Shared WebSocket connection to an Ethereum node.

One socket carries every log subscription the engine holds. Each attach()
issues its own eth_subscribe("logs", {address, topics: [topic0]}) and gets
back an AttachmentHandle; notifications are routed by subscription id,
decoded against the subscriber's ABI and handed to the attachment callback
as a plain {arg_name: value} dict.

On connection loss the reader reconnects with exponential backoff plus
jitter and re-issues eth_subscribe for every live attachment. Handles stay
valid across reconnects.

Usage:
    conn = EthConnection(ws_url)
    await conn.connect()
    handle = await conn.attach(address, abi, "Transfer", on_raw_event)
    ...
    await conn.detach(handle)
    await conn.close()
"""

from __future__ import annotations

import asyncio
import itertools
import json
import random
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed

from config.loader import get_config
from engine_logging.logger_manager import setup_module_logger
from shared.constants import (
    DEFAULT_JITTER_MAX,
    DEFAULT_MAX_CONNECTION_ATTEMPTS,
    DEFAULT_RECONNECT_BASE_DELAY,
    DEFAULT_RECONNECT_MAX_DELAY,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    MAX_WS_MESSAGE_SIZE,
)
from shared.types import AttachmentHandle, RawEventArgs
from sources.abi_events import AbiEventError, EventSpec, decode_log, find_event


class AttachmentError(Exception):
    """Raised when a listener cannot be attached to or detached from the node."""


@dataclass
class _Attachment:
    handle: AttachmentHandle
    spec: EventSpec
    log_filter: dict[str, Any]
    on_raw_event: Callable[[RawEventArgs], None]
    subscription_id: str


class EthConnection:
    """JSON-RPC over a single WebSocket with eth_subscribe log routing."""

    def __init__(self, ws_url: str, connect_fn: Callable[..., Any] | None = None) -> None:
        self._ws_url = ws_url
        self._connect_fn = connect_fn or websockets.connect

        ws_cfg = get_config().get_websocket_config()
        conn_cfg = ws_cfg.get("connection", {})
        self._max_attempts: int = conn_cfg.get(
            "max_connection_attempts", DEFAULT_MAX_CONNECTION_ATTEMPTS
        )
        self._ping_interval = conn_cfg.get("ping_interval_seconds", 20)
        self._ping_timeout = conn_cfg.get("ping_timeout_seconds", 30)
        self._close_timeout = conn_cfg.get("close_timeout_seconds", 10)
        self._request_timeout: float = ws_cfg.get("timeouts", {}).get(
            "request_timeout_seconds", DEFAULT_REQUEST_TIMEOUT_SECONDS
        )
        reconnect_cfg = ws_cfg.get("reconnection", {})
        self._base_delay = reconnect_cfg.get("base_delay_seconds", DEFAULT_RECONNECT_BASE_DELAY)
        self._max_delay = reconnect_cfg.get("max_delay_seconds", DEFAULT_RECONNECT_MAX_DELAY)
        self._jitter_max = reconnect_cfg.get("jitter_max_seconds", DEFAULT_JITTER_MAX)

        self._ws: Any = None
        self._reader_task: asyncio.Task[None] | None = None
        self._resubscribe_task: asyncio.Task[None] | None = None
        self._closing = False
        self._request_ids = itertools.count(1)
        self._handle_ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._attachments: dict[int, _Attachment] = {}
        self._by_subscription: dict[str, int] = {}

        self._logger = setup_module_logger(
            "eth_connection", "eth_connection.log", module_folder="Eth_Connection_Logs"
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._closing

    @property
    def listener_count(self) -> int:
        """Number of live eth_subscribe attachments."""
        return len(self._attachments)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the socket (with retries) and start the reader task."""
        self._closing = False
        await self._open()
        self._reader_task = asyncio.create_task(self._reader_loop(), name="eth_connection_reader")

    async def close(self) -> None:
        """Stop the reader, fail pending requests and close the socket."""
        self._closing = True
        for task in (self._resubscribe_task, self._reader_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._fail_pending(ConnectionError("connection closed"))
        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as e:
                self._logger.warning("Error closing WebSocket: %s", e)
        self._ws = None
        self._attachments.clear()
        self._by_subscription.clear()
        self._logger.info("Connection to %s closed", self._ws_url)

    async def _open(self) -> None:
        attempt = 0
        while not self._closing:
            try:
                self._logger.info("Connecting to %s...", self._ws_url)
                self._ws = await self._connect_fn(
                    self._ws_url,
                    ping_interval=self._ping_interval,
                    ping_timeout=self._ping_timeout,
                    close_timeout=self._close_timeout,
                    max_size=MAX_WS_MESSAGE_SIZE,
                )
                self._logger.info("Connected to %s", self._ws_url)
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                attempt += 1
                if attempt >= self._max_attempts:
                    self._logger.critical(
                        "Exhausted %d connection attempts to %s: %s",
                        self._max_attempts,
                        self._ws_url,
                        e,
                    )
                    raise ConnectionError(
                        f"Could not connect to {self._ws_url} after {attempt} attempts"
                    ) from e
                delay = min(
                    self._base_delay * (2 ** attempt) + random.uniform(0, self._jitter_max),
                    self._max_delay,
                )
                self._logger.warning(
                    "Connection attempt %d/%d failed: %s. Retry in %.1fs",
                    attempt,
                    self._max_attempts,
                    e,
                    delay,
                )
                await asyncio.sleep(delay)
        raise ConnectionError("connection is closing")

    # ------------------------------------------------------------------
    # Attach / detach
    # ------------------------------------------------------------------

    async def attach(
        self,
        address: str,
        abi: Sequence[str],
        event_name: str,
        on_raw_event: Callable[[RawEventArgs], None],
    ) -> AttachmentHandle:
        """Subscribe to ``event_name`` logs emitted by ``address``."""
        if not self.is_connected:
            raise AttachmentError("not connected to an Ethereum node")
        try:
            spec = find_event(abi, event_name)
        except AbiEventError as e:
            raise AttachmentError(str(e)) from e

        log_filter: dict[str, Any] = {"address": address}
        if not spec.anonymous:
            log_filter["topics"] = [spec.topic0]

        try:
            subscription_id = await self._request("eth_subscribe", ["logs", log_filter])
        except AttachmentError:
            raise
        except Exception as e:
            raise AttachmentError(f"eth_subscribe failed for {address}/{event_name}: {e}") from e

        handle = AttachmentHandle(
            handle_id=next(self._handle_ids), address=address, event_name=event_name
        )
        self._attachments[handle.handle_id] = _Attachment(
            handle=handle,
            spec=spec,
            log_filter=log_filter,
            on_raw_event=on_raw_event,
            subscription_id=subscription_id,
        )
        self._by_subscription[subscription_id] = handle.handle_id
        self._logger.info(
            "Attached %s %s (subscription %s)", address, spec.signature, subscription_id
        )
        return handle

    async def detach(self, handle: AttachmentHandle) -> None:
        """Drop the route and send eth_unsubscribe; raises AttachmentError if the node refuses."""
        attachment = self._attachments.pop(handle.handle_id, None)
        if attachment is None:
            return
        routed = self._by_subscription.pop(attachment.subscription_id, None) is not None
        if not self.is_connected:
            return
        if not routed:
            # Stale id from before a reconnect; the node no longer knows it
            self._logger.info(
                "Detached %s %s before it was resubscribed", handle.address, handle.event_name
            )
            return
        try:
            await self._request("eth_unsubscribe", [attachment.subscription_id])
        except Exception as e:
            raise AttachmentError(
                f"eth_unsubscribe failed for subscription {attachment.subscription_id}: {e}"
            ) from e
        self._logger.info(
            "Detached %s %s (subscription %s)",
            handle.address,
            handle.event_name,
            attachment.subscription_id,
        )

    # ------------------------------------------------------------------
    # JSON-RPC
    # ------------------------------------------------------------------

    async def _request(self, method: str, params: list[Any]) -> Any:
        request_id = next(self._request_ids)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._ws.send(
                json.dumps({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params})
            )
            return await asyncio.wait_for(future, timeout=self._request_timeout)
        except asyncio.TimeoutError as e:
            raise AttachmentError(f"{method} timed out after {self._request_timeout}s") from e
        finally:
            self._pending.pop(request_id, None)

    def _fail_pending(self, exc: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(exc)
        self._pending.clear()

    # ------------------------------------------------------------------
    # Reader
    # ------------------------------------------------------------------

    async def _reader_loop(self) -> None:
        while not self._closing:
            try:
                async for raw in self._ws:
                    self._handle_message(raw)
                self._logger.warning("WebSocket closed by peer")
            except asyncio.CancelledError:
                raise
            except ConnectionClosed as e:
                self._logger.warning("WebSocket connection closed: %s", e)
            except Exception as e:
                self._logger.error("Error in WebSocket reader: %s", e, exc_info=True)

            self._fail_pending(ConnectionError("connection lost"))
            if self._closing:
                break
            await self._discard_socket()
            try:
                await self._open()
            except ConnectionError:
                self._ws = None
                self._logger.critical("Giving up on %s; live attachments are stale", self._ws_url)
                return
            # Resubscribe from a separate task: responses arrive through this loop.
            self._resubscribe_task = asyncio.create_task(
                self._resubscribe_all(), name="eth_connection_resubscribe"
            )

    async def _discard_socket(self) -> None:
        old_ws, self._ws = self._ws, None
        if old_ws is None:
            return
        try:
            await old_ws.close()
        except Exception as e:
            self._logger.debug("Error closing dropped WebSocket: %s", e)

    async def _resubscribe_all(self) -> None:
        self._by_subscription.clear()
        for attachment in list(self._attachments.values()):
            handle = attachment.handle
            try:
                subscription_id = await self._request(
                    "eth_subscribe", ["logs", attachment.log_filter]
                )
            except Exception as e:
                self._logger.error(
                    "Resubscribe failed for %s %s: %s", handle.address, handle.event_name, e
                )
                continue
            if self._attachments.get(handle.handle_id) is not attachment:
                # Detached while eth_subscribe was in flight
                self._logger.info(
                    "Dropping subscription %s for detached %s %s",
                    subscription_id,
                    handle.address,
                    handle.event_name,
                )
                try:
                    await self._request("eth_unsubscribe", [subscription_id])
                except Exception as e:
                    self._logger.warning(
                        "eth_unsubscribe failed for subscription %s: %s", subscription_id, e
                    )
                continue
            attachment.subscription_id = subscription_id
            self._by_subscription[subscription_id] = attachment.handle.handle_id
        self._logger.info("Resubscribed %d attachment(s)", len(self._by_subscription))

    def _handle_message(self, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError as e:
            self._logger.warning("Invalid JSON message: %s", e)
            return

        if not isinstance(message, dict):
            self._logger.warning("Ignoring non-object message: %.200s", raw)
            return

        request_id = message.get("id")
        if request_id is not None:
            future = self._pending.get(request_id)
            if future is None or future.done():
                return
            if message.get("error"):
                error = message["error"]
                reason = error.get("message", error) if isinstance(error, dict) else error
                future.set_exception(AttachmentError(f"node error: {reason}"))
            else:
                future.set_result(message.get("result"))
            return

        if message.get("method") != "eth_subscription":
            return
        params = message.get("params")
        log = params.get("result") if isinstance(params, dict) else None
        if not isinstance(log, dict):
            self._logger.warning("Malformed eth_subscription notification: %.200s", raw)
            return
        self._route_log(params.get("subscription"), log)

    def _route_log(self, subscription_id: str | None, log: dict[str, Any]) -> None:
        handle_id = self._by_subscription.get(subscription_id) if subscription_id else None
        attachment = self._attachments.get(handle_id) if handle_id is not None else None
        if attachment is None:
            self._logger.debug("Notification for unknown subscription %s", subscription_id)
            return
        if log.get("removed"):
            self._logger.info(
                "Skipping removed log %s for %s", log.get("transactionHash"), attachment.spec.name
            )
            return
        try:
            args = decode_log(attachment.spec, log)
        except AbiEventError as e:
            self._logger.warning("Undecodable log for %s: %s", attachment.handle.address, e)
            return
        try:
            attachment.on_raw_event(args)
        except Exception as e:
            self._logger.error(
                "Raw event handler failed for %s %s: %s",
                attachment.handle.address,
                attachment.spec.name,
                e,
                exc_info=True,
            )
