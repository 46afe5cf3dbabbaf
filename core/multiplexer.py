"""
Subscription multiplexer.

Many logical subscriptions can watch the same on-chain event stream. The
multiplexer keys streams by canonical key (abi, address, eventName), keeps
exactly one connection attachment per key, and fans every raw event out to
the subscribers sharing that key:

    subscribe(largeBuy@200)   --+
    subscribe(largeBuy@300)   --+--> key K --> one eth_subscribe(Transfer)
    subscribe(largeSwap@1e6)  --+

    raw Transfer(value=100000) --> dispatch(K) --> largeBuy@200 fires
                                               --> largeBuy@300 fires
                                               --> largeSwap@1e6 skipped

A subscriber fires when the decoded ``event_field`` is >= its trigger value.
Callbacks run as independent asyncio tasks; a failing or slow callback does
not affect any other subscriber.

Unsubscribe removes the first subscriber matching (address, type, event
field, trigger value, label) and detaches the attachment once a key has no
subscribers left. Unknown subscriptions are a no-op.

Usage:
    mux = SubscriptionMultiplexer(connection, registry)
    await mux.subscribe(request, callback)
    await mux.unsubscribe(request)
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import itertools
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from core.canonical_key import derive_canonical_key
from engine_logging.logger_manager import setup_module_logger
from registry.base import RegistryLookupError
from shared.types import (
    EventCallback,
    ListenerEntry,
    RawEventArgs,
    SubscribedEvent,
    Subscriber,
    SubscribeRequest,
)
from sources.eth_connection import AttachmentError

if TYPE_CHECKING:
    from registry.base import EventRegistry
    from sources.eth_connection import EthConnection


def to_decimal(value: Any) -> Decimal | None:
    """Numeric interpretation of a decoded field; None when not a finite number."""
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        return Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        text = value.strip()
        try:
            if text[:2].lower() == "0x":
                return Decimal(int(text, 16))
            result = Decimal(text)
        except (InvalidOperation, ValueError):
            return None
    else:
        return None
    return result if result.is_finite() else None


class SubscriptionMultiplexer:
    """Owns the canonical key -> ListenerEntry map and every connection attachment."""

    def __init__(self, connection: EthConnection, registry: EventRegistry) -> None:
        self._connection = connection
        self._registry = registry

        # Insertion-ordered by first subscribe
        self._entries: dict[str, ListenerEntry] = {}
        # Serializes attach/append and remove/detach across their await points
        self._lock = asyncio.Lock()
        self._callback_tasks: set[asyncio.Task[None]] = set()
        self._subscribe_seq = itertools.count()

        self._logger = setup_module_logger(
            "multiplexer", "multiplexer.log", module_folder="Multiplexer_Logs"
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def listener_count(self) -> int:
        """Live attachments held by this multiplexer (one per key)."""
        return len(self._entries)

    def keys(self) -> list[str]:
        return list(self._entries)

    def get_entry(self, key: str) -> ListenerEntry | None:
        return self._entries.get(key)

    def subscribed_events(self) -> list[SubscribedEvent]:
        """Snapshot of every live subscriber, in subscribe order across all keys."""
        subscribers = sorted(
            (sub for entry in self._entries.values() for sub in entry.subscribers),
            key=lambda sub: sub.seq,
        )
        return [SubscribedEvent(address=sub.address, event_type=sub.event_type) for sub in subscribers]

    # ------------------------------------------------------------------
    # Subscribe / unsubscribe
    # ------------------------------------------------------------------

    async def subscribe(self, request: SubscribeRequest, callback: EventCallback) -> bool:
        """
        Register ``callback`` for ``request``.

        Raises:
            RegistryLookupError: no descriptor for (address, type).
            AttachmentError: a new key could not be attached; no entry is kept.
        """
        descriptor = await self._registry.get(request.address, request.event_type)
        key = derive_canonical_key(request.abi, request.address, descriptor.event_name)
        subscriber = Subscriber(
            address=request.address,
            event_type=request.event_type,
            trigger_value=request.trigger_value,
            label=request.label,
            event_field=descriptor.event_field,
            callback=callback,
            seq=next(self._subscribe_seq),
        )

        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                try:
                    handle = await self._connection.attach(
                        request.address,
                        request.abi,
                        descriptor.event_name,
                        functools.partial(self.dispatch, key),
                    )
                except AttachmentError:
                    raise
                except Exception as e:
                    raise AttachmentError(
                        f"Failed to attach {request.address}/{descriptor.event_name}: {e}"
                    ) from e
                entry = ListenerEntry(canonical_key=key, handle=handle)
                self._entries[key] = entry
                self._logger.info(
                    "New listener %s for %s.%s", key[:12], request.address, descriptor.event_name
                )
            entry.subscribers.append(subscriber)

        self._logger.info(
            "Subscribed %s/%s (%s >= %s, label=%r) on %s [%d subscriber(s)]",
            request.address,
            request.event_type,
            descriptor.event_field,
            request.trigger_value,
            request.label,
            key[:12],
            len(entry.subscribers),
        )
        return True

    async def unsubscribe(self, request: SubscribeRequest) -> bool:
        """Remove the first matching subscriber. Always returns True."""
        try:
            descriptor = await self._registry.get(request.address, request.event_type)
        except RegistryLookupError as e:
            self._logger.info("Unsubscribe ignored: %s", e)
            return True

        key = derive_canonical_key(request.abi, request.address, descriptor.event_name)

        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._logger.info(
                    "Unsubscribe ignored: no listener for %s/%s",
                    request.address,
                    request.event_type,
                )
                return True

            for idx, sub in enumerate(entry.subscribers):
                if sub.matches(
                    request.address,
                    request.event_type,
                    descriptor.event_field,
                    request.trigger_value,
                    request.label,
                ):
                    del entry.subscribers[idx]
                    break
            else:
                self._logger.info(
                    "Unsubscribe ignored: no matching subscriber for %s/%s on %s",
                    request.address,
                    request.event_type,
                    key[:12],
                )
                return True

            self._logger.info(
                "Unsubscribed %s/%s from %s [%d subscriber(s) left]",
                request.address,
                request.event_type,
                key[:12],
                len(entry.subscribers),
            )
            if not entry.subscribers:
                del self._entries[key]
                await self._detach(entry)

        return True

    async def _detach(self, entry: ListenerEntry) -> None:
        try:
            await self._connection.detach(entry.handle)
            self._logger.info("Detached listener %s", entry.canonical_key[:12])
        except Exception as e:
            self._logger.error(
                "Detach failed for %s (%s.%s): %s",
                entry.canonical_key[:12],
                entry.handle.address,
                entry.handle.event_name,
                e,
            )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, key: str, raw_args: RawEventArgs) -> int:
        """
        Evaluate every subscriber under ``key`` against one raw event.

        Returns the number of callbacks scheduled.
        """
        entry = self._entries.get(key)
        if entry is None:
            self._logger.debug("Dropping event for detached key %s", key[:12])
            return 0

        fired = 0
        for subscriber in list(entry.subscribers):
            if not self._is_triggered(subscriber, raw_args):
                continue
            task = asyncio.create_task(
                self._run_callback(subscriber, dict(raw_args)),
                name=f"callback:{subscriber.event_type}:{key[:8]}",
            )
            self._callback_tasks.add(task)
            task.add_done_callback(self._callback_tasks.discard)
            fired += 1
        return fired

    def _is_triggered(self, subscriber: Subscriber, raw_args: RawEventArgs) -> bool:
        if subscriber.event_field not in raw_args:
            self._logger.warning(
                "Event for %s/%s has no field '%s'",
                subscriber.address,
                subscriber.event_type,
                subscriber.event_field,
            )
            return False
        value = to_decimal(raw_args[subscriber.event_field])
        threshold = to_decimal(subscriber.trigger_value)
        if value is None or threshold is None:
            self._logger.warning(
                "Non-numeric comparison for %s/%s: %s=%r trigger=%r",
                subscriber.address,
                subscriber.event_type,
                subscriber.event_field,
                raw_args[subscriber.event_field],
                subscriber.trigger_value,
            )
            return False
        return value >= threshold

    async def _run_callback(self, subscriber: Subscriber, raw_args: RawEventArgs) -> None:
        try:
            result = subscriber.callback(raw_args)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.error(
                "Callback fault for %s/%s (label=%r): %s",
                subscriber.address,
                subscriber.event_type,
                subscriber.label,
                e,
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def wait_for_callbacks(self, timeout: float | None = None) -> None:
        """Wait until in-flight callbacks finish (or ``timeout`` elapses)."""
        if self._callback_tasks:
            await asyncio.wait(set(self._callback_tasks), timeout=timeout)

    async def close(self, drain_timeout: float | None = None) -> None:
        """Detach every listener and drain in-flight callbacks."""
        async with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
            for entry in entries:
                await self._detach(entry)
        await self.wait_for_callbacks(drain_timeout)
        self._logger.info("Multiplexer closed (%d listener(s) detached)", len(entries))
