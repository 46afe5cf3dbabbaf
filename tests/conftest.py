"""
Shared pytest configuration and fixtures for Ethereum Event Engine tests.

Provides sample ABIs, sample commands and in-process fakes for the node
connection so multiplexer and gateway tests run without a node or Redis.
"""

from __future__ import annotations

import itertools
from typing import Any
from unittest.mock import MagicMock

import pytest

from shared.types import AttachmentHandle

# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

USDT_ADDRESS = "0xdAC17F958D2ee523a2206206994597C13D831ec7"
WETH_ADDRESS = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
SAMPLE_SENDER = "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"
SAMPLE_RECEIVER = "0x1234567890AbcdEF1234567890aBcdef12345678"

ERC20_ABI = [
    "event Transfer(address indexed from, address indexed to, uint256 value)",
    "event Approval(address indexed owner, address indexed spender, uint256 value)",
    "function balanceOf(address owner) view returns (uint256)",
]


def _make_payload(
    event_type: str = "largeBuy",
    trigger_value: Any = 200,
    label: str = "Tether Token",
    address: str = USDT_ADDRESS,
    abi: list[str] | None = None,
) -> dict[str, Any]:
    """Wire-shaped subscribe/unsubscribe command."""
    return {
        "address": address,
        "abi": list(ERC20_ABI if abi is None else abi),
        "type": event_type,
        "triggerValue": trigger_value,
        "label": label,
    }


@pytest.fixture
def make_payload():
    return _make_payload


# ---------------------------------------------------------------------------
# Fake node connection
# ---------------------------------------------------------------------------


class FakeConnection:
    """
    Stands in for EthConnection: records attachments and lets tests push
    raw events straight into the registered callbacks.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.callbacks: dict[int, Any] = {}
        self.attach_calls: list[tuple[str, tuple[str, ...], str]] = []
        self.detached: list[AttachmentHandle] = []
        self.fail_attach: Exception | None = None
        self.fail_detach: Exception | None = None

    @property
    def listener_count(self) -> int:
        return len(self.callbacks)

    async def attach(self, address, abi, event_name, on_raw_event) -> AttachmentHandle:
        self.attach_calls.append((address, tuple(abi), event_name))
        if self.fail_attach is not None:
            raise self.fail_attach
        handle = AttachmentHandle(handle_id=next(self._ids), address=address, event_name=event_name)
        self.callbacks[handle.handle_id] = on_raw_event
        return handle

    async def detach(self, handle: AttachmentHandle) -> None:
        self.detached.append(handle)
        self.callbacks.pop(handle.handle_id, None)
        if self.fail_detach is not None:
            raise self.fail_detach

    def emit(self, raw_args: dict[str, Any]) -> list[int]:
        """Deliver one raw event to every live attachment; returns per-attachment fire counts."""
        return [cb(dict(raw_args)) for cb in list(self.callbacks.values())]


@pytest.fixture
def fake_connection():
    return FakeConnection()


@pytest.fixture
def memory_registry():
    from registry.memory_registry import MemoryRegistry

    registry = MemoryRegistry()
    registry.load_seed([
        {"address": USDT_ADDRESS, "type": "largeBuy", "eventName": "Transfer", "eventField": "value"},
        {"address": USDT_ADDRESS, "type": "largeSell", "eventName": "Transfer", "eventField": "value"},
        {"address": USDT_ADDRESS, "type": "bigApproval", "eventName": "Approval", "eventField": "value"},
        {"address": USDT_ADDRESS, "type": "badField", "eventName": "Transfer", "eventField": "amount"},
    ])
    return registry


@pytest.fixture
def mock_logger():
    return MagicMock()
