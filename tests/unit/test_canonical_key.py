"""
Unit tests for core/canonical_key.py and shared/serialization_utils.py.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal

import pytest

from core.canonical_key import canonical_key_material, content_hash, derive_canonical_key
from shared.serialization_utils import DecimalEncoder, canonical_json

USDT_ADDRESS = "0xdAC17F958D2ee523a2206206994597C13D831ec7"
ABI = [
    "event Transfer(address indexed from, address indexed to, uint256 value)",
    "event Approval(address indexed owner, address indexed spender, uint256 value)",
]


class TestCanonicalJson:
    def test_sorted_and_compact(self):
        assert canonical_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'

    def test_nested_keys_sorted(self):
        assert canonical_json({"x": {"z": 1, "y": 2}}) == '{"x":{"y":2,"z":1}}'

    def test_decimal_and_bytes(self):
        assert canonical_json({"d": Decimal("1.5"), "b": b"\x01"}) == '{"b":"0x01","d":"1.5"}'

    def test_nan_rejected(self):
        with pytest.raises(ValueError):
            canonical_json({"v": float("nan")})

    def test_unknown_type_rejected(self):
        with pytest.raises(TypeError):
            canonical_json({"v": object()})


class TestDeriveCanonicalKey:
    def test_is_sha256_hex(self):
        key = derive_canonical_key(ABI, USDT_ADDRESS, "Transfer")
        assert len(key) == 64
        int(key, 16)

    def test_matches_digest_of_material(self):
        material = canonical_key_material(ABI, USDT_ADDRESS, "Transfer")
        expected = hashlib.sha256(canonical_json(material).encode("utf-8")).hexdigest()
        assert derive_canonical_key(ABI, USDT_ADDRESS, "Transfer") == expected

    def test_deterministic(self):
        assert derive_canonical_key(ABI, USDT_ADDRESS, "Transfer") == derive_canonical_key(
            tuple(ABI), USDT_ADDRESS, "Transfer"
        )

    def test_event_name_changes_key(self):
        assert derive_canonical_key(ABI, USDT_ADDRESS, "Transfer") != derive_canonical_key(
            ABI, USDT_ADDRESS, "Approval"
        )

    def test_abi_order_changes_key(self):
        assert derive_canonical_key(ABI, USDT_ADDRESS, "Transfer") != derive_canonical_key(
            list(reversed(ABI)), USDT_ADDRESS, "Transfer"
        )

    def test_address_changes_key(self):
        other = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
        assert derive_canonical_key(ABI, USDT_ADDRESS, "Transfer") != derive_canonical_key(
            ABI, other, "Transfer"
        )


class TestContentHash:
    def test_independent_of_key_order(self):
        a = {"address": USDT_ADDRESS, "type": "largeBuy", "triggerValue": 200}
        b = {"triggerValue": 200, "type": "largeBuy", "address": USDT_ADDRESS}
        assert content_hash(a) == content_hash(b)

    def test_value_changes_hash(self):
        assert content_hash({"triggerValue": 200}) != content_hash({"triggerValue": 201})


class TestDecimalEncoder:
    def test_large_int_becomes_string(self):
        out = json.loads(json.dumps({"value": 2**64}, cls=DecimalEncoder))
        assert out["value"] == str(2**64)

    def test_small_int_and_bool_unchanged(self):
        out = json.loads(json.dumps({"value": 42, "flag": True}, cls=DecimalEncoder))
        assert out == {"value": 42, "flag": True}

    def test_decimal_and_bytes(self):
        out = json.loads(json.dumps({"d": Decimal("0.1"), "h": b"\xab"}, cls=DecimalEncoder))
        assert out == {"d": "0.1", "h": "0xab"}

    def test_hexbytes(self):
        from hexbytes import HexBytes

        out = json.loads(json.dumps({"h": HexBytes("0x01ff")}, cls=DecimalEncoder))
        assert out["h"] == "0x01ff"
