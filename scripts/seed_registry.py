#!/usr/bin/env python3
"""
Seed the Redis Event Registry

Writes (address, type) -> (eventName, eventField) mappings so that
subscribe commands for that type can be resolved.

Usage:
    python scripts/seed_registry.py 0xdAC17F958D2ee523a2206206994597C13D831ec7 largeBuy Transfer value
    python scripts/seed_registry.py --file mappings.json

mappings.json is a list of {"address", "type", "eventName", "eventField"} objects.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

import redis.asyncio as redis

# Project root on sys.path when launched as a plain script
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.loader import get_config, get_env_var, get_key_prefix  # noqa: E402
from core.payload_validator import ADDRESS_RE  # noqa: E402
from registry.redis_registry import RedisRegistry  # noqa: E402
from shared.constants import DEFAULT_REDIS_URL  # noqa: E402
from shared.types import EventDescriptor  # noqa: E402


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Write event registry mappings to Redis")
    parser.add_argument("address", nargs="?", help="Contract address")
    parser.add_argument("type", nargs="?", help="Logical subscription type, e.g. largeBuy")
    parser.add_argument("event_name", nargs="?", help="On-chain event name, e.g. Transfer")
    parser.add_argument("event_field", nargs="?", help="Decoded field to compare, e.g. value")
    parser.add_argument("--file", type=Path, help="JSON file with a list of mappings")
    parser.add_argument("--redis-url", default=None, help="Overrides REDIS_URL")
    args = parser.parse_args(argv)

    positional = [args.address, args.type, args.event_name, args.event_field]
    if args.file is None and not all(positional):
        parser.error("either --file or all of address, type, event_name, event_field are required")
    return args


def load_mappings(args) -> list:
    if args.file is not None:
        with open(args.file, "r") as f:
            entries = json.load(f)
    else:
        entries = [{
            "address": args.address,
            "type": args.type,
            "eventName": args.event_name,
            "eventField": args.event_field,
        }]

    for idx, entry in enumerate(entries):
        missing = [k for k in ("address", "type", "eventName", "eventField") if k not in entry]
        if missing:
            raise ValueError(f"mapping {idx} is missing {', '.join(missing)}")
        if not ADDRESS_RE.fullmatch(entry["address"]):
            raise ValueError(f"mapping {idx} has an invalid address: {entry['address']}")
    return entries


async def seed(redis_url: str, entries: list) -> int:
    client = redis.Redis.from_url(redis_url)
    registry = RedisRegistry(client, key_prefix=get_key_prefix("registry"))
    written = 0
    try:
        for entry in entries:
            ok = await registry.set(entry["address"], entry["type"], EventDescriptor.from_dict(entry))
            status = "✓" if ok else "❌"
            print(f"  {status} {entry['address']} {entry['type']} -> {entry['eventName']}.{entry['eventField']}")
            written += int(ok)
    finally:
        await client.aclose()
    return written


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        entries = load_mappings(args)
    except (OSError, ValueError) as e:
        print(f"❌ ERROR: {e}")
        return 1

    redis_url = args.redis_url or get_env_var(
        "REDIS_URL", get_config().get_redis_channels().get("redis_url", DEFAULT_REDIS_URL), str
    )
    print(f"Seeding {len(entries)} mapping(s) into {redis_url}...")
    written = asyncio.run(seed(redis_url, entries))
    print(f"\nDone: {written}/{len(entries)} written")
    return 0 if written == len(entries) else 1


if __name__ == "__main__":
    sys.exit(main())
