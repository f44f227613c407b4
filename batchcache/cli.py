# ==============================================
# CLI: Command Line Entry Point
# ==============================================
#
# COMMANDS:
# ---------
# 1. Feed a set of sample events through the store and print stats:
#    python -m batchcache.cli demo
#
# 2. Stream events from the configured HTTP source:
#    python -m batchcache.cli stream --count 100
#    python -m batchcache.cli stream --interval 0.5 --url http://host:8000/events
#
# 3. Show the resolved configuration (.env + environment):
#    python -m batchcache.cli config
#
# ==============================================

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
import time
from typing import List, Optional

from batchcache import __version__
from batchcache.config import AppConfig, load_config
from batchcache.exceptions import ConfigurationError
from batchcache.pipeline import StreamingPipeline
from batchcache.records.record_store import RecordStore


def sample_events(now: Optional[int] = None) -> List[dict]:
    """A small conversation covering every category, shaped like the live feed."""
    now = now or int(time.time())
    group = "120363040000000000@g.us"
    alice = "5511900000001@s.whatsapp.net"
    bob = "5511900000002@s.whatsapp.net"

    return [
        {"type": "contacts", "data": [
            {"id": alice, "notify": "Alice"},
            {"id": bob, "name": "Bob", "status": "available"},
        ]},
        {"type": "groups", "data": {
            "id": group,
            "subject": "Weekend plans",
            "owner": alice,
            "creation": now - 86400,
            "participants": [{"id": alice, "admin": "superadmin"}, {"id": bob}],
        }},
        {"type": "messages", "data": {
            "key": {"remoteJid": group, "id": "MSG1", "participant": alice, "fromMe": False},
            "pushName": "Alice",
            "messageTimestamp": now - 60,
            "message": {"conversation": "Who is in for Saturday?"},
        }},
        {"type": "messages", "data": {
            "key": {"remoteJid": group, "id": "MSG2", "participant": bob, "fromMe": True},
            "pushName": "Bob",
            "messageTimestamp": now - 30,
            "message": {"extendedTextMessage": {"text": "Count me in"}},
        }},
        {"type": "messages", "data": {
            "key": {"remoteJid": alice, "id": "MSG3", "fromMe": False},
            "pushName": "Alice",
            "messageTimestamp": str(now),
            "message": {"imageMessage": {"caption": "The place"}},
        }},
        {"type": "receipts", "data": {
            "key": {"remoteJid": group, "id": "MSG2"},
            "userJid": alice,
            "type": "read",
            "timestamp": now,
        }},
        {"type": "reactions", "data": {
            "key": {"remoteJid": group, "id": "MSG1", "participant": bob},
            "reaction": {"text": "👍"},
        }},
    ]


def _print_stats(stats: dict) -> None:
    print(f"\n📊 Records:")
    for category, count in stats["records"].items():
        rejected = stats["rejected"][category]
        suffix = f" ({rejected} rejected)" if rejected else ""
        print(f"   → {category}: {count}{suffix}")

    cache = stats["cache"]
    print(f"\n🗄  Cache: {cache['size']}/{cache['max_size']} entries, "
          f"hit rate {cache['hit_rate']:.2%}, {cache['evictions']} evictions")

    batch = stats["batch"]
    print(f"📦 Batches: {batch['batches_processed']} processed, "
          f"{batch['total_processed']} items, {batch['errors']} errors")


async def run_demo(config: AppConfig) -> int:
    store = RecordStore(config)
    pipeline = StreamingPipeline(config, store=store)

    events = sample_events()
    accepted = pipeline.ingest_batch(events)
    print(f"✓ Queued {accepted} items from {len(events)} sample events")

    results = await store.stop()
    for category, result in results.items():
        if not result.ok:
            print(f"⚠ Flush of {category.value} ended with status '{result.status.value}'")

    group_chat = store.get_chat("120363040000000000@g.us")
    if group_chat is not None:
        print(f"✓ Group chat '{group_chat.data['name']}' has "
              f"{group_chat.data['unread_count']} unread message(s)")

    _print_stats(store.stats())
    pipeline.close()
    return 0


async def run_stream(config: AppConfig, count: Optional[int], interval: float) -> int:
    print(f"🚀 Streaming from {config.data_stream_url}")
    if count:
        print(f"   → Will stop after {count} events")
    else:
        print("   → Press Ctrl+C to stop")

    async with StreamingPipeline(config) as pipeline:
        summary = await pipeline.start_streaming(max_events=count, interval_seconds=interval)
        status = pipeline.get_status()

    print(f"\n✓ Ingested {summary['events_ingested']} events in {summary['elapsed_seconds']}s "
          f"({summary['events_per_second']} events/sec)")
    if summary["fetch_errors"]:
        print(f"⚠ {summary['fetch_errors']} fetch errors")
    _print_stats(status["store"])
    return 0


def show_config(config: AppConfig) -> int:
    data = dataclasses.asdict(config)
    for section in ("mysql", "mongo"):
        if data[section].get("password"):
            data[section]["password"] = "***"
    print(json.dumps(data, indent=2, default=str))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="batchcache",
        description="In-memory batching and caching pipeline for chat events",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("demo", help="Run sample events through the record store")

    stream = subparsers.add_parser("stream", help="Stream events from the HTTP source")
    stream.add_argument("--count", type=int, default=None, help="Stop after N events")
    stream.add_argument("--interval", type=float, default=0.1, help="Seconds between fetches")
    stream.add_argument("--url", default=None, help="Override DATA_STREAM_URL")

    subparsers.add_parser("config", help="Print the resolved configuration")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.env_file)
    except ConfigurationError as e:
        print(f"✗ Invalid configuration: {e}", file=sys.stderr)
        return 2

    if args.log_level:
        config.log_level = args.log_level
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "config":
        return show_config(config)
    if args.command == "demo":
        return asyncio.run(run_demo(config))
    if args.command == "stream":
        if args.url:
            config.data_stream_url = args.url
        try:
            return asyncio.run(run_stream(config, args.count, args.interval))
        except KeyboardInterrupt:
            print("\n⚠ Interrupted by user")
            return 130
    return 1


if __name__ == "__main__":
    sys.exit(main())
