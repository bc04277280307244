#!/usr/bin/env python3
"""
Queue Smoke Test — push a handful of messages through the dispatch queue.

Uses the transport from settings (the log transport by default), so it is
safe to run anywhere. Point it at the real gateway with --transport wasender
and WHATSAPP_ENABLED=true to check delivery end to end.

Usage:
    python scripts/queue_smoke.py                          # 4 messages, log transport
    python scripts/queue_smoke.py --count 10 --rate 60     # slower pacing
    python scripts/queue_smoke.py --transport wasender --to +254712345678
"""
import argparse
import asyncio
import json
import os
import sys
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dotenv import load_dotenv

from channels.factory import create_transport
from config.settings import load_settings
from dispatch_queue.service import DispatchQueue
from models.schemas import MessagePriority


def build_messages(destination: str, count: int) -> list[dict]:
    tiers = [MessagePriority.LOW, MessagePriority.NORMAL, MessagePriority.HIGH]
    messages = []
    for i in range(count):
        priority = tiers[i % len(tiers)]
        messages.append({
            "destination": destination,
            "payload": f"*Test Message {i + 1}*\n\nQueue smoke test ({priority.name.lower()} priority)",
            "metadata": {"type": "test", "test_number": i + 1},
            "priority": int(priority),
        })
    return messages


async def run(args) -> int:
    settings = load_settings(args.config)
    if args.rate:
        settings.dispatch.messages_per_minute = args.rate
    if args.transport:
        settings.transport.provider = args.transport

    transport = create_transport(settings.transport, settings.dispatch.permanent_signatures)
    queue = DispatchQueue(transport, settings.dispatch)

    print(f"\nRate limit: {queue.messages_per_minute} messages/minute")
    print(f"Delay between messages: {queue.delay_ms}ms")

    started = time.monotonic()
    job_ids = await queue.enqueue_bulk(build_messages(args.to, args.count))
    print(f"Queued {len(job_ids)} messages")

    status = queue.get_queue_status()
    for item in status.items:
        print(f"  {item.id[-8:]}  priority={item.priority}  status={item.status.value}")

    finished = await queue.wait_until_idle(timeout=args.timeout)
    elapsed = time.monotonic() - started
    await transport.close()

    stats = queue.get_stats()
    print(f"\nFinished in {elapsed:.2f}s" + ("" if finished else " (timed out)"))
    print(json.dumps(stats.model_dump(mode="json"), indent=2))
    return 0 if finished and stats.total_failed == 0 else 1


def main():
    load_dotenv()
    parser = argparse.ArgumentParser(description="Dispatch queue smoke test")
    parser.add_argument("--to", default=os.environ.get("TEST_PHONE_NUMBER", "+254700000000"),
                        help="Destination address")
    parser.add_argument("--count", type=int, default=4, help="Number of messages")
    parser.add_argument("--rate", type=int, default=0, help="Override messages per minute")
    parser.add_argument("--transport", choices=["log", "wasender"], help="Override transport")
    parser.add_argument("--config", default=None, help="Path to settings.yaml")
    parser.add_argument("--timeout", type=float, default=120.0, help="Seconds to wait for drain")
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
