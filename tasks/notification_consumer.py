"""
tasks/notification_consumer.py
Long-running notification consumer worker (Redis Streams, not Celery).

    python -m tasks.notification_consumer                 # all partitions
    python -m tasks.notification_consumer --partitions 0,2

Each partition must be owned by exactly one running worker so records
for one appointment are delivered in order. The dead-letter consumer runs
in the worker that owns partition 0.
"""

import argparse
import asyncio
import logging
import signal
import socket
from typing import List, Optional

from config.log_config import configure_logging
from config.redis_client import create_redis
from config.settings import settings
from services.container import build_event_log
from services.notification.consumer import (
    DeadLetterConsumer,
    NotificationConsumer,
    RetryPolicy,
)
from services.notification.senders import ResendEmailSender

logger = logging.getLogger(__name__)


def _parse_partitions(raw: Optional[str]) -> List[int]:
    if not raw:
        return list(range(settings.NOTIFICATION_PARTITIONS))
    partitions = sorted({int(p) for p in raw.split(",") if p.strip()})
    for p in partitions:
        if not 0 <= p < settings.NOTIFICATION_PARTITIONS:
            raise ValueError(f"Partition {p} out of range 0..{settings.NOTIFICATION_PARTITIONS - 1}")
    return partitions


async def run_worker(partitions: List[int], consumer_id: str) -> None:
    redis = create_redis()
    event_log = build_event_log(settings, redis)

    consumer = NotificationConsumer(
        event_log,
        sender=ResendEmailSender(settings.RESEND_API_KEY, settings.EMAIL_FROM),
        retry_policy=RetryPolicy.from_settings(settings),
        group=settings.NOTIFICATION_CONSUMER_GROUP,
        consumer_name=consumer_id,
        batch_size=settings.NOTIFICATION_BATCH_SIZE,
        block_ms=settings.NOTIFICATION_BLOCK_MS,
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    jobs = [consumer.run(stop, partitions)]
    if 0 in partitions:
        dead_letters = DeadLetterConsumer(
            event_log,
            group=settings.NOTIFICATION_DLQ_GROUP,
            consumer_name=consumer_id,
            block_ms=settings.NOTIFICATION_BLOCK_MS,
        )
        jobs.append(dead_letters.run(stop))

    try:
        await asyncio.gather(*jobs)
    finally:
        await redis.aclose()
        logger.info("Notification consumer stopped")


def main() -> None:
    parser = argparse.ArgumentParser(description="Appointment notification consumer")
    parser.add_argument("--partitions", help="comma-separated partition numbers to own")
    parser.add_argument(
        "--name",
        default=socket.gethostname(),
        help="stable consumer name; a restarted worker with the same name replays its pending records",
    )
    args = parser.parse_args()

    configure_logging()
    asyncio.run(run_worker(_parse_partitions(args.partitions), args.name))


if __name__ == "__main__":
    main()
