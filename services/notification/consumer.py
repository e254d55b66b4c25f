"""
services/notification/consumer.py
At-least-once notification consumer with bounded retries and a dead-letter stream.

Per record:
  1. Parse; unparsable payloads or a missing recipient are poison and go
     straight to the dead-letter stream.
  2. Send under the RetryPolicy.
  3. Acknowledge only once the send succeeded or the record was
     dead-lettered, so a failing record never blocks its partition.

Partitions are consumed in parallel; records inside one partition are
handled strictly in order.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional, Protocol

from pydantic import ValidationError
from redis.exceptions import RedisError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from config.settings import Settings
from services.notification.event_log import EventRecord, RedisStreamEventLog
from shared.exceptions import PoisonMessage
from shared.schemas.schemas import NotificationEvent

logger = logging.getLogger(__name__)


class NotificationSender(Protocol):
    async def send(self, event: NotificationEvent) -> None: ...


class RetryPolicy:
    """Fixed-delay retry. max_attempts counts the first try."""

    def __init__(self, max_attempts: int = 4, delay_seconds: float = 5.0):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.delay_seconds = delay_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.NOTIFICATION_MAX_ATTEMPTS,
            delay_seconds=settings.NOTIFICATION_RETRY_DELAY_SECONDS,
        )

    async def run(self, func: Callable[..., Awaitable], *args):
        result = None
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.delay_seconds),
            retry=retry_if_not_exception_type(PoisonMessage),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                result = await func(*args)
        return result


def parse_event(record: EventRecord) -> NotificationEvent:
    try:
        event = NotificationEvent.from_wire(record.value)
    except ValidationError as e:
        raise PoisonMessage(f"Unparsable notification payload: {e.error_count()} error(s)") from e
    if not event.recipient:
        raise PoisonMessage(f"Notification {event.event_id} has no recipient")
    return event


class NotificationConsumer:
    def __init__(
        self,
        event_log: RedisStreamEventLog,
        sender: NotificationSender,
        retry_policy: RetryPolicy,
        group: str,
        consumer_name: str,
        batch_size: int = 10,
        block_ms: Optional[int] = 3000,
    ):
        self.event_log = event_log
        self.sender = sender
        self.retry_policy = retry_policy
        self.group = group
        self.consumer_name = consumer_name
        self.batch_size = batch_size
        self.block_ms = block_ms

    async def handle(self, record: EventRecord) -> bool:
        """Process one record and acknowledge it. Returns True if it was delivered."""
        delivered = False
        try:
            event = parse_event(record)
            await self.retry_policy.run(self.sender.send, event)
            delivered = True
        except PoisonMessage as e:
            logger.error(f"Poison record {record.message_id} on {record.stream}: {e.message}")
            await self.event_log.append_dead_letter(record, e.message)
        except Exception as e:
            logger.error(
                f"Record {record.message_id} on {record.stream} failed after "
                f"{self.retry_policy.max_attempts} attempt(s), dead-lettering: {e}"
            )
            await self.event_log.append_dead_letter(record, f"{type(e).__name__}: {e}")

        await self.event_log.ack(record, self.group)
        return delivered

    def _member(self, partition: int) -> str:
        return f"{self.consumer_name}-p{partition}"

    async def poll(self, partition: int, pending: bool = False, block_ms: Optional[int] = None) -> int:
        """Read and handle one batch from a partition. Returns the number of records handled."""
        records = await self.event_log.read(
            self.event_log.stream_name(partition),
            self.group,
            self._member(partition),
            count=self.batch_size,
            block_ms=block_ms,
            pending=pending,
        )
        for record in records:
            await self.handle(record)
        return len(records)

    async def drain_pending(self, partition: int) -> int:
        """Replay records delivered to this member before a restart but never acknowledged."""
        total = 0
        while True:
            handled = await self.poll(partition, pending=True)
            if not handled:
                return total
            total += handled

    async def consume_partition(self, partition: int, stop: asyncio.Event) -> None:
        """
        Consume one partition until `stop` is set. Pending records are
        replayed first at start and after any Redis error, so a batch cut
        short by a failed ack is finished before newer records are read.
        """
        replay = True
        while not stop.is_set():
            try:
                if replay:
                    await self.drain_pending(partition)
                    replay = False
                await self.poll(partition, block_ms=self.block_ms)
            except RedisError as e:
                logger.error(f"Partition {partition} read failed, backing off: {e}")
                replay = True
                await asyncio.sleep(1)

    async def run(self, stop: asyncio.Event, partitions: Optional[Iterable[int]] = None) -> None:
        owned = list(partitions) if partitions is not None else list(range(self.event_log.partitions))
        for partition in owned:
            await self.event_log.ensure_group(self.event_log.stream_name(partition), self.group)
        logger.info(f"Notification consumer {self.consumer_name} consuming partitions {owned}")
        await asyncio.gather(*(self.consume_partition(p, stop) for p in owned))


class DeadLetterConsumer:
    """Reads the dead-letter stream and raises an alert per record. Never raises."""

    def __init__(
        self,
        event_log: RedisStreamEventLog,
        group: str,
        consumer_name: str,
        batch_size: int = 10,
        block_ms: Optional[int] = 3000,
    ):
        self.event_log = event_log
        self.group = group
        self.consumer_name = consumer_name
        self.batch_size = batch_size
        self.block_ms = block_ms

    async def handle(self, record: EventRecord) -> None:
        try:
            logger.error(
                f"ALERT: notification dead-lettered key={record.key} "
                f"source={record.headers.get('source_stream')}/{record.headers.get('source_id')} "
                f"error={record.headers.get('error')} payload={record.value[:500]}"
            )
            await self.event_log.ack(record, self.group)
        except Exception:
            logger.exception(f"Dead-letter handling failed for {record.message_id}")

    async def poll(self, pending: bool = False, block_ms: Optional[int] = None) -> int:
        try:
            records = await self.event_log.read(
                self.event_log.dead_letter_stream,
                self.group,
                self.consumer_name,
                count=self.batch_size,
                block_ms=block_ms,
                pending=pending,
            )
        except RedisError as e:
            logger.error(f"Dead-letter read failed, backing off: {e}")
            await asyncio.sleep(1)
            return 0
        for record in records:
            await self.handle(record)
        return len(records)

    async def run(self, stop: asyncio.Event) -> None:
        await self.event_log.ensure_group(self.event_log.dead_letter_stream, self.group)
        while await self.poll(pending=True):
            pass
        while not stop.is_set():
            await self.poll(block_ms=self.block_ms)
