"""
services/notification/event_log.py
Durable, partitioned event log on Redis Streams.

A topic is split into N streams ("<topic>:<n>"). Records are routed by
crc32(key) % N, so every record for one key lands in one ordered stream.
Dead letters go to "<topic>.DLT". Consumers use consumer groups and must
XACK a record before it leaves their pending list.
"""

import logging
import zlib
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import ResponseError

logger = logging.getLogger(__name__)


def partition_for(key: str, partitions: int) -> int:
    return zlib.crc32(key.encode("utf-8")) % partitions


@dataclass(frozen=True)
class EventRecord:
    stream: str
    message_id: str
    key: str
    value: str
    headers: Dict[str, str] = field(default_factory=dict)


class RedisStreamEventLog:
    def __init__(
        self,
        redis: aioredis.Redis,
        topic: str,
        partitions: int,
        maxlen: Optional[int] = None,
    ):
        if partitions < 1:
            raise ValueError("partitions must be >= 1")
        self.redis = redis
        self.topic = topic
        self.partitions = partitions
        self.maxlen = maxlen

    def stream_name(self, partition: int) -> str:
        return f"{self.topic}:{partition}"

    @property
    def dead_letter_stream(self) -> str:
        return f"{self.topic}.DLT"

    # ── Producing ─────────────────────────────────────────────

    async def append(self, key: str, value: str) -> str:
        stream = self.stream_name(partition_for(key, self.partitions))
        message_id = await self.redis.xadd(
            stream, {"key": key, "value": value}, maxlen=self.maxlen, approximate=True
        )
        logger.debug(f"Appended record {message_id} to {stream} (key={key})")
        return message_id

    async def append_dead_letter(self, record: EventRecord, error: str) -> str:
        return await self.redis.xadd(
            self.dead_letter_stream,
            {
                "key": record.key,
                "value": record.value,
                "error": error,
                "source_stream": record.stream,
                "source_id": record.message_id,
            },
        )

    # ── Consuming ─────────────────────────────────────────────

    async def ensure_group(self, stream: str, group: str) -> None:
        """Create the consumer group (and the stream) if missing."""
        try:
            await self.redis.xgroup_create(stream, group, id="0", mkstream=True)
            logger.info(f"Created consumer group {group} on {stream}")
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    async def read(
        self,
        stream: str,
        group: str,
        consumer: str,
        count: int = 10,
        block_ms: Optional[int] = None,
        pending: bool = False,
    ) -> List[EventRecord]:
        """
        Read a batch for `consumer`. pending=True replays records already
        delivered to this consumer but never acknowledged.
        """
        response = await self.redis.xreadgroup(
            group,
            consumer,
            {stream: "0" if pending else ">"},
            count=count,
            block=None if pending else block_ms,
        )
        records: List[EventRecord] = []
        for _, entries in response or []:
            for message_id, fields in entries:
                if not fields:
                    # Trimmed from the stream while pending; nothing to deliver
                    await self.redis.xack(stream, group, message_id)
                    continue
                fields = dict(fields)
                records.append(EventRecord(
                    stream=stream,
                    message_id=message_id,
                    key=fields.pop("key", ""),
                    value=fields.pop("value", ""),
                    headers=fields,
                ))
        return records

    async def ack(self, record: EventRecord, group: str) -> None:
        await self.redis.xack(record.stream, group, record.message_id)
