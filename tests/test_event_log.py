"""
tests/test_event_log.py
Redis Streams event log: partition routing, consumer groups, dead letters.
"""

import zlib

import pytest

from services.notification.event_log import RedisStreamEventLog, partition_for


def test_partition_for_is_crc32_mod_partitions():
    assert partition_for("42", 3) == zlib.crc32(b"42") % 3
    assert partition_for("42", 3) == partition_for("42", 3)


def test_partitions_must_be_positive(redis):
    with pytest.raises(ValueError):
        RedisStreamEventLog(redis, topic="t", partitions=0)


def test_stream_names(event_log):
    assert event_log.stream_name(2) == "appointment_notifications:2"
    assert event_log.dead_letter_stream == "appointment_notifications.DLT"


@pytest.mark.asyncio
async def test_same_key_lands_in_same_partition(redis, event_log):
    for i in range(4):
        await event_log.append("appointment-17", f"v{i}")

    expected = event_log.stream_name(partition_for("appointment-17", 3))
    entries = await redis.xrange(expected)
    assert [fields["value"] for _, fields in entries] == ["v0", "v1", "v2", "v3"]
    assert all(fields["key"] == "appointment-17" for _, fields in entries)


@pytest.mark.asyncio
async def test_ensure_group_is_idempotent(redis, event_log):
    stream = event_log.stream_name(0)
    await event_log.ensure_group(stream, "g")
    await event_log.ensure_group(stream, "g")

    groups = await redis.xinfo_groups(stream)
    assert [g["name"] for g in groups] == ["g"]


@pytest.mark.asyncio
async def test_read_new_then_ack(redis, event_log):
    key = "5"
    stream = event_log.stream_name(partition_for(key, 3))
    await event_log.ensure_group(stream, "g")
    await event_log.append(key, "payload")

    records = await event_log.read(stream, "g", "c1")
    assert len(records) == 1
    assert records[0].key == key
    assert records[0].value == "payload"
    assert await event_log.read(stream, "g", "c1") == []

    pending = await event_log.read(stream, "g", "c1", pending=True)
    assert [r.message_id for r in pending] == [records[0].message_id]

    await event_log.ack(records[0], "g")
    assert await event_log.read(stream, "g", "c1", pending=True) == []


@pytest.mark.asyncio
async def test_dead_letter_keeps_source_and_error(redis, event_log):
    key = "8"
    stream = event_log.stream_name(partition_for(key, 3))
    await event_log.ensure_group(stream, "g")
    await event_log.append(key, "bad")
    record = (await event_log.read(stream, "g", "c1"))[0]

    await event_log.append_dead_letter(record, "boom")

    (_, fields), = await redis.xrange(event_log.dead_letter_stream)
    assert fields == {
        "key": key,
        "value": "bad",
        "error": "boom",
        "source_stream": stream,
        "source_id": record.message_id,
    }
