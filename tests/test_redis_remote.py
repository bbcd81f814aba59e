"""Tests for the Redis-backed remote ledger; server tests skip without Redis."""

import asyncio
import json
from uuid import uuid4

import pytest
import redis.asyncio as redis

from plusone.config import settings
from plusone.ledger.events import ORDERS, ChangeEvent, ChangeType
from plusone.sync.remote import RedisRemoteService, RemoteUnavailableError

REDIS_URL = settings.redis_url or "redis://localhost:6379/0"


async def _redis_available() -> bool:
    try:
        client = await redis.from_url(REDIS_URL, decode_responses=True)
        await client.ping()
        await client.aclose()
        return True
    except Exception:
        return False


async def _cleanup(prefix: str) -> None:
    client = await redis.from_url(REDIS_URL, decode_responses=True)
    keys = await client.keys(f"{prefix}:*")
    if keys:
        await client.delete(*keys)
    await client.aclose()


@pytest.mark.asyncio
async def test_upsert_fetch_delete_and_feed():
    if not await _redis_available():
        pytest.skip("Redis not available")

    prefix = f"plusone-test-{uuid4().hex[:8]}"
    writer = RedisRemoteService(REDIS_URL, key_prefix=prefix)
    reader = RedisRemoteService(REDIS_URL, key_prefix=prefix)
    await writer.connect()
    await reader.connect()
    events = await reader.subscribe()

    try:
        body = {"id": "o1", "buyerName": "Amy", "itemName": "Ring", "quantity": 1}
        await writer.upsert(ORDERS, "o1", body)
        await writer.upsert(ORDERS, "o1", {**body, "quantity": 2})
        await writer.delete(ORDERS, "o1")

        received = []
        async def collect():
            async for event in events:
                received.append(event)
                if len(received) == 3:
                    return
        await asyncio.wait_for(collect(), timeout=5)

        assert [e.type for e in received] == [ChangeType.INSERT, ChangeType.UPDATE, ChangeType.DELETE]
        assert received[1].body["quantity"] == 2
        assert await writer.fetch_all(ORDERS) == []
    finally:
        await events.aclose()
        await writer.close()
        await reader.close()
        await _cleanup(prefix)


@pytest.mark.asyncio
async def test_unreachable_redis_raises():
    service = RedisRemoteService("redis://127.0.0.1:1/0", connect_timeout=0.5)
    with pytest.raises(RemoteUnavailableError):
        await service.connect()
    await service.close()


class RecordingPipeline:
    """Queues commands and applies them together on execute()."""

    def __init__(self, server: "RecordingRedis", transaction: bool):
        self.server = server
        self.transaction = transaction
        self.commands: list[tuple] = []

    async def __aenter__(self) -> "RecordingPipeline":
        return self

    async def __aexit__(self, *exc) -> None:
        return None

    async def hset(self, key, field, value):
        self.commands.append(("hset", key, field, value))
        return self

    async def hdel(self, key, field):
        self.commands.append(("hdel", key, field))
        return self

    async def publish(self, channel, message):
        self.commands.append(("publish", channel, message))
        return self

    async def execute(self):
        # Let other writers run between queueing and execution
        await asyncio.sleep(0)
        self.server.apply(self)
        return [True] * len(self.commands)


class RecordingRedis:
    def __init__(self):
        self.hashes: dict[str, dict[str, str]] = {}
        self.published: list[str] = []
        self.transactions: list[list[str]] = []

    async def hexists(self, key, field) -> bool:
        await asyncio.sleep(0)
        return field in self.hashes.get(key, {})

    def pipeline(self, transaction: bool = True) -> RecordingPipeline:
        return RecordingPipeline(self, transaction)

    def apply(self, pipe: RecordingPipeline) -> None:
        assert pipe.transaction
        self.transactions.append([command[0] for command in pipe.commands])
        for command in pipe.commands:
            if command[0] == "hset":
                self.hashes.setdefault(command[1], {})[command[2]] = command[3]
            elif command[0] == "hdel":
                self.hashes.get(command[1], {}).pop(command[2], None)
            else:
                self.published.append(command[2])


def _recording_service() -> tuple[RedisRemoteService, RecordingRedis]:
    fake = RecordingRedis()
    service = RedisRemoteService("redis://unused", key_prefix="t")
    service._redis = fake
    return service, fake


@pytest.mark.asyncio
async def test_write_and_publish_share_one_transaction():
    service, fake = _recording_service()
    body = {"id": "o1", "quantity": 1}

    await service.upsert(ORDERS, "o1", body)
    await service.delete(ORDERS, "o1")

    assert fake.transactions == [["hset", "publish"], ["hdel", "publish"]]
    events = [ChangeEvent.from_json(raw) for raw in fake.published]
    assert [e.type for e in events] == [ChangeType.INSERT, ChangeType.DELETE]


@pytest.mark.asyncio
async def test_concurrent_writers_publish_in_write_order():
    service_a, fake = _recording_service()
    service_b = RedisRemoteService("redis://unused", key_prefix="t")
    service_b._redis = fake

    await asyncio.gather(
        service_a.upsert(ORDERS, "o1", {"id": "o1", "quantity": 1}),
        service_b.upsert(ORDERS, "o1", {"id": "o1", "quantity": 2}),
    )

    stored = json.loads(fake.hashes["t:orders"]["o1"])
    last_event = ChangeEvent.from_json(fake.published[-1])
    assert last_event.body == stored


@pytest.mark.asyncio
async def test_concurrent_writers_converge_on_stored_row():
    if not await _redis_available():
        pytest.skip("Redis not available")

    prefix = f"plusone-test-{uuid4().hex[:8]}"
    writers = [RedisRemoteService(REDIS_URL, key_prefix=prefix) for _ in range(4)]
    reader = RedisRemoteService(REDIS_URL, key_prefix=prefix)
    await reader.connect()
    events = await reader.subscribe()

    try:
        await asyncio.gather(*(
            writer.upsert(ORDERS, "o1", {"id": "o1", "quantity": n})
            for n, writer in enumerate(writers, start=1)
        ))

        received = []
        async def collect():
            async for event in events:
                received.append(event)
                if len(received) == len(writers):
                    return
        await asyncio.wait_for(collect(), timeout=5)

        [stored] = await reader.fetch_all(ORDERS)
        assert received[-1].body == stored
    finally:
        await events.aclose()
        for writer in writers:
            await writer.close()
        await reader.close()
        await _cleanup(prefix)
