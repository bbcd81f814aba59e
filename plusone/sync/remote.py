"""Remote ledger service backed by Redis.

Layout:
- `<prefix>:orders` / `<prefix>:products`: hashes mapping id → JSON body
- `<prefix>:changes:<collection>`: pub/sub channel carrying every change as
  a {collection, type, id, body} event, fanned out to all subscribed clients
"""

import json
import logging
from typing import Any, AsyncIterator, Optional, Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from plusone.config import settings
from plusone.ledger.events import COLLECTIONS, ChangeEvent, ChangeType

logger = logging.getLogger(__name__)


class RemoteUnavailableError(Exception):
    """The remote ledger could not be reached or read."""


class RemoteService(Protocol):
    """Boundary to the shared remote ledger."""

    async def connect(self) -> None:
        ...

    async def fetch_all(self, collection: str) -> list[dict[str, Any]]:
        ...

    async def upsert(self, collection: str, entity_id: str, body: dict[str, Any]) -> None:
        ...

    async def delete(self, collection: str, entity_id: str) -> None:
        ...

    async def subscribe(self) -> AsyncIterator[ChangeEvent]:
        """Subscribe to the change feed; the returned iterator yields events."""
        ...

    async def close(self) -> None:
        ...


class RedisRemoteService:
    """
    Remote ledger on Redis hashes with pub/sub change notifications.

    Writes are upserts/deletes by id; each one publishes a change event that
    every client (including the writer) receives on its subscription.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        key_prefix: Optional[str] = None,
        connect_timeout: Optional[float] = None,
    ):
        self.redis_url = redis_url or settings.redis_url
        self.key_prefix = key_prefix or settings.remote_key_prefix
        self.connect_timeout = connect_timeout or settings.remote_connect_timeout
        self._redis: Optional[redis.Redis] = None

    def _collection_key(self, collection: str) -> str:
        return f"{self.key_prefix}:{collection}"

    def _channel(self, collection: str) -> str:
        return f"{self.key_prefix}:changes:{collection}"

    async def _get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = await redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=self.connect_timeout,
            )
        return self._redis

    async def connect(self) -> None:
        """
        Open the connection and verify the server answers.

        Raises:
            RemoteUnavailableError: If Redis is unreachable or misconfigured
        """
        if not self.redis_url:
            raise RemoteUnavailableError("Remote ledger URL not configured")
        try:
            redis_client = await self._get_redis()
            await redis_client.ping()
        except (RedisError, OSError, ValueError) as e:
            raise RemoteUnavailableError(f"Cannot reach remote ledger: {e}") from e
        logger.info(f"Connected to remote ledger ({self.key_prefix})")

    async def fetch_all(self, collection: str) -> list[dict[str, Any]]:
        """Read every body of a collection."""
        redis_client = await self._get_redis()
        rows = await redis_client.hgetall(self._collection_key(collection))

        bodies = []
        for entity_id, raw in rows.items():
            try:
                bodies.append(json.loads(raw))
            except json.JSONDecodeError:
                logger.warning(f"Skipping unreadable {collection} row {entity_id}")
        return bodies

    async def upsert(self, collection: str, entity_id: str, body: dict[str, Any]) -> None:
        """
        Insert or replace one row and publish the change.

        The write and its publish run in one MULTI/EXEC transaction, so the
        order of events on the feed matches the order of writes to the hash.
        """
        redis_client = await self._get_redis()
        key = self._collection_key(collection)
        exists = await redis_client.hexists(key, entity_id)
        event = ChangeEvent(
            collection=collection,
            type=ChangeType.UPDATE if exists else ChangeType.INSERT,
            id=entity_id,
            body=body,
        )

        async with redis_client.pipeline(transaction=True) as pipe:
            await pipe.hset(key, entity_id, json.dumps(body, ensure_ascii=False))
            await pipe.publish(self._channel(collection), event.to_json())
            await pipe.execute()

    async def delete(self, collection: str, entity_id: str) -> None:
        """Remove one row and publish the change in the same transaction."""
        redis_client = await self._get_redis()
        event = ChangeEvent(collection=collection, type=ChangeType.DELETE, id=entity_id)

        async with redis_client.pipeline(transaction=True) as pipe:
            await pipe.hdel(self._collection_key(collection), entity_id)
            await pipe.publish(self._channel(collection), event.to_json())
            await pipe.execute()

    async def subscribe(self) -> AsyncIterator[ChangeEvent]:
        """
        Subscribe to both collection channels.

        The subscription is established before this returns, so failures
        surface to the caller instead of inside the iterator.
        """
        redis_client = await self._get_redis()
        pubsub = redis_client.pubsub(ignore_subscribe_messages=True)
        try:
            await pubsub.subscribe(*(self._channel(c) for c in COLLECTIONS))
        except (RedisError, OSError) as e:
            await pubsub.aclose()
            raise RemoteUnavailableError(f"Cannot subscribe to change feed: {e}") from e
        return self._iter_events(pubsub)

    async def _iter_events(self, pubsub) -> AsyncIterator[ChangeEvent]:
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    yield ChangeEvent.from_json(message["data"])
                except ValueError as e:
                    logger.warning(f"Ignoring change event: {e}")
        finally:
            await pubsub.aclose()

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
