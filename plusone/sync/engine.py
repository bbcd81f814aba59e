"""Bridge between the in-memory ledger and the remote ledger service.

Consistency model:
- Local edits are applied to the store first (optimistic) and written through
  to the remote service in the background.
- A failed write-through is logged and NOT rolled back. The local view may
  diverge from the remote one until the next successful write or a restart.
- Changes from any client arrive on the change feed and are merged by id.
  Echoes of our own writes are applied again, which is harmless because the
  merge is replace/remove by id.
- Across clients the last write to reach the remote service wins.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Coroutine, Optional

from plusone import metrics
from plusone.ledger.events import COLLECTIONS, ChangeEvent
from plusone.ledger.store import LedgerMode, LedgerStore
from plusone.sync.remote import RemoteService, RemoteUnavailableError

logger = logging.getLogger(__name__)


class SyncEngine:
    """Optimistic write-through plus realtime merge for one ledger store."""

    def __init__(
        self,
        store: LedgerStore,
        remote: RemoteService,
        resubscribe_delay: float = 5.0,
    ):
        self.store = store
        self.remote = remote
        self.resubscribe_delay = resubscribe_delay
        self._pending: set[asyncio.Task] = set()
        self._subscription_task: Optional[asyncio.Task] = None
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """
        Connect, load the remote collections and start following the feed.

        The feed is subscribed before the initial fetch so that no change made
        in between is missed.

        Raises:
            RemoteUnavailableError: If any startup read or subscribe fails
        """
        try:
            await self.remote.connect()
            events = await self.remote.subscribe()
            await self._reload()
        except RemoteUnavailableError:
            raise
        except Exception as e:
            raise RemoteUnavailableError(f"Remote ledger startup failed: {e}") from e

        self._subscription_task = asyncio.create_task(self._follow(events))
        self.store.mode = LedgerMode.REMOTE
        self.store.add_listener(self)
        self._started = True

    async def _reload(self) -> None:
        """Replace every local collection with the remote rows."""
        for collection in COLLECTIONS:
            bodies = await self.remote.fetch_all(collection)
            count = self.store.load(collection, bodies)
            logger.info(f"Loaded {count} {collection} from remote ledger")

    # =========================================================================
    # Write-through
    # =========================================================================

    def on_upsert(self, collection: str, entity) -> None:
        self._spawn(self._write_upsert(collection, entity.id, entity.to_body()))

    def on_delete(self, collection: str, entity_id: str) -> None:
        self._spawn(self._write_delete(collection, entity_id))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write_upsert(self, collection: str, entity_id: str, body: dict[str, Any]) -> None:
        try:
            await self.remote.upsert(collection, entity_id, body)
        except Exception as e:
            # Local state is kept as-is (no rollback)
            logger.warning(f"Remote upsert failed for {collection}/{entity_id}: {e}")
            metrics.record_remote_write(collection, "upsert", False)
            return
        metrics.record_remote_write(collection, "upsert", True)

    async def _write_delete(self, collection: str, entity_id: str) -> None:
        try:
            await self.remote.delete(collection, entity_id)
        except Exception as e:
            logger.warning(f"Remote delete failed for {collection}/{entity_id}: {e}")
            metrics.record_remote_write(collection, "delete", False)
            return
        metrics.record_remote_write(collection, "delete", True)

    async def flush(self) -> None:
        """Wait until all in-flight write-throughs have finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # =========================================================================
    # Change feed
    # =========================================================================

    def apply(self, event: ChangeEvent) -> None:
        self.store.apply_remote_event(event)

    async def _follow(self, events: AsyncIterator[ChangeEvent]) -> None:
        """
        Merge inbound events; resubscribe if the feed drops.

        The feed does not replay what was published while it was down, so
        every resubscribe is followed by a full reload of the collections.
        """
        while True:
            try:
                async for event in events:
                    self.apply(event)
                logger.warning("Remote change feed ended")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Remote change feed failed: {e}")

            await asyncio.sleep(self.resubscribe_delay)
            try:
                events = await self.remote.subscribe()
                logger.info("Resubscribed to remote change feed")
            except Exception as e:
                logger.error(f"Resubscribe failed: {e}")
                events = _no_events()
                continue

            await self._catch_up()

    async def _catch_up(self) -> None:
        """Reload after a feed gap; retried until a reload succeeds."""
        while True:
            # Own writes must reach the remote before its rows replace ours
            await self.flush()
            try:
                await self._reload()
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Reload after resubscribe failed: {e}")
            await asyncio.sleep(self.resubscribe_delay)

    async def close(self) -> None:
        """Stop following the feed, finish pending writes and disconnect."""
        self.store.remove_listener(self)
        if self._subscription_task is not None:
            self._subscription_task.cancel()
            try:
                await self._subscription_task
            except asyncio.CancelledError:
                pass
            self._subscription_task = None
        await self.flush()
        await self.remote.close()
        self._started = False


async def _no_events() -> AsyncIterator[ChangeEvent]:
    return
    yield
