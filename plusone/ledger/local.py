"""Durable local snapshot of the ledger (local mode).

Each collection is kept as one JSON array blob (`orders.json`,
`products.json`) holding the full wire body of every entity. A snapshot is
written after every mutation in the background; losing the most recent write
on a crash is acceptable.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from plusone.config import settings
from plusone.ledger.events import COLLECTIONS
from plusone.ledger.store import LedgerStore

logger = logging.getLogger(__name__)


class LocalSnapshotStore:
    """
    Persists ledger collections as JSON blobs.

    Writes are coalesced per collection: while a write is in flight further
    mutations only mark the collection dirty, and the writer loops until the
    latest state is on disk. Blob files are replaced atomically.
    """

    def __init__(self, data_dir: Optional[str | Path] = None):
        self.data_dir = Path(data_dir or settings.data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._store: Optional[LedgerStore] = None
        self._dirty: set[str] = set()
        self._writers: dict[str, asyncio.Task] = {}

    def path_for(self, collection: str) -> Path:
        return self.data_dir / f"{collection}.json"

    # =========================================================================
    # Blob I/O
    # =========================================================================

    def read(self, collection: str) -> list[dict[str, Any]]:
        """
        Read one collection blob.

        A missing or corrupt blob reads as empty; corruption is logged.
        """
        path = self.path_for(collection)
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Could not read snapshot {path}: {e}")
            return []
        if not isinstance(data, list):
            logger.error(f"Snapshot {path} is not a JSON array, ignoring")
            return []
        return [item for item in data if isinstance(item, dict)]

    def write(self, collection: str, bodies: list[dict[str, Any]]) -> None:
        """Atomically replace one collection blob."""
        path = self.path_for(collection)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(bodies, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, path)

    # =========================================================================
    # Ledger binding
    # =========================================================================

    def attach(self, store: LedgerStore) -> None:
        """Load saved collections into `store` and persist its future mutations."""
        self._store = store
        for collection in COLLECTIONS:
            count = store.load(collection, self.read(collection))
            logger.info(f"Loaded {count} {collection} from local snapshot")
        store.add_listener(self)

    def on_upsert(self, collection: str, entity) -> None:
        self.schedule(collection)

    def on_delete(self, collection: str, entity_id: str) -> None:
        self.schedule(collection)

    def schedule(self, collection: str) -> None:
        """Request a background snapshot of `collection`."""
        if self._store is None:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop (scripts, sync tests): write inline
            self._write_now(collection)
            return

        self._dirty.add(collection)
        writer = self._writers.get(collection)
        if writer is None or writer.done():
            self._writers[collection] = loop.create_task(self._writer(collection))

    async def _writer(self, collection: str) -> None:
        while collection in self._dirty:
            self._dirty.discard(collection)
            bodies = self._store.snapshot(collection)
            try:
                await asyncio.to_thread(self.write, collection, bodies)
            except OSError as e:
                logger.error(f"Failed to persist {collection} snapshot: {e}")

    def _write_now(self, collection: str) -> None:
        try:
            self.write(collection, self._store.snapshot(collection))
        except OSError as e:
            logger.error(f"Failed to persist {collection} snapshot: {e}")

    async def flush(self) -> None:
        """Wait for in-flight snapshot writes (used on shutdown)."""
        pending = [task for task in self._writers.values() if not task.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        await self.flush()
        if self._store is not None:
            self._store.remove_listener(self)
            self._store = None
