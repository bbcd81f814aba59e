"""Shared fakes for ledger, sync and monitor tests."""

import asyncio
from collections import deque
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

import numpy as np
import pytest

from plusone.ledger.events import COLLECTIONS, ChangeEvent, ChangeType
from plusone.ledger.models import AnalysisResult
from plusone.ledger.store import LedgerStore
from plusone.monitor.capture import CaptureUnavailableError
from plusone.sync.remote import RemoteUnavailableError

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


async def wait_for(predicate, timeout: float = 1.0) -> None:
    """Poll `predicate` until it holds or fail after `timeout` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(0.005)


# =============================================================================
# Remote ledger
# =============================================================================


class FakeRemoteServer:
    """Shared remote state plus a change feed fanned out to every subscriber."""

    def __init__(self):
        self.rows: dict[str, dict[str, dict[str, Any]]] = {c: {} for c in COLLECTIONS}
        self.subscribers: list[asyncio.Queue] = []
        self.unreachable = False
        self.fail_fetch = False
        self.fail_writes = False

    def publish(self, event: ChangeEvent) -> None:
        for queue in self.subscribers:
            queue.put_nowait(event)

    def drop_subscribers(self) -> None:
        """Simulate the feed connection dropping for every client."""
        for queue in self.subscribers:
            queue.put_nowait(None)
        self.subscribers.clear()

    def client(self) -> "FakeRemoteClient":
        return FakeRemoteClient(self)


class FakeRemoteClient:
    """In-memory RemoteService talking to a FakeRemoteServer."""

    def __init__(self, server: FakeRemoteServer):
        self.server = server
        self.closed = False
        self.writes: list[tuple[str, str, str]] = []

    async def connect(self) -> None:
        if self.server.unreachable:
            raise RemoteUnavailableError("connection refused")

    async def fetch_all(self, collection: str) -> list[dict[str, Any]]:
        if self.server.fail_fetch:
            raise RemoteUnavailableError("fetch failed")
        return [dict(body) for body in self.server.rows[collection].values()]

    async def upsert(self, collection: str, entity_id: str, body: dict[str, Any]) -> None:
        if self.server.fail_writes:
            raise RemoteUnavailableError("write rejected")
        rows = self.server.rows[collection]
        change = ChangeType.UPDATE if entity_id in rows else ChangeType.INSERT
        rows[entity_id] = dict(body)
        self.writes.append((collection, "upsert", entity_id))
        self.server.publish(ChangeEvent(collection, change, entity_id, dict(body)))

    async def delete(self, collection: str, entity_id: str) -> None:
        if self.server.fail_writes:
            raise RemoteUnavailableError("write rejected")
        self.server.rows[collection].pop(entity_id, None)
        self.writes.append((collection, "delete", entity_id))
        self.server.publish(ChangeEvent(collection, ChangeType.DELETE, entity_id))

    async def subscribe(self) -> AsyncIterator[ChangeEvent]:
        if self.server.unreachable:
            raise RemoteUnavailableError("subscribe failed")
        queue: asyncio.Queue = asyncio.Queue()
        self.server.subscribers.append(queue)
        return self._iter(queue)

    async def _iter(self, queue: asyncio.Queue) -> AsyncIterator[ChangeEvent]:
        while True:
            event = await queue.get()
            if event is None:
                return
            yield event

    async def close(self) -> None:
        self.closed = True


# =============================================================================
# Extraction oracle
# =============================================================================


class FakeOracle:
    """Returns queued results; optionally waits on `gate` before answering."""

    def __init__(self, *results: AnalysisResult):
        self.results = deque(results)
        self.calls: list[dict[str, Any]] = []
        self.gate: Optional[asyncio.Event] = None

    async def analyze(self, content, product_context: str = "", seller_name=None) -> AnalysisResult:
        self.calls.append({
            "content": content,
            "product_context": product_context,
            "seller_name": seller_name,
        })
        if self.gate is not None:
            await self.gate.wait()
        if not self.results:
            return AnalysisResult()
        return self.results.popleft()

    def usage(self) -> dict[str, Any]:
        return {"call_count": len(self.calls)}

    async def close(self) -> None:
        return None


# =============================================================================
# Capture
# =============================================================================


class FrameSource:
    """Capture source replaying a fixed list of frames (last one repeats)."""

    def __init__(self, frames: Optional[list[np.ndarray]] = None, fail_open: bool = False):
        self.frames = deque(frames or [])
        self.fail_open = fail_open
        self.ended = asyncio.Event()
        self.opened = False
        self.closed = False
        self._last: Optional[np.ndarray] = None

    async def open(self) -> None:
        if self.fail_open:
            raise CaptureUnavailableError("Permission denied")
        self.opened = True

    async def grab(self) -> Optional[np.ndarray]:
        if self.frames:
            self._last = self.frames.popleft()
        return self._last

    async def close(self) -> None:
        self.closed = True


class FakeWakeLock:
    def __init__(self, available: bool = True):
        self.available = available
        self.held = False

    async def acquire(self) -> bool:
        self.held = self.available
        return self.available

    async def release(self) -> None:
        self.held = False


def solid_frame(value: int, size: int = 100) -> np.ndarray:
    return np.full((size, size, 3), value, dtype=np.uint8)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def store() -> LedgerStore:
    return LedgerStore()


@pytest.fixture
def remote_server() -> FakeRemoteServer:
    return FakeRemoteServer()
