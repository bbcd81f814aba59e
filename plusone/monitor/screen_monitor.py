"""
Screen monitor: periodically samples a capture source and forwards changed
frames to the reconciler.

State machine:
    IDLE --start()--> STARTING --source acquired--> RUNNING
    STARTING --acquisition failed--> IDLE
    RUNNING --stop() or source ended--> IDLE

While RUNNING a single loop task owns the capture timer. Analyses of changed
frames run as independent tasks: stopping the monitor does not cancel them,
and their results still merge into the ledger.
"""

import asyncio
import time
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

import numpy as np

from plusone import metrics
from plusone.config import settings
from plusone.ingest.reconciler import IngestReport, Reconciler
from plusone.ledger.models import OrderSource, utcnow
from plusone.logging_config import get_logger
from plusone.monitor.capture import CaptureSource, CaptureUnavailableError, encode_png
from plusone.monitor.change_detector import ChangeDetector
from plusone.monitor.wake_lock import WakeLock, default_wake_lock

logger = get_logger(__name__, component="screen_monitor")


class MonitorState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"


class ScreenMonitor:
    """Owns one capture source per monitoring episode."""

    def __init__(
        self,
        reconciler: Reconciler,
        source_factory: Callable[[], CaptureSource],
        wake_lock_factory: Callable[[], WakeLock] = default_wake_lock,
        detector: Optional[ChangeDetector] = None,
        interval_seconds: Optional[float] = None,
        min_change_percent: Optional[float] = None,
        log_size: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.reconciler = reconciler
        self.source_factory = source_factory
        self.wake_lock_factory = wake_lock_factory
        self.detector = detector or ChangeDetector()
        self.interval_seconds = interval_seconds or settings.monitor_interval_seconds
        self.min_change_percent = (
            min_change_percent if min_change_percent is not None else settings.change_min_percent
        )
        self.clock = clock

        self.state = MonitorState.IDLE
        self.group_name = settings.default_group_name
        self.seller_name: Optional[str] = settings.seller_name or None
        self.last_score: Optional[float] = None
        self.last_error: Optional[str] = None
        self.wake_lock_active = False

        self._logs: deque[str] = deque(maxlen=log_size or settings.monitor_log_size)
        self._source: Optional[CaptureSource] = None
        self._wake_lock: Optional[WakeLock] = None
        self._task: Optional[asyncio.Task] = None
        self._analyses: set[asyncio.Task] = set()

    # =========================================================================
    # Activity log
    # =========================================================================

    def _log(self, message: str) -> None:
        stamp = time.strftime("%H:%M:%S")
        self._logs.appendleft(f"[{stamp}] {message}")
        logger.info(message, extra={"group": self.group_name})

    @property
    def logs(self) -> list[str]:
        """Most recent activity first."""
        return list(self._logs)

    @property
    def pending_analyses(self) -> int:
        return len(self._analyses)

    def status(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "group_name": self.group_name,
            "seller_name": self.seller_name,
            "interval_seconds": self.interval_seconds,
            "last_score": self.last_score,
            "last_error": self.last_error,
            "wake_lock_active": self.wake_lock_active,
            "pending_analyses": self.pending_analyses,
            "logs": self.logs,
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """
        Acquire a capture source and begin sampling.

        Raises:
            CaptureUnavailableError: If the source cannot be acquired. Any
                other acquisition error propagates too; in every case the
                source is closed and the monitor is back in IDLE
        """
        if self.state != MonitorState.IDLE:
            logger.warning(f"Start ignored, monitor is {self.state.value}")
            return

        self.state = MonitorState.STARTING
        self.last_error = None
        self.detector.reset()

        source = self.source_factory()
        try:
            await source.open()
            if self.state != MonitorState.STARTING:
                # Stopped while the source was opening
                await source.close()
                return

            self._source = source
            self._wake_lock = self.wake_lock_factory()
            self.wake_lock_active = await self._wake_lock.acquire()
        except BaseException as e:
            self.last_error = str(e) or type(e).__name__
            if isinstance(e, CaptureUnavailableError):
                self._log(f"Capture unavailable: {e}")
            else:
                self._log(f"Monitor start failed: {self.last_error}")
            self._source = source
            await self._release()
            raise

        if self.wake_lock_active:
            self._log("Keep-awake enabled")

        self.state = MonitorState.RUNNING
        metrics.monitor_running.set(1)
        self._task = asyncio.create_task(self._run(source))
        self._log(f"Monitoring started for {self.group_name}")

    async def stop(self) -> None:
        """Stop sampling and release the source. In-flight analyses keep running."""
        if self.state == MonitorState.IDLE:
            return

        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._release()
        self._log("Monitoring stopped")

    async def drain(self) -> None:
        """Wait for in-flight analyses to finish."""
        if self._analyses:
            await asyncio.gather(*self._analyses, return_exceptions=True)

    async def _release(self) -> None:
        source, self._source = self._source, None
        wake_lock, self._wake_lock = self._wake_lock, None

        if source is not None:
            try:
                await source.close()
            except Exception as e:
                logger.warning(f"Error closing capture source: {e}")
        if wake_lock is not None:
            await wake_lock.release()

        self.wake_lock_active = False
        self.state = MonitorState.IDLE
        metrics.monitor_running.set(0)

    # =========================================================================
    # Sampling
    # =========================================================================

    async def _wait_interval(self, source: CaptureSource) -> bool:
        """Sleep one interval; True if the source ended meanwhile."""
        try:
            await asyncio.wait_for(source.ended.wait(), timeout=self.interval_seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _run(self, source: CaptureSource) -> None:
        while True:
            if await self._wait_interval(source):
                break
            try:
                await self.capture_once(source)
            except Exception as e:
                self.last_error = str(e)
                logger.error(f"Capture tick failed: {e}", exc_info=True)
            if source.ended.is_set():
                break

        # Source ended on its own
        self._task = None
        await self._release()
        self._log("Capture ended, monitoring stopped")

    async def capture_once(self, source: Optional[CaptureSource] = None) -> Optional[asyncio.Task]:
        """
        Grab one frame and dispatch it for analysis if it changed enough.

        Returns:
            The analysis task, or None if the frame was skipped
        """
        source = source or self._source
        if source is None:
            return None

        frame = await source.grab()
        if frame is None or frame.ndim < 2 or frame.shape[0] == 0 or frame.shape[1] == 0:
            metrics.record_frame("empty")
            return None

        score = self.detector.score(frame)
        self.last_score = score
        if score <= self.min_change_percent:
            metrics.record_frame("unchanged", score)
            return None

        metrics.record_frame("analyzed", score)
        self._log(f"Screen changed {score:.1f}%, analyzing")
        return self._dispatch(frame)

    def _dispatch(self, frame: np.ndarray) -> asyncio.Task:
        task = asyncio.create_task(
            self._analyze(frame, self.group_name, self.seller_name, self.clock())
        )
        self._analyses.add(task)
        task.add_done_callback(self._analyses.discard)
        return task

    async def _analyze(
        self,
        frame: np.ndarray,
        group_name: str,
        seller_name: Optional[str],
        observed_at: datetime,
    ) -> Optional[IngestReport]:
        try:
            image = await asyncio.to_thread(encode_png, frame)
            report = await self.reconciler.analyze(
                [image],
                OrderSource.MONITOR,
                group_name=group_name,
                seller_name=seller_name,
                observed_at=observed_at,
            )
        except Exception as e:
            self.last_error = str(e)
            logger.error(f"Frame analysis failed: {e}", exc_info=True)
            return None

        if report.failed:
            self.last_error = report.error
            self._log(f"Analysis failed: {report.error}")
        elif report.found_anything:
            self.last_error = None
            self._log(
                f"Added {report.orders_accepted} orders "
                f"({report.orders_dropped} duplicates), "
                f"{report.products_inserted + report.products_merged} products"
            )
        else:
            self.last_error = None
            self._log("No new orders")
        return report
