"""Best-effort keep-awake while the monitor runs."""

import asyncio
import logging
import shutil
import sys
from typing import Optional, Protocol

from plusone.config import settings

logger = logging.getLogger(__name__)


class WakeLock(Protocol):
    async def acquire(self) -> bool:
        """Try to keep the machine awake; False if not possible."""
        ...

    async def release(self) -> None:
        ...


class NullWakeLock:
    """Used when keep-awake is disabled or unsupported."""

    async def acquire(self) -> bool:
        return False

    async def release(self) -> None:
        return None


class InhibitorWakeLock:
    """
    Holds a sleep inhibitor process for as long as the lock is held.

    Uses `systemd-inhibit` on Linux and `caffeinate` on macOS.
    """

    def __init__(self, command: list[str]):
        self.command = command
        self._process: Optional[asyncio.subprocess.Process] = None

    async def acquire(self) -> bool:
        if self._process is not None:
            return True
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.debug(f"Wake lock unavailable: {e}")
            return False
        return True

    async def release(self) -> None:
        process, self._process = self._process, None
        if process is None or process.returncode is not None:
            return
        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=5)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()


def default_wake_lock() -> WakeLock:
    """Pick a wake lock for this platform."""
    if not settings.wake_lock_enabled:
        return NullWakeLock()

    if sys.platform == "darwin" and shutil.which("caffeinate"):
        return InhibitorWakeLock(["caffeinate", "-d", "-i"])
    if sys.platform.startswith("linux") and shutil.which("systemd-inhibit"):
        return InhibitorWakeLock([
            "systemd-inhibit",
            "--what=idle:sleep",
            "--who=plusone-ledger",
            "--why=Screen monitor running",
            "sleep",
            "infinity",
        ])
    return NullWakeLock()
