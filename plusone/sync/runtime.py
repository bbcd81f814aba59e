"""Ledger startup: choose remote or local mode once per session."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from plusone.config import settings
from plusone.ledger.local import LocalSnapshotStore
from plusone.ledger.store import LedgerMode, LedgerStore
from plusone.sync.engine import SyncEngine
from plusone.sync.remote import RedisRemoteService, RemoteService, RemoteUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class LedgerRuntime:
    """The ledger store plus whichever backing strategy is active."""
    store: LedgerStore
    local: Optional[LocalSnapshotStore] = None
    sync: Optional[SyncEngine] = None

    @property
    def mode(self) -> LedgerMode:
        return self.store.mode

    async def close(self) -> None:
        if self.sync is not None:
            await self.sync.close()
        if self.local is not None:
            await self.local.close()


def remote_from_settings() -> Optional[RemoteService]:
    """Build the configured remote service, or None when not configured."""
    if not settings.remote_enabled or not settings.redis_url:
        return None
    return RedisRemoteService(settings.redis_url)


async def open_ledger(
    remote: Optional[RemoteService] = None,
    data_dir: Optional[str | Path] = None,
    use_settings_remote: bool = True,
) -> LedgerRuntime:
    """
    Open the ledger for this session.

    Remote mode is used when a remote service is given or configured and its
    startup reads succeed. Otherwise the session falls back permanently to
    local mode; the reason is kept in `store.startup_warning`.

    Args:
        remote: Remote service to use (defaults to the configured Redis)
        data_dir: Directory for local snapshot blobs
        use_settings_remote: Build the remote from settings when none is given
    """
    if remote is None and use_settings_remote:
        remote = remote_from_settings()

    warning: Optional[str] = None
    if remote is not None:
        store = LedgerStore(mode=LedgerMode.REMOTE)
        engine = SyncEngine(store, remote)
        try:
            await engine.start()
        except RemoteUnavailableError as e:
            warning = f"Remote ledger unavailable, using local storage for this session: {e}"
            logger.warning(warning)
            await engine.close()
        else:
            logger.info("Ledger running in remote mode")
            return LedgerRuntime(store=store, sync=engine)

    store = LedgerStore(mode=LedgerMode.LOCAL)
    store.startup_warning = warning
    local = LocalSnapshotStore(data_dir)
    local.attach(store)
    logger.info(f"Ledger running in local mode ({local.data_dir})")
    return LedgerRuntime(store=store, local=local)
