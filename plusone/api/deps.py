"""FastAPI dependencies.

Long-lived components are created in the application lifespan and kept on
`app.state`; these helpers hand them to the routes.
"""

from fastapi import HTTPException, Request, status

from plusone.ingest.reconciler import Reconciler
from plusone.ledger.store import LedgerStore
from plusone.monitor.screen_monitor import ScreenMonitor


def _component(request: Request, name: str):
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ledger not initialized"
        )
    return component


def get_store(request: Request) -> LedgerStore:
    """Dependency for the session's ledger store."""
    return _component(request, "runtime").store


def get_reconciler(request: Request) -> Reconciler:
    return _component(request, "reconciler")


def get_monitor(request: Request) -> ScreenMonitor:
    return _component(request, "monitor")
