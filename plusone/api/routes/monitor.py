"""Screen monitor control routes."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from plusone.api.deps import get_monitor
from plusone.config import settings
from plusone.ledger.models import WireModel
from plusone.monitor.capture import CaptureUnavailableError
from plusone.monitor.screen_monitor import ScreenMonitor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/monitor", tags=["monitor"])


class MonitorSettings(WireModel):
    group_name: Optional[str] = None
    seller_name: Optional[str] = None


class MonitorStatusResponse(WireModel):
    state: str
    group_name: str
    seller_name: Optional[str] = None
    interval_seconds: float
    last_score: Optional[float] = None
    last_error: Optional[str] = None
    wake_lock_active: bool
    pending_analyses: int
    logs: List[str]
    group_options: List[str]


def _status(monitor: ScreenMonitor) -> MonitorStatusResponse:
    return MonitorStatusResponse(**monitor.status(), group_options=settings.group_options)


def _apply(monitor: ScreenMonitor, request: Optional[MonitorSettings]) -> None:
    if request is None:
        return
    if request.group_name:
        monitor.group_name = request.group_name
    if request.seller_name is not None:
        monitor.seller_name = request.seller_name or None


@router.get("", response_model=MonitorStatusResponse)
async def monitor_status(monitor: ScreenMonitor = Depends(get_monitor)):
    """Current monitor state and recent activity."""
    return _status(monitor)


@router.patch("", response_model=MonitorStatusResponse)
async def update_monitor(
    request: MonitorSettings,
    monitor: ScreenMonitor = Depends(get_monitor),
):
    """Change the group or seller used for upcoming captures."""
    _apply(monitor, request)
    return _status(monitor)


@router.post("/start", response_model=MonitorStatusResponse)
async def start_monitor(
    request: Optional[MonitorSettings] = None,
    monitor: ScreenMonitor = Depends(get_monitor),
):
    """Acquire the capture source and start sampling."""
    _apply(monitor, request)
    try:
        await monitor.start()
    except CaptureUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return _status(monitor)


@router.post("/stop", response_model=MonitorStatusResponse)
async def stop_monitor(monitor: ScreenMonitor = Depends(get_monitor)):
    """Stop sampling. Analyses already in flight still complete."""
    await monitor.stop()
    return _status(monitor)
