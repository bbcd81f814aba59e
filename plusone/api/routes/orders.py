"""Order ledger routes."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from plusone.api.deps import get_reconciler, get_store
from plusone.ingest.reconciler import Reconciler
from plusone.ledger.models import CandidateOrder, Order, OrderStatus, WireModel
from plusone.ledger.reports import buyer_summaries, dashboard_stats, format_bill
from plusone.ledger.store import EntityNotFoundError, LedgerStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])


class OrderCreate(CandidateOrder):
    price: Optional[float] = None
    status: Optional[OrderStatus] = None


class OrderUpdate(WireModel):
    buyer_name: Optional[str] = None
    item_name: Optional[str] = None
    quantity: Optional[int] = None
    price: Optional[float] = None
    status: Optional[OrderStatus] = None
    selected_spec: Optional[str] = None
    group_name: Optional[str] = None
    raw_text: Optional[str] = None


class StatsResponse(WireModel):
    order_count: int
    unique_buyers: int
    total_quantity: int
    total_revenue: float


class BuyerResponse(WireModel):
    name: str
    total_quantity: int
    total_amount: float
    items: List[Order]
    bill: str


def _orders_for(store: LedgerStore, group: Optional[str]) -> list[Order]:
    orders = store.orders()
    if group:
        orders = [o for o in orders if o.group_name == group]
    return sorted(orders, key=lambda o: o.created_at, reverse=True)


@router.get("", response_model=List[Order])
async def list_orders(
    group: Optional[str] = Query(None, description="Only orders of this group"),
    store: LedgerStore = Depends(get_store),
):
    """List orders, newest first."""
    return _orders_for(store, group)


@router.post("", response_model=Order, status_code=201)
async def create_order(
    order_data: OrderCreate,
    reconciler: Reconciler = Depends(get_reconciler),
):
    """Add an order by hand. Manual entries are never deduplicated."""
    candidate = CandidateOrder.model_validate(
        order_data.model_dump(exclude={"price", "status"})
    )
    order = reconciler.add_manual_order(
        candidate,
        group_name=order_data.group_name,
        price=order_data.price,
        status=order_data.status,
    )
    logger.info(f"Manual order {order.id}: {order.buyer_name} {order.item_name} x{order.quantity}")
    return order


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    group: Optional[str] = Query(None),
    store: LedgerStore = Depends(get_store),
):
    """Dashboard totals."""
    stats = dashboard_stats(_orders_for(store, group))
    return StatsResponse(**vars(stats))


@router.get("/buyers", response_model=List[BuyerResponse])
async def list_buyers(
    group: Optional[str] = Query(None),
    store: LedgerStore = Depends(get_store),
):
    """Per-buyer totals with a ready-to-send bill message."""
    return [
        BuyerResponse(
            name=summary.name,
            total_quantity=summary.total_quantity,
            total_amount=summary.total_amount,
            items=summary.items,
            bill=format_bill(summary),
        )
        for summary in buyer_summaries(_orders_for(store, group))
    ]


@router.patch("/{order_id}", response_model=Order)
async def update_order(
    order_id: str,
    changes: OrderUpdate,
    store: LedgerStore = Depends(get_store),
):
    """Edit fields of an order."""
    try:
        return store.update_order(order_id, **changes.model_dump(exclude_unset=True))
    except EntityNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/{order_id}/cycle-status", response_model=Order)
async def cycle_status(order_id: str, store: LedgerStore = Depends(get_store)):
    """Advance the order to its next status."""
    try:
        return store.cycle_order_status(order_id)
    except EntityNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")


@router.delete("/{order_id}", status_code=204)
async def delete_order(order_id: str, store: LedgerStore = Depends(get_store)):
    """Delete an order."""
    if not store.delete_order(order_id):
        raise HTTPException(status_code=404, detail="Order not found")
    return Response(status_code=204)
