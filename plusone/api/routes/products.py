"""Product listing routes."""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response

from plusone.api.deps import get_reconciler, get_store
from plusone.ingest.reconciler import Reconciler
from plusone.ledger.models import BulkRule, CandidateProduct, Product, ProductType, WireModel
from plusone.ledger.reports import product_context, product_tally
from plusone.ledger.store import EntityNotFoundError, LedgerStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])


class ProductUpdate(WireModel):
    name: Optional[str] = None
    price: Optional[float] = None
    type: Optional[ProductType] = None
    specs: Optional[List[str]] = None
    closing_time: Optional[str] = None
    description: Optional[str] = None
    bulk_rules: Optional[List[BulkRule]] = None
    purchased_qty: Optional[int] = None
    purchase_notes: Optional[str] = None


class TallyResponse(WireModel):
    product: Product
    total_ordered: int
    spec_counts: Dict[str, int]
    purchased: int
    shortfall: int
    fill_percent: float


class ContextResponse(WireModel):
    context: str


@router.get("", response_model=List[Product])
async def list_products(store: LedgerStore = Depends(get_store)):
    """List products, newest first."""
    return sorted(store.products(), key=lambda p: p.created_at, reverse=True)


@router.post("", response_model=Product, status_code=201)
async def create_product(
    product_data: CandidateProduct,
    reconciler: Reconciler = Depends(get_reconciler),
):
    """Add a product listing by hand."""
    product = reconciler.add_manual_product(product_data)
    logger.info(f"Manual product {product.id}: {product.name}")
    return product


@router.get("/tally", response_model=List[TallyResponse])
async def get_tally(store: LedgerStore = Depends(get_store)):
    """Ordered vs purchased quantity for every product."""
    orders = store.orders()
    tallies = []
    for product in store.products():
        tally = product_tally(product, orders)
        tallies.append(TallyResponse(
            product=tally.product,
            total_ordered=tally.total_ordered,
            spec_counts=tally.spec_counts,
            purchased=tally.purchased,
            shortfall=tally.shortfall,
            fill_percent=tally.fill_percent,
        ))
    return tallies


@router.get("/context", response_model=ContextResponse)
async def get_context(store: LedgerStore = Depends(get_store)):
    """Product context as sent to the extraction model."""
    return ContextResponse(context=product_context(store.products()))


@router.patch("/{product_id}", response_model=Product)
async def update_product(
    product_id: str,
    changes: ProductUpdate,
    store: LedgerStore = Depends(get_store),
):
    """Edit a product, including purchase tracking fields."""
    try:
        return store.update_product(product_id, **changes.model_dump(exclude_unset=True))
    except EntityNotFoundError:
        raise HTTPException(status_code=404, detail="Product not found")
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.delete("/{product_id}", status_code=204)
async def delete_product(product_id: str, store: LedgerStore = Depends(get_store)):
    """Delete a product."""
    if not store.delete_product(product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    return Response(status_code=204)
