"""Chat analysis routes: pasted text, uploaded screenshots, tagged questions."""

import base64
import binascii
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import Field

from plusone.api.deps import get_reconciler, get_store
from plusone.ingest.reconciler import IngestReport, Reconciler
from plusone.ledger.models import Interaction, OrderSource, WireModel
from plusone.ledger.store import LedgerStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/analysis", tags=["analysis"])


class TextAnalysisRequest(WireModel):
    text: str = Field(min_length=1)
    group_name: Optional[str] = None
    seller_name: Optional[str] = None


class ImageAnalysisRequest(WireModel):
    images: List[str] = Field(min_length=1, description="Base64-encoded screenshots")
    group_name: Optional[str] = None
    seller_name: Optional[str] = None


class AnalysisResponse(WireModel):
    orders_accepted: int
    orders_dropped: int
    products_inserted: int
    products_merged: int
    interactions_added: int
    failed: bool
    error: Optional[str] = None


class AnalysisStatusResponse(WireModel):
    processing: bool
    last_error: Optional[str] = None
    usage: Dict[str, Any] = {}


def _response(report: IngestReport) -> AnalysisResponse:
    return AnalysisResponse(**vars(report))


def _decode_image(data: str) -> bytes:
    # Accept data URLs as well as bare base64
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=422, detail="Invalid base64 image data")


@router.post("/text", response_model=AnalysisResponse)
async def analyze_text(
    request: TextAnalysisRequest,
    reconciler: Reconciler = Depends(get_reconciler),
):
    """Extract orders and products from pasted chat text."""
    report = await reconciler.analyze(
        request.text,
        OrderSource.MANUAL,
        group_name=request.group_name,
        seller_name=request.seller_name,
    )
    return _response(report)


@router.post("/images", response_model=AnalysisResponse)
async def analyze_images(
    request: ImageAnalysisRequest,
    reconciler: Reconciler = Depends(get_reconciler),
):
    """Extract orders and products from uploaded chat screenshots."""
    images = [_decode_image(image) for image in request.images]
    report = await reconciler.analyze(
        images,
        OrderSource.IMAGE,
        group_name=request.group_name,
        seller_name=request.seller_name,
    )
    return _response(report)


@router.get("/status", response_model=AnalysisStatusResponse)
async def analysis_status(reconciler: Reconciler = Depends(get_reconciler)):
    return AnalysisStatusResponse(
        processing=reconciler.is_processing,
        last_error=reconciler.last_error,
        usage=reconciler.oracle.usage(),
    )


@router.get("/interactions", response_model=List[Interaction])
async def list_interactions(store: LedgerStore = Depends(get_store)):
    """Questions tagged for the assistant, newest first."""
    return store.interactions()


@router.delete("/interactions", status_code=204)
async def clear_interactions(store: LedgerStore = Depends(get_store)):
    store.clear_interactions()
    return Response(status_code=204)
