"""Ledger entities and extraction candidates.

Entities serialize with the camelCase field names and epoch-millisecond
timestamps used by every client sharing the remote ledger, so a body written
by one client can be read back by any other.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel


class OrderStatus(str, Enum):
    """Order lifecycle states."""

    PENDING = "待處理"
    CONFIRMED = "已確認"
    PAID = "已付款"
    SHIPPED = "已出貨"
    MODIFIED = "修改單"


# Operator status cycling; anything not listed goes back to PENDING
STATUS_CYCLE = {
    OrderStatus.PENDING: OrderStatus.CONFIRMED,
    OrderStatus.CONFIRMED: OrderStatus.PAID,
    OrderStatus.PAID: OrderStatus.SHIPPED,
}


class OrderSource(str, Enum):
    """Channel an order arrived through."""

    MANUAL = "manual"
    IMAGE = "image"
    MONITOR = "monitor"


class ProductType(str, Enum):
    """Promotion type of a product listing."""

    LIVE = "連線"
    PREORDER = "預購"
    IN_STOCK = "現貨"


def new_id() -> str:
    return str(uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_epoch_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def from_epoch_ms(value: Any) -> Any:
    """Accept epoch milliseconds (wire format) as well as datetimes/ISO strings."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return value


class WireModel(BaseModel):
    """Base model using the shared camelCase wire format."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_body(self) -> dict[str, Any]:
        """Serialize to the JSON body stored remotely and in local snapshots."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TimestampedModel(WireModel):
    """Entity carrying a creation timestamp stored as epoch milliseconds."""

    created_at: datetime = Field(default_factory=utcnow, alias="timestamp")

    @field_validator("created_at", mode="before")
    @classmethod
    def _parse_timestamp(cls, value: Any) -> Any:
        return from_epoch_ms(value)

    @field_validator("created_at")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_serializer("created_at", when_used="json")
    def _serialize_timestamp(self, value: datetime) -> int:
        return to_epoch_ms(value)


# =============================================================================
# Orders
# =============================================================================


class CandidateOrder(WireModel):
    """Order as returned by the extraction oracle (untrusted)."""

    buyer_name: str = Field(min_length=1)
    item_name: str = Field(min_length=1)
    quantity: int
    raw_text: str = ""
    detected_price: Optional[float] = None
    is_modification: bool = False
    selected_spec: Optional[str] = None
    group_name: Optional[str] = None

    @field_validator("raw_text", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("is_modification", mode="before")
    @classmethod
    def _none_to_false(cls, value: Any) -> Any:
        return False if value is None else value


class Order(CandidateOrder, TimestampedModel):
    """Accepted ledger order."""

    id: str = Field(default_factory=new_id)
    price: float = 0
    status: OrderStatus = OrderStatus.PENDING
    source: OrderSource = OrderSource.MANUAL
    group_name: str

    @property
    def amount(self) -> float:
        """Line total; negative quantities (cancellations) subtract naturally."""
        return self.quantity * self.price

    @classmethod
    def from_candidate(
        cls,
        candidate: CandidateOrder,
        source: OrderSource,
        group_name: str,
        created_at: datetime,
    ) -> "Order":
        return cls(
            buyer_name=candidate.buyer_name,
            item_name=candidate.item_name,
            quantity=candidate.quantity,
            raw_text=candidate.raw_text,
            detected_price=candidate.detected_price,
            is_modification=candidate.is_modification,
            selected_spec=candidate.selected_spec,
            price=candidate.detected_price or 0,
            status=OrderStatus.MODIFIED if candidate.is_modification else OrderStatus.PENDING,
            created_at=created_at,
            source=source,
            group_name=group_name,
        )


# =============================================================================
# Products
# =============================================================================


class BulkRule(WireModel):
    """Bulk discount: buying `quantity` items costs `price` (per unit or for the batch)."""

    quantity: int = Field(alias="qty")
    price: float
    is_unit_price: bool = False

    @field_validator("is_unit_price", mode="before")
    @classmethod
    def _none_to_false(cls, value: Any) -> Any:
        return False if value is None else value


class CandidateProduct(WireModel):
    """Product listing as returned by the extraction oracle."""

    name: str = Field(min_length=1)
    price: float = 0
    type: ProductType
    specs: list[str] = Field(default_factory=list)
    closing_time: Optional[str] = None
    description: Optional[str] = None
    bulk_rules: list[BulkRule] = Field(default_factory=list)

    @field_validator("specs", "bulk_rules", mode="before")
    @classmethod
    def _none_to_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("price", mode="before")
    @classmethod
    def _none_to_zero(cls, value: Any) -> Any:
        return 0 if value is None else value


class Product(CandidateProduct, TimestampedModel):
    """Accepted ledger product."""

    id: str = Field(default_factory=new_id)
    purchased_qty: int = 0
    purchase_notes: str = ""

    @field_validator("purchased_qty", mode="before")
    @classmethod
    def _purchased_default(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("purchase_notes", mode="before")
    @classmethod
    def _notes_default(cls, value: Any) -> Any:
        return "" if value is None else value

    @classmethod
    def from_candidate(cls, candidate: CandidateProduct, created_at: datetime) -> "Product":
        return cls(
            **candidate.model_dump(),
            created_at=created_at,
        )


# =============================================================================
# Interactions
# =============================================================================


class CandidateInteraction(WireModel):
    """Question tagged for the assistant, with a suggested reply."""

    buyer_name: str
    question: str
    suggested_reply: str


class Interaction(CandidateInteraction, TimestampedModel):
    id: str = Field(default_factory=new_id)


# =============================================================================
# Oracle result
# =============================================================================


class AnalysisResult(BaseModel):
    """Structured output of one extraction pass."""

    orders: list[CandidateOrder] = Field(default_factory=list)
    products: list[CandidateProduct] = Field(default_factory=list)
    interactions: list[CandidateInteraction] = Field(default_factory=list)
    failed: bool = False
    error: Optional[str] = None

    @classmethod
    def empty(cls, error: Optional[str] = None) -> "AnalysisResult":
        return cls(failed=error is not None, error=error)

    @property
    def is_empty(self) -> bool:
        return not (self.orders or self.products or self.interactions)
