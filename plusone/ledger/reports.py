"""Aggregations over ledger snapshots.

All totals sum quantity × price as-is; cancellations carry negative
quantities and subtract without special handling.
"""

from dataclasses import dataclass, field
from typing import Iterable, Sequence

from plusone.ledger.models import Order, Product

UNSPECIFIED_SPEC = "未指定"


@dataclass
class DashboardStats:
    order_count: int
    unique_buyers: int
    total_quantity: int
    total_revenue: float


@dataclass
class BuyerSummary:
    name: str
    items: list[Order] = field(default_factory=list)
    total_quantity: int = 0
    total_amount: float = 0


@dataclass
class ProductTally:
    product: Product
    total_ordered: int
    spec_counts: dict[str, int]
    purchased: int

    @property
    def shortfall(self) -> int:
        """Purchased minus ordered; negative means more stock is needed."""
        return self.purchased - self.total_ordered

    @property
    def fill_percent(self) -> float:
        if self.total_ordered <= 0:
            return 0.0
        return min(self.purchased / self.total_ordered * 100, 100.0)


def dashboard_stats(orders: Sequence[Order]) -> DashboardStats:
    return DashboardStats(
        order_count=len(orders),
        unique_buyers=len({o.buyer_name for o in orders}),
        total_quantity=sum(o.quantity for o in orders),
        total_revenue=sum(o.amount for o in orders),
    )


def buyer_summaries(orders: Iterable[Order]) -> list[BuyerSummary]:
    """Group orders per buyer, largest total amount first."""
    groups: dict[str, BuyerSummary] = {}
    for order in orders:
        group = groups.setdefault(order.buyer_name, BuyerSummary(name=order.buyer_name))
        group.items.append(order)
        group.total_quantity += order.quantity
        group.total_amount += order.amount
    return sorted(groups.values(), key=lambda g: g.total_amount, reverse=True)


def _format_amount(value: float) -> str:
    return f"{value:,.0f}" if float(value).is_integer() else f"{value:,.2f}"


def format_bill(summary: BuyerSummary) -> str:
    """Closing message for one buyer, listing every non-zero line."""
    lines = [
        f"- {o.item_name} x {o.quantity} (${_format_amount(o.price)})"
        for o in summary.items
        if o.quantity != 0
    ]
    return (
        f"Hi @{summary.name}\n"
        "您的代購清單如下：\n"
        + "\n".join(lines)
        + "\n----------------\n"
        f"總金額：${_format_amount(summary.total_amount)}\n"
        "請於今日完成匯款，感謝！"
    )


def order_matches_product(order: Order, product: Product) -> bool:
    item = order.item_name
    name = product.name
    return item.strip() == name.strip() or name in item or item in name


def product_tally(product: Product, orders: Iterable[Order]) -> ProductTally:
    """Compare ordered quantity with purchased quantity for one product."""
    matching = [o for o in orders if order_matches_product(o, product)]

    spec_counts: dict[str, int] = {}
    if product.specs:
        for order in matching:
            spec = order.selected_spec or UNSPECIFIED_SPEC
            spec_counts[spec] = spec_counts.get(spec, 0) + order.quantity

    return ProductTally(
        product=product,
        total_ordered=sum(o.quantity for o in matching),
        spec_counts=spec_counts,
        purchased=product.purchased_qty,
    )


def product_context(products: Iterable[Product]) -> str:
    """Serialize active products as context for the extraction model."""
    lines = []
    for product in products:
        parts = [product.name, product.type.value, f"${_format_amount(product.price)}"]
        if product.specs:
            parts.append("規格: " + "/".join(product.specs))
        if product.closing_time:
            parts.append(f"結單 {product.closing_time}")
        lines.append(" | ".join(parts))
    return "\n".join(lines)
