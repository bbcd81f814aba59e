"""Duplicate detection and merging for extracted candidates.

Continuous monitoring sees the same chat content many times: several
screenshots of one post, overlapping capture windows, or a re-run on
unchanged content. This module decides, without any I/O, whether a candidate
is new, a duplicate to drop, or a fragment to merge into an existing listing.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional, Protocol, Sequence

from plusone.config import settings
from plusone.ledger.models import (
    CandidateOrder,
    CandidateProduct,
    Order,
    OrderSource,
    Product,
)

logger = logging.getLogger(__name__)


def is_recent(created_at: datetime, now: datetime, window: timedelta) -> bool:
    """True when an entity created at `created_at` is younger than `window` at `now`."""
    return (now - created_at) < window


# =============================================================================
# Product name matching
# =============================================================================


class NameMatcher(Protocol):
    """Decides whether two product names refer to the same listing."""

    def matches(self, a: str, b: str) -> bool:
        ...


def _normalize_name(name: str) -> str:
    return name.strip().lower()


class ExactNameMatcher:
    """Case-insensitive exact comparison."""

    def matches(self, a: str, b: str) -> bool:
        return _normalize_name(a) == _normalize_name(b)


class SubstringNameMatcher:
    """
    Case-insensitive match that also accepts containment.

    "Sakura Cookie" and "Sakura Cookie Box" are the same listing. Names of
    `min_length` characters or fewer only match exactly, so short tokens
    like "A" or "Red" cannot swallow unrelated products.
    """

    def __init__(self, min_length: int = 3):
        self.min_length = min_length

    def matches(self, a: str, b: str) -> bool:
        n1 = _normalize_name(a)
        n2 = _normalize_name(b)
        if n1 == n2:
            return True
        if len(n1) > self.min_length and len(n2) > self.min_length:
            return n1 in n2 or n2 in n1
        return False


# =============================================================================
# Results
# =============================================================================


@dataclass
class OrderReconciliation:
    """Outcome of filtering a batch of candidate orders."""
    accepted: list[Order] = field(default_factory=list)
    dropped: list[Order] = field(default_factory=list)


@dataclass
class ProductReconciliation:
    """Outcome of matching a batch of candidate products."""
    inserted: list[Product] = field(default_factory=list)
    merged: list[Product] = field(default_factory=list)


# =============================================================================
# Filter
# =============================================================================


class DeduplicationFilter:
    """
    Accept / merge / drop decisions for extracted candidates.

    Orders from the continuous monitor are dropped when an order with the same
    buyer, item and group was created inside the order window. Orders from
    manual or single-image analysis are always accepted since an operator
    asked for them explicitly. A real re-order by the same buyer for the same
    item inside the window is indistinguishable from a repeat sighting and is
    dropped as well.

    Products are never dropped: a candidate matching a recent listing is
    merged into it, otherwise it becomes a new listing.
    """

    def __init__(
        self,
        order_window: Optional[timedelta] = None,
        product_window: Optional[timedelta] = None,
        name_matcher: Optional[NameMatcher] = None,
    ):
        self.order_window = order_window or timedelta(minutes=settings.order_dedupe_window_minutes)
        self.product_window = product_window or timedelta(minutes=settings.product_merge_window_minutes)
        self.name_matcher = name_matcher or SubstringNameMatcher()

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    def is_duplicate_order(
        self,
        order: Order,
        existing: Iterable[Order],
        now: datetime,
    ) -> bool:
        """
        Check whether `order` repeats a recent ledger order.

        Args:
            order: Candidate already stamped with its group label
            existing: Orders to compare against
            now: Capture time of the candidate

        Returns:
            True if an exact (buyer, item, group) match exists inside the window
        """
        for other in existing:
            if (
                other.buyer_name == order.buyer_name
                and other.item_name == order.item_name
                and other.group_name == order.group_name
                and is_recent(other.created_at, now, self.order_window)
            ):
                return True
        return False

    def reconcile_orders(
        self,
        candidates: Sequence[CandidateOrder],
        source: OrderSource,
        group_name: str,
        existing: Sequence[Order],
        now: datetime,
    ) -> OrderReconciliation:
        """
        Turn candidate orders into ledger orders, dropping monitor repeats.

        Candidates accepted earlier in the same batch count as existing, so a
        frame listing the same "+1" twice still yields one order.
        """
        result = OrderReconciliation()
        for candidate in candidates:
            order = Order.from_candidate(candidate, source, group_name, now)
            if source == OrderSource.MONITOR and self.is_duplicate_order(
                order, [*existing, *result.accepted], now
            ):
                logger.debug(
                    f"Dropping duplicate order: {order.buyer_name} / {order.item_name} "
                    f"({order.group_name})"
                )
                result.dropped.append(order)
                continue
            result.accepted.append(order)
        return result

    # -------------------------------------------------------------------------
    # Products
    # -------------------------------------------------------------------------

    def find_matching_product(
        self,
        name: str,
        products: Iterable[Product],
        now: datetime,
    ) -> Optional[Product]:
        """Return the first recent product whose name matches `name`."""
        for product in products:
            if self.name_matcher.matches(product.name, name) and is_recent(
                product.created_at, now, self.product_window
            ):
                return product
        return None

    @staticmethod
    def merge_product(existing: Product, candidate: CandidateProduct) -> Product:
        """
        Enrich an existing listing with a later fragment.

        Fields only move towards more information: price, promotion type,
        description and closing time are taken from the candidate when it
        supplies a value; variant and bulk-rule lists are replaced only by a
        strictly longer list. Identity (id, name, creation time) and the
        operator-maintained purchase fields are never touched.
        """
        updates = {
            "price": candidate.price or existing.price,
            "type": candidate.type or existing.type,
            "specs": list(candidate.specs)
            if len(candidate.specs) > len(existing.specs)
            else existing.specs,
            "description": candidate.description or existing.description,
            "closing_time": candidate.closing_time or existing.closing_time,
            "bulk_rules": list(candidate.bulk_rules)
            if len(candidate.bulk_rules) > len(existing.bulk_rules)
            else existing.bulk_rules,
        }
        return existing.model_copy(update=updates)

    def reconcile_products(
        self,
        candidates: Sequence[CandidateProduct],
        existing: Sequence[Product],
        now: datetime,
    ) -> ProductReconciliation:
        """
        Match candidate products against the ledger.

        Fragments within one batch also merge into each other, so a post split
        over several messages in the same screenshot yields one listing.
        """
        inserted: dict[str, Product] = {}
        merged: dict[str, Product] = {}
        working: list[Product] = list(existing)

        for candidate in candidates:
            match = self.find_matching_product(candidate.name, working, now)
            if match is None:
                product = Product.from_candidate(candidate, created_at=now)
                working.append(product)
                inserted[product.id] = product
                continue

            updated = self.merge_product(match, candidate)
            working = [updated if p.id == updated.id else p for p in working]

            # A listing inserted earlier in this batch stays an insert
            if updated.id in inserted:
                inserted[updated.id] = updated
            else:
                merged[updated.id] = updated

        return ProductReconciliation(
            inserted=list(inserted.values()),
            merged=list(merged.values()),
        )
