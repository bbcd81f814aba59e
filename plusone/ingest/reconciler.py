"""Ingestion: run the extraction oracle and reconcile its output into the ledger."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Sequence

from plusone import metrics
from plusone.ai.oracle import ExtractionOracle
from plusone.config import settings
from plusone.ledger.dedupe import DeduplicationFilter
from plusone.ledger.models import (
    AnalysisResult,
    CandidateOrder,
    CandidateProduct,
    Interaction,
    Order,
    OrderSource,
    OrderStatus,
    Product,
    utcnow,
)
from plusone.ledger.reports import product_context
from plusone.ledger.store import LedgerStore

logger = logging.getLogger(__name__)


@dataclass
class IngestReport:
    """What one analysis did to the ledger."""
    orders_accepted: int = 0
    orders_dropped: int = 0
    products_inserted: int = 0
    products_merged: int = 0
    interactions_added: int = 0
    failed: bool = False
    error: Optional[str] = None

    @property
    def found_anything(self) -> bool:
        return bool(
            self.orders_accepted
            or self.orders_dropped
            or self.products_inserted
            or self.products_merged
            or self.interactions_added
        )


class Reconciler:
    """
    Entry point for every way candidates reach the ledger.

    Oracle output goes through the deduplication filter; manual entries are
    stored as given. All writes go through the ledger store.
    """

    def __init__(
        self,
        store: LedgerStore,
        oracle: ExtractionOracle,
        dedupe: Optional[DeduplicationFilter] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.oracle = oracle
        self.dedupe = dedupe or DeduplicationFilter()
        self.clock = clock
        self.last_error: Optional[str] = None
        self._in_flight = 0

    @property
    def is_processing(self) -> bool:
        return self._in_flight > 0

    def product_context(self) -> str:
        return product_context(self.store.products())

    async def analyze(
        self,
        content: str | Sequence[bytes],
        source: OrderSource,
        group_name: Optional[str] = None,
        seller_name: Optional[str] = None,
        observed_at: Optional[datetime] = None,
    ) -> IngestReport:
        """
        Extract candidates from `content` and merge them into the ledger.

        The capture time is taken before the oracle call so entities carry the
        time the content was seen, not the time the analysis finished.
        """
        observed_at = observed_at or self.clock()
        self._in_flight += 1
        try:
            result = await self.oracle.analyze(
                content,
                product_context=self.product_context(),
                seller_name=seller_name if seller_name is not None else settings.seller_name,
            )
        finally:
            self._in_flight -= 1

        if result.failed:
            self.last_error = result.error
            return IngestReport(failed=True, error=result.error)

        if source != OrderSource.MONITOR:
            self.last_error = None
        return self.ingest(result, source, group_name, observed_at)

    def ingest(
        self,
        result: AnalysisResult,
        source: OrderSource,
        group_name: Optional[str] = None,
        observed_at: Optional[datetime] = None,
    ) -> IngestReport:
        """Apply one analysis result to the ledger."""
        now = observed_at or self.clock()
        group = group_name or settings.default_group_name
        report = IngestReport()

        if result.orders:
            orders = self.dedupe.reconcile_orders(
                result.orders, source, group, self.store.orders(), now
            )
            self.store.insert_orders(orders.accepted)
            report.orders_accepted = len(orders.accepted)
            report.orders_dropped = len(orders.dropped)
            metrics.record_candidates("order", "accepted", report.orders_accepted)
            metrics.record_candidates("order", "dropped", report.orders_dropped)

        if result.products:
            products = self.dedupe.reconcile_products(result.products, self.store.products(), now)
            for product in products.inserted:
                self.store.insert_product(product)
            for product in products.merged:
                self.store.replace_product(product)
            report.products_inserted = len(products.inserted)
            report.products_merged = len(products.merged)
            metrics.record_candidates("product", "accepted", report.products_inserted)
            metrics.record_candidates("product", "merged", report.products_merged)

        if result.interactions:
            self.store.add_interactions(
                Interaction(**candidate.model_dump(), created_at=now)
                for candidate in result.interactions
            )
            report.interactions_added = len(result.interactions)
            metrics.record_candidates("interaction", "accepted", report.interactions_added)

        if report.found_anything:
            logger.info(
                f"Ingested {source.value} result for {group}: "
                f"orders +{report.orders_accepted} (dropped {report.orders_dropped}), "
                f"products +{report.products_inserted} (merged {report.products_merged}), "
                f"interactions +{report.interactions_added}"
            )
        return report

    # =========================================================================
    # Manual entry (no deduplication)
    # =========================================================================

    def add_manual_order(
        self,
        candidate: CandidateOrder,
        group_name: Optional[str] = None,
        price: Optional[float] = None,
        status: Optional[OrderStatus] = None,
    ) -> Order:
        order = Order.from_candidate(
            candidate,
            OrderSource.MANUAL,
            group_name or candidate.group_name or settings.default_group_name,
            self.clock(),
        )
        updates = {}
        if price is not None:
            updates["price"] = price
        if status is not None:
            updates["status"] = status
        if updates:
            order = order.model_copy(update=updates)
        return self.store.insert_order(order)

    def add_manual_product(self, candidate: CandidateProduct) -> Product:
        return self.store.insert_product(Product.from_candidate(candidate, created_at=self.clock()))
