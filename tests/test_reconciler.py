"""End-to-end tests: oracle output through reconciliation into the ledger."""

from datetime import timedelta

import pytest

from plusone.ingest.reconciler import Reconciler
from plusone.ledger.models import (
    AnalysisResult,
    CandidateInteraction,
    CandidateOrder,
    CandidateProduct,
    OrderSource,
    OrderStatus,
    ProductType,
)

from conftest import T0, FakeOracle


def _amy_ring() -> AnalysisResult:
    return AnalysisResult(
        orders=[CandidateOrder(buyer_name="Amy", item_name="Ring", quantity=1)]
    )


@pytest.mark.asyncio
async def test_monitor_repeat_within_window_yields_one_order(store):
    reconciler = Reconciler(store, FakeOracle(_amy_ring(), _amy_ring()))

    await reconciler.analyze([b"frame"], OrderSource.MONITOR, "Eight", observed_at=T0)
    report = await reconciler.analyze(
        [b"frame"], OrderSource.MONITOR, "Eight", observed_at=T0 + timedelta(seconds=300)
    )

    assert report.orders_dropped == 1
    assert len(store.orders()) == 1


@pytest.mark.asyncio
async def test_monitor_repeat_after_window_yields_two_orders(store):
    reconciler = Reconciler(store, FakeOracle(_amy_ring(), _amy_ring()))

    await reconciler.analyze([b"frame"], OrderSource.MONITOR, "Eight", observed_at=T0)
    await reconciler.analyze(
        [b"frame"], OrderSource.MONITOR, "Eight", observed_at=T0 + timedelta(seconds=700)
    )

    orders = store.orders()
    assert len(orders) == 2
    assert sum(o.quantity for o in orders) == 2


@pytest.mark.asyncio
async def test_manual_analysis_is_never_deduplicated(store):
    reconciler = Reconciler(store, FakeOracle(_amy_ring(), _amy_ring()))

    await reconciler.analyze("Amy: +1 Ring", OrderSource.MANUAL, "Eight", observed_at=T0)
    await reconciler.analyze("Amy: +1 Ring", OrderSource.MANUAL, "Eight", observed_at=T0)

    assert len(store.orders()) == 2


@pytest.mark.asyncio
async def test_product_fragments_merge(store):
    oracle = FakeOracle(
        AnalysisResult(products=[
            CandidateProduct(name="Sakura Cookie", type=ProductType.PREORDER)
        ]),
        AnalysisResult(products=[
            CandidateProduct(
                name="Sakura Cookie Box",
                price=350,
                type=ProductType.PREORDER,
                specs=["Red", "Green"],
            )
        ]),
    )
    reconciler = Reconciler(store, oracle)

    await reconciler.analyze([b"a"], OrderSource.MONITOR, observed_at=T0)
    report = await reconciler.analyze(
        [b"b"], OrderSource.MONITOR, observed_at=T0 + timedelta(minutes=5)
    )

    assert report.products_merged == 1
    products = store.products()
    assert len(products) == 1
    assert products[0].name == "Sakura Cookie"
    assert products[0].price == 350
    assert products[0].specs == ["Red", "Green"]
    assert products[0].created_at == T0


@pytest.mark.asyncio
async def test_oracle_receives_product_context_and_seller(store):
    oracle = FakeOracle()
    reconciler = Reconciler(store, oracle, clock=lambda: T0)
    reconciler.add_manual_product(
        CandidateProduct(name="Sakura Cookie", price=350, type=ProductType.PREORDER)
    )

    await reconciler.analyze("hello", OrderSource.MANUAL, seller_name="Shop Owner")

    call = oracle.calls[0]
    assert "Sakura Cookie" in call["product_context"]
    assert call["seller_name"] == "Shop Owner"


@pytest.mark.asyncio
async def test_failed_analysis_leaves_ledger_untouched(store):
    reconciler = Reconciler(store, FakeOracle(AnalysisResult.empty(error="boom")))

    report = await reconciler.analyze("text", OrderSource.MANUAL, observed_at=T0)

    assert report.failed
    assert reconciler.last_error == "boom"
    assert store.orders() == []
    assert not reconciler.is_processing


@pytest.mark.asyncio
async def test_interactions_are_recorded(store):
    oracle = FakeOracle(AnalysisResult(interactions=[
        CandidateInteraction(buyer_name="Amy", question="Is red left?", suggested_reply="Yes")
    ]))
    reconciler = Reconciler(store, oracle)

    report = await reconciler.analyze("chat", OrderSource.MANUAL, observed_at=T0)

    assert report.interactions_added == 1
    assert store.interactions()[0].question == "Is red left?"
    assert store.interactions()[0].created_at == T0


def test_group_defaults_when_not_given(store):
    reconciler = Reconciler(store, FakeOracle())
    reconciler.ingest(_amy_ring(), OrderSource.IMAGE, observed_at=T0)
    assert store.orders()[0].group_name == "預設群組"


def test_manual_orders_twice_are_both_kept(store):
    reconciler = Reconciler(store, FakeOracle(), clock=lambda: T0)
    candidate = CandidateOrder(buyer_name="Amy", item_name="Ring", quantity=1)

    first = reconciler.add_manual_order(candidate, group_name="Eight", price=120)
    second = reconciler.add_manual_order(candidate, group_name="Eight", status=OrderStatus.PAID)

    assert first.id != second.id
    assert first.price == 120
    assert second.status == OrderStatus.PAID
    assert all(o.source == OrderSource.MANUAL for o in store.orders())
    assert len(store.orders()) == 2
