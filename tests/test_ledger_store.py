"""Tests for the in-memory ledger store."""

import pytest

from plusone.ledger.events import ORDERS, PRODUCTS, ChangeEvent, ChangeType
from plusone.ledger.models import (
    CandidateInteraction,
    CandidateOrder,
    Interaction,
    Order,
    OrderSource,
    OrderStatus,
)
from plusone.ledger.store import EntityNotFoundError

from conftest import T0


class RecordingListener:
    def __init__(self):
        self.upserts = []
        self.deletes = []

    def on_upsert(self, collection, entity):
        self.upserts.append((collection, entity.id))

    def on_delete(self, collection, entity_id):
        self.deletes.append((collection, entity_id))


def _order(**kwargs) -> Order:
    candidate = CandidateOrder(buyer_name="Amy", item_name="Ring", quantity=1)
    order = Order.from_candidate(candidate, OrderSource.MANUAL, "Eight", T0)
    return order.model_copy(update=kwargs) if kwargs else order


def test_insert_and_update_notify_listeners(store):
    listener = RecordingListener()
    store.add_listener(listener)

    order = store.insert_order(_order())
    store.update_order(order.id, quantity=3, price=100)

    assert listener.upserts == [(ORDERS, order.id), (ORDERS, order.id)]
    updated = store.get_order(order.id)
    assert updated.quantity == 3
    assert updated.amount == 300


def test_update_rejects_identity_fields(store):
    order = store.insert_order(_order())
    with pytest.raises(ValueError):
        store.update_order(order.id, id="other")
    with pytest.raises(ValueError):
        store.update_order(order.id, created_at=T0)


def test_update_rejects_unknown_and_invalid_fields(store):
    order = store.insert_order(_order())
    with pytest.raises(ValueError):
        store.update_order(order.id, colour="red")
    with pytest.raises(ValueError):
        store.update_order(order.id, quantity="many")
    assert store.get_order(order.id).quantity == 1


def test_missing_entity(store):
    with pytest.raises(EntityNotFoundError):
        store.update_order("missing", quantity=2)
    with pytest.raises(EntityNotFoundError):
        store.get_product("missing")
    assert store.delete_order("missing") is False


def test_status_cycle(store):
    order = store.insert_order(_order())
    seen = []
    for _ in range(4):
        order = store.cycle_order_status(order.id)
        seen.append(order.status)
    assert seen == [
        OrderStatus.CONFIRMED,
        OrderStatus.PAID,
        OrderStatus.SHIPPED,
        OrderStatus.PENDING,
    ]


def test_modified_order_cycles_to_pending(store):
    order = store.insert_order(_order(status=OrderStatus.MODIFIED))
    assert store.cycle_order_status(order.id).status == OrderStatus.PENDING


def test_delete_notifies_listener(store):
    listener = RecordingListener()
    store.add_listener(listener)
    order = store.insert_order(_order())
    assert store.delete_order(order.id) is True
    assert listener.deletes == [(ORDERS, order.id)]
    assert store.orders() == []


class TestRemoteEvents:
    def test_insert_applied_twice_yields_one_entity(self, store):
        body = _order().to_body()
        event = ChangeEvent(ORDERS, ChangeType.INSERT, body["id"], body)
        assert store.apply_remote_event(event)
        assert store.apply_remote_event(event)
        assert len(store.orders()) == 1

    def test_update_replaces_by_id(self, store):
        order = store.insert_order(_order())
        body = order.model_copy(update={"quantity": 5}).to_body()
        store.apply_remote_event(ChangeEvent(ORDERS, ChangeType.UPDATE, order.id, body))
        assert store.get_order(order.id).quantity == 5
        assert store.get_order(order.id).created_at == T0

    def test_delete_of_absent_id_is_noop(self, store):
        event = ChangeEvent(PRODUCTS, ChangeType.DELETE, "missing")
        assert store.apply_remote_event(event)
        assert store.apply_remote_event(event)
        assert store.products() == []

    def test_invalid_body_is_ignored(self, store):
        event = ChangeEvent(ORDERS, ChangeType.INSERT, "x", {"id": "x", "quantity": 1})
        assert store.apply_remote_event(event) is False
        assert store.orders() == []

    def test_event_id_wins_over_body_id(self, store):
        body = {**_order().to_body(), "id": "other"}
        store.apply_remote_event(ChangeEvent(ORDERS, ChangeType.INSERT, "X", body))
        assert store.get_order("X").id == "X"

        store.update_order("X", quantity=2)
        assert len(store.orders()) == 1
        assert store.get_order("X").quantity == 2

    def test_body_without_id_keeps_event_id(self, store):
        body = _order().to_body()
        del body["id"]
        store.apply_remote_event(ChangeEvent(ORDERS, ChangeType.INSERT, "X", body))
        assert [o.id for o in store.orders()] == ["X"]

    def test_remote_events_do_not_notify_listeners(self, store):
        listener = RecordingListener()
        store.add_listener(listener)
        body = _order().to_body()
        store.apply_remote_event(ChangeEvent(ORDERS, ChangeType.INSERT, body["id"], body))
        store.apply_remote_event(ChangeEvent(ORDERS, ChangeType.DELETE, body["id"]))
        assert listener.upserts == []
        assert listener.deletes == []


def test_wire_body_uses_camel_case_and_epoch_ms():
    body = _order().to_body()
    assert body["buyerName"] == "Amy"
    assert body["groupName"] == "Eight"
    assert body["timestamp"] == int(T0.timestamp() * 1000)
    assert "created_at" not in body

    restored = Order.model_validate(body)
    assert restored.created_at == T0
    assert restored.status == OrderStatus.PENDING


def test_load_skips_invalid_bodies(store):
    good = _order().to_body()
    count = store.load(ORDERS, [good, {"buyerName": "Bob"}])
    assert count == 1
    assert store.orders()[0].id == good["id"]


def test_interactions_newest_first(store):
    first = Interaction(**CandidateInteraction(
        buyer_name="Amy", question="Still available?", suggested_reply="Yes"
    ).model_dump())
    second = Interaction(**CandidateInteraction(
        buyer_name="Bob", question="Colour?", suggested_reply="Red"
    ).model_dump())
    store.add_interactions([first])
    store.add_interactions([second])
    assert [i.buyer_name for i in store.interactions()] == ["Bob", "Amy"]

    store.clear_interactions()
    assert store.interactions() == []
