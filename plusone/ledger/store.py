"""In-memory ledger of orders, products and interactions.

The store is the only place the ledger collections are mutated. Local edits
go through insert/update/delete and are reported to the registered listeners
(snapshot persistence or remote write-through). Changes made by other clients
arrive through `apply_remote_event`, which mutates the collections without
notifying listeners so they are never echoed back.

Every mutation is a replace-by-id or remove-by-id, which makes applying the
same change twice harmless. Remote echoes of our own optimistic writes rely
on this.
"""

import logging
from enum import Enum
from typing import Any, Iterable, Optional, Protocol, Type

from pydantic import ValidationError

from plusone import metrics
from plusone.ledger.events import ORDERS, PRODUCTS, ChangeEvent, ChangeType
from plusone.ledger.models import (
    STATUS_CYCLE,
    Interaction,
    Order,
    OrderStatus,
    Product,
    TimestampedModel,
)

logger = logging.getLogger(__name__)

# Fields that identify a record and never change after acceptance
IMMUTABLE_FIELDS = {"id", "created_at"}


class EntityNotFoundError(KeyError):
    """No entity with the requested id."""

    def __init__(self, collection: str, entity_id: str):
        self.collection = collection
        self.entity_id = entity_id
        super().__init__(f"{collection} entity not found: {entity_id}")


class LedgerMode(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class MutationListener(Protocol):
    """Receives every local mutation after it has been applied."""

    def on_upsert(self, collection: str, entity: TimestampedModel) -> None:
        ...

    def on_delete(self, collection: str, entity_id: str) -> None:
        ...


class LedgerStore:
    """Authoritative in-memory ledger shared by the API, reconciler and sync engine."""

    _models: dict[str, Type[TimestampedModel]] = {ORDERS: Order, PRODUCTS: Product}

    def __init__(self, mode: LedgerMode = LedgerMode.LOCAL):
        self.mode = mode
        self.startup_warning: Optional[str] = None
        self._collections: dict[str, dict[str, Any]] = {ORDERS: {}, PRODUCTS: {}}
        self._interactions: list[Interaction] = []
        self._listeners: list[MutationListener] = []

    def add_listener(self, listener: MutationListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: MutationListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # =========================================================================
    # Reads
    # =========================================================================

    def orders(self) -> list[Order]:
        """Snapshot of all orders in insertion order."""
        return list(self._collections[ORDERS].values())

    def products(self) -> list[Product]:
        """Snapshot of all products in insertion order."""
        return list(self._collections[PRODUCTS].values())

    def interactions(self) -> list[Interaction]:
        """Assistant interactions, newest first."""
        return list(self._interactions)

    def get_order(self, order_id: str) -> Order:
        return self._get(ORDERS, order_id)

    def get_product(self, product_id: str) -> Product:
        return self._get(PRODUCTS, product_id)

    def snapshot(self, collection: str) -> list[dict[str, Any]]:
        """Wire bodies of a whole collection (for persistence)."""
        return [entity.to_body() for entity in self._collections[collection].values()]

    # =========================================================================
    # Orders
    # =========================================================================

    def insert_order(self, order: Order) -> Order:
        return self._upsert(ORDERS, order)

    def insert_orders(self, orders: Iterable[Order]) -> list[Order]:
        return [self._upsert(ORDERS, order) for order in orders]

    def update_order(self, order_id: str, **changes: Any) -> Order:
        return self._update(ORDERS, order_id, changes)

    def cycle_order_status(self, order_id: str) -> Order:
        """Advance Pending → Confirmed → Paid → Shipped → Pending."""
        order = self.get_order(order_id)
        next_status = STATUS_CYCLE.get(order.status, OrderStatus.PENDING)
        return self._update(ORDERS, order_id, {"status": next_status})

    def delete_order(self, order_id: str) -> bool:
        return self._delete(ORDERS, order_id)

    # =========================================================================
    # Products
    # =========================================================================

    def insert_product(self, product: Product) -> Product:
        return self._upsert(PRODUCTS, product)

    def update_product(self, product_id: str, **changes: Any) -> Product:
        return self._update(PRODUCTS, product_id, changes)

    def replace_product(self, product: Product) -> Product:
        """Replace an existing product wholesale (used for merges)."""
        self._get(PRODUCTS, product.id)
        return self._upsert(PRODUCTS, product)

    def delete_product(self, product_id: str) -> bool:
        return self._delete(PRODUCTS, product_id)

    # =========================================================================
    # Interactions (local only, append-only, cleared in bulk)
    # =========================================================================

    def add_interactions(self, interactions: Iterable[Interaction]) -> None:
        self._interactions[:0] = list(interactions)

    def clear_interactions(self) -> None:
        self._interactions.clear()

    # =========================================================================
    # Remote merge
    # =========================================================================

    def load(self, collection: str, bodies: Iterable[dict[str, Any]]) -> int:
        """
        Replace a whole collection from stored bodies without notifying listeners.

        Bodies that fail validation are skipped and logged.

        Returns:
            Number of entities loaded
        """
        model = self._models[collection]
        entities: dict[str, Any] = {}
        for body in bodies:
            try:
                entity = model.model_validate(body)
            except ValidationError as e:
                logger.warning(f"Skipping invalid {collection} record: {e.error_count()} errors")
                continue
            entities[entity.id] = entity
        self._collections[collection] = entities
        metrics.update_ledger_size(collection, len(entities))
        return len(entities)

    def apply_remote_event(self, event: ChangeEvent) -> bool:
        """
        Merge a change made by any client (including our own echoes).

        Insert/update replace-or-append by id; delete removes by id and is a
        no-op when the id is already absent. Listeners are not notified.

        Returns:
            True if the event was applied, False if its body was invalid
        """
        items = self._collections[event.collection]

        if event.type == ChangeType.DELETE:
            items.pop(event.id, None)
        else:
            try:
                # The event id is authoritative over any id in the body
                entity = self._models[event.collection].model_validate(
                    {**event.body, "id": event.id}
                )
            except ValidationError as e:
                logger.warning(
                    f"Ignoring {event.type.value} event for {event.collection}/{event.id}: "
                    f"{e.error_count()} validation errors"
                )
                return False
            items[event.id] = entity

        metrics.record_remote_event(event.collection, event.type.value)
        metrics.update_ledger_size(event.collection, len(items))
        return True

    # =========================================================================
    # Internals
    # =========================================================================

    def _get(self, collection: str, entity_id: str) -> Any:
        try:
            return self._collections[collection][entity_id]
        except KeyError:
            raise EntityNotFoundError(collection, entity_id) from None

    def _upsert(self, collection: str, entity: TimestampedModel) -> Any:
        items = self._collections[collection]
        items[entity.id] = entity
        metrics.update_ledger_size(collection, len(items))
        for listener in self._listeners:
            listener.on_upsert(collection, entity)
        return entity

    def _update(self, collection: str, entity_id: str, changes: dict[str, Any]) -> Any:
        current = self._get(collection, entity_id)

        forbidden = IMMUTABLE_FIELDS & changes.keys()
        if forbidden:
            raise ValueError(f"Cannot change {', '.join(sorted(forbidden))} of {collection}/{entity_id}")

        unknown = changes.keys() - type(current).model_fields.keys()
        if unknown:
            raise ValueError(f"Unknown {collection} fields: {', '.join(sorted(unknown))}")

        data = current.model_dump()
        data.update(changes)
        updated = type(current).model_validate(data)
        return self._upsert(collection, updated)

    def _delete(self, collection: str, entity_id: str) -> bool:
        items = self._collections[collection]
        if items.pop(entity_id, None) is None:
            return False
        metrics.update_ledger_size(collection, len(items))
        for listener in self._listeners:
            listener.on_delete(collection, entity_id)
        return True
