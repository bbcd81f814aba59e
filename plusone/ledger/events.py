"""Change events exchanged through the remote ledger feed."""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

ORDERS = "orders"
PRODUCTS = "products"
COLLECTIONS = (ORDERS, PRODUCTS)


class ChangeType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeEvent:
    """One row change: {insert|update|delete, identifier, body}."""
    collection: str
    type: ChangeType
    id: str
    body: Optional[dict[str, Any]] = None

    def to_json(self) -> str:
        return json.dumps(
            {
                "collection": self.collection,
                "type": self.type.value,
                "id": self.id,
                "body": self.body,
            },
            ensure_ascii=False,
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> "ChangeEvent":
        """
        Parse an event published by any client.

        Raises:
            ValueError: If the payload is not a well-formed change event
        """
        try:
            data = json.loads(raw)
            event = cls(
                collection=data["collection"],
                type=ChangeType(data["type"]),
                id=str(data["id"]),
                body=data.get("body"),
            )
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise ValueError(f"Malformed change event: {e}") from e

        if event.collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {event.collection}")
        if event.type != ChangeType.DELETE and not isinstance(event.body, dict):
            raise ValueError(f"{event.type.value} event without body for id {event.id}")
        return event
