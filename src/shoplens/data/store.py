# src/shoplens/data/store.py
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

import pandas as pd

from shoplens.common.errors import DataUnavailableError, NotFoundError
from shoplens.common.time import as_naive_utc, utc_now
from shoplens.data.schemas import CustomerFeatureRow, Interaction, InteractionType, Product, Purchase
from shoplens.data.validation import validate_catalog, validate_interaction, validate_product, validate_purchase

INTERACTION_COLUMNS = ["customer_id", "product_id", "interaction_type", "timestamp", "duration"]
PURCHASE_COLUMNS = ["customer_id", "product_id", "quantity", "amount", "timestamp"]


@runtime_checkable
class RecordStore(Protocol):
    """
    Read/write contract the engine consumes from the surrounding record store.

    Every method may raise DataUnavailableError when the backend cannot be
    reached; lookups by id raise NotFoundError.
    """

    def list_products(self) -> List[Product]: ...

    def get_product(self, product_id: str) -> Product: ...

    def list_customer_ids(self) -> List[str]: ...

    def has_customer(self, customer_id: str) -> bool: ...

    def list_customer_interactions(self, customer_id: str, limit: int) -> List[Interaction]: ...

    def interactions_frame(self) -> pd.DataFrame: ...

    def purchases_frame(self) -> pd.DataFrame: ...

    def aggregate_customer_behavior(self) -> List[CustomerFeatureRow]: ...

    def get_segment_label(self, customer_id: str) -> Optional[int]: ...

    def list_purchases_by_segment(self, segment_label: int) -> List[Tuple[str, int]]: ...

    def write_segment_label(self, customer_id: str, label: int) -> None: ...


class InMemoryStore:
    """
    Dict/list-backed RecordStore. Used by tests and for embedding the engine
    without a database. Frames are materialised with pandas on demand.
    """

    def __init__(self) -> None:
        self._products: Dict[str, Product] = {}
        self._customers: Dict[str, Optional[int]] = {}
        self._interactions: List[Interaction] = []
        self._purchases: List[Purchase] = []
        self._closed = False

    # ------------------------------------------------------------------
    # writes (catalog ingestion / event capture)
    # ------------------------------------------------------------------
    def add_product(self, product: Product) -> None:
        self._check_open()
        validate_product(product)
        self._products[product.product_id] = product

    def add_customer(self, customer_id: str) -> None:
        self._check_open()
        self._customers.setdefault(customer_id, None)

    def record_interaction(
        self,
        customer_id: str,
        product_id: str,
        interaction_type: InteractionType | str,
        *,
        timestamp: Optional[datetime] = None,
        duration: Optional[int] = None,
    ) -> Interaction:
        self._check_open()
        event = Interaction(
            customer_id=customer_id,
            product_id=product_id,
            interaction_type=InteractionType(interaction_type),
            timestamp=as_naive_utc(timestamp or utc_now()),
            duration=duration,
        )
        validate_interaction(event)
        self.add_customer(customer_id)
        self._interactions.append(event)
        return event

    def record_purchase(
        self,
        customer_id: str,
        product_id: str,
        quantity: int,
        amount: float,
        *,
        timestamp: Optional[datetime] = None,
    ) -> Purchase:
        self._check_open()
        purchase = Purchase(
            customer_id=customer_id,
            product_id=product_id,
            quantity=int(quantity),
            amount=float(amount),
            timestamp=as_naive_utc(timestamp or utc_now()),
        )
        validate_purchase(purchase)
        self.add_customer(customer_id)
        self._purchases.append(purchase)
        return purchase

    def close(self) -> None:
        self._closed = True

    # ------------------------------------------------------------------
    # RecordStore
    # ------------------------------------------------------------------
    def list_products(self) -> List[Product]:
        self._check_open()
        return list(self._products.values())

    def get_product(self, product_id: str) -> Product:
        self._check_open()
        try:
            return self._products[product_id]
        except KeyError:
            raise NotFoundError(f"Unknown product_id: {product_id}") from None

    def list_customer_ids(self) -> List[str]:
        self._check_open()
        return list(self._customers.keys())

    def has_customer(self, customer_id: str) -> bool:
        self._check_open()
        return customer_id in self._customers

    def list_customer_interactions(self, customer_id: str, limit: int) -> List[Interaction]:
        self._check_open()
        # enumerate() keeps later inserts first among equal timestamps
        mine = [(i, e) for i, e in enumerate(self._interactions) if e.customer_id == customer_id]
        mine.sort(key=lambda pair: (pair[1].timestamp, pair[0]), reverse=True)
        return [e for _, e in mine[: max(limit, 0)]]

    def interactions_frame(self) -> pd.DataFrame:
        self._check_open()
        rows = [
            (e.customer_id, e.product_id, e.interaction_type.value, e.timestamp, e.duration)
            for e in self._interactions
        ]
        return pd.DataFrame(rows, columns=INTERACTION_COLUMNS)

    def purchases_frame(self) -> pd.DataFrame:
        self._check_open()
        rows = [(p.customer_id, p.product_id, p.quantity, p.amount, p.timestamp) for p in self._purchases]
        return pd.DataFrame(rows, columns=PURCHASE_COLUMNS)

    def aggregate_customer_behavior(self) -> List[CustomerFeatureRow]:
        from shoplens.features.customer_features import FeatureAggregator

        return FeatureAggregator().aggregate(self)

    def get_segment_label(self, customer_id: str) -> Optional[int]:
        self._check_open()
        return self._customers.get(customer_id)

    def list_purchases_by_segment(self, segment_label: int) -> List[Tuple[str, int]]:
        self._check_open()
        members = {cid for cid, seg in self._customers.items() if seg == segment_label}
        counts: Dict[str, int] = {}
        for p in self._purchases:
            # only products still in the catalog are recommendable
            if p.customer_id in members and p.product_id in self._products:
                counts[p.product_id] = counts.get(p.product_id, 0) + 1
        return sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))

    def write_segment_label(self, customer_id: str, label: int) -> None:
        self._check_open()
        self._customers[customer_id] = int(label)

    def _check_open(self) -> None:
        if self._closed:
            raise DataUnavailableError("InMemoryStore is closed")


def load_store(
    products: Sequence[Product] = (),
    customers: Sequence[str] = (),
) -> InMemoryStore:
    """Pre-populated in-memory store; the catalog is validated as a whole (no duplicate ids)."""
    store = InMemoryStore()
    for p in validate_catalog(products):
        store.add_product(p)
    for c in customers:
        store.add_customer(c)
    return store
