# src/shoplens/data/schemas.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Tuple


@dataclass(frozen=True)
class CustomerFeatureSchema:
    """
    Canonical behavioural feature columns, in the order the clusterer sees them.
    Keep this stable: the store-side SQL and the pandas aggregation both conform to it.
    """
    CUSTOMER_ID: str = "customer_id"
    INTERACTION_COUNT: str = "interaction_count"
    PURCHASE_COUNT: str = "purchase_count"
    TOTAL_SPENT: str = "total_spent"
    ACTIVE_MONTHS: str = "active_months"

    @property
    def feature_columns(self) -> Tuple[str, ...]:
        return (self.INTERACTION_COUNT, self.PURCHASE_COUNT, self.TOTAL_SPENT, self.ACTIVE_MONTHS)

    @property
    def required_columns(self) -> Iterable[str]:
        return (self.CUSTOMER_ID, *self.feature_columns)


FEATURES = CustomerFeatureSchema()


class InteractionType(str, Enum):
    VIEW = "view"
    CART_ADD = "cart_add"
    WISHLIST = "wishlist"
    PURCHASE = "purchase"
    SEARCH = "search"


@dataclass(frozen=True)
class Product:
    product_id: str
    name: str
    category: str = ""
    price: float = 0.0
    description: str = ""
    tags: FrozenSet[str] = field(default_factory=frozenset)
    popularity_score: float = 0.0

    def text(self) -> str:
        # tags are a set; sort so the text (and its vector) is stable across runs
        return f"{self.name} {self.description} {' '.join(sorted(self.tags))}"


@dataclass(frozen=True)
class Interaction:
    customer_id: str
    product_id: str
    interaction_type: InteractionType
    timestamp: datetime
    duration: Optional[int] = None


@dataclass(frozen=True)
class Purchase:
    customer_id: str
    product_id: str
    quantity: int
    amount: float
    timestamp: datetime


@dataclass(frozen=True)
class CustomerFeatureRow:
    customer_id: str
    interaction_count: float = 0.0
    purchase_count: float = 0.0
    total_spent: float = 0.0
    active_months: float = 0.0

    def values(self) -> Tuple[float, float, float, float]:
        return (self.interaction_count, self.purchase_count, self.total_spent, self.active_months)
