# src/shoplens/data/validation.py
from __future__ import annotations

import math
from typing import Iterable, List

import pandas as pd

from shoplens.common.errors import DataValidationError
from shoplens.data.schemas import FEATURES, Interaction, InteractionType, Product, Purchase


def validate_required_columns(df: pd.DataFrame, required: Iterable[str]) -> None:
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise DataValidationError(f"Missing required columns: {missing}")


def validate_product(product: Product) -> None:
    if not product.product_id:
        raise DataValidationError("product_id must be a non-empty string")
    if not math.isfinite(product.price) or product.price < 0:
        raise DataValidationError(f"Negative or non-finite price for {product.product_id}: {product.price}")
    if not math.isfinite(product.popularity_score) or product.popularity_score < 0:
        raise DataValidationError(
            f"Negative or non-finite popularity_score for {product.product_id}: {product.popularity_score}"
        )


def validate_catalog(products: Iterable[Product]) -> List[Product]:
    """
    Validates every product and rejects duplicate ids.
    Returns the catalog as a list, preserving insertion order.
    """
    out: List[Product] = []
    seen = set()
    for p in products:
        validate_product(p)
        if p.product_id in seen:
            raise DataValidationError(f"Duplicate product_id in catalog: {p.product_id}")
        seen.add(p.product_id)
        out.append(p)
    return out


def validate_interaction(event: Interaction) -> None:
    if not isinstance(event.interaction_type, InteractionType):
        raise DataValidationError(f"Unknown interaction type: {event.interaction_type!r}")
    if event.duration is not None and event.duration < 0:
        raise DataValidationError("Interaction duration must be >= 0")


def validate_purchase(purchase: Purchase) -> None:
    if purchase.quantity <= 0:
        raise DataValidationError("Purchase quantity must be > 0")
    if not math.isfinite(purchase.amount) or purchase.amount < 0:
        raise DataValidationError("Purchase amount must be a non-negative number")


def validate_feature_frame(df: pd.DataFrame) -> None:
    validate_required_columns(df, FEATURES.required_columns)

    if df[FEATURES.CUSTOMER_ID].duplicated().any():
        raise DataValidationError("Duplicate customer_id rows in feature frame")

    feats = df[list(FEATURES.feature_columns)]
    if feats.isna().any().any():
        raise DataValidationError(f"Nulls found in feature columns: {feats.isna().sum().to_dict()}")
    if (feats < 0).any().any():
        raise DataValidationError("Negative behavioural features found (unexpected).")
