# src/shoplens/features/customer_features.py
from __future__ import annotations

from typing import TYPE_CHECKING, List, Sequence

import pandas as pd

from shoplens.common.errors import DataUnavailableError
from shoplens.data.schemas import FEATURES, CustomerFeatureRow
from shoplens.data.validation import validate_feature_frame, validate_required_columns

if TYPE_CHECKING:
    from shoplens.data.store import RecordStore


class FeatureAggregator:
    """
    Per-customer behavioural features pulled from raw interaction/purchase history:

      - interaction_count: number of interactions
      - purchase_count:    number of purchases
      - total_spent:       sum of purchase amounts
      - active_months:     distinct calendar months with >= 1 purchase

    Every known customer gets a row; customers without events get all zeros.
    """

    def aggregate(self, store: "RecordStore") -> List[CustomerFeatureRow]:
        try:
            customer_ids = store.list_customer_ids()
            interactions = store.interactions_frame()
            purchases = store.purchases_frame()
        except OSError as exc:
            raise DataUnavailableError(f"Record store unreachable: {exc}") from exc

        df = self.aggregate_frames(customer_ids, interactions, purchases)
        return rows_from_frame(df)

    def aggregate_frames(
        self,
        customer_ids: Sequence[str],
        interactions: pd.DataFrame,
        purchases: pd.DataFrame,
    ) -> pd.DataFrame:
        validate_required_columns(interactions, ["customer_id"])
        validate_required_columns(purchases, ["customer_id", "amount", "timestamp"])

        out = pd.DataFrame({FEATURES.CUSTOMER_ID: pd.Series(list(customer_ids), dtype="object")})

        n_inter = interactions.groupby("customer_id").size().rename(FEATURES.INTERACTION_COUNT)

        p = purchases.copy()
        p["month"] = pd.to_datetime(p["timestamp"]).dt.strftime("%Y-%m")
        per_customer = p.groupby("customer_id").agg(
            **{
                FEATURES.PURCHASE_COUNT: ("amount", "size"),
                FEATURES.TOTAL_SPENT: ("amount", "sum"),
                FEATURES.ACTIVE_MONTHS: ("month", "nunique"),
            }
        )

        out = out.join(n_inter, on=FEATURES.CUSTOMER_ID).join(per_customer, on=FEATURES.CUSTOMER_ID)
        cols = list(FEATURES.feature_columns)
        out[cols] = out[cols].fillna(0.0).astype("float64")

        validate_feature_frame(out)
        return out[list(FEATURES.required_columns)]


def rows_to_frame(rows: Sequence[CustomerFeatureRow]) -> pd.DataFrame:
    return pd.DataFrame(
        [(r.customer_id, *r.values()) for r in rows],
        columns=list(FEATURES.required_columns),
    )


def rows_from_frame(df: pd.DataFrame) -> List[CustomerFeatureRow]:
    return [
        CustomerFeatureRow(
            customer_id=str(r[0]),
            interaction_count=float(r[1]),
            purchase_count=float(r[2]),
            total_spent=float(r[3]),
            active_months=float(r[4]),
        )
        for r in df[list(FEATURES.required_columns)].itertuples(index=False, name=None)
    ]
