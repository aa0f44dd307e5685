# src/shoplens/data/duckdb_store.py
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

import duckdb
import pandas as pd

from shoplens.common.errors import DataUnavailableError, NotFoundError
from shoplens.common.time import as_naive_utc, utc_now
from shoplens.data.schemas import CustomerFeatureRow, FEATURES, Interaction, InteractionType, Product, Purchase
from shoplens.data.store import INTERACTION_COLUMNS, PURCHASE_COLUMNS
from shoplens.data.validation import validate_interaction, validate_product, validate_purchase

IN_MEMORY = ":memory:"


@dataclass(frozen=True)
class DuckDBStoreConfig:
    db_path: Path = Path("data/shoplens.duckdb")
    threads: int = 4
    # False -> a missing database file is reported as DataUnavailableError
    create: bool = True


_SCHEMA_DDL = (
    "CREATE SEQUENCE IF NOT EXISTS customer_seq START 1;",
    "CREATE SEQUENCE IF NOT EXISTS product_seq START 1;",
    "CREATE SEQUENCE IF NOT EXISTS interaction_seq START 1;",
    "CREATE SEQUENCE IF NOT EXISTS purchase_seq START 1;",
    """
    CREATE TABLE IF NOT EXISTS customers (
        customer_id VARCHAR PRIMARY KEY,
        seq         BIGINT DEFAULT nextval('customer_seq'),
        segment     INTEGER
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS products (
        product_id       VARCHAR PRIMARY KEY,
        seq              BIGINT DEFAULT nextval('product_seq'),
        name             VARCHAR,
        category         VARCHAR,
        price            DOUBLE,
        description      VARCHAR,
        tags             VARCHAR,
        popularity_score DOUBLE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS interactions (
        interaction_id   BIGINT PRIMARY KEY DEFAULT nextval('interaction_seq'),
        customer_id      VARCHAR,
        product_id       VARCHAR,
        interaction_type VARCHAR,
        ts               TIMESTAMP,
        duration         INTEGER
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS purchases (
        purchase_id BIGINT PRIMARY KEY DEFAULT nextval('purchase_seq'),
        customer_id VARCHAR,
        product_id  VARCHAR,
        quantity    INTEGER,
        amount      DOUBLE,
        ts          TIMESTAMP
    );
    """,
)

# Each event table is aggregated on its own before joining, so one customer's
# interactions never multiply their purchase amounts.
_AGGREGATE_SQL = f"""
    WITH i AS (
        SELECT customer_id, COUNT(DISTINCT interaction_id) AS n_interactions
        FROM interactions
        GROUP BY customer_id
    ),
    p AS (
        SELECT
            customer_id,
            COUNT(DISTINCT purchase_id)           AS n_purchases,
            SUM(amount)                           AS spent,
            COUNT(DISTINCT strftime(ts, '%Y-%m')) AS n_months
        FROM purchases
        GROUP BY customer_id
    )
    SELECT
        c.customer_id                                   AS {FEATURES.CUSTOMER_ID},
        CAST(COALESCE(i.n_interactions, 0) AS DOUBLE)   AS {FEATURES.INTERACTION_COUNT},
        CAST(COALESCE(p.n_purchases, 0) AS DOUBLE)      AS {FEATURES.PURCHASE_COUNT},
        CAST(COALESCE(p.spent, 0.0) AS DOUBLE)          AS {FEATURES.TOTAL_SPENT},
        CAST(COALESCE(p.n_months, 0) AS DOUBLE)         AS {FEATURES.ACTIVE_MONTHS}
    FROM customers c
    LEFT JOIN i ON i.customer_id = c.customer_id
    LEFT JOIN p ON p.customer_id = c.customer_id
    ORDER BY c.seq;
"""


class DuckDBStore:
    """
    RecordStore backed by a DuckDB database file.
    All statements are parameterized; backend failures surface as DataUnavailableError.
    """

    def __init__(self, cfg: Optional[DuckDBStoreConfig] = None) -> None:
        self.cfg = cfg or DuckDBStoreConfig()
        self._con = self._connect(self.cfg)
        self._closed = False
        self._execute_script(_SCHEMA_DDL)

    @staticmethod
    def _connect(cfg: DuckDBStoreConfig) -> duckdb.DuckDBPyConnection:
        db = str(cfg.db_path)
        if db != IN_MEMORY:
            path = Path(db)
            if not path.exists() and not cfg.create:
                raise DataUnavailableError(f"Database not found: {path}")
            path.parent.mkdir(parents=True, exist_ok=True)
        try:
            con = duckdb.connect(database=db)
            con.execute(f"PRAGMA threads={int(cfg.threads)};")
        except duckdb.Error as exc:
            raise DataUnavailableError(f"Cannot open DuckDB at {db}: {exc}") from exc
        return con

    def close(self) -> None:
        if not self._closed:
            self._con.close()
            self._closed = True

    def __enter__(self) -> "DuckDBStore":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # low-level helpers
    # ------------------------------------------------------------------
    def _execute_script(self, statements: Sequence[str]) -> None:
        for sql in statements:
            self._exec(sql)

    def _exec(self, sql: str, params: Sequence[Any] = ()) -> duckdb.DuckDBPyConnection:
        if self._closed:
            raise DataUnavailableError("DuckDBStore is closed")
        try:
            return self._con.execute(sql, list(params))
        except duckdb.Error as exc:
            raise DataUnavailableError(f"DuckDB query failed: {exc}") from exc

    def _fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[tuple]:
        try:
            return self._exec(sql, params).fetchall()
        except duckdb.Error as exc:
            raise DataUnavailableError(f"DuckDB fetch failed: {exc}") from exc

    def _df(self, sql: str, params: Sequence[Any] = ()) -> pd.DataFrame:
        try:
            return self._exec(sql, params).df()
        except duckdb.Error as exc:
            raise DataUnavailableError(f"DuckDB fetch failed: {exc}") from exc

    @staticmethod
    def _row_to_product(row: tuple) -> Product:
        product_id, name, category, price, description, tags, popularity = row
        return Product(
            product_id=product_id,
            name=name or "",
            category=category or "",
            price=float(price or 0.0),
            description=description or "",
            tags=frozenset(json.loads(tags)) if tags else frozenset(),
            popularity_score=float(popularity or 0.0),
        )

    # ------------------------------------------------------------------
    # writes (catalog ingestion / event capture)
    # ------------------------------------------------------------------
    def add_product(self, product: Product) -> None:
        validate_product(product)
        self._exec(
            """
            INSERT INTO products (product_id, name, category, price, description, tags, popularity_score)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (product_id) DO UPDATE SET
                name = excluded.name,
                category = excluded.category,
                price = excluded.price,
                description = excluded.description,
                tags = excluded.tags,
                popularity_score = excluded.popularity_score;
            """,
            (
                product.product_id,
                product.name,
                product.category,
                float(product.price),
                product.description,
                json.dumps(sorted(product.tags)),
                float(product.popularity_score),
            ),
        )

    def add_customer(self, customer_id: str) -> None:
        self._exec(
            "INSERT INTO customers (customer_id) VALUES (?) ON CONFLICT (customer_id) DO NOTHING;",
            (customer_id,),
        )

    def record_interaction(
        self,
        customer_id: str,
        product_id: str,
        interaction_type: InteractionType | str,
        *,
        timestamp: Optional[datetime] = None,
        duration: Optional[int] = None,
    ) -> Interaction:
        event = Interaction(
            customer_id=customer_id,
            product_id=product_id,
            interaction_type=InteractionType(interaction_type),
            timestamp=as_naive_utc(timestamp or utc_now()),
            duration=duration,
        )
        validate_interaction(event)
        self.add_customer(customer_id)
        self._exec(
            """
            INSERT INTO interactions (customer_id, product_id, interaction_type, ts, duration)
            VALUES (?, ?, ?, ?, ?);
            """,
            (event.customer_id, event.product_id, event.interaction_type.value, event.timestamp, event.duration),
        )
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
        purchase = Purchase(
            customer_id=customer_id,
            product_id=product_id,
            quantity=int(quantity),
            amount=float(amount),
            timestamp=as_naive_utc(timestamp or utc_now()),
        )
        validate_purchase(purchase)
        self.add_customer(customer_id)
        self._exec(
            """
            INSERT INTO purchases (customer_id, product_id, quantity, amount, ts)
            VALUES (?, ?, ?, ?, ?);
            """,
            (purchase.customer_id, purchase.product_id, purchase.quantity, purchase.amount, purchase.timestamp),
        )
        return purchase

    # ------------------------------------------------------------------
    # RecordStore
    # ------------------------------------------------------------------
    def list_products(self) -> List[Product]:
        rows = self._fetchall(
            """
            SELECT product_id, name, category, price, description, tags, popularity_score
            FROM products
            ORDER BY seq;
            """
        )
        return [self._row_to_product(r) for r in rows]

    def get_product(self, product_id: str) -> Product:
        rows = self._fetchall(
            """
            SELECT product_id, name, category, price, description, tags, popularity_score
            FROM products
            WHERE product_id = ?;
            """,
            (product_id,),
        )
        if not rows:
            raise NotFoundError(f"Unknown product_id: {product_id}")
        return self._row_to_product(rows[0])

    def list_customer_ids(self) -> List[str]:
        return [r[0] for r in self._fetchall("SELECT customer_id FROM customers ORDER BY seq;")]

    def has_customer(self, customer_id: str) -> bool:
        rows = self._fetchall("SELECT 1 FROM customers WHERE customer_id = ?;", (customer_id,))
        return bool(rows)

    def list_customer_interactions(self, customer_id: str, limit: int) -> List[Interaction]:
        rows = self._fetchall(
            f"""
            SELECT customer_id, product_id, interaction_type, ts, duration
            FROM interactions
            WHERE customer_id = ?
            ORDER BY ts DESC, interaction_id DESC
            LIMIT {max(int(limit), 0)};
            """,
            (customer_id,),
        )
        return [
            Interaction(
                customer_id=r[0],
                product_id=r[1],
                interaction_type=InteractionType(r[2]),
                timestamp=r[3],
                duration=r[4],
            )
            for r in rows
        ]

    def interactions_frame(self) -> pd.DataFrame:
        df = self._df(
            """
            SELECT customer_id, product_id, interaction_type, ts AS "timestamp", duration
            FROM interactions
            ORDER BY interaction_id;
            """
        )
        return df[INTERACTION_COLUMNS]

    def purchases_frame(self) -> pd.DataFrame:
        df = self._df(
            """
            SELECT customer_id, product_id, quantity, amount, ts AS "timestamp"
            FROM purchases
            ORDER BY purchase_id;
            """
        )
        return df[PURCHASE_COLUMNS]

    def aggregate_customer_behavior(self) -> List[CustomerFeatureRow]:
        rows = self._fetchall(_AGGREGATE_SQL)
        return [
            CustomerFeatureRow(
                customer_id=r[0],
                interaction_count=float(r[1]),
                purchase_count=float(r[2]),
                total_spent=float(r[3]),
                active_months=float(r[4]),
            )
            for r in rows
        ]

    def get_segment_label(self, customer_id: str) -> Optional[int]:
        rows = self._fetchall("SELECT segment FROM customers WHERE customer_id = ?;", (customer_id,))
        if not rows or rows[0][0] is None:
            return None
        return int(rows[0][0])

    def list_purchases_by_segment(self, segment_label: int) -> List[Tuple[str, int]]:
        rows = self._fetchall(
            """
            SELECT pr.product_id, COUNT(pu.purchase_id) AS n_purchases
            FROM products pr
            JOIN purchases pu ON pu.product_id = pr.product_id
            JOIN customers c ON c.customer_id = pu.customer_id
            WHERE c.segment = ?
            GROUP BY pr.product_id
            ORDER BY n_purchases DESC, pr.product_id ASC;
            """,
            (int(segment_label),),
        )
        return [(r[0], int(r[1])) for r in rows]

    def write_segment_label(self, customer_id: str, label: int) -> None:
        self._exec("UPDATE customers SET segment = ? WHERE customer_id = ?;", (int(label), customer_id))
