# tests/conftest.py
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import List

import pytest

from shoplens.data.duckdb_store import DuckDBStore, DuckDBStoreConfig
from shoplens.data.schemas import InteractionType, Product
from shoplens.data.store import InMemoryStore


@pytest.fixture()
def sandbox(tmp_path: Path) -> Path:
    """Per-test filesystem sandbox."""
    return tmp_path


@pytest.fixture()
def project_root() -> Path:
    """Repo root (where pyproject.toml lives)."""
    # tests/ -> repo root
    return Path(__file__).resolve().parents[1]


@pytest.fixture()
def chdir_sandbox(monkeypatch, sandbox: Path):
    """
    Run code as-if repo root is sandbox so all relative paths
    like data/... outputs/... reports/... resolve inside sandbox.
    """
    monkeypatch.chdir(sandbox)
    return sandbox


@pytest.fixture()
def restore_root_logging():
    """configure_logging() replaces root handlers; put pytest's back afterwards."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


def make_catalog() -> List[Product]:
    return [
        Product(
            product_id="P1001",
            name="Wireless Headphones",
            category="Electronics",
            price=99.99,
            description="Premium wireless headphones with noise cancellation",
            tags=frozenset({"audio", "wireless", "bluetooth"}),
            popularity_score=8.5,
        ),
        Product(
            product_id="P1002",
            name="Smartphone",
            category="Electronics",
            price=699.99,
            description="Latest smartphone with high-resolution camera",
            tags=frozenset({"mobile", "android", "camera"}),
            popularity_score=9.2,
        ),
        Product(
            product_id="P1003",
            name="Running Shoes",
            category="Sports",
            price=79.99,
            description="Lightweight running shoes for marathon training",
            tags=frozenset({"fitness", "running", "shoes"}),
            popularity_score=7.8,
        ),
        Product(
            product_id="P1004",
            name="Bluetooth Speaker",
            category="Electronics",
            price=49.99,
            description="Portable wireless bluetooth speaker with deep bass",
            tags=frozenset({"audio", "wireless", "bluetooth"}),
            popularity_score=6.4,
        ),
        Product(
            product_id="P1005",
            name="Yoga Mat",
            category="Sports",
            price=25.00,
            description="Non-slip yoga mat for home fitness",
            tags=frozenset({"fitness", "yoga"}),
            popularity_score=5.1,
        ),
    ]


def populate(store) -> None:
    """
    CUST001: two interactions with P1001 and two purchases in different months
    CUST002: browses P1002 and P1003, buys P1003 once
    CUST003: registered, no events at all
    """
    for p in make_catalog():
        store.add_product(p)

    store.add_customer("CUST001")
    store.add_customer("CUST002")
    store.add_customer("CUST003")

    store.record_interaction("CUST001", "P1001", InteractionType.VIEW, timestamp=datetime(2024, 1, 5, 10, 0), duration=120)
    store.record_interaction("CUST001", "P1001", InteractionType.CART_ADD, timestamp=datetime(2024, 1, 5, 10, 5))
    store.record_purchase("CUST001", "P1001", 1, 99.99, timestamp=datetime(2024, 1, 5, 10, 10))
    store.record_purchase("CUST001", "P1004", 2, 99.98, timestamp=datetime(2024, 2, 11, 18, 30))

    store.record_interaction("CUST002", "P1002", InteractionType.VIEW, timestamp=datetime(2024, 3, 1, 9, 0), duration=180)
    store.record_interaction("CUST002", "P1003", InteractionType.WISHLIST, timestamp=datetime(2024, 3, 2, 9, 0))
    store.record_purchase("CUST002", "P1003", 1, 79.99, timestamp=datetime(2024, 3, 3, 12, 0))


@pytest.fixture()
def catalog() -> List[Product]:
    return make_catalog()


@pytest.fixture()
def memory_store() -> InMemoryStore:
    store = InMemoryStore()
    populate(store)
    return store


@pytest.fixture()
def duckdb_store(sandbox: Path):
    store = DuckDBStore(DuckDBStoreConfig(db_path=sandbox / "shoplens.duckdb", threads=1))
    populate(store)
    yield store
    store.close()
