# src/shoplens/pipelines/recommend.py
from __future__ import annotations

import argparse
import logging
from collections import Counter
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional, Sequence, Tuple

import pandas as pd

from shoplens.common.io import write_json, write_parquet
from shoplens.common.logging import configure_logging, log_step
from shoplens.common.time import utc_now
from shoplens.data.duckdb_store import DuckDBStore, DuckDBStoreConfig
from shoplens.pipelines.engine import EngineConfig, RecommendationEngine


@dataclass(frozen=True)
class RecommendConfig:
    store: DuckDBStoreConfig = DuckDBStoreConfig(create=False)
    engine: EngineConfig = EngineConfig()

    # empty -> every customer in the store
    customers: Tuple[str, ...] = ()
    top_n: int = 5
    # re-run segmentation first instead of trusting the stored labels
    segment_first: bool = False

    out_topk_path: Path = Path("outputs/recommendations/topk.parquet")
    out_report_path: Path = Path("reports/recommendations.json")


def run(cfg: RecommendConfig) -> pd.DataFrame:
    log_step(f"Opening record store: {cfg.store.db_path}")
    with DuckDBStore(cfg.store) as store:
        engine = RecommendationEngine(store, cfg.engine)

        n_products = engine.refresh_index()
        log_step(f"Similarity index ready: {n_products:,} products")

        if cfg.segment_first:
            seg = engine.run_segmentation()
            log_step(f"Segmentation done: {len(seg.labels):,} customers, converged={seg.result.converged}")

        customers = list(cfg.customers) or store.list_customer_ids()
        log_step(f"Recommending top-{cfg.top_n} for {len(customers):,} customers")

        rows = []
        served: Counter = Counter()
        for customer_id in customers:
            res = engine.recommend(customer_id, cfg.top_n)
            served[res.strategy] += 1
            for rank, product_id in enumerate(res.product_ids, start=1):
                rows.append((customer_id, product_id, rank, res.strategy))

    topk = pd.DataFrame(rows, columns=["customer_id", "product_id", "rank", "strategy"])
    write_parquet(cfg.out_topk_path, topk)
    write_json(
        cfg.out_report_path,
        {
            "source_db": str(cfg.store.db_path),
            "n_customers": len(customers),
            "top_n": cfg.top_n,
            "segment_first": cfg.segment_first,
            "strategy_counts": dict(served),
            "timestamp": utc_now().isoformat(timespec="seconds"),
        },
    )

    log_step(f"✅ Wrote: {cfg.out_topk_path}")
    log_step(f"✅ Report: {cfg.out_report_path}")
    return topk


def parse_args(argv: Optional[Sequence[str]] = None) -> RecommendConfig:
    base = RecommendConfig()
    ap = argparse.ArgumentParser(description="Produce top-N product recommendations per customer.")
    ap.add_argument("--db", type=Path, default=base.store.db_path)
    ap.add_argument("--customer", action="append", default=[], help="repeatable; default: all customers")
    ap.add_argument("--top-n", type=int, default=base.top_n)
    ap.add_argument("--segment-first", action="store_true")
    ap.add_argument("--out", type=Path, default=base.out_topk_path)
    ap.add_argument("--report", type=Path, default=base.out_report_path)
    args = ap.parse_args(argv)

    return replace(
        base,
        store=replace(base.store, db_path=args.db),
        customers=tuple(args.customer),
        top_n=args.top_n,
        segment_first=args.segment_first,
        out_topk_path=args.out,
        out_report_path=args.report,
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    configure_logging(logging.INFO)
    run(parse_args(argv))


if __name__ == "__main__":
    main()
