# src/shoplens/pipelines/run_segmentation.py
from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional, Sequence

import pandas as pd

from shoplens.common.io import write_json, write_parquet
from shoplens.common.logging import configure_logging, log_step
from shoplens.data.duckdb_store import DuckDBStore, DuckDBStoreConfig
from shoplens.segmentation.segmenter import SegmentationConfig, SegmentationRun, Segmenter


@dataclass(frozen=True)
class RunSegmentationConfig:
    store: DuckDBStoreConfig = DuckDBStoreConfig(create=False)
    segmentation: SegmentationConfig = SegmentationConfig()
    out_path: Path = Path("outputs/segments/customer_segments.parquet")


def run(cfg: RunSegmentationConfig) -> SegmentationRun:
    log_step(f"Opening record store: {cfg.store.db_path}")
    with DuckDBStore(cfg.store) as store:
        log_step(f"Segmenting customers (k={cfg.segmentation.cluster.n_clusters})")
        seg = Segmenter(store, cfg.segmentation).run()

    out = pd.DataFrame(
        {"customer_id": list(seg.labels.keys()), "segment": list(seg.labels.values())}
    )
    write_parquet(cfg.out_path, out)

    report = seg.summary()
    report["source_db"] = str(cfg.store.db_path)
    report["out_path"] = str(cfg.out_path)
    write_json(cfg.segmentation.report_path, report)

    log_step(f"✅ Wrote: {cfg.out_path}")
    log_step(f"✅ Report: {cfg.segmentation.report_path}")
    return seg


def parse_args(argv: Optional[Sequence[str]] = None) -> RunSegmentationConfig:
    base = RunSegmentationConfig()
    ap = argparse.ArgumentParser(description="Cluster customers into behavioural segments.")
    ap.add_argument("--db", type=Path, default=base.store.db_path)
    ap.add_argument("--k", type=int, default=base.segmentation.cluster.n_clusters)
    ap.add_argument("--max-iter", type=int, default=base.segmentation.cluster.max_iter)
    ap.add_argument("--seed", type=int, default=base.segmentation.cluster.random_state)
    ap.add_argument("--out", type=Path, default=base.out_path)
    ap.add_argument("--report", type=Path, default=base.segmentation.report_path)
    args = ap.parse_args(argv)

    cluster = replace(base.segmentation.cluster, n_clusters=args.k, max_iter=args.max_iter, random_state=args.seed)
    return RunSegmentationConfig(
        store=replace(base.store, db_path=args.db),
        segmentation=replace(base.segmentation, cluster=cluster, report_path=args.report),
        out_path=args.out,
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    configure_logging(logging.INFO)
    run(parse_args(argv))


if __name__ == "__main__":
    main()
