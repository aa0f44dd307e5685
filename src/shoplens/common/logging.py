# src/shoplens/common/logging.py
from __future__ import annotations

import logging
import sys
from datetime import datetime

import colorlog


def configure_logging(level: int = logging.INFO) -> None:
    handler = colorlog.StreamHandler(sys.stdout)
    handler.setFormatter(
        colorlog.ColoredFormatter(
            "%(log_color)s%(asctime)s %(levelname)-8s [%(name)s]%(reset)s %(message)s",
            datefmt="%H:%M:%S",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "bold_red",
            },
        )
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # duckdb / numpy do not log, but sklearn can be chatty on DEBUG
    logging.getLogger("sklearn").setLevel(logging.WARNING)


def log_step(msg: str) -> None:
    print(f"[{datetime.now().strftime('%H:%M:%S')}] {msg}", flush=True)
