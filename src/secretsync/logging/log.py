# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/logging/log.py

from __future__ import annotations

import logging
from pathlib import Path
from datetime import datetime, timezone
import uuid

LOGGER_NAME = "secretsync"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def parse_level(level: str) -> int:
    try:
        return _LEVELS[level.strip().lower()]
    except KeyError:
        raise ValueError(
            f"unknown log level {level!r}, expected one of: {', '.join(sorted(_LEVELS))}"
        ) from None


def init_logging(
    *,
    log_dir: Path | None = None,
    name: str = LOGGER_NAME,
    level: str = "info",
    verbose: bool = False,
) -> tuple[logging.Logger, str, Path | None]:
    """
    Initializes:
      - console handler at ``level`` (DEBUG when verbose)
      - optional full-trace log file under ``log_dir``
      - returns run_id so observers can reuse it
    """
    run_id = str(uuid.uuid4())
    console_level = logging.DEBUG if verbose else parse_level(level)

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    ch = logging.StreamHandler()
    ch.setLevel(console_level)
    ch.setFormatter(formatter)
    logger.addHandler(ch)

    log_path = None
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        log_path = log_dir / f"{name}-{ts}-{run_id}.log"

        # File = FULL TRACE
        fh = logging.FileHandler(log_path)
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(formatter)
        logger.addHandler(fh)

    logger.info("=== certcontroller starting ===")
    logger.info(f"run_id={run_id}")
    if log_path:
        logger.info(f"log_file={log_path}")

    return logger, run_id, log_path
