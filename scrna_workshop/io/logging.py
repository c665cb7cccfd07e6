"""Logging utilities for scrna-workshop.

Provides timestamped file logging and structured run records (JSON, YAML).
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Union

import yaml

PathLike = Union[str, Path]


def get_timestamped_log_path(log_path: PathLike) -> Path:
    """Insert a timestamp before the suffix: run.log -> run_20260101_120000.log"""
    log_path = Path(log_path)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return log_path.with_name(f"{log_path.stem}_{timestamp}{log_path.suffix or '.log'}")


def _append(log_path: PathLike, text: str) -> None:
    path = Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(text)
        handle.write("\n")


def log_json(log_path: PathLike, record: dict[str, Any]) -> None:
    """Append ``record`` to log_path as one JSON line."""
    _append(log_path, json.dumps(record, default=str))


def log_yaml(
    log_path: PathLike,
    record: dict[str, Any],
    *,
    logger: logging.Logger | None = None,
) -> None:
    """Append ``record`` as a YAML document terminated by ``---``.

    Parameters
    ----------
    log_path : PathLike
        Path to log file.
    record : dict
        Dictionary to serialize as YAML.
    logger : logging.Logger, optional
        If provided, log to this logger instead of file.
    """
    message = yaml.safe_dump(record, sort_keys=False).rstrip("\n") + "\n---"
    if logger is not None:
        logger.info("%s", message)
    else:
        _append(log_path, message)
