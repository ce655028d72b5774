# utils.py
from __future__ import annotations

import logging
from pathlib import Path

import yaml

_LOG_FORMAT = "[%(levelname)s] %(name)s - %(message)s"


def setup_logger(name: str = "fmd_density", level: int = logging.INFO) -> logging.Logger:
    """Return a named logger with console handler. Idempotent."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def load_yaml(path) -> dict:
    """Read a YAML mapping; an empty file gives {}."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("r") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a YAML mapping at top level")
    return data
