"""
Logging setup for the pipeline.

Usage:
    from context_pipeline.config.logging import get_logger
    logger = get_logger("context_pipeline.retrieval")
    logger.warning("Entity fetch failed for %r: %s", name, ex)
"""

from __future__ import annotations

import logging
import sys

ROOT_LOGGER = "context_pipeline"

_configured = False


def setup_logging(level: int | str = logging.INFO) -> None:
    """Attach one stderr handler to the ``context_pipeline`` namespace logger."""
    global _configured
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    root = logging.getLogger(ROOT_LOGGER)
    if _configured:
        root.setLevel(level)
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    root.setLevel(level)
    root.addHandler(handler)
    root.propagate = False

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Return a logger under the ``context_pipeline`` namespace.

    Calls ``setup_logging()`` on first use so the namespace handler exists.
    """
    setup_logging()
    return logging.getLogger(name)
