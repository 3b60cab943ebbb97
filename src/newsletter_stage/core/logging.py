"""Logging bootstrap for processes that are not started by uvicorn."""

from __future__ import annotations

import logging
import sys
from functools import lru_cache

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@lru_cache(maxsize=1)
def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        format=LOG_FORMAT,
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )
    # One INFO line per request is too noisy for the delivery worker.
    logging.getLogger("httpx").setLevel(logging.WARNING)
