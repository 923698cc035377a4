"""Shared helpers: logging, text and the worker pool."""

from stepgraph.utils.concurrent import default_concurrency, run_concurrent
from stepgraph.utils.logging import configure_logging, log_event
from stepgraph.utils.text import slugify, utc_now_iso

__all__ = [
    "configure_logging",
    "default_concurrency",
    "log_event",
    "run_concurrent",
    "slugify",
    "utc_now_iso",
]
