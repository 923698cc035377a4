"""
Logging helpers.

Modules log through ``logging.getLogger(__name__)``; the CLI installs a
rich handler once via :func:`configure_logging`.
"""

import json
import logging
from typing import Any

logger = logging.getLogger("stepgraph.events")


def configure_logging(verbose: bool = False) -> None:
    """Route stepgraph logs to the console through rich."""
    from rich.logging import RichHandler

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


def log_event(event: str, message: str, level: int = logging.INFO, **data: Any) -> None:
    """Emit a structured pipeline milestone (event name plus JSON payload)."""
    payload = json.dumps(data, sort_keys=True, default=str) if data else ""
    logger.log(
        level,
        f"[{event}] {message} {payload}".rstrip(),
        extra={"event": event, "event_data": data},
    )
