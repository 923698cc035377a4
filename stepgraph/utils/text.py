"""Small text helpers shared by persistence, compilation and collection."""

import re
from datetime import datetime, timezone
from typing import Optional


def slugify(value: str) -> str:
    """Lower-case ``value`` and collapse every non-alphanumeric run to ``-``."""
    return re.sub(r"[^a-z0-9]+", "-", value.lower().strip()).strip("-")


def utc_now_iso(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a ``Z`` suffix."""
    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")
