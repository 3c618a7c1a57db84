"""Coercion of stored `createdAt` values into aware datetimes."""

from datetime import datetime, timezone
from typing import Any


def parse_store_datetime(v: Any) -> Any:
    """Accept the shapes a `createdAt` field takes across store backends.

    - `datetime`: naive values are read back by pymongo without tz_aware
      and are taken as UTC
    - `{'$date': ...}`: Extended JSON, as exported by mongoexport
    - int/float: epoch milliseconds written by other signaling clients

    Anything else is passed through for pydantic to validate.
    """
    if isinstance(v, datetime):
        return v if v.tzinfo is not None else v.replace(tzinfo=timezone.utc)
    if isinstance(v, dict) and "$date" in v:
        v = v["$date"]
        if isinstance(v, str):
            return datetime.fromisoformat(v.replace("Z", "+00:00"))
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return datetime.fromtimestamp(v / 1000, tz=timezone.utc)
    return v
