"""Column types for the SQLite cache.

Timestamps are stored as fixed-width ISO-8601 UTC strings so that lexical
ordering in SQLite equals chronological ordering. String maps (metadata,
tags) are stored as JSON documents with sorted keys.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import orjson
from sqlalchemy import String, Text
from sqlalchemy.engine import Dialect
from sqlalchemy.types import TypeDecorator


def format_timestamp(value: datetime) -> str:
    """Format a datetime as ``YYYY-MM-DDTHH:MM:SS.ffffffZ`` in UTC.

    Naive datetimes are taken to be UTC already.
    """
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value.isoformat(timespec="microseconds") + "Z"


def parse_timestamp(value: str) -> datetime:
    """Parse a timestamp written by format_timestamp into an aware datetime."""
    return datetime.fromisoformat(value.removesuffix("Z")).replace(tzinfo=UTC)


class IsoTimestamp(TypeDecorator[datetime]):
    """Aware datetime persisted as an ISO-8601 UTC string."""

    impl = String(32)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> str | None:
        if value is None:
            return None
        return format_timestamp(value)

    def process_result_value(self, value: str | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        return parse_timestamp(value)


class JsonStringMap(TypeDecorator[dict[str, str]]):
    """String-to-string map persisted as a JSON document."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: dict[str, str] | None, dialect: Dialect) -> str:
        return orjson.dumps(value or {}, option=orjson.OPT_SORT_KEYS).decode("utf-8")

    def process_result_value(self, value: str | None, dialect: Dialect) -> dict[str, str]:
        if not value:
            return {}
        loaded: Any = orjson.loads(value)
        return {str(k): str(v) for k, v in loaded.items()}
