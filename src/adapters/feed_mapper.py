"""Feed-to-core item mapping adapter.

This keeps feedparser-specific details out of the core pipeline.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timezone
from typing import Any, Optional

from core.models import RawItem


def _entry_get(entry: Any, key: str) -> Any:
    getter = getattr(entry, "get", None)
    if callable(getter):
        return getter(key)
    return getattr(entry, key, None)


def _published_from_entry(entry: Any) -> Optional[datetime]:
    for key in ("published_parsed", "updated_parsed"):
        parsed = _entry_get(entry, key)
        if parsed:
            # feedparser normalizes these struct_time values to UTC.
            return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)
    return None


def _description_from_entry(entry: Any) -> str:
    for key in ("summary", "description"):
        value = _entry_get(entry, key)
        if value:
            return str(value)
    content = _entry_get(entry, "content")
    if isinstance(content, list) and content:
        first = content[0]
        value = first.get("value") if hasattr(first, "get") else None
        return str(value or "")
    return ""


def build_raw_item(entry: Any, source_name: str) -> RawItem:
    """Build a core RawItem from one feedparser entry."""

    link = _entry_get(entry, "link")
    guid = _entry_get(entry, "id")
    title = _entry_get(entry, "title")
    return RawItem(
        title=str(title).strip() if title else "No Title",
        link=str(link).strip() if link else None,
        guid=str(guid).strip() if guid else None,
        description=_description_from_entry(entry),
        published_at=_published_from_entry(entry),
        source_name=source_name,
    )
