"""Entry identity and seen-map helpers (core domain)."""

from __future__ import annotations

import hashlib
import re
from datetime import datetime
from typing import Mapping, Optional
from urllib.parse import urlsplit

from core.models import RawItem, SeenRecord


def _collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def normalize_link(link: str) -> Optional[str]:
    """Reduce a link to lowercased scheme, host and path.

    Query strings and fragments are dropped (tracking params live there) and
    a trailing slash is removed. Returns None when nothing usable is left.
    """

    candidate = link.strip()
    if not candidate:
        return None

    try:
        parts = urlsplit(candidate)
    except ValueError:
        return candidate.lower()

    if not parts.scheme or not parts.netloc:
        # Relative or malformed link: still strip the obvious variants.
        bare = candidate.split("#", 1)[0].split("?", 1)[0].rstrip("/")
        return bare.lower() or None

    path = parts.path.rstrip("/")
    return f"{parts.scheme}://{parts.netloc}{path}".lower()


def content_fingerprint(title: str, published_at: Optional[datetime]) -> str:
    """Return a stable hash of ``title|publishedAt``."""

    published = published_at.isoformat() if published_at else ""
    payload = f"{_collapse_whitespace(title or '')}|{published}"
    return "h:" + hashlib.sha256(payload.encode("utf-8")).hexdigest()


def compute_entry_id(item: RawItem) -> str:
    """Return the stable identity of a raw item.

    Priority: explicit guid, then normalized link, then content hash.
    """

    if item.guid and item.guid.strip():
        return item.guid.strip()

    if item.link:
        normalized = normalize_link(item.link)
        if normalized:
            return normalized

    return content_fingerprint(item.title, item.published_at)


def prune_seen(seen: Mapping[str, SeenRecord], limit: int) -> dict[str, SeenRecord]:
    """Keep only the ``limit`` most recent seen records."""

    if len(seen) <= limit:
        return dict(seen)
    newest_first = sorted(seen.items(), key=lambda pair: pair[1].timestamp, reverse=True)
    return dict(newest_first[:limit])
