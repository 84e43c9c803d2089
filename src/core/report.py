"""Read-only state report.

Derived from RunState for operators; it is never read back by a run.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from core.models import RunState


def build_state_report(state: RunState, generated_at: datetime) -> dict:
    """Summarize seen entries per source with their latest timestamp."""

    by_source: dict[str, dict] = {}
    for record in state.seen.values():
        row = by_source.setdefault(record.source or "unknown", {"count": 0, "last": None})
        row["count"] += 1
        last: Optional[datetime] = row["last"]
        if last is None or record.timestamp > last:
            row["last"] = record.timestamp

    feeds = [
        {
            "source": source,
            "seenCount": row["count"],
            "lastSeenUtc": row["last"].isoformat() if row["last"] else None,
        }
        for source, row in sorted(by_source.items())
    ]
    return {
        "generatedAt": generated_at.isoformat(),
        "totalSeen": len(state.seen),
        "lastRun": state.last_run.isoformat() if state.last_run else None,
        "feeds": feeds,
    }
