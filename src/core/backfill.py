"""Backfill guard (core domain).

Keeps a cold start or a long outage from flooding the sink with history:
unless backfill is explicitly allowed, never-seen items published before
the previous run, or older than the backfill window, are dropped.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from core.config import BackfillConfig
from core.models import RawItem


class BackfillGuard:
    """Decide whether a never-seen item is new enough to process."""

    def __init__(self, config: BackfillConfig, last_run: Optional[datetime], now: datetime) -> None:
        self._config = config
        self._last_run = last_run
        self._now = now

    @property
    def enabled(self) -> bool:
        return not self._config.allow_backfill

    def allows(self, item: RawItem) -> bool:
        if not self.enabled:
            return True

        # Items without a date are treated as published right now.
        published = item.published_at or self._now
        if self._last_run is not None and published < self._last_run:
            return False
        if self._now - published > timedelta(days=self._config.max_backfill_days):
            return False
        return True
