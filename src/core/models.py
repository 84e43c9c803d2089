"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any feed-parser or transport-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

STATE_VERSION = "2.0"

SEVERITY_LEVELS = ("info", "low", "medium", "high", "critical")


class Severity(str, Enum):
    """Classifier severity, ordered from least to most severe."""

    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return SEVERITY_LEVELS.index(self.value)

    def boosted(self) -> "Severity":
        """Return the next level up, saturating at critical."""

        index = min(self.rank + 1, len(SEVERITY_LEVELS) - 1)
        return Severity(SEVERITY_LEVELS[index])

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Severity"]:
        if not value:
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class RawItem:
    """One item yielded by a source adapter, before any processing."""

    title: str
    link: Optional[str]
    guid: Optional[str]
    description: str
    published_at: Optional[datetime]
    source_name: str


@dataclass(frozen=True)
class Indicators:
    """Indicators of compromise extracted from an item's text."""

    ips: tuple[str, ...] = ()
    domains: tuple[str, ...] = ()
    cves: tuple[str, ...] = ()
    hashes: tuple[str, ...] = ()
    urls: tuple[str, ...] = ()


@dataclass(frozen=True)
class Classification:
    """Deterministic classifier output for one item."""

    severity: Severity
    threat_type: str
    indicators: Indicators
    confidence: int


@dataclass(frozen=True)
class ClassifiedEntry:
    """An item accepted by the filter engine and ready for delivery.

    ``classification`` is None only when the filter failed open.
    """

    item: RawItem
    entry_id: str
    classification: Optional[Classification]
    filtered_at: datetime
    priority: str = "medium"
    region: Optional[str] = None
    category: Optional[str] = None


@dataclass(frozen=True)
class SeenRecord:
    """Persisted marker for an entry that has already been accepted."""

    timestamp: datetime
    source: str
    title: str


@dataclass
class RunState:
    """Everything persisted between runs. Owned by the lock holder."""

    seen: dict[str, SeenRecord] = field(default_factory=dict)
    last_run: Optional[datetime] = None
    feed_stats: dict[str, Any] = field(default_factory=dict)
    filter_stats: dict[str, Any] = field(default_factory=dict)
    version: str = STATE_VERSION
    created: Optional[datetime] = None


@dataclass(frozen=True)
class FilterDecision:
    """Result of running one item through the filter engine."""

    accepted: bool
    reason: str
    entry: Optional[ClassifiedEntry] = None
    classification: Optional[Classification] = None


@dataclass
class RunSummary:
    """Counters reported at the end of every run, even a partial one."""

    processed: int = 0
    skipped_seen: int = 0
    backfill_rejected: int = 0
    filtered: int = 0
    accepted: int = 0
    capped: int = 0
    delivered: int = 0
    failed: int = 0
    source_errors: int = 0
    dry_run: bool = False
