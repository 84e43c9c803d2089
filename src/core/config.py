"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from core.models import Severity

PRIORITY_LEVELS = ("high", "medium", "low")


@dataclass(frozen=True)
class FilterPolicy:
    """Inclusion/exclusion policy. Empty fields mean "not configured"."""

    max_age_days: Optional[float] = None
    required_keywords: tuple[str, ...] = ()
    blocked_keywords: tuple[str, ...] = ()
    priority_keywords: tuple[str, ...] = ()
    minimum_severity: Optional[Severity] = None
    muted_types: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "FilterPolicy":
        raw = raw or {}
        max_age = raw.get("max_age_days")
        return cls(
            max_age_days=float(max_age) if max_age not in (None, "") else None,
            required_keywords=_lowered(raw.get("required_keywords")),
            blocked_keywords=_lowered(raw.get("blocked_keywords")),
            priority_keywords=_lowered(raw.get("priority_keywords")),
            minimum_severity=Severity.parse(raw.get("minimum_severity")),
            muted_types=_lowered(raw.get("muted_types")),
        )

    def merged(self, override: "FilterPolicy") -> "FilterPolicy":
        """Return this policy with every field the override sets replaced."""

        return FilterPolicy(
            max_age_days=override.max_age_days if override.max_age_days is not None else self.max_age_days,
            required_keywords=override.required_keywords or self.required_keywords,
            blocked_keywords=override.blocked_keywords or self.blocked_keywords,
            priority_keywords=override.priority_keywords or self.priority_keywords,
            minimum_severity=override.minimum_severity or self.minimum_severity,
            muted_types=override.muted_types or self.muted_types,
        )


def _lowered(values: Any) -> tuple[str, ...]:
    if not values:
        return ()
    return tuple(str(value).lower() for value in values if str(value).strip())


@dataclass(frozen=True)
class SourceConfig:
    """One configured feed source."""

    name: str
    url: str
    parser: str = "rss"
    enabled: bool = True
    priority: str = "medium"
    category: Optional[str] = None
    region: Optional[str] = None
    description: Optional[str] = None
    filters: FilterPolicy = field(default_factory=FilterPolicy)


@dataclass(frozen=True)
class StateConfig:
    """Where state lives and how hard we try to lock it."""

    state_file: str
    backup_dir: str
    max_backups: int = 10
    lock_timeout_seconds: float = 30.0
    lock_retry_delay_seconds: float = 0.1
    lock_max_retries: int = 50
    seen_limit: int = 1000


@dataclass(frozen=True)
class BackfillConfig:
    """Backfill guard settings. Disabled backfill is the safe default."""

    allow_backfill: bool = False
    max_backfill_days: float = 7.0


@dataclass(frozen=True)
class DeliveryConfig:
    """Retry, timeout and pacing settings for the delivery pipeline."""

    max_attempts: int = 5
    attempt_timeout_seconds: float = 10.0
    base_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 30.0
    per_run_cap: int = 30
    default_delay_seconds: float = 1.0
    priority_delays: Mapping[str, float] = field(
        default_factory=lambda: {"high": 3.0, "medium": 5.0, "low": 8.0}
    )

    def delay_for(self, priority: Optional[str]) -> float:
        if priority and priority in self.priority_delays:
            return float(self.priority_delays[priority])
        return self.default_delay_seconds


@dataclass(frozen=True)
class NotificationConfig:
    """Notification formatting settings consumed by notifier adapters."""

    snippet_chars: int = 400
