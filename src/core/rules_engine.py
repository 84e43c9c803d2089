"""Filter policy evaluation (core domain).

The pipeline short-circuits in a fixed order: age, relevance, muted type,
minimum severity. Classification happens between relevance and the type
checks so irrelevant items never pay for indicator extraction.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Sequence

from core.classifier import classify
from core.config import FilterPolicy, SourceConfig
from core.errors import ClassificationError
from core.models import ClassifiedEntry, FilterDecision, RawItem, Severity

LOGGER = logging.getLogger(__name__)

# Used when a source does not define its own required keywords.
BASELINE_RELEVANT_KEYWORDS = (
    "security", "vulnerability", "threat", "malware", "exploit", "patch", "update",
    "advisory", "alert", "breach", "attack", "cve-", "cybersecurity", "cyber", "risk",
    "incident", "ransomware", "phishing", "apt",
)

REASON_ACCEPTED = "accepted"
REASON_FAIL_OPEN = "fail_open"
REASON_TOO_OLD = "too_old"
REASON_IRRELEVANT = "irrelevant"
REASON_BLOCKED = "blocked"
REASON_MUTED = "muted_type"
REASON_BELOW_SEVERITY = "below_min_severity"


def _matches_any(lowered: str, keywords: Iterable[str]) -> bool:
    return any(keyword in lowered for keyword in keywords)


class FilterEngine:
    """Applies global policy merged with per-source overrides."""

    def __init__(
        self,
        global_policy: FilterPolicy,
        baseline_keywords: Sequence[str] = BASELINE_RELEVANT_KEYWORDS,
        classifier: Callable = classify,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._global = global_policy
        self._baseline = tuple(k.lower() for k in baseline_keywords)
        self._classify = classifier
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def policy_for(self, source: Optional[SourceConfig]) -> FilterPolicy:
        if source is None:
            return self._global
        return self._global.merged(source.filters)

    def is_relevant(self, lowered: str, policy: FilterPolicy) -> bool:
        if policy.required_keywords and _matches_any(lowered, policy.required_keywords):
            return True
        return _matches_any(lowered, self._baseline)

    def evaluate(
        self,
        item: RawItem,
        entry_id: str,
        source: Optional[SourceConfig] = None,
    ) -> FilterDecision:
        """Run one item through the filter pipeline."""

        policy = self.policy_for(source)
        now = self._clock()
        lowered = f"{item.title or ''} {item.description or ''}".lower()

        if policy.max_age_days is not None and item.published_at is not None:
            age_days = (now - item.published_at).total_seconds() / 86400
            if age_days > policy.max_age_days:
                return FilterDecision(accepted=False, reason=REASON_TOO_OLD)

        # Blocked keywords only ever reject items that are already irrelevant;
        # a relevant item that also mentions a blocked keyword is kept.
        if not self.is_relevant(lowered, policy):
            reason = REASON_BLOCKED if _matches_any(lowered, policy.blocked_keywords) else REASON_IRRELEVANT
            LOGGER.debug("Filtered (%s): %s :: %s", reason, item.source_name, item.title)
            return FilterDecision(accepted=False, reason=reason)

        try:
            classification = self._classify(item.title, item.description, policy.priority_keywords)
        except Exception as exc:
            error = ClassificationError(f"{item.source_name} :: {item.title}: {exc}")
            LOGGER.warning("Classification failed, passing item through: %s", error)
            return FilterDecision(
                accepted=True,
                reason=REASON_FAIL_OPEN,
                entry=self._entry(item, entry_id, None, source, now),
            )

        if classification.threat_type in policy.muted_types:
            return FilterDecision(False, REASON_MUTED, classification=classification)

        minimum = policy.minimum_severity
        if not severity_at_least(classification.severity, minimum):
            LOGGER.debug(
                "Filtered (below min severity %s): %s :: %s",
                minimum.value,
                item.source_name,
                item.title,
            )
            return FilterDecision(False, REASON_BELOW_SEVERITY, classification=classification)

        return FilterDecision(
            accepted=True,
            reason=REASON_ACCEPTED,
            entry=self._entry(item, entry_id, classification, source, now),
            classification=classification,
        )

    @staticmethod
    def _entry(item, entry_id, classification, source, now) -> ClassifiedEntry:
        return ClassifiedEntry(
            item=item,
            entry_id=entry_id,
            classification=classification,
            filtered_at=now,
            priority=source.priority if source else "medium",
            region=source.region if source else None,
            category=source.category if source else None,
        )


def build_filter_stats(
    total: int,
    decisions: Iterable[FilterDecision],
    now: datetime,
) -> dict:
    """Summarize a run's filter decisions for persistence in RunState."""

    decisions = list(decisions)
    passed = [d for d in decisions if d.accepted]
    filtered = total - len(passed)
    threat_types: Counter = Counter()
    severities: Counter = Counter()
    for decision in passed:
        classification = decision.entry.classification if decision.entry else None
        threat_types[classification.threat_type if classification else "unknown"] += 1
        severities[classification.severity.value if classification else "unknown"] += 1
    rejections = Counter(d.reason for d in decisions if not d.accepted)

    return {
        "total": total,
        "passed": len(passed),
        "filtered": filtered,
        "filterRate": round(filtered / total * 100, 1) if total else 0.0,
        "threatTypes": dict(threat_types),
        "severities": dict(severities),
        "rejections": dict(rejections),
        "timestamp": now.isoformat(),
    }


def severity_at_least(severity: Severity, minimum: Optional[Severity]) -> bool:
    return minimum is None or severity.rank >= minimum.rank
