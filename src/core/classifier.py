"""Rule-based threat classification (core domain).

Every lookup is a case-insensitive substring match against ordered keyword
tables, so the same text always produces the same classification.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Iterable, List, Sequence

from core.models import Classification, Indicators, Severity

# Most specific first; the first table with a hit wins.
SEVERITY_KEYWORDS: tuple[tuple[Severity, tuple[str, ...]], ...] = (
    (Severity.CRITICAL, ("critical", "emergency", "zero-day", "rce", "remote code execution")),
    (Severity.HIGH, ("high", "severe", "exploit", "active attack", "widespread")),
    (Severity.MEDIUM, ("medium", "moderate", "vulnerability", "patch available")),
    (Severity.LOW, ("low", "minor", "informational")),
)

THREAT_TYPE_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("vulnerability", ("vulnerability", "cve-", "security update", "patch", "exploit")),
    ("malware", ("malware", "trojan", "ransomware", "virus", "backdoor")),
    ("apt", ("apt", "advanced persistent", "nation-state", "targeted attack")),
    ("data_breach", ("data breach", "data leak", "breach", "stolen data")),
    ("phishing", ("phishing", "spear phishing", "email attack", "social engineering")),
    ("ddos", ("ddos", "denial of service", "botnet")),
    ("insider_threat", ("insider threat", "rogue employee", "internal threat")),
    ("supply_chain", ("supply chain", "third party", "vendor compromise")),
)

GENERAL_THREAT_TYPE = "general"

AUTHORITATIVE_KEYWORDS = ("cve", "nist", "mitre", "cisa", "microsoft", "advisory")
TECHNICAL_KEYWORDS = ("exploit", "proof of concept", "technical details", "patch")

# Documentation placeholder domain, never a real indicator.
PLACEHOLDER_DOMAIN = "example.com"

_IPV4 = re.compile(r"\b(?:[0-9]{1,3}\.){3}[0-9]{1,3}\b")
_DOMAIN = re.compile(r"\b[a-zA-Z0-9][a-zA-Z0-9-]{1,61}[a-zA-Z0-9]\.[a-zA-Z]{2,}\b")
_CVE = re.compile(r"CVE-\d{4}-\d{4,}", re.IGNORECASE)
_HASH = re.compile(r"\b[a-fA-F0-9]{32,64}\b")
_URL = re.compile(r"https?://[^\s<>\"]+")


def _contains_any(text: str, keywords: Iterable[str]) -> bool:
    return any(keyword in text for keyword in keywords)


def _unique(values: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(values))


def combined_text(title: str, description: str) -> str:
    return f"{title or ''} {description or ''}"


def classify_severity(lowered: str) -> Severity:
    for severity, keywords in SEVERITY_KEYWORDS:
        if _contains_any(lowered, keywords):
            return severity
    return Severity.INFO


def classify_threat_type(lowered: str) -> str:
    for threat_type, keywords in THREAT_TYPE_KEYWORDS:
        if _contains_any(lowered, keywords):
            return threat_type
    return GENERAL_THREAT_TYPE


def extract_indicators(text: str) -> Indicators:
    """Run independent regex passes, de-duplicating each category."""

    domains = [
        domain for domain in _DOMAIN.findall(text)
        if PLACEHOLDER_DOMAIN not in domain.lower()
    ]
    return Indicators(
        ips=_unique(_IPV4.findall(text)),
        domains=_unique(domains),
        cves=_unique(cve.upper() for cve in _CVE.findall(text)),
        hashes=_unique(_HASH.findall(text)),
        urls=_unique(_URL.findall(text)),
    )


def calculate_confidence(lowered: str, threat_type: str, severity: Severity) -> int:
    confidence = 50
    if threat_type != GENERAL_THREAT_TYPE:
        confidence += 20
    if severity in (Severity.CRITICAL, Severity.HIGH):
        confidence += 15
    if _contains_any(lowered, AUTHORITATIVE_KEYWORDS):
        confidence += 15
    if _contains_any(lowered, TECHNICAL_KEYWORDS):
        confidence += 10
    return min(confidence, 100)


def classify(title: str, description: str, priority_keywords: Sequence[str] = ()) -> Classification:
    """Classify one item's text.

    A priority keyword hit escalates severity by exactly one level, and the
    confidence score reflects the boosted severity.
    """

    text = combined_text(title, description)
    lowered = text.lower()

    threat_type = classify_threat_type(lowered)
    severity = classify_severity(lowered)
    if priority_keywords and _contains_any(lowered, (k.lower() for k in priority_keywords)):
        severity = severity.boosted()

    return Classification(
        severity=severity,
        threat_type=threat_type,
        indicators=extract_indicators(text),
        confidence=calculate_confidence(lowered, threat_type, severity),
    )


@dataclass(frozen=True)
class SeverityBadge:
    """Display severity used when rendering notifications."""

    level: str
    emoji: str
    color: str
    priority: int


CRITICAL_BADGE_KEYWORDS = (
    "zero-day", "rce", "remote code execution", "exploit in the wild",
    "actively exploited", "emergency", "ransomware", "lockbit", "cryptodestroy",
)
HIGH_BADGE_KEYWORDS = (
    "high severity", "security update", "patch tuesday", "vulnerability", "cve-",
    "apt29", "advanced persistent threat", "apt", "phishing campaign",
    "data breach", "exposed", "leaked", "compromised",
)
MEDIUM_BADGE_KEYWORDS = (
    "moderate", "advisory", "recommendation", "guidance", "medium priority",
    "security alert",
)

_BADGES: List[tuple[tuple[str, ...], SeverityBadge]] = [
    (CRITICAL_BADGE_KEYWORDS, SeverityBadge("CRITICAL", "\U0001F6A8", "#FF0000", 1)),
    (HIGH_BADGE_KEYWORDS, SeverityBadge("HIGH", "⚠️", "#FF8C00", 2)),
    (MEDIUM_BADGE_KEYWORDS, SeverityBadge("MEDIUM", "\U0001F4CB", "#32CD32", 3)),
]
INFO_BADGE = SeverityBadge("INFO", "ℹ️", "#1E90FF", 4)


def detect_severity(title: str, description: str) -> SeverityBadge:
    """Return the display badge for an item (priority 1 is most urgent)."""

    lowered = combined_text(title, description).lower()
    for keywords, badge in _BADGES:
        if _contains_any(lowered, keywords):
            return badge
    return INFO_BADGE
