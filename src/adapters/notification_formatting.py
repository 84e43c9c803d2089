"""Shared notification formatting helpers.

Keeping formatting here prevents drift between adapters and keeps messages
consistent regardless of delivery channel.
"""

from __future__ import annotations

import html
import re
from datetime import datetime, timezone
from typing import Optional

from core.classifier import SeverityBadge, detect_severity
from core.models import ClassifiedEntry

THREAT_TYPE_LABELS = {
    "malware": ("\U0001F9A0", "Malware"),
    "vulnerability": ("\U0001F513", "Vulnerability"),
    "phishing": ("\U0001F3A3", "Phishing"),
    "apt": ("\U0001F3AF", "APT"),
    "data_breach": ("\U0001F4BE", "Data Breach"),
    "ddos": ("\U0001F30A", "DDoS"),
    "insider_threat": ("\U0001F575", "Insider Threat"),
    "supply_chain": ("\U0001F517", "Supply Chain"),
}
GENERAL_LABEL = ("\U0001F4C4", "General")

DIVIDER = "──────────────"


def clean_description(description: Optional[str], max_length: int = 400) -> str:
    """Strip tags, collapse whitespace and truncate at a word boundary."""

    if not description:
        return ""
    cleaned = re.sub(r"<[^>]*>", "", description)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    if len(cleaned) <= max_length:
        return cleaned

    truncated = cleaned[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > max_length * 0.8:
        return truncated[:last_space] + "..."
    return truncated + "..."


def format_date(published_at: Optional[datetime]) -> str:
    value = published_at or datetime.now(timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d")


def threat_label(entry: ClassifiedEntry) -> tuple[str, str]:
    if entry.classification is None:
        return GENERAL_LABEL
    return THREAT_TYPE_LABELS.get(entry.classification.threat_type, GENERAL_LABEL)


def format_source_label(entry: ClassifiedEntry) -> str:
    """Return the source name with region and category when configured."""

    label = entry.item.source_name
    if entry.region:
        label = f"{label} ({entry.region})"
    if entry.category:
        label = f"{label} [{entry.category}]"
    return label


def action_line(badge: SeverityBadge) -> Optional[str]:
    if badge.priority <= 2:
        return "Action Required: Review and assess impact immediately"
    if badge.priority == 3:
        return "Recommended Action: Review when convenient"
    return None


def _format_markdown(entry: ClassifiedEntry, snippet_chars: int) -> str:
    """Create the Markdown notification body used by Saved Messages."""

    def escape_md(value: str) -> str:
        for ch in r"*[`":
            value = value.replace(ch, f"\\{ch}")
        return value

    item = entry.item
    badge = detect_severity(item.title, item.description)
    emoji, category = threat_label(entry)
    summary = clean_description(item.description, snippet_chars)

    lines = [
        f"{badge.emoji} **Threat Intelligence Alert - {badge.level}** (P{badge.priority})",
        f"**Type:**   {emoji} {category}",
        f"**Source:** {escape_md(format_source_label(entry))}",
        f"**Published:** {format_date(item.published_at)}",
        DIVIDER,
        "",
        f"**{escape_md(item.title)}**",
    ]
    if summary:
        lines.extend(["", escape_md(summary)])

    action = action_line(badge)
    if action:
        lines.extend(["", f"**{action}**"])

    if item.link:
        lines.extend(["", "**Link:**", item.link])

    lines.append(DIVIDER)
    return "\n".join(lines)


def _format_html(entry: ClassifiedEntry, snippet_chars: int) -> str:
    """Create the HTML notification body used by the Bot API adapter."""

    item = entry.item
    badge = detect_severity(item.title, item.description)
    emoji, category = threat_label(entry)
    summary = html.escape(clean_description(item.description, snippet_chars))

    parts = [
        f"{badge.emoji} <b>Threat Intelligence Alert - {badge.level}</b> (P{badge.priority})",
        f"<b>Type:</b> {emoji} {html.escape(category)}",
        f"<b>Source:</b> {html.escape(format_source_label(entry))}",
        f"<b>Published:</b> {format_date(item.published_at)}",
        DIVIDER,
        "",
        f"<b>{html.escape(item.title)}</b>",
    ]
    if summary:
        parts.extend(["", summary])

    action = action_line(badge)
    if action:
        parts.extend(["", f"<b>{html.escape(action)}</b>"])

    if item.link:
        safe_link = html.escape(item.link)
        parts.extend(["", "<b>Link:</b>", f"<a href=\"{safe_link}\">{safe_link}</a>"])

    parts.append(DIVIDER)
    return "\n".join(parts)


def format_notification(entry: ClassifiedEntry, snippet_chars: int, mode: str) -> str:
    """Return the notification formatted for the requested mode."""

    if mode == "markdown":
        return _format_markdown(entry, snippet_chars)
    if mode == "html":
        return _format_html(entry, snippet_chars)
    raise ValueError(f"Unsupported notification format: {mode}")


_CARD_STYLES = {"CRITICAL": "attention", "HIGH": "warning", "MEDIUM": "default", "INFO": "emphasis"}


def build_adaptive_card(entry: ClassifiedEntry, snippet_chars: int = 280) -> dict:
    """Build the Teams webhook message carrying one Adaptive Card."""

    item = entry.item
    badge = detect_severity(item.title, item.description)
    _, category = threat_label(entry)
    summary = clean_description(item.description, snippet_chars)

    facts = [
        {"title": "Type", "value": category},
        {"title": "Source", "value": format_source_label(entry)},
        {"title": "Published", "value": format_date(item.published_at)},
    ]
    if entry.classification is not None:
        facts.append({"title": "Confidence", "value": f"{entry.classification.confidence}%"})
        if entry.classification.indicators.cves:
            facts.append({"title": "CVEs", "value": ", ".join(entry.classification.indicators.cves)})

    card = {
        "$schema": "http://adaptivecards.io/schemas/adaptive-card.json",
        "type": "AdaptiveCard",
        "version": "1.5",
        "body": [
            {
                "type": "TextBlock",
                "text": f"**Threat Intelligence Alert - {badge.level}**",
                "wrap": True,
                "weight": "Bolder",
                "style": _CARD_STYLES.get(badge.level, "default"),
            },
            {"type": "FactSet", "facts": facts},
            {"type": "TextBlock", "text": f"**{item.title}**", "wrap": True},
            {"type": "TextBlock", "text": summary or "No summary available", "wrap": True, "maxLines": 6},
        ],
    }
    if item.link:
        card["actions"] = [{"type": "Action.OpenUrl", "title": "Read Advisory →", "url": item.link}]

    return {
        "type": "message",
        "attachments": [
            {"contentType": "application/vnd.microsoft.card.adaptive", "content": card},
        ],
    }
