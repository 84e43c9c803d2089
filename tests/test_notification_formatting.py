from __future__ import annotations

import pytest

from adapters.notification_formatting import (
    build_adaptive_card,
    clean_description,
    format_notification,
    format_source_label,
)
from conftest import NOW, make_item
from core.classifier import classify
from core.models import ClassifiedEntry


def _entry(title: str = "Critical RCE in *widget* <server>", description: str = "", **kwargs) -> ClassifiedEntry:
    item = make_item(title, description=description or "Patch CVE-2024-1111 now.")
    return ClassifiedEntry(
        item=item,
        entry_id="id",
        classification=classify(item.title, item.description),
        filtered_at=NOW,
        **kwargs,
    )


def test_source_label_includes_region_and_category() -> None:
    assert format_source_label(_entry(region="EU", category="vendor")) == "Test Feed (EU) [vendor]"
    assert format_source_label(_entry()) == "Test Feed"


def test_clean_description_strips_tags_and_truncates_on_word() -> None:
    text = "<p>" + " ".join(["word"] * 50) + "</p>"

    cleaned = clean_description(text, max_length=40)

    assert cleaned.endswith("...")
    assert "<p>" not in cleaned
    assert len(cleaned) <= 43


def test_markdown_escapes_title() -> None:
    message = format_notification(_entry(), 200, mode="markdown")

    assert "CRITICAL" in message
    assert "\\*widget\\*" in message
    assert "https://example.org/advisory/1" in message


def test_html_escapes_title() -> None:
    message = format_notification(_entry(), 200, mode="html")

    assert "&lt;server&gt;" in message
    assert '<a href="https://example.org/advisory/1">' in message


def test_unknown_mode_is_rejected() -> None:
    with pytest.raises(ValueError):
        format_notification(_entry(), 200, mode="plain")


def test_adaptive_card_facts_and_action() -> None:
    message = build_adaptive_card(_entry(region="US"))
    card = message["attachments"][0]["content"]
    facts = {fact["title"]: fact["value"] for fact in card["body"][1]["facts"]}

    assert message["type"] == "message"
    assert card["version"] == "1.5"
    assert facts["Type"] == "Vulnerability"
    assert facts["Source"] == "Test Feed (US)"
    assert facts["CVEs"] == "CVE-2024-1111"
    assert card["actions"][0]["url"] == "https://example.org/advisory/1"


def test_adaptive_card_without_link_or_classification() -> None:
    item = make_item("Plain update", link=None, description="")
    entry = ClassifiedEntry(item=item, entry_id="id", classification=None, filtered_at=NOW)

    card = build_adaptive_card(entry)["attachments"][0]["content"]
    facts = {fact["title"] for fact in card["body"][1]["facts"]}

    assert "actions" not in card
    assert facts == {"Type", "Source", "Published"}
