from __future__ import annotations

import json
import os

import pytest

import settings
from core.errors import ConfigError
from core.models import Severity
from settings import load_settings, validate_sources

ENV_NAMES = (
    "THREATSCOPE_CONFIG", "DRY_RUN", "PER_RUN_POST_CAP", "POST_DELAY_MS", "STATE_FILE",
    "STATE_BACKUP_DIR", "ALLOW_BACKFILL", "MAX_BACKFILL_DAYS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def _write_config(tmp_path, **overrides) -> str:
    config = {
        "sources": [
            {"name": "CISA", "url": "https://www.cisa.gov/all.xml", "parser": "cisa", "priority": "high"},
        ],
        "filters": {"blocked_keywords": ["Webinar"], "minimum_severity": "Medium"},
    }
    config.update(overrides)
    path = tmp_path / "config.json"
    path.write_text(json.dumps(config), encoding="utf-8")
    return str(path)


def test_validate_sources_accepts_minimal_source() -> None:
    sources, errors = validate_sources([{"name": " Feed ", "url": "https://feed.test/rss"}])

    assert errors == []
    assert sources[0].name == "Feed"
    assert sources[0].parser == "rss"
    assert sources[0].enabled
    assert sources[0].description == "Threat intelligence feed: Feed"


def test_validate_sources_reports_every_problem() -> None:
    raw = [
        {"name": "Bad", "url": "ftp://feed.test", "priority": "urgent", "parser": "atom", "colour": "red"},
        "not a source",
        {"url": "https://feed.test/rss"},
    ]

    sources, errors = validate_sources(raw)

    assert sources == []
    assert "Bad: URL must be an absolute HTTP or HTTPS URL" in errors
    assert any(e.startswith("Bad: Priority must be one of") for e in errors)
    assert any(e.startswith("Bad: Unknown parser 'atom'") for e in errors)
    assert "Bad: Unknown fields detected: colour" in errors
    assert "sources[1]: Source must be an object" in errors
    assert "sources[2]: Missing required field 'name'" in errors


def test_validate_sources_rejects_duplicates() -> None:
    entry = {"name": "Feed", "url": "https://feed.test/rss"}

    sources, errors = validate_sources([entry, dict(entry)])

    assert len(sources) == 1
    assert errors == ["Duplicate source name 'Feed' found at index 1"]


def test_validate_sources_requires_a_list() -> None:
    assert validate_sources({"name": "Feed"}) == ([], ["Sources configuration must be an array"])


def test_load_settings_defaults(tmp_path) -> None:
    app_settings = load_settings(_write_config(tmp_path))

    assert app_settings.sources[0].parser == "cisa"
    assert app_settings.global_filters.blocked_keywords == ("webinar",)
    assert app_settings.global_filters.minimum_severity is Severity.MEDIUM
    assert app_settings.backfill.allow_backfill is False
    assert app_settings.delivery.per_run_cap == 30
    assert app_settings.delivery.delay_for("low") == 8.0
    assert app_settings.notification_method == "teams"
    assert app_settings.state.state_file == os.path.join(settings.PROJECT_ROOT, "data/state.json")
    assert app_settings.report_path.endswith("state-report.json")
    assert not app_settings.dry_run


def test_environment_overrides(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("PER_RUN_POST_CAP", "5")
    monkeypatch.setenv("POST_DELAY_MS", "250")
    monkeypatch.setenv("DRY_RUN", "true")
    monkeypatch.setenv("ALLOW_BACKFILL", "1")
    monkeypatch.setenv("STATE_FILE", str(tmp_path / "custom.json"))

    app_settings = load_settings(_write_config(tmp_path))

    assert app_settings.delivery.per_run_cap == 5
    assert app_settings.delivery.default_delay_seconds == 0.25
    assert app_settings.dry_run
    assert app_settings.backfill.allow_backfill
    assert app_settings.state.state_file == str(tmp_path / "custom.json")


def test_invalid_sources_are_collected_not_raised(tmp_path) -> None:
    path = _write_config(tmp_path, sources=[{"name": "Feed"}])

    app_settings = load_settings(path)

    assert app_settings.sources == []
    assert app_settings.source_errors == ["Feed: Missing required field 'url'"]


def test_bad_method_and_bad_json_raise(tmp_path) -> None:
    with pytest.raises(ConfigError):
        load_settings(_write_config(tmp_path, delivery={"method": "email"}))

    broken = tmp_path / "broken.json"
    broken.write_text("{", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_settings(str(broken))

    with pytest.raises(ConfigError):
        load_settings(str(tmp_path / "missing.json"))
