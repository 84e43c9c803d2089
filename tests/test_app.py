from __future__ import annotations

import asyncio
import json
import logging

import pytest

import app
from conftest import NOW, make_item
from core.delivery import OutcomeStatus
from core.models import ClassifiedEntry


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("THREATSCOPE_CONFIG", "DRY_RUN", "STATE_FILE", "STATE_BACKUP_DIR", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


def _config(tmp_path, sources=None) -> str:
    config = {
        "sources": sources if sources is not None else [
            {"name": "Local", "url": "http://127.0.0.1:9/feed.xml"},
        ],
        "state": {
            "state_file": str(tmp_path / "data" / "state.json"),
            "backup_dir": str(tmp_path / "data" / "backups"),
            "lock_max_retries": 3,
        },
        "fetch_timeout_seconds": 2,
        "logging": {"console": False},
    }
    path = tmp_path / "config.json"
    path.write_text(json.dumps(config), encoding="utf-8")
    return str(path)


def test_redacting_formatter_masks_secrets() -> None:
    formatter = app._RedactingFormatter(["s3cret-token"], fmt="%(message)s")
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "posting to %s", ("https://hook/s3cret-token",), None)

    assert formatter.format(record) == "posting to https://hook/***"


def test_redaction_values_come_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("BOT_API", "123:abc")
    monkeypatch.delenv("TEAMS_WEBHOOK_URL", raising=False)
    monkeypatch.delenv("API_HASH", raising=False)

    assert app._collect_redaction_values({}) == ["123:abc"]
    assert app._collect_redaction_values({"redact": {"enabled": False}}) == []


def test_dry_run_notifier_always_succeeds() -> None:
    notifier = app._DryRunNotifier()
    entry = ClassifiedEntry(item=make_item(), entry_id="id", classification=None, filtered_at=NOW)

    payload = notifier.render(entry)
    outcome = asyncio.run(notifier.deliver(payload))

    assert payload["severity"] is None
    assert outcome.status is OutcomeStatus.SUCCESS
    assert notifier.rendered == 1


def test_validate_command(tmp_path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        app.main(["--config", _config(tmp_path), "validate"])

    assert excinfo.value.code == 0


def test_validate_command_fails_on_bad_sources(tmp_path) -> None:
    path = _config(tmp_path, sources=[{"name": "Broken"}])

    with pytest.raises(SystemExit) as excinfo:
        app.main(["--config", path, "validate"])

    assert excinfo.value.code == 1


def test_dry_run_survives_unreachable_source(tmp_path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        app.main(["--config", _config(tmp_path), "run", "--dry-run"])

    assert excinfo.value.code == 0
    assert not (tmp_path / "data" / "state.json").exists()


def test_report_and_unlock_commands(tmp_path) -> None:
    path = _config(tmp_path)
    lock_file = tmp_path / "data" / "state.json.lock"
    lock_file.parent.mkdir(parents=True)
    lock_file.write_text("{}", encoding="utf-8")

    with pytest.raises(SystemExit) as unlocked:
        app.main(["--config", path, "unlock"])
    with pytest.raises(SystemExit) as reported:
        app.main(["--config", path, "report"])

    assert unlocked.value.code == 0
    assert not lock_file.exists()
    assert reported.value.code == 0
    report = json.loads((tmp_path / "data" / "state-report.json").read_text(encoding="utf-8"))
    assert report["totalSeen"] == 0
