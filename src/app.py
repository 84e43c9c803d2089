"""Application entry point for the threatscope feed watcher."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

from rich.console import Console
from rich.markup import escape
from rich.text import Text

import settings
from adapters.feed_sources import SourceRegistry
from adapters.json_state_store import JsonStateStore
from adapters.teams_notifier import TeamsWebhookNotifier
from adapters.telegram_bot_notifier import TelegramBotNotifier
from core.delivery import DeliveryOutcome, DeliveryPipeline
from core.errors import ConfigError, StateStoreError
from core.models import ClassifiedEntry
from core.processor import RunOrchestrator
from core.report import build_state_report
from core.rules_engine import FilterEngine

ACCENT = "#D7263D"

DEFAULT_REDACT = ("TEAMS_WEBHOOK_URL", "BOT_API", "API_HASH")

console = Console()


def _title_text() -> Text:
    return Text.assemble(
        ("THREAT", f"bold {ACCENT}"),
        ("SCOPE > feed watcher", "bold"),
    )


def _print_banner() -> None:
    console.rule(_title_text())


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", True):
        return []
    values = []
    for name in redact_cfg.get("patterns", DEFAULT_REDACT):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging(config: dict) -> None:
    level_name = str(os.getenv("LOG_LEVEL") or config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/threatscope.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


class _DryRunNotifier:
    """Log what would be sent instead of sending it."""

    def __init__(self) -> None:
        self.rendered = 0

    def render(self, entry: ClassifiedEntry) -> dict:
        classification = entry.classification
        return {
            "title": entry.item.title,
            "source": entry.item.source_name,
            "severity": classification.severity.value if classification else None,
            "threatType": classification.threat_type if classification else None,
        }

    async def deliver(self, payload: Any) -> DeliveryOutcome:
        self.rendered += 1
        logging.getLogger(__name__).info("DRY-RUN: would post %s", payload)
        return DeliveryOutcome.success()


async def _build_notifier(app_settings: settings.AppSettings, dry_run: bool):
    """Select the notification adapter to keep the core independent of delivery."""

    snippet_chars = app_settings.notifications.snippet_chars
    timeout = app_settings.delivery.attempt_timeout_seconds
    method = app_settings.notification_method

    if dry_run:
        return _DryRunNotifier(), None
    if method == "teams":
        webhook_url = os.getenv("TEAMS_WEBHOOK_URL")
        if not webhook_url:
            raise ConfigError("TEAMS_WEBHOOK_URL is required when delivery.method=teams")
        return TeamsWebhookNotifier(webhook_url, snippet_chars, timeout), None
    if method == "bot":
        bot_token = os.getenv("BOT_API")
        if not bot_token:
            raise ConfigError("BOT_API is required when delivery.method=bot")
        if not app_settings.bot_chat_id:
            raise ConfigError("delivery.bot_chat_id is required for bot notifications")
        return TelegramBotNotifier(bot_token, app_settings.bot_chat_id, snippet_chars, timeout), None

    # Telethon is only needed for this method, so it is an optional extra.
    try:
        from adapters.telegram_notifier import TelegramSavedMessagesNotifier
        from client import build_client, connect_authorized
    except ImportError as exc:
        raise ConfigError("delivery.method=saved_messages needs the 'telegram' extra (telethon)") from exc

    client = await connect_authorized(build_client())
    return TelegramSavedMessagesNotifier(client, snippet_chars), client


async def _run_once(app_settings: settings.AppSettings, dry_run: bool) -> int:
    logger = logging.getLogger(__name__)

    if app_settings.source_errors:
        for error in app_settings.source_errors:
            logger.error("Invalid source configuration: %s", error)
        raise ConfigError(f"{len(app_settings.source_errors)} source configuration error(s)")

    notifier, client = await _build_notifier(app_settings, dry_run)
    logger.info(
        "Starting run: mode=%s, method=%s, sources=%s",
        "DRY-RUN" if dry_run else "LIVE",
        app_settings.notification_method,
        sum(1 for source in app_settings.sources if source.enabled),
    )

    orchestrator = RunOrchestrator(
        sources=app_settings.sources,
        source_adapter=SourceRegistry(timeout_seconds=app_settings.fetch_timeout_seconds),
        state_store=JsonStateStore(app_settings.state),
        filter_engine=FilterEngine(app_settings.global_filters),
        pipeline=DeliveryPipeline(notifier, app_settings.delivery),
        backfill_config=app_settings.backfill,
        per_run_cap=app_settings.delivery.per_run_cap,
        seen_limit=app_settings.state.seen_limit,
        dry_run=dry_run,
    )
    try:
        summary = await orchestrator.run()
    finally:
        if client is not None:
            await client.disconnect()
    return 0 if summary.failed == 0 else 2


def _run(app_settings: settings.AppSettings, dry_run: bool) -> int:
    _print_banner()
    try:
        return asyncio.run(_run_once(app_settings, dry_run))
    except (ConfigError, StateStoreError) as exc:
        logging.getLogger(__name__).error("Run aborted: %s", exc)
        return 1


def _validate(app_settings: settings.AppSettings) -> int:
    console.print(f"Sources: {len(app_settings.sources)} valid", highlight=False)
    for source in app_settings.sources:
        status = "[green]ENABLED [/green]" if source.enabled else "[dim]DISABLED[/dim]"
        console.print(f"   {status} {escape(source.name)} \\[{source.parser}] - {escape(source.url)}", highlight=False)

    if app_settings.source_errors:
        console.print("[bold red]Configuration validation failed:[/bold red]")
        for error in app_settings.source_errors:
            console.print(f"   - {error}", markup=False, highlight=False)
        return 1

    if app_settings.notification_method == "teams" and not os.getenv("TEAMS_WEBHOOK_URL"):
        console.print("[yellow]Warning: TEAMS_WEBHOOK_URL not set[/yellow]")

    store = JsonStateStore(app_settings.state)
    try:
        stats = store.stats()
    except StateStoreError as exc:
        console.print(f"[red]State file not accessible:[/red] {exc}", highlight=False)
        return 1
    console.print(f"State file accessible ({stats['totalSeen']} entries tracked, {stats['backupCount']} backups)")
    return 0


def _report(app_settings: settings.AppSettings) -> int:
    store = JsonStateStore(app_settings.state)
    try:
        state = store.load()
    except StateStoreError as exc:
        logging.getLogger(__name__).error("Report failed: %s", exc)
        return 1

    report = build_state_report(state, datetime.now(timezone.utc))
    text = json.dumps(report, indent=2)
    print(text)
    if app_settings.report_path:
        directory = os.path.dirname(app_settings.report_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(app_settings.report_path, "w", encoding="utf-8") as handle:
            handle.write(text)
    return 0


def _unlock(app_settings: settings.AppSettings) -> int:
    store = JsonStateStore(app_settings.state)
    if store.lock.force_release():
        console.print(f"Removed lock file {store.lock.path}", highlight=False)
    else:
        console.print("No lock file present")
    return 0


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="threatscope")
    parser.add_argument("--config", help="Path to config.json")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Fetch, filter and deliver once")
    run_parser.add_argument("--dry-run", action="store_true", help="Log instead of posting; keep state")
    subparsers.add_parser("validate", help="Validate configuration and state access")
    subparsers.add_parser("report", help="Write a per-source summary of the seen state")
    subparsers.add_parser("unlock", help="Remove a leftover state lock file")

    args = parser.parse_args(argv)
    try:
        app_settings = settings.load_settings(args.config)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)
    _configure_logging(app_settings.logging)

    if args.command == "validate":
        sys.exit(_validate(app_settings))
    if args.command == "report":
        sys.exit(_report(app_settings))
    if args.command == "unlock":
        sys.exit(_unlock(app_settings))
    dry_run = bool(getattr(args, "dry_run", False)) or app_settings.dry_run
    sys.exit(_run(app_settings, dry_run))


if __name__ == "__main__":
    main()
