"""Static configuration for threatscope.

All user-editable settings (sources, filters, state, delivery) live in a
single JSON file for quick edits without touching Python. Secrets and
deployment switches come from the environment (optionally a .env file) and
override the file.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlsplit

from dotenv import load_dotenv

from adapters.feed_sources import SOURCE_ADAPTERS
from core.config import (
    PRIORITY_LEVELS,
    BackfillConfig,
    DeliveryConfig,
    FilterPolicy,
    NotificationConfig,
    SourceConfig,
    StateConfig,
)
from core.errors import ConfigError

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# Sources, filters and delivery settings are loaded from config.json so
# users can enable/disable feeds and tweak policy without editing code.
CONFIG_PATH = os.path.join(PROJECT_ROOT, "config.json")

SOURCE_REQUIRED_FIELDS = ("name", "url")
SOURCE_OPTIONAL_FIELDS = ("enabled", "parser", "priority", "category", "region", "description", "filters")
SOURCE_CATEGORIES = ("national", "vendor", "government", "commercial", "community")
NOTIFICATION_METHODS = ("teams", "bot", "saved_messages")


@dataclass(frozen=True)
class AppSettings:
    """Everything one run needs, built once and passed explicitly."""

    sources: list[SourceConfig]
    source_errors: list[str]
    global_filters: FilterPolicy
    state: StateConfig
    backfill: BackfillConfig
    delivery: DeliveryConfig
    notifications: NotificationConfig
    notification_method: str
    bot_chat_id: Optional[str]
    fetch_timeout_seconds: float
    dry_run: bool
    logging: dict = field(default_factory=dict)
    report_path: Optional[str] = None


def _load_json_config(path: str) -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(path):
        raise ConfigError(f"Config file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except ValueError as exc:
        raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a JSON object")
    return data


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


def validate_source(entry: Any, index: int) -> tuple[Optional[SourceConfig], list[str]]:
    """Validate one raw source entry, returning the normalized config or errors."""

    if not isinstance(entry, dict):
        return None, [f"sources[{index}]: Source must be an object"]

    label = entry.get("name") if isinstance(entry.get("name"), str) and entry.get("name") else f"sources[{index}]"
    errors: list[str] = []

    for name in SOURCE_REQUIRED_FIELDS:
        value = entry.get(name)
        if not value:
            errors.append(f"{label}: Missing required field '{name}'")
        elif not isinstance(value, str):
            errors.append(f"{label}: Field '{name}' must be a string")

    name = entry.get("name")
    if isinstance(name, str):
        if not name.strip():
            errors.append(f"{label}: Name cannot be empty")
        if len(name) > 100:
            errors.append(f"{label}: Name cannot exceed 100 characters")

    url = entry.get("url")
    if isinstance(url, str) and url:
        parts = urlsplit(url)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            errors.append(f"{label}: URL must be an absolute HTTP or HTTPS URL")

    if "enabled" in entry and not isinstance(entry["enabled"], bool):
        errors.append(f"{label}: Field 'enabled' must be a boolean")

    priority = entry.get("priority")
    if priority is not None and priority not in PRIORITY_LEVELS:
        errors.append(f"{label}: Priority must be one of: {', '.join(PRIORITY_LEVELS)}")

    category = entry.get("category")
    if category is not None and category not in SOURCE_CATEGORIES:
        errors.append(f"{label}: Category must be one of: {', '.join(SOURCE_CATEGORIES)}")

    parser = entry.get("parser", "rss")
    if parser not in SOURCE_ADAPTERS:
        errors.append(
            f"{label}: Unknown parser '{parser}'. Available parsers: {', '.join(sorted(SOURCE_ADAPTERS))}"
        )

    filters = entry.get("filters")
    if filters is not None and not isinstance(filters, dict):
        errors.append(f"{label}: Field 'filters' must be an object")

    known = set(SOURCE_REQUIRED_FIELDS) | set(SOURCE_OPTIONAL_FIELDS)
    unknown = sorted(key for key in entry if key not in known)
    if unknown:
        errors.append(f"{label}: Unknown fields detected: {', '.join(unknown)}")

    if errors:
        return None, errors

    name = name.strip()
    try:
        policy = FilterPolicy.from_dict(filters)
    except (TypeError, ValueError) as exc:
        return None, [f"{label}: Invalid filters: {exc}"]

    return (
        SourceConfig(
            name=name,
            url=url,
            parser=parser,
            enabled=entry.get("enabled", True),
            priority=priority or "medium",
            category=category,
            region=entry.get("region"),
            description=entry.get("description") or f"Threat intelligence feed: {name}",
            filters=policy,
        ),
        [],
    )


def validate_sources(raw_sources: Any) -> tuple[list[SourceConfig], list[str]]:
    """Validate every source and reject duplicate names."""

    if not isinstance(raw_sources, list):
        return [], ["Sources configuration must be an array"]

    sources: list[SourceConfig] = []
    errors: list[str] = []
    names: set[str] = set()
    for index, entry in enumerate(raw_sources):
        source, source_errors = validate_source(entry, index)
        errors.extend(source_errors)
        if source is None:
            continue
        if source.name in names:
            errors.append(f"Duplicate source name '{source.name}' found at index {index}")
            continue
        names.add(source.name)
        sources.append(source)
    return sources, errors


def load_settings(config_path: Optional[str] = None) -> AppSettings:
    """Build AppSettings from config.json and the environment."""

    load_dotenv()
    path = config_path or os.getenv("THREATSCOPE_CONFIG") or CONFIG_PATH
    config = _load_json_config(path)

    sources, source_errors = validate_sources(config.get("sources", []))

    try:
        global_filters = FilterPolicy.from_dict(config.get("filters", {}))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid global filters: {exc}") from exc

    # State paths: env wins so CI and cron jobs can relocate state.
    _state = config.get("state", {})
    state_file = _resolve_path(os.getenv("STATE_FILE") or _state.get("state_file", "data/state.json"))
    state = StateConfig(
        state_file=state_file,
        backup_dir=_resolve_path(os.getenv("STATE_BACKUP_DIR") or _state.get("backup_dir", "data/backups")),
        max_backups=int(_state.get("max_backups", 10)),
        lock_timeout_seconds=float(_state.get("lock_timeout_seconds", 30)),
        lock_retry_delay_seconds=float(_state.get("lock_retry_delay_seconds", 0.1)),
        lock_max_retries=int(_state.get("lock_max_retries", 50)),
        seen_limit=int(_state.get("seen_limit", 1000)),
    )

    # Backfill stays off unless explicitly allowed.
    _backfill = config.get("backfill", {})
    backfill = BackfillConfig(
        allow_backfill=_env_bool("ALLOW_BACKFILL", bool(_backfill.get("enabled", False))),
        max_backfill_days=_env_float("MAX_BACKFILL_DAYS", float(_backfill.get("max_days", 7))),
    )

    _delivery = config.get("delivery", {})
    default_delay = float(_delivery.get("default_delay_seconds", 1.0))
    if os.getenv("POST_DELAY_MS"):
        default_delay = _env_float("POST_DELAY_MS", default_delay * 1000) / 1000
    delivery = DeliveryConfig(
        max_attempts=int(_delivery.get("max_attempts", 5)),
        attempt_timeout_seconds=float(_delivery.get("attempt_timeout_seconds", 10)),
        base_backoff_seconds=float(_delivery.get("base_backoff_seconds", 1)),
        max_backoff_seconds=float(_delivery.get("max_backoff_seconds", 30)),
        per_run_cap=int(_env_float("PER_RUN_POST_CAP", float(_delivery.get("per_run_cap", 30)))),
        default_delay_seconds=default_delay,
        priority_delays=dict(_delivery.get("priority_delays", {"high": 3.0, "medium": 5.0, "low": 8.0})),
    )

    method = _delivery.get("method", "teams")
    if method not in NOTIFICATION_METHODS:
        raise ConfigError(f"delivery.method must be one of: {', '.join(NOTIFICATION_METHODS)}")

    _notifications = config.get("notifications", {})
    report_path = _state.get("report_file")

    return AppSettings(
        sources=sources,
        source_errors=source_errors,
        global_filters=global_filters,
        state=state,
        backfill=backfill,
        delivery=delivery,
        notifications=NotificationConfig(snippet_chars=int(_notifications.get("snippet_chars", 400))),
        notification_method=method,
        bot_chat_id=str(_delivery["bot_chat_id"]) if _delivery.get("bot_chat_id") else None,
        fetch_timeout_seconds=float(config.get("fetch_timeout_seconds", 20)),
        dry_run=_env_bool("DRY_RUN", False),
        logging=config.get("logging", {}),
        report_path=_resolve_path(report_path) if report_path else os.path.join(
            os.path.dirname(state_file), "state-report.json"
        ),
    )
