"""JSON file state adapter.

Implements the core StatePort with a single JSON file, an exclusive lock
file, timestamped backups and atomic replace-on-write.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from adapters.file_lock import FileLock
from core.config import StateConfig
from core.dedup import normalize_link, prune_seen
from core.errors import StateCorruption, StateSaveError
from core.models import STATE_VERSION, RunState, SeenRecord

LOGGER = logging.getLogger(__name__)

BACKUP_PREFIX = "state-"
BACKUP_SUFFIX = ".json"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp, returning an aware UTC datetime or None."""

    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def looks_legacy(raw: dict) -> bool:
    """A legacy file is a non-empty flat map of source name to last link."""

    return "seen" not in raw and bool(raw) and all(isinstance(v, str) for v in raw.values())


def migrate_legacy(raw: dict, now: datetime) -> RunState:
    """Turn ``{sourceName: lastLink}`` into a seen-map keyed by entry id."""

    state = RunState(created=now)
    for source_name, link in raw.items():
        if not link:
            continue
        entry_id = normalize_link(link) or link
        state.seen[entry_id] = SeenRecord(timestamp=now, source=source_name, title="")
    return state


def normalize_state(raw: Any, now: datetime) -> RunState:
    """Validate a decoded JSON document, replacing bad fields with defaults."""

    if not isinstance(raw, dict):
        raise StateCorruption(f"State must be a JSON object, got {type(raw).__name__}")

    if looks_legacy(raw):
        LOGGER.info("Migrating legacy state with %s source(s)", len(raw))
        return migrate_legacy(raw, now)

    seen: dict[str, SeenRecord] = {}
    raw_seen = raw.get("seen")
    if isinstance(raw_seen, dict):
        for entry_id, record in raw_seen.items():
            if not isinstance(record, dict):
                continue
            seen[str(entry_id)] = SeenRecord(
                timestamp=parse_timestamp(record.get("timestamp")) or now,
                source=str(record.get("source") or "unknown"),
                title=str(record.get("title") or ""),
            )

    feed_stats = raw.get("feedStats")
    filter_stats = raw.get("filterStats")
    return RunState(
        seen=seen,
        last_run=parse_timestamp(raw.get("lastRun")),
        feed_stats=feed_stats if isinstance(feed_stats, dict) else {},
        filter_stats=filter_stats if isinstance(filter_stats, dict) else {},
        version=STATE_VERSION,
        created=parse_timestamp(raw.get("created")),
    )


def state_to_dict(state: RunState) -> dict:
    return {
        "seen": {
            entry_id: {
                "timestamp": record.timestamp.isoformat(),
                "source": record.source,
                "title": record.title,
            }
            for entry_id, record in state.seen.items()
        },
        "lastRun": state.last_run.isoformat() if state.last_run else None,
        "feedStats": state.feed_stats,
        "filterStats": state.filter_stats,
        "version": state.version or STATE_VERSION,
        "created": state.created.isoformat() if state.created else None,
    }


class JsonStateStore:
    """Locked, crash-safe persistence of the RunState."""

    def __init__(
        self,
        config: StateConfig,
        lock: Optional[FileLock] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._state_file = config.state_file
        self._backup_dir = config.backup_dir
        self._clock = clock
        self.lock = lock or FileLock(
            f"{config.state_file}.lock",
            timeout_seconds=config.lock_timeout_seconds,
            retry_delay_seconds=config.lock_retry_delay_seconds,
            max_retries=config.lock_max_retries,
        )

    def load(self) -> RunState:
        """Load state under the lock, recovering from backups on corruption."""

        self.lock.acquire()
        try:
            try:
                return self._read(self._state_file)
            except FileNotFoundError:
                LOGGER.info("No state file at %s, starting fresh", self._state_file)
                return RunState(created=self._clock())
            except StateCorruption as exc:
                LOGGER.warning("Failed to load state file, attempting recovery: %s", exc)

            recovered = self._recover_from_backup()
            if recovered is not None:
                self._write_atomic(recovered)
                return recovered

            LOGGER.warning("No usable backup found, creating new empty state")
            fresh = RunState(created=self._clock())
            self._write_atomic(fresh)
            return fresh
        finally:
            self.lock.release()

    def save(self, state: RunState) -> None:
        """Back up the current file, then atomically replace it.

        Seen entries written by another run since this one loaded are merged
        in, so overlapping runs never drop each other's records.
        """

        self.lock.acquire()
        try:
            document = normalize_state(state_to_dict(state), self._clock())
            self._merge_on_disk_seen(document)
            self._create_backup()
            self._write_atomic(document)
            self._cleanup_old_backups()
            LOGGER.info("State saved (%s entries tracked)", len(document.seen))
        finally:
            self.lock.release()

    def _merge_on_disk_seen(self, document: RunState) -> None:
        try:
            on_disk = self._read(self._state_file)
        except (FileNotFoundError, StateCorruption):
            return
        added = 0
        for entry_id, record in on_disk.seen.items():
            if entry_id not in document.seen:
                document.seen[entry_id] = record
                added += 1
        if added:
            LOGGER.info("Merged %s seen entries written by a concurrent run", added)
            document.seen = prune_seen(document.seen, self._config.seen_limit)

    def _read(self, path: str) -> RunState:
        try:
            with open(path, "r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except FileNotFoundError:
            raise
        except (OSError, ValueError) as exc:
            raise StateCorruption(f"{path}: {exc}") from exc
        return normalize_state(raw, self._clock())

    def _write_atomic(self, state: RunState) -> None:
        temp_path = f"{self._state_file}.tmp"
        directory = os.path.dirname(self._state_file)
        try:
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as handle:
                json.dump(state_to_dict(state), handle, indent=2, ensure_ascii=False)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_path, self._state_file)
        except OSError as exc:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise StateSaveError(f"Could not write {self._state_file}: {exc}") from exc

    def _backup_files(self) -> list[str]:
        """Return backup file names, newest first."""

        try:
            names = os.listdir(self._backup_dir)
        except FileNotFoundError:
            return []
        except OSError as exc:
            LOGGER.warning("Failed to list backups in %s: %s", self._backup_dir, exc)
            return []
        backups = [n for n in names if n.startswith(BACKUP_PREFIX) and n.endswith(BACKUP_SUFFIX)]
        return sorted(backups, reverse=True)

    def _create_backup(self) -> Optional[str]:
        if not os.path.exists(self._state_file):
            return None
        stamp = self._clock().strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        backup_path = os.path.join(self._backup_dir, f"{BACKUP_PREFIX}{stamp}{BACKUP_SUFFIX}")
        try:
            os.makedirs(self._backup_dir, exist_ok=True)
            shutil.copyfile(self._state_file, backup_path)
        except OSError as exc:
            LOGGER.warning("Failed to create backup: %s", exc)
            return None
        LOGGER.debug("Backup created: %s", backup_path)
        return backup_path

    def _recover_from_backup(self) -> Optional[RunState]:
        for name in self._backup_files():
            path = os.path.join(self._backup_dir, name)
            LOGGER.info("Attempting recovery from %s", name)
            try:
                state = self._read(path)
            except (FileNotFoundError, StateCorruption) as exc:
                LOGGER.warning("Backup %s is corrupted: %s", name, exc)
                continue
            LOGGER.info("State recovered from %s", name)
            return state
        return None

    def _cleanup_old_backups(self) -> int:
        removed = 0
        for name in self._backup_files()[self._config.max_backups:]:
            try:
                os.unlink(os.path.join(self._backup_dir, name))
                removed += 1
            except OSError as exc:
                LOGGER.warning("Failed to delete backup %s: %s", name, exc)
        return removed

    def backup_count(self) -> int:
        return len(self._backup_files())

    def stats(self) -> dict:
        """Return a summary of the stored state without modifying it."""

        with self.lock:
            try:
                state = self._read(self._state_file)
            except FileNotFoundError:
                state = RunState()
        return {
            "totalSeen": len(state.seen),
            "lastRun": state.last_run.isoformat() if state.last_run else None,
            "version": state.version,
            "backupCount": self.backup_count(),
        }
