"""Exclusive lock file guarding the state file.

The lock is a small JSON marker created with O_EXCL. A marker is stale when
it is older than the timeout or when its owning process no longer exists on
this host; stale markers are renamed aside, checked to be unchanged, removed,
and acquisition is retried.
"""

from __future__ import annotations

import json
import logging
import os
import socket
import time
from typing import Callable, Optional

from core.errors import LockTimeout

LOGGER = logging.getLogger(__name__)


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # The process exists but belongs to someone else.
        return True
    except OSError:
        return False
    return True


class FileLock:
    """Single-process-per-host lock built on an exclusively created file."""

    def __init__(
        self,
        path: str,
        timeout_seconds: float = 30.0,
        retry_delay_seconds: float = 0.1,
        max_retries: int = 50,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        pid_alive: Callable[[int], bool] = _pid_alive,
    ) -> None:
        self.path = path
        self._timeout = timeout_seconds
        self._retry_delay = retry_delay_seconds
        self._max_retries = max_retries
        self._clock = clock
        self._sleep = sleep
        self._pid_alive = pid_alive
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    @staticmethod
    def _snapshot(path: str) -> Optional[tuple]:
        """Return (device, inode, mtime, raw contents) of a marker file."""

        try:
            info = os.stat(path)
            with open(path, "r", encoding="utf-8") as handle:
                raw = handle.read()
        except FileNotFoundError:
            return None
        except (OSError, ValueError):
            raw = ""
        return (info.st_dev, info.st_ino, info.st_mtime_ns, raw)

    @staticmethod
    def _read_marker(snapshot: tuple) -> dict:
        try:
            data = json.loads(snapshot[3])
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def _remove(self) -> None:
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass

    def _stale_snapshot(self) -> Optional[tuple]:
        """Return a snapshot of the current marker if it can be reclaimed."""

        snapshot = self._snapshot(self.path)
        if snapshot is None:
            return None
        marker = self._read_marker(snapshot)

        timestamp = marker.get("timestamp")
        if not isinstance(timestamp, (int, float)):
            # Unreadable marker: fall back to the file's own age.
            timestamp = snapshot[2] / 1e9

        if self._clock() - float(timestamp) > self._timeout:
            return snapshot

        pid = marker.get("pid")
        if marker.get("hostname") == socket.gethostname() and isinstance(pid, int):
            if not self._pid_alive(pid):
                return snapshot
        return None

    def is_stale(self) -> bool:
        """Return True when the existing marker can be reclaimed."""

        return self._stale_snapshot() is not None

    def _reclaim(self, snapshot: tuple) -> bool:
        """Remove the marker only if it is still the stale file we inspected.

        The marker is first renamed aside, so a fresh lock written by another
        process in the meantime is never deleted; it is moved back instead.
        """

        aside = f"{self.path}.stale-{os.getpid()}-{time.monotonic_ns()}"
        try:
            os.rename(self.path, aside)
        except FileNotFoundError:
            return False

        if self._snapshot(aside) == snapshot:
            os.unlink(aside)
            return True

        LOGGER.debug("Lock %s changed owner while reclaiming; restoring it", self.path)
        try:
            os.link(aside, self.path)
        except FileExistsError:
            LOGGER.warning("Lock %s was re-created while restoring a live marker", self.path)
        finally:
            os.unlink(aside)
        return False

    def _try_create(self) -> bool:
        marker = {
            "pid": os.getpid(),
            "timestamp": self._clock(),
            "hostname": socket.gethostname(),
        }
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(marker, handle)
        return True

    def acquire(self) -> None:
        """Take the lock or raise LockTimeout once the retry budget is spent."""

        for _ in range(self._max_retries):
            if self._try_create():
                self._held = True
                return
            snapshot = self._stale_snapshot()
            if snapshot is not None and self._reclaim(snapshot):
                LOGGER.warning("Removed stale lock %s", self.path)
                continue
            self._sleep(self._retry_delay)

        raise LockTimeout(f"Failed to acquire lock {self.path} after {self._max_retries} attempts")

    def release(self) -> None:
        if not self._held:
            return
        try:
            self._remove()
        except OSError as exc:
            LOGGER.warning("Failed to release lock file %s: %s", self.path, exc)
        self._held = False

    def force_release(self) -> bool:
        """Remove the marker regardless of owner. Returns True if one existed."""

        existed = os.path.exists(self.path)
        self._remove()
        self._held = False
        return existed

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
