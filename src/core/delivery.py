"""Resilient delivery of accepted entries (core domain).

Each entry is driven through a small state machine by a single loop:

    ATTEMPTING -> SUCCEEDED
    ATTEMPTING -> BACKOFF -> ATTEMPTING   (rate limited, attempts left)
    ATTEMPTING -> EXHAUSTED               (rate limited, no attempts left)
    ATTEMPTING -> FAILED                  (any other non-success)

Sleeping goes through an injectable coroutine so tests can run the whole
machine without waiting.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Optional, Sequence

from core.config import DeliveryConfig
from core.errors import DeliveryFailure, RateLimited
from core.models import ClassifiedEntry

if TYPE_CHECKING:
    from core.ports import NotifierPort

LOGGER = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    FAILURE = "failure"


@dataclass(frozen=True)
class DeliveryOutcome:
    """What a sink reports for a single attempt."""

    status: OutcomeStatus
    retry_after: Optional[float] = None
    code: Optional[str] = None

    @classmethod
    def success(cls) -> "DeliveryOutcome":
        return cls(OutcomeStatus.SUCCESS)

    @classmethod
    def rate_limited(cls, retry_after: Optional[float] = None) -> "DeliveryOutcome":
        return cls(OutcomeStatus.RATE_LIMITED, retry_after=retry_after)

    @classmethod
    def failure(cls, code: Any = None) -> "DeliveryOutcome":
        return cls(OutcomeStatus.FAILURE, code=None if code is None else str(code))


class DeliveryState(str, Enum):
    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


@dataclass(frozen=True)
class DeliveryResult:
    entry_id: str
    state: DeliveryState
    attempts: int
    error: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.state is DeliveryState.SUCCEEDED


@dataclass
class DeliveryReport:
    attempted: int = 0
    delivered: int = 0
    failed: int = 0
    results: List[DeliveryResult] = field(default_factory=list)


def backoff_delay(attempt: int, config: DeliveryConfig, retry_after: Optional[float] = None) -> float:
    """Seconds to wait after the ``attempt``-th rate-limited response.

    A server-provided interval always wins; otherwise the base interval
    doubles per attempt up to the configured cap.
    """

    if retry_after is not None and retry_after >= 0:
        return float(retry_after)
    delay = config.base_backoff_seconds * (2 ** max(attempt - 1, 0))
    return min(delay, config.max_backoff_seconds)


class DeliveryPipeline:
    """Delivers entries one at a time, in order, never aborting the run."""

    def __init__(self, notifier: NotifierPort, config: DeliveryConfig, sleep: Optional[Sleeper] = None) -> None:
        self._notifier = notifier
        self._config = config
        self._sleep = sleep or asyncio.sleep

    async def _attempt(self, payload: Any) -> DeliveryOutcome:
        """Run one bounded attempt, translating sink exceptions to outcomes."""

        try:
            return await asyncio.wait_for(
                self._notifier.deliver(payload),
                timeout=self._config.attempt_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return DeliveryOutcome.failure("timeout")
        except RateLimited as exc:
            return DeliveryOutcome.rate_limited(exc.retry_after)
        except DeliveryFailure as exc:
            return DeliveryOutcome.failure(exc.code or str(exc))

    async def deliver_one(self, entry: ClassifiedEntry) -> DeliveryResult:
        try:
            payload = self._notifier.render(entry)
        except Exception as exc:
            LOGGER.error("Could not render %s: %s", entry.entry_id, exc)
            return DeliveryResult(entry.entry_id, DeliveryState.FAILED, 0, f"render: {exc}")

        state = DeliveryState.ATTEMPTING
        attempts = 0
        error: Optional[str] = None
        wait = 0.0

        while state in (DeliveryState.ATTEMPTING, DeliveryState.BACKOFF):
            if state is DeliveryState.BACKOFF:
                LOGGER.info(
                    "Rate limited on %s, retrying in %.1fs (%s attempt(s) left)",
                    entry.entry_id,
                    wait,
                    self._config.max_attempts - attempts,
                )
                await self._sleep(wait)
                state = DeliveryState.ATTEMPTING
                continue

            attempts += 1
            try:
                outcome = await self._attempt(payload)
            except Exception as exc:
                outcome = DeliveryOutcome.failure(type(exc).__name__)
                LOGGER.warning("Sink raised while delivering %s: %s", entry.entry_id, exc)

            if outcome.status is OutcomeStatus.SUCCESS:
                state = DeliveryState.SUCCEEDED
            elif outcome.status is OutcomeStatus.RATE_LIMITED:
                if attempts >= self._config.max_attempts:
                    state = DeliveryState.EXHAUSTED
                    error = "rate limited, retries exhausted"
                else:
                    state = DeliveryState.BACKOFF
                    wait = backoff_delay(attempts, self._config, outcome.retry_after)
            else:
                state = DeliveryState.FAILED
                error = f"sink failure ({outcome.code or 'unknown'})"

        return DeliveryResult(entry.entry_id, state, attempts, error)

    async def run(self, entries: Sequence[ClassifiedEntry]) -> DeliveryReport:
        """Deliver ``entries`` in order and return the counts."""

        report = DeliveryReport()
        for index, entry in enumerate(entries):
            report.attempted += 1
            result = await self.deliver_one(entry)
            report.results.append(result)

            if result.delivered:
                report.delivered += 1
                LOGGER.info("Delivered: %s (%s)", entry.item.title, entry.item.source_name)
                if index < len(entries) - 1:
                    await self._sleep(self._config.delay_for(entry.priority))
            else:
                report.failed += 1
                LOGGER.error(
                    "Delivery failed for %r after %s attempt(s): %s",
                    entry.item.title,
                    result.attempts,
                    result.error,
                )
        return report
