"""Run orchestration.

One invocation follows a strict order:
1) Load RunState under the state lock (fatal if the lock is unavailable)
2) Fetch every enabled source in config order; a failing source is recorded
   and skipped
3) Identify, dedupe (intra-run and against ``seen``) and apply the
   backfill guard
4) Classify and filter
5) Deliver the accepted entries, capped per run
6) Record accepted entries as seen, prune, and persist the new state
7) Report the run summary

Everything that changes during a run lives on a RunContext, so nothing is
shared between runs except the state file itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from core.backfill import BackfillGuard
from core.config import BackfillConfig, SourceConfig
from core.dedup import compute_entry_id, prune_seen
from core.delivery import DeliveryPipeline
from core.errors import SourceFetchError
from core.models import ClassifiedEntry, FilterDecision, RawItem, RunState, RunSummary, SeenRecord
from core.ports import SourceAdapterPort, StatePort
from core.rules_engine import FilterEngine, build_filter_stats

LOGGER = logging.getLogger(__name__)


@dataclass
class RunContext:
    """Per-run mutable state threaded through every stage."""

    state: RunState
    started_at: datetime
    summary: RunSummary = field(default_factory=RunSummary)
    seen_this_run: set[str] = field(default_factory=set)
    decisions: List[FilterDecision] = field(default_factory=list)
    accepted: List[ClassifiedEntry] = field(default_factory=list)


class RunOrchestrator:
    """Composes state, sources, filtering and delivery for one run."""

    def __init__(
        self,
        sources: Sequence[SourceConfig],
        source_adapter: SourceAdapterPort,
        state_store: StatePort,
        filter_engine: FilterEngine,
        pipeline: DeliveryPipeline,
        backfill_config: BackfillConfig,
        per_run_cap: int,
        seen_limit: int = 1000,
        dry_run: bool = False,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._sources = [source for source in sources if source.enabled]
        self._adapter = source_adapter
        self._store = state_store
        self._filter = filter_engine
        self._pipeline = pipeline
        self._backfill = backfill_config
        self._cap = per_run_cap
        self._seen_limit = seen_limit
        self._dry_run = dry_run
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def run(self) -> RunSummary:
        """Execute one full run and return its summary."""

        state = self._store.load()
        context = RunContext(state=state, started_at=self._clock())
        context.summary.dry_run = self._dry_run
        LOGGER.info(
            "Loaded state: %s entries tracked, last run %s",
            len(state.seen),
            state.last_run.isoformat() if state.last_run else "never",
        )

        guard = BackfillGuard(self._backfill, state.last_run, context.started_at)
        for source in self._sources:
            self._process_source(context, source, guard)

        context.state.filter_stats = build_filter_stats(
            len(context.decisions),
            context.decisions,
            context.started_at,
        )

        to_deliver = context.accepted[: self._cap] if self._cap >= 0 else list(context.accepted)
        context.summary.capped = len(context.accepted) - len(to_deliver)
        if context.summary.capped:
            LOGGER.warning(
                "Post cap reached (%s). Skipping %s remaining entries this run.",
                self._cap,
                context.summary.capped,
            )

        report = await self._pipeline.run(to_deliver)
        context.summary.delivered = report.delivered
        context.summary.failed = report.failed

        try:
            if self._dry_run:
                LOGGER.info("Dry run: state not persisted")
            else:
                self._record_seen(context)
                self._store.save(context.state)
        finally:
            self._log_summary(context.summary)
        return context.summary

    def _process_source(self, context: RunContext, source: SourceConfig, guard: BackfillGuard) -> None:
        fetched_at = self._clock().isoformat()
        try:
            items = list(self._adapter.fetch(source))
        except Exception as exc:
            error = exc if isinstance(exc, SourceFetchError) else SourceFetchError(source.name, str(exc))
            LOGGER.error("Failed to process feed %r: %s", source.name, error)
            context.summary.source_errors += 1
            context.state.feed_stats[source.name] = {
                "success": False,
                "error": str(error),
                "lastFetch": fetched_at,
            }
            return

        new_count = 0
        # Deliver oldest first within a source; undated items go last.
        for item in sorted(items, key=lambda i: i.published_at or context.started_at):
            if self._handle_item(context, source, guard, item):
                new_count += 1

        context.state.feed_stats[source.name] = {
            "success": True,
            "entries": len(items),
            "newEntries": new_count,
            "lastFetch": fetched_at,
        }
        LOGGER.info("Feed %r: %s total, %s new", source.name, len(items), new_count)

    def _handle_item(
        self,
        context: RunContext,
        source: SourceConfig,
        guard: BackfillGuard,
        item: RawItem,
    ) -> bool:
        """Run one item up to acceptance. Returns True if it was new."""

        entry_id = compute_entry_id(item)
        if entry_id in context.seen_this_run:
            return False
        context.seen_this_run.add(entry_id)

        context.summary.processed += 1
        if entry_id in context.state.seen:
            context.summary.skipped_seen += 1
            return False

        if not guard.allows(item):
            context.summary.backfill_rejected += 1
            return False

        decision = self._filter.evaluate(item, entry_id, source)
        context.decisions.append(decision)
        if decision.accepted and decision.entry is not None:
            context.summary.accepted += 1
            context.accepted.append(decision.entry)
        else:
            context.summary.filtered += 1
        return True

    def _record_seen(self, context: RunContext) -> None:
        for entry in context.accepted:
            context.state.seen[entry.entry_id] = SeenRecord(
                timestamp=context.started_at,
                source=entry.item.source_name,
                title=entry.item.title,
            )
        context.state.seen = prune_seen(context.state.seen, self._seen_limit)
        context.state.last_run = context.started_at

    @staticmethod
    def _log_summary(summary: RunSummary) -> None:
        LOGGER.info(
            "Run complete%s: processed=%s, delivered=%s, failed=%s, filtered=%s, "
            "seen=%s, backfill_rejected=%s, capped=%s, source_errors=%s",
            " (dry run)" if summary.dry_run else "",
            summary.processed,
            summary.delivered,
            summary.failed,
            summary.filtered,
            summary.skipped_seen,
            summary.backfill_rejected,
            summary.capped,
            summary.source_errors,
        )
