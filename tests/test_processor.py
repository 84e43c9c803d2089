from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Iterable, Optional

from adapters.json_state_store import JsonStateStore
from conftest import NOW, make_item
from core.config import BackfillConfig, DeliveryConfig, FilterPolicy, SourceConfig, StateConfig
from core.delivery import DeliveryOutcome, DeliveryPipeline
from core.errors import SourceFetchError
from core.models import ClassifiedEntry, RawItem, RunState
from core.processor import RunOrchestrator
from core.rules_engine import FilterEngine


class FakeStore:
    def __init__(self, state: Optional[RunState] = None) -> None:
        self.state = state or RunState()
        self.saves = 0

    def load(self) -> RunState:
        return self.state

    def save(self, state: RunState) -> None:
        self.saves += 1
        self.state = state


class FakeSources:
    def __init__(self, items: dict[str, list[RawItem]], failing: Iterable[str] = ()) -> None:
        self._items = items
        self._failing = set(failing)

    def fetch(self, source: SourceConfig) -> Iterable[RawItem]:
        if source.name in self._failing:
            raise SourceFetchError(source.name, "HTTP 503")
        return iter(self._items.get(source.name, []))


class FakeNotifier:
    def __init__(self) -> None:
        self.sent: list[str] = []

    def render(self, entry: ClassifiedEntry) -> str:
        return entry.item.title

    async def deliver(self, payload: str) -> DeliveryOutcome:
        self.sent.append(payload)
        return DeliveryOutcome.success()


async def _no_sleep(_seconds: float) -> None:
    return None


def _source(name: str) -> SourceConfig:
    return SourceConfig(name=name, url=f"https://{name.lower()}.test/rss")


def _orchestrator(store, sources, names=("Alpha",), cap=30, dry_run=False, notifier=None):
    notifier = notifier or FakeNotifier()
    return RunOrchestrator(
        sources=[_source(name) for name in names],
        source_adapter=sources,
        state_store=store,
        filter_engine=FilterEngine(FilterPolicy(), clock=lambda: NOW),
        pipeline=DeliveryPipeline(notifier, DeliveryConfig(), sleep=_no_sleep),
        backfill_config=BackfillConfig(),
        per_run_cap=cap,
        dry_run=dry_run,
        clock=lambda: NOW,
    ), notifier


def _advisory(n: int, hours_ago: int = 1, source: str = "Alpha") -> RawItem:
    return make_item(
        f"Security advisory {n}",
        link=f"https://vendor.test/advisories/{n}",
        published_at=NOW - timedelta(hours=hours_ago),
        source_name=source,
    )


def test_second_run_skips_seen_entries() -> None:
    store = FakeStore()
    sources = FakeSources({"Alpha": [_advisory(1), _advisory(2)]})

    first, notifier = _orchestrator(store, sources)
    summary = asyncio.run(first.run())
    assert summary.delivered == 2
    assert set(store.state.seen) == {"https://vendor.test/advisories/1", "https://vendor.test/advisories/2"}
    assert store.state.last_run == NOW

    second, notifier = _orchestrator(store, sources)
    summary = asyncio.run(second.run())
    assert summary.delivered == 0
    assert summary.skipped_seen == 2
    assert notifier.sent == []


def test_backfilled_items_are_not_marked_seen() -> None:
    store = FakeStore()
    old = _advisory(9, hours_ago=24 * 10)
    orchestrator, notifier = _orchestrator(store, FakeSources({"Alpha": [old, _advisory(1)]}))

    summary = asyncio.run(orchestrator.run())

    assert summary.backfill_rejected == 1
    assert "https://vendor.test/advisories/9" not in store.state.seen
    assert notifier.sent == ["Security advisory 1"]


def test_failing_source_does_not_abort_run() -> None:
    store = FakeStore()
    sources = FakeSources({"Beta": [_advisory(3, source="Beta")]}, failing=["Alpha"])
    orchestrator, notifier = _orchestrator(store, sources, names=("Alpha", "Beta"))

    summary = asyncio.run(orchestrator.run())

    assert summary.source_errors == 1
    assert summary.delivered == 1
    assert store.state.feed_stats["Alpha"]["success"] is False
    assert "HTTP 503" in store.state.feed_stats["Alpha"]["error"]
    assert store.state.feed_stats["Beta"]["newEntries"] == 1


def test_cap_limits_deliveries_but_marks_all_accepted_seen() -> None:
    store = FakeStore()
    sources = FakeSources({"Alpha": [_advisory(n, hours_ago=n) for n in (1, 2, 3)]})
    orchestrator, notifier = _orchestrator(store, sources, cap=2)

    summary = asyncio.run(orchestrator.run())

    assert summary.delivered == 2
    assert summary.capped == 1
    assert len(store.state.seen) == 3
    # Oldest first within a source.
    assert notifier.sent == ["Security advisory 3", "Security advisory 2"]


def test_duplicate_across_sources_is_processed_once() -> None:
    store = FakeStore()
    shared = _advisory(5)
    sources = FakeSources({"Alpha": [shared], "Beta": [shared]})
    orchestrator, notifier = _orchestrator(store, sources, names=("Alpha", "Beta"))

    summary = asyncio.run(orchestrator.run())

    assert summary.processed == 1
    assert notifier.sent == ["Security advisory 5"]


def test_dry_run_does_not_persist() -> None:
    store = FakeStore()
    orchestrator, notifier = _orchestrator(store, FakeSources({"Alpha": [_advisory(1)]}), dry_run=True)

    summary = asyncio.run(orchestrator.run())

    assert summary.dry_run
    assert summary.delivered == 1
    assert store.saves == 0
    assert store.state.seen == {}


def test_overlapping_runs_keep_each_others_seen_entries(tmp_path) -> None:
    config = StateConfig(state_file=str(tmp_path / "state.json"), backup_dir=str(tmp_path / "backups"))
    first, first_notifier = _orchestrator(JsonStateStore(config), FakeSources({"Alpha": [_advisory(1)]}))
    second, second_notifier = _orchestrator(JsonStateStore(config), FakeSources({"Alpha": [_advisory(2)]}))

    async def both() -> None:
        await asyncio.gather(first.run(), second.run())

    asyncio.run(both())

    assert first_notifier.sent == ["Security advisory 1"]
    assert second_notifier.sent == ["Security advisory 2"]
    seen = JsonStateStore(config).load().seen
    assert set(seen) == {"https://vendor.test/advisories/1", "https://vendor.test/advisories/2"}
    assert not (tmp_path / "state.json.lock").exists()
