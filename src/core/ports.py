"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for state, feed sources and notification
adapters so that the core can be reused with different backends.
"""

from __future__ import annotations

from typing import Any, Iterable, Protocol

from core.config import SourceConfig
from core.delivery import DeliveryOutcome
from core.models import ClassifiedEntry, RawItem, RunState


class StatePort(Protocol):
    """Locked load/save of the persisted RunState."""

    def load(self) -> RunState:
        ...

    def save(self, state: RunState) -> None:
        ...


class SourceAdapterPort(Protocol):
    """Yields raw items for one configured source."""

    def fetch(self, source: SourceConfig) -> Iterable[RawItem]:
        ...


class NotifierPort(Protocol):
    """Notification operations required by the delivery pipeline."""

    def render(self, entry: ClassifiedEntry) -> Any:
        ...

    async def deliver(self, payload: Any) -> DeliveryOutcome:
        ...
