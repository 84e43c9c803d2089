from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import pytest

from core.models import RawItem

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_item(
    title: str = "Critical vulnerability in widget server",
    *,
    link: Optional[str] = "https://example.org/advisory/1",
    guid: Optional[str] = None,
    description: str = "A security advisory was published.",
    published_at: Optional[datetime] = NOW,
    source_name: str = "Test Feed",
) -> RawItem:
    return RawItem(
        title=title,
        link=link,
        guid=guid,
        description=description,
        published_at=published_at,
        source_name=source_name,
    )


@pytest.fixture
def now() -> datetime:
    return NOW
