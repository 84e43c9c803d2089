"""Feed source adapters and their registry.

Adapters are looked up by the ``parser`` id in each source's config. The
registry is a plain mapping, so an unknown id is caught by config
validation instead of at fetch time.
"""

from __future__ import annotations

import logging
import re
import urllib.error
import urllib.request
from dataclasses import replace
from typing import Callable, Iterator, Optional

import feedparser

from adapters.feed_mapper import build_raw_item
from core.config import SourceConfig
from core.errors import SourceFetchError
from core.models import RawItem

LOGGER = logging.getLogger(__name__)

USER_AGENT = "threatscope/1.0 (+feed watcher)"

Downloader = Callable[[str, float], bytes]


def _http_get(url: str, timeout: float) -> bytes:
    request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
    with urllib.request.urlopen(request, timeout=timeout) as response:
        return response.read()


class RssSourceAdapter:
    """Downloads an RSS/Atom feed and yields RawItems in feed order."""

    name = "rss"

    def __init__(self, timeout_seconds: float = 20.0, downloader: Optional[Downloader] = None) -> None:
        self._timeout = timeout_seconds
        self._download = downloader or _http_get

    def normalize(self, item: RawItem) -> RawItem:
        return item

    def fetch(self, source: SourceConfig) -> Iterator[RawItem]:
        try:
            body = self._download(source.url, self._timeout)
        except (urllib.error.URLError, OSError, ValueError) as exc:
            raise SourceFetchError(source.name, f"download failed: {exc}") from exc

        parsed = feedparser.parse(body)
        if parsed.bozo and not parsed.entries:
            raise SourceFetchError(source.name, f"unparseable feed: {parsed.get('bozo_exception')}")
        if parsed.bozo:
            LOGGER.warning("Feed %s parsed with errors: %s", source.name, parsed.get("bozo_exception"))

        return (self.normalize(build_raw_item(entry, source.name)) for entry in parsed.entries)


def _collapse(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


class MsrcSourceAdapter(RssSourceAdapter):
    """Microsoft Security Response Center feed: tidy multi-line titles."""

    name = "msrc"

    def normalize(self, item: RawItem) -> RawItem:
        return replace(item, title=_collapse(item.title), description=item.description or "")


class CisaSourceAdapter(RssSourceAdapter):
    """CISA advisories ship HTML descriptions; reduce them to text."""

    name = "cisa"

    def normalize(self, item: RawItem) -> RawItem:
        description = _collapse(re.sub(r"<[^>]*>", " ", item.description or ""))
        return replace(item, title=_collapse(item.title), description=description)


SOURCE_ADAPTERS: dict[str, type[RssSourceAdapter]] = {
    RssSourceAdapter.name: RssSourceAdapter,
    MsrcSourceAdapter.name: MsrcSourceAdapter,
    CisaSourceAdapter.name: CisaSourceAdapter,
    # Name used by older feed files.
    "defaultParser": RssSourceAdapter,
}


class SourceRegistry:
    """Builds one adapter instance per adapter id and reuses it."""

    def __init__(self, timeout_seconds: float = 20.0, downloader: Optional[Downloader] = None) -> None:
        self._timeout = timeout_seconds
        self._downloader = downloader
        self._instances: dict[str, RssSourceAdapter] = {}

    def adapter_for(self, source: SourceConfig) -> RssSourceAdapter:
        adapter_cls = SOURCE_ADAPTERS.get(source.parser)
        if adapter_cls is None:
            raise SourceFetchError(source.name, f"unknown parser '{source.parser}'")
        if source.parser not in self._instances:
            self._instances[source.parser] = adapter_cls(self._timeout, self._downloader)
        return self._instances[source.parser]

    def fetch(self, source: SourceConfig) -> Iterator[RawItem]:
        return self.adapter_for(source).fetch(source)
