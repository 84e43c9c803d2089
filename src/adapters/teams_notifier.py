"""Microsoft Teams incoming-webhook notification adapter."""

from __future__ import annotations

import asyncio
import logging
import urllib.error
from typing import Callable, Optional

from adapters.http_post import HttpResponse, header, parse_retry_after, post_json
from adapters.notification_formatting import build_adaptive_card
from core.delivery import DeliveryOutcome
from core.models import ClassifiedEntry

LOGGER = logging.getLogger(__name__)


class TeamsWebhookNotifier:
    """Notifier adapter that posts Adaptive Cards to a Teams webhook."""

    def __init__(
        self,
        webhook_url: str,
        snippet_chars: int = 280,
        timeout_seconds: float = 10.0,
        poster: Optional[Callable[[str, dict, float], HttpResponse]] = None,
    ) -> None:
        self._webhook_url = webhook_url
        self._snippet_chars = snippet_chars
        self._timeout = timeout_seconds
        self._post = poster or post_json

    def render(self, entry: ClassifiedEntry) -> dict:
        return build_adaptive_card(entry, self._snippet_chars)

    async def deliver(self, payload: dict) -> DeliveryOutcome:
        """Post one card; 429 becomes a rate-limited outcome."""

        try:
            response = await asyncio.to_thread(self._post, self._webhook_url, payload, self._timeout)
        except (urllib.error.URLError, OSError) as exc:
            LOGGER.warning("Teams webhook unreachable: %s", exc)
            return DeliveryOutcome.failure("network")

        if response.ok:
            return DeliveryOutcome.success()
        if response.status == 429:
            return DeliveryOutcome.rate_limited(parse_retry_after(header(response.headers, "Retry-After")))
        LOGGER.warning("Teams webhook error %s: %s", response.status, response.body[:200])
        return DeliveryOutcome.failure(response.status)
