"""Telegram Bot API notification adapter.

Uses the Bot API for delivery so notifications can be routed via a bot chat.
"""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
from typing import Callable, Optional

from adapters.http_post import HttpResponse, post_json
from adapters.notification_formatting import format_notification
from core.delivery import DeliveryOutcome
from core.models import ClassifiedEntry

LOGGER = logging.getLogger(__name__)


def _retry_after_from_body(body: str) -> Optional[float]:
    try:
        data = json.loads(body)
    except ValueError:
        return None
    parameters = data.get("parameters") if isinstance(data, dict) else None
    if isinstance(parameters, dict) and isinstance(parameters.get("retry_after"), (int, float)):
        return float(parameters["retry_after"])
    return None


class TelegramBotNotifier:
    """Notifier adapter that sends messages via the Telegram Bot API."""

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        snippet_chars: int = 400,
        timeout_seconds: float = 10.0,
        poster: Optional[Callable[[str, dict, float], HttpResponse]] = None,
    ) -> None:
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._snippet_chars = snippet_chars
        self._timeout = timeout_seconds
        self._post = poster or post_json

    def _endpoint(self) -> str:
        # The Bot API endpoint is deterministic and derived from the token.
        return f"https://api.telegram.org/bot{self._bot_token}/sendMessage"

    def render(self, entry: ClassifiedEntry) -> dict:
        return {
            "chat_id": self._chat_id,
            "text": format_notification(entry, self._snippet_chars, mode="html"),
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }

    async def deliver(self, payload: dict) -> DeliveryOutcome:
        """Send the formatted notification via the Bot API."""

        try:
            response = await asyncio.to_thread(self._post, self._endpoint(), payload, self._timeout)
        except (urllib.error.URLError, OSError) as exc:
            LOGGER.warning("Bot API unreachable: %s", exc)
            return DeliveryOutcome.failure("network")

        if response.ok:
            return DeliveryOutcome.success()
        if response.status == 429:
            return DeliveryOutcome.rate_limited(_retry_after_from_body(response.body))
        LOGGER.warning("Bot API error %s: %s", response.status, response.body[:200])
        return DeliveryOutcome.failure(response.status)
