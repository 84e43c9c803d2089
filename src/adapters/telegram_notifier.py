"""Telegram notification adapter for Saved Messages.

Formats a human-readable Markdown message and sends it to Saved Messages
through an authorized Telethon user session.
"""

from __future__ import annotations

from telethon import errors

from adapters.notification_formatting import format_notification
from core.delivery import DeliveryOutcome
from core.models import ClassifiedEntry


class TelegramSavedMessagesNotifier:
    """Notifier adapter that sends messages to the user's Saved Messages."""

    def __init__(self, client, snippet_chars: int = 400) -> None:
        self._client = client
        self._snippet_chars = snippet_chars

    def render(self, entry: ClassifiedEntry) -> str:
        return format_notification(entry, self._snippet_chars, mode="markdown")

    async def deliver(self, payload: str) -> DeliveryOutcome:
        """Send the formatted notification to Saved Messages."""

        try:
            await self._client.send_message("me", payload, parse_mode="Markdown", link_preview=False)
        except errors.FloodWaitError as exc:
            return DeliveryOutcome.rate_limited(float(exc.seconds))
        except errors.RPCError as exc:
            return DeliveryOutcome.failure(getattr(exc, "code", None) or type(exc).__name__)
        return DeliveryOutcome.success()
