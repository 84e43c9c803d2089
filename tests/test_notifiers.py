from __future__ import annotations

import asyncio
import json
import urllib.error

from adapters.http_post import HttpResponse, parse_retry_after
from adapters.teams_notifier import TeamsWebhookNotifier
from adapters.telegram_bot_notifier import TelegramBotNotifier
from core.delivery import OutcomeStatus


class FakePoster:
    def __init__(self, response=None, error=None) -> None:
        self.response = response
        self.error = error
        self.calls: list[tuple[str, dict, float]] = []

    def __call__(self, url: str, payload: dict, timeout: float) -> HttpResponse:
        self.calls.append((url, payload, timeout))
        if self.error is not None:
            raise self.error
        return self.response


def test_teams_success() -> None:
    poster = FakePoster(HttpResponse(200, "1"))
    notifier = TeamsWebhookNotifier("https://hook.test/abc", poster=poster)

    outcome = asyncio.run(notifier.deliver({"type": "message"}))

    assert outcome.status is OutcomeStatus.SUCCESS
    assert poster.calls[0][0] == "https://hook.test/abc"


def test_teams_rate_limit_reads_retry_after() -> None:
    poster = FakePoster(HttpResponse(429, "", {"retry-after": "7"}))
    notifier = TeamsWebhookNotifier("https://hook.test/abc", poster=poster)

    outcome = asyncio.run(notifier.deliver({}))

    assert outcome.status is OutcomeStatus.RATE_LIMITED
    assert outcome.retry_after == 7.0


def test_teams_server_error_and_network_error() -> None:
    failing = TeamsWebhookNotifier("https://hook.test/abc", poster=FakePoster(HttpResponse(500, "oops")))
    offline = TeamsWebhookNotifier(
        "https://hook.test/abc", poster=FakePoster(error=urllib.error.URLError("down"))
    )

    assert asyncio.run(failing.deliver({})).code == "500"
    assert asyncio.run(offline.deliver({})).code == "network"


def test_bot_rate_limit_reads_body() -> None:
    body = json.dumps({"ok": False, "parameters": {"retry_after": 3}})
    poster = FakePoster(HttpResponse(429, body))
    notifier = TelegramBotNotifier("TOKEN", "42", poster=poster)

    outcome = asyncio.run(notifier.deliver({"chat_id": "42"}))

    assert outcome.status is OutcomeStatus.RATE_LIMITED
    assert outcome.retry_after == 3.0
    assert poster.calls[0][0] == "https://api.telegram.org/botTOKEN/sendMessage"


def test_parse_retry_after_variants() -> None:
    assert parse_retry_after("2.5") == 2.5
    assert parse_retry_after(None) is None
    assert parse_retry_after("Mon, 01 Jan 2001 00:00:00 GMT") == 0.0
    assert parse_retry_after("soon") is None
