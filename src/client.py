"""Telegram client factory for threatscope.

Only the saved_messages delivery method needs a user session. The session
must already be authorized: a scheduled run has no terminal to log in from.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from telethon import TelegramClient

from core.errors import ConfigError


def build_client() -> TelegramClient:
    """Create a Telethon client from environment variables.

    We read API_ID/API_HASH via python-dotenv to keep secrets out of the repo.
    The session name defaults to "threatscope" to reuse a local .session file.
    """

    load_dotenv()

    api_id = os.getenv("API_ID")
    api_hash = os.getenv("API_HASH")
    session_name = os.getenv("SESSION_NAME", "threatscope")

    # Fail fast on missing credentials to avoid an ambiguous login prompt.
    if not api_id or not api_hash:
        raise ConfigError("Missing API_ID or API_HASH in environment")

    logging.getLogger(__name__).info("Initializing Telegram client")

    return TelegramClient(session_name, int(api_id), api_hash)


async def connect_authorized(client: TelegramClient) -> TelegramClient:
    """Connect and make sure the stored session is still logged in."""

    await client.connect()
    if not await client.is_user_authorized():
        await client.disconnect()
        raise ConfigError("Telegram session is not authorized; log in once interactively first")
    return client
