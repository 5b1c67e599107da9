"""Notification sources.

Usage:
    from notefeed.services.providers import MisskeyClient

    client = MisskeyClient(config.accounts)
    page = await client.fetch_notifications("alice", limit=40)
"""

from notefeed.services.providers.base import (
    MAIN_CHANNEL,
    NotificationSource,
    StreamFrame,
)
from notefeed.services.providers.misskey import MisskeyClient

__all__ = ["MAIN_CHANNEL", "NotificationSource", "StreamFrame", "MisskeyClient"]
