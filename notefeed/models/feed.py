"""Feed state models.

Defines the controller state machine enums, the snapshot pushed to
consumers, and per-feed ingestion statistics.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List

from pydantic import BaseModel, Field

from notefeed.models.notification import NotificationItem


class FeedState(str, Enum):
    EMPTY = "empty"
    LOADING = "loading"
    READY = "ready"


class PagingState(str, Enum):
    IDLE = "idle"
    LOADING_OLDER = "loading_older"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class FeedStats(BaseModel):
    """Statistics for one owner's feed"""

    records_received: int = 0
    items_inserted: int = 0
    duplicates_replaced: int = 0
    records_dropped: int = 0
    pages_fetched: int = 0
    reconciles: int = 0


class FeedSnapshot(BaseModel):
    """Ordered list delivered to consumers whenever it changes."""

    owner: str
    items: List[NotificationItem] = Field(default_factory=list)
    state: FeedState = FeedState.EMPTY
    connection: ConnectionState = ConnectionState.DISCONNECTED
    exhausted: bool = False
    taken_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def count(self) -> int:
        return len(self.items)
