from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional

from pydantic import BaseModel

from notefeed.utils.exceptions import StreamErrorKind

MAIN_CHANNEL = "main"


class StreamFrame(BaseModel):
    """One delivery from the live channel.

    Mirrors the (raw, channel, kind hint, error) tuple of the streaming
    API: `error` is populated instead of `body` on failure.
    """

    channel: Optional[str] = None
    event_type: Optional[str] = None
    body: Optional[Any] = None
    error: Optional[StreamErrorKind] = None


class NotificationSource(ABC):
    """Abstract base class for notification sources

    Implementations provide the paginated fetch and the subscribable
    event channel the feed is built on.
    """

    @abstractmethod
    async def fetch_notifications(
        self, owner: str, limit: int, until_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Fetch one page of notifications, newest first

        Args:
            owner: Account whose credentials are used
            limit: Page size
            until_id: Only return notifications strictly older than this id

        Returns:
            Raw notification objects

        Raises:
            TransportError: If the host is unreachable or rejects the credentials
        """
        pass

    @abstractmethod
    def stream(self, owner: str) -> AsyncIterator[StreamFrame]:
        """Open the main channel for `owner` and yield frames in arrival order

        A failure is yielded as a frame carrying `error`, after which the
        iterator ends.
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Source name for logging and identification"""
        pass
