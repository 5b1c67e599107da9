"""Exception hierarchy for the notification feed.

- FeedError: base for everything raised by notefeed
- TransportError: fetch or connection failure, surfaced to callers
- StreamDisconnected: live channel dropped, triggers reconcile
- MalformedRecord: a raw record cannot be normalized, dropped silently

All exceptions inherit from FeedError so callers can catch every
feed-related failure in a single except block when needed.
"""

from enum import Enum
from typing import Optional


class FeedError(Exception):
    """Base exception for all feed errors

    ```python
    try:
        await controller.initial_load()
    except FeedError as e:
        logger.error("feed_failed", error=str(e))
    ```
    """

    pass


class TransportErrorKind(str, Enum):
    """Sub-kinds of transport failures."""

    UNREACHABLE_HOST = "unreachable_host"
    UNAUTHORIZED = "unauthorized"


class TransportError(FeedError):
    """Network or authentication failure talking to the instance

    Raised when:
    - Host cannot be reached, times out or answers 5xx
    - Credentials are rejected (401/403)

    Retryable by user action; never swallowed by batch operations.
    """

    def __init__(
        self,
        message: str,
        kind: TransportErrorKind = TransportErrorKind.UNREACHABLE_HOST,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status = status

    @property
    def is_unauthorized(self) -> bool:
        return self.kind == TransportErrorKind.UNAUTHORIZED


class StreamErrorKind(str, Enum):
    """Failures reported by the live channel."""

    CANNOT_CONNECT = "cannot_connect"
    NO_CONNECTION = "no_connection"


class StreamDisconnected(FeedError):
    """Live channel dropped or could not be opened

    Signalled by the stream subscriber instead of silently stopping.
    The feed controller reacts by reconciling and re-subscribing.
    """

    def __init__(
        self,
        message: str = "stream disconnected",
        reason: StreamErrorKind = StreamErrorKind.NO_CONNECTION,
    ) -> None:
        super().__init__(message)
        self.reason = reason


class MalformedRecord(FeedError):
    """Raw record lacks a field required by its kind

    Raised when:
    - Actor or id is missing
    - Note (or the nested reply/renote) is missing where required
    - Reaction token is missing for a reaction
    - Kind is not one the feed understands

    Caught at the record boundary; one bad record never aborts a batch.
    """

    pass


class ConfigValidationError(FeedError):
    """Configuration validation failed"""

    pass
