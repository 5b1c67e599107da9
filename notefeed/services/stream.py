"""Stream subscriber.

Wraps a source's live channel as a lazy, unbounded, cancellable sequence
of StreamEvent records in arrival order. A dropped or refused connection
surfaces as StreamDisconnected; the subscriber never reconnects on its
own, that is the feed controller's job.

Usage:
    subscriber = StreamSubscriber(client)
    async with subscriber.subscribe("alice") as subscription:
        async for event in subscription:
            ...
"""

import asyncio
from typing import AsyncIterator, Optional

import structlog

from notefeed.models.notification import StreamEvent, parse_raw_record
from notefeed.observability.metrics import STREAM_DISCONNECTS
from notefeed.services.providers.base import (
    MAIN_CHANNEL,
    NotificationSource,
    StreamFrame,
)
from notefeed.utils.exceptions import StreamDisconnected, StreamErrorKind

logger = structlog.get_logger()


class StreamSubscription:
    """Handle on one live subscription.

    Iterating yields StreamEvent records one at a time; concurrent
    `__anext__` calls are serialized so two events are never handled
    in overlap. `close()` ends iteration without a disconnect signal.
    """

    def __init__(self, frames: AsyncIterator[StreamFrame], owner: str) -> None:
        self.owner = owner
        self._frames = frames
        self._closed = False
        self._released = False
        self._lock = asyncio.Lock()
        self.events_received = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "StreamSubscription":
        return self

    async def __anext__(self) -> StreamEvent:
        async with self._lock:
            while True:
                if self._closed:
                    raise StopAsyncIteration

                try:
                    frame = await self._frames.__anext__()
                except StopAsyncIteration:
                    if self._closed:
                        raise
                    raise self._disconnected(StreamErrorKind.NO_CONNECTION)

                if frame.error is not None:
                    raise self._disconnected(frame.error)

                event = self._to_event(frame)
                if event is not None:
                    self.events_received += 1
                    return event

    def _to_event(self, frame: StreamFrame) -> Optional[StreamEvent]:
        if frame.channel != MAIN_CHANNEL:
            logger.debug("stream_frame_other_channel", channel=frame.channel)
            return None
        if not frame.event_type or not isinstance(frame.body, dict):
            logger.debug("stream_frame_without_body", event_type=frame.event_type)
            return None
        return parse_raw_record(
            {"event_type": frame.event_type, "body": frame.body, "channel": frame.channel},
            source="stream",
        )

    def _disconnected(self, reason: StreamErrorKind) -> StreamDisconnected:
        self._closed = True
        STREAM_DISCONNECTS.labels(reason=reason.value).inc()
        logger.warning(
            "stream_disconnected",
            owner=self.owner,
            reason=reason.value,
            events_received=self.events_received,
        )
        return StreamDisconnected(f"stream for {self.owner} lost", reason=reason)

    async def close(self) -> None:
        """Stop the subscription and release the underlying connection."""
        if self._released:
            return
        self._closed = True
        self._released = True
        aclose = getattr(self._frames, "aclose", None)
        if aclose is not None:
            try:
                await aclose()
            except RuntimeError:
                # generator still running in another task; cancelling it closes it
                logger.debug("stream_close_deferred", owner=self.owner)
        logger.info("stream_closed", owner=self.owner)

    async def __aenter__(self) -> "StreamSubscription":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class StreamSubscriber:
    """Opens live subscriptions on a notification source."""

    def __init__(self, source: NotificationSource) -> None:
        self.source = source

    def subscribe(self, owner: str) -> StreamSubscription:
        logger.info("stream_subscribing", owner=owner, source=self.source.name)
        return StreamSubscription(self.source.stream(owner), owner)
