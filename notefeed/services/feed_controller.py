"""Notification feed controller.

Owns one account's in-memory, newest-first notification list and keeps it
in sync with the instance:

1. initial_load  - newest page via the pagination fetcher, then opens the stream
2. load_older    - page older than the current oldest item, appended at the tail
3. stream events - normalized, deduplicated and inserted at the head
4. reconcile     - after a disconnect, fetch what was missed and re-subscribe

Every record goes through the same normalize -> deduplicate pipeline. All
list mutations for an owner are serialized by one asyncio.Lock; network
calls happen outside it. A generation counter keeps late results from a
torn-down or reloaded feed out of the list.
"""

import asyncio
import time
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set, TypeVar

import structlog

from notefeed.models.config import FeedConfig
from notefeed.models.feed import (
    ConnectionState,
    FeedSnapshot,
    FeedState,
    FeedStats,
    PagingState,
)
from notefeed.models.notification import FetchedNotification, NotificationItem, RawRecord
from notefeed.observability.context import correlation_id_context, operation_id
from notefeed.observability.metrics import FEED_SIZE, RECONCILE_ATTEMPTS
from notefeed.services.deduplicator import NotificationDeduplicator, NotificationIndex
from notefeed.services.normalizer import NotificationNormalizer
from notefeed.services.pagination import PaginationFetcher
from notefeed.services.stream import StreamSubscriber, StreamSubscription
from notefeed.utils.exceptions import StreamDisconnected, TransportError
from notefeed.utils.retry import RetryHandler

logger = structlog.get_logger()

T = TypeVar("T")

FeedListener = Callable[[FeedSnapshot], None]
ConnectionListener = Callable[[ConnectionState], None]


class NotificationFeedController:
    """Feed state machine for one owner account.

    States: EMPTY -> LOADING -> READY; within READY paging is IDLE or
    LOADING_OLDER; the stream connection is tracked separately.

    Attributes:
        owner: Local account id the feed belongs to.
        state: FeedState.
        paging: PagingState.
        connection: ConnectionState.
        exhausted: True once a backward page came back empty.
        stats: FeedStats counters.
    """

    def __init__(
        self,
        owner: str,
        fetcher: PaginationFetcher,
        subscriber: StreamSubscriber,
        config: Optional[FeedConfig] = None,
        normalizer: Optional[NotificationNormalizer] = None,
        deduplicator: Optional[NotificationDeduplicator] = None,
        retry_handler: Optional[RetryHandler] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.owner = owner
        self.fetcher = fetcher
        self.subscriber = subscriber
        self.config = config or FeedConfig()
        self.normalizer = normalizer or NotificationNormalizer()
        self.deduplicator = deduplicator or NotificationDeduplicator()
        self.retry_handler = retry_handler or RetryHandler(self.config.reconcile_retry)
        self._clock = clock

        self.state = FeedState.EMPTY
        self.paging = PagingState.IDLE
        self.connection = ConnectionState.DISCONNECTED
        self.exhausted = False
        self.stats = FeedStats()

        self._items: List[NotificationItem] = []
        self._index = NotificationIndex()
        self._lock = asyncio.Lock()
        self._alive = True
        self._generation = 0
        self._consecutive_disconnects = 0
        self._stream_started_at: Optional[float] = None
        self._older_cursor: Optional[str] = None

        self._inflight: Set["asyncio.Future"] = set()
        self._stream_task: Optional[asyncio.Task] = None
        self._subscription: Optional[StreamSubscription] = None

        self._listeners: List[FeedListener] = []
        self._connection_listeners: List[ConnectionListener] = []
        self._log = logger.bind(owner=owner)

    # ------------------------------------------------------------------
    # Consumer surface
    # ------------------------------------------------------------------

    @property
    def items(self) -> List[NotificationItem]:
        """Copy of the current list, newest first."""
        return list(self._items)

    @property
    def is_alive(self) -> bool:
        return self._alive

    def snapshot(self) -> FeedSnapshot:
        return FeedSnapshot(
            owner=self.owner,
            items=list(self._items),
            state=self.state,
            connection=self.connection,
            exhausted=self.exhausted,
        )

    def add_listener(self, listener: FeedListener) -> Callable[[], None]:
        """Register a callback receiving a snapshot on every list change.

        Returns:
            Function that unregisters the listener.
        """
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def add_connection_listener(
        self, listener: ConnectionListener
    ) -> Callable[[], None]:
        self._connection_listeners.append(listener)
        return lambda: self._connection_listeners.remove(listener)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def initial_load(self) -> int:
        """Load the newest page, publish it and open the stream.

        Returns:
            Number of items in the feed after loading.

        Raises:
            TransportError: The fetch failed; the feed stays EMPTY.
        """
        if not self._alive or self.state != FeedState.EMPTY:
            self._log.debug("initial_load_skipped", state=self.state.value)
            return len(self._items)

        generation = self._generation
        self.state = FeedState.LOADING

        with correlation_id_context(operation_id("initial_load", self.owner)):
            self._log.info("initial_load_started", limit=self.config.page_limit)
            try:
                page = await self._fetch(
                    self.fetcher.fetch_older_page(
                        None, self.config.page_limit, self.owner
                    )
                )
            except TransportError as e:
                if self._is_current(generation):
                    self.state = FeedState.EMPTY
                self._log.error(
                    "initial_load_failed", error=str(e), kind=e.kind.value
                )
                raise
            except asyncio.CancelledError:
                if self._is_current(generation):
                    self.state = FeedState.EMPTY
                raise

            if page is None:
                return 0

            async with self._lock:
                if not self._is_current(generation):
                    return 0
                added = self._append(page.records)
                self._older_cursor = page.next_cursor
                self.state = FeedState.READY
                self.stats.pages_fetched += 1

            self._log.info("initial_load_completed", added=added)

        self._notify()
        self._start_stream()
        return len(self._items)

    async def load_older(self) -> int:
        """Append the page older than the oldest record fetched so far.

        No-op while another backward load is in flight, when the feed is
        empty, or once a previous page came back empty.

        Returns:
            Number of items appended.

        Raises:
            TransportError: The fetch failed; the list is unchanged.
        """
        if (
            not self._alive
            or self.state != FeedState.READY
            or self.paging == PagingState.LOADING_OLDER
            or self.exhausted
            or not self._items
        ):
            self._log.debug(
                "load_older_skipped",
                paging=self.paging.value,
                exhausted=self.exhausted,
                count=len(self._items),
            )
            return 0

        # Set before the first await so a concurrent call sees it
        self.paging = PagingState.LOADING_OLDER
        generation = self._generation
        # Oldest raw id fetched so far, including records that were dropped
        cursor = self._older_cursor or self._items[-1].id

        try:
            with correlation_id_context(operation_id("load_older", self.owner)):
                page = await self._fetch(
                    self.fetcher.fetch_older_page(
                        cursor, self.config.page_limit, self.owner
                    )
                )
                if page is None:
                    return 0

                async with self._lock:
                    if not self._is_current(generation):
                        return 0
                    self.stats.pages_fetched += 1
                    if page.next_cursor is None:
                        self.exhausted = True
                        added = 0
                    else:
                        self._older_cursor = page.next_cursor
                        added = self._append(page.records)

                self._log.info(
                    "load_older_completed",
                    cursor=cursor,
                    added=added,
                    exhausted=self.exhausted,
                )
        except TransportError as e:
            self._log.error("load_older_failed", cursor=cursor, error=str(e))
            raise
        finally:
            if self._is_current(generation):
                self.paging = PagingState.IDLE

        self._notify()
        return added

    async def on_stream_event(self, raw: RawRecord) -> bool:
        """Insert a live record at the head of the list.

        Returns:
            True when the list changed.
        """
        self.stats.records_received += 1
        item = self.normalizer.normalize(raw, owner=self.owner)
        if item is None:
            self.stats.records_dropped += 1
            return False

        async with self._lock:
            if not self._alive:
                return False
            self._insert_head(item, live=True)
            self._consecutive_disconnects = 0

        self._notify()
        return True

    async def on_stream_disconnected(
        self, error: Optional[StreamDisconnected] = None
    ) -> bool:
        """Reconcile after a disconnect, then re-subscribe.

        Streams that drop within `stream_stable_seconds` of opening count
        as consecutive disconnects and back off exponentially; once the
        retry budget is spent the connection stays DISCONNECTED until
        `retry_connection()` is called. A stream that stayed up longer
        starts the count over.

        Returns:
            True when the stream was re-opened.
        """
        if not self._alive:
            return False

        generation = self._generation
        if self._stream_was_stable():
            self._consecutive_disconnects = 0
        self._stream_started_at = None

        self._set_connection(ConnectionState.DISCONNECTED)
        await self._cancel_stream_task()
        await self._close_subscription()

        self._consecutive_disconnects += 1
        max_attempts = self.config.reconcile_retry.max_attempts
        self._log.warning(
            "stream_reconcile_scheduled",
            reason=error.reason.value if error else "manual",
            consecutive=self._consecutive_disconnects,
        )

        if self._consecutive_disconnects > max_attempts:
            RECONCILE_ATTEMPTS.labels(outcome="exhausted").inc()
            self._log.error(
                "stream_reconnect_exhausted", attempts=self._consecutive_disconnects
            )
            return False

        if self._consecutive_disconnects > 1:
            # Stream keeps dropping right after re-subscribing
            await self.retry_handler.wait(self._consecutive_disconnects - 2)

        with correlation_id_context(operation_id("reconcile", self.owner)):
            try:
                await self.retry_handler.execute(
                    self._reconcile_once,
                    retryable_exceptions={TransportError},
                    on_retry=lambda *_: RECONCILE_ATTEMPTS.labels(
                        outcome="failed"
                    ).inc(),
                )
            except TransportError as e:
                RECONCILE_ATTEMPTS.labels(outcome="exhausted").inc()
                self._log.error("reconcile_exhausted", error=str(e))
                return False

        if not self._is_current(generation):
            return False

        RECONCILE_ATTEMPTS.labels(outcome="success").inc()
        self.stats.reconciles += 1
        self._start_stream()
        return True

    async def retry_connection(self) -> bool:
        """Manual retry after reconnects were exhausted."""
        self._consecutive_disconnects = 0
        return await self.on_stream_disconnected()

    async def reload(self) -> int:
        """Drop everything and load from the newest page again."""
        await self._stop_io()
        async with self._lock:
            self._generation += 1
            self._items.clear()
            self._index.clear()
            self.exhausted = False
            self.state = FeedState.EMPTY
            self.paging = PagingState.IDLE
            self._consecutive_disconnects = 0
            self._stream_started_at = None
            self._older_cursor = None
        self._log.info("feed_reloading")
        return await self.initial_load()

    async def close(self) -> None:
        """Tear down: cancel in-flight fetches and close the stream."""
        if not self._alive:
            return
        self._alive = False
        self._generation += 1
        await self._stop_io()
        self._set_connection(ConnectionState.DISCONNECTED)
        FEED_SIZE.labels(owner=self.owner).set(0)
        self._log.info("feed_closed", count=len(self._items))

    # ------------------------------------------------------------------
    # List mutation (callers hold self._lock)
    # ------------------------------------------------------------------

    def _append(self, records: Iterable[FetchedNotification]) -> int:
        added = 0
        for raw in records:
            self.stats.records_received += 1
            item = self.normalizer.normalize(raw, owner=self.owner)
            if item is None:
                self.stats.records_dropped += 1
                continue

            accept, superseded = self.deduplicator.resolve(item, self._index)
            if not accept:
                continue
            self._remove(superseded)
            self._items.append(item)
            self._index.add(item)
            self.stats.items_inserted += 1
            added += 1
        return added

    def _insert_head(self, item: NotificationItem, live: bool) -> bool:
        accept, superseded = self.deduplicator.resolve(item, self._index, live=live)
        if not accept:
            return False
        self._remove(superseded)
        self._items.insert(0, item)
        self._index.add(item)
        self.stats.items_inserted += 1
        return True

    def _remove(self, superseded: List[NotificationItem]) -> None:
        if not superseded:
            return
        ids = {item.id for item in superseded}
        self._items = [item for item in self._items if item.id not in ids]
        for item_id in ids:
            self._index.remove(item_id)
        self.stats.duplicates_replaced += len(ids)

    # ------------------------------------------------------------------
    # Stream and reconcile
    # ------------------------------------------------------------------

    async def _reconcile_once(self) -> int:
        generation = self._generation
        newest_id = self._items[0].id if self._items else None

        records = await self._fetch(
            self.fetcher.fetch_newer_than(newest_id, self.config.page_limit, self.owner)
        )
        if records is None:
            return 0

        added = 0
        async with self._lock:
            if not self._is_current(generation):
                return 0
            # Oldest first so the head ends up newest-first
            for raw in reversed(records):
                self.stats.records_received += 1
                item = self.normalizer.normalize(raw, owner=self.owner)
                if item is None:
                    self.stats.records_dropped += 1
                    continue
                if self._insert_head(item, live=False):
                    added += 1

        self._log.info("reconcile_completed", newest_id=newest_id, added=added)
        if added:
            self._notify()
        return added

    def _start_stream(self) -> None:
        if not self._alive:
            return
        generation = self._generation
        self._subscription = self.subscriber.subscribe(self.owner)
        self._stream_started_at = self._clock()
        self._set_connection(ConnectionState.CONNECTED)
        self._stream_task = asyncio.ensure_future(
            self._consume_stream(self._subscription, generation)
        )

    async def _consume_stream(
        self, subscription: StreamSubscription, generation: int
    ) -> None:
        try:
            async for event in subscription:
                if not self._is_current(generation):
                    break
                await self.on_stream_event(event)
        except StreamDisconnected as e:
            if self._is_current(generation):
                await self.on_stream_disconnected(e)

    async def _close_subscription(self) -> None:
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.close()

    async def _cancel_stream_task(self) -> None:
        stream_task, self._stream_task = self._stream_task, None
        if (
            stream_task is not None
            and stream_task is not asyncio.current_task()
            and not stream_task.done()
        ):
            stream_task.cancel()
            await asyncio.gather(stream_task, return_exceptions=True)

    async def _stop_io(self) -> None:
        pending = [f for f in self._inflight if not f.done()]
        for future in pending:
            future.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        await self._cancel_stream_task()
        await self._close_subscription()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _fetch(self, coro: Awaitable[T]) -> Optional[T]:
        """Run a fetch as a cancellable task.

        Returns None when the controller was torn down meanwhile.
        """
        future = asyncio.ensure_future(coro)
        self._inflight.add(future)
        try:
            return await future
        except asyncio.CancelledError:
            if future.cancelled() and not self._alive:
                self._log.debug("fetch_cancelled_on_close")
                return None
            raise
        finally:
            self._inflight.discard(future)

    def _is_current(self, generation: int) -> bool:
        return self._alive and generation == self._generation

    def _stream_was_stable(self) -> bool:
        if self._stream_started_at is None:
            return False
        uptime = self._clock() - self._stream_started_at
        return uptime >= self.config.stream_stable_seconds

    def _notify(self) -> None:
        if not self._alive:
            return
        FEED_SIZE.labels(owner=self.owner).set(len(self._items))
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                self._log.error("feed_listener_failed", error=str(e))

    def _set_connection(self, state: ConnectionState) -> None:
        if state == self.connection:
            return
        self.connection = state
        self._log.info("connection_state_changed", connection=state.value)
        for listener in list(self._connection_listeners):
            try:
                listener(state)
            except Exception as e:
                self._log.error("connection_listener_failed", error=str(e))


class FeedRegistry:
    """One independent feed controller per owner account.

    No list is ever shared or merged across accounts.
    """

    def __init__(self, factory: Callable[[str], NotificationFeedController]) -> None:
        self._factory = factory
        self._feeds: Dict[str, NotificationFeedController] = {}

    @property
    def owners(self) -> List[str]:
        return list(self._feeds)

    def get(self, owner: str) -> NotificationFeedController:
        feed = self._feeds.get(owner)
        if feed is None or not feed.is_alive:
            feed = self._factory(owner)
            self._feeds[owner] = feed
        return feed

    async def close(self, owner: Optional[str] = None) -> None:
        """Close one owner's feed, or all of them."""
        owners = [owner] if owner is not None else list(self._feeds)
        for key in owners:
            feed = self._feeds.pop(key, None)
            if feed is not None:
                await feed.close()

