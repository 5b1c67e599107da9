"""Pagination fetcher.

Wraps a NotificationSource's paginated endpoint:
- fetch_older_page: the page strictly older than a cursor (None = newest page),
  with the raw cursor for the page after it
- fetch_older_than: the same page's records only
- fetch_newer_than: reload mode, everything newer than what is displayed
"""

from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError

from notefeed.models.notification import (
    FetchedNotification,
    NotificationPage,
    parse_raw_record,
)
from notefeed.observability.metrics import FETCH_DURATION, RECORDS_DROPPED
from notefeed.services.cache_service import LatestNotificationCache
from notefeed.services.providers.base import NotificationSource

logger = structlog.get_logger()


class PaginationFetcher:
    """Ordered, newest-first batches from the paginated source."""

    def __init__(
        self,
        source: NotificationSource,
        cache: Optional[LatestNotificationCache] = None,
    ):
        self.source = source
        self.cache = cache

    async def fetch_older_page(
        self, cursor: Optional[str], limit: int, owner: str
    ) -> NotificationPage:
        """Fetch the page older than `cursor`.

        Args:
            cursor: Id of the oldest notification already seen, None for
                the most recent page.
            limit: Page size.
            owner: Account to fetch for.

        Returns:
            Parsed records newest first, and the id of the page's oldest raw
            record as the cursor for the next call. Records dropped later
            still advance that cursor.

        Raises:
            TransportError: Network or auth failure.
        """
        with FETCH_DURATION.labels(mode="older").time():
            page = await self.source.fetch_notifications(owner, limit, until_id=cursor)

        if cursor is None:
            self._remember_latest(owner, page)

        records = self._parse_page(page, owner)
        next_cursor = next(
            (rid for rid in map(_record_id, reversed(page)) if rid is not None), None
        )
        logger.info(
            "notifications_page_fetched",
            owner=owner,
            cursor=cursor,
            next_cursor=next_cursor,
            received=len(page),
            parsed=len(records),
        )
        return NotificationPage(
            records=records, next_cursor=next_cursor, received=len(page)
        )

    async def fetch_older_than(
        self, cursor: Optional[str], limit: int, owner: str
    ) -> List[FetchedNotification]:
        """Records of the page older than `cursor`; empty when nothing is older."""
        page = await self.fetch_older_page(cursor, limit, owner)
        return list(page.records)

    async def fetch_newer_than(
        self, last_known_id: Optional[str], limit: int, owner: str
    ) -> List[FetchedNotification]:
        """Reload mode: the records newer than `last_known_id`.

        Consumes the newest page until the record with id == last_known_id;
        when that record is not on the page the whole page is new.
        """
        with FETCH_DURATION.labels(mode="reload").time():
            page = await self.source.fetch_notifications(owner, limit)

        self._remember_latest(owner, page)

        newer: List[Dict[str, Any]] = []
        reached_known = False
        for data in page:
            if last_known_id is not None and _record_id(data) == last_known_id:
                reached_known = True
                break
            newer.append(data)

        records = self._parse_page(newer, owner)
        logger.info(
            "notifications_reloaded",
            owner=owner,
            last_known_id=last_known_id,
            new=len(records),
            reached_known=reached_known,
        )
        return records

    def _parse_page(
        self, page: List[Dict[str, Any]], owner: str
    ) -> List[FetchedNotification]:
        records = []
        for data in page:
            if not isinstance(data, dict):
                logger.warning("notification_record_unparseable", owner=owner, errors=1)
                RECORDS_DROPPED.labels(source="fetch").inc()
                continue
            try:
                records.append(parse_raw_record(data, source="fetch"))
            except ValidationError as e:
                logger.warning(
                    "notification_record_unparseable",
                    owner=owner,
                    notification_id=_record_id(data),
                    errors=e.error_count(),
                )
                RECORDS_DROPPED.labels(source="fetch").inc()
        return records

    def _remember_latest(self, owner: str, page: List[Dict[str, Any]]) -> None:
        if self.cache is None or not page:
            return
        latest_id = _record_id(page[0])
        if latest_id:
            self.cache.set_latest_id(owner, latest_id)


def _record_id(data: Any) -> Optional[str]:
    if isinstance(data, dict):
        value = data.get("id")
        return value if isinstance(value, str) else None
    return None
