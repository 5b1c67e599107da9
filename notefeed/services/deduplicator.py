"""Notification deduplication.

A remote actor that keeps changing a reaction, or edits the same note,
produces several notification events for what the user sees as one
event. Two items describe the same event when they share actor, primary
note and kind, and (only when both carry one) the context note.

NotificationIndex keeps a keyed map over the feed list so a candidate is
matched in O(1) instead of scanning the list.
"""

from typing import Dict, Iterable, List, Optional

import structlog

from notefeed.models.notification import DedupKey, NotificationItem
from notefeed.observability.metrics import DUPLICATES_REPLACED

logger = structlog.get_logger()


def is_duplicate_of(candidate: NotificationItem, existing: NotificationItem) -> bool:
    """Whether `candidate` describes the same logical event as `existing`.

    Reaction text is deliberately not part of the identity: a changed
    reaction on the same note replaces the earlier one.
    """
    if candidate.from_user.id != existing.from_user.id:
        return False
    if candidate.kind != existing.kind:
        return False

    candidate_note = candidate.primary_note.id if candidate.primary_note else None
    existing_note = existing.primary_note.id if existing.primary_note else None
    if candidate_note != existing_note:
        return False

    if candidate.context_note is not None and existing.context_note is not None:
        return candidate.context_note.id == existing.context_note.id
    return True


class NotificationIndex:
    """Keyed lookup over the items of one feed.

    Items are grouped by their context-free dedup key; each group is
    tiny (usually one item) so matching stays constant time while still
    honouring the "compare context only when both have one" rule.
    """

    def __init__(self, items: Optional[Iterable[NotificationItem]] = None) -> None:
        self._by_id: Dict[str, NotificationItem] = {}
        self._by_key: Dict[DedupKey, Dict[str, None]] = {}
        if items is not None:
            self.rebuild(items)

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._by_id

    def get(self, item_id: str) -> Optional[NotificationItem]:
        return self._by_id.get(item_id)

    def add(self, item: NotificationItem) -> None:
        self._by_id[item.id] = item
        self._by_key.setdefault(item.dedup_key.without_context(), {})[item.id] = None

    def remove(self, item_id: str) -> Optional[NotificationItem]:
        item = self._by_id.pop(item_id, None)
        if item is None:
            return None
        key = item.dedup_key.without_context()
        group = self._by_key.get(key)
        if group is not None:
            group.pop(item_id, None)
            if not group:
                del self._by_key[key]
        return item

    def clear(self) -> None:
        self._by_id.clear()
        self._by_key.clear()

    def rebuild(self, items: Iterable[NotificationItem]) -> None:
        self.clear()
        for item in items:
            self.add(item)

    def find_superseded(self, candidate: NotificationItem) -> List[NotificationItem]:
        """Existing items the candidate is a duplicate of, or shares an id with."""
        matches: List[NotificationItem] = []
        same_id = self._by_id.get(candidate.id)
        if same_id is not None:
            matches.append(same_id)

        group = self._by_key.get(candidate.dedup_key.without_context(), {})
        for item_id in group:
            existing = self._by_id[item_id]
            if existing is same_id:
                continue
            if is_duplicate_of(candidate, existing):
                matches.append(existing)
        return matches


class NotificationDeduplicator:
    """Decides which of two versions of an event the feed keeps.

    Newer replaces older: a live event always wins (it arrived last); a
    fetched record wins only when it is at least as recent as the item it
    duplicates, so paging backwards never resurrects stale state.
    """

    def resolve(
        self,
        candidate: NotificationItem,
        index: NotificationIndex,
        live: bool = False,
    ) -> tuple[bool, List[NotificationItem]]:
        """Match a candidate against the feed.

        Args:
            candidate: Newly normalized item.
            index: Index over the current feed list.
            live: True for stream events.

        Returns:
            Tuple of (accept_candidate, items_to_remove).
        """
        superseded = index.find_superseded(candidate)
        if not superseded:
            return True, []

        if not live and any(
            existing.created_at > candidate.created_at for existing in superseded
        ):
            logger.debug(
                "duplicate_kept_existing",
                notification_id=candidate.id,
                kind=candidate.kind.value,
            )
            return False, []

        for existing in superseded:
            DUPLICATES_REPLACED.labels(kind=existing.kind.value).inc()
            logger.debug(
                "duplicate_replaced",
                replaced_id=existing.id,
                notification_id=candidate.id,
                kind=candidate.kind.value,
            )
        return True, superseded

    def dedupe(self, items: Iterable[NotificationItem]) -> List[NotificationItem]:
        """Drop later duplicates from a newest-first list.

        Idempotent: running it on its own output returns the same list.
        """
        index = NotificationIndex()
        kept: List[NotificationItem] = []
        for item in items:
            if index.find_superseded(item):
                continue
            index.add(item)
            kept.append(item)
        return kept
