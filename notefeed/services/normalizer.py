"""Notification normalizer.

Maps raw records from either source into a NotificationItem:

| kind            | primary_note              | context_note            | reaction |
|-----------------|---------------------------|-------------------------|----------|
| follow          | -                         | -                       | -        |
| reply / mention | note.reply                | note                    | -        |
| renote          | note.renote               | -                       | -        |
| quote           | note.renote (tagged)      | note (wraps the quote)  | -        |
| reaction        | note                      | -                       | token    |

Renote and quote are told apart by whether the outer note carries its own
text. No I/O happens here.
"""

from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

import structlog
from pydantic import ValidationError

from notefeed.models.notification import (
    EmojiRef,
    FetchedNotification,
    NoteRef,
    NotificationItem,
    NotificationKind,
    RawRecord,
    StreamEvent,
    parse_raw_record,
)
from notefeed.observability.metrics import RECORDS_DROPPED, RECORDS_INGESTED
from notefeed.utils.exceptions import MalformedRecord

logger = structlog.get_logger()

# Stream hints whose body is the replying note itself
_BARE_NOTE_HINTS = {"mention", "reply"}
_NOTIFICATION_HINT = "notification"

_KINDS_BY_TYPE = {kind.value: kind for kind in NotificationKind}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationNormalizer:
    """Pure mapping from raw notification records to NotificationItem."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock

    def normalize(
        self, raw: RawRecord, owner: Optional[str] = None
    ) -> Optional[NotificationItem]:
        """Normalize one record.

        Args:
            raw: Fetched notification or stream event.
            owner: Local account to attach to the item.

        Returns:
            The item, or None when the record is malformed or not a
            notification. Callers skip None.
        """
        source = getattr(raw, "source", "unknown")
        try:
            if isinstance(raw, FetchedNotification):
                item = self._from_notification(raw)
            elif isinstance(raw, StreamEvent):
                item = self._from_stream(raw)
            else:
                raise MalformedRecord(f"unsupported record type {type(raw).__name__}")
        except MalformedRecord as e:
            logger.warning(
                "notification_record_malformed",
                source=source,
                owner=owner,
                reason=str(e),
            )
            RECORDS_DROPPED.labels(source=source).inc()
            return None

        if item is None:
            return None

        RECORDS_INGESTED.labels(source=source).inc()
        if owner is not None:
            item = item.model_copy(update={"owner": owner})
        return item

    def normalize_many(
        self, records: Iterable[RawRecord], owner: Optional[str] = None
    ) -> List[NotificationItem]:
        """Normalize a batch, skipping bad records without aborting it."""
        items = []
        for raw in records:
            item = self.normalize(raw, owner=owner)
            if item is not None:
                items.append(item)
        return items

    # ------------------------------------------------------------------
    # Stream events
    # ------------------------------------------------------------------

    def _from_stream(self, event: StreamEvent) -> Optional[NotificationItem]:
        if event.event_type == _NOTIFICATION_HINT:
            try:
                notification = parse_raw_record(event.body, source="fetch")
            except ValidationError as e:
                raise MalformedRecord(f"invalid notification body: {e.error_count()} errors")
            return self._from_notification(notification)

        if event.event_type in _BARE_NOTE_HINTS:
            try:
                note = NoteRef.model_validate(event.body)
            except ValidationError as e:
                raise MalformedRecord(f"invalid note body: {e.error_count()} errors")
            return self._from_bare_note(note)

        # followed, renote, meUpdated, ... are covered by "notification" events
        logger.debug("stream_event_ignored", event_type=event.event_type)
        return None

    def _from_bare_note(self, note: NoteRef) -> NotificationItem:
        if note.user is None:
            raise MalformedRecord("note has no author")
        if note.reply is None:
            raise MalformedRecord("reply note has no parent")

        return NotificationItem(
            id=note.id,
            kind=NotificationKind.REPLY,
            from_user=note.user,
            primary_note=note.reply,
            context_note=note,
            external_emojis=self._external_emojis(note),
            created_at=note.created_at or self._clock(),
        )

    # ------------------------------------------------------------------
    # Notification objects (fetch, and stream "notification" bodies)
    # ------------------------------------------------------------------

    def _from_notification(self, raw: FetchedNotification) -> NotificationItem:
        if not raw.id:
            raise MalformedRecord("notification has no id")
        if raw.user is None:
            raise MalformedRecord(f"notification {raw.id} has no actor")

        kind = self._resolve_kind(raw)
        created_at = raw.created_at or self._clock()

        if kind == NotificationKind.FOLLOW:
            return NotificationItem(
                id=raw.id, kind=kind, from_user=raw.user, created_at=created_at
            )

        note = raw.note
        if note is None:
            raise MalformedRecord(f"{kind.value} notification {raw.id} has no note")

        primary, context, kind = self._map_notes(kind, note, raw.id)

        reaction = None
        if kind == NotificationKind.REACTION:
            if not raw.reaction:
                raise MalformedRecord(f"reaction notification {raw.id} has no reaction")
            reaction = raw.reaction

        return NotificationItem(
            id=raw.id,
            kind=kind,
            from_user=raw.user,
            primary_note=primary,
            context_note=context,
            reaction=reaction,
            external_emojis=self._external_emojis(note),
            created_at=created_at,
        )

    def _resolve_kind(self, raw: FetchedNotification) -> NotificationKind:
        # A reaction token wins over the declared type
        if raw.reaction:
            return NotificationKind.REACTION
        if raw.type is None:
            raise MalformedRecord(f"notification {raw.id} has no type")
        kind = _KINDS_BY_TYPE.get(raw.type)
        if kind is None:
            raise MalformedRecord(f"unsupported notification type {raw.type!r}")
        return kind

    def _map_notes(
        self, kind: NotificationKind, note: NoteRef, notification_id: str
    ) -> tuple[Optional[NoteRef], Optional[NoteRef], NotificationKind]:
        """Pick primary and context notes for a note-bearing kind."""
        if kind in (NotificationKind.REPLY, NotificationKind.MENTION):
            if note.reply is None:
                raise MalformedRecord(
                    f"{kind.value} notification {notification_id} has no reply parent"
                )
            return note.reply, note, kind

        if kind in (NotificationKind.RENOTE, NotificationKind.QUOTE):
            inner = note.renote
            if inner is None:
                raise MalformedRecord(
                    f"{kind.value} notification {notification_id} has no renoted note"
                )
            if not note.has_own_text:
                return inner, None, NotificationKind.RENOTE

            quoted = inner.model_copy(update={"on_other_note": True})
            return quoted, note.model_copy(update={"quoted": quoted}), NotificationKind.QUOTE

        return note, None, kind

    @staticmethod
    def _external_emojis(note: Optional[NoteRef]) -> List[EmojiRef]:
        if note is None:
            return []
        seen = set()
        emojis = []
        for emoji in note.emojis:
            if emoji.name in seen:
                continue
            seen.add(emoji.name)
            emojis.append(emoji)
        return emojis
