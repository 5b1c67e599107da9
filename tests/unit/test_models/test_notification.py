"""Unit tests for notification and feed models.

Tests Pydantic validation and helpers for:
- UserRef / NoteRef
- FetchedNotification / StreamEvent and the tagged raw record union
- NotificationItem and its dedup key
- FeedSnapshot
"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from notefeed.models.feed import FeedSnapshot, FeedState
from notefeed.models.notification import (
    DedupKey,
    FetchedNotification,
    NoteRef,
    NotificationItem,
    NotificationKind,
    StreamEvent,
    UserRef,
    parse_raw_record,
)
from tests.helpers import note_payload, reaction_payload, user_payload

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


class TestUserRef:
    def test_aliases_and_extra_fields(self):
        user = UserRef.model_validate(
            {**user_payload("u1", "alice", host="remote.example"), "isBot": False}
        )

        assert user.avatar_url == "https://example.com/avatars/u1.png"
        assert user.acct == "alice@remote.example"

    def test_local_acct_has_no_host(self):
        assert UserRef(id="u1", username="alice").acct == "alice"

    def test_display_name_falls_back_to_username(self):
        assert UserRef(id="u1", name="", username="alice").display_name == "alice"
        assert UserRef(id="u1", name="Alice", username="alice").display_name == "Alice"

    def test_id_required(self):
        with pytest.raises(ValidationError):
            UserRef(username="alice")


class TestNoteRef:
    def test_nested_notes(self):
        note = NoteRef.model_validate(
            note_payload("n2", reply=note_payload("n1"), renote=note_payload("n0"))
        )

        assert note.reply.id == "n1"
        assert note.renote.id == "n0"
        assert note.created_at == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    def test_emoji_mapping_accepted(self):
        note = NoteRef.model_validate(note_payload(emojis={"blob": "https://e/blob.png"}))

        assert note.emojis[0].name == "blob"

    def test_null_emojis(self):
        assert NoteRef.model_validate(note_payload(emojis=None)).emojis == []

    @pytest.mark.parametrize("text,expected", [(None, False), ("", False), ("hi", True)])
    def test_has_own_text(self, text, expected):
        assert NoteRef(id="n", text=text).has_own_text is expected

    def test_frozen(self):
        note = NoteRef(id="n")
        with pytest.raises(ValidationError):
            note.text = "changed"


class TestRawRecords:
    def test_fetched_notification_all_optional(self):
        record = FetchedNotification.model_validate({})

        assert record.source == "fetch"
        assert record.id is None
        assert record.user is None

    def test_parse_fetch_record(self):
        record = parse_raw_record({"source": "fetch", **reaction_payload("r1")})

        assert isinstance(record, FetchedNotification)
        assert record.reaction == "👍"

    def test_parse_stream_record(self):
        record = parse_raw_record(
            {"source": "stream", "event_type": "notification", "body": {"id": "x"}}
        )

        assert isinstance(record, StreamEvent)
        assert record.channel == "main"

    def test_source_argument_tags_untagged_payload(self):
        record = parse_raw_record({"source": "stream", **reaction_payload("r2")}, source="fetch")

        assert isinstance(record, FetchedNotification)
        assert record.id == "r2"

    def test_unknown_source_rejected(self):
        with pytest.raises(ValidationError):
            parse_raw_record({"source": "push", "id": "x"})


class TestNotificationItem:
    def _item(self, context_id=None):
        return NotificationItem(
            id="i1",
            kind=NotificationKind.REPLY,
            from_user=UserRef(id="u1"),
            primary_note=NoteRef(id="parent"),
            context_note=NoteRef(id=context_id) if context_id else None,
            created_at=NOW,
        )

    def test_dedup_key(self):
        assert self._item("reply").dedup_key == DedupKey(
            "u1", "parent", NotificationKind.REPLY, "reply"
        )

    def test_without_context(self):
        key = self._item("reply").dedup_key.without_context()

        assert key.context_note_id is None
        assert key == self._item().dedup_key

    def test_empty_id_rejected(self):
        with pytest.raises(ValidationError):
            NotificationItem(
                id="", kind=NotificationKind.FOLLOW, from_user=UserRef(id="u1"), created_at=NOW
            )


class TestFeedSnapshot:
    def test_defaults(self):
        snapshot = FeedSnapshot(owner="alice")

        assert snapshot.count == 0
        assert snapshot.state == FeedState.EMPTY
        assert snapshot.exhausted is False
