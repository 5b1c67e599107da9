"""Unit tests for NotificationNormalizer.

Covers the kind -> field mapping for both wire shapes, the renote/quote
split, emoji extraction and malformed-record handling.
"""

from datetime import datetime, timezone

import pytest

from notefeed.models.notification import (
    FetchedNotification,
    NotificationKind,
    StreamEvent,
)
from notefeed.observability.metrics import REGISTRY
from notefeed.services.normalizer import NotificationNormalizer
from tests.helpers import (
    follow_payload,
    note_payload,
    notification_payload,
    reaction_payload,
    user_payload,
)

FIXED_NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def normalizer() -> NotificationNormalizer:
    return NotificationNormalizer(clock=lambda: FIXED_NOW)


def fetched(data: dict) -> FetchedNotification:
    return FetchedNotification.model_validate(data)


def dropped(source: str) -> float:
    return REGISTRY.get_sample_value(
        "notefeed_records_dropped_total", {"source": source}
    ) or 0.0


class TestFetchedKinds:
    """Mapping table for fetched notification objects."""

    def test_follow_has_no_notes(self, normalizer):
        """Follow carries only the actor."""
        item = normalizer.normalize(fetched(follow_payload("f1", user_id="u9")))

        assert item is not None
        assert item.kind == NotificationKind.FOLLOW
        assert item.from_user.id == "u9"
        assert item.primary_note is None
        assert item.context_note is None
        assert item.reaction is None

    def test_reaction_uses_reacted_note(self, normalizer):
        """Reaction: primary is the reacted-to note, token kept raw."""
        item = normalizer.normalize(
            fetched(reaction_payload("r1", note_id="mine", reaction=":blobcat:"))
        )

        assert item.kind == NotificationKind.REACTION
        assert item.primary_note.id == "mine"
        assert item.context_note is None
        assert item.reaction == ":blobcat:"

    @pytest.mark.parametrize("kind", ["reply", "mention"])
    def test_reply_and_mention_swap_note_roles(self, normalizer, kind):
        """Reply/Mention: primary is the parent, context is the reply."""
        reply = note_payload(
            "their-reply",
            text="@me nice",
            user=user_payload("u2", "bob"),
            reply=note_payload("my-note", text="original"),
        )
        item = normalizer.normalize(
            fetched(notification_payload("x1", kind, user=user_payload("u2", "bob"), note=reply))
        )

        assert item.kind == NotificationKind(kind)
        assert item.primary_note.id == "my-note"
        assert item.context_note.id == "their-reply"
        assert item.reaction is None

    def test_plain_renote_unwraps_one_level(self, normalizer):
        """Renote without own text: primary is the inner note."""
        outer = note_payload(
            "renote-wrapper", text=None, renote=note_payload("my-note", text="mine")
        )
        item = normalizer.normalize(
            fetched(notification_payload("x2", "renote", user=user_payload("u3"), note=outer))
        )

        assert item.kind == NotificationKind.RENOTE
        assert item.primary_note.id == "my-note"
        assert item.context_note is None

    def test_renote_with_text_is_quote(self, normalizer):
        """Outer text present turns a renote into a quote."""
        outer = note_payload(
            "quoting", text="look at this", renote=note_payload("my-note", text="mine")
        )
        item = normalizer.normalize(
            fetched(notification_payload("x3", "renote", user=user_payload("u3"), note=outer))
        )

        assert item.kind == NotificationKind.QUOTE
        assert item.primary_note.id == "my-note"
        assert item.primary_note.on_other_note is True
        assert item.context_note.id == "quoting"
        assert item.context_note.quoted.id == "my-note"

    def test_quote_without_text_is_plain_renote(self, normalizer):
        """Declared quote with no outer text is rendered as a renote."""
        outer = note_payload("wrapper", text=None, renote=note_payload("my-note"))
        item = normalizer.normalize(
            fetched(notification_payload("x4", "quote", user=user_payload("u3"), note=outer))
        )

        assert item.kind == NotificationKind.RENOTE
        assert item.context_note is None


class TestStreamEvents:
    """Stream events normalize identically to fetched objects."""

    def test_notification_event_matches_fetch(self, normalizer):
        """A stream notification body yields the same item as a fetch."""
        payload = reaction_payload("r7", note_id="n7")
        from_fetch = normalizer.normalize(fetched(payload))
        from_stream = normalizer.normalize(
            StreamEvent(event_type="notification", body=payload)
        )

        assert from_stream == from_fetch

    def test_reaction_token_wins_over_type(self, normalizer):
        """A body carrying a reaction is a reaction whatever its type says."""
        payload = notification_payload(
            "r8",
            "pollVote",
            user=user_payload("u1"),
            note=note_payload("n8"),
            reaction="🎉",
        )
        item = normalizer.normalize(StreamEvent(event_type="notification", body=payload))

        assert item.kind == NotificationKind.REACTION
        assert item.reaction == "🎉"

    @pytest.mark.parametrize("hint", ["reply", "mention"])
    def test_bare_reply_note(self, normalizer, hint):
        """Bare note events become replies keyed by the note id."""
        body = note_payload(
            "their-note",
            text="hi",
            user=user_payload("u4", "carol"),
            reply=note_payload("my-note"),
        )
        item = normalizer.normalize(StreamEvent(event_type=hint, body=body))

        assert item.id == "their-note"
        assert item.kind == NotificationKind.REPLY
        assert item.from_user.username == "carol"
        assert item.primary_note.id == "my-note"
        assert item.context_note.id == "their-note"

    def test_unrelated_event_is_ignored(self, normalizer):
        """Events that are not notifications return None without counting as malformed."""
        before = dropped("stream")
        item = normalizer.normalize(StreamEvent(event_type="meUpdated", body={"id": "me"}))

        assert item is None
        assert dropped("stream") == before


class TestMalformedRecords:
    """Records missing required fields are skipped."""

    def test_missing_actor(self, normalizer):
        before = dropped("fetch")
        item = normalizer.normalize(
            fetched(notification_payload("m1", "reaction", note=note_payload(), reaction="👍"))
        )

        assert item is None
        assert dropped("fetch") == before + 1

    def test_reply_without_parent(self, normalizer):
        payload = notification_payload(
            "m2", "reply", user=user_payload(), note=note_payload("n", reply=None)
        )
        assert normalizer.normalize(fetched(payload)) is None

    def test_renote_without_inner_note(self, normalizer):
        payload = notification_payload(
            "m3", "renote", user=user_payload(), note=note_payload("n", text=None)
        )
        assert normalizer.normalize(fetched(payload)) is None

    def test_reaction_type_without_token(self, normalizer):
        payload = notification_payload(
            "m4", "reaction", user=user_payload(), note=note_payload()
        )
        assert normalizer.normalize(fetched(payload)) is None

    def test_unknown_kind(self, normalizer):
        payload = notification_payload("m5", "achievementEarned", user=user_payload())
        assert normalizer.normalize(fetched(payload)) is None

    def test_invalid_stream_body(self, normalizer):
        """Bodies that fail validation are dropped, not raised."""
        event = StreamEvent(event_type="notification", body={"user": {"name": "no id"}})
        assert normalizer.normalize(event) is None

    def test_batch_continues_past_bad_record(self, normalizer):
        """One malformed record does not abort the batch."""
        records = [
            fetched(follow_payload("ok1")),
            fetched(notification_payload("bad", "follow")),
            fetched(follow_payload("ok2", user_id="u2")),
        ]
        items = normalizer.normalize_many(records, owner="alice")

        assert [i.id for i in items] == ["ok1", "ok2"]


class TestItemFields:
    """Ambient fields: owner, timestamps, emojis."""

    def test_owner_attached(self, normalizer):
        item = normalizer.normalize(fetched(follow_payload("o1")), owner="alice")
        assert item.owner == "alice"

    def test_created_at_parsed(self, normalizer):
        item = normalizer.normalize(
            fetched(follow_payload("o2", created_at="2024-05-02T08:30:00.000Z"))
        )
        assert item.created_at == datetime(2024, 5, 2, 8, 30, tzinfo=timezone.utc)

    def test_missing_created_at_uses_clock(self, normalizer):
        payload = follow_payload("o3")
        del payload["createdAt"]
        item = normalizer.normalize(fetched(payload))
        assert item.created_at == FIXED_NOW

    def test_external_emojis_from_list(self, normalizer):
        """Emojis are read from note.emojis and deduplicated by name."""
        note = note_payload(
            "n1",
            emojis=[
                {"name": "blobcat", "url": "https://remote/blobcat.png"},
                {"name": "blobcat", "url": "https://remote/blobcat.png"},
                {"name": "neko", "url": "https://remote/neko.png"},
            ],
        )
        payload = notification_payload(
            "e1", "reaction", user=user_payload(), note=note, reaction=":blobcat@remote:"
        )
        item = normalizer.normalize(fetched(payload))

        assert [e.name for e in item.external_emojis] == ["blobcat", "neko"]

    def test_external_emojis_from_mapping(self, normalizer):
        note = note_payload("n1", emojis={"party": "https://remote/party.png"})
        payload = notification_payload(
            "e2", "reaction", user=user_payload(), note=note, reaction=":party:"
        )
        item = normalizer.normalize(fetched(payload))

        assert item.external_emojis[0].name == "party"
        assert item.external_emojis[0].url == "https://remote/party.png"

    def test_external_emojis_default_empty(self, normalizer):
        item = normalizer.normalize(fetched(follow_payload("e3")))
        assert item.external_emojis == []


class TestReactionProperty:
    """Every normalized reaction has a token and no context note."""

    @pytest.mark.parametrize("token", ["👍", ":blobcat:", ":x@remote.host:", "❤️"])
    def test_reaction_shape(self, normalizer, token):
        item = normalizer.normalize(fetched(reaction_payload("p1", reaction=token)))

        assert item.reaction is not None
        assert item.context_note is None
