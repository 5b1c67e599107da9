"""Notification data models.

Provides Pydantic models for:
- UserRef / NoteRef / EmojiRef: the pieces of a notification payload
- FetchedNotification / StreamEvent: the two raw wire shapes, tagged by source
- NotificationPage: one parsed page and the cursor past it
- NotificationItem: the unified, normalized notification
- DedupKey: identity of the logical event an item describes

Usage:
    from notefeed.models.notification import parse_raw_record

    raw = parse_raw_record(payload, source="fetch")
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, NamedTuple, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class NotificationKind(str, Enum):
    """Kinds of notification the feed renders."""

    FOLLOW = "follow"
    REPLY = "reply"
    MENTION = "mention"
    RENOTE = "renote"
    QUOTE = "quote"
    REACTION = "reaction"


class EmojiRef(BaseModel):
    """Custom emoji definition carried by a note."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(..., min_length=1)
    url: Optional[str] = None


class UserRef(BaseModel):
    """Account that performed an action.

    Attributes:
        id: Account id on the instance.
        name: Display name, may be empty.
        username: Handle without host.
        host: Remote host, None for local accounts.
        avatar_url: Avatar image reference.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    username: str = ""
    host: Optional[str] = None
    avatar_url: Optional[str] = Field(default=None, alias="avatarUrl")

    @property
    def display_name(self) -> str:
        """Display name, falling back to the handle."""
        return self.name or self.username

    @property
    def acct(self) -> str:
        if self.host:
            return f"{self.username}@{self.host}"
        return self.username


def carries_own_text(text: Optional[str]) -> bool:
    """Quote vs plain renote: a quoting note carries non-empty text of its own."""
    return bool(text)


def _coerce_emojis(v: Any) -> Any:
    # Older instances send a list of {name, url}, newer ones a name -> url map
    if v is None:
        return []
    if isinstance(v, dict):
        return [{"name": name, "url": url} for name, url in v.items()]
    return v


class NoteRef(BaseModel):
    """A note as embedded in a notification.

    `on_other_note` marks a note rendered inside another note, and
    `quoted` carries the note a quoting note wraps.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: str = Field(..., min_length=1)
    text: Optional[str] = None
    cw: Optional[str] = None
    user: Optional[UserRef] = None
    emojis: List[EmojiRef] = Field(default_factory=list)
    reply: Optional["NoteRef"] = None
    renote: Optional["NoteRef"] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    on_other_note: bool = False
    quoted: Optional["NoteRef"] = None

    @field_validator("emojis", mode="before")
    @classmethod
    def normalize_emojis(cls, v: Any) -> Any:
        """Accept both list and mapping emoji encodings."""
        return _coerce_emojis(v)

    @property
    def has_own_text(self) -> bool:
        return carries_own_text(self.text)


class FetchedNotification(BaseModel):
    """Notification object returned by the paginated REST endpoint.

    Every field is optional at this layer: missing fields are a
    normalization concern, not a parse failure.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    source: Literal["fetch"] = "fetch"
    id: Optional[str] = None
    type: Optional[str] = None
    user: Optional[UserRef] = None
    note: Optional[NoteRef] = None
    reaction: Optional[str] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")


class StreamEvent(BaseModel):
    """Message delivered on the main streaming channel.

    Attributes:
        event_type: Stream kind hint (notification, mention, reply, ...).
        body: Payload, either a notification object or a bare note.
        channel: Channel the message arrived on.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    source: Literal["stream"] = "stream"
    event_type: str
    body: Dict[str, Any] = Field(default_factory=dict)
    channel: str = "main"


RawRecord = Union[FetchedNotification, StreamEvent]

RawNotificationRecord = Annotated[RawRecord, Field(discriminator="source")]

_raw_record_adapter: TypeAdapter = TypeAdapter(RawNotificationRecord)


def parse_raw_record(data: Dict[str, Any], source: Optional[str] = None) -> RawRecord:
    """Parse a dict into the matching raw record model.

    Args:
        data: Wire payload, tagged with "source" unless `source` is given.
        source: Tag to apply ("fetch" or "stream"); overrides any tag in data.

    Raises:
        ValidationError: Unknown tag or a payload the tagged model rejects.
    """
    if source is not None:
        data = {**data, "source": source}
    return _raw_record_adapter.validate_python(data)


class NotificationPage(BaseModel):
    """One parsed page plus the cursor for the page after it.

    `next_cursor` is the id of the oldest raw record on the page, whether
    or not that record parsed or normalized; None when the page was empty.
    """

    model_config = ConfigDict(frozen=True)

    records: List[FetchedNotification] = Field(default_factory=list)
    next_cursor: Optional[str] = None
    received: int = 0


class DedupKey(NamedTuple):
    """Identity of the logical event behind a notification."""

    from_user_id: str
    primary_note_id: Optional[str]
    kind: NotificationKind
    context_note_id: Optional[str]

    def without_context(self) -> "DedupKey":
        return self._replace(context_note_id=None)


class NotificationItem(BaseModel):
    """Unified notification rendered by the feed.

    Attributes:
        id: Source-assigned id, also the pagination cursor.
        kind: Notification kind.
        from_user: Actor.
        primary_note: The note the notification is about (absent for follow).
        context_note: Replying or quoting note (reply, mention, quote).
        reaction: Raw reaction token (reaction only).
        external_emojis: Custom emoji referenced by the notes.
        created_at: Creation time.
        owner: Local account the notification belongs to.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    kind: NotificationKind
    from_user: UserRef
    primary_note: Optional[NoteRef] = None
    context_note: Optional[NoteRef] = None
    reaction: Optional[str] = None
    external_emojis: List[EmojiRef] = Field(default_factory=list)
    created_at: datetime
    owner: Optional[str] = None

    @property
    def dedup_key(self) -> DedupKey:
        return DedupKey(
            from_user_id=self.from_user.id,
            primary_note_id=self.primary_note.id if self.primary_note else None,
            kind=self.kind,
            context_note_id=self.context_note.id if self.context_note else None,
        )
