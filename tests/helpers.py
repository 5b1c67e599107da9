"""Test helpers: wire-format payload builders and a scripted source."""

import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional

from notefeed.services.providers.base import (
    MAIN_CHANNEL,
    NotificationSource,
    StreamFrame,
)


def user_payload(user_id: str = "u1", username: str = "alice", **extra) -> dict:
    data = {
        "id": user_id,
        "name": extra.pop("name", username.capitalize()),
        "username": username,
        "host": extra.pop("host", None),
        "avatarUrl": f"https://example.com/avatars/{user_id}.png",
    }
    data.update(extra)
    return data


def note_payload(note_id: str = "n1", text: Optional[str] = "hello", **extra) -> dict:
    data = {
        "id": note_id,
        "text": text,
        "createdAt": extra.pop("createdAt", "2024-05-01T10:00:00.000Z"),
        "user": extra.pop("user", user_payload("me", "me")),
        "emojis": extra.pop("emojis", []),
    }
    data.update(extra)
    return data


def notification_payload(
    notification_id: str,
    kind: str,
    user: Optional[dict] = None,
    note: Optional[dict] = None,
    reaction: Optional[str] = None,
    created_at: str = "2024-05-01T12:00:00.000Z",
) -> dict:
    data: Dict[str, Any] = {
        "id": notification_id,
        "type": kind,
        "createdAt": created_at,
        "userId": (user or {}).get("id"),
        "user": user,
    }
    if note is not None:
        data["note"] = note
    if reaction is not None:
        data["reaction"] = reaction
    return data


def reaction_payload(
    notification_id: str,
    user_id: str = "u1",
    note_id: str = "n1",
    reaction: str = "👍",
    created_at: str = "2024-05-01T12:00:00.000Z",
) -> dict:
    return notification_payload(
        notification_id,
        "reaction",
        user=user_payload(user_id, f"user{user_id}"),
        note=note_payload(note_id),
        reaction=reaction,
        created_at=created_at,
    )


def follow_payload(
    notification_id: str,
    user_id: str = "u1",
    created_at: str = "2024-05-01T12:00:00.000Z",
) -> dict:
    return notification_payload(
        notification_id,
        "follow",
        user=user_payload(user_id, f"user{user_id}"),
        created_at=created_at,
    )


class ScriptedSource(NotificationSource):
    """In-memory source: queued pages and a controllable live channel."""

    def __init__(self) -> None:
        self.pages: List[Any] = []
        self.fetch_calls: List[Dict[str, Any]] = []
        self.fetch_gate: Optional[asyncio.Event] = None
        self.stream_queues: List[asyncio.Queue] = []
        self.stream_opened = asyncio.Event()

    @property
    def name(self) -> str:
        return "scripted"

    def queue_page(self, page: Any) -> None:
        """Queue a page (list of payloads) or an exception to raise."""
        self.pages.append(page)

    async def fetch_notifications(
        self, owner: str, limit: int, until_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        self.fetch_calls.append({"owner": owner, "limit": limit, "until_id": until_id})
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        page = self.pages.pop(0) if self.pages else []
        if isinstance(page, BaseException):
            raise page
        return page

    async def stream(self, owner: str) -> AsyncIterator[StreamFrame]:
        queue: asyncio.Queue = asyncio.Queue()
        self.stream_queues.append(queue)
        self.stream_opened.set()
        while True:
            frame = await queue.get()
            yield frame
            if frame.error is not None:
                return

    async def push(self, event_type: str, body: Any, channel: str = MAIN_CHANNEL):
        await self.stream_queues[-1].put(
            StreamFrame(channel=channel, event_type=event_type, body=body)
        )

    async def drop(self, error) -> None:
        await self.stream_queues[-1].put(StreamFrame(error=error))


async def settle(rounds: int = 20) -> None:
    """Let background stream tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def eventually(predicate, timeout: float = 1.0) -> None:
    """Poll `predicate` until it holds or `timeout` seconds pass."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
