"""Push-notification content formatter.

Turns a raw server payload `{"type": "notification", "body": {...}}` into
a (title, body) text pair for push delivery. Uses the same kind-to-field
mapping as the normalizer but renders strings. Stateless and best effort:
it is invoked by the push-delivery side, never by the feed controller.

Usage:
    from notefeed.services.push_formatter import generate_contents

    contents = generate_contents(raw_json)
    if contents:
        title, body = contents
"""

import json
from typing import Any, Dict, Optional, Tuple, Union

import structlog

from notefeed.models.notification import carries_own_text

logger = structlog.get_logger()

PushContents = Tuple[Optional[str], Optional[str]]


def _actor_name(user: Dict[str, Any]) -> str:
    return user.get("name") or user.get("username") or ""


def _note(body: Dict[str, Any]) -> Dict[str, Any]:
    note = body.get("note")
    return note if isinstance(note, dict) else {}


def _format_reaction(actor: str, body: Dict[str, Any]) -> PushContents:
    reaction = body.get("reaction") or ""
    return f'{actor} reacted with "{reaction}"', _note(body).get("text")


def _format_follow(actor: str, body: Dict[str, Any]) -> PushContents:
    user = body.get("user") or {}
    handle = user.get("username") or ""
    if user.get("host"):
        handle = f"{handle}@{user['host']}"
    return "", f"{handle} followed you"


def _format_reply(actor: str, body: Dict[str, Any]) -> PushContents:
    return f"{actor}'s reply:", _note(body).get("text")


def _format_renote(actor: str, body: Dict[str, Any]) -> PushContents:
    note = _note(body)
    if carries_own_text(note.get("text")):
        return f"{actor} quote-renoted", note.get("text")
    renote = note.get("renote") or {}
    return f"{actor} renoted", renote.get("text")


_FORMATTERS = {
    "reaction": _format_reaction,
    "follow": _format_follow,
    "reply": _format_reply,
    "mention": _format_reply,
    "renote": _format_renote,
    "quote": _format_renote,
}


def generate_contents(
    payload: Union[str, bytes, Dict[str, Any]],
) -> Optional[PushContents]:
    """Build push title and body for a server payload.

    Args:
        payload: JSON text or already decoded dict.

    Returns:
        (title, body); (None, None) for kinds without a push text; None
        when the payload is not a notification or cannot be read.
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError as e:
            logger.warning("push_payload_invalid_json", error=str(e))
            return None

    if not isinstance(payload, dict) or payload.get("type") != "notification":
        return None

    body = payload.get("body")
    if not isinstance(body, dict):
        logger.warning("push_payload_without_body")
        return None

    kind = body.get("type")
    formatter = _FORMATTERS.get(kind)
    if formatter is None:
        logger.debug("push_kind_unsupported", kind=kind)
        return None, None

    user = body.get("user")
    if not isinstance(user, dict):
        logger.warning("push_payload_without_actor", kind=kind)
        return None, None

    return formatter(_actor_name(user), body)
