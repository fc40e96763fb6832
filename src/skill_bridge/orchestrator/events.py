"""Inbound chat events and conversation keys."""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

UNKNOWN_ID = "unknown"
MESSAGE_READ_EVENT_TYPE = "im.message.message_read_v1"


class EventKind(str, Enum):
    """Closed set of inbound events the bridge reacts to."""

    MESSAGE = "message"
    MESSAGE_READ = "message_read"
    IGNORED = "ignored"


@dataclass(frozen=True, slots=True)
class InboundEvent:
    """Normalized transport event."""

    kind: EventKind
    chat_id: str = UNKNOWN_ID
    sender_id: str = UNKNOWN_ID
    text: str = ""
    message_id: str | None = None
    reason: str | None = None

    @property
    def conversation_id(self) -> str:
        return conversation_key(self.chat_id, self.sender_id)


def conversation_key(chat_id: str | None, sender_id: str | None) -> str:
    """Stable conversation id derived from chat and sender."""

    user = sender_id or UNKNOWN_ID
    chat = chat_id or UNKNOWN_ID
    digest = hashlib.md5(f"{user}_{chat}".encode(), usedforsecurity=False).hexdigest()[:8]
    return f"session_{digest}"


def message_event(
    *,
    chat_id: str,
    sender_id: str,
    text: str,
    message_id: str | None = None,
) -> InboundEvent:
    return InboundEvent(
        kind=EventKind.MESSAGE,
        chat_id=chat_id or UNKNOWN_ID,
        sender_id=sender_id or UNKNOWN_ID,
        text=text.strip(),
        message_id=message_id,
    )


def parse_event(payload: Mapping[str, Any]) -> InboundEvent:  # noqa: PLR0911
    """Normalize a vendor-style message payload.

    Non-text, empty and malformed messages become `IGNORED` events carrying the
    reason, so callers can log them without special-casing.
    """

    event_type = payload.get("event_type") or payload.get("type")
    if event_type == MESSAGE_READ_EVENT_TYPE:
        return InboundEvent(
            kind=EventKind.MESSAGE_READ,
            message_id=_as_str(payload.get("message_id")),
        )

    message = payload.get("message")
    if not isinstance(message, Mapping):
        return _ignored("missing_message")

    msg_type = message.get("msg_type") or message.get("message_type")
    if not msg_type:
        return _ignored("missing_message_type")
    if msg_type != "text":
        return _ignored(f"unsupported_message_type:{msg_type}")

    content = _parse_content(message.get("content"))
    if content is None:
        return _ignored("invalid_content")
    text = content.get("text")
    if not isinstance(text, str):
        return _ignored("missing_text")
    if not text.strip():
        return _ignored("empty_text")

    chat_id = _as_str(message.get("chat_id")) or _as_str(payload.get("chat_id")) or UNKNOWN_ID
    return message_event(
        chat_id=chat_id,
        sender_id=_sender_id(payload.get("sender")),
        text=text,
        message_id=_as_str(message.get("message_id")),
    )


def _parse_content(raw: object) -> Mapping[str, Any] | None:
    if isinstance(raw, Mapping):
        return raw
    if not isinstance(raw, str):
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Failed to parse message content: %s", raw[:100])
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def _sender_id(sender: object) -> str:
    if not isinstance(sender, Mapping):
        return UNKNOWN_ID
    sender_id = sender.get("sender_id")
    if isinstance(sender_id, Mapping):
        for key in ("user_id", "open_id", "union_id"):
            value = _as_str(sender_id.get(key))
            if value:
                return value
        return UNKNOWN_ID
    return _as_str(sender_id) or _as_str(sender.get("user_id")) or UNKNOWN_ID


def _as_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _ignored(reason: str) -> InboundEvent:
    return InboundEvent(kind=EventKind.IGNORED, reason=reason)
