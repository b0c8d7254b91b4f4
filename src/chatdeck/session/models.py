"""
Session Models — data structures for conversation state.

Hierarchy:
  ChatSession → ChatMessage → Attachment

All models are frozen dataclasses — create new instances for modifications.
The store replaces its whole collection on each mutation, so nothing here
is ever shared mutably between snapshots.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

DEFAULT_TITLE = "New Chat"
TITLE_MAX_CHARS = 40
ERROR_ID_PREFIX = "err-"


class Role(str, Enum):
    """Who authored a message."""

    USER = "user"
    MODEL = "model"


@dataclass(frozen=True)
class Attachment:
    """A file carried by a message, already encoded for transfer."""

    name: str
    mime_type: str
    preview_reference: str  # data: URL
    encoded_payload: str  # base64

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "mime_type": self.mime_type,
            "preview_reference": self.preview_reference,
            "encoded_payload": self.encoded_payload,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Attachment:
        return cls(
            name=data["name"],
            mime_type=data["mime_type"],
            preview_reference=data["preview_reference"],
            encoded_payload=data["encoded_payload"],
        )


@dataclass(frozen=True)
class ChatMessage:
    """
    One turn in a session.

    Only the text of the newest in-flight model message ever changes, and
    only by producing a new instance via with_text().
    """

    id: str
    role: str = Role.USER.value
    text: str = ""
    attachments: tuple[Attachment, ...] = ()

    @property
    def is_error(self) -> bool:
        """Synthetic failure notice added locally, not a real model reply."""
        return self.id.startswith(ERROR_ID_PREFIX)

    def with_text(self, text: str) -> ChatMessage:
        return replace(self, text=text)

    def with_content(
        self, text: str, attachments: tuple[Attachment, ...]
    ) -> ChatMessage:
        """Copy with new text/attachments; id and role are kept."""
        return replace(self, text=text, attachments=tuple(attachments))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "role": self.role, "text": self.text}
        if self.attachments:
            data["attachments"] = [a.to_dict() for a in self.attachments]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessage:
        role = data["role"]
        if role not in (Role.USER.value, Role.MODEL.value):
            raise ValueError(f"Unknown message role: {role!r}")
        return cls(
            id=data["id"],
            role=role,
            text=data.get("text", ""),
            attachments=tuple(
                Attachment.from_dict(a) for a in data.get("attachments") or []
            ),
        )


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ChatSession:
    """A conversation thread: ordered messages plus an immutable title."""

    id: str
    title: str = DEFAULT_TITLE
    messages: tuple[ChatMessage, ...] = ()
    created_at: str = field(default_factory=_utc_now_iso)

    def find_message(self, message_id: str) -> ChatMessage | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def with_message(self, message: ChatMessage) -> ChatSession:
        """
        Append-or-update by id.

        A new id is appended at the end. An existing id keeps its position
        and role; only text and attachments are replaced.
        """
        for index, existing in enumerate(self.messages):
            if existing.id == message.id:
                updated = existing.with_content(message.text, message.attachments)
                messages = (
                    self.messages[:index] + (updated,) + self.messages[index + 1 :]
                )
                return replace(self, messages=messages)
        return replace(self, messages=self.messages + (message,))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "messages": [m.to_dict() for m in self.messages],
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatSession:
        return cls(
            id=data["id"],
            title=data["title"],
            messages=tuple(ChatMessage.from_dict(m) for m in data.get("messages", [])),
            created_at=data["created_at"],
        )


def derive_title(text: str, max_chars: int = TITLE_MAX_CHARS) -> str:
    """Title from the first user message: its first max_chars characters."""
    return text[:max_chars] or DEFAULT_TITLE


class IdFactory:
    """
    Time-based ids that are unique per prefix for the process lifetime.

    Format is `<prefix>-<epoch-ms>[<suffix>]`. When the clock has not moved
    past the last millisecond issued for a prefix, the next millisecond is
    used instead, so ids stay strictly increasing even within one tick.
    """

    def __init__(self, clock=time.time):
        self._clock = clock
        self._last_ms: dict[str, int] = {}

    def next_ms(self, prefix: str) -> int:
        now_ms = int(self._clock() * 1000)
        last = self._last_ms.get(prefix)
        if last is not None and now_ms <= last:
            now_ms = last + 1
        self._last_ms[prefix] = now_ms
        return now_ms

    def session_id(self) -> str:
        return f"session-{self.next_ms('session')}"

    def user_message_id(self) -> str:
        return f"msg-{self.next_ms('msg')}"

    def model_message_id(self) -> str:
        return f"msg-{self.next_ms('msg-model')}-model"

    def error_message_id(self) -> str:
        return f"{ERROR_ID_PREFIX}{self.next_ms('err')}"
