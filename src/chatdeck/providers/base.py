"""
Provider base classes — the boundary to the generative-response backend.

A ResponseBackend creates ResponseHandles. A handle is one live, stateful
conversation with the backend, bound to exactly one session. Only the
streaming send is consumed by the rest of the system.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Sequence

from chatdeck.core.errors import StreamFault
from chatdeck.session.models import Attachment, ChatMessage


@dataclass(frozen=True)
class InlineAttachment:
    """What the backend receives for each attachment."""

    mime_type: str
    base64_payload: str

    @classmethod
    def from_attachment(cls, attachment: Attachment) -> InlineAttachment:
        return cls(
            mime_type=attachment.mime_type,
            base64_payload=attachment.encoded_payload,
        )


class ResponseHandle(ABC):
    """
    One live conversation with the backend.

    Bound to at most one session. Once invalidated it can never send again;
    a fresh handle must be activated instead.
    """

    def __init__(self) -> None:
        self.session_id: str | None = None
        self.invalidated = False

    def bind(self, session_id: str) -> None:
        """Tie an unbound handle to a session. Rebinding elsewhere is an error."""
        if self.session_id is not None and self.session_id != session_id:
            raise ValueError(
                f"Handle bound to {self.session_id}, cannot send for {session_id}"
            )
        self.session_id = session_id

    def invalidate(self) -> None:
        self.invalidated = True

    @property
    def usable(self) -> bool:
        return not self.invalidated

    def ensure_usable(self) -> None:
        if self.invalidated:
            raise StreamFault("Response handle was invalidated")

    @abstractmethod
    def send_streaming(
        self,
        text: str,
        attachments: Sequence[InlineAttachment] = (),
    ) -> AsyncIterator[str]:
        """
        Send one user turn and yield reply fragments as they arrive.

        Not restartable. Failures surface as StreamFault, possibly after
        some fragments were already yielded.
        """
        ...


class ResponseBackend(ABC):
    """Factory for response handles."""

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    @abstractmethod
    async def activate(
        self, prior_messages: Sequence[ChatMessage] = ()
    ) -> ResponseHandle:
        """
        Create a fresh handle. Raises InitializationFault when the backend
        cannot be reached or configured. Replaying prior_messages into the
        handle's context is best-effort.
        """
        ...

    async def health_check(self) -> dict:
        return {"provider": self.__class__.__name__, "status": "unknown"}
