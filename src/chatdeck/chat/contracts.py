"""
Stream Contracts — the result type of one streaming send.

A send produces zero or more FRAGMENT events followed by exactly one
terminal event: DONE or FAULT. Each event carries the session snapshot
taken right after the fold, so observers see incremental growth.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from chatdeck.session.models import ChatSession


class StreamEventType(str, Enum):
    FRAGMENT = "fragment"
    DONE = "done"
    FAULT = "fault"


@dataclass(frozen=True)
class StreamEvent:
    event_type: str
    session_id: str
    message_id: str
    text: str = ""  # Cumulative reply text so far
    fragment: str = ""
    session: ChatSession | None = None
    error: BaseException | None = None

    @property
    def is_terminal(self) -> bool:
        return self.event_type != StreamEventType.FRAGMENT.value

    @classmethod
    def fragment_event(
        cls,
        session_id: str,
        message_id: str,
        fragment: str,
        text: str,
        session: ChatSession | None,
    ) -> StreamEvent:
        return cls(
            event_type=StreamEventType.FRAGMENT.value,
            session_id=session_id,
            message_id=message_id,
            fragment=fragment,
            text=text,
            session=session,
        )

    @classmethod
    def done(
        cls,
        session_id: str,
        message_id: str,
        text: str,
        session: ChatSession | None,
    ) -> StreamEvent:
        return cls(
            event_type=StreamEventType.DONE.value,
            session_id=session_id,
            message_id=message_id,
            text=text,
            session=session,
        )

    @classmethod
    def fault(
        cls,
        session_id: str,
        message_id: str,
        text: str,
        session: ChatSession | None,
        error: BaseException,
    ) -> StreamEvent:
        return cls(
            event_type=StreamEventType.FAULT.value,
            session_id=session_id,
            message_id=message_id,
            text=text,
            session=session,
            error=error,
        )
