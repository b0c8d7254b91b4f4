"""
Session management — conversation state and its local persistence.

Key components:
- ChatSession / ChatMessage / Attachment: frozen data model
- IdFactory: time-ordered, collision-free ids
- SessionStore: in-memory session list with a single SQLite writer
"""

from chatdeck.session.models import (
    DEFAULT_TITLE,
    Attachment,
    ChatMessage,
    ChatSession,
    IdFactory,
    Role,
    derive_title,
)
from chatdeck.session.store import SessionStore

__all__ = [
    "DEFAULT_TITLE",
    "Attachment",
    "ChatMessage",
    "ChatSession",
    "IdFactory",
    "Role",
    "derive_title",
    "SessionStore",
]
