"""
Fault taxonomy.

None of these are fatal. The controller catches them at the boundary where
the async operation was started and turns them into a banner message or a
synthetic chat message. Persistence faults are only ever logged.
"""

from __future__ import annotations


class ChatDeckFault(Exception):
    """Base class for every recoverable fault."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message} ({type(self.cause).__name__}: {self.cause})"
        return self.message


class InitializationFault(ChatDeckFault):
    """The backend handle could not be created (e.g. missing credentials)."""


class StreamFault(ChatDeckFault):
    """A streaming send failed, before or after some fragments arrived."""


class PersistenceFault(ChatDeckFault):
    """Durable storage failed. The in-memory state stays usable."""


class PersistenceReadFault(PersistenceFault):
    """Stored sessions were unreadable; the store fell back to empty."""


class PersistenceWriteFault(PersistenceFault):
    """A snapshot could not be committed; the previous one stays durable."""
