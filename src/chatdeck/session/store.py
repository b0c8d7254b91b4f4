"""
Session Store — the session list, held in memory and persisted to SQLite.

The whole list of sessions lives under a single key as one JSON document.
Every mutation replaces the in-memory tuple (copy-on-write) and enqueues a
snapshot for the single writer task, which commits it in one transaction.
A fresh load therefore always sees a list that was once the live state.

Usage:
    store = SessionStore(db_path=Path("sessions.db"))
    await store.start()
    await store.load()

    session_id = store.create_session("hello")
    store.upsert_message(session_id, ChatMessage(id="msg-1", text="hello"))
    await store.flush()
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Callable

import aiosqlite

import chatdeck.core.config as config_module
from chatdeck.core.errors import PersistenceReadFault, PersistenceWriteFault
from chatdeck.session.models import ChatMessage, ChatSession, IdFactory

logger = logging.getLogger(__name__)


class SessionStore:
    """
    Newest-first collection of ChatSession with durable storage.

    Mutations are synchronous and never suspend, so observers between two
    awaits always see a consistent list. Durable writes happen only in the
    writer task started by start(); an unstarted store is memory-only.
    """

    def __init__(
        self,
        db_path: Path | None = None,
        storage_key: str | None = None,
        ids: IdFactory | None = None,
    ):
        storage = config_module.config.storage
        self.db_path = db_path if db_path is not None else Path(storage.db_path)
        self.storage_key = storage_key or storage.storage_key
        self.ids = ids or IdFactory()

        self._sessions: tuple[ChatSession, ...] = ()
        self._db: aiosqlite.Connection | None = None
        self._queue: asyncio.Queue[tuple[ChatSession, ...]] = asyncio.Queue()
        self._writer: asyncio.Task | None = None

        self.last_read_fault: PersistenceReadFault | None = None
        self.last_write_fault: PersistenceWriteFault | None = None

    # ─── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        """
        Open the database, create the table and start the writer task.

        A database that cannot be opened leaves the store memory-only; the
        fault is logged and kept on last_read_fault.
        """
        db: aiosqlite.Connection | None = None
        try:
            db = await aiosqlite.connect(str(self.db_path))
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
            """)
            await db.commit()
        except aiosqlite.Error as e:
            if db is not None:
                await db.close()
            fault = PersistenceReadFault(
                f"Cannot open session database {self.db_path}", cause=e
            )
            self.last_read_fault = fault
            logger.warning("%s, sessions will not be saved", fault)
            return

        self._db = db
        self._writer = asyncio.create_task(self._write_loop())
        logger.info("SessionStore started (db=%s)", self.db_path)

    async def stop(self) -> None:
        """Flush pending snapshots, stop the writer and close the database."""
        if self._writer:
            await self.flush()
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
            self._writer = None
        if self._db:
            await self._db.close()
            self._db = None

    # ─── Durable I/O ──────────────────────────────────────────────

    async def load(self) -> list[ChatSession]:
        """
        Read the stored session list and make it the live state.

        A missing key is a first run. Unreadable content degrades to an
        empty list; the fault is logged and kept on last_read_fault. A store
        without a database (never started, or failed to open) reads nothing.
        """
        if self._db is None:
            return []

        sessions: list[ChatSession] = []
        try:
            async with self._db.execute(
                "SELECT value FROM kv WHERE key = ?", (self.storage_key,)
            ) as cursor:
                row = await cursor.fetchone()
            if row is not None:
                sessions = _decode_sessions(row[0])
            self.last_read_fault = None
        except (aiosqlite.Error, ValueError, KeyError, TypeError) as e:
            fault = PersistenceReadFault("Failed to load sessions", cause=e)
            self.last_read_fault = fault
            logger.warning("%s, starting empty", fault)
            sessions = []

        self._sessions = tuple(sessions)
        logger.info("Loaded %d sessions", len(sessions))
        return sessions

    async def save(self, sessions: list[ChatSession] | tuple[ChatSession, ...]) -> None:
        """Serialize the full list and commit it in one transaction."""
        assert self._db is not None, "SessionStore not started"

        try:
            payload = json.dumps([s.to_dict() for s in sessions])
            await self._db.execute(
                "INSERT OR REPLACE INTO kv (key, value, updated_at) VALUES (?, ?, ?)",
                (self.storage_key, payload, time.time()),
            )
            await self._db.commit()
        except (aiosqlite.Error, TypeError, ValueError) as e:
            raise PersistenceWriteFault("Failed to save sessions", cause=e) from e

    async def flush(self) -> None:
        """Wait until every queued snapshot has been written."""
        if self._writer:
            await self._queue.join()

    async def _write_loop(self) -> None:
        """Single writer: drain to the newest snapshot, then save it."""
        while True:
            snapshot = await self._queue.get()
            taken = 1
            while not self._queue.empty():
                snapshot = self._queue.get_nowait()
                taken += 1
            try:
                await self.save(snapshot)
                self.last_write_fault = None
            except PersistenceWriteFault as fault:
                self.last_write_fault = fault
                logger.warning("%s, keeping in-memory state", fault)
            finally:
                for _ in range(taken):
                    self._queue.task_done()

    def _commit(self, sessions: tuple[ChatSession, ...]) -> None:
        self._sessions = sessions
        if self._writer:
            self._queue.put_nowait(sessions)

    # ─── Session list ─────────────────────────────────────────────

    @property
    def sessions(self) -> tuple[ChatSession, ...]:
        return self._sessions

    def get_session(self, session_id: str) -> ChatSession | None:
        for session in self._sessions:
            if session.id == session_id:
                return session
        return None

    def new_message_id(self, session_id: str, make_id: Callable[[], str]) -> str:
        """Draw ids from make_id until one is not used in the session yet."""
        session = self.get_session(session_id)
        message_id = make_id()
        while session is not None and session.find_message(message_id) is not None:
            message_id = make_id()
        return message_id

    def create_session(self, title: str) -> str:
        """Prepend a new empty session. Returns its id."""
        session_id = self.ids.session_id()
        while self.get_session(session_id) is not None:
            # Loaded ids can be ahead of this process's clock.
            session_id = self.ids.session_id()
        self._commit((ChatSession(id=session_id, title=title),) + self._sessions)
        logger.info("Created session %s", session_id, extra={"session_id": session_id})
        return session_id

    def upsert_message(
        self, session_id: str, message: ChatMessage
    ) -> ChatSession | None:
        """
        Append the message, or update text/attachments of the one with the
        same id. Returns the updated session, or None for an unknown id.
        """
        for index, session in enumerate(self._sessions):
            if session.id == session_id:
                updated = session.with_message(message)
                self._commit(
                    self._sessions[:index] + (updated,) + self._sessions[index + 1 :]
                )
                return updated
        logger.debug(
            "Upsert for unknown session %s ignored",
            session_id,
            extra={"session_id": session_id},
        )
        return None

    def clear(self) -> None:
        """Drop every session."""
        self._commit(())
        logger.info("Cleared all sessions")


def _decode_sessions(raw: str) -> list[ChatSession]:
    data = json.loads(raw)
    if not isinstance(data, list):
        raise ValueError("Stored sessions are not a list")
    return [ChatSession.from_dict(item) for item in data]
