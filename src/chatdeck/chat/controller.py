"""
Chat Controller — session activation, message dispatch and view mode.

The controller owns the current ResponseHandle as plain state. Every change
of the current session invalidates the handle, and a fresh one is activated
(eagerly on new chat and session selection, lazily on send). A handle is
bound to the session it first sends for, so it can never send into another.

View modes:
    IDLE        no conversation shown
    ACTIVE      one session focused
    HISTORY     browsing all sessions
    VOICE_TURN  ACTIVE with the voice-oriented view layered on top

Faults never leave the controller: activation failures become the `error`
banner, stream failures become the banner plus the error message the
aggregator appended to the session.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Callable, Sequence

import chatdeck.core.config as config_module
from chatdeck.chat.aggregator import ERROR_MESSAGE_TEXT, MessageAggregator
from chatdeck.chat.contracts import StreamEvent, StreamEventType
from chatdeck.core.errors import InitializationFault
from chatdeck.session.models import (
    Attachment,
    ChatMessage,
    ChatSession,
    Role,
    derive_title,
)

if TYPE_CHECKING:
    from chatdeck.providers.base import ResponseBackend, ResponseHandle
    from chatdeck.session.store import SessionStore

logger = logging.getLogger(__name__)

INIT_ERROR_TEXT = "Failed to initialize chat session. Check API key."


class ViewMode(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    HISTORY = "history"
    VOICE_TURN = "voice_turn"


class ChatController:
    def __init__(
        self,
        store: "SessionStore",
        backend: "ResponseBackend",
        title_max_chars: int | None = None,
    ) -> None:
        self.store = store
        self.backend = backend
        self.aggregator = MessageAggregator(store)
        self.title_max_chars = (
            title_max_chars or config_module.config.chat.title_max_chars
        )

        self.view = ViewMode.IDLE
        self.current_session_id: str | None = None
        self.handle: "ResponseHandle | None" = None
        self.error: str | None = None

        self.loading_session_id: str | None = None
        self._sending = False
        self._stream_task: asyncio.Task | None = None
        self._cancel_requested = False
        self._activation_gen = 0

    # ─── State accessors ──────────────────────────────────────────

    @property
    def is_loading(self) -> bool:
        return self._sending

    @property
    def current_session(self) -> ChatSession | None:
        if self.current_session_id is None:
            return None
        return self.store.get_session(self.current_session_id)

    @property
    def current_messages(self) -> tuple[ChatMessage, ...]:
        session = self.current_session
        return session.messages if session else ()

    @property
    def latest_model_text(self) -> str | None:
        """Text of the newest model message in the current session."""
        for message in reversed(self.current_messages):
            if message.role == Role.MODEL.value:
                return message.text
        return None

    def dismiss_error(self) -> None:
        self.error = None

    # ─── Handle lifecycle ─────────────────────────────────────────

    def _invalidate_handle(self) -> None:
        if self.handle is not None:
            self.handle.invalidate()
            self.handle = None

    def _handle_fits(self, session_id: str | None) -> bool:
        handle = self.handle
        return (
            handle is not None
            and handle.usable
            and handle.session_id in (None, session_id)
        )

    async def activate(self, session_id: str | None = None) -> bool:
        """
        Replace the handle with a fresh one for session_id (None = a chat
        that has not been created yet). Returns False if activation failed
        or was superseded by a newer one while it was in progress.
        """
        self._invalidate_handle()
        self._activation_gen += 1
        generation = self._activation_gen

        session = self.store.get_session(session_id) if session_id else None
        prior = session.messages if session else ()

        try:
            handle = await self.backend.activate(prior)
        except InitializationFault as fault:
            if generation == self._activation_gen:
                self.error = INIT_ERROR_TEXT
            logger.warning("Handle activation failed: %s", fault)
            return False

        if generation != self._activation_gen or session_id != self.current_session_id:
            handle.invalidate()
            logger.debug("Discarding superseded handle for %s", session_id)
            return False

        if session_id is not None:
            handle.bind(session_id)
        self.handle = handle
        self.error = None
        logger.debug(
            "Handle activated (session=%s, prior=%d)",
            session_id,
            len(prior),
            extra={"session_id": session_id},
        )
        return True

    # ─── View transitions ─────────────────────────────────────────

    async def new_chat(self) -> bool:
        """ACTIVE → IDLE with a fresh, unbound handle."""
        self.current_session_id = None
        self.view = ViewMode.IDLE
        logger.info("New chat")
        return await self.activate()

    def show_history(self) -> bool:
        if self.view not in (ViewMode.ACTIVE, ViewMode.IDLE):
            logger.debug("History not reachable from %s", self.view.value)
            return False
        self.view = ViewMode.HISTORY
        return True

    def close_history(self) -> None:
        self.view = ViewMode.ACTIVE if self.current_session_id else ViewMode.IDLE

    async def select_session(self, session_id: str) -> bool:
        """Focus an existing session and re-activate with its history."""
        if self.store.get_session(session_id) is None:
            logger.warning(
                "Cannot select unknown session %s",
                session_id,
                extra={"session_id": session_id},
            )
            return False

        self.current_session_id = session_id
        self.view = ViewMode.ACTIVE
        logger.info("Selected session %s", session_id, extra={"session_id": session_id})
        await self.activate(session_id)
        return True

    async def start_voice_turn(self) -> bool:
        if self.view not in (ViewMode.ACTIVE, ViewMode.IDLE):
            logger.debug("Voice turn not reachable from %s", self.view.value)
            return False
        self.view = ViewMode.VOICE_TURN
        await self.activate(self.current_session_id)
        return True

    def end_voice_turn(self) -> None:
        if self.view == ViewMode.VOICE_TURN:
            self.view = ViewMode.ACTIVE if self.current_session_id else ViewMode.IDLE

    # ─── Sending ──────────────────────────────────────────────────

    async def send_message(
        self,
        text: str,
        attachments: Sequence[Attachment] = (),
        on_event: Callable[[StreamEvent], None] | None = None,
    ) -> StreamEvent | None:
        """
        Send one user turn and stream the reply into the current session.

        Returns the terminal event (DONE or FAULT), or None when the send
        was refused, the handle could not be activated, or the stream was
        canceled via cancel_stream().
        """
        attachments = tuple(attachments)
        if not text.strip() and not attachments:
            return None
        if self._sending:
            logger.warning("Send refused: a reply is still streaming")
            return None

        self._sending = True
        self._cancel_requested = False
        try:
            session_id = self.current_session_id
            if not self._handle_fits(session_id):
                if not await self.activate(session_id):
                    return None
            handle = self.handle
            assert handle is not None

            self.error = None
            if session_id is None:
                session_id = self.store.create_session(
                    derive_title(text, self.title_max_chars)
                )
                self.current_session_id = session_id
            handle.bind(session_id)

            user_message = ChatMessage(
                id=self.store.new_message_id(
                    session_id, self.store.ids.user_message_id
                ),
                role=Role.USER.value,
                text=text,
                attachments=attachments,
            )
            self.store.upsert_message(session_id, user_message)
            if self.view == ViewMode.IDLE:
                self.view = ViewMode.ACTIVE

            self.loading_session_id = session_id
            self._stream_task = asyncio.create_task(
                self._consume(handle, session_id, text, attachments, on_event)
            )
            try:
                return await self._stream_task
            except asyncio.CancelledError:
                if self._cancel_requested and self._stream_task.cancelled():
                    logger.info(
                        "Reply canceled", extra={"session_id": session_id}
                    )
                    return None
                raise
        finally:
            self._sending = False
            self._stream_task = None
            self.loading_session_id = None

    async def _consume(
        self,
        handle: "ResponseHandle",
        session_id: str,
        text: str,
        attachments: tuple[Attachment, ...],
        on_event: Callable[[StreamEvent], None] | None,
    ) -> StreamEvent | None:
        final: StreamEvent | None = None
        async for event in self.aggregator.aggregate(
            handle, session_id, text, attachments
        ):
            if event.event_type == StreamEventType.FAULT.value:
                self.error = ERROR_MESSAGE_TEXT
            if on_event is not None:
                on_event(event)
            final = event
        return final

    async def cancel_stream(self) -> bool:
        """Stop the in-flight reply, keeping whatever text already arrived."""
        task = self._stream_task
        if task is None or task.done():
            return False
        self._cancel_requested = True
        task.cancel()
        return True
