"""
Message Aggregator — folds a stream of reply fragments into one message.

Before the first fragment an empty placeholder model message is upserted;
its id is fixed from then on. Every fragment is appended to the running
text and the same id is upserted again, so the store (and anyone holding a
snapshot) sees the reply grow. On failure the placeholder keeps whatever
text arrived and one synthetic error message is appended after it.

Fragments are assumed to arrive at most once; repeats would be folded in
twice.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, AsyncGenerator, Sequence

from chatdeck.chat.contracts import StreamEvent
from chatdeck.core.errors import StreamFault
from chatdeck.core.logging import StreamTimer
from chatdeck.providers.base import InlineAttachment
from chatdeck.session.models import Attachment, ChatMessage, Role

if TYPE_CHECKING:
    from chatdeck.providers.base import ResponseHandle
    from chatdeck.session.store import SessionStore

logger = logging.getLogger(__name__)

ERROR_MESSAGE_TEXT = "An error occurred. Please try again."


class MessageAggregator:
    def __init__(self, store: "SessionStore") -> None:
        self._store = store

    async def aggregate(
        self,
        handle: "ResponseHandle",
        session_id: str,
        text: str,
        attachments: Sequence[Attachment] = (),
    ) -> AsyncGenerator[StreamEvent, None]:
        """
        Stream one reply into session_id.

        Yields a FRAGMENT event per fragment, then DONE or FAULT. Cancelling
        the consuming task leaves the partial text in place and adds nothing.
        """
        store, ids = self._store, self._store.ids
        placeholder = ChatMessage(
            id=store.new_message_id(session_id, ids.model_message_id),
            role=Role.MODEL.value,
        )
        message_id = placeholder.id
        session = store.upsert_message(session_id, placeholder)

        log_extra = {"session_id": session_id, "message_id": message_id}
        inline = [InlineAttachment.from_attachment(a) for a in attachments]
        timer = StreamTimer()
        reply = ""
        fragments = 0
        stream = None

        try:
            stream = handle.send_streaming(text, inline)
            async for fragment in stream:
                timer.mark("first_fragment")
                reply += fragment
                fragments += 1
                session = store.upsert_message(
                    session_id, placeholder.with_text(reply)
                )
                yield StreamEvent.fragment_event(
                    session_id, message_id, fragment, reply, session
                )
        except asyncio.CancelledError:
            logger.info(
                "Stream canceled after %d fragments",
                fragments,
                extra={**log_extra, "fragments": fragments, "status": "canceled"},
            )
            raise
        except Exception as e:
            fault = e if isinstance(e, StreamFault) else StreamFault("Stream failed", cause=e)
            error_message = ChatMessage(
                id=store.new_message_id(session_id, ids.error_message_id),
                role=Role.MODEL.value,
                text=ERROR_MESSAGE_TEXT,
            )
            session = store.upsert_message(session_id, error_message)
            logger.warning(
                "Stream fault after %d fragments: %s",
                fragments,
                fault,
                extra={
                    **log_extra,
                    "fragments": fragments,
                    "status": "fault",
                    "duration_ms": timer.total_ms(),
                },
            )
            yield StreamEvent.fault(session_id, message_id, reply, session, fault)
            return
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        timer.mark("done")
        logger.info(
            "Reply complete (%s)",
            timer.summary(),
            extra={
                **log_extra,
                "fragments": fragments,
                "status": "done",
                "duration_ms": timer.total_ms(),
            },
        )
        yield StreamEvent.done(session_id, message_id, reply, session)
