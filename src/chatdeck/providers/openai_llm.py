"""
OpenAI Response Backend — Chat Completions streaming behind ResponseHandle.

Works with any OpenAI-compatible API via CHATDECK_BASE_URL. Each handle
keeps its own message history, so a handle is the whole remote context of
one conversation. Activation replays the most recent prior turns (text
only) into that history.
"""

from __future__ import annotations

import logging
import mimetypes
from typing import AsyncIterator, Sequence

from openai import AsyncOpenAI, OpenAIError

import chatdeck.core.config as config_module
from chatdeck.core.config import BackendConfig
from chatdeck.core.errors import InitializationFault, StreamFault
from chatdeck.providers.base import InlineAttachment, ResponseBackend, ResponseHandle
from chatdeck.session.models import ChatMessage, Role

logger = logging.getLogger(__name__)


def _data_url(attachment: InlineAttachment) -> str:
    return f"data:{attachment.mime_type};base64,{attachment.base64_payload}"


def _user_content(
    text: str, attachments: Sequence[InlineAttachment]
) -> str | list[dict]:
    """Plain string for text-only turns, content parts when files are attached."""
    if not attachments:
        return text

    parts: list[dict] = [{"type": "text", "text": text}]
    for index, attachment in enumerate(attachments):
        if attachment.mime_type.startswith("image/"):
            parts.append(
                {"type": "image_url", "image_url": {"url": _data_url(attachment)}}
            )
        else:
            ext = mimetypes.guess_extension(attachment.mime_type) or ""
            parts.append(
                {
                    "type": "file",
                    "file": {
                        "filename": f"attachment-{index}{ext}",
                        "file_data": _data_url(attachment),
                    },
                }
            )
    return parts


def history_from_messages(
    messages: Sequence[ChatMessage], max_turns: int
) -> list[dict]:
    """
    OpenAI-format history for the last max_turns user/model pairs.

    A turn is a user message plus the first non-empty model reply after it.
    Error notices are skipped, unanswered turns are dropped, and a user
    message with attachments only is replayed as the attachment names.
    """
    if max_turns <= 0:
        return []

    turns: list[tuple[str, str | None]] = []
    for message in messages:
        if message.is_error:
            continue
        if message.role == Role.USER.value:
            turns.append((_replay_text(message), None))
        elif message.text and turns and turns[-1][1] is None:
            turns[-1] = (turns[-1][0], message.text)

    history: list[dict] = []
    for question, answer in [t for t in turns if t[0] and t[1]][-max_turns:]:
        history.append({"role": "user", "content": question})
        history.append({"role": "assistant", "content": answer})
    return history


def _replay_text(message: ChatMessage) -> str:
    if message.text or not message.attachments:
        return message.text
    names = ", ".join(a.name for a in message.attachments)
    return f"[attached: {names}]"


class OpenAIChatHandle(ResponseHandle):
    """A stateful chat: remembers every completed turn it sent."""

    def __init__(
        self,
        client: AsyncOpenAI,
        settings: BackendConfig,
        history: list[dict] | None = None,
    ):
        super().__init__()
        self._client = client
        self._settings = settings
        self.history: list[dict] = history or []

    def _request_messages(self, user_message: dict) -> list[dict]:
        messages: list[dict] = []
        if self._settings.system_prompt:
            messages.append({"role": "system", "content": self._settings.system_prompt})
        limit = self._settings.max_history_turns * 2
        messages.extend(self.history[-limit:] if limit > 0 else [])
        messages.append(user_message)
        return messages

    async def send_streaming(
        self,
        text: str,
        attachments: Sequence[InlineAttachment] = (),
    ) -> AsyncIterator[str]:
        self.ensure_usable()

        user_message = {"role": "user", "content": _user_content(text, attachments)}
        reply = ""
        try:
            stream = await self._client.chat.completions.create(
                model=self._settings.model,
                messages=self._request_messages(user_message),
                max_tokens=self._settings.max_tokens,
                temperature=self._settings.temperature,
                stream=True,
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    reply += delta.content
                    yield delta.content
        except OpenAIError as e:
            raise StreamFault("Backend stream failed", cause=e) from e

        self.history.append(user_message)
        self.history.append({"role": "assistant", "content": reply})


class OpenAIResponseBackend(ResponseBackend):
    def __init__(self, settings: BackendConfig | None = None):
        self.settings = settings or config_module.config.backend
        self.client: AsyncOpenAI | None = None

    async def start(self) -> None:
        if self.client:
            return

        if not self.settings.api_key:
            raise InitializationFault("Missing OPENAI_API_KEY")

        client_kwargs: dict = {"api_key": self.settings.api_key}
        if self.settings.base_url:
            client_kwargs["base_url"] = self.settings.base_url
            logger.info(f"Using custom base_url: {self.settings.base_url}")

        try:
            self.client = AsyncOpenAI(**client_kwargs)
        except OpenAIError as e:
            raise InitializationFault("Failed to initialize OpenAI client", cause=e) from e

        logger.info(f"OpenAI backend ready (model={self.settings.model})")

    async def stop(self) -> None:
        if self.client:
            await self.client.close()
        self.client = None

    async def activate(
        self, prior_messages: Sequence[ChatMessage] = ()
    ) -> OpenAIChatHandle:
        await self.start()
        assert self.client is not None

        history = history_from_messages(
            prior_messages, self.settings.max_history_turns
        )
        if history:
            logger.debug("Rehydrating handle with %d prior messages", len(history))
        return OpenAIChatHandle(self.client, self.settings, history=history)

    async def health_check(self) -> dict:
        status = "ready" if self.client else "not_started"
        return {
            "provider": "openai",
            "model": self.settings.model,
            "status": status,
        }
