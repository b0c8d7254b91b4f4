"""Tests for provider interfaces, registry and the OpenAI backend."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from openai import OpenAIError

import chatdeck.core.config as config_module
from chatdeck.chat.aggregator import ERROR_MESSAGE_TEXT
from chatdeck.core.config import BackendConfig, reload_config
from chatdeck.core.errors import InitializationFault, StreamFault
from chatdeck.providers.base import InlineAttachment, ResponseBackend, ResponseHandle
from chatdeck.providers.openai_llm import (
    OpenAIChatHandle,
    OpenAIResponseBackend,
    _user_content,
    history_from_messages,
)
from chatdeck.providers.registry import get_response_backend
from chatdeck.session.models import Attachment, ChatMessage, Role
from tests.fakes import FakeResponseHandle


def _chunk(content):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


async def _chunks(*contents, error=None):
    for content in contents:
        yield _chunk(content)
    if error is not None:
        raise error


def _client(stream):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=stream)
    return client


def _settings(**overrides) -> BackendConfig:
    values = {"api_key": "sk-test", "system_prompt": "Be brief."}
    values.update(overrides)
    return BackendConfig(**values)


# ─── Interfaces ───────────────────────────────────────────────


def test_response_handle_is_abstract():
    with pytest.raises(TypeError):
        ResponseHandle()  # type: ignore


def test_response_backend_is_abstract():
    with pytest.raises(TypeError):
        ResponseBackend()  # type: ignore


def test_handle_binds_once():
    handle = FakeResponseHandle()
    handle.bind("session-1")
    handle.bind("session-1")
    with pytest.raises(ValueError):
        handle.bind("session-2")
    assert handle.session_id == "session-1"


def test_invalidated_handle_refuses_to_send():
    handle = FakeResponseHandle()
    handle.invalidate()
    assert handle.usable is False
    with pytest.raises(StreamFault):
        handle.ensure_usable()


def test_inline_attachment_from_attachment():
    attachment = Attachment("a.pdf", "application/pdf", "data:application/pdf;base64,JVBE", "JVBE")
    assert InlineAttachment.from_attachment(attachment) == InlineAttachment(
        "application/pdf", "JVBE"
    )


# ─── Registry ─────────────────────────────────────────────────


def test_get_response_backend_returns_openai():
    backend = get_response_backend()
    assert backend.__class__.__name__ == "OpenAIResponseBackend"


def test_unknown_backend_rejected(monkeypatch):
    previous = config_module.config
    monkeypatch.setenv("CHATDECK_BACKEND", "carrier-pigeon")
    reload_config()
    try:
        with pytest.raises(ValueError):
            get_response_backend()
    finally:
        config_module.config = previous


# ─── History and content ──────────────────────────────────────


def _turn(n: int, question: str, answer: str) -> list[ChatMessage]:
    return [
        ChatMessage(id=f"msg-{n}", text=question),
        ChatMessage(id=f"msg-{n}-model", role=Role.MODEL.value, text=answer),
    ]


def test_history_maps_roles_in_pairs():
    messages = _turn(1, "hi", "hello") + _turn(2, "and?", "more")
    assert history_from_messages(messages, max_turns=5) == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
        {"role": "user", "content": "and?"},
        {"role": "assistant", "content": "more"},
    ]


def test_history_skips_error_notices():
    messages = [
        ChatMessage(id="msg-1", text="hi"),
        ChatMessage(id="msg-1-model", role=Role.MODEL.value, text="Hel"),
        ChatMessage(id="err-1", role=Role.MODEL.value, text=ERROR_MESSAGE_TEXT),
    ]
    history = history_from_messages(messages, max_turns=5)
    assert history == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "Hel"},
    ]


def test_history_drops_unanswered_turns():
    messages = [
        ChatMessage(id="msg-1", text="lost"),
        ChatMessage(id="msg-1-model", role=Role.MODEL.value, text=""),
        ChatMessage(id="err-1", role=Role.MODEL.value, text=ERROR_MESSAGE_TEXT),
    ] + _turn(2, "again", "ok")
    assert [h["content"] for h in history_from_messages(messages, 5)] == ["again", "ok"]


def test_history_replays_attachment_only_turn_by_name():
    attachment = Attachment("cat.png", "image/png", "data:image/png;base64,AA", "AA")
    messages = [
        ChatMessage(id="msg-1", attachments=(attachment,)),
        ChatMessage(id="msg-1-model", role=Role.MODEL.value, text="A cat."),
    ]
    assert history_from_messages(messages, 5) == [
        {"role": "user", "content": "[attached: cat.png]"},
        {"role": "assistant", "content": "A cat."},
    ]


def test_history_counts_pairs_not_messages():
    messages = []
    for n in range(5):
        messages += _turn(n, f"q{n}", f"a{n}")
        if n == 4:
            messages.append(
                ChatMessage(id="err-4", role=Role.MODEL.value, text=ERROR_MESSAGE_TEXT)
            )
    history = history_from_messages(messages, max_turns=2)
    assert [h["content"] for h in history] == ["q3", "a3", "q4", "a4"]
    assert history_from_messages(messages, max_turns=0) == []


def test_text_only_content_is_plain_string():
    assert _user_content("hello", ()) == "hello"


def test_attachments_become_content_parts():
    parts = _user_content(
        "look",
        [
            InlineAttachment("image/png", "AAAA"),
            InlineAttachment("application/pdf", "JVBE"),
        ],
    )
    assert parts[0] == {"type": "text", "text": "look"}
    assert parts[1] == {
        "type": "image_url",
        "image_url": {"url": "data:image/png;base64,AAAA"},
    }
    assert parts[2]["type"] == "file"
    assert parts[2]["file"]["file_data"] == "data:application/pdf;base64,JVBE"
    assert parts[2]["file"]["filename"].startswith("attachment-1")


# ─── OpenAI handle ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_openai_handle_streams_fragments():
    client = _client(_chunks("Hel", None, "lo"))
    handle = OpenAIChatHandle(client, _settings())

    fragments = [f async for f in handle.send_streaming("hi")]

    assert fragments == ["Hel", "lo"]
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["stream"] is True
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["messages"] == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "hi"},
    ]
    assert handle.history == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "Hello"},
    ]


@pytest.mark.asyncio
async def test_openai_handle_sends_prior_history():
    history = [
        {"role": "user", "content": "earlier"},
        {"role": "assistant", "content": "reply"},
    ]
    client = _client(_chunks("ok"))
    handle = OpenAIChatHandle(client, _settings(system_prompt=""), history=list(history))

    [f async for f in handle.send_streaming("next")]

    messages = client.chat.completions.create.call_args.kwargs["messages"]
    assert messages == history + [{"role": "user", "content": "next"}]


@pytest.mark.asyncio
async def test_openai_error_becomes_stream_fault_after_partial_output():
    client = _client(_chunks("par", error=OpenAIError("connection reset")))
    handle = OpenAIChatHandle(client, _settings())
    received = []

    with pytest.raises(StreamFault) as exc_info:
        async for fragment in handle.send_streaming("hi"):
            received.append(fragment)

    assert received == ["par"]
    assert isinstance(exc_info.value.cause, OpenAIError)
    assert handle.history == []


@pytest.mark.asyncio
async def test_openai_request_error_becomes_stream_fault():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=OpenAIError("401"))
    handle = OpenAIChatHandle(client, _settings())

    with pytest.raises(StreamFault):
        [f async for f in handle.send_streaming("hi")]


@pytest.mark.asyncio
async def test_invalidated_openai_handle_never_calls_backend():
    client = _client(_chunks("x"))
    handle = OpenAIChatHandle(client, _settings())
    handle.invalidate()

    with pytest.raises(StreamFault):
        [f async for f in handle.send_streaming("hi")]
    client.chat.completions.create.assert_not_called()


# ─── OpenAI backend ───────────────────────────────────────────


@pytest.mark.asyncio
async def test_missing_api_key_fails_activation():
    backend = OpenAIResponseBackend(_settings(api_key=""))
    with pytest.raises(InitializationFault):
        await backend.activate()


@pytest.mark.asyncio
async def test_activate_rehydrates_history():
    backend = OpenAIResponseBackend(_settings(max_history_turns=1))
    prior = [
        ChatMessage(id="m1", text="first"),
        ChatMessage(id="m1-model", role=Role.MODEL.value, text="one"),
        ChatMessage(id="m2", text="second"),
        ChatMessage(id="m2-model", role=Role.MODEL.value, text="two"),
    ]
    try:
        handle = await backend.activate(prior)
        assert [h["content"] for h in handle.history] == ["second", "two"]
        assert handle.session_id is None
        assert (await backend.health_check())["status"] == "ready"
    finally:
        await backend.stop()
    assert (await backend.health_check())["status"] == "not_started"


@pytest.mark.asyncio
async def test_each_activation_is_a_fresh_handle():
    backend = OpenAIResponseBackend(_settings())
    try:
        first = await backend.activate()
        second = await backend.activate()
    finally:
        await backend.stop()
    assert first is not second
    assert first.history is not second.history
