#!/usr/bin/env python3
"""
chatdeck TUI — terminal front end for the chat controller.

Rich renders the conversation and the live streaming reply; prompt_toolkit
reads input asynchronously. All state lives in ChatController; this module
only draws it and turns commands into controller calls.

Usage: chatdeck [--db sessions.db] [--model gpt-4o-mini] [--log-file chatdeck.log]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from pathlib import Path

from prompt_toolkit import PromptSession
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.patch_stdout import patch_stdout
from prompt_toolkit.styles import Style
from rich.console import Console, Group
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

import chatdeck.core.config as config_module
from chatdeck.attachments import attachment_from_path
from chatdeck.chat.contracts import StreamEvent
from chatdeck.chat.controller import ChatController, ViewMode
from chatdeck.core.logging import setup_logging
from chatdeck.providers.registry import get_response_backend
from chatdeck.session.models import Attachment, ChatMessage, ChatSession, Role
from chatdeck.session.store import SessionStore

logger = logging.getLogger(__name__)

SPINNER = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"

HELP_TEXT = (
    "[bold]/new[/bold] new chat · [bold]/history[/bold] list chats · "
    "[bold]/open N[/bold] open chat · [bold]/back[/bold] leave history · "
    "[bold]/voice[/bold] toggle voice view · [bold]/attach PATH[/bold] attach file · "
    "[bold]/clear[/bold] delete all chats · [bold]/quit[/bold] exit\n"
    "Ctrl-C while a reply streams stops it."
)

PROMPTS = {
    ViewMode.IDLE: "you → ",
    ViewMode.ACTIVE: "you → ",
    ViewMode.HISTORY: "history → ",
    ViewMode.VOICE_TURN: "voice → ",
}


def parse_command(line: str) -> tuple[str, str] | None:
    """Split '/open 3' into ('open', '3'). Plain text returns None."""
    line = line.strip()
    if not line.startswith("/"):
        return None
    name, _, arg = line[1:].partition(" ")
    return name.lower(), arg.strip()


def render_message(message: ChatMessage) -> Text:
    style = "cyan" if message.role == Role.MODEL.value else "white"
    label = "model" if message.role == Role.MODEL.value else "you"
    text = Text()
    text.append(f"{label}: ", style="bold dim")
    text.append(message.text, style=style)
    for attachment in message.attachments:
        text.append(f"\n  📎 {attachment.name} ({attachment.mime_type})", style="dim")
    return text


def render_history(sessions: tuple[ChatSession, ...]) -> Table:
    table = Table(title="Chats", expand=True, border_style="dim")
    table.add_column("#", justify="right", style="bold")
    table.add_column("Title")
    table.add_column("Messages", justify="right")
    table.add_column("Created", style="dim")
    for index, session in enumerate(sessions, 1):
        table.add_row(
            str(index),
            escape(session.title),
            str(len(session.messages)),
            session.created_at[:16].replace("T", " "),
        )
    return table


class ChatDeckTUI:
    """Rich-based terminal UI over a ChatController."""

    def __init__(self, controller: ChatController, console: Console | None = None):
        self.controller = controller
        self.console = console or Console()

        self.current_response = ""
        self.pending_attachments: list[Attachment] = []

        self._spinner_idx = 0
        self._live: Live | None = None

    # ── Rendering ─────────────────────────────────────────────────────────

    def _render_stream(self) -> Group:
        parts: list = []
        if self.current_response:
            parts.append(Text(self.current_response, style="cyan"))
        spin = SPINNER[self._spinner_idx % len(SPINNER)]
        parts.append(Text(f"  {spin} thinking…", style="dim magenta"))
        return Group(*parts)

    def _on_event(self, event: StreamEvent) -> None:
        self.current_response = event.text
        self._spinner_idx += 1
        if self._live:
            self._live.update(self._render_stream())

    def print_banner(self) -> None:
        if self.controller.error:
            self.console.print(
                Panel(escape(self.controller.error), border_style="red", padding=(0, 1))
            )
            self.controller.dismiss_error()

    def print_session(self) -> None:
        session = self.controller.current_session
        if session is None:
            return
        self.console.print(Panel(escape(session.title), border_style="dim"))
        for message in session.messages:
            self.console.print(render_message(message))
        self.console.print()

    def print_voice_reply(self) -> None:
        latest = self.controller.latest_model_text
        self.console.print(
            Panel(
                Text(latest or "Say something…", style="bold cyan"),
                title="Voice",
                border_style="magenta",
                padding=(1, 2),
            )
        )

    # ── Commands ──────────────────────────────────────────────────────────

    async def handle_command(self, name: str, arg: str) -> bool:
        """Run one command. Returns False when the user wants to quit."""
        controller = self.controller

        if name in ("quit", "exit", "q"):
            return False

        if name == "help":
            self.console.print(HELP_TEXT)
        elif name == "new":
            self.pending_attachments.clear()
            await controller.new_chat()
            self.console.print("[dim]New chat.[/dim]")
        elif name == "history":
            if controller.show_history():
                self.console.print(render_history(controller.store.sessions))
        elif name == "back":
            controller.close_history()
            self.print_session()
        elif name == "open":
            sessions = controller.store.sessions
            if not arg.isdigit() or not 1 <= int(arg) <= len(sessions):
                self.console.print(f"[red]No chat number {escape(arg)}[/red]")
            elif await controller.select_session(sessions[int(arg) - 1].id):
                self.print_session()
        elif name == "voice":
            if controller.view == ViewMode.VOICE_TURN:
                controller.end_voice_turn()
                self.console.print("[dim]Voice view closed.[/dim]")
            elif await controller.start_voice_turn():
                self.print_voice_reply()
        elif name == "attach":
            try:
                attachment = attachment_from_path(arg)
            except OSError as e:
                self.console.print(f"[red]Cannot attach {escape(arg)}: {e}[/red]")
            else:
                self.pending_attachments.append(attachment)
                self.console.print(f"[dim]Attached {escape(attachment.name)}[/dim]")
        elif name == "clear":
            controller.store.clear()
            await controller.new_chat()
            self.console.print("[dim]All chats deleted.[/dim]")
        else:
            self.console.print(f"[red]Unknown command /{escape(name)}[/red] (try /help)")

        self.print_banner()
        return True

    # ── Sending ───────────────────────────────────────────────────────────

    async def send(self, text: str) -> None:
        controller = self.controller
        if controller.view == ViewMode.HISTORY:
            controller.close_history()

        attachments = tuple(self.pending_attachments)
        self.pending_attachments.clear()
        self.current_response = ""

        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(
                signal.SIGINT, lambda: asyncio.ensure_future(controller.cancel_stream())
            )
            handles_sigint = True
        except (NotImplementedError, RuntimeError):
            handles_sigint = False

        self._live = Live(
            self._render_stream(),
            console=self.console,
            refresh_per_second=12,
            transient=True,
        )
        try:
            with self._live:
                final = await controller.send_message(
                    text, attachments, on_event=self._on_event
                )
        finally:
            self._live = None
            if handles_sigint:
                loop.remove_signal_handler(signal.SIGINT)

        if final is None and not controller.error:
            self.console.print("[dim](no reply)[/dim]")
        elif controller.view == ViewMode.VOICE_TURN:
            self.print_voice_reply()
        else:
            messages = controller.current_messages
            for message in messages[-2:]:
                if message.role == Role.MODEL.value:
                    self.console.print(render_message(message))
            self.console.print()
        self.print_banner()

    # ── Main loop ─────────────────────────────────────────────────────────

    async def run(self) -> None:
        self.console.print()
        self.console.print(
            Panel(
                "[bold cyan]chatdeck[/bold cyan] — terminal chat\n" + HELP_TEXT,
                border_style="dim",
                padding=(0, 1),
            )
        )
        self.print_banner()

        session: PromptSession = PromptSession(history=InMemoryHistory())
        style = Style.from_dict({"prompt": "#888888"})

        while True:
            try:
                with patch_stdout():
                    line = await session.prompt_async(
                        [("class:prompt", PROMPTS[self.controller.view])],
                        style=style,
                    )
            except (EOFError, KeyboardInterrupt):
                break

            command = parse_command(line)
            if command is not None:
                if not await self.handle_command(*command):
                    break
                continue

            if line.strip() or self.pending_attachments:
                await self.send(line.strip())

        self.console.print("\n[dim]Goodbye.[/dim]")


async def _run(args: argparse.Namespace) -> None:
    db_path = Path(args.db) if args.db else None
    store = SessionStore(db_path=db_path)
    backend = get_response_backend()
    controller = ChatController(store, backend)
    try:
        await store.start()
        await store.load()
        await controller.activate()
        await ChatDeckTUI(controller).run()
    finally:
        await controller.cancel_stream()
        await backend.stop()
        await store.stop()


def main():
    parser = argparse.ArgumentParser(description="chatdeck terminal chat")
    parser.add_argument("--db", default=None, help="Session database path")
    parser.add_argument("--model", default=None, help="Model name override")
    parser.add_argument(
        "--log-file",
        default=os.getenv("CHATDECK_LOG_FILE", "chatdeck.log"),
        help='Log file path, or "-" to log to stderr',
    )
    args = parser.parse_args()

    if args.model:
        os.environ["CHATDECK_MODEL"] = args.model
        config_module.reload_config()

    setup_logging(log_file=args.log_file)

    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
