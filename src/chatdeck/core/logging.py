"""
chatdeck Logging — where log records go and what they look like.

The terminal view owns the screen, so the app logs to a file by default
(CHATDECK_LOG_FILE, default chatdeck.log). A target of "-" sends records to
stderr instead, rendered by Rich with colors when stderr is a terminal.

Formats (CHATDECK_LOG_FORMAT):
    text  12:00:01 [chatdeck.chat.aggregator] INFO: Reply complete (...)
    json  one object per line, structured extras at the top level

Structured extras (logger.info(..., extra={...})):
    session_id, message_id, duration_ms, status, fragments
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import datetime, timezone
from typing import Callable

from rich.console import Console
from rich.logging import RichHandler

CONSOLE_TARGET = "-"
TEXT_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
TEXT_DATEFMT = "%H:%M:%S"

STRUCTURED_FIELDS = ("session_id", "message_id", "duration_ms", "status", "fragments")

QUIET_LOGGERS = ("httpx", "httpcore", "openai", "aiosqlite", "asyncio")


class StructuredFormatter(logging.Formatter):
    """One JSON object per record. Enable with CHATDECK_LOG_FORMAT=json."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(
            {key: getattr(record, key) for key in STRUCTURED_FIELDS if hasattr(record, key)}
        )
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class StreamTimer:
    """Offsets of named stages within one streaming send.

        timer = StreamTimer()
        timer.mark("first_fragment")
        timer.mark("done")
        timer.summary()  # "first_fragment +0.41s | done +1.70s | total 2.11s"

    Only the first mark of a stage counts.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._start = clock()
        self._offsets: dict[str, float] = {}

    def mark(self, stage: str) -> None:
        self._offsets.setdefault(stage, self._clock() - self._start)

    def elapsed(self, stage: str) -> float | None:
        """Seconds from the previous stage (or the start) to this one."""
        previous = 0.0
        for name, offset in self._offsets.items():
            if name == stage:
                return offset - previous
            previous = offset
        return None

    def total(self) -> float:
        return self._clock() - self._start

    def total_ms(self) -> int:
        return int(self.total() * 1000)

    def summary(self) -> str:
        parts = [f"{stage} +{self.elapsed(stage):.2f}s" for stage in self._offsets]
        parts.append(f"total {self.total():.2f}s")
        return " | ".join(parts)


def _force_terminal() -> bool | None:
    """CHATDECK_LOG_COLOR=true/false forces colors; auto lets Rich detect a TTY."""
    return {"true": True, "false": False}.get(
        os.getenv("CHATDECK_LOG_COLOR", "auto").lower()
    )


def _build_handler(target: str | None, as_json: bool) -> logging.Handler:
    if target and target != CONSOLE_TARGET:
        handler: logging.Handler = logging.FileHandler(target, encoding="utf-8")
    elif as_json:
        handler = logging.StreamHandler(sys.stderr)
    else:
        console = Console(stderr=True, force_terminal=_force_terminal())
        return RichHandler(console=console, show_path=False, rich_tracebacks=True)

    if as_json:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=TEXT_DATEFMT))
    return handler


def setup_logging(log_file: str | None = None) -> logging.Handler:
    """Route the root logger to log_file ("-" or None for stderr).

    Call once at startup. Level comes from CHATDECK_LOG_LEVEL (default INFO).
    Returns the installed handler.
    """
    level_name = os.getenv("CHATDECK_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    as_json = os.getenv("CHATDECK_LOG_FORMAT", "text").lower() == "json"

    handler = _build_handler(log_file, as_json)
    handler.setLevel(level)

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("chatdeck").debug(
        "Logging to %s (level=%s, json=%s)", log_file or "stderr", level_name, as_json
    )
    return handler
