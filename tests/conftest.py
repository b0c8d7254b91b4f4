"""
Shared fixtures for chatdeck tests.

SessionStore fixtures backed by a temporary SQLite file or by memory only.
Backend doubles live in tests/fakes.py.
"""

from __future__ import annotations

import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from chatdeck.session.store import SessionStore


@pytest_asyncio.fixture
async def store():
    """A started SessionStore with a temp DB for each test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        s = SessionStore(db_path=Path(tmpdir) / "test_sessions.db")
        await s.start()
        yield s
        await s.stop()


@pytest.fixture
def memory_store():
    """A SessionStore that was never started: memory only."""
    return SessionStore(db_path=Path("unused.db"))
