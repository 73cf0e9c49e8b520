"""Shared fixtures: a throwaway SQLite database per test."""

from __future__ import annotations

import pytest_asyncio

from screener.db import close_db, init_db


@pytest_asyncio.fixture
async def db(tmp_path):
    """Point the database at a temporary SQLite file for one test."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path}/test.db")
    yield
    await close_db()
