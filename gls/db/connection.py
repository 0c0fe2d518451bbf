"""Database connection factory.

Opens the file-backed SQLite cache with WAL mode. The connection is an
explicit handle owned by the caller; there is no module-level singleton.
"""
from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

from gls.config import expand_path

logger = logging.getLogger("gls.db")

MEMORY_DB = ":memory:"


async def open_connection(db_path: str) -> aiosqlite.Connection:
    """Open (creating if needed) the cache database at db_path."""
    target = db_path if db_path == MEMORY_DB else expand_path(db_path)
    if target != MEMORY_DB:
        Path(target).parent.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(target)
    conn.row_factory = aiosqlite.Row
    # WAL lets the selection view read while a refresh is writing pages
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA busy_timeout=5000")
    logger.debug("Database connection established: %s", target)
    return conn


async def close_connection(conn: aiosqlite.Connection | None) -> None:
    if conn is None:
        return
    await conn.close()
    logger.debug("Database connection closed")
