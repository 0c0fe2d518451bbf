"""Database schema creation and versioning.

All CREATE TABLE statements for the project cache.
Uses IF NOT EXISTS for idempotent runs.
"""
from __future__ import annotations

import logging

import aiosqlite

logger = logging.getLogger("gls.db")

SCHEMA_VERSION = 1

_TABLES = """
-- ── Schema version tracking ────────────────────────────────────────
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── 1. Projects snapshot ───────────────────────────────────────────
CREATE TABLE IF NOT EXISTS projects (
    id               INTEGER PRIMARY KEY,
    name             TEXT NOT NULL,
    path             TEXT NOT NULL,
    full_path        TEXT NOT NULL,
    web_url          TEXT NOT NULL,
    description      TEXT,
    last_activity_at TEXT,
    namespace        TEXT,
    updated_at       TEXT NOT NULL,
    last_seen_at     TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_projects_full_path ON projects(full_path);

-- ── 2. Refresh metadata ────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT
);

-- ── 3. Context prefixes ────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS contexts (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    prefix     TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_contexts_prefix ON contexts(prefix);
"""


async def run_migrations(db: aiosqlite.Connection) -> None:
    """Create all tables. Idempotent."""
    try:
        async with db.execute("SELECT MAX(version) FROM schema_version") as cur:
            row = await cur.fetchone()
            current_version = row[0] if row and row[0] else 0
    except aiosqlite.OperationalError:
        current_version = 0

    if current_version >= SCHEMA_VERSION:
        logger.debug("Schema is up to date (version %s)", current_version)
        return

    logger.info("Running migrations: %s → %s", current_version, SCHEMA_VERSION)
    await db.executescript(_TABLES)
    await db.execute(
        "INSERT INTO schema_version (version) VALUES (?)",
        (SCHEMA_VERSION,),
    )
    await db.commit()
    logger.info("Migrations complete — schema version %s", SCHEMA_VERSION)
