"""SQLite implementation of MetaRepository and ContextRepository."""
from __future__ import annotations

from typing import Iterable

import aiosqlite


class SqliteMetaRepository:
    """Singleton key/value refresh metadata."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def get(self, key: str) -> str | None:
        async with self.db.execute("SELECT value FROM meta WHERE key = ?", (key,)) as cur:
            row = await cur.fetchone()
            return row[0] if row else None

    async def set(self, key: str, value: str) -> None:
        await self.db.execute(
            """INSERT INTO meta (key, value) VALUES (?, ?)
               ON CONFLICT(key) DO UPDATE SET value=excluded.value""",
            (key, value),
        )
        await self.db.commit()

    async def list_all(self) -> dict[str, str]:
        async with self.db.execute("SELECT key, value FROM meta ORDER BY key") as cur:
            return {r["key"]: r["value"] for r in await cur.fetchall()}

    async def delete_all(self) -> None:
        await self.db.execute("DELETE FROM meta")


class SqliteContextRepository:
    """Stored full_path prefixes that scope the candidate view."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def add_many(self, prefixes: Iterable[str]) -> int:
        """Insert prefixes, ignoring ones already stored. Returns rows inserted."""
        inserted = 0
        try:
            for prefix in prefixes:
                async with self.db.execute(
                    "INSERT OR IGNORE INTO contexts (prefix) VALUES (?)", (prefix,)
                ) as cur:
                    inserted += max(0, cur.rowcount or 0)
            await self.db.commit()
        except BaseException:
            await self.db.rollback()
            raise
        return inserted

    async def list_all(self) -> list[str]:
        async with self.db.execute("SELECT prefix FROM contexts ORDER BY prefix") as cur:
            return [r["prefix"] for r in await cur.fetchall()]

    async def delete_all(self) -> None:
        await self.db.execute("DELETE FROM contexts")
