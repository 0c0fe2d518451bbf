"""SQLite implementation of the project snapshot repository."""
from __future__ import annotations

from typing import Iterable

import aiosqlite

from gls.models import ProjectRecord

# updated_at only moves when a semantic field differs; NULL and '' compare equal.
_UPSERT_SQL = """INSERT INTO projects (
    id, name, path, full_path, web_url, description,
    last_activity_at, namespace, updated_at, last_seen_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    name=excluded.name,
    path=excluded.path,
    full_path=excluded.full_path,
    web_url=excluded.web_url,
    description=excluded.description,
    last_activity_at=excluded.last_activity_at,
    namespace=excluded.namespace,
    updated_at=CASE WHEN (
        projects.name != excluded.name OR
        projects.path != excluded.path OR
        projects.full_path != excluded.full_path OR
        projects.web_url != excluded.web_url OR
        COALESCE(projects.description, '') != COALESCE(excluded.description, '') OR
        COALESCE(projects.last_activity_at, '') != COALESCE(excluded.last_activity_at, '') OR
        COALESCE(projects.namespace, '') != COALESCE(excluded.namespace, '')
    ) THEN excluded.updated_at ELSE projects.updated_at END,
    last_seen_at=excluded.last_seen_at
"""

_CANDIDATE_COLUMNS = "id, full_path, name, web_url"


def _prefix_clause(prefixes: list[str]) -> tuple[str, tuple]:
    # substr keeps '%' and '_' literal, unlike LIKE
    clause = " OR ".join("substr(full_path, 1, length(?)) = ?" for _ in prefixes)
    params: list[str] = []
    for prefix in prefixes:
        params.extend((prefix, prefix))
    return clause, tuple(params)


class SqliteProjectRepository:
    """Cached GitLab projects keyed by provider id."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def upsert_page(self, rows: Iterable[ProjectRecord], now: str) -> int:
        """Write one page in a single transaction. All rows commit or none do."""
        params = [(*row.as_row(), now, now) for row in rows]
        if not params:
            return 0
        try:
            await self.db.executemany(_UPSERT_SQL, params)
            await self.db.commit()
        except BaseException:
            await self.db.rollback()
            raise
        return len(params)

    async def count(self) -> int:
        async with self.db.execute("SELECT COUNT(*) FROM projects") as cur:
            row = await cur.fetchone()
            return int(row[0]) if row else 0

    async def get_by_id(self, project_id: int) -> dict | None:
        async with self.db.execute("SELECT * FROM projects WHERE id = ?", (project_id,)) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def get_by_full_path(self, full_path: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM projects WHERE full_path = ? ORDER BY id LIMIT 1", (full_path,)
        ) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def list_all(self) -> list[dict]:
        async with self.db.execute("SELECT * FROM projects ORDER BY full_path, id") as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def list_candidates(self, prefixes: list[str] | None = None) -> list[dict]:
        if prefixes:
            clause, params = _prefix_clause(prefixes)
            query = f"SELECT {_CANDIDATE_COLUMNS} FROM projects WHERE {clause} ORDER BY full_path, id"
        else:
            query = f"SELECT {_CANDIDATE_COLUMNS} FROM projects ORDER BY full_path, id"
            params = ()
        async with self.db.execute(query, params) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def delete_unseen_since(self, cutoff: str) -> int:
        """Delete rows whose last_seen_at is older than cutoff. Returns rows removed."""
        async with self.db.execute("DELETE FROM projects WHERE last_seen_at < ?", (cutoff,)) as cur:
            removed = cur.rowcount or 0
        await self.db.commit()
        return max(0, removed)

    async def delete_all(self) -> None:
        await self.db.execute("DELETE FROM projects")
