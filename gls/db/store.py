"""CacheStore: the only writer of the project snapshot, metadata and contexts.

Every statement runs under one asyncio lock, so a page transaction is never
observed half-applied by a concurrent reader on the same connection.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Iterable

import aiosqlite

from gls.date_utils import Clock, format_timestamp, utc_now
from gls.db.repositories.meta import SqliteContextRepository, SqliteMetaRepository
from gls.db.repositories.projects import SqliteProjectRepository
from gls.errors import StorageError
from gls.models import CachedProject, PickCandidate, ProjectRecord

logger = logging.getLogger("gls.db")

META_LAST_REFRESH_STARTED = "last_refresh_started_at"
META_LAST_FULL_REFRESH = "last_full_refresh_at"


class CacheStore:
    def __init__(self, db: aiosqlite.Connection, clock: Clock = utc_now):
        self.db = db
        self.clock = clock
        self.project_repo = SqliteProjectRepository(db)
        self.meta_repo = SqliteMetaRepository(db)
        self.context_repo = SqliteContextRepository(db)
        self._lock = asyncio.Lock()

    def now(self) -> str:
        return format_timestamp(self.clock())

    # ── Projects ───────────────────────────────────────────────────

    async def upsert_page(self, rows: Iterable[ProjectRecord]) -> int:
        """Upsert one listing page atomically. Raises StorageError after rollback."""
        rows = list(rows)
        async with self._lock:
            try:
                return await self.project_repo.upsert_page(rows, self.now())
            except aiosqlite.Error as exc:
                raise StorageError(f"Failed to store page of {len(rows)} projects: {exc}") from exc

    async def count_projects(self) -> int:
        async with self._lock:
            return await self.project_repo.count()

    async def get_project(self, project_id: int) -> CachedProject | None:
        async with self._lock:
            row = await self.project_repo.get_by_id(project_id)
        return CachedProject(**row) if row else None

    async def get_project_by_full_path(self, full_path: str) -> CachedProject | None:
        async with self._lock:
            row = await self.project_repo.get_by_full_path(full_path)
        return CachedProject(**row) if row else None

    async def list_projects(self) -> list[CachedProject]:
        async with self._lock:
            rows = await self.project_repo.list_all()
        return [CachedProject(**row) for row in rows]

    async def list_candidates(self, prefixes: list[str] | None = None) -> list[PickCandidate]:
        async with self._lock:
            rows = await self.project_repo.list_candidates(prefixes)
        return [PickCandidate(**row) for row in rows]

    async def prune(self, stale_days: int) -> int:
        """Delete projects not seen for more than stale_days. Returns rows removed."""
        cutoff = format_timestamp(self.clock() - timedelta(days=stale_days))
        async with self._lock:
            try:
                removed = await self.project_repo.delete_unseen_since(cutoff)
            except aiosqlite.Error as exc:
                raise StorageError(f"Failed to prune stale projects: {exc}") from exc
        if removed:
            logger.info("Pruned %s stale projects (> %s day(s) unseen).", removed, stale_days)
        return removed

    # ── Metadata ───────────────────────────────────────────────────

    async def get_meta(self, key: str) -> str | None:
        async with self._lock:
            return await self.meta_repo.get(key)

    async def set_meta(self, key: str, value: str) -> None:
        async with self._lock:
            try:
                await self.meta_repo.set(key, value)
            except aiosqlite.Error as exc:
                raise StorageError(f"Failed to write metadata {key}: {exc}") from exc

    async def all_meta(self) -> dict[str, str]:
        async with self._lock:
            return await self.meta_repo.list_all()

    # ── Context prefixes ───────────────────────────────────────────

    async def add_context_prefixes(self, prefixes: Iterable[str]) -> int:
        cleaned = [p.strip() for p in prefixes if p and p.strip()]
        if not cleaned:
            return 0
        async with self._lock:
            try:
                inserted = await self.context_repo.add_many(cleaned)
            except aiosqlite.Error as exc:
                raise StorageError(f"Failed to store context prefixes: {exc}") from exc
        logger.info("Added %s context(s): %s", len(cleaned), ", ".join(cleaned))
        return inserted

    async def list_context_prefixes(self) -> list[str]:
        async with self._lock:
            return await self.context_repo.list_all()

    async def clear_context_prefixes(self) -> None:
        async with self._lock:
            try:
                await self.context_repo.delete_all()
                await self.db.commit()
            except aiosqlite.Error as exc:
                await self.db.rollback()
                raise StorageError(f"Failed to clear context prefixes: {exc}") from exc
        logger.info("Cleared all stored context filters.")

    # ── Reset ──────────────────────────────────────────────────────

    async def clear_all(self) -> None:
        """Wipe projects, metadata and contexts in one transaction."""
        logger.info("Clearing data store...")
        async with self._lock:
            try:
                await self.project_repo.delete_all()
                await self.meta_repo.delete_all()
                await self.context_repo.delete_all()
                await self.db.commit()
            except aiosqlite.Error as exc:
                await self.db.rollback()
                raise StorageError(f"Failed to clear data store: {exc}") from exc
        logger.info("Data store cleared successfully.")
