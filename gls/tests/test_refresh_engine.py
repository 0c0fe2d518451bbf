import asyncio
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import aiosqlite

from gls.date_utils import format_timestamp
from gls.db.page_fetcher import PageFetcher
from gls.db.refresh_engine import (
    STATE_COLD,
    STATE_WARM_REFRESHING,
    STATE_WARM_THROTTLED,
    RefreshEngine,
    RefreshTarget,
)
from gls.db.sqlite_migrations import run_migrations
from gls.db.store import META_LAST_FULL_REFRESH, META_LAST_REFRESH_STARTED, CacheStore
from gls.errors import RemoteFetchError, StorageError
from gls.models import ProjectRecord
from gls.selection import SelectionView


class _Clock:
    def __init__(self) -> None:
        self.current = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


def _record(project_id: int, full_path: str) -> ProjectRecord:
    return ProjectRecord(
        id=project_id,
        name=full_path.rsplit("/", 1)[-1],
        path=full_path.rsplit("/", 1)[-1],
        full_path=full_path,
        web_url=f"https://gitlab.example.com/{full_path}",
    )


class _FakeSource:
    """Serves fixed project lists per scope.

    Counting a scope in `failing` fails; fetching any page of a scope in
    `failing_pages` fails.
    """

    def __init__(self, projects: dict[str, list[ProjectRecord]], failing: set[str] | None = None) -> None:
        self.projects = projects
        self.failing = set(failing or ())
        self.failing_pages: set[str] = set()
        self.count_calls: list[str] = []
        self.gate: asyncio.Event | None = None

    async def count(self, scope: str) -> int:
        self.count_calls.append(scope)
        if self.gate is not None:
            await self.gate.wait()
        if scope in self.failing:
            raise RemoteFetchError(f"count failed for {scope}", scope=scope)
        return len(self.projects.get(scope, []))

    async def fetch_page(self, scope: str, page: int, page_size: int) -> list[ProjectRecord]:
        if scope in self.failing_pages:
            raise RemoteFetchError(f"page {page} failed for {scope}", scope=scope)
        rows = self.projects.get(scope, [])
        return rows[(page - 1) * page_size : page * page_size]


class RefreshEngineTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.clock = _Clock()
        self.store = CacheStore(self.db, clock=self.clock)
        self.source = _FakeSource({
            "acme/backend": [_record(1, "acme/backend/api"), _record(2, "acme/backend/worker")],
            "acme/frontend": [_record(3, "acme/frontend/web")],
        })

    async def asyncTearDown(self) -> None:
        await self.db.close()

    def _engine(self, scopes=("acme/backend", "acme/frontend")) -> RefreshEngine:
        return RefreshEngine(
            self.store,
            [RefreshTarget(self.source, scope) for scope in scopes],
            fetcher=PageFetcher(self.store, page_size=1, max_concurrency=2, retry_attempts=2),
            stale_days=1,
            min_refresh_minutes=10,
        )

    async def _mark_full_refresh(self, minutes_ago: int) -> None:
        stamp = format_timestamp(self.clock() - timedelta(minutes=minutes_ago))
        await self.store.set_meta(META_LAST_FULL_REFRESH, stamp)

    async def test_cold_start_refreshes_in_foreground(self) -> None:
        engine = self._engine()

        decision = await engine.begin()

        self.assertEqual(decision.state, STATE_COLD)
        self.assertIsNone(decision.handle)
        self.assertTrue(decision.result.ok)
        self.assertEqual(decision.result.rows, 3)
        self.assertEqual(await self.store.count_projects(), 3)
        self.assertEqual(await self.store.get_meta(META_LAST_FULL_REFRESH), self.store.now())
        self.assertIsNotNone(await self.store.get_meta(META_LAST_REFRESH_STARTED))

    async def test_cold_start_failure_propagates(self) -> None:
        self.source.failing = {"acme/frontend"}
        engine = self._engine()

        with self.assertRaises(RemoteFetchError):
            await engine.begin()
        self.assertIsNone(await self.store.get_meta(META_LAST_FULL_REFRESH))

    async def test_cold_start_in_background_returns_handle(self) -> None:
        engine = self._engine()

        decision = await engine.begin(cold_in_background=True)

        self.assertEqual(decision.state, STATE_COLD)
        result = await decision.handle.wait()
        self.assertTrue(result.ok)
        self.assertEqual(await self.store.count_projects(), 3)

    async def test_recent_full_refresh_is_throttled(self) -> None:
        await self.store.upsert_page([_record(1, "acme/backend/api")])
        await self._mark_full_refresh(minutes_ago=5)
        engine = self._engine()

        decision = await engine.begin()

        self.assertEqual(decision.state, STATE_WARM_THROTTLED)
        self.assertIsNone(decision.handle)
        self.assertEqual(self.source.count_calls, [])

    async def test_refresh_interval_boundary_is_not_throttled(self) -> None:
        await self.store.upsert_page([_record(1, "acme/backend/api")])
        await self._mark_full_refresh(minutes_ago=10)
        engine = self._engine()

        decision = await engine.begin()

        self.assertEqual(decision.state, STATE_WARM_REFRESHING)
        self.assertTrue((await decision.handle.wait()).ok)

    async def test_failed_page_fetch_leaves_cache_and_freshness_untouched(self) -> None:
        await self.store.upsert_page([_record(1, "acme/backend/api"), _record(3, "acme/frontend/web")])
        seeded = await self.store.list_projects()
        await self._mark_full_refresh(minutes_ago=30)
        stamp = await self.store.get_meta(META_LAST_FULL_REFRESH)
        self.clock.advance(minutes=5)
        self.source.failing_pages = {"acme/backend", "acme/frontend"}
        engine = self._engine()

        with self.assertRaises(RemoteFetchError):
            await engine.refresh()

        self.assertEqual(await self.store.get_meta(META_LAST_FULL_REFRESH), stamp)
        after = await self.store.list_projects()
        self.assertEqual(
            [(p.id, p.updated_at, p.last_seen_at) for p in after],
            [(p.id, p.updated_at, p.last_seen_at) for p in seeded],
        )

    async def test_prune_failure_keeps_freshness_unstamped(self) -> None:
        engine = self._engine()

        with patch.object(self.store, "prune", new=AsyncMock(side_effect=StorageError("database is locked"))):
            with self.assertRaises(StorageError):
                await engine.refresh()

        self.assertEqual(await self.store.count_projects(), 3)
        self.assertIsNone(await self.store.get_meta(META_LAST_FULL_REFRESH))
        operations = await engine.list_operations()
        self.assertEqual(operations[0]["status"], "failed")
        self.assertEqual(operations[0]["phase"], "failed")
    async def test_stale_cache_is_served_while_refreshing(self) -> None:
        await self.store.upsert_page([_record(1, "acme/backend/api")])
        await self._mark_full_refresh(minutes_ago=30)
        self.source.gate = asyncio.Event()
        engine = self._engine()

        decision = await engine.begin()
        self.assertEqual(decision.state, STATE_WARM_REFRESHING)

        # The cached snapshot is readable while the refresh is parked on the gate.
        served = await SelectionView(self.store).list()
        self.assertEqual([c.full_path for c in served], ["acme/backend/api"])
        self.assertFalse(decision.handle.done())

        self.source.gate.set()
        result = await decision.handle.wait()
        self.assertTrue(result.ok)
        self.assertEqual(await self.store.count_projects(), 3)

    async def test_background_failure_is_reported_not_raised(self) -> None:
        await self.store.upsert_page([_record(1, "acme/backend/api")])
        self.source.failing = {"acme/backend"}
        engine = self._engine()

        decision = await engine.begin()
        result = await decision.handle.wait()

        self.assertFalse(result.ok)
        self.assertIn("count failed", result.error)
        operation = await engine.get_operation(decision.handle.operation_id)
        self.assertEqual(operation["status"], "failed")

    async def test_partial_failure_skips_freshness_and_prune(self) -> None:
        await self.store.upsert_page([_record(99, "acme/legacy")])
        self.clock.advance(days=3)
        self.source.failing = {"acme/frontend"}
        engine = self._engine()

        with self.assertRaises(RemoteFetchError):
            await engine.refresh()

        # First scope's pages were stored, but nothing was pruned and freshness did not move.
        self.assertIsNotNone(await self.store.get_project(1))
        self.assertIsNotNone(await self.store.get_project(99))
        self.assertIsNone(await self.store.get_meta(META_LAST_FULL_REFRESH))
        self.assertEqual(await self.store.get_meta(META_LAST_REFRESH_STARTED), self.store.now())

    async def test_successful_refresh_prunes_projects_gone_upstream(self) -> None:
        await self.store.upsert_page([_record(99, "acme/legacy")])
        self.clock.advance(days=2)
        engine = self._engine()

        result = await engine.refresh()

        self.assertTrue(result.ok)
        self.assertEqual(result.pruned, 1)
        self.assertIsNone(await self.store.get_project(99))
        self.assertEqual(await self.store.count_projects(), 3)

    async def test_scopes_refresh_in_configured_order(self) -> None:
        engine = self._engine(scopes=("acme/frontend", "acme/backend"))

        await engine.refresh()

        self.assertEqual(self.source.count_calls, ["acme/frontend", "acme/backend"])

    async def test_progress_is_tracked_on_the_operation(self) -> None:
        engine = self._engine()
        seen: list[tuple[str, int, int]] = []

        result = await engine.refresh(lambda *args: seen.append(args), trigger="test")

        self.assertIn(("acme/backend", 2, 2), seen)
        self.assertIn(("acme/frontend", 1, 1), seen)
        operation = await engine.get_operation(result.operation_id)
        self.assertEqual(operation["status"], "completed")
        self.assertEqual(operation["trigger"], "test")
        self.assertEqual(operation["progress"]["acme/backend"], {"completedPages": 2, "totalPages": 2})
        self.assertEqual(operation["stats"]["rows"], 3)

    async def test_preallocated_operation_id_is_reused(self) -> None:
        engine = self._engine()
        op_id = await engine.start_operation("full_refresh", trigger="api", metadata={"source": "router"})

        result = await engine.run_detached(None, "api", op_id)

        self.assertTrue(result.ok)
        self.assertEqual(result.operation_id, op_id)
        operations = await engine.list_operations()
        self.assertEqual([op["id"] for op in operations], [op_id])
        self.assertEqual(operations[0]["metadata"]["source"], "router")

    async def test_observability_snapshot_counts_operations(self) -> None:
        engine = self._engine()
        await engine.refresh()

        snapshot = await engine.get_observability_snapshot()

        self.assertEqual(snapshot["activeOperationCount"], 0)
        self.assertEqual(snapshot["trackedOperationCount"], 1)
        self.assertEqual(len(snapshot["recentOperations"]), 1)


if __name__ == "__main__":
    unittest.main()
