import types
import unittest

import aiosqlite

from gls.db.sqlite_migrations import run_migrations
from gls.db.store import CacheStore
from gls.models import ContextUpdate, ProjectRecord
from gls.routers import projects as projects_router


def _record(project_id: int, full_path: str) -> ProjectRecord:
    return ProjectRecord(
        id=project_id,
        name=full_path.rsplit("/", 1)[-1],
        path=full_path.rsplit("/", 1)[-1],
        full_path=full_path,
        web_url=f"https://gitlab.example.com/{full_path}",
    )


class ProjectsRouterTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.store = CacheStore(self.db)
        await self.store.upsert_page([
            _record(1, "acme/backend/api"),
            _record(2, "acme/frontend/web"),
            _record(3, "other/misc"),
        ])
        self.request = types.SimpleNamespace(
            app=types.SimpleNamespace(state=types.SimpleNamespace(store=self.store))
        )

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_stored_contexts_filter_listing(self) -> None:
        await self.store.add_context_prefixes(["acme/front"])

        rows = await projects_router.list_projects(self.request, context=None, all_projects=False)

        self.assertEqual([r.full_path for r in rows], ["acme/frontend/web"])

    async def test_query_context_overrides_stored_contexts(self) -> None:
        await self.store.add_context_prefixes(["acme/front"])

        rows = await projects_router.list_projects(self.request, context="other, acme/backend", all_projects=False)

        self.assertEqual([r.full_path for r in rows], ["acme/backend/api", "other/misc"])

    async def test_all_flag_ignores_contexts(self) -> None:
        await self.store.add_context_prefixes(["acme/front"])

        rows = await projects_router.list_projects(self.request, context="other", all_projects=True)

        self.assertEqual(len(rows), 3)

    async def test_context_crud(self) -> None:
        added = await projects_router.add_contexts(self.request, ContextUpdate(prefixes=["acme", "other", "acme"]))
        self.assertEqual(added["contexts"], ["acme", "other"])

        listed = await projects_router.get_contexts(self.request)
        self.assertEqual(listed["contexts"], ["acme", "other"])

        cleared = await projects_router.clear_contexts(self.request)
        self.assertEqual(cleared["contexts"], [])
        self.assertEqual(await self.store.list_context_prefixes(), [])


if __name__ == "__main__":
    unittest.main()
