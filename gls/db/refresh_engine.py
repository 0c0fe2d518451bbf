"""Stale-while-revalidate refresh of the project cache.

Decides between a cold (blocking) refresh, serving a throttled cache, or
serving the cache while a background refresh runs. A refresh cycle walks
the configured scopes sequentially; pruning and freshness metadata are
committed only when every scope succeeded.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from gls.config import Settings
from gls.date_utils import format_timestamp, minutes_between, parse_timestamp, utc_now
from gls.db.page_fetcher import PageFetcher, ProgressCallback, ScopeFetchStats
from gls.db.store import META_LAST_FULL_REFRESH, META_LAST_REFRESH_STARTED, CacheStore
from gls.observability import record_pruned, record_refresh_cycle, start_span
from gls.remote.client import GitLabClient
from gls.remote.sources import (
    MEMBERSHIP_SCOPE,
    GroupProjectSource,
    MembershipProjectSource,
    RemoteSource,
)

logger = logging.getLogger("gls.refresh")

STATE_COLD = "cold"
STATE_WARM_THROTTLED = "warm_throttled"
STATE_WARM_REFRESHING = "warm_refreshing"

MAX_OPERATION_HISTORY = 40


@dataclass
class RefreshTarget:
    source: RemoteSource
    scope: str


@dataclass
class RefreshResult:
    ok: bool
    operation_id: str = ""
    scopes: list[ScopeFetchStats] = field(default_factory=list)
    pruned: int = 0
    error: str = ""
    duration_ms: int = 0

    @property
    def rows(self) -> int:
        return sum(s.rows for s in self.scopes)

    def stats(self) -> dict[str, Any]:
        return {
            "scopes": [
                {"scope": s.scope, "total": s.total, "pages": s.pages, "rows": s.rows}
                for s in self.scopes
            ],
            "rows": self.rows,
            "pruned": self.pruned,
            "duration_ms": self.duration_ms,
        }


@dataclass
class RefreshOperation:
    """One tracked refresh cycle, as reported by the cache API."""

    id: str
    trigger: str
    kind: str = "full_refresh"
    status: str = "running"
    phase: str = "queued"
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    progress: dict[str, dict[str, int]] = field(default_factory=dict)
    stats: dict[str, Any] = field(default_factory=dict)
    error: str = ""

    @property
    def running(self) -> bool:
        return self.status == "running"

    def finish(self, status: str, stats: dict[str, Any], error: str = "") -> None:
        self.status = status
        self.phase = status
        self.stats = stats
        self.error = error
        self.finished_at = utc_now()

    def snapshot(self) -> dict[str, Any]:
        end = self.finished_at or utc_now()
        return {
            "id": self.id,
            "kind": self.kind,
            "trigger": self.trigger,
            "status": self.status,
            "phase": self.phase,
            "startedAt": format_timestamp(self.started_at),
            "finishedAt": format_timestamp(self.finished_at) if self.finished_at else "",
            "durationMs": max(0, int((end - self.started_at).total_seconds() * 1000)),
            "metadata": dict(self.metadata),
            "progress": {scope: dict(p) for scope, p in self.progress.items()},
            "stats": dict(self.stats),
            "error": self.error,
        }


class RefreshHandle:
    """Observable handle on a detached refresh cycle."""

    def __init__(self, task: asyncio.Task, operation_id: str):
        self._task = task
        self.operation_id = operation_id

    def done(self) -> bool:
        return self._task.done()

    @property
    def result(self) -> Optional[RefreshResult]:
        if not self._task.done() or self._task.cancelled():
            return None
        return self._task.result()

    async def wait(self) -> RefreshResult:
        """Wait for the cycle. Refresh failures are reported in the result, not raised."""
        return await asyncio.shield(self._task)

    async def cancel(self) -> None:
        if self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass


@dataclass
class RefreshDecision:
    state: str
    handle: Optional[RefreshHandle] = None
    result: Optional[RefreshResult] = None


def build_targets(settings: Settings, client: GitLabClient) -> list[RefreshTarget]:
    """Configured group paths in order, or the single membership scope."""
    if settings.paths:
        group_source = GroupProjectSource(client)
        return [RefreshTarget(group_source, path) for path in settings.paths]
    return [RefreshTarget(MembershipProjectSource(client), MEMBERSHIP_SCOPE)]


class RefreshEngine:
    def __init__(
        self,
        store: CacheStore,
        targets: list[RefreshTarget],
        *,
        fetcher: PageFetcher,
        stale_days: int,
        min_refresh_minutes: int,
    ):
        self.store = store
        self.targets = list(targets)
        self.fetcher = fetcher
        self.stale_days = stale_days
        self.min_refresh_minutes = min_refresh_minutes
        self._cycle_lock = asyncio.Lock()
        # insertion order is start order; oldest entries are evicted first
        self._operations: dict[str, RefreshOperation] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: CacheStore,
        client: GitLabClient,
        targets: list[RefreshTarget] | None = None,
    ) -> RefreshEngine:
        fetcher = PageFetcher(
            store,
            page_size=settings.per_page,
            max_concurrency=settings.max_concurrency,
            retry_attempts=settings.retry_attempts,
        )
        return cls(
            store,
            targets if targets is not None else build_targets(settings, client),
            fetcher=fetcher,
            stale_days=settings.stale_days,
            min_refresh_minutes=settings.min_refresh_minutes,
        )

    @property
    def scopes(self) -> list[str]:
        return [t.scope for t in self.targets]

    # ── SWR decision ───────────────────────────────────────────────

    async def is_throttled(self) -> bool:
        last_full = parse_timestamp(await self.store.get_meta(META_LAST_FULL_REFRESH))
        if last_full is None:
            return False
        return minutes_between(last_full, self.store.clock()) < self.min_refresh_minutes

    async def begin(
        self,
        on_progress: ProgressCallback | None = None,
        *,
        cold_in_background: bool = False,
    ) -> RefreshDecision:
        """Pick cold / throttled / refreshing and act on it.

        A cold refresh runs in the foreground and its failure propagates,
        unless cold_in_background is set (server startup).
        """
        if await self.store.count_projects() == 0:
            if cold_in_background:
                logger.info("Cache is empty; initial fetch started in background.")
                handle = self.start_background_refresh(on_progress, trigger="cold_start")
                return RefreshDecision(STATE_COLD, handle=handle)
            logger.info("Initial data fetch in progress...")
            result = await self.refresh(on_progress, trigger="cold_start")
            return RefreshDecision(STATE_COLD, result=result)

        if await self.is_throttled():
            logger.info("Refresh interval not elapsed; using cached data.")
            return RefreshDecision(STATE_WARM_THROTTLED)

        logger.info("Starting background refresh.")
        handle = self.start_background_refresh(on_progress, trigger="stale_while_revalidate")
        return RefreshDecision(STATE_WARM_REFRESHING, handle=handle)

    def start_background_refresh(
        self,
        on_progress: ProgressCallback | None = None,
        *,
        trigger: str = "background",
        operation_id: str | None = None,
    ) -> RefreshHandle:
        op_id = operation_id or _new_operation_id()
        task = asyncio.create_task(self.run_detached(on_progress, trigger, op_id))
        return RefreshHandle(task, op_id)

    async def run_detached(
        self,
        on_progress: ProgressCallback | None,
        trigger: str,
        operation_id: str,
    ) -> RefreshResult:
        """Run one cycle, reporting failure in the result instead of raising."""
        try:
            return await self.refresh(on_progress, operation_id=operation_id, trigger=trigger)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Background refresh failed: %s", exc)
            operation = self._operations.get(operation_id)
            return RefreshResult(
                ok=False,
                operation_id=operation_id,
                error=str(exc),
                duration_ms=int(operation.snapshot()["durationMs"]) if operation else 0,
            )

    # ── Full refresh cycle ─────────────────────────────────────────

    async def refresh(
        self,
        on_progress: ProgressCallback | None = None,
        *,
        operation_id: str | None = None,
        trigger: str = "api",
    ) -> RefreshResult:
        """Refresh every scope; prune and commit freshness metadata only if all succeed.

        Raises the first failure after recording it on the operation.
        """
        async with self._cycle_lock:
            return await self._refresh_locked(on_progress, operation_id, trigger)

    async def _refresh_locked(
        self,
        on_progress: ProgressCallback | None,
        operation_id: str | None,
        trigger: str,
    ) -> RefreshResult:
        operation = self._track(operation_id or _new_operation_id(), trigger, {"scopes": self.scopes})
        result = RefreshResult(ok=False, operation_id=operation.id)
        t0 = time.monotonic()

        async def report(scope: str, completed: int, total: int) -> None:
            operation.progress[scope] = {"completedPages": completed, "totalPages": total}
            if on_progress is not None:
                outcome = on_progress(scope, completed, total)
                if outcome is not None:
                    await outcome

        try:
            with start_span("gls.refresh", {"gls.trigger": trigger, "gls.scope_count": len(self.targets)}):
                await self.store.set_meta(META_LAST_REFRESH_STARTED, self.store.now())

                operation.phase = "scopes"
                for target in self.targets:
                    logger.info("Refreshing scope %s", target.scope)
                    result.scopes.append(await self.fetcher.fetch_scope(target.source, target.scope, report))

                # freshness moves only once prune has committed
                operation.phase = "prune"
                result.pruned = await self.store.prune(self.stale_days)
                record_pruned(result.pruned)
                await self.store.set_meta(META_LAST_FULL_REFRESH, self.store.now())
        except Exception as exc:
            result.duration_ms = int((time.monotonic() - t0) * 1000)
            result.error = str(exc)
            record_refresh_cycle("error", result.duration_ms)
            operation.finish("failed", result.stats(), error=str(exc))
            logger.error("Refresh failed: %s", exc)
            raise

        result.ok = True
        result.duration_ms = int((time.monotonic() - t0) * 1000)
        record_refresh_cycle("ok", result.duration_ms)
        operation.finish("completed", result.stats())
        logger.info(
            "Refresh complete: %s scope(s), %s projects stored, %s pruned in %sms",
            len(result.scopes),
            result.rows,
            result.pruned,
            result.duration_ms,
        )
        return result

    # ── Operation tracking ─────────────────────────────────────────

    def _track(self, operation_id: str, trigger: str, metadata: dict[str, Any]) -> RefreshOperation:
        """Return the operation for operation_id, registering it if new."""
        operation = self._operations.get(operation_id)
        if operation is None:
            operation = RefreshOperation(id=operation_id, trigger=trigger)
            self._operations[operation_id] = operation
            while len(self._operations) > MAX_OPERATION_HISTORY:
                del self._operations[next(iter(self._operations))]
        operation.metadata.update(metadata)
        return operation

    async def start_operation(
        self,
        kind: str,
        trigger: str = "api",
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Register an operation ahead of its cycle so callers can poll it immediately."""
        operation = self._track(_new_operation_id(), trigger, metadata or {})
        operation.kind = kind
        return operation.id

    async def list_operations(self, limit: int = 20) -> list[dict[str, Any]]:
        """Newest first."""
        newest = list(reversed(self._operations.values()))[: max(1, limit)]
        return [op.snapshot() for op in newest]

    async def get_operation(self, operation_id: str) -> dict[str, Any] | None:
        operation = self._operations.get(operation_id)
        return operation.snapshot() if operation else None

    async def get_observability_snapshot(self) -> dict[str, Any]:
        recent = list(reversed(self._operations.values()))
        active = [op.snapshot() for op in recent if op.running]
        return {
            "activeOperationCount": len(active),
            "activeOperations": active,
            "recentOperations": [op.snapshot() for op in recent[:5]],
            "trackedOperationCount": len(self._operations),
        }


def _new_operation_id() -> str:
    return f"OP-{uuid.uuid4()}"
