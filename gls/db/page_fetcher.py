"""Paginated scope fetch: one retried fetch-and-store operation per page under a concurrency cap."""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from gls.concurrency import BoundedScheduler, retry
from gls.db.store import CacheStore
from gls.observability import record_page_fetch, start_span
from gls.remote.sources import RemoteSource

logger = logging.getLogger("gls.refresh")

ProgressCallback = Callable[[str, int, int], Union[None, Awaitable[None]]]


@dataclass
class ScopeFetchStats:
    scope: str
    total: int = 0
    pages: int = 0
    rows: int = 0
    duration_ms: int = 0


class PageFetcher:
    def __init__(
        self,
        store: CacheStore,
        *,
        page_size: int,
        max_concurrency: int,
        retry_attempts: int = 3,
        retry_delay_seconds: float = 0.0,
    ):
        self.store = store
        self.page_size = max(1, int(page_size))
        self.max_concurrency = max(1, int(max_concurrency))
        self.retry_attempts = max(1, int(retry_attempts))
        self.retry_delay_seconds = retry_delay_seconds

    async def fetch_scope(
        self,
        source: RemoteSource,
        scope: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ScopeFetchStats:
        """Fetch and store every page of scope. Any page exhausting its retries aborts the scope."""
        stats = ScopeFetchStats(scope=scope)
        t0 = time.monotonic()
        with start_span("gls.fetch_scope", {"gls.scope": scope}):
            stats.total = await source.count(scope)
            logger.info("Scope %s total projects reported: %s", scope, stats.total)
            if stats.total <= 0:
                return stats

            stats.pages = math.ceil(stats.total / self.page_size)
            scheduler = BoundedScheduler(self.max_concurrency)
            completed = 0

            async def fetch_and_store(page: int) -> int:
                page_t0 = time.monotonic()
                try:
                    rows = await source.fetch_page(scope, page, self.page_size)
                    stored = await self.store.upsert_page(rows)
                except Exception:
                    record_page_fetch(scope, "error", (time.monotonic() - page_t0) * 1000)
                    raise
                record_page_fetch(scope, "ok", (time.monotonic() - page_t0) * 1000)
                logger.debug("Stored %s projects scope=%s page=%s", stored, scope, page)
                return stored

            async def run_page(page: int) -> int:
                nonlocal completed
                stored = await retry(
                    self.retry_attempts,
                    lambda: fetch_and_store(page),
                    delay_seconds=self.retry_delay_seconds,
                    label=f"page {page} of {scope}",
                )
                completed += 1
                if on_progress is not None:
                    outcome = on_progress(scope, completed, stats.pages)
                    if outcome is not None:
                        await outcome
                return stored

            results = await scheduler.run_all(
                [lambda page=page: run_page(page) for page in range(1, stats.pages + 1)]
            )
            stats.rows = sum(results)
        stats.duration_ms = int((time.monotonic() - t0) * 1000)
        return stats
