"""Bounded-concurrency scheduling and fixed-attempt retry."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Sequence, TypeVar

logger = logging.getLogger("gls.concurrency")

T = TypeVar("T")

OperationFactory = Callable[[], Awaitable[T]]


async def retry(
    attempts: int,
    operation: OperationFactory[T],
    *,
    delay_seconds: float = 0.0,
    label: str = "operation",
) -> T:
    """Run operation up to `attempts` times; return the first success or raise the last failure."""
    attempts = max(1, int(attempts))
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as exc:  # noqa: BLE001
            last_error = exc
            if attempt == attempts:
                break
            logger.debug("%s failed (attempt %s/%s): %s", label, attempt, attempts, exc)
            if delay_seconds > 0:
                await asyncio.sleep(delay_seconds)
    assert last_error is not None
    raise last_error


class BoundedScheduler:
    """Runs operations with at most `limit` in flight, admitted in submission order."""

    def __init__(self, limit: int):
        self.limit = max(1, int(limit))
        self._semaphore = asyncio.Semaphore(self.limit)
        self._in_flight = 0
        self.peak_in_flight = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    async def run(self, operation: OperationFactory[T]) -> T:
        async with self._semaphore:
            self._in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self._in_flight)
            try:
                return await operation()
            finally:
                self._in_flight -= 1

    async def run_all(self, operations: Sequence[OperationFactory[T]]) -> list[T]:
        """Run every operation; results come back in submission order.

        The first failure cancels whatever has not finished yet and is re-raised
        once those operations have settled.
        """
        tasks = [asyncio.create_task(self.run(op)) for op in operations]
        if not tasks:
            return []
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        failed = next((t for t in tasks if t in done and not t.cancelled() and t.exception()), None)
        if failed is not None:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            raise failed.exception()  # type: ignore[misc]
        return [task.result() for task in tasks]
