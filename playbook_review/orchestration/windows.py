from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, List, Optional, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(slots=True, frozen=True)
class ProgressUpdate:
    phase: str
    completed: int
    total: int
    message: str


ProgressReporter = Callable[[ProgressUpdate], Awaitable[None]]


class ProgressCounter:
    """Completion counter shared by concurrent workers of one phase."""

    def __init__(self, phase: str, total: int, reporter: Optional[ProgressReporter] = None) -> None:
        self.phase = phase
        self.total = total
        self._reporter = reporter
        self._completed = 0
        self._lock = asyncio.Lock()

    @property
    def completed(self) -> int:
        return self._completed

    async def advance(self, label: str = "item") -> int:
        async with self._lock:
            self._completed += 1
            completed = self._completed
        logger.info("%s: %s %d of %d complete", self.phase, label, completed, self.total)
        if self._reporter is not None:
            await self._reporter(
                ProgressUpdate(
                    phase=self.phase,
                    completed=completed,
                    total=self.total,
                    message=f"{label} {completed} of {self.total} complete",
                )
            )
        return completed


async def run_in_windows(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    max_concurrent: int,
) -> List[R]:
    """Run ``worker`` over ``items`` in consecutive windows of ``max_concurrent``.

    A window starts only after the previous one has fully finished. Results keep
    input order. If a worker raises, the rest of its window is cancelled and the
    error propagates; later windows never start.
    """

    if max_concurrent < 1:
        raise ValueError("max_concurrent must be at least 1")

    pending = list(items)
    results: List[R] = []
    for start in range(0, len(pending), max_concurrent):
        window = pending[start : start + max_concurrent]
        tasks = [asyncio.ensure_future(worker(item)) for item in window]
        try:
            results.extend(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
    return results


__all__ = ["ProgressCounter", "ProgressReporter", "ProgressUpdate", "run_in_windows"]
