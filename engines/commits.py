"""Awaitable tracking for writes that run behind the session's back."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, List, Set

logger = logging.getLogger(__name__)


class CommitLog:
    """Schedule persistence coroutines and expose them as awaitable commits.

    Every commit resolves to ``True`` when the write landed and ``False`` when
    it did not; commits never raise into the caller. Tasks are not cancelled
    when the owning session is abandoned.
    """

    def __init__(self) -> None:
        self._pending: Set[asyncio.Task] = set()
        self.completed = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return sum(1 for task in self._pending if not task.done())

    def spawn(self, coro: Awaitable[bool], label: str) -> "asyncio.Task[bool]":
        task = asyncio.get_running_loop().create_task(self._run(coro, label))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _run(self, coro: Awaitable[bool], label: str) -> bool:
        try:
            result = await coro
        except Exception:
            logger.warning("Commit %s failed", label, exc_info=True)
            ok = False
        else:
            ok = result is not False
        if ok:
            self.completed += 1
        else:
            self.failed += 1
            logger.debug("Commit %s did not persist", label)
        return ok

    async def drain(self) -> List[bool]:
        """Wait for every outstanding commit, including ones spawned meanwhile."""

        seen: Set[asyncio.Task] = set()
        results: List[bool] = []
        while True:
            batch = [task for task in self._pending if task not in seen]
            if not batch:
                break
            seen.update(batch)
            results.extend(await asyncio.gather(*batch))
        return results
