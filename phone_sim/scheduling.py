"""
Cancellable asyncio timers keyed by job id.

Every inactivity timeout in the simulator (vault auto-lock, session idle,
approval delay, tracker retention sweep) is a job in a ``TimerRegistry``.
Scheduling a job under an existing id replaces it, and ``cancel_all`` releases
every outstanding task so nothing outlives its owner.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class TimerRegistry:
    """Registry of one-shot delayed callbacks, one per job id."""

    def __init__(self, name: str = "timers"):
        self.name = name
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    def schedule(self, job_id: str, delay: float, callback: Callable[..., Any], *args: Any) -> str:
        """Run ``callback(*args)`` after ``delay`` seconds, replacing any job with the same id."""
        self.cancel(job_id)

        loop = asyncio.get_running_loop()
        task = loop.create_task(self._run(job_id, delay, callback, args), name=f"{self.name}:{job_id}")
        self._tasks[job_id] = task
        self.jobs[job_id] = {
            "function": getattr(callback, "__name__", repr(callback)),
            "delay": delay,
            "created_at": time.time(),
        }
        logger.debug("Scheduled %s job %s in %.3fs", self.name, job_id, delay)
        return job_id

    async def _run(self, job_id: str, delay: float, callback: Callable[..., Any], args: tuple) -> None:
        await asyncio.sleep(delay)
        # Detach first so the callback may reschedule or cancel its own id.
        self._tasks.pop(job_id, None)
        self.jobs.pop(job_id, None)
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s job %s failed", self.name, job_id)

    def cancel(self, job_id: str) -> bool:
        task = self._tasks.pop(job_id, None)
        self.jobs.pop(job_id, None)
        if task is None:
            return False
        if task is not _current_task() and not task.done():
            task.cancel()
        return True

    def cancel_all(self) -> int:
        count = len(self._tasks)
        for job_id in list(self._tasks):
            self.cancel(job_id)
        return count

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        return self.jobs.get(job_id)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
