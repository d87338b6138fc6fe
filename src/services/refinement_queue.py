# src/services/refinement_queue.py

"""Single-flight queue of detached Tier-2 refinement jobs."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from src.errors import RefinementFailure

logger = logging.getLogger("pageone.refinement")

JobFn = Callable[[], Awaitable[None]]


@dataclass
class RefinementJob:
    """One background refinement of a snapshot."""

    snapshot_id: str
    task: asyncio.Task[None]
    started_at: float
    status: str = "running"  # "running", "done", "failed"


class RefinementQueue:
    """At most one in-flight job per snapshot id.

    Jobs are never awaited by callers; tasks are held here until they
    finish. Failures are logged and never retried.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._jobs: dict[str, RefinementJob] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self.history: list[RefinementJob] = []

    def is_in_flight(self, snapshot_id: str) -> bool:
        return snapshot_id in self._jobs

    def submit(self, snapshot_id: str, job: JobFn) -> bool:
        """Start *job* unless one is already running for *snapshot_id*.

        Must be called from a running event loop. Returns True when a
        new job was started.
        """
        if snapshot_id in self._jobs:
            logger.debug(
                "Refinement of %s already in flight; trigger ignored",
                snapshot_id,
            )
            return False

        task = asyncio.get_running_loop().create_task(
            self._run(snapshot_id, job)
        )
        self._jobs[snapshot_id] = RefinementJob(
            snapshot_id=snapshot_id,
            task=task,
            started_at=self._clock(),
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("Queued Tier-2 refinement for %s", snapshot_id)
        return True

    async def drain(self) -> None:
        """Wait until every queued job has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Private helpers ──────────────────────────────────

    async def _run(self, snapshot_id: str, job: JobFn) -> None:
        record = self._jobs.get(snapshot_id)
        try:
            await job()
            status = "done"
        except Exception as exc:
            failure = RefinementFailure(snapshot_id, str(exc))
            logger.error("%s", failure, exc_info=exc)
            status = "failed"
        finally:
            self._jobs.pop(snapshot_id, None)
        if record is not None:
            record.status = status
            self.history.append(record)
