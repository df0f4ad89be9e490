"""Interval-driven polling of non-terminal jobs.

Runs in a background asyncio task. Each tick pages through all pending and
processing jobs and reconciles them through the engine, `batch_limit` at a
time. Ticks may overlap with manual reconcile calls; the engine is reentrant,
so no locking happens here.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from videogen.db.repository import JobRepository
from videogen.jobs.engine import ReconciliationEngine
from videogen.jobs.models import NON_TERMINAL_STATUSES, Job

logger = logging.getLogger(__name__)

TransitionCallback = Callable[[Job, Job], None]


class PollingCoordinator:
    """Calls reconcile_job on a fixed interval for every non-terminal job."""

    def __init__(
        self,
        engine: ReconciliationEngine,
        repository: JobRepository,
        interval_seconds: float = 10.0,
        batch_limit: int = 50,
        on_transition: Optional[TransitionCallback] = None,
    ):
        """
        on_transition: callable(before: Job, after: Job) -> None
            Invoked when a reconcile changes a job's status.
        """
        self._engine = engine
        self._repository = repository
        self._interval = interval_seconds
        self._batch_limit = max(1, batch_limit)
        self._on_transition = on_transition
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _list_active(self) -> Dict[str, Job]:
        """Every non-terminal job, read page by page."""
        active: Dict[str, Job] = {}
        offset = 0
        while True:
            page = await self._repository.list(
                limit=self._batch_limit, statuses=NON_TERMINAL_STATUSES, offset=offset
            )
            for job in page:
                active.setdefault(job.id, job)
            if len(page) < self._batch_limit:
                return active
            offset += len(page)

    async def poll_once(self) -> List[Job]:
        """Reconcile every non-terminal job once. Returns the refreshed records."""
        before = await self._list_active()
        if not before:
            return []

        logger.info("Checking status for %d pending video(s)", len(before))
        ids = list(before)
        updated: List[Job] = []
        for start in range(0, len(ids), self._batch_limit):
            updated.extend(
                await self._engine.reconcile_many(ids[start:start + self._batch_limit])
            )

        for job in updated:
            previous = before.get(job.id)
            if previous is not None and previous.status != job.status:
                self._notify(previous, job)
        return updated

    def _notify(self, before: Job, after: Job) -> None:
        if self._on_transition is None:
            return
        try:
            self._on_transition(before, after)
        except Exception:
            logger.exception("Transition callback failed for job %s", after.id)

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Polling tick failed")
            try:
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                break
