"""Reconciliation sweep for scheduled-but-unstarted requests.

The worker queue lives in memory. When a request is scheduled, its
scheduled_at column is written before the id is enqueued, so a request that
is still pending with scheduled_at set was meant to run but was lost (for
example the process restarted). The sweep puts those ids back on the queue.

Re-enqueuing a request that is in fact still queued is harmless: the
processing claim is a compare-and-set on the status, so the duplicate task
finds the request no longer pending and does nothing.
"""

from __future__ import annotations

import asyncio
import contextlib
from datetime import UTC, datetime, timedelta

import structlog

from subject_rights.infra.background_worker import BackgroundWorkerPool, TaskType
from subject_rights.store import RequestStore

log = structlog.get_logger(__name__)


class RequestReconciler:
    """Periodically re-enqueue pending requests whose processing was scheduled.

    Usage:
        reconciler = RequestReconciler(store, pool, interval_seconds=60)
        await reconciler.sweep()   # once at startup
        reconciler.start()         # then periodically
        ...
        await reconciler.stop()
    """

    def __init__(
        self,
        store: RequestStore,
        pool: BackgroundWorkerPool,
        *,
        interval_seconds: float = 60.0,
        batch_size: int = 100,
    ) -> None:
        self._store = store
        self._pool = pool
        self._interval_seconds = interval_seconds
        self._batch_size = batch_size
        self._loop_task: asyncio.Task[None] | None = None

    async def sweep(self, *, min_age_seconds: float = 0.0) -> int:
        """Re-enqueue lost requests. Returns how many were enqueued.

        Args:
            min_age_seconds: Skip requests scheduled more recently than this,
                which are most likely still sitting in the queue.
        """
        candidates = await self._store.find_scheduled_pending(limit=self._batch_size)
        cutoff = datetime.now(UTC) - timedelta(seconds=min_age_seconds)

        enqueued = 0
        for record in candidates:
            scheduled_at = record.scheduled_at
            if scheduled_at is not None and min_age_seconds > 0:
                if scheduled_at.tzinfo is None:
                    scheduled_at = scheduled_at.replace(tzinfo=UTC)
                if scheduled_at > cutoff:
                    continue
            await self._pool.submit_task(
                task_type=TaskType.PROCESS_REQUEST,
                payload={"request_id": record.id, "kind": record.kind},
            )
            enqueued += 1

        if enqueued:
            log.info("reconciler.requests_requeued", count=enqueued)
        return enqueued

    def start(self) -> None:
        if self._loop_task is not None:
            return
        self._loop_task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._loop_task is None:
            return
        self._loop_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._loop_task
        self._loop_task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            try:
                await self.sweep(min_age_seconds=self._interval_seconds)
            except Exception as exc:
                log.error("reconciler.sweep_failed", error=str(exc), exc_info=True)
