"""Tests for the scheduled-request reconciliation sweep."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

from subject_rights.infra.background_worker import BackgroundWorkerPool, Task, TaskType
from subject_rights.infra.reconciler import RequestReconciler
from subject_rights.models.dsar_request import RequestKind, RequestStatus


@pytest.fixture
def seen() -> list[dict]:
    return []


@pytest_asyncio.fixture
async def recording_pool(seen):
    """Pool whose handler only records the payloads it receives."""

    async def handler(task: Task) -> None:
        seen.append(task.payload)

    pool = BackgroundWorkerPool(max_workers=1, max_retries=1)
    pool.register_handler(TaskType.PROCESS_REQUEST, handler)
    await pool.start()
    yield pool
    await pool.shutdown(drain=False)


async def _create(store, kind=RequestKind.EXPORT):
    return await store.create_request(
        kind=kind,
        subject_type="email",
        subject_value="alice@example.com",
        requested_by="dpo",
    )


class TestSweep:
    """Tests for RequestReconciler.sweep."""

    @pytest.mark.asyncio
    async def test_requeues_scheduled_pending_requests(self, store, recording_pool, seen) -> None:
        lost = await _create(store, RequestKind.DELETE)
        await _create(store)  # never scheduled: awaiting approval
        await store.mark_scheduled(lost.id)

        enqueued = await RequestReconciler(store, recording_pool).sweep()
        await recording_pool.wait_idle()

        assert enqueued == 1
        assert seen == [{"request_id": lost.id, "kind": "delete"}]

    @pytest.mark.asyncio
    async def test_ignores_requests_already_claimed(self, store, recording_pool) -> None:
        record = await _create(store)
        await store.mark_scheduled(record.id)
        await store.transition(record.id, [RequestStatus.PENDING], RequestStatus.PROCESSING)

        assert await RequestReconciler(store, recording_pool).sweep() == 0

    @pytest.mark.asyncio
    async def test_min_age_skips_recent_schedules(self, store, recording_pool, seen) -> None:
        recent = await _create(store)
        old = await _create(store)
        await store.mark_scheduled(recent.id)
        await store.update_request(
            old.id, scheduled_at=datetime.now(UTC) - timedelta(minutes=10)
        )

        enqueued = await RequestReconciler(store, recording_pool).sweep(min_age_seconds=60)
        await recording_pool.wait_idle()

        assert enqueued == 1
        assert seen == [{"request_id": old.id, "kind": "export"}]


class TestPeriodicLoop:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, store, recording_pool) -> None:
        reconciler = RequestReconciler(store, recording_pool, interval_seconds=3600)

        reconciler.start()
        reconciler.start()  # idempotent
        await reconciler.stop()
        await reconciler.stop()
