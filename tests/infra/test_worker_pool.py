"""Tests for BackgroundWorkerPool."""

from __future__ import annotations

import pytest

from subject_rights.infra.background_worker import (
    BackgroundWorkerPool,
    Task,
    TaskStatus,
    TaskType,
)


class TestTaskDispatch:
    """Tests for routing tasks to registered handlers."""

    @pytest.mark.asyncio
    async def test_handler_receives_payload(self) -> None:
        seen: list[Task] = []

        async def handler(task: Task) -> None:
            seen.append(task)

        pool = BackgroundWorkerPool(max_workers=1)
        pool.register_handler(TaskType.PROCESS_REQUEST, handler)
        await pool.start()
        try:
            task_id = await pool.submit_task(
                task_type=TaskType.PROCESS_REQUEST,
                payload={"request_id": 1, "kind": "export"},
            )
            await pool.wait_idle()
        finally:
            await pool.shutdown()

        [task] = seen
        assert task.id == task_id
        assert task.payload == {"request_id": 1, "kind": "export"}
        assert task.status == TaskStatus.COMPLETED
        assert task.completed_at is not None

    @pytest.mark.asyncio
    async def test_failing_task_retried_then_dead_lettered(self) -> None:
        calls = {"n": 0}

        async def handler(task: Task) -> None:
            calls["n"] += 1
            raise RuntimeError("store unavailable")

        pool = BackgroundWorkerPool(max_workers=1, max_retries=2)
        pool.register_handler(TaskType.PROCESS_REQUEST, handler)
        await pool.start()
        try:
            task_id = await pool.submit_task(
                task_type=TaskType.PROCESS_REQUEST, payload={"request_id": 1}
            )
            await pool.wait_idle()
        finally:
            await pool.shutdown()

        [task] = pool.get_dead_letter_queue()
        assert calls["n"] == 2
        assert task.id == task_id
        assert task.status == TaskStatus.FAILED
        assert task.error == "store unavailable"

    @pytest.mark.asyncio
    async def test_retry_succeeds(self) -> None:
        attempts: list[int] = []

        async def handler(task: Task) -> None:
            attempts.append(task.retry_count)
            if len(attempts) == 1:
                raise RuntimeError("transient")

        pool = BackgroundWorkerPool(max_workers=1, max_retries=3)
        pool.register_handler(TaskType.PROCESS_REQUEST, handler)
        await pool.start()
        try:
            await pool.submit_task(task_type=TaskType.PROCESS_REQUEST, payload={})
            await pool.wait_idle()
        finally:
            await pool.shutdown()

        assert attempts == [0, 1]
        assert pool.get_dead_letter_queue() == []

    @pytest.mark.asyncio
    async def test_missing_handler_fails_task(self) -> None:
        pool = BackgroundWorkerPool(max_workers=1, max_retries=1)
        await pool.start()
        try:
            await pool.submit_task(task_type=TaskType.PROCESS_REQUEST, payload={})
            await pool.wait_idle()
        finally:
            await pool.shutdown()

        [task] = pool.get_dead_letter_queue()
        assert task.status == TaskStatus.FAILED
        assert "Unknown task type" in task.error


class TestTaskTracking:
    """Tests for how long the pool holds on to tasks."""

    @pytest.mark.asyncio
    async def test_finished_tasks_are_released(self) -> None:
        """Test that a long-lived pool does not keep every task it has run."""

        async def handler(task: Task) -> None:
            if task.payload["request_id"] % 10 == 0:
                raise RuntimeError("boom")

        pool = BackgroundWorkerPool(max_workers=1, max_retries=1)
        pool.register_handler(TaskType.PROCESS_REQUEST, handler)
        await pool.start()
        try:
            for request_id in range(1, 201):
                await pool.submit_task(
                    task_type=TaskType.PROCESS_REQUEST, payload={"request_id": request_id}
                )
            await pool.wait_idle()
            assert pool.pending_count == 0
        finally:
            await pool.shutdown()

        assert len(pool.get_dead_letter_queue()) == 20

    @pytest.mark.asyncio
    async def test_queued_tasks_are_pending(self) -> None:
        pool = BackgroundWorkerPool(max_workers=1)
        # Not started: submitted tasks stay queued
        await pool.submit_task(task_type=TaskType.PROCESS_REQUEST, payload={})
        await pool.submit_task(task_type=TaskType.PROCESS_REQUEST, payload={})

        assert pool.pending_count == 2


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_shutdown(self) -> None:
        pool = BackgroundWorkerPool(max_workers=2)

        await pool.start()
        assert pool.is_running is True

        await pool.shutdown()
        assert pool.is_running is False

    @pytest.mark.asyncio
    async def test_shutdown_when_not_running_is_noop(self) -> None:
        await BackgroundWorkerPool().shutdown()
