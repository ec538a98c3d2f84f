"""
Background worker pool for asynchronous request processing.

Submitting or approving a request never waits for processing: the request
id is put on an asyncio queue and picked up by one of N long-running worker
coroutines. A task is tracked (PENDING → RUNNING → COMPLETED/FAILED) only
until it finishes; afterwards just the outcome counters remain.

Key features:
- Configurable concurrency (max_workers)
- Handlers registered per task type by the runtime
- Dead letter queue for failed tasks (max_retries)
- Graceful shutdown with task draining

Design:
- Uses asyncio.Queue for work distribution
- Task state is in-memory only. The durable record of "this request should
  be processed" is the request's scheduled_at column, which the reconciler
  uses to re-enqueue work lost with the process.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import structlog

log = structlog.get_logger(__name__)


class TaskStatus(StrEnum):
    """Task lifecycle states."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskType(StrEnum):
    """Known background task types."""
    PROCESS_REQUEST = "process_request"


@dataclass
class Task:
    """Represents a background task with full lifecycle tracking."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    type: TaskType = TaskType.PROCESS_REQUEST
    payload: dict[str, Any] = field(default_factory=dict)
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    retry_count: int = 0
    max_retries: int = 3


TaskHandler = Callable[[Task], Awaitable[None]]


class BackgroundWorkerPool:
    """
    Asyncio-based background task processor with concurrency control.

    Manages a pool of worker coroutines that pull tasks from a queue,
    dispatch them to the handler registered for their type, and track their
    lifecycle. Failed tasks are retried up to max_retries times before
    moving to the dead letter queue.

    Example usage:
        pool = BackgroundWorkerPool(max_workers=4)
        pool.register_handler(TaskType.PROCESS_REQUEST, handle_request)
        await pool.start()

        task_id = await pool.submit_task(
            task_type=TaskType.PROCESS_REQUEST,
            payload={"request_id": 42, "kind": "export"},
        )

        await pool.shutdown()
        failed = pool.get_dead_letter_queue()
    """

    def __init__(
        self,
        *,
        max_workers: int = 4,
        max_retries: int = 3,
    ) -> None:
        """
        Initialize the worker pool.

        Args:
            max_workers: Maximum number of concurrent worker coroutines
            max_retries: Number of attempts for a task before dead-lettering
        """
        self._max_workers = max_workers
        self._max_retries = max_retries
        self._queue: asyncio.Queue[Task] = asyncio.Queue()
        # In-flight tasks only; finished ones are dropped
        self._tasks: dict[str, Task] = {}
        self._completed_count = 0
        self._failed_count = 0
        self._handlers: dict[TaskType, TaskHandler] = {}
        self._workers: list[asyncio.Task[None]] = []
        self._dead_letter: list[Task] = []
        self._shutdown_event = asyncio.Event()
        self._running = False

        log.info(
            "worker_pool.initialized",
            max_workers=max_workers,
            max_retries=max_retries,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending_count(self) -> int:
        """Tasks submitted but not yet completed or dead-lettered."""
        return len(self._tasks)

    def register_handler(self, task_type: TaskType, handler: TaskHandler) -> None:
        """Route tasks of *task_type* to *handler*."""
        self._handlers[task_type] = handler

    async def start(self) -> None:
        """Start worker coroutines."""
        if self._running:
            log.warning("worker_pool.already_running")
            return

        self._running = True
        self._shutdown_event.clear()

        for i in range(self._max_workers):
            worker = asyncio.create_task(self._worker_loop(worker_id=i))
            self._workers.append(worker)

        log.info("worker_pool.started", worker_count=self._max_workers)

    async def shutdown(self, *, drain: bool = True) -> None:
        """
        Shutdown the worker pool.

        Args:
            drain: If True, wait for in-flight tasks to complete.
                   If False, cancel all workers immediately.
        """
        if not self._running:
            return

        log.info("worker_pool.shutdown_initiated", drain=drain)

        if drain:
            # Workers must still be running for the queue to drain
            await self._queue.join()

        self._running = False
        self._shutdown_event.set()

        for worker in self._workers:
            worker.cancel()

        await asyncio.gather(*self._workers, return_exceptions=True)

        self._workers.clear()
        log.info(
            "worker_pool.shutdown_complete",
            tasks_completed=self._completed_count,
            tasks_failed=self._failed_count,
            tasks_abandoned=self.pending_count,
            dead_letter_count=len(self._dead_letter),
        )

    async def submit_task(
        self,
        *,
        task_type: TaskType,
        payload: dict[str, Any],
        max_retries: int | None = None,
    ) -> str:
        """
        Submit a task to the background queue.

        Args:
            task_type: Type of task to execute
            payload: Task-specific data (must be JSON-serializable)
            max_retries: Override default max_retries for this task

        Returns:
            Task ID, as logged with the task's lifecycle events
        """
        task = Task(
            type=task_type,
            payload=payload,
            max_retries=max_retries if max_retries is not None else self._max_retries,
        )

        self._tasks[task.id] = task
        await self._queue.put(task)

        log.info(
            "worker_pool.task_submitted",
            task_id=task.id,
            task_type=task_type,
            queue_size=self._queue.qsize(),
        )
        return task.id

    async def wait_idle(self) -> None:
        """Wait until every submitted task (including retries) has finished."""
        await self._queue.join()

    def get_dead_letter_queue(self) -> list[Task]:
        """Return tasks that exceeded max_retries."""
        return list(self._dead_letter)

    async def _worker_loop(self, worker_id: int) -> None:
        """
        Worker coroutine that processes tasks from the queue.

        Runs until shutdown_event is set.
        """
        log.info("worker.started", worker_id=worker_id)

        while not self._shutdown_event.is_set():
            try:
                # Wait for task with timeout to check shutdown periodically
                task = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except TimeoutError:
                continue

            try:
                await self._execute_task(task, worker_id=worker_id)
            finally:
                self._queue.task_done()

        log.info("worker.stopped", worker_id=worker_id)

    async def _execute_task(self, task: Task, worker_id: int) -> None:
        """
        Execute a single task with error handling and retry logic.

        Args:
            task: Task to execute
            worker_id: ID of the worker executing this task
        """
        task.status = TaskStatus.RUNNING
        task.started_at = datetime.now(UTC)

        log.info(
            "worker.task_started",
            worker_id=worker_id,
            task_id=task.id,
            task_type=task.type,
            retry_count=task.retry_count,
        )

        try:
            handler = self._handlers.get(task.type)
            if handler is None:
                raise ValueError(f"Unknown task type: {task.type}")
            await handler(task)

            task.status = TaskStatus.COMPLETED
            task.completed_at = datetime.now(UTC)
            self._tasks.pop(task.id, None)
            self._completed_count += 1

            log.info(
                "worker.task_completed",
                worker_id=worker_id,
                task_id=task.id,
                duration_seconds=(task.completed_at - task.started_at).total_seconds(),
            )

        except Exception as exc:
            task.error = str(exc)
            task.retry_count += 1

            log.error(
                "worker.task_failed",
                worker_id=worker_id,
                task_id=task.id,
                error=str(exc),
                retry_count=task.retry_count,
                max_retries=task.max_retries,
                exc_info=True,
            )

            if task.retry_count < task.max_retries:
                task.status = TaskStatus.PENDING
                await self._queue.put(task)
                log.info("worker.task_requeued", task_id=task.id)
            else:
                # Exceeded retries - move to dead letter queue
                task.status = TaskStatus.FAILED
                task.completed_at = datetime.now(UTC)
                self._tasks.pop(task.id, None)
                self._failed_count += 1
                self._dead_letter.append(task)
                log.error(
                    "worker.task_dead_letter",
                    task_id=task.id,
                    error=task.error,
                )
