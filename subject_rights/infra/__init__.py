"""
Infrastructure for background processing.

- BackgroundWorkerPool: asyncio queue + worker coroutines that run requests
- RequestReconciler: re-enqueues requests whose scheduled run was lost
"""

from __future__ import annotations

from subject_rights.infra.background_worker import BackgroundWorkerPool, Task, TaskStatus, TaskType
from subject_rights.infra.reconciler import RequestReconciler

__all__ = [
    "BackgroundWorkerPool",
    "RequestReconciler",
    "Task",
    "TaskStatus",
    "TaskType",
]
