from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from threading import Lock

from flowtext_mcp.cancellation import CancelHandle
from flowtext_mcp.engines import Engine
from flowtext_mcp.errors import AlreadyCancelledError, DuplicateTaskError, TaskNotFoundError
from flowtext_mcp.types import TERMINAL_STATES, Cue, RecognitionStatus, TaskState

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TaskRecord:
    task_id: str
    audio_path: str
    engine: Engine
    language: str
    cancel_handle: CancelHandle | None = None
    status: RecognitionStatus = field(default_factory=lambda: RecognitionStatus(status="pending"))


class TaskRegistry:
    """In-memory map of live recognition tasks.

    Every public method takes the lock for a single map operation only, so it
    is safe to call from the event loop and from worker threads alike.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._tasks: dict[str, TaskRecord] = {}

    def insert(self, record: TaskRecord) -> None:
        record.status = RecognitionStatus(status="pending", progress=0.0)
        with self._lock:
            if record.task_id in self._tasks:
                raise DuplicateTaskError(record.task_id)
            self._tasks[record.task_id] = record
        logger.info("Registered task %s (engine=%s)", record.task_id, record.engine.value)

    def update(
        self,
        task_id: str,
        status: TaskState,
        progress: float,
        result: list[Cue] | None = None,
        error: str | None = None,
    ) -> bool:
        projection = RecognitionStatus(
            status=status,
            progress=progress,
            result=list(result) if status == "completed" and result is not None else None,
            error=error if status == "failed" else None,
        )
        if status == "completed" and projection.result is None:
            projection.result = []
        if status == "failed" and projection.error is None:
            projection.error = "Recognition failed"

        with self._lock:
            record = self._tasks.get(task_id)
            if record is None:
                applied = False
                previous = None
            elif record.status.is_terminal:
                applied = False
                previous = record.status.status
            else:
                record.status = projection
                applied = True
                previous = None

        if record is None:
            logger.warning("Ignoring update for unknown task %s -> %s", task_id, status)
        elif not applied:
            logger.warning("Ignoring update for task %s already %s -> %s", task_id, previous, status)
        else:
            logger.debug("Task %s -> %s (%.2f)", task_id, status, progress)
        return applied

    def get(self, task_id: str) -> RecognitionStatus:
        with self._lock:
            record = self._tasks.get(task_id)
            if record is None:
                raise TaskNotFoundError(task_id)
            current = record.status
            return RecognitionStatus(
                status=current.status,
                progress=current.progress,
                result=list(current.result) if current.result is not None else None,
                error=current.error,
            )

    def take_cancel_handle(self, task_id: str) -> CancelHandle:
        with self._lock:
            record = self._tasks.get(task_id)
            if record is None:
                raise TaskNotFoundError(task_id)
            handle = record.cancel_handle
            if handle is None:
                raise AlreadyCancelledError(task_id)
            record.cancel_handle = None
            return handle

    def remove(self, task_id: str) -> bool:
        """Delete a task, but only once it has reached a terminal status."""
        with self._lock:
            record = self._tasks.get(task_id)
            if record is None or record.status.status not in TERMINAL_STATES:
                removed = False
            else:
                del self._tasks[task_id]
                removed = True
        if removed:
            logger.info("Cleaned up task %s", task_id)
        return removed

    def active_task_ids(self) -> list[str]:
        with self._lock:
            return [task_id for task_id, record in self._tasks.items() if not record.status.is_terminal]

    def count_by_status(self) -> dict[str, int]:
        with self._lock:
            return dict(Counter(record.status.status for record in self._tasks.values()))

    def __contains__(self, task_id: object) -> bool:
        with self._lock:
            return task_id in self._tasks

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)
