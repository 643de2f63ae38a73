"""
Scan task registry

Tracks one record per in-flight or recently finished scan so callers can
poll progress after the trigger call has returned.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, Any, Optional

from shelfsync.library.models import ScanSummary, now_ms

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 3600


class ScanStatus(str, Enum):
    """Scan task lifecycle states"""
    PENDING = 'pending'
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'

    @property
    def is_terminal(self) -> bool:
        return self in (ScanStatus.COMPLETED, ScanStatus.FAILED)


@dataclass
class ScanTask:
    """Observable state of one scan run."""
    id: str
    status: ScanStatus
    started_at: int
    processed: int = 0
    total: int = 0
    current_item: Optional[str] = None
    result: Optional[ScanSummary] = None
    error_message: Optional[str] = None
    finished_at: Optional[int] = None
    root: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Snapshot in the shape returned to pollers."""
        return {
            'id': self.id,
            'status': self.status.value,
            'processed': self.processed,
            'total': self.total,
            'currentItem': self.current_item,
            'result': self.result.to_dict() if self.result else None,
            'errorMessage': self.error_message,
            'startedAt': self.started_at,
            'finishedAt': self.finished_at,
        }


class ScanTaskRegistry:
    """
    Process-wide registry of scan tasks.

    The background scan is the only writer of a given task; request handlers
    only read snapshots. All operations hold a lock for the map mutation
    only, never across I/O.

    Example:
        registry = ScanTaskRegistry(retention_seconds=3600)
        registry.cleanup_old()
        task_id = registry.create()

        registry.update_progress(task_id, 0, 10)
        registry.update_progress(task_id, 1, 10, 'Inception (2010)')
        registry.complete(task_id, ScanSummary(total=10, new=1, existing=9, errors=0))

        snapshot = registry.get(task_id)
    """

    def __init__(
        self,
        retention_seconds: int = DEFAULT_RETENTION_SECONDS,
        clock: Callable[[], int] = now_ms
    ):
        """
        Initialize registry

        Args:
            retention_seconds: How long finished tasks remain pollable
            clock: Millisecond clock (injectable for tests)
        """
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._tasks: Dict[str, ScanTask] = {}
        self._lock = threading.Lock()

    def create(self, root: Optional[str] = None) -> str:
        """
        Insert a pending task and return its id.

        The id is returned before any scan work begins so callers can poll
        immediately.
        """
        task_id = uuid.uuid4().hex
        task = ScanTask(
            id=task_id,
            status=ScanStatus.PENDING,
            started_at=self._clock(),
            root=root,
        )
        with self._lock:
            self._tasks[task_id] = task
        logger.debug(f"Created scan task {task_id}")
        return task_id

    def update_progress(
        self,
        task_id: str,
        processed: int,
        total: int,
        current_item: Optional[str] = None
    ) -> bool:
        """
        Record scan progress; the first call moves the task to running.

        ``processed`` never moves backwards. Updates to unknown or finished
        tasks are ignored.

        Returns:
            True if the update was applied
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                logger.warning(f"Progress update for unknown scan task {task_id}")
                return False
            if task.status.is_terminal:
                logger.warning(f"Progress update for finished scan task {task_id} ignored")
                return False
            if processed < task.processed:
                logger.debug(
                    f"Ignoring out-of-order progress for {task_id}: "
                    f"{processed} < {task.processed}"
                )
                return False

            task.status = ScanStatus.RUNNING
            task.processed = processed
            task.total = total
            if current_item is not None:
                task.current_item = current_item
            return True

    def _finish(self, task_id: str, status: ScanStatus, **fields: Any) -> bool:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                logger.warning(f"Cannot finish unknown scan task {task_id}")
                return False
            if task.status.is_terminal:
                logger.error(
                    f"Scan task {task_id} already {task.status.value}; "
                    f"refusing to mark it {status.value}"
                )
                return False

            task.status = status
            task.finished_at = self._clock()
            for name, value in fields.items():
                setattr(task, name, value)
            return True

    def complete(self, task_id: str, summary: ScanSummary) -> bool:
        """
        Mark a task completed with its result summary.

        Returns:
            False if the task was unknown or already terminal (no change made)
        """
        applied = self._finish(task_id, ScanStatus.COMPLETED, result=summary)
        if applied:
            logger.debug(f"Scan task {task_id} completed: {summary.to_dict()}")
        return applied

    def fail(self, task_id: str, message: str) -> bool:
        """
        Mark a task failed with an error message.

        Returns:
            False if the task was unknown or already terminal (no change made)
        """
        applied = self._finish(task_id, ScanStatus.FAILED, error_message=message)
        if applied:
            logger.debug(f"Scan task {task_id} failed: {message}")
        return applied

    def get(self, task_id: str) -> Optional[ScanTask]:
        """Snapshot of a task, or None if unknown or purged."""
        with self._lock:
            task = self._tasks.get(task_id)
            return replace(task) if task is not None else None

    def cleanup_old(self) -> int:
        """
        Remove finished tasks older than the retention window.

        Returns:
            Number of tasks removed
        """
        cutoff = self._clock() - self.retention_seconds * 1000
        with self._lock:
            expired = [
                task_id for task_id, task in self._tasks.items()
                if task.finished_at is not None and task.finished_at < cutoff
            ]
            for task_id in expired:
                del self._tasks[task_id]

        if expired:
            logger.info(f"Cleaned up {len(expired)} old scan tasks")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)
