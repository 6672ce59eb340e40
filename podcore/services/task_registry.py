"""Process-local registry of background task runs.

Nothing here is persisted: a restarted process may run every task again,
and the eligibility filter in ``external_fetch_service`` keeps that
harmless. The registry only stops one process from starting the same task
twice at once, or again right after it finished.
"""

from __future__ import annotations

import itertools
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from podcore.config import settings
from podcore.utils.clock import utc_now

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50


@dataclass
class TaskRun:
    task_id: str
    task_type: str
    podcast_id: int
    status: str  # running | done | failed
    started_at: datetime
    finished_at: Optional[datetime] = None
    progress_label: str = ""
    message: Optional[str] = None


class TaskRegistry:
    def __init__(
        self,
        min_interval: timedelta,
        *,
        clock: Callable[[], datetime] = utc_now,
        history_limit: int = HISTORY_LIMIT,
    ) -> None:
        self.min_interval = min_interval
        self._clock = clock
        self._running: dict[tuple[str, int], TaskRun] = {}
        self._finished: deque[TaskRun] = deque(maxlen=history_limit)
        self._counter = itertools.count(1)

    def is_running(self, task_type: str, podcast_id: int) -> bool:
        return (task_type, podcast_id) in self._running

    def last_finished(self, task_type: str, podcast_id: int) -> Optional[TaskRun]:
        for run in reversed(self._finished):
            if run.task_type == task_type and run.podcast_id == podcast_id:
                return run
        return None

    def try_start(
        self, task_type: str, podcast_id: int, label: str, *, force: bool = False
    ) -> Optional[TaskRun]:
        """Register a new run, or return None when it must be skipped.

        Skips while the same task runs for the podcast, and (unless
        ``force``) when it finished less than ``min_interval`` ago. There is
        no await between the check and the insert, so concurrent requests in
        one event loop cannot both start.
        """
        if self.is_running(task_type, podcast_id):
            logger.info(f"Task {task_type} already running for podcast {podcast_id}, skipping")
            return None

        now = self._clock()
        previous = self.last_finished(task_type, podcast_id)
        if (
            not force
            and previous is not None
            and previous.finished_at is not None
            and now - previous.finished_at < self.min_interval
        ):
            logger.info(f"Task {task_type} ran recently for podcast {podcast_id}, skipping")
            return None

        run = TaskRun(
            task_id=f"{task_type}-{podcast_id}-{next(self._counter)}",
            task_type=task_type,
            podcast_id=podcast_id,
            status="running",
            started_at=now,
            progress_label=label,
        )
        self._running[(task_type, podcast_id)] = run
        return run

    def update_progress(self, run: TaskRun, label: str) -> None:
        run.progress_label = label

    def complete(self, run: TaskRun, message: Optional[str] = None) -> None:
        self._finish(run, "done", message)

    def fail(self, run: TaskRun, message: str) -> None:
        self._finish(run, "failed", message)

    def _finish(self, run: TaskRun, status: str, message: Optional[str]) -> None:
        run.status = status
        run.message = message
        run.finished_at = self._clock()
        self._running.pop((run.task_type, run.podcast_id), None)
        self._finished.append(run)
        logger.info(f"Task {run.task_id} {status}: {message or ''}")

    def list_runs(self) -> list[TaskRun]:
        """Running tasks first, then finished ones newest first."""
        return list(self._running.values()) + list(reversed(self._finished))


task_registry = TaskRegistry(timedelta(seconds=settings.auto_fetch_min_interval_seconds))


def get_task_registry() -> TaskRegistry:
    return task_registry
