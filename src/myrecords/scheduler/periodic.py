"""
Periodic task registration.

PeriodicScheduler is the seam between the backup scheduler and whatever runs
recurring work on the host. ThreadingPeriodicScheduler is the in-process
implementation: one daemon thread per task, sleeping on a stop event between
runs.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import timedelta

logger = logging.getLogger(__name__)

TaskCallback = Callable[[], object]


class PeriodicScheduler(ABC):
    """Registers callbacks to run at a fixed interval under a unique id."""

    @abstractmethod
    def register(self, task_id: str, interval: timedelta, callback: TaskCallback) -> None:
        """Register a task. An existing registration with the same id is replaced."""

    @abstractmethod
    def cancel(self, task_id: str) -> None:
        """Cancel a task. Unknown ids are ignored."""

    @abstractmethod
    def is_registered(self, task_id: str) -> bool:
        """True if a task with this id is registered."""

    @abstractmethod
    def registered_tasks(self) -> list[str]:
        """Ids of all registered tasks."""


class _PeriodicTask:
    def __init__(self, task_id: str, interval: timedelta, callback: TaskCallback) -> None:
        self.task_id = task_id
        self.interval = interval
        self.callback = callback
        self.stop_event = threading.Event()
        self.thread = threading.Thread(
            target=self._run,
            name=f"myrecords-{task_id}",
            daemon=True,
        )

    def _run(self) -> None:
        seconds = self.interval.total_seconds()
        while not self.stop_event.wait(seconds):
            try:
                self.callback()
            except Exception:
                logger.exception(f"Periodic task '{self.task_id}' failed")


class ThreadingPeriodicScheduler(PeriodicScheduler):
    """
    Runs each registered task on its own daemon thread.

    The first run happens one interval after registration. Callback
    exceptions are logged and the task keeps its schedule.

    Usage:
        periodic = ThreadingPeriodicScheduler()
        periodic.register("auto_backup", timedelta(days=1), run_backup)
        ...
        periodic.shutdown()
    """

    def __init__(self) -> None:
        self._tasks: dict[str, _PeriodicTask] = {}
        self._lock = threading.Lock()

    def register(self, task_id: str, interval: timedelta, callback: TaskCallback) -> None:
        if interval.total_seconds() <= 0:
            raise ValueError("interval must be positive")

        task = _PeriodicTask(task_id, interval, callback)
        with self._lock:
            previous = self._tasks.pop(task_id, None)
            if previous is not None:
                previous.stop_event.set()
            self._tasks[task_id] = task
            task.thread.start()
        logger.debug(f"Registered periodic task '{task_id}' every {interval}")

    def cancel(self, task_id: str) -> None:
        with self._lock:
            task = self._tasks.pop(task_id, None)
        if task is not None:
            task.stop_event.set()
            logger.debug(f"Cancelled periodic task '{task_id}'")

    def is_registered(self, task_id: str) -> bool:
        with self._lock:
            return task_id in self._tasks

    def registered_tasks(self) -> list[str]:
        with self._lock:
            return sorted(self._tasks)

    def shutdown(self, timeout: float | None = None) -> None:
        """Cancel every task and wait for their threads to finish."""
        with self._lock:
            tasks = list(self._tasks.values())
            self._tasks.clear()

        for task in tasks:
            task.stop_event.set()
        for task in tasks:
            if task.thread is not threading.current_thread():
                task.thread.join(timeout)
