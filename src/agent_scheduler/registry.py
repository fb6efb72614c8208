import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional

from agent_scheduler.domain.task import ScheduledTask, TaskState
from agent_scheduler.errors import TaskNotFound


class TaskRegistry:
    """
    In-memory map of agent id -> scheduled task.

    One lock guards the map and is held only while reading or mutating it, so it is
    safe to use from the tick loop, from completion callbacks and from management
    calls arriving on other threads. Callers always receive copies; every write goes
    through a registry method.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._tasks: Dict[str, ScheduledTask] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def __contains__(self, agent_id: str) -> bool:
        with self._lock:
            return agent_id in self._tasks

    def upsert(self, task: ScheduledTask) -> ScheduledTask:
        with self._lock:
            self._tasks[task.agent_id] = task.model_copy()
            return task.model_copy()

    def remove(self, agent_id: str) -> Optional[ScheduledTask]:
        with self._lock:
            return self._tasks.pop(agent_id, None)

    def get(self, agent_id: str) -> Optional[ScheduledTask]:
        with self._lock:
            task = self._tasks.get(agent_id)
            return task.model_copy() if task else None

    def all(self) -> List[ScheduledTask]:
        with self._lock:
            tasks = [task.model_copy() for task in self._tasks.values()]
        return sorted(tasks, key=ScheduledTask.dispatch_order)

    def all_due(self, as_of: datetime) -> List[ScheduledTask]:
        """
        Tasks whose next run has passed and that are neither paused nor running,
        highest priority first, then earliest next run, then agent id.
        """
        with self._lock:
            due = [task.model_copy() for task in self._tasks.values() if task.is_due(as_of)]
        return sorted(due, key=ScheduledTask.dispatch_order)

    def paused(self) -> List[ScheduledTask]:
        with self._lock:
            tasks = [task.model_copy() for task in self._tasks.values() if task.is_paused]
        return sorted(tasks, key=lambda t: t.agent_id)

    def running_count(self) -> int:
        with self._lock:
            return sum(1 for task in self._tasks.values() if task.is_running)

    def update(self, agent_id: str, mutator: Callable[[ScheduledTask], None]) -> ScheduledTask:
        """
        Apply ``mutator`` to the stored task under the lock and return a copy of the result.

        The mutator works on a copy which replaces the stored task only if it returns
        normally, so a mutator that raises leaves the registry untouched.

        Raises:
            TaskNotFound: If no task is registered for ``agent_id``.
        """
        with self._lock:
            current = self._tasks.get(agent_id)
            if current is None:
                raise TaskNotFound(agent_id)
            updated = current.model_copy()
            mutator(updated)
            self._tasks[agent_id] = updated
            return updated.model_copy()

    def claim(self, agent_id: str, as_of: datetime) -> Optional[ScheduledTask]:
        """
        Atomically mark a due task as running. Returns None if the task is gone or no
        longer due (paused, already running or rescheduled since the snapshot).
        """
        with self._lock:
            task = self._tasks.get(agent_id)
            if task is None or not task.is_due(as_of):
                return None
            task.is_running = True
            task.state = TaskState.DISPATCHED
            return task.model_copy()
