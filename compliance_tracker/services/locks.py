"""Per-task mutual exclusion for the operations that must not interleave."""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = threading.Lock()
        self.holders = 0


class TaskLockRegistry:
    """
    Hands out one lock per task id.

    Operations on the same task serialize; operations on different tasks
    never wait on each other. An entry lives only while some caller holds
    or waits on it, so ids that are never seen again (deleted or unknown
    tasks) leave nothing behind.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def is_held(self, task_id: str) -> bool:
        with self._guard:
            entry = self._entries.get(task_id)
            return entry is not None and entry.lock.locked()

    @contextmanager
    def hold(self, task_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(task_id)
            if entry is None:
                entry = self._entries[task_id] = _Entry()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._entries[task_id]


# Shared by every request handled in this process
task_locks = TaskLockRegistry()
