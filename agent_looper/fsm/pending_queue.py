"""FIFO buffer of task descriptions submitted while a loop is running."""

import threading
from typing import List


class PendingQueue:
    """Lock-guarded FIFO queue of pending task descriptions.

    Commands append to the tail; the judge drains everything at once.
    There is no capacity bound.
    """

    def __init__(self) -> None:
        self._items: List[str] = []
        self._lock = threading.Lock()

    def append(self, task: str) -> int:
        """Append a task to the tail of the queue.

        Args:
            task: Task description to queue.

        Returns:
            1-based position of the task in the queue.
        """
        with self._lock:
            self._items.append(task)
            return len(self._items)

    def drain(self) -> List[str]:
        """Return all queued tasks in insertion order and clear the queue."""
        with self._lock:
            items = self._items
            self._items = []
        return items

    def snapshot(self) -> List[str]:
        """Return a copy of the queued tasks without clearing them."""
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __repr__(self) -> str:
        return f"PendingQueue(size={len(self)})"
