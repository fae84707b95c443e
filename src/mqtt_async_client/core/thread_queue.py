"""
Thread-safe, closable, optionally bounded FIFO queue.

``ThreadQueue`` is the event queue used by the client's consumer mode, but it is
general purpose. Unlike ``queue.Queue`` it can be *closed*: once closed, puts
fail, while gets keep draining the remaining items and then fail. Closing wakes
every blocked producer and consumer.

Blocking calls (``put``/``get``) raise ``QueueClosed``. The ``try_*`` variants
never raise for a closed or full/empty queue; they report failure instead.

Example:
    >>> que = ThreadQueue()
    >>> que.put(1); que.put(2); que.close()
    >>> que.get(), que.get()
    (1, 2)
    >>> que.get()
    Traceback (most recent call last):
        ...
    QueueClosed: ...
"""
import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Generic, TypeVar

from .exceptions import ArgumentError, QueueClosed
from .protocol_utils import deadline_to_timeout, to_timeout

T = TypeVar("T")


class ThreadQueue(Generic[T]):
    """
    Bounded blocking FIFO with sticky close semantics.

    Args:
        capacity: Maximum number of items, or None for unlimited
    """

    def __init__(self, capacity: int | None = None):
        if capacity is not None and (isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0):
            raise ArgumentError(f"Queue capacity must be a positive integer or None, got {capacity!r}")
        self._capacity = capacity
        self._items: deque[T] = deque()
        self._closed = False
        self._lock = threading.Lock()
        self._not_empty = threading.Condition(self._lock)
        self._not_full = threading.Condition(self._lock)

    # --- observers ---------------------------------------------------------

    def capacity(self) -> int | None:
        return self._capacity

    def size(self) -> int:
        with self._lock:
            return len(self._items)

    def empty(self) -> bool:
        with self._lock:
            return not self._items

    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def done(self) -> bool:
        """True once the queue is closed and fully drained."""
        with self._lock:
            return self._closed and not self._items

    def __len__(self) -> int:
        return self.size()

    # --- producers ---------------------------------------------------------

    def _is_full(self) -> bool:
        return self._capacity is not None and len(self._items) >= self._capacity

    def _push(self, item: T) -> None:
        self._items.append(item)
        self._not_empty.notify()

    def put(self, item: T) -> None:
        """Block until there is room, then append. Raises QueueClosed if closed."""
        with self._not_full:
            while not self._closed and self._is_full():
                self._not_full.wait()
            if self._closed:
                raise QueueClosed("Queue is closed")
            self._push(item)

    def try_put(self, item: T) -> bool:
        with self._lock:
            if self._closed or self._is_full():
                return False
            self._push(item)
            return True

    def try_put_for(self, item: T, timeout: "float | timedelta") -> bool:
        return self._put_wait(item, to_timeout(timeout))

    def try_put_until(self, item: T, deadline: "float | datetime") -> bool:
        return self._put_wait(item, deadline_to_timeout(deadline))

    def _put_wait(self, item: T, timeout: float) -> bool:
        with self._not_full:
            if not self._not_full.wait_for(lambda: self._closed or not self._is_full(), timeout):
                return False
            if self._closed:
                return False
            self._push(item)
            return True

    # --- consumers ---------------------------------------------------------

    def _pop(self) -> T:
        item = self._items.popleft()
        self._not_full.notify()
        return item

    def get(self) -> T:
        """Block until an item is available. Raises QueueClosed once closed and empty."""
        with self._not_empty:
            while not self._items and not self._closed:
                self._not_empty.wait()
            if not self._items:
                raise QueueClosed("Queue is closed and empty")
            return self._pop()

    def try_get(self) -> tuple[bool, T | None]:
        """
        Non-blocking get.

        Returns:
            ``(True, item)`` on success, ``(False, None)`` if nothing is available
        """
        with self._lock:
            if not self._items:
                return False, None
            return True, self._pop()

    def try_get_for(self, timeout: "float | timedelta") -> tuple[bool, T | None]:
        return self._get_wait(to_timeout(timeout))

    def try_get_until(self, deadline: "float | datetime") -> tuple[bool, T | None]:
        return self._get_wait(deadline_to_timeout(deadline))

    def _get_wait(self, timeout: float) -> tuple[bool, T | None]:
        with self._not_empty:
            self._not_empty.wait_for(lambda: self._items or self._closed, timeout)
            if not self._items:
                return False, None
            return True, self._pop()

    # --- lifecycle ---------------------------------------------------------

    def close(self) -> None:
        """Close the queue and wake all waiters. Idempotent."""
        with self._lock:
            self._closed = True
            self._not_empty.notify_all()
            self._not_full.notify_all()

    def clear(self) -> None:
        """Discard all queued items."""
        with self._lock:
            self._items.clear()
            self._not_full.notify_all()

    def __repr__(self):
        return (
            f"{self.__class__.__name__}(size={len(self._items)}, "
            f"capacity={self._capacity}, closed={self._closed})"
        )


__all__ = ["ThreadQueue"]
