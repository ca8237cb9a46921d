"""Per-key mutual exclusion for order units of work.

Mutations against the same order must not interleave: each one loads the
whole aggregate, recomputes pricing and writes it back. A lock is held around
the entire unit of work (load -> mutate -> commit); different keys never
block each other.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class KeyedLocks:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}
        self._holders: dict[str, int] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.RLock())
            self._holders[key] = self._holders.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._holders[key] -= 1
                if self._holders[key] == 0:
                    del self._holders[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


order_locks = KeyedLocks()


def customer_key(customer_id: str) -> str:
    return f"customer:{customer_id}"


def order_key(order_id: str) -> str:
    return f"order:{order_id}"
