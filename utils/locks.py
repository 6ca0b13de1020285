import threading
from contextlib import contextmanager, nullcontext
from typing import ContextManager, Dict, Iterator


class KeyedLock:
    """One mutex per key, created on demand and dropped when no thread holds it"""

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._waiters: Dict[str, int] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._waiters[key] = self._waiters.get(key, 0) + 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._waiters[key] -= 1
                if self._waiters[key] == 0:
                    del self._waiters[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class NoLock:
    """Default for the accepted duplicate-work race on concurrent misses"""

    def hold(self, key: str) -> ContextManager[None]:
        return nullcontext()
