import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class KeyedLocks:
    """
    One re-entrant lock per key (an account id, in practice).

    Work on different keys never contends; the registry lock is only held
    while looking a lock up.
    """

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def get(self, key: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self.get(key):
            yield
