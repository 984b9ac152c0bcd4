"""
Per-port locks serializing the overlap check and booking insert.

Within one process the lock orders concurrent requests for the same
(station, port); across processes the persisted port row is additionally
locked with ``SELECT ... FOR UPDATE`` by the booking service.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Tuple


class PortLockRegistry:
    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Tuple[str, str], threading.RLock] = {}

    def lock_for(self, station_id: str, port_id: str) -> threading.RLock:
        key = (str(station_id), str(port_id))
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, station_id: str, port_id: str):
        lock = self.lock_for(station_id, port_id)
        with lock:
            yield


port_locks = PortLockRegistry()
