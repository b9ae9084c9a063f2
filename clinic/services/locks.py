"""
Bounded-wait exclusive sections keyed by an identifier.

Every shared resource of the engine (a patient, a department queue, a drug,
a lab equipment unit) is guarded by its own re-entrant lock.  Acquisition
waits at most ``timeout`` seconds and then fails with
:class:`~clinic.exceptions.ResourceBusyError` so a staff terminal is never
left hanging behind a stuck caller.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Hashable, Iterator, Optional

from clinic.exceptions import ResourceBusyError


class KeyedLocks:
    def __init__(self, kind: str, timeout: Optional[float] = 2.0):
        self.kind = kind
        self.timeout = timeout
        self._locks: dict[Hashable, threading.RLock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, key: Hashable, *, bounded: bool = True) -> Iterator[None]:
        """Hold the section for ``key``.

        ``bounded=False`` waits without a deadline; only the failsafe
        discharge uses it.
        """
        lock = self._lock_for(key)
        if bounded and self.timeout is not None:
            acquired = lock.acquire(timeout=self.timeout)
        else:
            acquired = lock.acquire()
        if not acquired:
            raise ResourceBusyError(f'{self.kind} {key} is busy, try again')
        try:
            yield
        finally:
            lock.release()
