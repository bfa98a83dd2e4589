# smart_insights/admission.py
"""
Admission control for background orchestrations.

A counting semaphore bounds how many orchestrations may run at once. This
throttles load on LLM providers and data sources; it plays no part in
correctness. Waiters are not served in FIFO order and there is no deadline.
"""

import threading
from contextlib import contextmanager

from smart_insights import monitoring


class AdmissionController:
    """Thread-safe gate allowing at most `limit` concurrent holders."""

    def __init__(self, limit: int = 10):
        if limit < 1:
            raise ValueError("admission limit must be >= 1")
        self.limit = limit
        self._slots = threading.Semaphore(limit)
        self._lock = threading.Lock()
        self._in_use = 0
        self._peak = 0

    def acquire(self) -> None:
        """Block until a slot is free, then take it."""
        self._slots.acquire()
        with self._lock:
            self._in_use += 1
            self._peak = max(self._peak, self._in_use)
            monitoring.set_in_flight(self._in_use)

    def release(self) -> None:
        with self._lock:
            if self._in_use == 0:
                raise RuntimeError("release() called without a held slot")
            self._in_use -= 1
            monitoring.set_in_flight(self._in_use)
        self._slots.release()

    @contextmanager
    def slot(self):
        """Hold a slot for the duration of the block; released on every exit path."""
        self.acquire()
        try:
            yield self
        finally:
            self.release()

    @property
    def in_use(self) -> int:
        with self._lock:
            return self._in_use

    @property
    def peak(self) -> int:
        with self._lock:
            return self._peak
