"""Counting gate limiting concurrently running heavy jobs."""
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, TypeVar

from .cancellation import CancelToken
from .errors import Cancelled

T = TypeVar("T")

_ACQUIRE_SLICE_SEC = 0.05


class AdmissionGate:
    """Fixed-capacity gate. Permits are only handed out through ``permit()``
    or ``run()`` so every acquire is paired with exactly one release."""

    def __init__(self, capacity: int = 1) -> None:
        if int(capacity) < 1:
            raise ValueError(f"admission capacity must be >= 1, got {capacity}")
        self.capacity = int(capacity)
        self._sem = threading.Semaphore(self.capacity)
        self._lock = threading.Lock()
        self._in_use = 0

    @property
    def in_use(self) -> int:
        with self._lock:
            return self._in_use

    def _acquire(self, token: Optional[CancelToken]) -> None:
        while True:
            if token is not None and token.cancelled:
                raise Cancelled(f"cancelled while waiting for admission ({token.reason})")
            if self._sem.acquire(timeout=_ACQUIRE_SLICE_SEC):
                with self._lock:
                    self._in_use += 1
                return

    def _release(self) -> None:
        with self._lock:
            self._in_use -= 1
        self._sem.release()

    @contextmanager
    def permit(self, token: Optional[CancelToken] = None) -> Iterator[None]:
        self._acquire(token)
        try:
            yield
        finally:
            self._release()

    def run(self, fn: Callable[[], T], token: Optional[CancelToken] = None) -> T:
        with self.permit(token):
            return fn()
