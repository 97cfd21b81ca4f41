"""Hierarchical cancellation tokens shared between callers and worker threads."""
import threading
from typing import List, Optional

from .errors import Cancelled


class CancelToken:
    """A one-shot cancellation flag.

    Cancelling a token cancels every child created from it. Workers check
    ``cancelled`` or sleep with ``wait()`` so that a cancel wakes them early.
    """

    def __init__(self, parent: Optional["CancelToken"] = None) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: List["CancelToken"] = []
        self.reason = ""
        if parent is not None:
            parent.adopt(self)

    def adopt(self, child: "CancelToken") -> None:
        with self._lock:
            if not self._event.is_set():
                self._children.append(child)
                return
            reason = self.reason
        child.cancel(reason)

    def child(self) -> "CancelToken":
        return CancelToken(parent=self)

    def detach(self, child: "CancelToken") -> None:
        with self._lock:
            try:
                self._children.remove(child)
            except ValueError:
                pass

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            children = list(self._children)
            self._children.clear()
        for child in children:
            child.cancel(reason)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return True if cancelled meanwhile."""
        return self._event.wait(max(0.0, timeout))

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled(self.reason or "cancelled")

    def sleep(self, seconds: float) -> None:
        if self.wait(seconds):
            raise Cancelled(self.reason or "cancelled")
