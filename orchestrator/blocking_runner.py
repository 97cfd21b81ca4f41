"""Run blocking calls on worker threads under a hard timeout."""
import itertools
import threading
import time
from concurrent.futures import CancelledError, Future, wait
from typing import Callable, Optional, TypeVar

from .cancellation import CancelToken
from .errors import Cancelled, GenerationTimeout

T = TypeVar("T")

_WAIT_SLICE_SEC = 0.05


class BlockingTaskRunner:
    """Executes ``task(token)`` on its own daemon thread and waits at most ``timeout``.

    There is no worker cap; admission is bounded upstream. A task that ignores
    its token after a timeout keeps only its own thread, so later calls never
    queue behind it. On timeout or caller cancellation the task's token is
    cancelled and the caller gets ``GenerationTimeout`` / ``Cancelled``. Errors
    raised by the task are re-raised unchanged.
    """

    def __init__(self, name: str = "story-blocking") -> None:
        self.name = name
        self._root = CancelToken()
        self._lock = threading.Lock()
        self._closed = False
        self._ids = itertools.count(1)
        self._active = 0

    @property
    def active(self) -> int:
        """Worker threads that have not returned yet, including abandoned ones."""
        with self._lock:
            return self._active

    def run(
        self,
        task: Callable[[CancelToken], T],
        timeout: float,
        token: Optional[CancelToken] = None,
        label: str = "blocking task",
    ) -> T:
        parent = token if token is not None else self._root
        with self._lock:
            if self._closed:
                raise Cancelled(f"{label}: runner is shut down")
            task_token = parent.child()
            if token is not None:
                self._root.adopt(task_token)
            future = self._spawn(task, task_token)
        try:
            return self._await(future, task_token, parent, float(timeout), label)
        finally:
            parent.detach(task_token)
            self._root.detach(task_token)

    def _spawn(self, task: Callable[[CancelToken], T], task_token: CancelToken) -> Future:
        future: Future = Future()

        def worker() -> None:
            try:
                if not future.set_running_or_notify_cancel():
                    return
                try:
                    result = task(task_token)
                except BaseException as exc:
                    future.set_exception(exc)
                else:
                    future.set_result(result)
            finally:
                with self._lock:
                    self._active -= 1

        self._active += 1
        thread = threading.Thread(target=worker, name=f"{self.name}-{next(self._ids)}", daemon=True)
        thread.start()
        return future

    def _await(
        self,
        future: Future,
        task_token: CancelToken,
        parent: CancelToken,
        timeout: float,
        label: str,
    ) -> T:
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                task_token.cancel(f"{label} timed out")
                future.cancel()
                raise GenerationTimeout(f"Timeout waiting for {label} after {timeout:g}s", label=label)
            done, _ = wait([future], timeout=min(remaining, _WAIT_SLICE_SEC))
            # A cooperative task returns early once cancelled; that value is not a result.
            if parent.cancelled or task_token.cancelled:
                reason = parent.reason or task_token.reason or "cancelled"
                task_token.cancel(reason)
                future.cancel()
                raise Cancelled(f"{label} cancelled: {reason}")
            if done:
                break
        try:
            return future.result()
        except CancelledError as exc:
            raise Cancelled(f"{label} cancelled before start") from exc

    def shutdown(self) -> None:
        with self._lock:
            self._closed = True
        self._root.cancel("runner shutdown")
