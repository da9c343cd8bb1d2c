from __future__ import annotations
import queue
from typing import Any, Callable


class ImmediateDispatcher:
    """Runs posted callbacks on the calling thread (headless use and tests)."""

    def post(self, fn: Callable[..., Any], *args) -> None:
        fn(*args)


class QueueDispatcher:
    """Marshals callbacks onto the presentation thread.

    Worker threads post(); the presentation loop calls drain() periodically
    (e.g. from a Tk `after` tick or between OpenCV `waitKey` calls), so sink
    state is only touched on that thread.
    """

    def __init__(self, maxsize: int = 0):
        self._queue: "queue.Queue" = queue.Queue(maxsize=maxsize)

    def post(self, fn: Callable[..., Any], *args) -> None:
        self._queue.put((fn, args))

    def drain(self, limit: int = 0) -> int:
        """Run pending callbacks in posting order; returns how many ran."""
        ran = 0
        while limit <= 0 or ran < limit:
            try:
                fn, args = self._queue.get_nowait()
            except queue.Empty:
                break
            fn(*args)
            ran += 1
        return ran

    def pending(self) -> int:
        return self._queue.qsize()
