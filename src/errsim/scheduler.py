from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from typing import Callable

logger = logging.getLogger(__name__)


class DeliveryScheduler:
    """One-shot timed deliveries for one relay side, fired from a single worker thread.

    Every send goes through here, even with a zero offset, so a receive loop
    never transmits on its own thread.
    """

    def __init__(self, deliver: Callable[[bytes], None], name: str = "scheduler"):
        self._deliver = deliver
        self._cond = threading.Condition()
        self._pending: list[tuple[float, int, bytes]] = []
        self._seq = itertools.count()
        self._closed = False
        self._worker = threading.Thread(target=self._run, name=name, daemon=True)
        self._worker.start()

    def schedule(self, payload: bytes, offset_ms: int = 0) -> None:
        due = time.monotonic() + max(0, offset_ms) / 1000.0
        with self._cond:
            if self._closed:
                return
            heapq.heappush(self._pending, (due, next(self._seq), payload))
            self._cond.notify()

    def pending(self) -> int:
        with self._cond:
            return len(self._pending)

    def close(self) -> None:
        """Discard pending deliveries without sending them and stop the worker."""
        with self._cond:
            self._closed = True
            self._pending.clear()
            self._cond.notify()
        if threading.current_thread() is not self._worker:
            self._worker.join()

    def _next_due(self) -> bytes | None:
        with self._cond:
            while not self._closed:
                if not self._pending:
                    self._cond.wait()
                    continue
                due = self._pending[0][0]
                wait_s = due - time.monotonic()
                if wait_s > 0:
                    self._cond.wait(wait_s)
                    continue
                return heapq.heappop(self._pending)[2]
        return None

    def _run(self) -> None:
        while True:
            payload = self._next_due()
            if payload is None:
                return
            try:
                self._deliver(payload)
            except Exception:
                logger.exception("scheduled delivery of %d bytes failed", len(payload))
