"""
Per-command deadline and cancellation token.

A CommandContext is created when a command is submitted and handed to the
backend that executes it. Backends derive every socket/HTTP timeout from
remaining() so the whole command, retries included, fits one budget.
Closers registered with closing() run when the command is cancelled, which
is how a blocked ACT socket read is interrupted from another thread.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, List

from printlink.core.errors import Cancelled, Timeout

log = logging.getLogger("printlink.client")


class CommandContext:

    def __init__(self, timeout: float, label: str = "command", clock: Callable[[], float] = time.monotonic):
        self.label = label
        self.timeout = timeout
        self._clock = clock
        self.deadline = clock() + timeout
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._closers: List[Callable[[], None]] = []

    # ==================== Deadline ====================

    def time_left(self) -> float:
        """Seconds until the deadline, never negative."""
        return max(0.0, self.deadline - self._clock())

    @property
    def expired(self) -> bool:
        return self._clock() >= self.deadline

    def remaining(self) -> float:
        """Seconds left for the next blocking call.

        Raises Cancelled or Timeout instead of returning a non-positive value,
        so callers can pass the result straight to settimeout().
        """
        self.check()
        left = self.deadline - self._clock()
        if left <= 0:
            raise Timeout(f"{self.label} exceeded {self.timeout:g}s budget")
        return left

    def check(self):
        if self._cancelled.is_set():
            raise Cancelled(f"{self.label} was cancelled")

    def sleep(self, seconds: float):
        """Sleep that wakes early (raising Cancelled) when the command is cancelled."""
        if self._cancelled.wait(timeout=seconds):
            raise Cancelled(f"{self.label} was cancelled")

    # ==================== Cancellation ====================

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self):
        with self._lock:
            if self._cancelled.is_set():
                return
            self._cancelled.set()
            closers = list(self._closers)
            self._closers.clear()
        for closer in closers:
            try:
                closer()
            except OSError as e:
                log.debug(f"[{self.label}] closer failed during cancel: {e}")

    @contextmanager
    def closing(self, closer: Callable[[], None]):
        """Register closer for the duration of the block.

        If the command is already cancelled, the closer runs immediately and
        Cancelled is raised.
        """
        with self._lock:
            already = self._cancelled.is_set()
            if not already:
                self._closers.append(closer)
        if already:
            closer()
            raise Cancelled(f"{self.label} was cancelled")
        try:
            yield
        finally:
            with self._lock:
                if closer in self._closers:
                    self._closers.remove(closer)
