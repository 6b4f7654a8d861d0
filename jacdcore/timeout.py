"""A restartable one-shot timer driven by a background thread."""

from __future__ import annotations

import math
import threading
import time
from typing import Callable, Optional


class Timeout:
    """Calls a callback once the configured duration has elapsed.

    The timer does nothing until :meth:`init` starts its worker thread.
    :meth:`start` arms it with a callback, :meth:`reset` pushes the deadline
    forward and :meth:`stop` disarms it.
    """

    def __init__(self, duration: float) -> None:
        self._duration = float(duration)
        self._callback: Optional[Callable[[], None]] = None
        self._end_time = math.inf
        self._stopping = False
        self._running = False
        self._cond = threading.Condition()
        self._thread: Optional[threading.Thread] = None

    @property
    def duration(self) -> float:
        """The timeout length in seconds."""
        return self._duration

    def init(self) -> None:
        """Start the worker thread that fires the callback."""
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="timeout", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while True:
            with self._cond:
                if self._stopping:
                    return
                if not self._running:
                    self._cond.wait()
                    continue
                remaining = self._end_time - time.monotonic()
                if remaining > 0:
                    self._cond.wait(remaining)
                    continue
                self._running = False
                callback = self._callback
            if callback is not None:
                callback()

    def start(self, callback: Callable[[], None]) -> None:
        """Arm the timer with a new callback and a fresh deadline."""
        with self._cond:
            self._end_time = time.monotonic() + self._duration
            self._callback = callback
            self._running = True
            self._cond.notify_all()

    def reset(self) -> None:
        """Re-arm the timer with a fresh deadline, keeping the callback."""
        with self._cond:
            self._end_time = time.monotonic() + self._duration
            self._running = True
            self._cond.notify_all()

    def stop(self) -> None:
        """Disarm the timer without calling the callback."""
        with self._cond:
            self._running = False
            self._cond.notify_all()

    def close(self) -> None:
        """Disarm the timer and end the worker thread."""
        with self._cond:
            self._stopping = True
            self._running = False
            self._cond.notify_all()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def __enter__(self) -> "Timeout":
        self.init()
        return self

    def __exit__(self, *args) -> None:
        self.close()