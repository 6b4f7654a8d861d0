"""An ownership lock that releases itself when its owner goes quiet."""

from __future__ import annotations

import threading
from typing import Callable, Optional

from jacdcore.timeout import Timeout


class TimeoutLock:
    """A lock held by one numbered client at a time.

    Once locked, a timeout runs; if it expires, the callback is called and
    the lock is released. Owners pause the timeout with :meth:`stop_timeout`
    while handling a request and re-arm it with :meth:`reset_timeout`.
    """

    def __init__(self, duration: float, callback: Optional[Callable[[], None]]) -> None:
        self._timeout = Timeout(duration)
        self._callback = callback
        self._locked = False
        self._owner = 0
        self._stops = 0
        self._mutex = threading.RLock()

    def init(self) -> None:
        """Start the timeout machinery."""
        self._timeout.init()

    def _expired(self) -> None:
        with self._mutex:
            if self._callback is not None:
                self._callback()
            self._locked = False

    def lock(self, who: int) -> bool:
        """Take the lock for ``who``; return False if someone else holds it.

        Raises RuntimeError if ``who`` already holds the lock.
        """
        with self._mutex:
            if self._locked and self._owner == who:
                raise RuntimeError(
                    "Lock already locked, reset() should be used to reset the timeout"
                )
            if self._locked:
                return False
            self._locked = True
            self._owner = who
            self._timeout.start(self._expired)
            return True

    def reset_timeout(self, who: int) -> None:
        """Undo one :meth:`stop_timeout`; re-arm the timeout after the last one."""
        with self._mutex:
            if not self._locked or self._owner != who:
                return
            self._stops = max(self._stops - 1, 0)
            if self._stops == 0:
                self._timeout.reset()

    def stop_timeout(self, who: int) -> None:
        """Pause the timeout while ``who`` holds the lock."""
        with self._mutex:
            if not self._locked or self._owner != who:
                return
            self._timeout.stop()
            self._stops += 1

    def unlock(self, who: int) -> bool:
        """Release the lock if ``who`` is the recorded owner."""
        with self._mutex:
            if self._owner != who:
                return False
            self._timeout.stop()
            self._locked = False
            return True

    def force_unlock(self) -> None:
        """Release the lock regardless of its owner."""
        with self._mutex:
            self._timeout.stop()
            self._locked = False

    def owned_by(self, who: int) -> bool:
        """Whether ``who`` currently holds the lock."""
        with self._mutex:
            return self._locked and self._owner == who

    def close(self) -> None:
        """Stop the timeout and its worker thread."""
        self._timeout.stop()
        self._timeout.close()