"""Process-wide error, log and debug output streams."""

from __future__ import annotations

from typing import ClassVar, Optional, Protocol


class _Writable(Protocol):
    def write(self, data: bytes): ...


class Logger:
    """Writes messages to configured output streams; unset streams drop them."""

    error_stream: ClassVar[Optional[_Writable]] = None
    log_stream: ClassVar[Optional[_Writable]] = None
    debug_stream: ClassVar[Optional[_Writable]] = None

    @classmethod
    def configure(
        cls,
        error: Optional[_Writable] = None,
        log: Optional[_Writable] = None,
        debug: Optional[_Writable] = None,
    ) -> None:
        """Set the three output streams; None disables a stream."""
        cls.error_stream = error
        cls.log_stream = log
        cls.debug_stream = debug

    @staticmethod
    def _emit(stream: Optional[_Writable], message: str) -> None:
        if stream is not None:
            stream.write(message.encode("utf-8"))

    @classmethod
    def error(cls, message: str) -> None:
        """Write to the error stream."""
        cls._emit(cls.error_stream, message)

    @classmethod
    def log(cls, message: str) -> None:
        """Write to the log stream."""
        cls._emit(cls.log_stream, message)

    @classmethod
    def debug(cls, message: str) -> None:
        """Write to the debug stream."""
        cls._emit(cls.debug_stream, message)