"""Packet communicator interfaces and in-memory implementations."""

from __future__ import annotations

import queue
from abc import ABC, abstractmethod
from typing import Callable, Iterable, List, Optional, Tuple, Union

Packet = Tuple[int, bytes]


class OutputPacket(ABC):
    """A packet being assembled for sending."""

    @abstractmethod
    def put(self, data: Union[int, bytes, bytearray, memoryview]) -> int:
        """Append a byte or bytes; return how many bytes fitted."""

    @abstractmethod
    def space(self) -> int:
        """Number of bytes that can still be appended."""

    @abstractmethod
    def send(self) -> None:
        """Send the packet."""


class OutputPacketCommunicator(ABC):
    """Builds packets addressed to a set of recipients."""

    @abstractmethod
    def build_packet(self, recipients: Iterable[int]) -> OutputPacket:
        """Start a new packet for ``recipients``."""

    @abstractmethod
    def max_packet_size(self, recipients: Iterable[int]) -> int:
        """Largest packet payload deliverable to ``recipients``."""


class InputPacketCommunicator(ABC):
    """A source of incoming packets."""

    @abstractmethod
    def get(self) -> Optional[Packet]:
        """Block for the next (sender, data) packet; None if the read was cancelled."""

    @abstractmethod
    def cancel_read(self) -> None:
        """Wake a blocked :meth:`get` so it returns None."""


class _MemoryPacket(OutputPacket):
    def __init__(self, capacity: int, on_send: Callable[[bytes], None]) -> None:
        self._capacity = capacity
        self._buffer = bytearray()
        self._on_send = on_send

    def put(self, data: Union[int, bytes, bytearray, memoryview]) -> int:
        if isinstance(data, int):
            if not 0 <= data <= 0xFF:
                raise ValueError(f"byte value out of range: {data}")
            data = bytes((data,))
        chunk = bytes(data)[: self.space()]
        self._buffer += chunk
        return len(chunk)

    def space(self) -> int:
        return self._capacity - len(self._buffer)

    def send(self) -> None:
        self._on_send(bytes(self._buffer))


class MemoryOutputCommunicator(OutputPacketCommunicator):
    """Records sent packets in :attr:`sent` as (recipients, payload) pairs."""

    def __init__(self, max_packet_size: int) -> None:
        if max_packet_size < 1:
            raise ValueError("max_packet_size must be positive")
        self._max_packet_size = max_packet_size
        self.sent: List[Tuple[Tuple[int, ...], bytes]] = []

    def build_packet(self, recipients: Iterable[int]) -> OutputPacket:
        targets = tuple(recipients)
        return _MemoryPacket(
            self._max_packet_size, lambda payload: self.sent.append((targets, payload))
        )

    def max_packet_size(self, recipients: Iterable[int]) -> int:
        return self._max_packet_size


_CANCELLED = object()


class QueueInputCommunicator(InputPacketCommunicator):
    """Delivers packets pushed from any thread, in order."""

    def __init__(self) -> None:
        self._queue: "queue.Queue[object]" = queue.Queue()

    def push(self, sender: int, data: Union[bytes, bytearray, memoryview]) -> None:
        """Queue a packet from ``sender``."""
        self._queue.put((sender, bytes(data)))

    def get(self) -> Optional[Packet]:
        item = self._queue.get()
        if item is _CANCELLED:
            return None
        return item  # type: ignore[return-value]

    def cancel_read(self) -> None:
        self._queue.put(_CANCELLED)