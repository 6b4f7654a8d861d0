"""Key-value namespaces and the interface a device exposes to control its machine."""

from __future__ import annotations

import struct
from abc import ABC, abstractmethod
from enum import IntEnum
from typing import Dict, List, Optional, Tuple, Union

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

Value = Union[int, float, str]


class DataType(IntEnum):
    """Type tags of stored values, as used on the wire."""

    INT64 = 0
    FLOAT32 = 1
    STRING = 2
    NOT_FOUND = 0xFF


class KeyValueNamespace(ABC):
    """A named group of typed values with explicit commit."""

    @abstractmethod
    def erase(self, name: str) -> bool:
        """Remove ``name``; return whether it existed."""

    @abstractmethod
    def keys(self) -> List[str]:
        """Names of all stored values."""

    @abstractmethod
    def set_int(self, name: str, value: int) -> None:
        """Store a 64-bit signed integer."""

    @abstractmethod
    def set_float(self, name: str, value: float) -> None:
        """Store a 32-bit float."""

    @abstractmethod
    def set_string(self, name: str, value: str) -> None:
        """Store a string."""

    @abstractmethod
    def get_int(self, name: str, default: int = 0) -> int:
        """Read an integer, or ``default`` if absent."""

    @abstractmethod
    def get_float(self, name: str, default: float = 0.0) -> float:
        """Read a float, or ``default`` if absent."""

    @abstractmethod
    def get_string(self, name: str, default: str = "") -> str:
        """Read a string, or ``default`` if absent."""

    @abstractmethod
    def get_type(self, name: str) -> DataType:
        """Type of the value stored under ``name``, or NOT_FOUND."""

    def exists(self, name: str) -> bool:
        """Whether a value is stored under ``name``."""
        return self.get_type(name) != DataType.NOT_FOUND

    @abstractmethod
    def commit(self) -> bool:
        """Persist pending changes; return whether it succeeded."""


def _to_float32(value: float) -> float:
    return struct.unpack("<f", struct.pack("<f", float(value)))[0]


class MemoryKeyValueNamespace(KeyValueNamespace):
    """A namespace kept in a dict; changes reach ``store`` on :meth:`commit`.

    ``store`` maps names to ``int``, ``float`` or ``str`` values.
    """

    def __init__(self, store: Optional[Dict[str, Value]] = None) -> None:
        self.store: Dict[str, Value] = {} if store is None else store
        self._pending: Dict[str, Value] = dict(self.store)

    @staticmethod
    def _type_of(value: Value) -> DataType:
        if isinstance(value, str):
            return DataType.STRING
        if isinstance(value, float):
            return DataType.FLOAT32
        if isinstance(value, int) and not isinstance(value, bool):
            return DataType.INT64
        return DataType.NOT_FOUND

    def erase(self, name: str) -> bool:
        return self._pending.pop(name, None) is not None

    def keys(self) -> List[str]:
        return list(self._pending)

    def set_int(self, name: str, value: int) -> None:
        value = int(value)
        if not _INT64_MIN <= value <= _INT64_MAX:
            raise OverflowError(f"{value} does not fit in a 64-bit signed integer")
        self._pending[name] = value

    def set_float(self, name: str, value: float) -> None:
        self._pending[name] = _to_float32(value)

    def set_string(self, name: str, value: str) -> None:
        self._pending[name] = str(value)

    def _get(self, name: str, expected: DataType, default):
        value = self._pending.get(name)
        if value is None or self._type_of(value) != expected:
            return default
        return value

    def get_int(self, name: str, default: int = 0) -> int:
        return self._get(name, DataType.INT64, default)

    def get_float(self, name: str, default: float = 0.0) -> float:
        return self._get(name, DataType.FLOAT32, default)

    def get_string(self, name: str, default: str = "") -> str:
        return self._get(name, DataType.STRING, default)

    def get_type(self, name: str) -> DataType:
        if name not in self._pending:
            return DataType.NOT_FOUND
        return self._type_of(self._pending[name])

    def commit(self) -> bool:
        self.store.clear()
        self.store.update(self._pending)
        return True


class MachineCtrl(ABC):
    """What the controller needs from the device running the script machine."""

    @abstractmethod
    def start_machine(self, path: str) -> bool:
        """Start running the script at ``path``; False if already running."""

    @abstractmethod
    def stop_machine(self) -> bool:
        """Stop the running machine; False if none was running."""

    @abstractmethod
    def get_machine_status(self) -> Tuple[bool, int, str]:
        """Return (running, last exit code, status text)."""

    @abstractmethod
    def open_key_value(self, nsname: str) -> Optional[KeyValueNamespace]:
        """Open the namespace ``nsname``, or return None if it cannot be opened."""

    @abstractmethod
    def emit_key_value_modified(self, nsname: str, key: str) -> None:
        """Notify listeners that ``key`` in ``nsname`` changed."""