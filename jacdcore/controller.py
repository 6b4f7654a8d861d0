"""Control channel: device locking, machine start/stop, status and configuration."""

from __future__ import annotations

import struct
import threading
from enum import IntEnum
from typing import Iterable, List, Optional, Tuple, Union

from jacdcore.keyvalue import DataType, KeyValueNamespace, MachineCtrl
from jacdcore.lock import TimeoutLock
from jacdcore.logger import Logger
from jacdcore.transport import InputPacketCommunicator, OutputPacketCommunicator

_Bytes = Union[bytes, bytearray, memoryview]
_ENCODING = "utf-8"
_ERRORS = "surrogateescape"


class Command(IntEnum):
    """Command and response codes of the control channel."""

    START = 0x01
    STOP = 0x02
    STATUS = 0x03
    VERSION = 0x04
    LOCK = 0x10
    UNLOCK = 0x11
    FORCE_UNLOCK = 0x12
    OK = 0x20
    ERROR = 0x21
    LOCK_NOT_OWNED = 0x22
    CONFIG_SET = 0x30
    CONFIG_GET = 0x31
    CONFIG_ERASE = 0x32


_UNLOCKED_COMMANDS = {
    Command.LOCK,
    Command.UNLOCK,
    Command.FORCE_UNLOCK,
    Command.STATUS,
    Command.VERSION,
}


def _decode(raw: bytes) -> str:
    return raw.decode(_ENCODING, _ERRORS)


def _encode(text: str) -> bytes:
    return text.encode(_ENCODING, _ERRORS)


def _read_cstring(data: bytes, pos: int) -> Optional[Tuple[str, int]]:
    """Return the NUL-terminated string at ``pos`` and the index after the NUL."""
    end = data.find(b"\0", pos)
    if end < 0:
        return None
    return _decode(data[pos:end]), end + 1


class Controller:
    """Serves control requests from an input communicator on a worker thread."""

    def __init__(
        self,
        input: InputPacketCommunicator,
        output: OutputPacketCommunicator,
        lock: TimeoutLock,
        machine_ctrl: MachineCtrl,
        version_info: Iterable[Tuple[str, str]],
    ) -> None:
        self._input = input
        self._output = output
        self._dev_lock = lock
        self._machine_ctrl = machine_ctrl
        self._version_info: List[Tuple[str, str]] = (
            version_info if isinstance(version_info, list) else list(version_info)
        )
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _respond(self, sender: int, *parts: Union[int, bytes]) -> None:
        packet = self._output.build_packet([sender])
        for part in parts:
            packet.put(part)
        packet.send()

    def process_packet(self, sender: int, data: _Bytes) -> None:
        """Handle one request from ``sender``."""
        data = bytes(data)
        if not data:
            return
        code = data[0]
        payload = data[1:]

        if code in _UNLOCKED_COMMANDS:
            cmd = Command(code)
            if cmd is Command.LOCK:
                self._process_lock(sender)
            elif cmd is Command.UNLOCK:
                self._process_unlock(sender)
            elif cmd is Command.FORCE_UNLOCK:
                self._process_force_unlock(sender)
            elif cmd is Command.STATUS:
                self._process_status(sender)
            else:
                self._process_version(sender)
            return

        if not self._dev_lock.owned_by(sender):
            Logger.debug(f"Controller: lock not owned by sender {sender}")
            self._respond(sender, Command.LOCK_NOT_OWNED)
            return

        if code == Command.START:
            self._process_start(sender, payload)
        elif code == Command.STOP:
            self._process_stop(sender)
        elif code == Command.CONFIG_SET:
            self._process_config_set(sender, payload)
        elif code == Command.CONFIG_GET:
            self._process_config_get(sender, payload)
        elif code == Command.CONFIG_ERASE:
            self._process_config_erase(sender, payload)

    def _process_start(self, sender: int, payload: bytes) -> None:
        ok = self._machine_ctrl.start_machine(_decode(payload))
        self._respond(sender, Command.OK if ok else Command.ERROR)

    def _process_stop(self, sender: int) -> None:
        ok = self._machine_ctrl.stop_machine()
        self._respond(sender, Command.OK if ok else Command.ERROR)

    def _process_status(self, sender: int) -> None:
        running, code, status = self._machine_ctrl.get_machine_status()
        self._respond(
            sender,
            Command.STATUS,
            1 if running else 0,
            code & 0xFF,
            _encode(status),
        )

    def _process_version(self, sender: int) -> None:
        version = "".join(f"{name}@{ver}\n" for name, ver in self._version_info)
        self._respond(sender, Command.VERSION, _encode(version))

    def _process_lock(self, sender: int) -> None:
        if self._dev_lock.owned_by(sender):
            result = Command.ERROR
        elif self._dev_lock.lock(sender):
            result = Command.OK
        else:
            result = Command.ERROR
        self._respond(sender, result)

    def _process_unlock(self, sender: int) -> None:
        ok = self._dev_lock.unlock(sender)
        self._respond(sender, Command.OK if ok else Command.ERROR)

    def _process_force_unlock(self, sender: int) -> None:
        # The response is assembled but never sent.
        packet = self._output.build_packet([sender])
        self._dev_lock.force_unlock()
        packet.put(Command.OK)

    def _open_target(
        self, payload: bytes
    ) -> Optional[Tuple[str, KeyValueNamespace, bytes]]:
        """Parse the namespace, open it, and return (nsname, kv, rest)."""
        parsed = _read_cstring(payload, 0)
        if parsed is None:
            return None
        nsname, pos = parsed
        if pos == len(payload):
            return None
        kv = self._machine_ctrl.open_key_value(nsname)
        if kv is None:
            return None
        return nsname, kv, payload[pos:]

    def _commit(self, sender: int, kv: KeyValueNamespace, nsname: str, name: str) -> None:
        if kv.commit():
            self._respond(sender, Command.OK)
            self._machine_ctrl.emit_key_value_modified(nsname, name)
        else:
            self._respond(sender, Command.ERROR)

    def _process_config_set(self, sender: int, payload: bytes) -> None:
        target = self._open_target(payload)
        if target is None:
            self._respond(sender, Command.ERROR)
            return
        nsname, kv, rest = target

        parsed = _read_cstring(rest, 0)
        if parsed is None or parsed[1] == len(rest):
            self._respond(sender, Command.ERROR)
            return
        name, pos = parsed

        dtype = rest[pos]
        value = rest[pos + 1:]

        if dtype == DataType.INT64:
            if len(value) < 8:
                self._respond(sender, Command.ERROR)
                return
            kv.set_int(name, struct.unpack("<q", value[:8])[0])
        elif dtype == DataType.FLOAT32:
            if len(value) < 4:
                self._respond(sender, Command.ERROR)
                return
            kv.set_float(name, struct.unpack("<f", value[:4])[0])
        elif dtype == DataType.STRING:
            if len(value) < 1:
                self._respond(sender, Command.ERROR)
                return
            kv.set_string(name, _decode(value.split(b"\0", 1)[0]))
        else:
            Logger.error(f"Unknown config data type: {dtype}")
            self._respond(sender, Command.ERROR)
            return

        self._commit(sender, kv, nsname, name)

    def _process_config_get(self, sender: int, payload: bytes) -> None:
        target = self._open_target(payload)
        if target is None:
            self._respond(sender, Command.ERROR)
            return
        _, kv, rest = target

        parsed = _read_cstring(rest, 0)
        if parsed is None or parsed[1] == len(rest):
            self._respond(sender, Command.ERROR)
            return
        name, pos = parsed
        dtype = rest[pos]

        if dtype == DataType.INT64:
            body = struct.pack("<q", kv.get_int(name))
        elif dtype == DataType.FLOAT32:
            body = struct.pack("<f", kv.get_float(name))
        elif dtype == DataType.STRING:
            body = _encode(kv.get_string(name)) + b"\0"
        else:
            Logger.error(f"Unknown config data type: {dtype}")
            self._respond(sender, Command.CONFIG_GET, dtype, Command.ERROR)
            return

        self._respond(sender, Command.CONFIG_GET, dtype, body)

    def _process_config_erase(self, sender: int, payload: bytes) -> None:
        target = self._open_target(payload)
        if target is None:
            self._respond(sender, Command.ERROR)
            return
        nsname, kv, rest = target

        parsed = _read_cstring(rest, 0)
        if parsed is None or parsed[1] != len(rest):
            self._respond(sender, Command.ERROR)
            return
        name = parsed[0]

        kv.erase(name)
        self._commit(sender, kv, nsname, name)

    def _serve(self) -> None:
        while not self._stop.is_set():
            packet = self._input.get()
            if packet is None:
                continue
            sender, data = packet
            self._dev_lock.stop_timeout(sender)
            self.process_packet(sender, data)
            self._dev_lock.reset_timeout(sender)

    def start(self) -> None:
        """Start serving requests on a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._serve, name="controller", daemon=True)
        self._thread.start()

    def close(self) -> None:
        """Stop the worker thread and wait for it to finish."""
        self._stop.set()
        self._input.cancel_read()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self._thread = None

    def __enter__(self) -> "Controller":
        self.start()
        return self

    def __exit__(self, *args) -> None:
        self.close()