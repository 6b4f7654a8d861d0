"""File-transfer channel: reading, writing and managing files below a root directory."""

from __future__ import annotations

import os
import sys
import threading
import time
from collections import deque
from enum import Enum, IntEnum
from pathlib import Path
from typing import BinaryIO, Callable, Mapping, Optional, Union

from jacdcore.fsutil import delete_dir, list_dir, resolve_path
from jacdcore.hashing import DIGEST_SIZE, file_sha1
from jacdcore.lock import TimeoutLock
from jacdcore.logger import Logger
from jacdcore.transport import (
    InputPacketCommunicator,
    OutputPacket,
    OutputPacketCommunicator,
)

_Bytes = Union[bytes, bytearray, memoryview]
_PathLike = Union[str, os.PathLike]

_FORMAT_EXIT_DELAY = 0.2


class Command(IntEnum):
    """Command and response codes of the file-transfer channel."""

    READ_FILE = 0x01
    WRITE_FILE = 0x02
    DELETE_FILE = 0x03
    LIST_DIR = 0x04
    CREATE_DIR = 0x05
    DELETE_DIR = 0x06
    FORMAT_STORAGE = 0x07
    LIST_RESOURCES = 0x08
    READ_RESOURCE = 0x09
    HAS_MORE_DATA = 0x10
    LAST_DATA = 0x11
    OK = 0x20
    ERROR = 0x21
    NOT_FOUND = 0x22
    CONTINUE = 0x23
    LOCK_NOT_OWNED = 0x24
    GET_DIR_HASHES = 0x25


class Error(IntEnum):
    """Error codes that follow an ERROR response."""

    UNKNOWN_COMMAND = 0x01
    FILE_OPEN_FAILED = 0x02
    FILE_DELETE_FAILED = 0x03
    DIR_OPEN_FAILED = 0x04
    DIR_CREATE_FAILED = 0x05
    DIR_DELETE_FAILED = 0x06
    INVALID_FILENAME = 0x07


class _State(Enum):
    NONE = "none"
    WAITING_FOR_DATA = "waiting_for_data"


def _size_bytes(size: int) -> bytes:
    return (size & 0xFFFFFFFF).to_bytes(4, "big")


class Uploader:
    """Serves file-transfer requests from an input communicator on a worker thread."""

    def __init__(
        self,
        input: InputPacketCommunicator,
        output: OutputPacketCommunicator,
        lock: TimeoutLock,
        root_dir: _PathLike,
        format_fs: Callable[[Path], None],
        resources: Optional[Mapping[str, _Bytes]] = None,
    ) -> None:
        self._input = input
        self._output = output
        self._dev_lock = lock
        self._root_dir = Path(root_dir)
        self._format_fs = format_fs
        self._resources = {
            name: bytes(data) for name, data in (resources or {}).items()
        }
        self._state = _State.NONE
        self._file: Optional[BinaryIO] = None
        self._on_data: Optional[Callable[[bytes], bool]] = None
        self._on_data_complete: Optional[Callable[[], bool]] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._handlers = {
            Command.READ_FILE: self._process_read_file,
            Command.WRITE_FILE: self._process_write_file,
            Command.DELETE_FILE: self._process_delete_file,
            Command.LIST_DIR: self._process_list_dir,
            Command.CREATE_DIR: self._process_create_dir,
            Command.DELETE_DIR: self._process_delete_dir,
            Command.FORMAT_STORAGE: self._process_format_storage,
            Command.GET_DIR_HASHES: self._process_get_hashes,
            Command.LIST_RESOURCES: self._process_list_resources,
            Command.READ_RESOURCE: self._process_read_resource,
        }

    # -- helpers ---------------------------------------------------------

    def _new_packet(self, sender: int, *parts: Union[int, bytes]) -> OutputPacket:
        packet = self._output.build_packet([sender])
        for part in parts:
            packet.put(part)
        return packet

    def _respond(self, sender: int, *parts: Union[int, bytes]) -> None:
        self._new_packet(sender, *parts).send()

    def _close_file(self) -> None:
        if self._file is not None:
            try:
                self._file.close()
            except OSError as exc:
                Logger.error(f"Failed to close file: {exc}")
            self._file = None

    def _reset_transfer(self) -> None:
        self._state = _State.NONE
        self._close_file()
        self._on_data = None
        self._on_data_complete = None

    def _resolve(self, raw: bytes) -> Optional[Path]:
        return resolve_path(os.fsdecode(raw), self._root_dir)

    # -- public ----------------------------------------------------------

    def lock_timeout(self) -> None:
        """Abandon any transfer in progress after the device lock expired."""
        self._reset_transfer()

    def process_packet(self, sender: int, data: _Bytes) -> bool:
        """Handle one request from ``sender``; return whether it succeeded."""
        data = bytes(data)
        if not self._dev_lock.owned_by(sender):
            Logger.debug(f"Uploader: lock not owned by sender {sender}")
            self._respond(sender, Command.LOCK_NOT_OWNED)
            return False

        if not data:
            self._respond(sender, Command.ERROR, Error.UNKNOWN_COMMAND)
            return False

        code = data[0]
        payload = data[1:]

        if self._state is _State.WAITING_FOR_DATA:
            return self._process_data(sender, code, payload)

        try:
            handler = self._handlers.get(Command(code))
        except ValueError:
            handler = None
        if handler is not None:
            return handler(sender, payload)

        self._respond(sender, Command.ERROR, Error.UNKNOWN_COMMAND, code)
        return False

    def _process_data(self, sender: int, code: int, payload: bytes) -> bool:
        success = False
        if code == Command.HAS_MORE_DATA:
            success = self._on_data is not None and self._on_data(payload)
        elif code == Command.LAST_DATA:
            success = self._on_data is not None and self._on_data(payload)
            if success:
                complete = self._on_data_complete
                success = complete is None or complete()
                self._reset_transfer()
        else:
            self._respond(sender, Command.ERROR, Error.UNKNOWN_COMMAND, code)

        if not success:
            self._reset_transfer()
        return success

    # -- commands --------------------------------------------------------

    def _process_read_file(self, sender: int, payload: bytes) -> bool:
        path = self._resolve(payload)
        if path is None:
            self._respond(sender, Command.NOT_FOUND)
            return False
        try:
            handle = open(path, "rb")
        except OSError:
            self._respond(sender, Command.NOT_FOUND)
            return False

        window = self._output.max_packet_size([sender]) - 1
        prefix = Command.HAS_MORE_DATA
        with handle:
            while True:
                try:
                    chunk = handle.read(window)
                except OSError as exc:
                    Logger.error(f"Failed to read file: {exc}")
                    chunk = b""
                if len(chunk) < window:
                    prefix = Command.LAST_DATA
                self._respond(sender, prefix, chunk)
                if not chunk:
                    break
        return True

    def _process_write_file(self, sender: int, payload: bytes) -> bool:
        name_raw, sep, rest = payload.partition(b"\0")
        if not sep:
            self._respond(sender, Command.ERROR, Error.INVALID_FILENAME)
            return False

        self._state = _State.WAITING_FOR_DATA

        path = self._resolve(name_raw)
        if path is None:
            self._respond(sender, Command.NOT_FOUND)
            return False

        self._close_file()
        try:
            self._file = open(path, "wb")
        except OSError:
            self._respond(sender, Command.ERROR, Error.FILE_OPEN_FAILED)
            return False

        def on_data(chunk: bytes) -> bool:
            if self._file is not None:
                self._file.write(chunk)
            self._respond(sender, Command.CONTINUE)
            return True

        def on_data_complete() -> bool:
            if self._file is not None:
                self._file.flush()
            self._close_file()
            self._respond(sender, Command.OK)
            return True

        self._on_data = on_data
        self._on_data_complete = on_data_complete

        if rest:
            self.process_packet(sender, rest)
        return True

    def _process_delete_file(self, sender: int, payload: bytes) -> bool:
        path = self._resolve(payload)
        if path is None:
            self._respond(sender, Command.NOT_FOUND)
            return False

        success = False
        if not path.is_dir():
            try:
                os.remove(path)
                success = True
            except FileNotFoundError:
                success = False
            except OSError as exc:
                Logger.error(f"Failed to delete file: {exc}")

        if success:
            self._respond(sender, Command.OK)
            return True
        self._respond(sender, Command.ERROR, Error.FILE_DELETE_FAILED)
        return False

    def _process_list_dir(self, sender: int, payload: bytes) -> bool:
        name_raw, _, flags = payload.partition(b"\0")
        path = self._resolve(name_raw)
        if path is None:
            self._respond(sender, Command.NOT_FOUND)
            return False

        want_directory = ord("d") in flags
        want_size = ord("s") in flags

        try:
            is_dir = os.path.isdir(path)
        except OSError as exc:
            Logger.error(f"Failed to list directory: {exc}")
            self._respond(sender, Command.ERROR, Error.DIR_OPEN_FAILED)
            return False

        if want_directory or not is_dir:
            if path.exists():
                self._respond(
                    sender,
                    Command.LAST_DATA,
                    ord("d") if is_dir else ord("f"),
                    os.fsencode(path.name),
                    0,
                )
                return True
            self._respond(sender, Command.NOT_FOUND)
            return False

        listing = list_dir(path)
        if listing is None:
            Logger.error("Failed to list directory")
            self._respond(sender, Command.ERROR, Error.DIR_OPEN_FAILED)
            return False

        names, data_size = listing
        data_size += len(names) * 5
        window = self._output.max_packet_size([sender]) - 1
        pending = deque(names)
        prefix = Command.HAS_MORE_DATA

        while True:
            if data_size <= window:
                prefix = Command.LAST_DATA
            packet = self._new_packet(sender, prefix)
            added = False
            while pending and len(os.fsencode(pending[0])) + 1 <= packet.space():
                name = pending.popleft()
                encoded = os.fsencode(name)
                full = path / name
                kind = "f"
                size = 0
                try:
                    kind = "d" if os.path.isdir(full) else "f"
                except OSError as exc:
                    Logger.error(f"Failed to check file type: {exc}")
                if want_size and kind == "f":
                    try:
                        size = os.path.getsize(full)
                    except OSError as exc:
                        Logger.error(f"Failed to get file size: {exc}")
                packet.put(ord(kind))
                packet.put(encoded)
                packet.put(0)
                packet.put(_size_bytes(size))
                data_size -= len(encoded) + 6
                added = True
            packet.send()
            if not pending or not added:
                break
        return True

    def _process_create_dir(self, sender: int, payload: bytes) -> bool:
        path = self._resolve(payload)
        if path is None:
            self._respond(sender, Command.NOT_FOUND)
            return False

        if path.is_dir():
            success = True
        else:
            try:
                os.mkdir(path)
                success = True
            except OSError as exc:
                Logger.error(f"Failed to create directory: {exc}")
                success = False

        if success:
            self._respond(sender, Command.OK)
            return True
        self._respond(sender, Command.ERROR, Error.DIR_CREATE_FAILED)
        return False

    def _process_delete_dir(self, sender: int, payload: bytes) -> bool:
        path = self._resolve(payload)
        if path is None:
            self._respond(sender, Command.NOT_FOUND)
            return False

        is_root = os.path.normpath(path) == os.path.normpath(self._root_dir)
        try:
            success = delete_dir(path, is_root)
        except OSError as exc:
            Logger.error(f"Failed to delete directory: {exc}")
            success = False

        if success:
            self._respond(sender, Command.OK)
            return True
        self._respond(sender, Command.ERROR, Error.DIR_DELETE_FAILED)
        return False

    def _process_format_storage(self, sender: int, payload: bytes) -> bool:
        """Format the storage, acknowledge, and end with SystemExit(0)."""
        if len(payload) != 1 and (not payload or payload[0] != Command.OK):
            self._respond(sender, Command.ERROR)
            return False

        self._format_fs(self._root_dir)
        self._respond(sender, Command.OK)
        time.sleep(_FORMAT_EXIT_DELAY)
        sys.exit(0)

    def _process_get_hashes(self, sender: int, payload: bytes) -> bool:
        name_raw = payload.partition(b"\0")[0]
        path = self._resolve(name_raw)
        if path is None:
            self._respond(sender, Command.NOT_FOUND)
            return False

        try:
            is_dir = os.path.isdir(path)
        except OSError as exc:
            Logger.error(f"Failed to list directory: {exc}")
            is_dir = False
        if not is_dir:
            self._respond(sender, Command.ERROR, Error.DIR_OPEN_FAILED)
            return False

        root_len = len(str(path)) + 1
        dirs = [path]

        while dirs:
            current = dirs.pop()
            current_str = str(current)
            relative = current_str[root_len:] if len(current_str) > root_len else ""
            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except OSError:
                continue

            packet = self._new_packet(sender, Command.HAS_MORE_DATA)
            has_any = False

            for entry in entries:
                try:
                    if entry.is_dir(follow_symlinks=False):
                        dirs.append(current / entry.name)
                        continue
                    if not entry.is_file(follow_symlinks=False):
                        continue
                except OSError:
                    continue

                file_path = f"{relative}/{entry.name}" if relative else entry.name
                encoded = os.fsencode(file_path)

                if len(encoded) + 1 > packet.space():
                    packet.send()
                    packet = self._new_packet(sender, Command.HAS_MORE_DATA)
                packet.put(encoded)
                packet.put(0)

                if DIGEST_SIZE > packet.space():
                    packet.send()
                    packet = self._new_packet(sender, Command.HAS_MORE_DATA)
                packet.put(file_sha1(current / entry.name))
                has_any = True

            if has_any:
                packet.send()

        self._respond(sender, Command.LAST_DATA)
        return True

    def _process_list_resources(self, sender: int, payload: bytes) -> bool:
        packet = self._new_packet(sender, Command.LAST_DATA)
        for name, data in self._resources.items():
            packet.put(name.encode("utf-8", "surrogateescape"))
            packet.put(0)
            packet.put(_size_bytes(len(data)))
        packet.send()
        return True

    def _process_read_resource(self, sender: int, payload: bytes) -> bool:
        name = payload.decode("utf-8", "surrogateescape")
        if name not in self._resources:
            self._respond(sender, Command.NOT_FOUND)
            return False

        remaining = memoryview(self._resources[name])
        window = self._output.max_packet_size([sender]) - 1
        prefix = Command.HAS_MORE_DATA
        sent = max(len(remaining), 1)
        while sent > 0:
            if len(remaining) <= window:
                prefix = Command.LAST_DATA
            packet = self._new_packet(sender, prefix)
            sent = packet.put(remaining)
            Logger.debug(f"Read {sent} bytes")
            packet.send()
            remaining = remaining[sent:]
        return True

    # -- worker ----------------------------------------------------------

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
        self._thread = threading.Thread(target=self._serve, name="uploader", daemon=True)
        self._thread.start()

    def close(self) -> None:
        """Stop the worker thread, wait for it, and drop any open transfer."""
        self._stop.set()
        self._input.cancel_read()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self._thread = None
        self._reset_transfer()

    def __enter__(self) -> "Uploader":
        self.start()
        return self

    def __exit__(self, *args) -> None:
        self.close()