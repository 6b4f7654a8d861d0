# jacdcore

Device-side services for a small program runtime that is driven by a host
over a packet link. A host sends packets, and this package answers them on
two channels: a control channel and a file-transfer channel. Both are guarded
by a device lock that one sender holds at a time.

## Modules

- `jacdcore.timeout.Timeout`: a restartable one-shot timer. `init()` starts
  its worker thread, `start(callback)` arms it, `reset()` pushes the deadline
  forward, `stop()` disarms it and `close()` ends the thread. It is also a
  context manager.
- `jacdcore.lock.TimeoutLock`: a lock owned by one numbered sender. `lock(who)`
  takes it (and raises `RuntimeError` if `who` already holds it), `unlock(who)`
  and `force_unlock()` release it, and `owned_by(who)` tells who holds it.
  When the owner stays quiet past the duration, the callback runs and the
  lock is released. `stop_timeout(who)` and `reset_timeout(who)` pause and
  re-arm the timer around the handling of a request.
- `jacdcore.keyvalue`:
  - `DataType`: `INT64`, `FLOAT32`, `STRING` and `NOT_FOUND` type tags.
  - `KeyValueNamespace`: the abstract typed store with `set_int`, `set_float`,
    `set_string`, `get_int`, `get_float`, `get_string`, `get_type`, `exists`,
    `erase`, `keys` and `commit`.
  - `MemoryKeyValueNamespace`: a dict-backed namespace; changes reach the
    given `store` dict only on `commit()`. Floats are rounded to 32 bits and
    integers must fit in 64 bits.
  - `MachineCtrl`: the abstract interface the controller uses to start and
    stop the program runtime, report its status, open key-value namespaces
    and announce changes to them.
- `jacdcore.logger.Logger`: class-level error, log and debug streams set with
  `Logger.configure(error, log, debug)`. Each stream is any object with a
  `write(bytes)` method; messages for an unset stream are dropped.
- `jacdcore.transport`: the `OutputPacket`, `OutputPacketCommunicator` and
  `InputPacketCommunicator` interfaces, with two in-process implementations:
  `MemoryOutputCommunicator(max_packet_size)`, which records every sent
  packet in `sent` as `(recipients, payload)`, and `QueueInputCommunicator`,
  fed with `push(sender, data)`.
- `jacdcore.controller`: the `Command` codes and the `Controller`, which
  handles start, stop, status, version, lock, unlock, force-unlock and
  config set/get/erase requests. Lock, unlock, force-unlock, status and
  version work without holding the lock; everything else answers
  `LOCK_NOT_OWNED` to a sender that does not hold it. Force-unlock releases
  the lock but sends no reply.
- `jacdcore.hashing`: SHA-1 as `Sha1` (with `update`, `digest`, `hexdigest`
  and `copy`), `sha1(data)` and `file_sha1(path)`; a file that cannot be
  opened hashes to twenty zero bytes.
- `jacdcore.fsutil`: `resolve_path(filename, root_dir)` joins and normalises
  a path and returns `None` if it leaves the root; `list_dir(path)` and
  `delete_dir(path, only_contents)`.
- `jacdcore.uploader`: the `Command` and `Error` codes and the `Uploader`,
  which reads, writes and deletes files, lists, creates, deletes and hashes
  directories under a root directory, formats storage, and lists and reads
  named in-memory resources. Paths that leave the root are answered with
  `NOT_FOUND`.

`Controller` and `Uploader` each serve their input on a background thread
between `start()` and `close()`, and both are context managers. Each request
can also be handled directly with `process_packet(sender, data)`.

A format-storage request calls the `format_fs` function given to the
`Uploader`, replies `OK`, waits 0.2 seconds and then raises `SystemExit(0)`.

## Installing

```
pip install .
```

## Example

```python
from jacdcore.lock import TimeoutLock
from jacdcore.transport import MemoryOutputCommunicator, QueueInputCommunicator
from jacdcore.uploader import Uploader

lock = TimeoutLock(1.0, lambda: None)
lock.init()

inbox = QueueInputCommunicator()
outbox = MemoryOutputCommunicator(64)

uploader = Uploader(inbox, outbox, lock, "./device_root", lambda root: None, {})
uploader.start()

lock.lock(7)                      # sender 7 takes the lock
inbox.push(7, b"\x04")            # list the root directory

# ... the replies collect in outbox.sent ...

uploader.close()
lock.close()
```

The controller is wired the same way, with an object that implements
`MachineCtrl` and a list of `(name, version)` pairs to report.

## What it does not do

The package holds the request handlers and their supporting pieces only.
It has no command-line program, no link framing, multiplexing or routing of
channels onto a real serial or network connection, and no program runtime:
running, stopping and reporting on programs is left to whatever implements
`MachineCtrl`, and persistent key-value storage to whatever implements
`KeyValueNamespace`.

## Running the tests

```
pip install .[test]
pytest
```