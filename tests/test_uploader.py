import hashlib
import time

import pytest

from jacdcore.lock import TimeoutLock
from jacdcore.transport import MemoryOutputCommunicator, QueueInputCommunicator
from jacdcore.uploader import Command, Error, Uploader

SENDER = 1


@pytest.fixture
def setup(tmp_path):
    lock = TimeoutLock(10, None)
    lock.lock(SENDER)
    out = MemoryOutputCommunicator(64)
    inp = QueueInputCommunicator()
    formatted = []
    resources = {"r1": b"abc", "empty": b"", "big": bytes(range(100))}
    uploader = Uploader(inp, out, lock, tmp_path, formatted.append, resources)
    yield uploader, out, inp, tmp_path, formatted
    lock.close()


def payloads(out):
    return [payload for _, payload in out.sent]


def parse_listing(packets):
    body = b"".join(p[1:] for p in packets)
    entries = {}
    while body:
        kind = chr(body[0])
        end = body.index(b"\0", 1)
        name = body[1:end].decode()
        size = int.from_bytes(body[end + 1:end + 5], "big")
        entries[name] = (kind, size)
        body = body[end + 5:]
    return entries


def parse_hashes(packets):
    body = b"".join(p[1:] for p in packets if p[0] == Command.HAS_MORE_DATA)
    result = {}
    while body:
        end = body.index(b"\0")
        result[body[:end].decode()] = body[end + 1:end + 21]
        body = body[end + 21:]
    return result


def test_lock_not_owned(setup):
    uploader, out, *_ = setup
    assert uploader.process_packet(2, b"\x01x") is False
    assert payloads(out) == [bytes([Command.LOCK_NOT_OWNED])]


def test_empty_packet(setup):
    uploader, out, *_ = setup
    assert uploader.process_packet(SENDER, b"") is False
    assert payloads(out) == [bytes([Command.ERROR, Error.UNKNOWN_COMMAND])]


def test_unknown_command(setup):
    uploader, out, *_ = setup
    assert uploader.process_packet(SENDER, b"\x50") is False
    assert payloads(out) == [bytes([Command.ERROR, Error.UNKNOWN_COMMAND, 0x50])]


def test_read_small_file(setup):
    uploader, out, _, root, _ = setup
    (root / "hello.txt").write_bytes(b"hello")
    assert uploader.process_packet(SENDER, b"\x01hello.txt") is True
    assert payloads(out) == [b"\x11hello", b"\x11"]


def test_read_large_file(tmp_path):
    lock = TimeoutLock(10, None)
    lock.lock(SENDER)
    out = MemoryOutputCommunicator(32)
    uploader = Uploader(QueueInputCommunicator(), out, lock, tmp_path, lambda p: None, {})
    content = bytes(range(100))
    (tmp_path / "data.bin").write_bytes(content)
    assert uploader.process_packet(SENDER, b"\x01data.bin") is True
    sent = payloads(out)
    assert b"".join(p[1:] for p in sent) == content
    assert sent[0][0] == Command.HAS_MORE_DATA
    assert sent[-1][0] == Command.LAST_DATA
    assert all(len(p) <= 32 for p in sent)


def test_read_missing_and_escaping(setup):
    uploader, out, *_ = setup
    assert uploader.process_packet(SENDER, b"\x01missing") is False
    assert uploader.process_packet(SENDER, b"\x01../outside") is False
    assert payloads(out) == [bytes([Command.NOT_FOUND])] * 2


def test_write_file_in_chunks(setup):
    uploader, out, _, root, _ = setup
    assert uploader.process_packet(SENDER, b"\x02out.txt\0") is True
    assert uploader.process_packet(SENDER, b"\x10abc") is True
    assert uploader.process_packet(SENDER, b"\x11def") is True
    assert (root / "out.txt").read_bytes() == b"abcdef"
    assert payloads(out) == [
        bytes([Command.CONTINUE]),
        bytes([Command.CONTINUE]),
        bytes([Command.OK]),
    ]


def test_write_file_inline_data(setup):
    uploader, out, _, root, _ = setup
    assert uploader.process_packet(SENDER, b"\x02inline.txt\0\x11xyz") is True
    assert (root / "inline.txt").read_bytes() == b"xyz"
    assert payloads(out) == [bytes([Command.CONTINUE]), bytes([Command.OK])]


def test_write_without_terminator(setup):
    uploader, out, *_ = setup
    assert uploader.process_packet(SENDER, b"\x02name") is False
    assert payloads(out) == [bytes([Command.ERROR, Error.INVALID_FILENAME])]


def test_other_command_during_upload_aborts(setup):
    uploader, out, _, root, _ = setup
    (root / "x.txt").write_bytes(b"x")
    uploader.process_packet(SENDER, b"\x02out.txt\0")
    assert uploader.process_packet(SENDER, b"\x01x.txt") is False
    assert payloads(out)[-1] == bytes([Command.ERROR, Error.UNKNOWN_COMMAND, Command.READ_FILE])
    assert uploader.process_packet(SENDER, b"\x01x.txt") is True
    assert payloads(out)[-2:] == [b"\x11x", b"\x11"]


def test_lock_timeout_abandons_upload(setup):
    uploader, out, *_ = setup
    uploader.process_packet(SENDER, b"\x02out.txt\0")
    uploader.lock_timeout()
    assert uploader.process_packet(SENDER, b"\x10abc") is False
    assert payloads(out) == [
        bytes([Command.ERROR, Error.UNKNOWN_COMMAND, Command.HAS_MORE_DATA])
    ]


def test_delete_file(setup):
    uploader, out, _, root, _ = setup
    (root / "f.txt").write_bytes(b"1")
    (root / "d").mkdir()
    assert uploader.process_packet(SENDER, b"\x03f.txt") is True
    assert not (root / "f.txt").exists()
    assert uploader.process_packet(SENDER, b"\x03d") is False
    assert uploader.process_packet(SENDER, b"\x03nothing") is False
    failed = bytes([Command.ERROR, Error.FILE_DELETE_FAILED])
    assert payloads(out) == [bytes([Command.OK]), failed, failed]
    assert (root / "d").is_dir()


def test_list_dir_with_sizes(setup):
    uploader, out, _, root, _ = setup
    (root / "a").write_bytes(b"abc")
    (root / "sub").mkdir()
    assert uploader.process_packet(SENDER, b"\x04\0s") is True
    sent = payloads(out)
    assert sent[-1][0] == Command.LAST_DATA
    assert parse_listing(sent) == {"a": ("f", 3), "sub": ("d", 0)}


def test_list_dir_without_sizes(setup):
    uploader, out, _, root, _ = setup
    (root / "a").write_bytes(b"abc")
    assert uploader.process_packet(SENDER, b"\x04") is True
    assert parse_listing(payloads(out)) == {"a": ("f", 0)}


def test_list_empty_dir(setup):
    uploader, out, *_ = setup
    assert uploader.process_packet(SENDER, b"\x04") is True
    assert payloads(out) == [bytes([Command.LAST_DATA])]


def test_list_single_entries(setup):
    uploader, out, _, root, _ = setup
    (root / "sub").mkdir()
    (root / "file").write_bytes(b"")
    assert uploader.process_packet(SENDER, b"\x04sub\0d") is True
    assert uploader.process_packet(SENDER, b"\x04file") is True
    assert payloads(out) == [b"\x11dsub\0", b"\x11ffile\0"]


def test_list_missing(setup):
    uploader, out, *_ = setup
    assert uploader.process_packet(SENDER, b"\x04nope") is False
    assert payloads(out) == [bytes([Command.NOT_FOUND])]


def test_create_dir(setup):
    uploader, out, _, root, _ = setup
    assert uploader.process_packet(SENDER, b"\x05newdir") is True
    assert (root / "newdir").is_dir()
    assert uploader.process_packet(SENDER, b"\x05newdir") is True
    assert uploader.process_packet(SENDER, b"\x05no/such/parent") is False
    assert payloads(out) == [
        bytes([Command.OK]),
        bytes([Command.OK]),
        bytes([Command.ERROR, Error.DIR_CREATE_FAILED]),
    ]


def test_delete_dir_tree(setup):
    uploader, out, _, root, _ = setup
    (root / "t" / "inner").mkdir(parents=True)
    (root / "t" / "inner" / "f").write_bytes(b"1")
    assert uploader.process_packet(SENDER, b"\x06t") is True
    assert not (root / "t").exists()
    assert payloads(out) == [bytes([Command.OK])]


def test_delete_root_keeps_root(setup):
    uploader, out, _, root, _ = setup
    (root / "f").write_bytes(b"1")
    (root / "d").mkdir()
    assert uploader.process_packet(SENDER, b"\x06") is True
    assert root.is_dir()
    assert list(root.iterdir()) == []


def test_delete_missing_dir(setup):
    uploader, out, *_ = setup
    assert uploader.process_packet(SENDER, b"\x06gone") is False
    assert payloads(out) == [bytes([Command.ERROR, Error.DIR_DELETE_FAILED])]


def test_format_storage(setup):
    uploader, out, _, root, formatted = setup
    with pytest.raises(SystemExit) as info:
        uploader.process_packet(SENDER, b"\x07\x20")
    assert info.value.code == 0
    assert formatted == [root]
    assert payloads(out) == [bytes([Command.OK])]


def test_format_storage_bad_confirmation(setup):
    uploader, out, _, _, formatted = setup
    assert uploader.process_packet(SENDER, b"\x07\x01\x02") is False
    assert formatted == []
    assert payloads(out) == [bytes([Command.ERROR])]


def test_get_hashes(setup):
    uploader, out, _, root, _ = setup
    (root / "a.txt").write_bytes(b"alpha")
    (root / "sub").mkdir()
    (root / "sub" / "b.txt").write_bytes(b"beta")
    assert uploader.process_packet(SENDER, b"\x25") is True
    sent = payloads(out)
    assert sent[-1] == bytes([Command.LAST_DATA])
    assert parse_hashes(sent) == {
        "a.txt": hashlib.sha1(b"alpha").digest(),
        "sub/b.txt": hashlib.sha1(b"beta").digest(),
    }


def test_get_hashes_of_file_fails(setup):
    uploader, out, _, root, _ = setup
    (root / "a.txt").write_bytes(b"alpha")
    assert uploader.process_packet(SENDER, b"\x25a.txt") is False
    assert payloads(out) == [bytes([Command.ERROR, Error.DIR_OPEN_FAILED])]


def test_list_resources(setup):
    uploader, out, *_ = setup
    assert uploader.process_packet(SENDER, b"\x08") is True
    body = payloads(out)[0]
    assert body[0] == Command.LAST_DATA
    assert b"r1\0\x00\x00\x00\x03" in body
    assert b"empty\0\x00\x00\x00\x00" in body


def test_read_resource(tmp_path):
    lock = TimeoutLock(10, None)
    lock.lock(SENDER)
    out = MemoryOutputCommunicator(32)
    data = bytes(range(100))
    uploader = Uploader(
        QueueInputCommunicator(), out, lock, tmp_path, lambda p: None, {"big": data}
    )
    assert uploader.process_packet(SENDER, b"\x09big") is True
    sent = payloads(out)
    assert b"".join(p[1:] for p in sent) == data
    assert sent[-1] == bytes([Command.LAST_DATA])
    assert sent[0][0] == Command.HAS_MORE_DATA


def test_read_empty_and_missing_resource(setup):
    uploader, out, *_ = setup
    assert uploader.process_packet(SENDER, b"\x09empty") is True
    assert uploader.process_packet(SENDER, b"\x09unknown") is False
    assert payloads(out) == [bytes([Command.LAST_DATA]), bytes([Command.NOT_FOUND])]


def test_worker_thread_serves_packets(setup):
    uploader, out, inp, root, _ = setup
    uploader.start()
    try:
        inp.push(SENDER, b"\x05threaded")
        deadline = time.monotonic() + 5
        while not out.sent and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        uploader.close()
    assert out.sent == [((SENDER,), bytes([Command.OK]))]
    assert (root / "threaded").is_dir()