import io
import socket
import threading

import pytest

from uq.errors import ErrorCode, UqError
from uq.listener import ListenerStopped
from uq.mc_entry import McEntry, Request, read_request
from uq.mcproto import Item
from uq.store import MemStore
from uq.united import UnitedQueue


@pytest.fixture
def queue():
    q = UnitedQueue(MemStore())
    yield q
    q.close()


@pytest.fixture
def entry(queue):
    return McEntry("127.0.0.1", 0, queue)


def _run(entry, data: bytes) -> bytes:
    out = io.BytesIO()
    entry.serve_connection(io.BytesIO(data), out)
    return out.getvalue()


SETUP = b"add foo 0 0 0\r\n\r\nadd foo/x 0 0 3\r\n10s\r\nset foo 0 0 1\r\n1\r\n"


def test_read_get_request():
    req = read_request(io.BytesIO(b"get foo/x id\r\n"))
    assert req == Request(cmd="get", keys=["foo/x", "id"])


def test_read_set_request():
    req = read_request(io.BytesIO(b"set foo 3 0 5\r\nhello\r\n"))
    assert req.cmd == "set"
    assert req.keys == ["foo"]
    assert req.item == Item(flag=3, exptime=0, body=b"hello")
    assert req.noreply is False


def test_read_set_noreply():
    req = read_request(io.BytesIO(b"set foo 0 0 1 noreply\r\nx\r\n"))
    assert req.noreply is True


def test_read_delete_noreply():
    req = read_request(io.BytesIO(b"delete foo/x/0 noreply\r\n"))
    assert req.keys == ["foo/x/0"]
    assert req.noreply is True


def test_read_quit_has_no_keys():
    assert read_request(io.BytesIO(b"quit\r\n")) == Request(cmd="quit")


@pytest.mark.parametrize(
    "data, cause",
    [
        (b"get foo\n", r"has not suffix \r\n"),
        (b"bogus\r\n", "unknow command: bogus"),
        (b"get\r\n", "cmd parts error: < 2"),
        (b"set foo 0 0\r\n", "cmd parts error: < 5 or > 7"),
        (b"set foo 0 0 1 later\r\nx\r\n", "cmd parts error: > 5 or part[5] != noreply"),
        (b"set foo 0 0 2\r\nabc\r\n", "bad data chunk"),
        (b"set foo 0 0 99999999\r\n", "bad data length"),
        (b"delete\r\n", "cmd parts error: < 2 or > 4"),
        (b"\r\n", "cmd fields error < 1"),
    ],
)
def test_read_request_errors(data, cause):
    with pytest.raises(UqError) as info:
        read_request(io.BytesIO(data))
    assert info.value.code == ErrorCode.BAD_REQUEST
    assert info.value.cause == cause


def test_read_request_bad_flag():
    with pytest.raises(UqError) as info:
        read_request(io.BytesIO(b"set foo x 0 1\r\na\r\n"))
    assert info.value.cause.startswith("flag atoi failed")


def test_read_request_eof():
    with pytest.raises(EOFError):
        read_request(io.BytesIO(b""))


def test_short_body_mentions_eof():
    with pytest.raises(UqError) as info:
        read_request(io.BytesIO(b"set foo 0 0 5\r\nab"))
    assert "EOF" in str(info.value)


def test_quit_returns_none(entry):
    assert entry.process(Request(cmd="quit")) is None


def test_api_flow(entry):
    data = SETUP + b"get foo/x\r\ndelete foo/x/0\r\n"
    assert _run(entry, data) == (
        b"STORED\r\nSTORED\r\nSTORED\r\n"
        b"VALUE foo/x 0 1\r\n1\r\nEND\r\n"
        b"DELETED\r\n"
    )


def test_get_with_id_key(entry):
    out = _run(entry, SETUP + b"get foo/x id\r\n")
    assert out.endswith(b"VALUE foo/x 0 1\r\n1\r\nVALUE id 0 7\r\nfoo/x/0\r\nEND\r\n")


def test_get_missing_topic_is_client_error(entry):
    assert _run(entry, b"get nope/x\r\n") == (
        b"CLIENT_ERROR 101 Topic Not Existed (queue pop)\r\n"
    )


def test_key_too_long(entry):
    key = b"k" * 513
    assert _run(entry, b"get " + key + b"\r\n") == (
        b"CLIENT_ERROR 104 Bad Key Format (key is too long)\r\n"
    )


def test_unsupported_command_is_client_error(entry):
    assert _run(entry, b"version\r\n") == (
        b"CLIENT_ERROR 400 Bad Client Request (unknow command: version)\r\n"
    )


def test_bad_line_reported_and_quit_ends(entry):
    out = _run(entry, b"bogus\r\nquit\r\nadd foo 0 0 0\r\n\r\n")
    assert out == b"CLIENT_ERROR 400 Bad Client Request (unknow command: bogus)\r\n"


def test_noreply_writes_nothing(entry, queue):
    out = _run(entry, b"add foo 0 0 0 noreply\r\n\r\nset foo 0 0 1 noreply\r\n1\r\n")
    assert out == b""
    assert queue.stat("foo").tail == 1


def test_stats(entry):
    out = _run(entry, SETUP + b"stats foo\r\n")
    stats = out[len(b"STORED\r\n" * 3):]
    assert stats.startswith(b"STAT name:foo\r\n")
    assert b"STAT recycle:10s" in stats
    assert stats.endswith(b"\r\nEND\r\n")


def test_stop_before_serving(queue):
    entry = McEntry("127.0.0.1", 0, queue)
    entry.stop()
    with pytest.raises(ListenerStopped):
        entry.listen_and_serve()


def test_live_server_round_trip(queue):
    entry = McEntry("127.0.0.1", 0, queue)
    outcome = []

    def run():
        try:
            entry.listen_and_serve()
        except ListenerStopped as exc:
            outcome.append(exc)

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    assert entry.ready.wait(5)
    host, port = entry.address[:2]
    try:
        with socket.create_connection((host, port), timeout=5) as conn:
            rfile = conn.makefile("rb")
            conn.sendall(SETUP)
            assert [rfile.readline() for _ in range(3)] == [b"STORED\r\n"] * 3
            conn.sendall(b"get foo/x\r\n")
            assert [rfile.readline() for _ in range(3)] == [
                b"VALUE foo/x 0 1\r\n",
                b"1\r\n",
                b"END\r\n",
            ]
            conn.sendall(b"delete foo/x/0\r\n")
            assert rfile.readline() == b"DELETED\r\n"
            conn.sendall(b"quit\r\n")
            assert rfile.readline() == b""
            rfile.close()
    finally:
        entry.stop()
        thread.join(5)

    assert not thread.is_alive()
    assert len(outcome) == 1