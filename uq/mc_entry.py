"""Memcache-protocol front end for a message queue."""

from __future__ import annotations

import logging
import re
import socket
import threading
from dataclasses import dataclass, field

from .errors import ErrorCode, UqError
from .listener import ListenerStopped, StopListener
from .mcproto import MAX_BODY_LENGTH, MAX_KEY_LENGTH, Entrance, Item, Response
from .strutil import addrcat

log = logging.getLogger(__name__)

_INT = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1

_IGNORED_COMMANDS = frozenset(
    {
        "quit", "version", "flush_all",
        "replace", "cas", "append", "prepend",
        "incr", "decr", "verbosity",
    }
)


@dataclass
class Request:
    """One parsed memcache request."""

    cmd: str
    keys: list[str] = field(default_factory=list)
    item: Item | None = None
    noreply: bool = False


def _bad(cause: str) -> UqError:
    return UqError(ErrorCode.BAD_REQUEST, cause)


def _atoi(text: str, what: str) -> int:
    if not _INT.fullmatch(text):
        raise _bad(f'{what} atoi failed: parsing "{text}": invalid syntax')
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise _bad(f'{what} atoi failed: parsing "{text}": value out of range')
    return value


def read_request(stream) -> Request:
    """Read one request from a binary stream.

    Raises EOFError when the stream ends before a full command line and
    UqError for a malformed request.
    """
    raw = stream.readline()
    if not raw or not raw.endswith(b"\n"):
        raise EOFError("EOF")
    if not raw.endswith(b"\r\n"):
        raise _bad(r"has not suffix \r\n")
    parts = raw.decode("utf-8", "replace").split()
    if not parts:
        raise _bad("cmd fields error < 1")

    req = Request(cmd=parts[0])
    if req.cmd in ("get", "gets", "stats"):
        if len(parts) < 2:
            raise _bad("cmd parts error: < 2")
        req.keys = parts[1:]

    elif req.cmd in ("set", "add"):
        if not 5 <= len(parts) <= 7:
            raise _bad("cmd parts error: < 5 or > 7")
        req.keys = parts[1:2]
        flag = _atoi(parts[2], "flag")
        exptime = _atoi(parts[3], "exptime")
        length = _atoi(parts[4], "length")
        if length < 0 or length > MAX_BODY_LENGTH:
            raise _bad("bad data length")
        if len(parts) > 5 and parts[5] != "noreply":
            raise _bad("cmd parts error: > 5 or part[5] != noreply")
        req.noreply = len(parts) > 5

        body = stream.read(length) if length else b""
        if len(body) != length:
            raise _bad("readfull failed: " + ("EOF" if not body else "unexpected EOF"))
        remain = stream.readline()
        if not remain:
            raise _bad("readline failed: EOF")
        if remain.endswith(b"\n"):
            remain = remain[:-1]
            if remain.endswith(b"\r"):
                remain = remain[:-1]
        if remain:
            raise _bad("bad data chunk")
        req.item = Item(flag=flag, exptime=exptime, body=body)

    elif req.cmd == "delete":
        if not 2 <= len(parts) <= 4:
            raise _bad("cmd parts error: < 2 or > 4")
        req.keys = parts[1:2]
        req.noreply = len(parts) > 2 and parts[-1] == "noreply"

    elif req.cmd not in _IGNORED_COMMANDS:
        raise _bad("unknow command: " + req.cmd)
    return req


def _write_error(resp: Response, err: Exception) -> None:
    if isinstance(err, UqError) and int(err.code) < 500:
        resp.status = "CLIENT_ERROR"
    else:
        resp.status = "SERVER_ERROR"
    resp.msg = str(err)


class McEntry(Entrance):
    """Maps memcache commands onto queue operations.

    add creates a topic or line (the value is the recycle duration),
    set pushes, get pops (a second key receives the message id),
    delete confirms and stats reports.
    """

    poll_interval = 0.2

    def __init__(self, host, port, message_queue):
        self.host = host
        self.port = port
        self.message_queue = message_queue
        self.ready = threading.Event()
        self._lock = threading.Lock()
        self._stopped = False
        self._listener: StopListener | None = None

    @property
    def address(self):
        listener = self._listener
        return None if listener is None else listener.address

    def process(self, req: Request) -> Response | None:
        """Run one request; None means the client asked to quit."""
        resp = Response(noreply=req.noreply)
        try:
            if req.cmd in ("get", "gets"):
                self._get(req, resp)
            elif req.cmd == "stats":
                resp.status = "STAT"
                resp.msg = self.message_queue.stat(req.keys[0]).to_mc_string()
            elif req.cmd == "add":
                recycle = bytes(req.item.body).decode("utf-8", "replace")
                self.message_queue.create(req.keys[0], recycle)
                resp.status = "STORED"
            elif req.cmd == "set":
                self.message_queue.push(req.keys[0], req.item.body)
                resp.status = "STORED"
            elif req.cmd == "delete":
                self.message_queue.confirm(req.keys[0])
                resp.status = "DELETED"
            elif req.cmd == "quit":
                return None
            else:
                raise _bad("unknow command: " + req.cmd)
        except Exception as exc:
            _write_error(resp, exc)
        return resp

    def _get(self, req: Request, resp: Response) -> None:
        for key in req.keys:
            if len(key.encode("utf-8")) > MAX_KEY_LENGTH:
                raise UqError(ErrorCode.BAD_KEY, "key is too long")
        key = req.keys[0]
        resp.status = "VALUE"
        message_id, data = self.message_queue.pop(key)
        items = {key: Item(body=bytes(data))}
        if len(req.keys) > 1:
            items[req.keys[1]] = Item(body=message_id.encode("utf-8"))
        resp.items = items

    def serve_connection(self, rfile, wfile) -> None:
        """Answer requests from rfile on wfile until EOF or quit."""
        while True:
            try:
                req = read_request(rfile)
            except (EOFError, OSError):
                break
            except UqError as exc:
                if "EOF" in str(exc):
                    break
                resp = Response()
                _write_error(resp, exc)
                resp.write(wfile)
                wfile.flush()
                continue

            resp = self.process(req)
            if resp is None:
                break
            if not resp.noreply:
                resp.write(wfile)
                wfile.flush()

    def _serve_socket(self, conn: socket.socket) -> None:
        try:
            with conn, conn.makefile("rb") as rfile, conn.makefile("wb") as wfile:
                self.serve_connection(rfile, wfile)
        except OSError as exc:
            log.debug("connection error: %s", exc)

    def listen_and_serve(self) -> None:
        """Accept connections until stop() is called, then raise ListenerStopped."""
        with self._lock:
            if self._stopped:
                raise ListenerStopped()
            sock = socket.create_server((self.host, self.port))
            listener = StopListener(sock)
            listener.poll_interval = self.poll_interval
            self._listener = listener
        self.ready.set()
        log.info("mc entrance serving at %s...", addrcat(self.host, self.port))
        with listener:
            while True:
                conn, _ = listener.accept()
                threading.Thread(
                    target=self._serve_socket, args=(conn,), daemon=True
                ).start()

    def stop(self) -> None:
        """Stop accepting connections and close the message queue."""
        log.info("mc entry stoping...")
        with self._lock:
            self._stopped = True
            listener = self._listener
        if listener is not None:
            listener.stop()
        self.message_queue.close()
        log.info("mc entry stoped.")