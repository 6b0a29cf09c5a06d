"""A client session speaking the Redis request/reply protocol."""

from __future__ import annotations

import re
from typing import Any

from .resp import CRLF, Command, Reply, ReplyType

_MAX_LINE = 4096
_INT = re.compile(rb"[+-]?[0-9]+")
_NULL_BULK = b"$-1\r\n"


class ProtocolError(ValueError):
    """The peer sent bytes that do not follow the protocol."""


def _as_bytes(value) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    return str(value).encode("utf-8")


def _bulk(data: bytes) -> bytes:
    return b"$%d\r\n%s\r\n" % (len(data), data)


def _multi_element(value: Any) -> bytes:
    if isinstance(value, str):
        return _bulk(value.encode("utf-8"))
    if isinstance(value, (bytes, bytearray, memoryview)):
        return _bulk(bytes(value))
    if isinstance(value, int) and not isinstance(value, bool):
        return b":%d\r\n" % value
    return _NULL_BULK


class Session:
    """Reads commands and replies from rfile and writes them to wfile."""

    def __init__(self, rfile, wfile=None):
        self.rfile = rfile
        self.wfile = rfile if wfile is None else wfile
        self.attrs: dict[str, Any] = {}

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    # low-level reading

    def _read_exact(self, size: int) -> bytes:
        data = self.rfile.read(size) if size else b""
        if len(data) != size:
            raise EOFError("unexpected EOF")
        return data

    def _skip_byte(self, expected: bytes) -> None:
        got = self.rfile.read(1)
        if not got:
            raise EOFError("EOF")
        if got != expected:
            raise ProtocolError(f"Illegal Byte [{got[0]}] != [{expected[0]}]")

    def _skip_crlf(self) -> None:
        self._skip_byte(b"\r")
        self._skip_byte(b"\n")

    def _read_line(self) -> bytes:
        line = self.rfile.readline(_MAX_LINE)
        if not line:
            raise EOFError("EOF")
        if not line.endswith(b"\n"):
            if len(line) >= _MAX_LINE:
                raise ProtocolError("line too long")
            raise EOFError("unexpected EOF")
        if len(line) < 2 or line[-2:-1] != b"\r":
            raise ProtocolError(f"bad line terminator:{line!r}")
        return line[:-2]

    def _read_string(self) -> str:
        return self._read_line().decode("utf-8", "replace")

    def _read_int(self) -> int:
        raw = self._read_line()
        if not _INT.fullmatch(raw):
            raise ProtocolError(f"invalid integer {raw!r}")
        return int(raw)

    def read_int64(self) -> int:
        value = self._read_int()
        if not -(1 << 63) <= value < (1 << 63):
            raise ProtocolError(f"value out of range {value}")
        return value

    # commands

    def read_command(self) -> Command:
        """Read one request; raise EOFError when the peer has gone."""
        self._skip_byte(b"*")
        count = self._read_int()
        if count < 0:
            raise ProtocolError(f"bad argument count {count}")
        args = []
        for _ in range(count):
            self._skip_byte(b"$")
            size = self._read_int()
            if size < 0:
                raise ProtocolError(f"bad argument size {size}")
            args.append(self._read_exact(size))
            self._skip_crlf()
        return Command(*args)

    def _write(self, data: bytes) -> None:
        self.wfile.write(data)
        flush = getattr(self.wfile, "flush", None)
        if flush is not None:
            flush()

    def write_command(self, cmd: Command) -> None:
        self._write(cmd.to_bytes())

    # replies

    def write_reply(self, reply: Reply) -> None:
        """Write a reply in wire form."""
        try:
            kind = ReplyType(reply.type)
        except ValueError:
            raise ProtocolError(f"Illegal ReplyType: {int(reply.type)}") from None

        value = reply.value
        if kind is ReplyType.STATUS:
            self._write(b"+" + _as_bytes(value) + CRLF)
        elif kind is ReplyType.ERROR:
            self._write(b"-" + (b"" if value is None else _as_bytes(value)) + CRLF)
        elif kind is ReplyType.INTEGER:
            self._write(b":%d\r\n" % int(value))
        elif kind is ReplyType.BULK:
            self._write(_NULL_BULK if value is None else _bulk(_as_bytes(value)))
        else:
            if value is None:
                self._write(b"*-1\r\n")
            elif not value:
                self._write(b"*0\r\n")
            else:
                parts = [b"*%d\r\n" % len(value)]
                parts.extend(_multi_element(item) for item in value)
                self._write(b"".join(parts))

    def read_reply(self) -> Reply:
        """Read one reply written by a server."""
        flag = self.rfile.read(1)
        if not flag:
            raise EOFError("EOF")
        if flag == b"+":
            return Reply(ReplyType.STATUS, self._read_string())
        if flag == b"-":
            return Reply(ReplyType.ERROR, self._read_string())
        if flag == b":":
            return Reply(ReplyType.INTEGER, self._read_int())
        if flag == b"$":
            size = self._read_int()
            if size == -1:
                return Reply(ReplyType.BULK, None)
            if size < 0:
                raise ProtocolError(f"bad bulk size {size}")
            data = self._read_exact(size)
            self._skip_crlf()
            return Reply(ReplyType.BULK, data)
        if flag == b"*":
            count = self._read_int()
            if count == -1:
                return Reply(ReplyType.MULTI_BULKS, None)
            if count < 0:
                raise ProtocolError(f"bad multi bulk count {count}")
            items: list[bytes | None] = []
            for _ in range(count):
                self._skip_byte(b"$")
                size = self._read_int()
                if size == -1:
                    items.append(None)
                else:
                    if size < 0:
                        raise ProtocolError(f"bad bulk size {size}")
                    items.append(self._read_exact(size))
                    self._skip_crlf()
            return Reply(ReplyType.MULTI_BULKS, items)
        raise ProtocolError(f"Bad Reply Flag:{flag.decode('latin-1')}")

    def read_rdb(self, out) -> None:
        """Copy a length-prefixed dump from the peer into out."""
        self._skip_byte(b"$")
        remaining = self.read_int64()
        while remaining > 0:
            chunk = self.rfile.read(min(remaining, 65536))
            if not chunk:
                raise EOFError("unexpected EOF")
            out.write(chunk)
            remaining -= len(chunk)

    def close(self) -> None:
        self.rfile.close()
        if self.wfile is not self.rfile:
            self.wfile.close()