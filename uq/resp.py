"""Redis protocol commands, replies and command validation."""

from __future__ import annotations

import enum
import io
import re
from dataclasses import dataclass
from typing import Any

CRLF = b"\r\n"

_INT = re.compile(rb"[+-]?[0-9]+")


class CommandError(ValueError):
    """A command is malformed or breaks the rules for its name."""


def _parse_int(raw: bytes) -> int:
    if not _INT.fullmatch(raw):
        raise ValueError(f"invalid integer {raw!r}")
    return int(raw)


class Command:
    """A client command: a list of byte-string arguments."""

    def __init__(self, *args):
        self.args: list[bytes] = [
            a.encode("utf-8") if isinstance(a, str) else bytes(a) for a in args
        ]
        self.attrs: dict[str, Any] = {}

    def __len__(self) -> int:
        return len(self.args)

    def __eq__(self, other) -> bool:
        return isinstance(other, Command) and self.args == other.args

    def __repr__(self) -> str:
        return f"Command({', '.join(repr(a) for a in self.args)})"

    def __str__(self) -> str:
        return b" ".join(self.args).decode("utf-8", "replace")

    def name(self) -> str:
        """The command name in upper case."""
        return self.args[0].upper().decode("utf-8", "replace")

    def string_args(self) -> list[str]:
        return [a.decode("utf-8", "replace") for a in self.args]

    def string_at(self, index: int) -> str:
        """Argument as text, or "" when out of range."""
        if index >= len(self.args):
            return ""
        return self.args[index].decode("utf-8", "replace")

    def arg_at(self, index: int) -> bytes:
        if index >= len(self.args):
            raise IndexError(f"out of range {index}/{len(self.args)}")
        return self.args[index]

    def int_at(self, index: int) -> int:
        return _parse_int(self.arg_at(index))

    def float_at(self, index: int) -> float:
        return float(self.arg_at(index))

    def to_bytes(self) -> bytes:
        """The command in request wire form."""
        parts = [b"*%d\r\n" % len(self.args)]
        for arg in self.args:
            parts.append(b"$%d\r\n" % len(arg))
            parts.append(arg)
            parts.append(CRLF)
        return b"".join(parts)


def _read_count(stream) -> int:
    line = stream.readline()
    if not line.endswith(CRLF):
        raise CommandError("bad line terminator")
    try:
        value = _parse_int(line[:-2])
    except ValueError as exc:
        raise CommandError(str(exc)) from exc
    if value < 0:
        raise CommandError(f"negative length {value}")
    return value


def parse_command(data) -> Command:
    """Parse one command from bytes or from a binary stream."""
    stream = io.BytesIO(bytes(data)) if isinstance(data, (bytes, bytearray, memoryview)) else data
    first = stream.read(1)
    if not first:
        raise EOFError("no command")
    if first != b"*":
        raise CommandError(f"bad command prefix {first!r}")
    args = []
    for _ in range(_read_count(stream)):
        if stream.read(1) != b"$":
            raise CommandError("bad argument prefix")
        size = _read_count(stream)
        arg = stream.read(size)
        if len(arg) != size:
            raise CommandError("argSize too short")
        if not stream.readline().endswith(b"\n"):
            raise CommandError("bad line terminator")
        args.append(arg)
    return Command(*args)


class ReplyType(enum.IntEnum):
    STATUS = 0
    ERROR = 1
    INTEGER = 2
    BULK = 3
    MULTI_BULKS = 4

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    ReplyType.STATUS: "StatusReply",
    ReplyType.ERROR: "ErrorReply",
    ReplyType.INTEGER: "IntegerReply",
    ReplyType.BULK: "BulkReply",
    ReplyType.MULTI_BULKS: "MultiBulksReply",
}


def _display(value) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", "replace")
    if isinstance(value, list):
        return "[" + " ".join(_display(v) for v in value) + "]"
    return str(value)


@dataclass
class Reply:
    """A server reply of a given type."""

    type: ReplyType
    value: Any = None

    def __str__(self) -> str:
        return f"<{self.type.description}:{_display(self.value)}>"


def status_reply(status: str) -> Reply:
    return Reply(ReplyType.STATUS, status)


def error_reply(err) -> Reply:
    return Reply(ReplyType.ERROR, None if err is None else str(err))


def integer_reply(value: int) -> Reply:
    return Reply(ReplyType.INTEGER, value)


def bulk_reply(bulk) -> Reply:
    return Reply(ReplyType.BULK, bulk)


def multi_bulks_reply(bulks) -> Reply:
    return Reply(ReplyType.MULTI_BULKS, None if bulks is None else list(bulks))


_UNBOUNDED = -1

_RULES = {
    "ADD": (2, 3),
    "QADD": (2, 3),
    "SET": (3, 3),
    "QPUSH": (3, 3),
    "MSET": (3, _UNBOUNDED),
    "QMPUSH": (3, _UNBOUNDED),
    "GET": (2, 2),
    "QPOP": (2, 2),
    "MGET": (3, _UNBOUNDED),
    "QMPOP": (3, _UNBOUNDED),
    "DEL": (2, 2),
    "QDEL": (2, 2),
    "MDEL": (2, _UNBOUNDED),
    "QMDEL": (2, _UNBOUNDED),
    "EMPTY": (2, 2),
    "QEMPTY": (2, 2),
    "INFO": (2, 2),
    "QINFO": (2, 2),
}

_BAD_KEY_CHARS = frozenset("#[] ")


def verify_command(cmd) -> None:
    """Raise CommandError if cmd breaks the argument rules for its name."""
    if cmd is None or len(cmd) == 0:
        raise CommandError("bad command")
    rule = _RULES.get(cmd.name())
    if rule is None:
        return None
    minimum, maximum = rule
    if minimum != _UNBOUNDED and len(cmd) < minimum:
        raise CommandError("wrong argument count")
    if maximum != _UNBOUNDED and len(cmd) > maximum:
        raise CommandError("wrong argument count")
    if len(cmd) > 1 and _BAD_KEY_CHARS.intersection(cmd.string_at(1)):
        raise CommandError("wrong command key")
    return None