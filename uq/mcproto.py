"""Memcache-style wire replies and limits shared by the front ends."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field

MAX_KEY_LENGTH = 512
MAX_BODY_LENGTH = 10 * 1024 * 1024


class Entrance(abc.ABC):
    """A protocol front end that serves a message queue."""

    @abc.abstractmethod
    def listen_and_serve(self) -> None:
        """Serve until stopped."""

    @abc.abstractmethod
    def stop(self) -> None:
        """Stop serving."""


@dataclass
class Item:
    """A stored value with its memcache flags."""

    flag: int = 0
    exptime: int = 0
    cas: int = 0
    body: bytes = b""


@dataclass
class Response:
    """A reply to one memcache request."""

    status: str = ""
    msg: str = ""
    noreply: bool = False
    items: dict[str, Item] | None = field(default=None)

    def write(self, out) -> None:
        """Write the reply in wire form to a binary stream."""
        if self.noreply:
            return
        if self.status == "VALUE":
            for key, item in (self.items or {}).items():
                body = bytes(item.body)
                out.write(f"VALUE {key} {item.flag} {len(body)}\r\n".encode("utf-8"))
                out.write(body)
                out.write(b"\r\n")
            out.write(b"END\r\n")
        elif self.status == "STAT":
            out.write(self.msg.encode("utf-8"))
            out.write(b"\r\n")
            out.write(b"END\r\n")
        else:
            out.write(self.status.encode("utf-8"))
            if self.msg:
                out.write((" " + self.msg).encode("utf-8"))
            out.write(b"\r\n")