"""Queue statistics and the interface every message queue offers."""

from __future__ import annotations

import abc
import json
from dataclasses import dataclass


def _compact_json(value) -> bytes:
    text = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    for char, escaped in (
        ("<", "\\u003c"),
        (">", "\\u003e"),
        ("&", "\\u0026"),
        ("\u2028", "\\u2028"),
        ("\u2029", "\\u2029"),
    ):
        text = text.replace(char, escaped)
    return text.encode("utf-8")


@dataclass
class QueueStat:
    """State of a topic or a line."""

    name: str
    type: str
    lines: list[QueueStat] | None = None
    recycle: str = ""
    head: int = 0
    ihead: int = 0
    tail: int = 0
    count: int = 0

    def to_strings(self) -> list[str]:
        """Human-readable "field:value" entries."""
        replies = [f"name:{self.name}"]
        if self.type == "line":
            replies.append(f"recycle:{self.recycle}")
        replies.append(f"head:{self.head}")
        if self.type == "line":
            replies.append(f"ihead:{self.ihead}")
        replies.append(f"tail:{self.tail}")
        replies.append(f"count:{self.count}")
        if self.type == "topic" and self.lines is not None:
            for line_stat in self.lines:
                replies.append("")
                replies.extend(line_stat.to_strings())
        return replies

    def to_string(self) -> str:
        return "\r\n".join(self.to_strings())

    def to_mc_string(self) -> str:
        """Entries prefixed for a memcache stats reply."""
        return "\r\n".join(
            f"STAT {reply}" if reply else reply for reply in self.to_strings()
        )

    def to_redis_strings(self) -> list[str]:
        return [*self.to_strings(), ""]

    def to_dict(self) -> dict:
        body: dict = {"name": self.name, "type": self.type}
        if self.lines:
            body["lines"] = [line_stat.to_dict() for line_stat in self.lines]
        if self.recycle:
            body["recycle"] = self.recycle
        body["head"] = self.head
        body["ihead"] = self.ihead
        body["tail"] = self.tail
        body["count"] = self.count
        return body

    def to_json(self) -> bytes:
        return _compact_json(self.to_dict())


class MessageQueue(abc.ABC):
    """Operations a front end may call on a message queue."""

    @abc.abstractmethod
    def push(self, key: str, data: bytes) -> None:
        """Append one message to a topic."""

    @abc.abstractmethod
    def multi_push(self, key: str, datas) -> None:
        """Append several messages to a topic."""

    @abc.abstractmethod
    def pop(self, key: str) -> tuple[str, bytes]:
        """Take the next message of a line, returning (id, data)."""

    @abc.abstractmethod
    def multi_pop(self, key: str, n: int) -> tuple[list[str], list[bytes]]:
        """Take up to n messages of a line."""

    @abc.abstractmethod
    def confirm(self, key: str) -> None:
        """Confirm a message given by its id."""

    @abc.abstractmethod
    def multi_confirm(self, keys) -> list:
        """Confirm several ids, returning an error or None for each."""

    @abc.abstractmethod
    def create(self, key: str, recycle: str) -> None:
        """Create a topic or a line."""

    @abc.abstractmethod
    def empty(self, key: str) -> None:
        """Drop the pending messages of a topic or a line."""

    @abc.abstractmethod
    def remove(self, key: str) -> None:
        """Delete a topic or a line."""

    @abc.abstractmethod
    def stat(self, key: str) -> QueueStat:
        """Report the state of a topic or a line."""

    @abc.abstractmethod
    def close(self) -> None:
        """Persist state and release storage."""