"""A topic: an append-only message log read by any number of lines."""

from __future__ import annotations

import json
import logging
import struct
import threading
import time

from .errors import ErrorCode, UqError
from .line import Line
from .stat import QueueStat
from .strutil import acatui, parse_duration

log = logging.getLogger(__name__)

KEY_TOPIC_HEAD = ":head"
KEY_TOPIC_TAIL = ":tail"

BG_BACKUP_INTERVAL = 10.0
BG_CLEAN_INTERVAL = 20.0
BG_CLEAN_TIMEOUT = 5.0

_COUNTER = struct.Struct("<Q")


class Topic:
    """Stores pushed messages under "<name>:<id>" and hands them to lines.

    head is the oldest message still kept, tail the id the next push
    gets.  A background thread periodically saves the lines and deletes
    messages that every line has moved past.
    """

    backup_interval = BG_BACKUP_INTERVAL
    clean_interval = BG_CLEAN_INTERVAL
    clean_timeout = BG_CLEAN_TIMEOUT

    def __init__(self, name, queue, head=0, tail=0):
        self.name = name
        self.queue = queue
        self.head = head
        self._tail = tail
        self.head_key = name + KEY_TOPIC_HEAD
        self.tail_key = name + KEY_TOPIC_TAIL
        self.lines: dict[str, Line] = {}
        self._lines_lock = threading.RLock()
        self._head_lock = threading.RLock()
        self._tail_lock = threading.RLock()
        self._quit = threading.Event()
        self._thread: threading.Thread | None = None

    # storage helpers

    def _message_key(self, tid: int) -> str:
        return acatui(self.name, ":", tid)

    def get_data(self, tid: int) -> bytes:
        """Return the stored message with the given id."""
        return self.queue.get_data(self._message_key(tid))

    def tail(self) -> int:
        """The id the next pushed message will get."""
        with self._tail_lock:
            return self._tail

    def export_head(self) -> None:
        self.queue.set_data(self.head_key, _COUNTER.pack(self.head))

    def export_tail(self) -> None:
        self.queue.set_data(self.tail_key, _COUNTER.pack(self._tail))

    def to_store(self) -> dict:
        """The topic's persistent state: the names of its lines."""
        with self._lines_lock:
            return {"lines": [line.name for line in self.lines.values()]}

    def export_topic(self) -> None:
        """Persist the list of line names under the topic name."""
        data = json.dumps(self.to_store(), separators=(",", ":")).encode("utf-8")
        self.queue.set_data(self.name, data)

    def export_lines(self) -> None:
        """Persist every line; failures are logged and skipped."""
        with self._lines_lock:
            lines = list(self.lines.items())
        for line_name, line in lines:
            try:
                line.export_line()
            except Exception as exc:
                log.error(
                    "topic[%s] line[%s] export error: %s", self.name, line_name, exc
                )

    def load_line(self, name: str, store: dict) -> Line:
        """Rebuild a line from its saved state and attach it to the topic."""
        line = Line(name, self)
        raw = self.queue.get_data(line.recycle_key)
        try:
            recycle = parse_duration(bytes(raw).decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise UqError(ErrorCode.INTERNAL_ERROR, str(exc)) from exc
        line.recycle = recycle
        line._restore(store)
        with self._lines_lock:
            self.lines[name] = line
        return line

    # background work

    def _get_end(self) -> int:
        with self._lines_lock:
            lines = list(self.lines.values())
        if not lines:
            return self.head
        end = self.tail()
        for line in lines:
            position = line.ihead if line.recycle > 0 else line.head
            end = min(end, position)
        return end

    def clean(self) -> bool:
        """Delete messages every line has passed; True if asked to quit."""
        with self._head_lock:
            deadline = time.monotonic() + self.clean_timeout
            ending = self._get_end()
            while self.head < ending:
                if self._quit.is_set():
                    return True
                if time.monotonic() > deadline:
                    return False
                key = self._message_key(self.head)
                try:
                    self.queue.del_data(key)
                except Exception as exc:
                    log.error("topic[%s] del %s error; %s", self.name, key, exc)
                    return False
                self.head += 1
                try:
                    self.export_head()
                except Exception as exc:
                    log.error("topic[%s] export head error: %s", self.name, exc)
                    return False
        return False

    def _background(self) -> None:
        now = time.monotonic()
        next_backup = now + self.backup_interval
        next_clean = now + self.clean_interval
        while True:
            timeout = max(min(next_backup, next_clean) - time.monotonic(), 0.0)
            if self._quit.wait(timeout):
                return
            now = time.monotonic()
            if now >= next_backup:
                self.export_lines()
                next_backup = now + self.backup_interval
            if now >= next_clean:
                if self.clean():
                    return
                next_clean = time.monotonic() + self.clean_interval

    def start(self) -> None:
        """Start the background backup and clean thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(
            target=self._background, name=f"topic-{self.name}", daemon=True
        )
        self._thread.start()

    def close(self) -> None:
        """Stop the background thread and wait for it."""
        self._quit.set()
        if self._thread is not None:
            self._thread.join()

    # lines

    def _line(self, line_name: str, where: str) -> Line:
        with self._lines_lock:
            line = self.lines.get(line_name)
        if line is None:
            raise UqError(ErrorCode.LINE_NOT_EXISTED, where)
        return line

    def create_line(self, name: str, recycle=0) -> Line:
        """Add a line starting at the topic head; recycle is in seconds."""
        with self._lines_lock:
            if name in self.lines:
                raise UqError(ErrorCode.LINE_EXISTED, "topic createLine")
            line = Line(name, self, self.head, recycle)
            line.export_line()
            line.export_recycle()
            self.lines[name] = line
            try:
                self.export_topic()
            except Exception:
                del self.lines[name]
                raise
        log.info("topic[%s] line[%s:%s] created.", self.name, name, recycle)
        return line

    # messages

    def push(self, data: bytes) -> None:
        """Append one message."""
        with self._tail_lock:
            self.queue.set_data(self._message_key(self._tail), data)
            self._tail += 1
            try:
                self.export_tail()
            except Exception:
                self._tail -= 1
                raise

    def multi_push(self, datas) -> None:
        """Append several messages, keeping the tail unchanged on failure."""
        with self._tail_lock:
            old_tail = self._tail
            try:
                for data in datas:
                    self.queue.set_data(self._message_key(self._tail), data)
                    self._tail += 1
                self.export_tail()
            except Exception:
                self._tail = old_tail
                raise

    def pop(self, line_name: str) -> tuple[int, bytes]:
        return self._line(line_name, "topic pop").pop()

    def multi_pop(self, line_name: str, n: int) -> tuple[list[int], list[bytes]]:
        return self._line(line_name, "topic mPop").multi_pop(n)

    def confirm(self, line_name: str, tid: int) -> None:
        self._line(line_name, "topic confirm").confirm(tid)

    def stat_line(self, line_name: str) -> QueueStat:
        return self._line(line_name, "topic statLine").stat()

    def stat(self) -> QueueStat:
        with self._head_lock:
            head = self.head
        tail = self.tail()
        with self._lines_lock:
            line_stats = [line.stat() for line in self.lines.values()]
        return QueueStat(
            name=self.name,
            type="topic",
            lines=line_stats,
            head=head,
            tail=tail,
            count=tail - head,
        )

    def empty_line(self, line_name: str) -> None:
        self._line(line_name, "topic emptyLine").empty()

    def empty(self) -> None:
        """Empty every line and drop all pending messages."""
        with self._lines_lock:
            for line in self.lines.values():
                line.empty()
        with self._head_lock, self._tail_lock:
            self.head = self._tail
            self.export_head()
        log.info("topic[%s] empty succ", self.name)

    def remove_line(self, line_name: str) -> None:
        """Detach a line and delete its persisted data."""
        with self._lines_lock:
            line = self.lines.pop(line_name, None)
            if line is None:
                raise UqError(ErrorCode.LINE_NOT_EXISTED, "topic statLine")
            try:
                self.export_topic()
            except Exception:
                self.lines[line_name] = line
                raise
        line.remove()

    def _delete_quietly(self, key: str, what: str) -> None:
        try:
            self.queue.del_data(key)
        except Exception as exc:
            log.error("topic[%s] %s error: %s", self.name, what, exc)

    def remove(self) -> None:
        """Stop the topic and delete everything it stored."""
        self.close()
        with self._lines_lock:
            for line_name, line in list(self.lines.items()):
                try:
                    line.remove()
                except Exception as exc:
                    log.error(
                        "topic[%s] line[%s] remove error: %s", self.name, line_name, exc
                    )
                    continue
                del self.lines[line_name]

            with self._head_lock, self._tail_lock:
                self._delete_quietly(self.head_key, "removeHeadData")
                self._delete_quietly(self.tail_key, "removeTailData")
                self._delete_quietly(self.name, "removeTopicData")
                for tid in range(self.head, self._tail):
                    self._delete_quietly(self._message_key(tid), "del data")
        log.info("topic[%s] remove succ", self.name)