"""A consumer line: an independent read position over a topic's messages."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass

from .errors import ErrorCode, UqError
from .stat import QueueStat
from .strutil import format_duration

log = logging.getLogger(__name__)

KEY_LINE_RECYCLE = ":recycle"


@dataclass
class InflightMessage:
    """A delivered message waiting for confirmation until exptime."""

    tid: int
    exptime: float


class Line:
    """Reads a topic's messages in order, redelivering unconfirmed ones.

    A line with a positive recycle (in seconds) keeps every delivered
    message in flight until it is confirmed; a message not confirmed
    within recycle seconds is handed out again.
    """

    def __init__(self, name, topic, head=0, recycle=0):
        self.name = name
        self.topic = topic
        self.head = head
        self.ihead = head
        self.recycle = recycle
        self.recycle_key = f"{topic.name}/{name}{KEY_LINE_RECYCLE}"
        self.inflight: OrderedDict[int, InflightMessage] = OrderedDict()
        self.imap: dict[int, bool] = {}
        self.lock = threading.RLock()

    @property
    def store_key(self) -> str:
        return f"{self.topic.name}/{self.name}"

    def _restore(self, store: dict) -> None:
        """Load head, ihead and in-flight messages from a saved store."""
        with self.lock:
            self.head = int(store["head"])
            self.ihead = int(store["ihead"])
            self.imap = {tid: False for tid in range(self.ihead, self.head)}
            self.inflight = OrderedDict()
            for entry in store.get("inflights", []):
                msg = InflightMessage(int(entry["tid"]), float(entry["exptime"]))
                self.inflight[msg.tid] = msg
                self.imap[msg.tid] = True

    def export_recycle(self) -> None:
        """Persist the recycle duration as text."""
        self.topic.queue.set_data(
            self.recycle_key, format_duration(self.recycle).encode("utf-8")
        )

    def remove_recycle_data(self) -> None:
        self.topic.queue.del_data(self.recycle_key)

    def to_store(self) -> dict:
        """The line's persistent state."""
        with self.lock:
            return {
                "head": self.head,
                "inflights": [
                    {"tid": msg.tid, "exptime": msg.exptime}
                    for msg in self.inflight.values()
                ],
                "ihead": self.ihead,
            }

    def export_line(self) -> None:
        """Persist the line's state under its store key."""
        data = json.dumps(self.to_store(), separators=(",", ":")).encode("utf-8")
        self.topic.queue.set_data(self.store_key, data)

    def remove_line_data(self) -> None:
        self.topic.queue.del_data(self.store_key)

    def _update_ihead(self) -> None:
        while self.ihead < self.head:
            flying = self.imap.get(self.ihead)
            if flying is None:
                self.ihead += 1
                continue
            if flying:
                return
            del self.imap[self.ihead]
            self.ihead += 1

    def _take_next(self, now: float) -> tuple[int, bytes]:
        tid = self.head
        data = self.topic.get_data(tid)
        self.head += 1
        if self.recycle > 0:
            self.inflight[tid] = InflightMessage(tid, now + self.recycle)
            self.imap[tid] = True
        return tid, data

    def pop(self) -> tuple[int, bytes]:
        """Return (id, data) of an expired in-flight message or the next one."""
        with self.lock:
            now = time.time()
            if self.recycle > 0 and self.inflight:
                msg = next(iter(self.inflight.values()))
                if now > msg.exptime:
                    msg.exptime = now + self.recycle
                    data = self.topic.get_data(msg.tid)
                    self.inflight.move_to_end(msg.tid)
                    return msg.tid, data

            if self.head >= self.topic.tail():
                raise UqError(ErrorCode.NONE, "line pop")
            return self._take_next(now)

    def multi_pop(self, n: int) -> tuple[list[int], list[bytes]]:
        """Return up to n messages as (ids, datas)."""
        with self.lock:
            ids: list[int] = []
            datas: list[bytes] = []
            now = time.time()
            if self.recycle > 0:
                expired = []
                for msg in self.inflight.values():
                    if len(expired) >= n or not now > msg.exptime:
                        break
                    datas.append(self.topic.get_data(msg.tid))
                    ids.append(msg.tid)
                    expired.append(msg)
                exptime = now + self.recycle
                for msg in expired:
                    msg.exptime = exptime
                    self.inflight.move_to_end(msg.tid)
                if len(ids) >= n:
                    return ids, datas

            while len(ids) < n:
                if self.head >= self.topic.tail():
                    break
                try:
                    tid, data = self._take_next(now)
                except UqError as exc:
                    log.error("get data failed: %s", exc)
                    break
                ids.append(tid)
                datas.append(data)

            if ids:
                return ids, datas
            raise UqError(ErrorCode.NONE, "line mPop")

    def confirm(self, tid: int) -> None:
        """Mark an in-flight message as done."""
        if not self.recycle:
            raise UqError(ErrorCode.NOT_DELIVERED, "line confirm")
        with self.lock:
            if tid >= self.head or tid not in self.inflight:
                raise UqError(ErrorCode.NOT_DELIVERED, "line confirm")
            del self.inflight[tid]
            self.imap[tid] = False
            self._update_ihead()

    def stat(self) -> QueueStat:
        with self.lock:
            tail = self.topic.tail()
            return QueueStat(
                name=f"{self.topic.name}/{self.name}",
                type="line",
                recycle=format_duration(self.recycle),
                head=self.head,
                ihead=self.ihead,
                tail=tail,
                count=len(self.inflight) + tail - self.head,
            )

    def empty(self) -> None:
        """Skip every pending message and forget in-flight ones."""
        with self.lock:
            self.inflight.clear()
            self.imap = {}
            self.ihead = self.topic.tail()
            self.head = self.topic.tail()
            self.export_line()
        log.info("line[%s] empty succ", self.name)

    def remove(self) -> None:
        """Delete the line's persisted data; failures are only logged."""
        try:
            self.remove_line_data()
        except Exception as exc:
            log.error("line[%s] removeLineData error: %s", self.name, exc)
        try:
            self.remove_recycle_data()
        except Exception as exc:
            log.error("line[%s] removeRecycleData error: %s", self.name, exc)
        log.info("line[%s] remove succ", self.name)