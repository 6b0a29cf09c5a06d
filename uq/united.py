"""The message queue that holds every topic and persists them to storage."""

from __future__ import annotations

import json
import logging
import re
import struct
import threading

from .errors import ErrorCode, UqError
from .stat import MessageQueue, QueueStat
from .strutil import acatui, parse_duration
from .topic import Topic

log = logging.getLogger(__name__)

STORAGE_KEY_WORD = "UnitedQueueKey"

_COUNTER = struct.Struct("<Q")
_UINT = re.compile(r"[0-9]+")
_UINT64 = 1 << 64


def _trim(key: str) -> str:
    """Drop one leading and one trailing slash."""
    if key.startswith("/"):
        key = key[1:]
    if key.endswith("/"):
        key = key[:-1]
    return key


def _decode_json(data: bytes):
    try:
        return json.loads(bytes(data).decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None


def _parse_id(text: str) -> int:
    if not _UINT.fullmatch(text):
        raise ValueError(f'parsing "{text}": invalid syntax')
    value = int(text)
    if value >= _UINT64:
        raise ValueError(f'parsing "{text}": value out of range')
    return value


class UnitedQueue(MessageQueue):
    """Topics addressed by "topic", lines by "topic/line", messages by "topic/line/id"."""

    def __init__(self, storage):
        self.storage = storage
        self.topics: dict[str, Topic] = {}
        self._topics_lock = threading.RLock()
        self._load_queue()

    # storage access

    def set_data(self, key: str, data: bytes) -> None:
        try:
            self.storage.set(key, data)
        except Exception as exc:
            raise UqError(ErrorCode.INTERNAL_ERROR, str(exc)) from exc

    def get_data(self, key: str) -> bytes:
        try:
            return self.storage.get(key)
        except Exception as exc:
            raise UqError(ErrorCode.INTERNAL_ERROR, str(exc)) from exc

    def del_data(self, key: str) -> None:
        try:
            self.storage.delete(key)
        except Exception as exc:
            raise UqError(ErrorCode.INTERNAL_ERROR, str(exc)) from exc

    # persistence

    def export_topics(self) -> None:
        """Persist every topic and its lines; failures are logged and skipped."""
        with self._topics_lock:
            topics = list(self.topics.values())
        for topic in topics:
            try:
                topic.export_lines()
                topic.export_topic()
            except Exception as exc:
                log.error("topic[%s] export error: %s", topic.name, exc)

    def export_queue(self) -> None:
        """Persist the list of topic names."""
        with self._topics_lock:
            names = list(self.topics)
        data = json.dumps({"topics": names}, separators=(",", ":")).encode("utf-8")
        self.set_data(STORAGE_KEY_WORD, data)

    def _read_counter(self, key: str) -> int:
        raw = bytes(self.get_data(key))
        if len(raw) != _COUNTER.size:
            raise UqError(ErrorCode.INTERNAL_ERROR, f"bad counter data: {key}")
        return _COUNTER.unpack(raw)[0]

    def _load_topic(self, name: str, store: dict) -> Topic:
        head = self._read_counter(name + ":head")
        tail = self._read_counter(name + ":tail")
        topic = Topic(name, self, head, tail)
        for line_name in store.get("lines", []):
            line_key = f"{name}/{line_name}"
            line_data = self.get_data(line_key)
            if not line_data:
                raise UqError(
                    ErrorCode.INTERNAL_ERROR, "line backup data missing: " + line_key
                )
            line_store = _decode_json(line_data)
            if not isinstance(line_store, dict):
                continue
            try:
                topic.load_line(line_name, line_store)
            except Exception as exc:
                log.error("line[%s] load error: %s", line_key, exc)
        topic.start()
        return topic

    def _load_queue(self) -> None:
        try:
            data = self.get_data(STORAGE_KEY_WORD)
        except UqError:
            return
        if not data:
            return
        store = _decode_json(data)
        if not isinstance(store, dict):
            return
        for name in store.get("topics", []):
            topic_data = self.get_data(name)
            if not topic_data:
                raise UqError(
                    ErrorCode.INTERNAL_ERROR, "topic backup data missing: " + name
                )
            topic_store = _decode_json(topic_data)
            if not isinstance(topic_store, dict):
                continue
            topic = self._load_topic(name, topic_store)
            with self._topics_lock:
                self.topics[name] = topic

    # lookup

    def _topic(self, name: str, where: str) -> Topic:
        with self._topics_lock:
            topic = self.topics.get(name)
        if topic is None:
            raise UqError(ErrorCode.TOPIC_NOT_EXISTED, where)
        return topic

    @staticmethod
    def _split_one_or_two(key: str, what: str, nil_cause: str) -> list[str]:
        parts = _trim(key).split("/")
        if len(parts) > 2:
            raise UqError(ErrorCode.BAD_KEY, f"{what} key parts error: {len(parts)}")
        if parts[0] == "":
            raise UqError(ErrorCode.BAD_KEY, nil_cause)
        return parts

    # admin operations

    def _create_topic(self, name: str) -> None:
        with self._topics_lock:
            if name in self.topics:
                raise UqError(ErrorCode.TOPIC_EXISTED, "queue createTopic")
            topic = Topic(name, self, 0, 0)
            topic.export_head()
            topic.export_tail()
            topic.start()
            self.topics[name] = topic
            try:
                self.export_queue()
            except Exception:
                topic.remove()
                del self.topics[name]
                raise
        log.info("topic[%s] created.", name)

    def create(self, key: str, recycle: str = "") -> None:
        """Create a topic ("foo") or a line ("foo/x") with a recycle duration."""
        parts = self._split_one_or_two(key, "create", "create topic is nil")
        topic_name = parts[0]
        if len(parts) == 1:
            self._create_topic(topic_name)
            return
        seconds = 0
        if recycle:
            try:
                seconds = parse_duration(recycle)
            except ValueError as exc:
                raise UqError(ErrorCode.BAD_REQUEST, str(exc)) from exc
        topic = self._topic(topic_name, "queue create")
        topic.create_line(parts[1], seconds)

    def stat(self, key: str) -> QueueStat:
        parts = self._split_one_or_two(key, "empty", "stat topic is nil")
        topic = self._topic(parts[0], "queue stat")
        if len(parts) == 2:
            return topic.stat_line(parts[1])
        return topic.stat()

    def empty(self, key: str) -> None:
        parts = self._split_one_or_two(key, "empty", "empty topic is nil")
        topic = self._topic(parts[0], "queue empty")
        if len(parts) == 2:
            topic.empty_line(parts[1])
        else:
            topic.empty()

    def _remove_topic(self, name: str) -> None:
        with self._topics_lock:
            topic = self.topics.pop(name, None)
            if topic is None:
                raise UqError(ErrorCode.TOPIC_NOT_EXISTED, "queue remove")
            try:
                self.export_queue()
            except Exception:
                self.topics[name] = topic
                raise
            topic.remove()

    def remove(self, key: str) -> None:
        parts = self._split_one_or_two(key, "remove", "rmove topic is nil")
        if len(parts) == 1:
            self._remove_topic(parts[0])
            return
        topic = self._topic(parts[0], "queue remove")
        topic.remove_line(parts[1])

    # message operations

    def push(self, key: str, data: bytes) -> None:
        key = _trim(key)
        if not data:
            raise UqError(ErrorCode.BAD_REQUEST, "message has no content")
        self._topic(key, "queue push").push(bytes(data))

    def multi_push(self, key: str, datas) -> None:
        key = _trim(key)
        datas = [bytes(d) for d in datas]
        for i, data in enumerate(datas):
            if not data:
                raise UqError(ErrorCode.BAD_REQUEST, f"message {i} has no content")
        self._topic(key, "queue multiPush").multi_push(datas)

    def _line_key(self, key: str, what: str) -> tuple[str, list[str]]:
        key = _trim(key)
        parts = key.split("/")
        if len(parts) != 2:
            raise UqError(ErrorCode.BAD_KEY, f"{what} key parts error: {len(parts)}")
        return key, parts

    def pop(self, key: str) -> tuple[str, bytes]:
        key, (topic_name, line_name) = self._line_key(key, "pop")
        tid, data = self._topic(topic_name, "queue pop").pop(line_name)
        return acatui(key, "/", tid), data

    def multi_pop(self, key: str, n: int) -> tuple[list[str], list[bytes]]:
        key, (topic_name, line_name) = self._line_key(key, "mPop")
        ids, datas = self._topic(topic_name, "queue multiPop").multi_pop(line_name, n)
        return [acatui(key, "/", tid) for tid in ids], datas

    def confirm(self, key: str) -> None:
        parts = _trim(key).split("/")
        if len(parts) != 3:
            raise UqError(ErrorCode.BAD_KEY, f"confirm key parts error: {len(parts)}")
        topic_name, line_name, id_text = parts
        try:
            tid = _parse_id(id_text)
        except ValueError as exc:
            raise UqError(
                ErrorCode.BAD_KEY, f"confirm key parse id error: {exc}"
            ) from exc
        self._topic(topic_name, "queue confirm").confirm(line_name, tid)

    def multi_confirm(self, keys) -> list:
        results: list[UqError | None] = []
        for key in keys:
            try:
                self.confirm(key)
            except UqError as exc:
                results.append(exc)
            else:
                results.append(None)
        return results

    def close(self) -> None:
        """Stop background work, persist every topic and close storage."""
        log.info("uq stoping...")
        with self._topics_lock:
            topics = list(self.topics.values())
        for topic in topics:
            topic.close()
        self.export_topics()
        try:
            self.storage.close()
        except Exception as exc:
            log.error("storage close error: %s", exc)
        log.info("uq stoped.")

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()