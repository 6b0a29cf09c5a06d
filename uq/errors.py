"""Error values reported by the queue and its front ends."""

from __future__ import annotations

import enum
import json
from http import HTTPStatus


class ErrorCode(enum.IntEnum):
    """Numeric error codes shared by every protocol."""

    NONE = 100
    TOPIC_NOT_EXISTED = 101
    LINE_NOT_EXISTED = 102
    NOT_DELIVERED = 103
    BAD_KEY = 104
    TOPIC_EXISTED = 105
    LINE_EXISTED = 106
    BAD_REQUEST = 400
    INTERNAL_ERROR = 500


_MESSAGES = {
    ErrorCode.NONE: "No Message",
    ErrorCode.TOPIC_NOT_EXISTED: "Topic Not Existed",
    ErrorCode.LINE_NOT_EXISTED: "Line Not Existed",
    ErrorCode.NOT_DELIVERED: "Message Not Delivered",
    ErrorCode.BAD_KEY: "Bad Key Format",
    ErrorCode.TOPIC_EXISTED: "Topic Has Existed",
    ErrorCode.LINE_EXISTED: "Line Has Existed",
    ErrorCode.BAD_REQUEST: "Bad Client Request",
    ErrorCode.INTERNAL_ERROR: "Internal Error",
}

_STATUS = {
    ErrorCode.NONE: HTTPStatus.NOT_FOUND,
    ErrorCode.TOPIC_NOT_EXISTED: HTTPStatus.NOT_FOUND,
    ErrorCode.LINE_NOT_EXISTED: HTTPStatus.NOT_FOUND,
    ErrorCode.NOT_DELIVERED: HTTPStatus.NOT_FOUND,
    ErrorCode.INTERNAL_ERROR: HTTPStatus.INTERNAL_SERVER_ERROR,
}


def _compact_json(value) -> str:
    text = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    for char, escaped in (
        ("<", "\\u003c"),
        (">", "\\u003e"),
        ("&", "\\u0026"),
        ("\u2028", "\\u2028"),
        ("\u2029", "\\u2029"),
    ):
        text = text.replace(char, escaped)
    return text


class UqError(Exception):
    """A queue error carrying a code, a fixed message and a cause."""

    def __init__(self, code, cause=""):
        try:
            self.code = ErrorCode(int(code))
        except ValueError:
            self.code = int(code)
        self.message = _MESSAGES.get(self.code, "")
        self.cause = cause
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"{int(self.code)} {self.message} ({self.cause})"

    def status_code(self) -> int:
        """HTTP status that reports this error."""
        return int(_STATUS.get(self.code, HTTPStatus.BAD_REQUEST))

    def to_json(self) -> str:
        """The error as a compact JSON object."""
        body = {"errorCode": int(self.code), "message": self.message}
        if self.cause:
            body["cause"] = self.cause
        return _compact_json(body)