"""HTTP helpers: method checks and a size-limited reader."""

from __future__ import annotations

from http import HTTPStatus


class MethodNotAllowed(Exception):
    """Raised when a request method is not among the allowed ones."""

    status = int(HTTPStatus.METHOD_NOT_ALLOWED)

    def __init__(self, method: str, allowed):
        self.method = method
        self.allowed = tuple(allowed)
        super().__init__("Method Not Allowed")

    @property
    def allow_header(self) -> str:
        """Value for the Allow response header."""
        return ",".join(self.allowed)


def allow_method(method: str, *args: str) -> bool:
    """Return True if method is allowed; raise MethodNotAllowed otherwise."""
    if method in args:
        return True
    raise MethodNotAllowed(method, args)


class LimitedReader:
    """Reads from another reader, never more than limit bytes per call."""

    def __init__(self, reader, limit: int):
        self.reader = reader
        self.limit = limit

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0 or size > self.limit:
            size = self.limit
        return self.reader.read(size)