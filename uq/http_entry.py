"""HTTP front end: a REST interface to a message queue."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, unquote, urlsplit

from .errors import ErrorCode, UqError
from .httputil import MethodNotAllowed, allow_method
from .listener import ListenerStopped
from .mcproto import Entrance
from .strutil import addrcat

log = logging.getLogger(__name__)

QUEUE_PREFIX_V1 = "/v1/queues"
ADMIN_PREFIX_V1 = "/v1/admin"

_ALLOWED_METHODS = ("HEAD", "GET", "POST", "PUT", "DELETE")
_FORM_METHODS = frozenset({"POST", "PUT", "PATCH"})
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


@dataclass
class HttpResponse:
    """Status, headers and body of one HTTP reply."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""


def _text_response(status, text: str) -> HttpResponse:
    return HttpResponse(
        int(status),
        {
            "Content-Type": "text/plain; charset=utf-8",
            "X-Content-Type-Options": "nosniff",
        },
        (text + "\n").encode("utf-8"),
    )


def _error_response(exc: Exception) -> HttpResponse:
    if isinstance(exc, UqError):
        return HttpResponse(
            exc.status_code(),
            {"Content-Type": "application/json"},
            (exc.to_json() + "\n").encode("utf-8"),
        )
    return _text_response(
        HTTPStatus.INTERNAL_SERVER_ERROR, "500 Internal Error!\r\n" + str(exc)
    )


def _method_not_allowed() -> HttpResponse:
    return _text_response(HTTPStatus.METHOD_NOT_ALLOWED, "405 Method Not Allowed!")


def _parse_form(method: str, path: str, body) -> dict[str, list[str]]:
    """Body values first, then query values, as a form lookup does."""
    form: dict[str, list[str]] = {}
    sources = []
    if method in _FORM_METHODS and body:
        if isinstance(body, (bytes, bytearray, memoryview)):
            body = bytes(body).decode("utf-8", "surrogateescape")
        sources.append(body)
    sources.append(urlsplit(path).query)
    for text in sources:
        parsed = parse_qs(
            text, keep_blank_values=True, encoding="utf-8", errors="surrogateescape"
        )
        for name, values in parsed.items():
            form.setdefault(name, []).extend(values)
    return form


def _form_value(form: dict[str, list[str]], name: str) -> str:
    values = form.get(name)
    return values[0] if values else ""


class _Server(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address, entry):
        self.entry = entry
        super().__init__(address, _Handler)


class _Handler(BaseHTTPRequestHandler):
    def _dispatch(self) -> None:
        length = int(self.headers.get("Content-Length") or 0)
        raw = self.rfile.read(length) if length > 0 else b""
        content_type = self.headers.get("Content-Type", "")
        body = raw if content_type.startswith(FORM_CONTENT_TYPE) else b""
        response = self.server.entry.handle(self.command, self.path, body)
        self.send_response(response.status)
        for name, value in response.headers.items():
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(response.body)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(response.body)

    do_GET = do_HEAD = do_POST = do_PUT = do_DELETE = _dispatch
    do_PATCH = do_OPTIONS = do_TRACE = do_CONNECT = _dispatch

    def log_message(self, format, *args):  # noqa: A002
        log.debug("%s - %s", self.address_string(), format % args)


class HttpEntry(Entrance):
    """Serves queue operations under /v1/queues and admin ones under /v1/admin."""

    def __init__(self, host, port, message_queue):
        self.host = host
        self.port = port
        self.message_queue = message_queue
        self.admin_mux = {
            "/stat": self._stat,
            "/empty": self._empty,
            "/rm": self._rm,
        }
        self.ready = threading.Event()
        self._lock = threading.Lock()
        self._stopped = False
        self._server: _Server | None = None

    @property
    def address(self):
        """The bound (host, port), once serving."""
        server = self._server
        return None if server is None else server.server_address

    # request handling

    def handle(self, method: str, path: str, body=b"") -> HttpResponse:
        """Answer one request; body is a URL-encoded form."""
        try:
            allow_method(method, *_ALLOWED_METHODS)
        except MethodNotAllowed as exc:
            response = _text_response(exc.status, "Method Not Allowed")
            response.headers["Allow"] = exc.allow_header
            return response

        url_path = unquote(urlsplit(path).path)
        try:
            if url_path.startswith(QUEUE_PREFIX_V1):
                key = url_path[len(QUEUE_PREFIX_V1):]
                return self._queue(method, path, body, key)
            if url_path.startswith(ADMIN_PREFIX_V1):
                key = url_path[len(ADMIN_PREFIX_V1):]
                return self._admin(method, key)
        except Exception as exc:
            return _error_response(exc)
        return _text_response(HTTPStatus.NOT_FOUND, "404 Not Found!")

    def _queue(self, method, path, body, key) -> HttpResponse:
        if method == "PUT":
            return self._add(_parse_form(method, path, body))
        if method == "POST":
            return self._push(_parse_form(method, path, body), key)
        if method == "GET":
            return self._pop(key)
        if method == "DELETE":
            self.message_queue.confirm(key)
            return HttpResponse(HTTPStatus.NO_CONTENT)
        return _method_not_allowed()

    def _admin(self, method, key) -> HttpResponse:
        for prefix, handler in self.admin_mux.items():
            if key.startswith(prefix):
                return handler(method, key[len(prefix):])
        return _text_response(HTTPStatus.NOT_FOUND, "404 Not Found!")

    def _add(self, form) -> HttpResponse:
        key = _form_value(form, "topic") + "/" + _form_value(form, "line")
        self.message_queue.create(key, _form_value(form, "recycle"))
        return HttpResponse(HTTPStatus.CREATED)

    def _push(self, form, key) -> HttpResponse:
        data = _form_value(form, "value").encode("utf-8", "surrogateescape")
        self.message_queue.push(key, data)
        return HttpResponse(HTTPStatus.NO_CONTENT)

    def _pop(self, key) -> HttpResponse:
        message_id, data = self.message_queue.pop(key)
        return HttpResponse(
            HTTPStatus.OK,
            {"Content-Type": "text/plain", "X-UQ-ID": message_id},
            bytes(data),
        )

    def _stat(self, method, key) -> HttpResponse:
        if method != "GET":
            return _method_not_allowed()
        stat = self.message_queue.stat(key)
        log.debug("qs: %s", stat)
        try:
            data = stat.to_json()
        except (TypeError, ValueError) as exc:
            raise UqError(ErrorCode.INTERNAL_ERROR, str(exc)) from exc
        return HttpResponse(
            HTTPStatus.OK, {"Content-Type": "application/json"}, data
        )

    def _empty(self, method, key) -> HttpResponse:
        if method != "DELETE":
            return _method_not_allowed()
        self.message_queue.empty(key)
        return HttpResponse(HTTPStatus.NO_CONTENT)

    def _rm(self, method, key) -> HttpResponse:
        if method != "DELETE":
            return _method_not_allowed()
        self.message_queue.remove(key)
        return HttpResponse(HTTPStatus.NO_CONTENT)

    # serving

    def listen_and_serve(self) -> None:
        """Serve until stop() is called, then raise ListenerStopped."""
        with self._lock:
            if self._stopped:
                raise ListenerStopped()
            server = _Server((self.host, self.port), self)
            self._server = server
        self.ready.set()
        log.info("http entrance serving at %s...", addrcat(self.host, self.port))
        try:
            server.serve_forever(poll_interval=0.2)
        finally:
            server.server_close()
        raise ListenerStopped()

    def stop(self) -> None:
        """Stop serving and close the message queue."""
        log.info("http entry stoping...")
        with self._lock:
            self._stopped = True
            server = self._server
        if server is not None:
            server.shutdown()
        self.message_queue.close()