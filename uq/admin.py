"""Administrative HTTP server for a message queue."""

from __future__ import annotations

import logging

from .http_entry import HttpEntry, HttpResponse
from .strutil import addrcat

log = logging.getLogger(__name__)


class AdminServer(HttpEntry):
    """The HTTP interface served on the admin port.

    It answers the same routes as the HTTP front end, but stopping it
    leaves the message queue open.
    """

    def __init__(self, host, port, message_queue):
        super().__init__(host, port, message_queue)

    def handle(self, method, path, body=b"") -> HttpResponse:
        """Answer one request; body is a URL-encoded form."""
        return super().handle(method, path, body)

    def listen_and_serve(self) -> None:
        """Serve until stop() is called, then raise ListenerStopped."""
        log.info("admin server serving at %s...", addrcat(self.host, self.port))
        super().listen_and_serve()

    def stop(self) -> None:
        """Stop serving; the message queue stays open."""
        log.info("admin server stoping...")
        with self._lock:
            self._stopped = True
            server = self._server
        if server is not None:
            server.shutdown()