"""A listening socket whose accept loop can be stopped."""

from __future__ import annotations

import socket
import threading


class ListenerStopped(Exception):
    """Raised by accept once the listener has been stopped."""

    def __init__(self):
        super().__init__("Listener stopped")


class StopListener:
    """Wraps a TCP listening socket; accept polls so stop() takes effect."""

    poll_interval = 1.0

    def __init__(self, sock):
        if not isinstance(sock, socket.socket) or sock.type != socket.SOCK_STREAM:
            raise TypeError("Cannot wrap listener")
        self._sock = sock
        self._stopped = threading.Event()

    @property
    def address(self):
        return self._sock.getsockname()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def accept(self):
        """Wait for a connection and return (conn, address)."""
        while True:
            conn = addr = None
            try:
                self._sock.settimeout(self.poll_interval)
                conn, addr = self._sock.accept()
            except socket.timeout:
                pass
            except OSError as exc:
                if self._stopped.is_set():
                    raise ListenerStopped() from exc
                raise

            if self._stopped.is_set():
                if conn is not None:
                    conn.close()
                raise ListenerStopped()
            if conn is None:
                continue
            conn.settimeout(None)
            return conn, addr

    def stop(self) -> None:
        """Make accept raise ListenerStopped."""
        self._stopped.set()

    def close(self) -> None:
        """Stop and close the underlying socket."""
        self.stop()
        self._sock.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()