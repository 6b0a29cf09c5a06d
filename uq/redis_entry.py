"""Redis-protocol front end for a message queue."""

from __future__ import annotations

import logging
import socket
import threading
import time

from .errors import ErrorCode, UqError
from .listener import ListenerStopped, StopListener
from .mcproto import Entrance
from .resp import (
    Command,
    CommandError,
    Reply,
    error_reply,
    multi_bulks_reply,
    status_reply,
    verify_command,
)
from .session import Session
from .strutil import addrcat

log = logging.getLogger(__name__)


def _bad_request(exc: Exception) -> UqError:
    return UqError(ErrorCode.BAD_REQUEST, str(exc))


def _arg_count(cmd: Command) -> int:
    return len(cmd.string_args())


class RedisEntry(Entrance):
    """Maps Redis commands onto queue operations.

    QADD/ADD creates, QPUSH/SET pushes, QMPUSH/MSET pushes several,
    QPOP/GET pops, QMPOP/MGET pops several, QDEL/DEL confirms,
    QMDEL/MDEL confirms several, QEMPTY/EMPTY empties and
    QINFO/INFO reports.
    """

    poll_interval = 0.2

    def __init__(self, host, port, message_queue):
        self.host = host
        self.port = port
        self.message_queue = message_queue
        self.ready = threading.Event()
        self._lock = threading.Lock()
        self._stopped = False
        self._listener: StopListener | None = None
        self._handlers = {}
        for names, handler in (
            (("ADD", "QADD"), self._qadd),
            (("SET", "QPUSH"), self._qpush),
            (("MSET", "QMPUSH"), self._qmpush),
            (("GET", "QPOP"), self._qpop),
            (("MGET", "QMPOP"), self._qmpop),
            (("DEL", "QDEL"), self._qdel),
            (("MDEL", "QMDEL"), self._qmdel),
            (("EMPTY", "QEMPTY"), self._qempty),
            (("INFO", "QINFO"), self._qinfo),
        ):
            for name in names:
                self._handlers[name] = handler

    @property
    def address(self):
        """The bound (host, port), once serving."""
        listener = self._listener
        return None if listener is None else listener.address

    # commands

    def process(self, cmd: Command) -> Reply:
        """Validate and run one command, returning its reply."""
        begin = time.monotonic()
        try:
            problem = verify_command(cmd)
        except CommandError as exc:
            problem = exc
        if problem is not None:
            return error_reply(_bad_request(problem))

        handler = self._handlers.get(cmd.name(), self._undefined)
        try:
            reply = handler(cmd)
        except Exception as exc:
            reply = error_reply(exc)
        log.debug("%s took %.6fs", cmd.name(), time.monotonic() - begin)
        return reply

    def _undefined(self, cmd: Command) -> Reply:
        return error_reply(
            UqError(
                ErrorCode.BAD_REQUEST,
                "command not supported: " + " ".join(cmd.string_args()),
            )
        )

    def _qadd(self, cmd: Command) -> Reply:
        self.message_queue.create(cmd.string_at(1), cmd.string_at(2))
        return status_reply("OK")

    def _qpush(self, cmd: Command) -> Reply:
        try:
            value = cmd.arg_at(2)
        except Exception as exc:
            raise _bad_request(exc) from exc
        self.message_queue.push(cmd.string_at(1), value)
        return status_reply("OK")

    def _qmpush(self, cmd: Command) -> Reply:
        values = [cmd.arg_at(i) for i in range(2, _arg_count(cmd))]
        self.message_queue.multi_push(cmd.string_at(1), values)
        return status_reply("OK")

    def _qpop(self, cmd: Command) -> Reply:
        message_id, value = self.message_queue.pop(cmd.string_at(1))
        return multi_bulks_reply([value, message_id])

    def _qmpop(self, cmd: Command) -> Reply:
        try:
            n = cmd.int_at(2)
        except Exception as exc:
            raise _bad_request(exc) from exc
        ids, values = self.message_queue.multi_pop(cmd.string_at(1), n)
        bulks = []
        for value, message_id in zip(values, ids):
            bulks.extend((value, message_id))
        return multi_bulks_reply(bulks)

    def _qdel(self, cmd: Command) -> Reply:
        self.message_queue.confirm(cmd.string_at(1))
        return status_reply("OK")

    def _qmdel(self, cmd: Command) -> Reply:
        errors = self.message_queue.multi_confirm(cmd.string_args()[1:])
        return multi_bulks_reply(
            ["OK" if err is None else str(err) for err in errors]
        )

    def _qempty(self, cmd: Command) -> Reply:
        self.message_queue.empty(cmd.string_at(1))
        return status_reply("OK")

    def _qinfo(self, cmd: Command) -> Reply:
        stat = self.message_queue.stat(cmd.string_at(1))
        return multi_bulks_reply(list(stat.to_redis_strings()))

    # serving

    def serve_session(self, session: Session) -> None:
        """Answer commands from a session until it ends, then close it."""
        try:
            while True:
                try:
                    cmd = session.read_command()
                except (EOFError, ValueError, OSError):
                    break
                reply = self.process(cmd)
                if reply is None:
                    continue
                try:
                    session.write_reply(reply)
                except (ValueError, OSError):
                    break
        finally:
            try:
                session.close()
            except OSError as exc:
                log.debug("session close error: %s", exc)

    def _serve_socket(self, conn: socket.socket) -> None:
        try:
            with conn:
                self.serve_session(Session(conn.makefile("rb"), conn.makefile("wb")))
        except OSError as exc:
            log.debug("connection error: %s", exc)

    def listen_and_serve(self) -> None:
        """Accept connections until stop() is called, then raise ListenerStopped."""
        with self._lock:
            if self._stopped:
                raise ListenerStopped()
            sock = socket.create_server((self.host, self.port))
            listener = StopListener(sock)
            listener.poll_interval = self.poll_interval
            self._listener = listener
        self.ready.set()
        log.info("redis entrance serving at %s...", addrcat(self.host, self.port))
        with listener:
            while True:
                conn, _ = listener.accept()
                threading.Thread(
                    target=self._serve_socket, args=(conn,), daemon=True
                ).start()

    def stop(self) -> None:
        """Stop accepting connections and close the message queue."""
        log.info("redis entry stoping...")
        with self._lock:
            self._stopped = True
            listener = self._listener
        if listener is not None:
            listener.stop()
        self.message_queue.close()