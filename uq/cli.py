"""Command line entry point that starts the queue server."""

from __future__ import annotations

import argparse
import logging
import os
import queue
import signal
import threading

from .admin import AdminServer
from .http_entry import HttpEntry
from .listener import ListenerStopped
from .mc_entry import McEntry
from .redis_entry import RedisEntry
from .store import LevelStore, MemStore
from .united import UnitedQueue

log = logging.getLogger(__name__)

DB_MODES = ("goleveldb", "memdb")
PROTOCOLS = ("redis", "mc", "http")

_ENTRANCES = {"http": HttpEntry, "mc": McEntry, "redis": RedisEntry}


def check_args(db, protocol) -> bool:
    """Report whether the storage and protocol choices are supported."""
    if db not in DB_MODES:
        print(f"db mode {db} is not supported!")
        return False
    if protocol not in PROTOCOLS:
        print(f"protocol {protocol} is not supported!")
        return False
    return True


def build_parser() -> argparse.ArgumentParser:
    """The command line options, accepted with one or two dashes."""
    parser = argparse.ArgumentParser(prog="uq", allow_abbrev=False)

    def option(name, **kwargs):
        parser.add_argument(
            f"-{name}", f"--{name}", dest=name.replace("-", "_"), **kwargs
        )

    option("ip", default="127.0.0.1", help="self ip/host address")
    option("host", default="0.0.0.0", help="listen ip")
    option("port", type=int, default=8808, help="listen port")
    option("admin-port", type=int, default=8809, help="admin listen port")
    option(
        "pprof-port",
        type=int,
        default=8080,
        help="profiling listen port (accepted; no profiler is served)",
    )
    option(
        "protocol", default="redis", help="frontend interface type [redis/mc/http]"
    )
    option("db", default="goleveldb", help="backend storage type [goleveldb/memdb]")
    option("dir", default="./data", help="backend storage path")
    option("log", default="", help="uq log path")
    option("etcd", default="", help="etcd service location")
    option("cluster", default="uq", help="cluster name in etcd")
    return parser


def normalize_etcd(servers) -> list[str]:
    """Split a comma-separated server list, adding http:// where missing."""
    if not servers:
        return []
    return [
        server if server.startswith("http://") else "http://" + server
        for server in servers.split(",")
    ]


def _install_signals(events: queue.Queue) -> dict:
    if threading.current_thread() is not threading.main_thread():
        return {}
    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, lambda *_: events.put("stop"))
    return previous


def _restore_signals(previous: dict) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def _run_server(server, reason: str, events: queue.Queue) -> None:
    try:
        server.listen_and_serve()
    except ListenerStopped:
        pass
    except Exception as exc:
        print(f"entry listen error: {exc}")
    finally:
        events.put(reason)


def _serve(args) -> int:
    print("uq started! \U0001f604")

    try:
        if args.db == "goleveldb":
            dbpath = os.path.normpath(os.path.join(args.dir, "uq.db"))
            log.info("dbpath: %s", dbpath)
            storage = LevelStore(dbpath)
        else:
            storage = MemStore()
    except Exception as exc:
        print(f"store init error: {exc}")
        return 1

    etcd_servers = normalize_etcd(args.etcd)
    if etcd_servers:
        log.warning(
            "cluster registration is not available; ignoring %s (cluster %s)",
            ",".join(etcd_servers),
            args.cluster,
        )

    try:
        message_queue = UnitedQueue(storage)
    except Exception as exc:
        print(f"queue init error: {exc}")
        storage.close()
        return 1

    entrance = _ENTRANCES[args.protocol](args.host, args.port, message_queue)
    admin = AdminServer(args.host, args.admin_port, message_queue)

    events: queue.Queue = queue.Queue()
    previous = _install_signals(events)
    try:
        threads = [
            threading.Thread(
                target=_run_server, args=(entrance, "entry", events), daemon=True
            ),
            threading.Thread(
                target=_run_server, args=(admin, "admin", events), daemon=True
            ),
        ]
        for thread in threads:
            thread.start()

        while True:
            try:
                reason = events.get(timeout=0.5)
                break
            except queue.Empty:
                continue

        if reason == "stop":
            admin.stop()
            log.info("admin server stoped.")
            entrance.stop()
            log.info("entrance stoped.")
        elif reason == "entry":
            admin.stop()
            message_queue.close()
        else:
            entrance.stop()

        for thread in threads:
            thread.join(5)
    finally:
        _restore_signals(previous)
    return 0


def _run(args) -> int:
    if not check_args(args.db, args.protocol):
        return 1
    try:
        os.makedirs(args.dir, mode=0o755, exist_ok=True)
    except OSError as exc:
        print(f"mkdir {args.dir} error: {exc}")
        return 1

    log_file = args.log or os.path.join(args.dir, "uq.log")
    try:
        handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    except OSError as exc:
        print(f"log open error: {exc}")
        return 1
    handler.setFormatter(
        logging.Formatter(
            "[uq] %(asctime)s.%(msecs)03d %(filename)s:%(lineno)d: %(message)s",
            datefmt="%Y/%m/%d %H:%M:%S",
        )
    )
    root = logging.getLogger()
    previous_level = root.level
    root.addHandler(handler)
    root.setLevel(logging.INFO)
    try:
        return _serve(args)
    finally:
        root.removeHandler(handler)
        root.setLevel(previous_level)
        handler.close()


def main(argv=None) -> int:
    """Parse options, start the servers and run until interrupted."""
    args = build_parser().parse_args(argv)
    try:
        return _run(args)
    finally:
        print("byebye! uq see u later! \U0001f604")