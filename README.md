# uq

uq is a message queue server. Producers push messages into a **topic**. Each
topic can have any number of **lines**, and every line is an independent
consumer cursor over the topic's messages. A line may have a **recycle**
period, such as `10s` or `1h10m30s`. A message popped from such a line must be
confirmed within that time or it is handed out again. A line without a recycle
period never redelivers, and its messages cannot be confirmed.

Clients use one of three protocols:

- `redis` (the default): `QADD`, `QPUSH`, `QMPUSH`, `QPOP`, `QMPOP`, `QDEL`,
  `QMDEL`, `QEMPTY`, `QINFO`. The plain names `ADD`, `SET`, `MSET`, `GET`,
  `MGET`, `DEL`, `MDEL`, `EMPTY` and `INFO` are aliases for them.
- `mc`: the memcached text protocol:
  - `add` creates a topic or a line. The value is the recycle duration.
  - `set` pushes a message.
  - `get` pops a message. A second key, if given, receives the message id.
  - `delete` confirms a message.
  - `stats` reports.
- `http`: a REST interface under `/v1/queues` and `/v1/admin`.

An admin HTTP server always runs alongside the front end. It answers the same
routes as the `http` front end.

## Installing

```
pip install .
```

## Running

```
uq -protocol redis -port 8808 -admin-port 8809 -db memdb -dir ./data
```

Options can be given with one dash or two.

| option        | default       | meaning                                        |
|---------------|---------------|------------------------------------------------|
| `-ip`         | `127.0.0.1`   | accepted, not used                             |
| `-host`       | `0.0.0.0`     | listen address                                 |
| `-port`       | `8808`        | listen port of the front end                   |
| `-admin-port` | `8809`        | listen port of the admin server                |
| `-pprof-port` | `8080`        | accepted; no profiler is served                |
| `-protocol`   | `redis`       | `redis`, `mc` or `http`                        |
| `-db`         | `goleveldb`   | storage: `goleveldb` (on disk) or `memdb`      |
| `-dir`        | `./data`      | data directory, created if missing             |
| `-log`        | `<dir>/uq.log`| log file, opened for appending                 |
| `-etcd`       | (empty)       | accepted; only a warning is logged             |
| `-cluster`    | `uq`          | accepted; only a warning is logged             |

If `-db` or `-protocol` has any other value, the command reports the problem
and exits.

The `goleveldb` choice keeps its data in an SQLite file inside
`<dir>/uq.db/`. Topics, lines and in-flight messages are reloaded on the next
start. The `memdb` choice keeps everything in memory.

While running, each topic saves its lines every 10 seconds. Every 20 seconds
it deletes the messages that all of its lines have moved past.

The server stops on SIGINT or SIGTERM. It also stops when either server fails.

## Keys

| key       | refers to                                            |
|-----------|------------------------------------------------------|
| `foo`     | topic `foo`                                          |
| `foo/x`   | line `x` of topic `foo`                              |
| `foo/x/3` | message id 3 popped from `foo/x`, used to confirm it |

## Example session (redis protocol)

```
QADD foo
QADD foo/x 10s
QPUSH foo hello
QPOP foo/x          -> ["hello", "foo/x/0"]
QDEL foo/x/0
QINFO foo/x
```

## HTTP routes

| request                                    | form fields / result                              |
|--------------------------------------------|---------------------------------------------------|
| `PUT /v1/queues`                           | `topic`, `line`, `recycle`; 201 on success        |
| `POST /v1/queues/<topic>`                  | `value`; 204 on success                           |
| `GET /v1/queues/<topic>/<line>`            | 200; the message is the body, its id is in `X-UQ-ID` |
| `DELETE /v1/queues/<topic>/<line>/<id>`    | confirms the message; 204                         |
| `GET /v1/admin/stat/<key>`                 | the statistics as JSON                            |
| `DELETE /v1/admin/empty/<key>`             | empties a topic or a line; 204                    |
| `DELETE /v1/admin/rm/<key>`                | removes a topic or a line; 204                    |

Errors are returned as JSON with `errorCode`, `message` and `cause`. The
status is 404 for missing data, 500 for internal errors and 400 otherwise.

## Using it as a library

```python
from uq.store import MemStore
from uq.united import UnitedQueue

queue = UnitedQueue(MemStore())
queue.create("foo", "")
queue.create("foo/x", "10s")
queue.push("foo", b"hello")
message_id, data = queue.pop("foo/x")
queue.confirm(message_id)
print(queue.stat("foo/x").to_json())
queue.close()
```

Two stores are available: `uq.store.MemStore` and `uq.store.LevelStore(path)`.

Failures are raised as `uq.errors.UqError`. It carries an `ErrorCode` and maps
to an HTTP status through `status_code()`.

The front ends can also be used directly:

- `uq.http_entry.HttpEntry` and `uq.admin.AdminServer` offer
  `handle(method, path, body)`.
- `uq.mc_entry.McEntry` offers `process(request)` and
  `serve_connection(rfile, wfile)`.
- `uq.redis_entry.RedisEntry` offers `process(command)` and
  `serve_session(session)`.

## What it does not do

uq runs as a single server. The `-etcd` and `-cluster` options are accepted,
but servers are not registered anywhere and topics are not shared with other
servers.

No profiling endpoint is served.

## Tests

```
pip install .[test]
pytest
```