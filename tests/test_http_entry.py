import json
import threading
import urllib.error
import urllib.request

import pytest

from uq.http_entry import HttpEntry, HttpResponse
from uq.listener import ListenerStopped
from uq.store import MemStore
from uq.united import UnitedQueue


@pytest.fixture
def queue():
    q = UnitedQueue(MemStore())
    yield q
    q.close()


@pytest.fixture
def entry(queue):
    return HttpEntry("127.0.0.1", 0, queue)


def _setup_line(entry):
    assert entry.handle("PUT", "/v1/queues", b"topic=foo").status == 201
    resp = entry.handle("PUT", "/v1/queues", b"topic=foo&line=x&recycle=10s")
    assert resp.status == 201


def test_api_flow(entry):
    _setup_line(entry)
    assert entry.handle("POST", "/v1/queues/foo", b"value=1").status == 204

    popped = entry.handle("GET", "/v1/queues/foo/x", b"")
    assert popped.status == 200
    assert popped.headers["X-UQ-ID"] == "foo/x/0"
    assert popped.headers["Content-Type"] == "text/plain"
    assert popped.body == b"1"

    assert entry.handle("DELETE", "/v1/queues/foo/x/0", b"").status == 204

    stat = entry.handle("GET", "/v1/admin/stat/foo/x", b"")
    assert stat.status == 200
    assert stat.headers["Content-Type"] == "application/json"
    assert json.loads(stat.body)["name"] == "foo/x"

    assert entry.handle("DELETE", "/v1/admin/empty/foo/x", b"").status == 204
    assert entry.handle("DELETE", "/v1/admin/rm/foo/x", b"").status == 204


def test_unknown_path_is_404(entry):
    resp = entry.handle("GET", "/nowhere", b"")
    assert resp == HttpResponse(
        404,
        {
            "Content-Type": "text/plain; charset=utf-8",
            "X-Content-Type-Options": "nosniff",
        },
        b"404 Not Found!\n",
    )


def test_unknown_admin_command_is_404(entry):
    assert entry.handle("GET", "/v1/admin/zzz/foo", b"").status == 404


def test_method_not_allowed_sets_allow_header(entry):
    resp = entry.handle("PATCH", "/v1/queues/foo", b"")
    assert resp.status == 405
    assert resp.headers["Allow"] == "HEAD,GET,POST,PUT,DELETE"
    assert resp.body == b"Method Not Allowed\n"


def test_head_on_queue_is_405(entry):
    resp = entry.handle("HEAD", "/v1/queues/foo", b"")
    assert resp.status == 405
    assert resp.body == b"405 Method Not Allowed!\n"


def test_admin_methods_are_checked(entry):
    _setup_line(entry)
    assert entry.handle("POST", "/v1/admin/stat/foo", b"").status == 405
    assert entry.handle("GET", "/v1/admin/empty/foo", b"").status == 405
    assert entry.handle("GET", "/v1/admin/rm/foo", b"").status == 405


def test_pop_missing_topic_reports_json_error(entry):
    resp = entry.handle("GET", "/v1/queues/nope/x", b"")
    assert resp.status == 404
    assert resp.headers["Content-Type"] == "application/json"
    assert json.loads(resp.body) == {
        "errorCode": 101,
        "message": "Topic Not Existed",
        "cause": "queue pop",
    }


def test_pop_empty_line_is_no_message(entry):
    _setup_line(entry)
    resp = entry.handle("GET", "/v1/queues/foo/x", b"")
    assert resp.status == 404
    assert json.loads(resp.body)["errorCode"] == 100


def test_duplicate_topic_is_400(entry):
    _setup_line(entry)
    resp = entry.handle("PUT", "/v1/queues", b"topic=foo")
    assert resp.status == 400
    assert json.loads(resp.body)["errorCode"] == 105


def test_bad_recycle_is_bad_request(entry):
    entry.handle("PUT", "/v1/queues", b"topic=foo")
    resp = entry.handle("PUT", "/v1/queues", b"topic=foo&line=y&recycle=soon")
    assert resp.status == 400
    assert json.loads(resp.body)["errorCode"] == 400


def test_push_value_from_query(entry):
    _setup_line(entry)
    assert entry.handle("POST", "/v1/queues/foo?value=2", b"").status == 204
    assert entry.handle("GET", "/v1/queues/foo/x", b"").body == b"2"


def test_topic_stat(entry):
    _setup_line(entry)
    resp = entry.handle("GET", "/v1/admin/stat/foo", b"")
    body = json.loads(resp.body)
    assert body["name"] == "foo"
    assert body["type"] == "topic"
    assert [line["name"] for line in body["lines"]] == ["foo/x"]


def test_stop_before_serving(queue):
    entry = HttpEntry("127.0.0.1", 0, queue)
    entry.stop()
    with pytest.raises(ListenerStopped):
        entry.listen_and_serve()


def test_live_server_round_trip(queue):
    entry = HttpEntry("127.0.0.1", 0, queue)
    outcome = []

    def run():
        try:
            entry.listen_and_serve()
        except ListenerStopped as exc:
            outcome.append(exc)

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    assert entry.ready.wait(5)
    host, port = entry.address[:2]
    base = f"http://{host}:{port}"
    opener = urllib.request.build_opener(urllib.request.ProxyHandler({}))
    form = {"Content-Type": "application/x-www-form-urlencoded"}

    try:
        for body in (b"topic=foo", b"topic=foo&line=x&recycle=10s"):
            req = urllib.request.Request(
                base + "/v1/queues", data=body, method="PUT", headers=form
            )
            with opener.open(req, timeout=5) as resp:
                assert resp.status == 201

        req = urllib.request.Request(
            base + "/v1/queues/foo", data=b"value=1", method="POST", headers=form
        )
        with opener.open(req, timeout=5) as resp:
            assert resp.status == 204

        with opener.open(base + "/v1/queues/foo/x", timeout=5) as resp:
            assert resp.status == 200
            assert resp.headers["X-UQ-ID"] == "foo/x/0"
            assert resp.read() == b"1"

        with pytest.raises(urllib.error.HTTPError) as info:
            opener.open(base + "/nowhere", timeout=5)
        assert info.value.code == 404
    finally:
        entry.stop()
        thread.join(5)

    assert not thread.is_alive()
    assert len(outcome) == 1