import pytest

from uq.errors import ErrorCode, UqError
from uq.store import LevelStore, MemStore
from uq.united import UnitedQueue


@pytest.fixture
def uq():
    queue = UnitedQueue(MemStore())
    yield queue
    queue.close()


@pytest.fixture
def filled(uq):
    uq.create("foo", "")
    uq.create("zp", "")
    uq.create("foo/x", "")
    uq.create("foo/y", "3s")
    uq.create("zp/z", "")
    uq.push("foo", b"1")
    uq.multi_push("foo", [str(i + 2).encode() for i in range(5)])
    return uq


def test_create_topics_and_lines(filled):
    assert set(filled.topics) == {"foo", "zp"}
    assert set(filled.topics["foo"].lines) == {"x", "y"}
    assert set(filled.topics["zp"].lines) == {"z"}


def test_pop_and_multi_pop(filled):
    key, msg = filled.pop("foo/x")
    assert msg == b"1"
    assert key == "foo/x/0"
    ids, msgs = filled.multi_pop("foo/x", 5)
    assert msgs == [b"2", b"3", b"4", b"5", b"6"]
    assert ids == [f"foo/x/{i}" for i in range(1, 6)]


def test_confirm_and_multi_confirm(filled):
    key, msg = filled.pop("foo/y")
    assert msg == b"1"
    filled.confirm(key)
    ids, msgs = filled.multi_pop("foo/y", 5)
    assert msgs == [str(i + 2).encode() for i in range(5)]
    assert filled.multi_confirm(ids) == [None] * 5
    assert filled.stat("foo/y").ihead == 6


def test_multi_confirm_reports_each_error(filled):
    key, _ = filled.pop("foo/y")
    results = filled.multi_confirm([key, "foo/y/5"])
    assert results[0] is None
    assert results[1].code == ErrorCode.NOT_DELIVERED


def test_stat(filled):
    line = filled.stat("foo/y")
    assert line.name == "foo/y"
    assert line.recycle == "3s"
    topic = filled.stat("foo")
    assert topic.name == "foo"
    assert topic.tail == 6
    assert topic.count == 6
    assert sorted(s.name for s in topic.lines) == ["foo/x", "foo/y"]


def test_empty(filled):
    filled.empty("foo/y")
    assert filled.stat("foo/y").count == 0
    filled.empty("foo")
    stat = filled.stat("foo")
    assert stat.head == 6
    assert stat.count == 0
    with pytest.raises(UqError) as info:
        filled.pop("foo/x")
    assert info.value.code == ErrorCode.NONE


def test_remove(filled):
    topic = filled.topics["foo"]
    filled.remove("foo/y")
    assert "y" not in topic.lines
    filled.remove("foo")
    assert "foo" not in filled.topics
    with pytest.raises(UqError) as info:
        filled.stat("foo")
    assert info.value.code == ErrorCode.TOPIC_NOT_EXISTED


def test_create_errors(uq):
    with pytest.raises(UqError) as info:
        uq.create("a/b/c", "")
    assert info.value.code == ErrorCode.BAD_KEY
    assert info.value.cause == "create key parts error: 3"
    with pytest.raises(UqError) as info:
        uq.create("", "")
    assert info.value.cause == "create topic is nil"
    with pytest.raises(UqError) as info:
        uq.create("foo/x", "")
    assert info.value.code == ErrorCode.TOPIC_NOT_EXISTED
    uq.create("/foo/", "")
    with pytest.raises(UqError) as info:
        uq.create("foo", "")
    assert info.value.code == ErrorCode.TOPIC_EXISTED
    with pytest.raises(UqError) as info:
        uq.create("foo/x", "abc")
    assert info.value.code == ErrorCode.BAD_REQUEST
    uq.create("foo/x", "")
    with pytest.raises(UqError) as info:
        uq.create("foo/x", "")
    assert info.value.code == ErrorCode.LINE_EXISTED


def test_push_errors(uq):
    with pytest.raises(UqError) as info:
        uq.push("nope", b"1")
    assert info.value.code == ErrorCode.TOPIC_NOT_EXISTED
    uq.create("foo", "")
    with pytest.raises(UqError) as info:
        uq.push("foo", b"")
    assert info.value.cause == "message has no content"
    with pytest.raises(UqError) as info:
        uq.multi_push("foo", [b"a", b""])
    assert info.value.cause == "message 1 has no content"


def test_pop_and_confirm_key_errors(filled):
    with pytest.raises(UqError) as info:
        filled.pop("foo")
    assert info.value.cause == "pop key parts error: 1"
    with pytest.raises(UqError) as info:
        filled.pop("foo/nope")
    assert info.value.code == ErrorCode.LINE_NOT_EXISTED
    with pytest.raises(UqError) as info:
        filled.confirm("foo/x")
    assert info.value.cause == "confirm key parts error: 2"
    with pytest.raises(UqError) as info:
        filled.confirm("foo/y/abc")
    assert info.value.code == ErrorCode.BAD_KEY
    filled.pop("foo/x")
    with pytest.raises(UqError) as info:
        filled.confirm("foo/x/0")
    assert info.value.code == ErrorCode.NOT_DELIVERED


def test_reload_from_storage(tmp_path):
    path = tmp_path / "uq.db"
    first = UnitedQueue(LevelStore(path))
    first.create("foo", "")
    first.create("foo/x", "10s")
    first.push("foo", b"a")
    first.push("foo", b"b")
    key, msg = first.pop("foo/x")
    assert (key, msg) == ("foo/x/0", b"a")
    first.close()

    second = UnitedQueue(LevelStore(path))
    try:
        stat = second.stat("foo/x")
        assert stat.head == 1
        assert stat.tail == 2
        assert stat.recycle == "10s"
        assert second.pop("foo/x") == ("foo/x/1", b"b")
        second.confirm("foo/x/0")
        assert second.stat("foo/x").count == 1
    finally:
        second.close()


def test_reload_after_remove(tmp_path):
    path = tmp_path / "uq.db"
    first = UnitedQueue(LevelStore(path))
    first.create("foo", "")
    first.create("zp", "")
    first.remove("foo")
    first.close()
    second = UnitedQueue(LevelStore(path))
    try:
        assert set(second.topics) == {"zp"}
    finally:
        second.close()