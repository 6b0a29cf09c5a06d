import json

import pytest

from uq.stat import MessageQueue, QueueStat


def _line(name="foo/x"):
    return QueueStat(
        name=name, type="line", recycle="10s", head=1, ihead=0, tail=3, count=3
    )


def _topic():
    return QueueStat(
        name="foo",
        type="topic",
        lines=[_line("foo/x"), _line("foo/y")],
        head=0,
        tail=3,
        count=3,
    )


def test_line_strings_include_line_fields():
    strings = _line().to_strings()
    assert strings[0] == "name:foo/x"
    assert "recycle:10s" in strings
    assert any(s.startswith("ihead:") for s in strings)
    assert len(strings) == 6


def test_to_string_joins_with_crlf():
    stat = _line()
    assert stat.to_string().split("\r\n") == stat.to_strings()


def test_mc_string_prefixes_non_empty():
    topic = _topic()
    entries = topic.to_mc_string().split("\r\n")
    assert len(entries) == len(topic.to_strings())
    for entry, plain in zip(entries, topic.to_strings()):
        if plain:
            assert entry == "STAT " + plain
        else:
            assert entry == ""


def test_redis_strings_end_blank():
    stat = _line()
    assert stat.to_redis_strings() == stat.to_strings() + [""]


def test_json_round_trip_line():
    stat = _line()
    decoded = json.loads(stat.to_json())
    assert decoded["name"] == "foo/x"
    assert decoded["recycle"] == "10s"
    assert "lines" not in decoded
    assert list(decoded) == ["name", "type", "recycle", "head", "ihead", "tail", "count"]


def test_json_topic_omits_empty_fields():
    stat = QueueStat(name="foo", type="topic", lines=[])
    decoded = json.loads(stat.to_json())
    assert "lines" not in decoded
    assert "recycle" not in decoded
    assert decoded["count"] == 0


def test_json_topic_with_lines():
    decoded = json.loads(_topic().to_json())
    assert [line["name"] for line in decoded["lines"]] == ["foo/x", "foo/y"]


def test_message_queue_cannot_be_instantiated():
    with pytest.raises(TypeError):
        MessageQueue()