import io

from uq.mcproto import Item, Response


def _written(resp):
    out = io.BytesIO()
    resp.write(out)
    return out.getvalue()


def test_value_reply():
    resp = Response(status="VALUE", items={"foo/x": Item(body=b"1")})
    assert _written(resp) == b"VALUE foo/x 0 1\r\n1\r\nEND\r\n"


def test_value_reply_keeps_item_order():
    resp = Response(
        status="VALUE",
        items={"foo/x": Item(body=b"hello"), "id": Item(body=b"foo/x/0")},
    )
    text = _written(resp)
    assert text.startswith(b"VALUE foo/x 0 5\r\nhello\r\n")
    assert b"VALUE id 0 7\r\nfoo/x/0\r\n" in text
    assert text.endswith(b"END\r\n")


def test_value_reply_uses_flag():
    resp = Response(status="VALUE", items={"k": Item(flag=7, body=b"ab")})
    assert _written(resp).startswith(b"VALUE k 7 2\r\n")


def test_value_reply_without_items():
    assert _written(Response(status="VALUE")) == b"END\r\n"


def test_stat_reply():
    resp = Response(status="STAT", msg="STAT name:foo")
    assert _written(resp) == b"STAT name:foo\r\nEND\r\n"


def test_status_reply():
    assert _written(Response(status="STORED")) == b"STORED\r\n"
    assert _written(Response(status="DELETED")) == b"DELETED\r\n"


def test_error_reply_with_message():
    resp = Response(status="CLIENT_ERROR", msg="400 Bad Client Request (x)")
    assert _written(resp) == b"CLIENT_ERROR 400 Bad Client Request (x)\r\n"


def test_noreply_writes_nothing():
    resp = Response(status="STORED", noreply=True)
    assert _written(resp) == b""