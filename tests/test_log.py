import json
import logging
import sys

import pytest

from log import JSONFormatter, request_id


def make_record(msg="hello %s", args=("world",), exc_info=None):
    return logging.LogRecord("threadit.test", logging.INFO, __file__, 1, msg, args, exc_info)


def test_formatter_writes_one_json_line():
    line = JSONFormatter().format(make_record())
    entry = json.loads(line)
    assert "\n" not in line
    assert entry["message"] == "hello world"
    assert entry["level"] == "INFO"
    assert entry["logger"] == "threadit.test"
    assert "request_id" not in entry


def test_formatter_adds_request_id_and_traceback():
    try:
        raise ValueError("boom")
    except ValueError:
        record = make_record(exc_info=sys.exc_info())

    token = request_id.set("abc123")
    try:
        entry = json.loads(JSONFormatter().format(record))
    finally:
        request_id.reset(token)
    assert entry["request_id"] == "abc123"
    assert "ValueError: boom" in entry["traceback"]


@pytest.mark.asyncio
async def test_request_id_is_echoed(client):
    r = await client.get("/", headers={"X-Request-ID": "req-1"})
    assert r.headers["X-Request-ID"] == "req-1"
    r = await client.get("/")
    assert len(r.headers["X-Request-ID"]) == 32
