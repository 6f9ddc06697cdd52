"""Unit tests for structured JSON logging."""

import json
import logging
import sys

from cji_operator.logging import StructuredJSONFormatter, StructuredLogger


def _record(**extra):
    record = logging.LogRecord("cji", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_json_with_fields():
    entry = json.loads(StructuredJSONFormatter().format(_record(resource="ns/run-1", uid="u1")))

    assert entry["message"] == "hello world"
    assert entry["level"] == "INFO"
    assert entry["logger"] == "cji"
    assert entry["resource"] == "ns/run-1"
    assert entry["uid"] == "u1"
    assert "timestamp" in entry
    assert "msg" not in entry


def test_formatter_includes_exception():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = logging.LogRecord("cji", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

    entry = json.loads(StructuredJSONFormatter().format(record))

    assert "RuntimeError: boom" in entry["exception"]


def test_bind_carries_fields(caplog):
    log = StructuredLogger("cji-test").bind(controller="ClowdJobInvocation", resource="ns/run-1")
    child = log.bind(uid="u1", ignored=None)

    with caplog.at_level(logging.INFO, logger="cji-test"):
        child.info("Reconciliation started", reason="InvocationStarted")

    record = caplog.records[-1]
    assert record.controller == "ClowdJobInvocation"
    assert record.resource == "ns/run-1"
    assert record.uid == "u1"
    assert record.reason == "InvocationStarted"
    assert not hasattr(record, "ignored")
    assert log.fields == {"controller": "ClowdJobInvocation", "resource": "ns/run-1"}
