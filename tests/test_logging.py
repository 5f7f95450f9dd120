from __future__ import annotations

import json
import logging

from planner_core.core.logging import (
    JsonFormatter,
    RequestContextFilter,
    TextFormatter,
    log_correlation,
    request_id_var,
)


def _record(message: str, **extra) -> logging.LogRecord:
    record = logging.getLogger("planner_core.test").makeRecord(
        "planner_core.test", logging.INFO, __file__, 1, message, None, None, extra=extra
    )
    RequestContextFilter().filter(record)
    return record


def test_json_formatter_lifts_extra_and_context() -> None:
    token = request_id_var.set("req-1")
    try:
        with log_correlation("corr-1"):
            record = _record("job_dispatched", job_id=5, attempt=2)
    finally:
        request_id_var.reset(token)

    entry = json.loads(JsonFormatter("event-planner-core", "test").format(record))

    assert entry["event"] == "job_dispatched"
    assert entry["service"] == "event-planner-core"
    assert entry["request_id"] == "req-1"
    assert entry["correlation_id"] == "corr-1"
    assert entry["job_id"] == 5
    assert entry["attempt"] == 2
    assert "msg" not in entry


def test_correlation_is_cleared_after_block() -> None:
    with log_correlation("corr-2"):
        pass

    record = _record("after")

    assert record.correlation_id is None


def test_text_formatter_appends_fields() -> None:
    line = TextFormatter().format(_record("ticket_validated", ticket_id=9))

    assert "ticket_validated" in line
    assert line.endswith("ticket_id=9")
