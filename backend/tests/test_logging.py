from __future__ import annotations

import json
import logging

from territory.logging_config import JsonFormatter
from territory.middleware.request_id import correlation_scope, get_request_id, new_id


def _record(**extra) -> logging.LogRecord:
    rec = logging.LogRecord("territory.test", logging.WARNING, __file__, 1, "cascade step %s failed", ("detach",), None)
    for k, v in extra.items():
        setattr(rec, k, v)
    return rec


def test_json_lines_carry_structured_extras():
    line = json.loads(JsonFormatter().format(_record(zone_id=7, team_id=3, unrelated="x")))

    assert line["level"] == "WARNING"
    assert line["message"] == "cascade step detach failed"
    assert line["zone_id"] == 7 and line["team_id"] == 3
    assert "unrelated" not in line
    assert "request_id" not in line


def test_correlation_scope_tags_and_resets():
    rid = new_id("sweep")
    assert rid.startswith("sweep-")

    with correlation_scope(rid):
        assert get_request_id() == rid
        line = json.loads(JsonFormatter().format(_record()))
        assert line["request_id"] == rid

    assert get_request_id() is None
