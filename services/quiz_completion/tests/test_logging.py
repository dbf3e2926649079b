import json
import logging

import pytest

from packages.common.logging import JSONFormatter, set_request_id
from packages.common.tracing import xapi_event


def record(msg: str, **extra) -> logging.LogRecord:
    rec = logging.LogRecord("quiz", logging.INFO, __file__, 1, msg, (), None)
    rec.__dict__.update(extra)
    return rec


def test_json_lines_carry_extras_and_request_id() -> None:
    set_request_id("req-1")
    try:
        line = JSONFormatter().format(record("Recorded attempt", user_id="u1", attempt_id=7))
    finally:
        set_request_id(None)
    payload = json.loads(line)
    assert payload["msg"] == "Recorded attempt"
    assert payload["request_id"] == "req-1"
    assert payload["user_id"] == "u1" and payload["attempt_id"] == 7
    assert "args" not in payload


def test_xapi_event_payload() -> None:
    event = xapi_event("u1", "completed", "quiz-1", score=90)
    assert event["verb"] == "completed"
    assert event["actor"] == {"id": "u1"}
    assert event["result"] == {"score": 90}


@pytest.mark.asyncio
async def test_request_id_is_echoed(client) -> None:
    r = await client.get("/healthz", headers={"X-Request-ID": "abc"})
    assert r.headers["X-Request-ID"] == "abc"
    generated = await client.get("/healthz")
    assert generated.headers["X-Request-ID"]
