import json
import logging

from nearu.obs.logging import JSONLogFormatter, bind_context, reset_context


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("nearu.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_redacts_coordinates_and_tokens():
    record = _record(latitude=43.47, location={"latitude": 43.47}, token="abc", pair="alice_bob")
    payload = json.loads(JSONLogFormatter().format(record))
    assert payload["msg"] == "hello world"
    assert payload["latitude"] == "[redacted]"
    assert payload["location"] == "[redacted]"
    assert payload["token"] == "[redacted]"
    assert payload["pair"] == "alice_bob"


def test_formatter_includes_bound_request_context():
    tokens = bind_context(request_id="req-1", route="/proximity/nearby", user_id="alice")
    try:
        payload = json.loads(JSONLogFormatter().format(_record()))
    finally:
        reset_context(tokens)
    assert payload["request_id"] == "req-1"
    assert payload["route"] == "/proximity/nearby"
    assert payload["user_id"] == "alice"
    assert "request_id" not in json.loads(JSONLogFormatter().format(_record()))
