import json
import logging

from wachannel.infra.logger import JsonFormatter, get_logger


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("wachannel.test", logging.INFO, __file__, 1, "channel %s up", ("ch1",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_channel_context():
    payload = json.loads(JsonFormatter().format(_record(channel_id="ch1", generation=3)))
    assert payload["message"] == "channel ch1 up"
    assert payload["level"] == "INFO"
    assert payload["channel_id"] == "ch1"
    assert payload["generation"] == 3
    assert "command" not in payload


def test_get_logger_adds_single_json_handler():
    logger = get_logger("wachannel.test.handlers", logging.DEBUG)
    get_logger("wachannel.test.handlers", logging.DEBUG)
    handlers = [h for h in logger.handlers if isinstance(h.formatter, JsonFormatter)]
    assert len(handlers) == 1
    assert logger.level == logging.DEBUG
