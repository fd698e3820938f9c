"""Tests for the JSON log format."""
import json
import logging

from clearance.core.logging import JSONFormatter, get_logger, set_trace_id


class Capture(logging.Handler):
    def __init__(self):
        super().__init__()
        self.lines = []
        self.setFormatter(JSONFormatter())

    def emit(self, record):
        self.lines.append(json.loads(self.format(record)))


def test_structured_fields_and_trace_id():
    handler = Capture()
    logger = get_logger("clearance.test")
    logger._logger.addHandler(handler)
    logger._logger.setLevel(logging.INFO)
    try:
        set_trace_id("abc12345")
        logger.info("Term done", source="api", query="drill", duration_ms=12.3456, markdown=4)
    finally:
        logger._logger.removeHandler(handler)

    line = handler.lines[0]
    assert line["message"] == "Term done"
    assert line["trace_id"] == "abc12345"
    assert line["source"] == "api"
    assert line["query"] == "drill"
    assert line["duration_ms"] == 12.35
    assert line["extra"] == {"markdown": 4}
