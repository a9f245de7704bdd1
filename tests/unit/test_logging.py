"""Unit tests for log output."""

from __future__ import annotations

import io
import json
import logging
import sys

import pytest

from triage_sidekick.logging import (
    JsonFormatter,
    KeyValueFormatter,
    configure_logging,
    record_context,
)


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="triage_sidekick.intake.poller",
        level=logging.INFO,
        pathname=__file__,
        lineno=42,
        msg="Intake poll complete",
        args=None,
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_record_context_keeps_only_extra_fields() -> None:
    assert record_context(_record(known=3, _private=1)) == {"known": 3}
    assert record_context(_record()) == {}


def test_json_line_shape() -> None:
    line = json.loads(JsonFormatter().format(_record(known=3, added=1)))

    assert line["level"] == "INFO"
    assert line["logger"] == "triage_sidekick.intake.poller"
    assert line["msg"] == "Intake poll complete"
    assert line["src"] == "test_logging:42"
    assert line["context"] == {"known": 3, "added": 1}
    assert "exc" not in line


def test_json_line_carries_traceback() -> None:
    try:
        raise RuntimeError("GitHub is down")
    except RuntimeError:
        record = _record()
        record.exc_info = sys.exc_info()

    line = json.loads(JsonFormatter().format(record))

    assert "RuntimeError: GitHub is down" in line["exc"]
    assert "context" not in line


def test_key_value_line() -> None:
    text = KeyValueFormatter().format(_record(repo="acme/widgets", added=2))

    assert "INFO" in text
    assert "triage_sidekick.intake.poller: Intake poll complete" in text
    assert text.endswith("repo='acme/widgets' added=2")


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def test_configure_logging_replaces_handlers(restore_root_logger: logging.Logger) -> None:
    configure_logging("debug")
    configure_logging("debug", "text")

    assert len(restore_root_logger.handlers) == 1
    assert isinstance(restore_root_logger.handlers[0].formatter, KeyValueFormatter)
    assert restore_root_logger.level == logging.DEBUG
    assert logging.getLogger("urllib3").level == logging.WARNING


def test_configure_logging_writes_json(restore_root_logger: logging.Logger) -> None:
    stream = io.StringIO()
    configure_logging("info", "json", stream=stream)

    logging.getLogger("triage_sidekick.test").info("hello", extra={"n": 1})

    line = json.loads(stream.getvalue().splitlines()[-1])
    assert line["msg"] == "hello"
    assert line["context"] == {"n": 1}


def test_configure_logging_rejects_unknown_format(restore_root_logger: logging.Logger) -> None:
    with pytest.raises(ValueError, match="Unknown log format"):
        configure_logging("info", "xml")
