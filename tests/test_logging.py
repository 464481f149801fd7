"""Tests for rulebook.logging helpers."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import pandas as pd
import pytest
from pydantic import ValidationError

from rulebook.logging import JsonFormatter, LoggingSettings, setup_logging
from rulebook.rules import ruleset


def _flush() -> None:
    for handler in logging.root.handlers:
        handler.flush()


def test_setup_logging_writes_json_to_file(tmp_path: Path) -> None:
    path = tmp_path / "rulebook.log"
    setup_logging(LoggingSettings(level="INFO", log_format="json", log_file=str(path)), force=True)

    logger = logging.getLogger("rulebook.tests.logging")
    logger.info("hello file logging", extra={"test_case": "setup_logging"})
    _flush()

    record = json.loads(path.read_text().splitlines()[-1])
    assert record["message"] == "hello file logging"
    assert record["level"] == "INFO"
    assert record["logger"] == "rulebook.tests.logging"
    assert record["test_case"] == "setup_logging"


def test_confrontation_is_logged(tmp_path: Path) -> None:
    path = tmp_path / "confront.log"
    setup_logging(LoggingSettings(level="DEBUG", log_file=str(path)), force=True)

    ruleset("x > 0", "missing > 0").confront(pd.DataFrame({"x": [1]}))
    _flush()

    text = path.read_text()
    assert "Confronting 2 rules with 1 records" in text
    assert "Rule 'V2' failed" in text


def test_setup_logging_runs_once(tmp_path: Path) -> None:
    first = tmp_path / "first.log"
    second = tmp_path / "second.log"
    setup_logging(LoggingSettings(level="INFO", log_file=str(first)))
    setup_logging(LoggingSettings(level="INFO", log_file=str(second)))

    logging.getLogger("rulebook.tests").info("only once")
    _flush()

    assert "only once" in first.read_text()
    assert not second.exists()


def test_setup_logging_reads_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "env.log"
    monkeypatch.setenv("RULEBOOK_LOG_LEVEL", "info")
    monkeypatch.setenv("RULEBOOK_LOG_FILE", str(path))

    setup_logging(force=True)
    logging.getLogger("rulebook.tests").info("from the environment")
    _flush()

    assert logging.getLogger().level == logging.INFO
    assert "from the environment" in path.read_text()


def test_json_formatter_includes_exception() -> None:
    try:
        raise ValueError("boom")
    except ValueError:
        record = logging.LogRecord("rulebook", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
    payload = json.loads(JsonFormatter().format(record))
    assert payload["message"] == "failed"
    assert "ValueError: boom" in payload["exception"]


def test_logging_settings_validate_level() -> None:
    assert LoggingSettings(level="debug").level == "DEBUG"
    with pytest.raises(ValidationError):
        LoggingSettings(level="chatty")
