"""Tests for logging configuration."""

from __future__ import annotations

import json
import logging
import sys

import pytest
from rich.logging import RichHandler

from bitseed.logging_config import (
    CorrelationFilter,
    LoggingContext,
    StructuredFormatter,
    build_logging_config,
    create_console_handler,
    get_correlation_id,
    get_logger,
    set_correlation_id,
    setup_logging,
)
from bitseed.models import LogLevel, ObservabilityConfig

pytestmark = [pytest.mark.unit, pytest.mark.observability]


def make_record(message: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="bitseed.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestBuildLoggingConfig:
    """Tests for handler selection."""

    def test_console(self):
        config = build_logging_config(ObservabilityConfig(console=True))
        assert list(config["handlers"]) == ["console"]
        assert config["handlers"]["console"]["()"] is create_console_handler
        assert config["handlers"]["console"]["formatter"] == "console"
        assert config["loggers"]["bitseed"]["handlers"] == ["console"]
        assert config["loggers"]["bitseed"]["level"] == "INFO"

    def test_file(self, tmp_path):
        log_file = str(tmp_path / "bitseed.log")
        config = build_logging_config(ObservabilityConfig(console=False, log_file=log_file))
        assert list(config["handlers"]) == ["file"]
        assert config["handlers"]["file"]["filename"] == log_file
        assert config["handlers"]["file"]["formatter"] == "simple"

    def test_console_and_file(self, tmp_path):
        config = build_logging_config(
            ObservabilityConfig(console=True, log_file=str(tmp_path / "x.log"))
        )
        assert config["loggers"]["bitseed"]["handlers"] == ["console", "file"]

    def test_blackhole(self):
        config = build_logging_config(ObservabilityConfig(console=False))
        assert config["handlers"] == {"blackhole": {"class": "logging.NullHandler"}}
        assert config["loggers"]["bitseed"]["handlers"] == ["blackhole"]

    def test_structured(self):
        config = build_logging_config(
            ObservabilityConfig(structured_logging=True, log_level=LogLevel.DEBUG)
        )
        assert config["handlers"]["console"]["formatter"] == "structured"
        assert config["handlers"]["console"]["class"] == "logging.StreamHandler"
        assert config["loggers"]["bitseed"]["level"] == "DEBUG"


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_file_output(self, tmp_path):
        log_file = tmp_path / "logs" / "bitseed.log"
        setup_logging(ObservabilityConfig(console=False, log_file=str(log_file)))

        logger = get_logger("tracker")
        set_correlation_id("abc12345")
        logger.info("announce received")
        for handler in logging.getLogger("bitseed").handlers:
            handler.flush()

        content = log_file.read_text(encoding="utf-8")
        assert "announce received" in content
        assert "[abc12345]" in content
        assert "bitseed.tracker" in content

    def test_console_renders_with_rich(self, capsys):
        setup_logging(ObservabilityConfig(console=True))
        package_logger = logging.getLogger("bitseed")
        assert [type(h) for h in package_logger.handlers] == [RichHandler]

        set_correlation_id("c0ffee00")
        get_logger("seeder").warning("peer gone")
        err = " ".join(capsys.readouterr().err.split())
        assert "WARNING" in err
        assert "[c0ffee00]" in err
        assert "peer gone" in err

    def test_console_handler_factory(self):
        handler = create_console_handler(level=logging.DEBUG)
        assert isinstance(handler, RichHandler)
        assert handler.level == logging.DEBUG
        assert handler.console.stderr is True

    def test_blackhole_discards(self):
        setup_logging(ObservabilityConfig(console=False))
        package_logger = logging.getLogger("bitseed")
        assert package_logger.propagate is False
        assert [type(h) for h in package_logger.handlers] == [logging.NullHandler]

    def test_level_filters(self, tmp_path):
        log_file = tmp_path / "bitseed.log"
        setup_logging(
            ObservabilityConfig(console=False, log_file=str(log_file), log_level=LogLevel.WARNING)
        )
        logger = get_logger("bitseed.seeder")
        logger.info("quiet")
        logger.warning("loud")
        for handler in logging.getLogger("bitseed").handlers:
            handler.flush()

        content = log_file.read_text(encoding="utf-8")
        assert "loud" in content
        assert "quiet" not in content


class TestFormatters:
    """Tests for the formatters and the correlation filter."""

    def test_correlation_filter(self):
        set_correlation_id("feedbeef")
        record = make_record()
        assert CorrelationFilter().filter(record) is True
        assert record.correlation_id == "feedbeef"

    def test_structured_formatter(self):
        record = make_record("peer %s", info_hash="00ff")
        record.args = ("connected",)
        record.correlation_id = "cafe0001"
        data = json.loads(StructuredFormatter().format(record))
        assert data["message"] == "peer connected"
        assert data["level"] == "INFO"
        assert data["logger"] == "bitseed.test"
        assert data["correlation_id"] == "cafe0001"
        assert data["info_hash"] == "00ff"

    def test_structured_formatter_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = make_record()
            record.exc_info = sys.exc_info()
        data = json.loads(StructuredFormatter().format(record))
        assert "ValueError: boom" in data["exception"]


class TestHelpers:
    """Tests for logger helpers."""

    def test_get_logger_namespaces(self):
        assert get_logger("tracker").name == "bitseed.tracker"
        assert get_logger("bitseed.tracker").name == "bitseed.tracker"
        assert get_logger("bitseed").name == "bitseed"

    def test_set_correlation_id_generates(self):
        corr_id = set_correlation_id()
        assert len(corr_id) == 8
        assert get_correlation_id() == corr_id

    def test_logging_context(self, caplog):
        caplog.set_level(logging.INFO, logger="bitseed")
        with LoggingContext("hashing", logger=get_logger("core")):
            pass
        assert "Starting hashing" in caplog.text
        assert "Completed hashing" in caplog.text

    def test_logging_context_failure(self, caplog):
        caplog.set_level(logging.INFO, logger="bitseed")
        with pytest.raises(RuntimeError), LoggingContext("hashing", logger=get_logger("core")):
            raise RuntimeError("disk gone")
        assert "Failed hashing" in caplog.text
