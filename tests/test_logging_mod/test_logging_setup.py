"""Tests for acmekube.logging.setup."""

from __future__ import annotations

import json
import logging
import sys

import pytest

from acmekube.config.settings import LoggingSettings
from acmekube.logging.setup import (
    ControllerContextFilter,
    StructuredFormatter,
    TextFormatter,
    configure_logging,
)


def _record(msg: str = "hello %s", args=("world",), **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="acmekube.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=args,
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture()
def restore_logger():
    """Undo configure_logging so caplog keeps working in later tests."""
    logger = logging.getLogger("acmekube")
    saved = (list(logger.handlers), logger.level, logger.propagate)
    yield logger
    logger.handlers[:] = saved[0]
    logger.setLevel(saved[1])
    logger.propagate = saved[2]


# ===========================================================================
# Formatters
# ===========================================================================


class TestStructuredFormatter:
    def test_basic_fields(self):
        data = json.loads(StructuredFormatter().format(_record()))

        assert data["message"] == "hello world"
        assert data["level"] == "INFO"
        assert data["logger"] == "acmekube.test"
        assert "timestamp" in data
        assert "namespace" not in data

    def test_context_and_extra_fields(self):
        record = _record(namespace="default", service="web", secret="web-tls")
        data = json.loads(StructuredFormatter().format(record))

        assert data["namespace"] == "default"
        assert data["service"] == "web"
        assert data["secret"] == "web-tls"

    def test_exception_included(self):
        try:
            raise ValueError("broken")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()

        data = json.loads(StructuredFormatter().format(record))

        assert "ValueError: broken" in data["exception"]


class TestTextFormatter:
    def test_context_in_output(self):
        record = _record(namespace="default", service="web")
        output = TextFormatter().format(record)
        assert "[default/web]" in output
        assert "hello world" in output


class TestControllerContextFilter:
    def test_defaults_missing_context(self):
        record = _record()
        assert ControllerContextFilter().filter(record) is True
        assert record.namespace == "-"
        assert record.service == "-"

    def test_keeps_existing_context(self):
        record = _record(namespace="default")
        ControllerContextFilter().filter(record)
        assert record.namespace == "default"
        assert record.service == "-"


# ===========================================================================
# configure_logging
# ===========================================================================


class TestConfigureLogging:
    def test_json_format(self, restore_logger):
        root = configure_logging(LoggingSettings(level="INFO", format="json"))

        assert root is restore_logger
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)
        assert root.propagate is False

    def test_text_format(self, restore_logger):
        root = configure_logging(LoggingSettings(level="INFO", format="text"))
        assert isinstance(root.handlers[0].formatter, TextFormatter)

    def test_sets_level(self, restore_logger):
        root = configure_logging(LoggingSettings(level="debug", format="json"))
        assert root.level == logging.DEBUG

    def test_clears_existing_handlers(self, restore_logger):
        restore_logger.addHandler(logging.NullHandler())
        restore_logger.addHandler(logging.NullHandler())

        root = configure_logging(LoggingSettings(level="INFO", format="json"))

        assert len(root.handlers) == 1

    def test_quietens_client_libraries(self, restore_logger):
        configure_logging(LoggingSettings(level="DEBUG", format="json"))
        assert logging.getLogger("kubernetes").level == logging.WARNING
        assert logging.getLogger("botocore").level == logging.WARNING

    def test_text_output_without_context(self, restore_logger, capsys):
        configure_logging(LoggingSettings(level="INFO", format="text"))

        logging.getLogger("acmekube.test").info("Detecting current cloud platform ...")

        err = capsys.readouterr().err
        assert "[-/-]" in err
        assert "Detecting current cloud platform" in err
