"""
Tests for structlog configuration.

Tests cover:
- Importing the package leaves the host's structlog setup alone
- configure_logging() as an explicit opt-in for console and JSON output
"""

import importlib
import logging

import pytest
import structlog

import circuitguard
from circuitguard.core import logging_config


@pytest.fixture(autouse=True)
def restore_structlog():
    yield
    structlog.reset_defaults()


class TestImportSideEffects:
    def test_import_keeps_host_configuration(self):
        host_renderer = structlog.processors.JSONRenderer()
        structlog.configure(processors=[structlog.processors.add_log_level, host_renderer])

        importlib.reload(logging_config)
        importlib.reload(circuitguard)

        assert structlog.get_config()["processors"][-1] is host_renderer


class TestConfigureLogging:
    def test_console_output_outside_production(self, monkeypatch):
        monkeypatch.setattr(logging_config, "IS_PRODUCTION", False)

        logging_config.configure_logging()

        assert isinstance(structlog.get_config()["processors"][-1], structlog.dev.ConsoleRenderer)

    def test_json_output_in_production(self, monkeypatch):
        monkeypatch.setattr(logging_config, "IS_PRODUCTION", True)

        logging_config.configure_logging()

        assert isinstance(structlog.get_config()["processors"][-1], structlog.processors.JSONRenderer)

    def test_quiets_chatty_libraries(self):
        logging_config.configure_logging()

        assert logging.getLogger("apscheduler").level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_exported_from_package(self):
        assert circuitguard.configure_logging is not None
