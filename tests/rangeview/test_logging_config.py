import logging

import pytest
from pythonjsonlogger import jsonlogger

from rangeview.logging_config import configure_logging


@pytest.fixture
def root_logger():
    logger = logging.getLogger()
    handlers, level = list(logger.handlers), logger.level
    yield logger
    logger.handlers[:] = handlers
    logger.setLevel(level)


def test_json_is_default(root_logger, monkeypatch):
    monkeypatch.delenv("RANGEVIEW_LOG_FORMAT", raising=False)

    configure_logging(logging.DEBUG)

    assert root_logger.level == logging.DEBUG
    assert len(root_logger.handlers) == 1
    assert isinstance(root_logger.handlers[0].formatter, jsonlogger.JsonFormatter)


def test_env_var_selects_plain(root_logger, monkeypatch):
    monkeypatch.setenv("RANGEVIEW_LOG_FORMAT", "plain")

    configure_logging()

    formatter = root_logger.handlers[0].formatter
    assert not isinstance(formatter, jsonlogger.JsonFormatter)
    assert isinstance(formatter, logging.Formatter)


def test_force_format_overrides_env(root_logger, monkeypatch):
    monkeypatch.setenv("RANGEVIEW_LOG_FORMAT", "plain")

    configure_logging(force_format="JSON")
    configure_logging(force_format="json")

    assert len(root_logger.handlers) == 1
    assert isinstance(root_logger.handlers[0].formatter, jsonlogger.JsonFormatter)


def test_level_names_and_unknown_format(root_logger, monkeypatch):
    monkeypatch.delenv("RANGEVIEW_LOG_FORMAT", raising=False)

    configure_logging("warning")

    assert root_logger.level == logging.WARNING
    with pytest.raises(ValueError):
        configure_logging(force_format="xml")
