from __future__ import annotations

import logging

from bulk_import.logging.init import (
    LOGGER_NAME,
    SUMMARY_LEVEL,
    get_logger,
    log_summary,
    reset_logging,
    setup_logging,
)


def test_setup_logging_creates_logger_with_labeled_formatter():
    reset_logging()
    logger = setup_logging()
    assert logger.name == LOGGER_NAME
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
    assert logger.propagate is False


def test_setup_logging_is_idempotent_and_switches_level():
    reset_logging()
    first = setup_logging()
    second = setup_logging(debug=True)
    assert first is second
    assert len(second.handlers) == 1
    assert second.level == logging.DEBUG
    assert second.handlers[0].level == logging.DEBUG
    reset_logging()


def test_labeled_prefixes(capsys):
    reset_logging()
    logger = setup_logging()
    logger.info("Test info message")
    logger.warning("Test warning message")
    logger.error("Test error message")
    logger.debug("hidden")
    log_summary("rows=1")
    lines = capsys.readouterr().out.strip().splitlines()
    assert lines == [
        "INFO Test info message",
        "WARN Test warning message",
        "ERROR Test error message",
        "SUMMARY rows=1",
    ]
    reset_logging()


def test_module_loggers_reach_application_handler(capsys):
    reset_logging()
    setup_logging()
    logging.getLogger("bulk_import.services.mapper").info("Processed 3 rows. Errors: 0")
    assert "INFO Processed 3 rows. Errors: 0" in capsys.readouterr().out
    reset_logging()


def test_get_logger_sets_up_on_demand():
    reset_logging()
    logger = get_logger()
    assert logger is get_logger()
    assert logging.getLevelName(SUMMARY_LEVEL) == "SUMMARY"
    reset_logging()
