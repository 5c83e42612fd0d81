"""Tests for logging setup in linux_helper/log.py."""

import logging
from logging.handlers import RotatingFileHandler

import pytest

from linux_helper.log import MAX_LOG_BYTES, parse_level, setup_logging, shutdown_logging


@pytest.fixture(autouse=True)
def restore_logger():
    logger = logging.getLogger("linux_helper")
    saved = (logger.level, logger.propagate, list(logger.handlers))
    yield
    shutdown_logging()
    logger.handlers = saved[2]
    logger.setLevel(saved[0])
    logger.propagate = saved[1]


def test_parse_level():
    assert parse_level("debug") == logging.DEBUG
    assert parse_level("warn") == logging.WARNING
    assert parse_level("ERROR") == logging.ERROR
    assert parse_level(None) == logging.INFO
    assert parse_level("chatty") == logging.INFO


def test_console_and_rotating_file(tmp_path):
    log_file = tmp_path / "logs" / "daemon.log"
    logger = setup_logging("debug", str(log_file))
    assert logger.level == logging.DEBUG
    rotating = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
    assert len(rotating) == 1
    assert rotating[0].maxBytes == MAX_LOG_BYTES

    logging.getLogger("linux_helper.test").info("hello file")
    rotating[0].flush()
    assert "hello file" in log_file.read_text()


def test_repeated_setup_does_not_duplicate_handlers(tmp_path):
    setup_logging("info", str(tmp_path / "a.log"))
    logger = setup_logging("info", str(tmp_path / "a.log"))
    assert len(logger.handlers) == 2


def test_unwritable_log_file_keeps_console(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")
    logger = setup_logging("info", str(blocker / "daemon.log"))
    assert len(logger.handlers) == 1
