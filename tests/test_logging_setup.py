import logging

from src.utils.logging_setup import get_logger


def test_get_logger_adds_single_handler():
    logger = get_logger('test_logging_setup_single')
    same = get_logger('test_logging_setup_single')
    assert logger is same
    assert len(logger.handlers) == 1
    assert logger.level == logging.INFO


def test_get_logger_level():
    logger = get_logger('test_logging_setup_debug', level=logging.DEBUG)
    assert logger.level == logging.DEBUG
