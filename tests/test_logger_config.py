import logging

from stash.logger_config import LOGGER_NAME, setup_logger


def test_setup_logger_is_idempotent():
    logger = setup_logger()
    handlers = list(logger.handlers)

    assert setup_logger() is logger
    assert logger.handlers == handlers
    assert logger.name == LOGGER_NAME


def test_file_gets_debug_console_gets_info():
    logger = setup_logger()
    levels = {type(h): h.level for h in logger.handlers}

    assert levels[logging.FileHandler] == logging.DEBUG
    assert levels[logging.StreamHandler] == logging.INFO
    assert not logger.propagate
