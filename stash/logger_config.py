import logging
import sys
from pathlib import Path

from stash import config

LOGGER_NAME = "stash"
LOG_FILE = "stash.log"

DETAILED_FORMAT = '%(asctime)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
BRIEF_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def _handler(handler: logging.Handler, level: int, fmt: str) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def setup_logger():
    """Return the shared "stash" logger.

    Uploads, rejections and sweeps go to LOG_DIR/stash.log at DEBUG; stdout
    gets INFO and above. Safe to call from every module.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if logger.handlers:
        return logger

    log_dir = Path(config.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)

    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    logger.addHandler(_handler(logging.FileHandler(log_dir / LOG_FILE), logging.DEBUG, DETAILED_FORMAT))
    logger.addHandler(_handler(logging.StreamHandler(sys.stdout), logging.INFO, BRIEF_FORMAT))

    return logger
