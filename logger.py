import sys

from loguru import logger

from config import settings


def setup_logging(level=None, log_file=None):
    """
    configure loguru sinks once at startup.
    stderr always; a daily-rotated file when log_file is set.
    """
    level = level or settings.log_level
    log_file = log_file or settings.log_file

    logger.remove()
    logger.add(sys.stderr, level=level)

    if log_file:
        logger.add(
            log_file,
            rotation="1 day",
            retention="7 days",
            level=level,
            encoding="utf-8",
        )

    return logger
