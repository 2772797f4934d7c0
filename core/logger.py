"""
Logging for the College ERP backend.

One named logger writes to stdout and, when a log file is given, to a rotating
file. Level, rotation size and backup count come from ``config`` (``LOG_LEVEL``,
``LOG_MAX_BYTES``, ``LOG_BACKUP_COUNT``).
"""
import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional

import config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logger(name: str = "college_erp", log_file: Optional[Path] = None) -> logging.Logger:
    """
    Configure ``name`` with a console handler and an optional rotating file handler.

    Calling it again replaces the handlers, so settings changed in ``config``
    take effect on the next call.
    """
    level = logging.getLevelName(config.LOG_LEVEL)
    if not isinstance(level, int):
        level = logging.INFO

    logger = logging.getLogger(name)
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=config.LOG_MAX_BYTES,
                backupCount=config.LOG_BACKUP_COUNT,
                encoding='utf-8'
            )
        except OSError:
            # Read-only filesystem: console only
            logger.warning(f"Cannot open log file {log_file}; logging to console only")
            return logger
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


logger = setup_logger(log_file=config.LOG_DIR / "app.log")
