"""Root logger setup shared by the web app and the cron script."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler

from . import config

_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def setup_logging(
    level: str | None = None,
    log_file: str | None = None,
    max_bytes: int = 10485760,
    backup_count: int = 3,
) -> None:
    """Configure the root logger: stdout always, a rotating file when *log_file* is set.

    Defaults come from LOG_LEVEL / LOG_FILE. Calling it again replaces the
    handlers installed by the previous call.
    """
    level_name = (level or config.LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    log_file = config.LOG_FILE if log_file is None else log_file

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    formatter = logging.Formatter(_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))
