"""
Logging setup: console output plus a daily rotating file under .run/.
"""

import os
import logging
from logging.handlers import TimedRotatingFileHandler
from typing import Optional

from quotefeed.config import settings

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: Optional[str] = None) -> None:
    """Console logging at the configured level."""
    logging.basicConfig(level=(level or settings.LOG_LEVEL), format=LOG_FORMAT)
    # httpx logs every request at INFO, which would echo the API key in URLs
    logging.getLogger("httpx").setLevel(logging.WARNING)


def setup_log_rotation(log_file: Optional[str] = None) -> Optional[TimedRotatingFileHandler]:
    """Setup log rotation for service logs."""
    log_file = log_file or settings.LOG_FILE
    try:
        # Ensure log directory exists
        directory = os.path.dirname(log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)

        handler = TimedRotatingFileHandler(
            filename=log_file,
            when="midnight",
            interval=1,
            backupCount=7,
            encoding="utf-8"
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))

        root_logger = logging.getLogger()
        root_logger.addHandler(handler)

        logger.info("Log rotation configured (daily, keep 7 days)")
        return handler

    except Exception as e:
        logger.error(f"Failed to setup log rotation: {e}")
        return None
