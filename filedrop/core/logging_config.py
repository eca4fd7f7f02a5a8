# File: filedrop/core/logging_config.py

import logging
import sys

from filedrop.core.config.settings import settings


def setup_logging(level: str = None):
    """
    Configures the root logger for the application.
    Call this once at startup (see filedrop/__main__.py).
    """
    logging.basicConfig(
        level=level or settings.LOG_LEVEL,
        format="%(asctime)s - %(name)s - [%(levelname)s] - %(message)s",
        stream=sys.stdout,
    )
    # Silence noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("multipart").setLevel(logging.WARNING)
    logging.getLogger("python_multipart").setLevel(logging.WARNING)
