import logging
from typing import Optional

from .config import LoggingConfig


def setup_logging(config: Optional[LoggingConfig] = None) -> logging.Logger:
    """Configure the root logger once; modules log through logging.getLogger(__name__)"""
    config = config or LoggingConfig()
    logger = logging.getLogger()
    logger.setLevel(config.level.upper())

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(config.format))
        logger.addHandler(handler)

    # SQL echo is controlled by DATABASE_ECHO, keep engine chatter out of INFO logs
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    return logger
