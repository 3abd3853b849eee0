"""
Service logger setup

Configures the root logger once per process so every module logger
(`logging.getLogger(__name__)`) shares one format and set of handlers.
"""

import logging
import sys
from typing import Optional

from core.config import LoggingConfig

_configured = False


def setup_service_logger(
    service_name: str,
    level: Optional[str] = None,
    config: Optional[LoggingConfig] = None,
) -> logging.Logger:
    """
    Configure logging for a service and return its logger.

    Args:
        service_name: Logger name for the service
        level: Log level override (e.g. "INFO")
        config: Logging config (loaded from environment if not provided)

    Returns:
        Logger named after the service
    """
    global _configured

    if config is None:
        config = LoggingConfig.from_env()

    log_level = getattr(logging, (level or config.log_level).upper(), logging.INFO)

    if not _configured:
        root = logging.getLogger()
        root.setLevel(log_level)
        formatter = logging.Formatter(config.log_format)

        if config.enable_console:
            console = logging.StreamHandler(sys.stdout)
            console.setFormatter(formatter)
            root.addHandler(console)

        if config.log_file:
            file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)

        # Quiet chatty libraries
        logging.getLogger("asyncpg").setLevel(logging.WARNING)
        logging.getLogger("nats").setLevel(logging.WARNING)
        logging.getLogger("apscheduler").setLevel(logging.WARNING)

        _configured = True

    logger = logging.getLogger(service_name)
    logger.setLevel(log_level)
    return logger


__all__ = ["setup_service_logger"]
