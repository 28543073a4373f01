"""
Logging configuration for the pricing service.

Configures the root logger once, from LOG_LEVEL, so module loggers created
with logging.getLogger(__name__) share one handler and format.
"""
import logging
import os
import sys

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'

_configured = False


def setup_logging(level: str = None) -> logging.Logger:
    """
    Configure root logging for the application.

    Args:
        level: Log level name; defaults to the LOG_LEVEL env var, then INFO

    Returns:
        The root logger
    """
    global _configured

    root = logging.getLogger()
    level_name = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    if not _configured:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)

        # httpx logs every request at INFO
        logging.getLogger('httpx').setLevel(logging.WARNING)
        _configured = True

    return root
