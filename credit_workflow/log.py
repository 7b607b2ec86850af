"""Logging setup for scripts and the tutorial notebook"""

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level="INFO"):
    """Send ``credit_workflow`` log records to stdout.

    The package never installs handlers on import; call this once from a
    script or notebook. Calling it again replaces the previous handler.
    """
    logger = logging.getLogger("credit_workflow")
    logger.setLevel(level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
