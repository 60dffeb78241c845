"""Application-wide logging setup."""

import logging
import sys

from invoicebook.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging() -> None:
    """Install a single stdout handler on the root logger, once."""
    root = logging.getLogger()
    if root.handlers:
        return

    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)

    # Driver heartbeats are noisy below WARNING
    logging.getLogger("pymongo").setLevel(logging.WARNING)
