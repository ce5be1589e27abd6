"""Log output for the booking API, the scheduler and the SQLite store.

Lines carry the thread name so that concurrent submissions and approvals
on one resource can be told apart.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

from backend.utils.config import get_settings


_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(threadName)s | %(message)s"
_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """Install the stdout handler; falls back to ``LOG_LEVEL`` from settings.

    Only the first call has an effect.
    """

    global _configured
    if _configured:
        return

    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format=_LOG_FORMAT,
        stream=sys.stdout,
    )
    _configured = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
