"""Logging configuration for the application."""

import logging
import re
import sys

from pos_backend.core.config import get_settings

_URI_CREDENTIALS_RE = re.compile(r"//([^:/@]+):([^@]+)@")


def setup_logging() -> None:
    """Configure application-wide logging.

    Level is DEBUG when settings.debug is True, otherwise INFO.
    Output goes to stdout.
    """
    settings = get_settings()
    log_level = logging.DEBUG if settings.debug else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    # pymongo logs every heartbeat at DEBUG
    logging.getLogger("pymongo").setLevel(logging.WARNING)


def mask_uri(uri: str) -> str:
    """Return uri with user and password replaced by '***' (safe for logs)."""
    return _URI_CREDENTIALS_RE.sub("//***:***@", uri)
