"""
Shared helpers for the application.
"""
import logging
import sys

from app.core import config


_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
_configured = False


def _configure_root() -> None:
    global _configured
    if _configured:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root = logging.getLogger("app")
    root.addHandler(handler)
    root.setLevel(config.LOG_LEVEL)
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the application namespace.

    Usage:
        from app.utils import get_logger

        log = get_logger(__name__)
        log.info("Role %s created", role.name)
    """
    _configure_root()
    if not name.startswith("app"):
        name = f"app.{name}"
    return logging.getLogger(name)
