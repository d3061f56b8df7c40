"""
Logging setup for kvdoc.

Library code only creates module loggers under ``kvdoc``. Applications
(and the CLI) pick one of three setups here: quiet, debug to stderr, or an
operations log kept in the store directory.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOGGER_NAME = "kvdoc"
OPS_LOG_FILENAME = "kvdoc-ops.log"

_DEBUG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_OPS_FORMAT = "%(asctime)s %(levelname)s %(message)s"
_OPS_MAX_BYTES = 1_000_000
_OPS_BACKUPS = 3


def configure_quiet_mode(quiet: bool = True):
    """
    Set the kvdoc logger for interactive use.

    Args:
        quiet: Only warnings and errors (the default), and no Python
            warnings. With False, INFO messages such as creates and
            destroys are shown too.
    """
    kvdoc_logger = logging.getLogger(LOGGER_NAME)
    if not quiet:
        warnings.filterwarnings("default")
        kvdoc_logger.setLevel(logging.INFO)
        return
    warnings.filterwarnings("ignore")
    # An explicit level set by the application wins
    if kvdoc_logger.level == logging.NOTSET:
        kvdoc_logger.setLevel(logging.WARNING)


def _has_stderr_handler(logger: logging.Logger) -> bool:
    return any(
        isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr
        for h in logger.handlers
    )


def enable_debug_mode():
    """Send every store round-trip and pointer change to stderr."""
    warnings.filterwarnings("default")
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    if not _has_stderr_handler(root):
        stderr = logging.StreamHandler(sys.stderr)
        stderr.setLevel(logging.DEBUG)
        stderr.setFormatter(logging.Formatter(_DEBUG_FORMAT, datefmt="%H:%M:%S"))
        root.addHandler(stderr)
    logging.getLogger(LOGGER_NAME).setLevel(logging.DEBUG)


def configure_ops_log(store_path) -> RotatingFileHandler:
    """
    Record creates, destroys, pointer repairs and warnings in
    ``<store_path>/kvdoc-ops.log``, rotated at 1 MB with 3 backups.

    The caller owns the returned handler; pass it to remove_ops_log().
    """
    ops_path = Path(store_path) / OPS_LOG_FILENAME
    ops_path.parent.mkdir(parents=True, exist_ok=True)
    ops = RotatingFileHandler(str(ops_path), maxBytes=_OPS_MAX_BYTES, backupCount=_OPS_BACKUPS)
    ops.setLevel(logging.INFO)
    ops.setFormatter(logging.Formatter(_OPS_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    kvdoc_logger = logging.getLogger(LOGGER_NAME)
    kvdoc_logger.addHandler(ops)
    # INFO must reach the file even when the console is quiet
    if kvdoc_logger.getEffectiveLevel() > logging.INFO or kvdoc_logger.level == logging.NOTSET:
        kvdoc_logger.setLevel(logging.INFO)
    return ops


def remove_ops_log(handler) -> None:
    logging.getLogger(LOGGER_NAME).removeHandler(handler)
    handler.close()
