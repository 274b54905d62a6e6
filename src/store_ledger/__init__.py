"""Transaction ledger and inventory reconciliation engine for a retail till.

Importing the package configures the shared ``log`` used by every module. The
log directory and level can be overridden through the ``STORE_LEDGER_LOG_DIR``
and ``STORE_LEDGER_LOG_LEVEL`` environment variables.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("STORE_LEDGER_LOG_DIR", PROJECT_ROOT / ".logs"))
LOG_FILE = LOG_DIR / "store_ledger.log"
LOG_LEVEL = logging.getLevelName(os.environ.get("STORE_LEDGER_LOG_LEVEL", "INFO").upper())


def _build_file_handler(formatter: logging.Formatter) -> logging.Handler | None:
    """Return a rotating handler for ``LOG_FILE`` or ``None`` when unwritable."""

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
    except (OSError, PermissionError) as exc:
        print(
            f"Warning: unable to initialize ledger log at '{LOG_FILE}': {exc}",
            file=sys.stderr,
        )
        return None
    handler.setFormatter(formatter)
    return handler


def _configure_logging() -> logging.Logger:
    """Attach file and console handlers to the package logger once."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = LOG_LEVEL if isinstance(LOG_LEVEL, int) else logging.INFO
    logger.setLevel(level)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    file_handler = _build_file_handler(formatter)
    if file_handler is not None:
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()
log.debug("Logger initialized for the 'store_ledger' package.")
