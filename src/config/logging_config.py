# src/config/logging_config.py

"""Per-run logging for pageone.

Every ``pageone.*`` logger writes to one timestamped file under ``logs/``
(``logs/run_YYYYmmdd_HHMMSS.log``). Background refinement jobs run on
worker threads, so the file format carries the thread name.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from src.config.settings import Settings

_FILE_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | %(threadName)s | "
    "%(funcName)s:%(lineno)d | %(message)s"
)
_CONSOLE_FORMAT = "%(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _existing_log_file(logger: logging.Logger) -> Path | None:
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler):
            return Path(handler.baseFilename)
    return None


def setup_logging(console_level: str | None = None) -> Path:
    """Attach the run file and console handlers to the ``pageone`` logger.

    Idempotent: a second call returns the file already in use. The
    console threshold defaults to ``PAGEONE_LOG_LEVEL`` (WARNING).
    """
    root_logger = logging.getLogger("pageone")
    root_logger.setLevel(logging.DEBUG)

    existing = _existing_log_file(root_logger)
    if existing is not None:
        return existing

    Settings.LOGS_DIR.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = Settings.LOGS_DIR / f"run_{stamp}.log"

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, _DATE_FORMAT))

    level_name = (console_level or Settings.LOG_CONSOLE_LEVEL).upper()
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(
        logging.getLevelNamesMapping().get(level_name, logging.WARNING)
    )
    console_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    # Transport libraries log every retry at INFO
    for name in Settings.QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info("Run log opened at %s", log_file)
    return log_file
