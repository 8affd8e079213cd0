import logging
import logging.handlers
import sys
from pathlib import Path
from typing import List

# Constants
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_NAME = "wikinexus.log"
LOG_FILE_SIZE = 10 * 1024 * 1024  # 10 MB
LOG_BACKUP_COUNT = 5

# Libraries that log every request or query at INFO
QUIET_LOGGERS = ("urllib3", "werkzeug", "PIL", "sqlalchemy.engine")


def _build_handlers(log_file: Path, debug_mode: bool, max_bytes: int, backup_count: int) -> List[logging.Handler]:
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )
    file_handler.setLevel(logging.DEBUG)  # File gets editor and storage detail

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if debug_mode else logging.INFO)

    for handler in (file_handler, console_handler):
        handler.setFormatter(formatter)
    return [file_handler, console_handler]


def setup_logging(log_dir: Path, debug_mode: bool = False,
                  max_bytes: int = LOG_FILE_SIZE, backup_count: int = LOG_BACKUP_COUNT) -> Path:
    """
    Send WikiNexus logs to a rotating file in ``log_dir`` and to stdout.
    Safe to call again: previous root handlers are closed and replaced.
    Returns the path of the log file.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if debug_mode else logging.INFO)

    for handler in list(root_logger.handlers):
        handler.close()
        root_logger.removeHandler(handler)

    for handler in _build_handlers(log_file, debug_mode, max_bytes, backup_count):
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging initialized. Log file: {log_file}")
    return log_file
