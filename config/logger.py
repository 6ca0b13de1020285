import logging
import logging.handlers
import sys
from pathlib import Path
from typing import List

import structlog

LOG_FILE_NAME = "mp3cache.log"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# transfer libraries log every request at INFO
QUIET_LOGGERS = ("boto3", "botocore", "s3transfer", "httpx", "httpcore", "urllib3")


def _renderer(debug: bool):
    if debug:
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def _file_handler(logs_dir: str) -> logging.Handler:
    path = Path(logs_dir)
    path.mkdir(parents=True, exist_ok=True)
    return logging.handlers.RotatingFileHandler(
        path / LOG_FILE_NAME, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS
    )


def setup_logging(debug: bool = False, logs_dir: str = "logs"):
    """Route structlog events through stdlib logging to stdout and, outside debug, a log file"""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _renderer(debug),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if not debug:
        try:
            handlers.append(_file_handler(logs_dir))
        except OSError as e:
            print(f"Warning: log file unavailable in {logs_dir}, logging to stdout only: {e}")

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        handlers=handlers,
        force=True,
    )

    quiet_level = logging.INFO if debug else logging.WARNING
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
