"""Process-wide logging for the server.

One rotating file per server start under ``logs/`` plus console output.
Uvicorn's loggers are routed to the same handlers so request logs and
service logs interleave in one file.
"""

import faulthandler
import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import IO, Optional

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"
_HANDLER_NAMES = ("meetscribe_file", "meetscribe_console")
_UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")

_crash_log: Optional[IO[str]] = None


def _handler(handler: logging.Handler, name: str, level: int) -> logging.Handler:
    handler.setFormatter(logging.Formatter(LOG_FORMAT, "%H:%M:%S"))
    handler.setLevel(level)
    handler.name = name
    return handler


def _install(logger: logging.Logger, handlers: list[logging.Handler]) -> None:
    # Reconfiguring (a second create_app in one process) must not leak file handles.
    for existing in list(logger.handlers):
        if existing.name in _HANDLER_NAMES:
            existing.close()
        logger.removeHandler(existing)
    for handler in handlers:
        logger.addHandler(handler)
    logger.propagate = False


def configure_logging(logs_dir: str, console_level: int = logging.INFO) -> str:
    os.makedirs(logs_dir, exist_ok=True)
    log_path = os.path.join(logs_dir, datetime.now().strftime("meetscribe_%Y-%m-%d_%H-%M-%S.log"))

    handlers = [
        _handler(
            RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8"),
            "meetscribe_file",
            logging.DEBUG,
        ),
        _handler(logging.StreamHandler(), "meetscribe_console", console_level),
    ]

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    _install(root, handlers)
    for name in _UVICORN_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO)
        _install(logging.getLogger(name), handlers)

    logging.getLogger("meetscribe.logging").info("Logging to %s", log_path)
    return log_path


def enable_crash_logging(logs_dir: str) -> None:
    """Dump tracebacks of all threads to ``logs/crash.log`` on fatal signals."""
    global _crash_log
    if _crash_log is not None:
        return
    os.makedirs(logs_dir, exist_ok=True)
    _crash_log = open(os.path.join(logs_dir, "crash.log"), "a", encoding="utf-8")
    faulthandler.enable(file=_crash_log, all_threads=True)
