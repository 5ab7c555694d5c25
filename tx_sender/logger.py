import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .config import LoggingSettings

PACKAGE_LOGGER = "tx_sender"

NOISY_LOGGERS = ("aiohttp", "websockets", "httpx", "httpcore", "asyncio")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def setup_logging(settings: Optional["LoggingSettings"] = None) -> logging.Logger:
    """
    Attach console (and optionally rotating file) handlers to the package logger.

    Applications that already configure the root logger do not need this; the
    package only ever logs through ``logging.getLogger(__name__)``.
    """
    if settings is None:
        from .config import get_settings
        settings = get_settings().logging

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(getattr(logging, settings.level.value))

    for handler in list(package_logger.handlers):
        if not isinstance(handler, logging.NullHandler):
            package_logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(settings.format, datefmt=settings.date_format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    package_logger.addHandler(console_handler)

    if settings.file_enabled:
        log_path = Path(settings.file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=settings.file_max_bytes,
            backupCount=settings.file_backup_count,
            encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return package_logger
