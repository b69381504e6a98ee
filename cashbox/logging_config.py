"""Paketweites Logging fuer den Caixa-Viagem-Service.

Ein ``cashbox``-Logger mit rotierender Logdatei und Konsolen-Handler;
Module loggen ueber Kind-Logger aus :func:`get_logger`.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from cashbox.config import settings as app_settings

ROOT_LOGGER_NAME = "cashbox"


def _configure_logging() -> logging.Logger:
    """Richtet den Paket-Logger einmalig ein (Datei + Konsole)."""

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    if logger.handlers:
        return logger

    level = logging.getLevelName(app_settings.LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logger.setLevel(level)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    log_file = Path(app_settings.LOG_FILE)
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except (OSError, PermissionError) as exc:
        print(
            f"Warning: unable to initialize log file at '{log_file}': {exc}",
            file=sys.stderr,
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()


def get_logger(name: str) -> logging.Logger:
    """Kind-Logger des Paket-Loggers, z. B. ``get_logger("cascade")``."""
    return log.getChild(name)
