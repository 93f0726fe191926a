"""Logging bootstrap for the retro session controller (console + retro-session.log)."""
from __future__ import annotations

import logging
from logging.config import dictConfig
from pathlib import Path
from typing import Optional


def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None, retention_days: int = 14) -> None:
    """
    Send all session logs to the console and to ``retro-session.log``, rotated at
    UTC midnight and kept for ``retention_days``. ``websockets`` is capped at INFO
    and ``httpx`` at WARNING.
    """

    if log_dir is None:
        log_dir = Path(__file__).resolve().parents[2] / "logs"
    log_dir = Path(log_dir).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    level = level.upper()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": level,
                },
                "session_log_file": {
                    "class": "logging.handlers.TimedRotatingFileHandler",
                    "formatter": "default",
                    "level": level,
                    "filename": str(log_dir / "retro-session.log"),
                    "when": "midnight",
                    "backupCount": max(int(retention_days), 1),
                    "utc": True,
                    "delay": True,
                    "encoding": "utf-8",
                },
            },
            "loggers": {
                # websockets logs every frame at DEBUG
                "websockets": {"level": "INFO"},
                "httpx": {"level": "WARNING"},
            },
            "root": {"level": level, "handlers": ["console", "session_log_file"]},
        }
    )
    logging.getLogger(__name__).debug("Logging configured (level=%s, dir=%s)", level, log_dir)


__all__ = ["configure_logging"]
