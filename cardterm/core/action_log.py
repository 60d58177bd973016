"""Process-wide logging: console plus a daily action log on disk."""

from __future__ import annotations

import logging
import logging.config
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(log_dir: Path, *, verbose: bool = False) -> Path:
    log_dir.mkdir(parents=True, exist_ok=True)
    action_log = log_dir / "actions.log"
    level = "DEBUG" if verbose else "INFO"

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "std": {"format": LOG_FORMAT, "datefmt": DATE_FORMAT},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "level": level,
                    "formatter": "std",
                },
                "actions": {
                    "class": "logging.handlers.TimedRotatingFileHandler",
                    "level": level,
                    "filename": str(action_log),
                    "when": "midnight",
                    "backupCount": 30,
                    "encoding": "utf-8",
                    "formatter": "std",
                },
            },
            "loggers": {
                "cardterm": {
                    "level": level,
                    "handlers": ["console", "actions"],
                    "propagate": False,
                },
                "werkzeug": {"level": "WARNING", "handlers": ["console", "actions"]},
            },
        }
    )
    return action_log
