from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

ROOT_LOGGER = "faceclock"

# Attributes every LogRecord carries; anything else on a record came from ``extra``.
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message plus any ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def configure_logger(log_dir: Path | None = None, level: str = "INFO") -> logging.Logger:
    """Attach JSON handlers to the package logger once; later calls only adjust the level."""
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level.upper())
    if logger.handlers:
        return logger

    formatter = JsonFormatter()
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / f"{ROOT_LOGGER}.log", encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


def get_logger(part: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{part}")
