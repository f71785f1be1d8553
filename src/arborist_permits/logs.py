import json
import logging
import sys
from typing import Optional

LOGGER_ROOT = "arborist_permits"

# Attributes every LogRecord carries; anything else came in via `extra=`.
_RESERVED = set(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime"}


class JsonLineFormatter(logging.Formatter):
    def format(self, record):
        payload = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RESERVED and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_ROOT}.{name}")


def configure_logging(level: Optional[str] = None, json_lines: bool = False) -> logging.Logger:
    """Install a single stderr handler on the package logger.

    Calling it again replaces the handler, so the CLI and tests can switch
    formats without stacking handlers.
    """

    logger = logging.getLogger(LOGGER_ROOT)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    if json_lines:
        handler.setFormatter(JsonLineFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    logger.addHandler(handler)
    logger.setLevel((level or "INFO").upper())
    logger.propagate = False
    return logger
