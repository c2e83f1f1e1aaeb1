"""Structured logging for relay outcomes."""

import json
import logging
import sys
from datetime import datetime, timezone

from swarmdon.config import LOG_FORMAT

_COLORS = {
    "DEBUG": "\033[36m",     # cyan
    "INFO": "\033[32m",      # green
    "WARNING": "\033[33m",   # yellow
    "ERROR": "\033[31m",     # red
    "CRITICAL": "\033[1;31m",  # bold red
    "RESET": "\033[0m",
}


class _PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        color = _COLORS.get(record.levelname, "")
        reset = _COLORS["RESET"]
        line = f"{color}[{ts}] [{record.levelname}]{reset} {record.getMessage()}"
        extra = getattr(record, "extra_data", None)
        if extra:
            line += " " + " ".join(f"{k}={v}" for k, v in extra.items())
        return line


class _JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
        }
        if hasattr(record, "extra_data"):
            entry.update(record.extra_data)
        return json.dumps(entry)


def setup_logging() -> logging.Logger:
    logger = logging.getLogger("swarmdon")
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        _PrettyFormatter() if LOG_FORMAT == "pretty" else _JSONFormatter()
    )
    logger.addHandler(handler)
    return logger


logger = setup_logging()

_OUTCOME_LEVELS = {
    "posted": logging.INFO,
    "skipped": logging.INFO,
    "failed": logging.WARNING,
}


def log_relay(
    source: str,
    account: str,
    checkin_id: str,
    outcome: str,
    detail: str = "",
) -> None:
    """Log the outcome of relaying one checkin, for both push and poll paths."""
    data = {
        "source": source,
        "account": account,
        "checkin": checkin_id,
        "outcome": outcome,
    }
    if detail:
        data["detail"] = detail
    logger.log(
        _OUTCOME_LEVELS.get(outcome, logging.INFO),
        f"[{source}] checkin {checkin_id} {outcome}",
        extra={"extra_data": data},
    )
