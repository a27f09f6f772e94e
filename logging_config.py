"""
Centralized logging configuration for the job ingestion engine.

Every module logs through the stdlib ``logging`` package. Context is passed
with ``extra={...}`` and rendered after the message as ``| key=value`` pairs
so ingestion batches, retries and pipeline transitions stay greppable in
plain stdout logs.
"""

import logging
import os
import sys
from typing import Iterable

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime", "taskName"}

# Third-party loggers that are chatty at INFO.
NOISY_LOGGERS = ("httpx", "httpcore", "hpack", "openai", "urllib3")


class StructuredFormatter(logging.Formatter):
    """
    Formatter that renders ``extra`` fields after the message.

    ``logger.info("Batch ingested", extra={"jobs_created": 3, "jobs_updated": 1})``
    becomes ``... - Batch ingested | jobs_created=3 jobs_updated=1``.
    """

    def format(self, record: logging.LogRecord) -> str:
        base_msg = super().format(record)

        extra_fields = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }
        if not extra_fields:
            return base_msg

        extra_str = " ".join(f"{k}={v}" for k, v in sorted(extra_fields.items()))
        return f"{base_msg} | {extra_str}"


def setup_logging(name: str = "job_ingest", quiet: Iterable[str] = NOISY_LOGGERS) -> logging.Logger:
    """
    Configure the root logger for stdout and return a named logger.

    Args:
        name: Logger name to return
        quiet: Logger names capped at WARNING

    Returns:
        Configured logger instance
    """
    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(
        StructuredFormatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root_logger.addHandler(console_handler)

    for noisy in quiet:
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))

    return logging.getLogger(name)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)
