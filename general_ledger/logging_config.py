"""
Structured Logging Configuration Module

JSON (or plain text) logging for ledger operations. Records carry the book,
journal and account they concern so a single book's history can be pulled
out of a shared log stream.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Optional

# Structured attributes log_action may attach to a record, in output order
LEDGER_FIELDS = (
    "correlation_id", "user_id", "action", "resource",
    "book_id", "journal_id", "account_id", "extra"
)


def _ledger_fields(record: logging.LogRecord) -> dict:
    """Structured attributes set on the record, without the unset ones"""
    values = {name: getattr(record, name, None) for name in LEDGER_FIELDS}
    return {k: v for k, v in values.items() if v is not None}


class JSONFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
            **_ledger_fields(record)
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class LedgerTextFormatter(logging.Formatter):
    """Plain line followed by the book/journal/account the record concerns"""

    CONTEXT = ("book_id", "journal_id", "account_id")

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)s [%(name)s] %(message)s")

    def format(self, record):
        line = super().format(record)
        context = " ".join(
            f"{name[:-3]}={getattr(record, name)}"
            for name in self.CONTEXT
            if getattr(record, name, None) is not None
        )
        return f"{line} ({context})" if context else line


def setup_logging(
    level: str = "INFO",
    logger_name: str = "ledger",
    log_format: str = "json",
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Configure the ledger's root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Name of the root ledger logger
        log_format: "json" for structured output, "text" for plain lines
        log_file: Optional file path; logs to stderr when omitted

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    # Reconfiguring replaces the handler instead of stacking another one
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if log_format == "json" else LedgerTextFormatter())

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def get_logger(name: str = "ledger") -> logging.Logger:
    """Get logger instance"""
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, correlation_id: Optional[str] = None,
               book_id: Optional[str] = None, journal_id: Optional[str] = None,
               account_id: Optional[str] = None, extra: Optional[dict] = None):
    """
    Log a ledger action with structured data.

    Args:
        logger: Logger instance
        level: Log level (info, warning, error, etc.)
        message: Log message
        user_id: User performing the action
        action: Operation name, e.g. "post_journal"
        resource: Entity acted upon, e.g. "journal:<id>"
        correlation_id: Correlation ID for request tracing
        book_id: Book the action applies to
        journal_id: Journal the action applies to
        account_id: Account the action applies to
        extra: Additional structured data
    """
    levelno = getattr(logging, level.upper())
    if not logger.isEnabledFor(levelno):
        return

    record = logger.makeRecord(
        logger.name, levelno, __name__, 0, message, (), None
    )

    fields = {
        "user_id": user_id,
        "action": action,
        "resource": resource,
        "correlation_id": correlation_id,
        "book_id": book_id,
        "journal_id": journal_id,
        "account_id": account_id,
        "extra": extra,
    }
    for name, value in fields.items():
        if value:
            setattr(record, name, value)

    logger.handle(record)
