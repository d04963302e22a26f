import logging
import os
import re
import sys
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_FORMAT_WITH_SESSION = '%(asctime)s - %(name)s - %(levelname)s - [{session_id}] - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class SensitiveDataFilter(logging.Filter):
    """Filter to mask credentials and key material in log records."""

    PATTERNS = [
        (re.compile(r'(private[_-]?key["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)', re.IGNORECASE), r'\1***MASKED***'),
        (re.compile(r'(api[_-]?token["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)', re.IGNORECASE), r'\1***MASKED***'),
        (re.compile(r'(token["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)', re.IGNORECASE), r'\1***MASKED***'),
        (re.compile(r'(authorization["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)', re.IGNORECASE), r'\1***MASKED***'),
        (re.compile(r'(bearer\s+)([^\s,}\'\"]+)', re.IGNORECASE), r'\1***MASKED***'),
        (re.compile(r'(secret["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)', re.IGNORECASE), r'\1***MASKED***'),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        """Mask sensitive data in the log message and its arguments."""
        if isinstance(record.msg, str):
            record.msg = self._mask_value(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._mask_value(v) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self._mask_value(arg) for arg in record.args)

        return True

    def _mask_value(self, value):
        if isinstance(value, str):
            for pattern, replacement in self.PATTERNS:
                value = pattern.sub(replacement, value)
        return value


class ConsoleHandler(logging.StreamHandler):
    """Stream handler installed by setup_logging."""


def _make_formatter(session_id: Optional[str] = None) -> logging.Formatter:
    if session_id:
        return logging.Formatter(LOG_FORMAT_WITH_SESSION.format(session_id=session_id), datefmt=DATE_FORMAT)
    return logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)


def setup_logging(
    component_name: str,
    log_level: Optional[str] = None,
    session_id: Optional[str] = None
) -> logging.Logger:
    """
    Set up logging configuration for a component.

    Module loggers (common.*, client.*, node.*, indexer.*, cli.*) propagate to
    the root logger, so the handler is installed on the root as well as on
    the component logger.

    Args:
        component_name: Name of the component (e.g., 'indexer', 'node', 'cli')
        log_level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to LOG_LEVEL env var or INFO
        session_id: Optional transfer session ID to include in log format

    Returns:
        Configured logger instance
    """
    if log_level is None:
        log_level = os.getenv('LOG_LEVEL', 'INFO')

    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if not any(isinstance(h, ConsoleHandler) for h in root_logger.handlers):
        handler = ConsoleHandler(sys.stderr)
        handler.setFormatter(_make_formatter(session_id))
        handler.addFilter(SensitiveDataFilter())
        root_logger.addHandler(handler)

    for handler in root_logger.handlers:
        if isinstance(handler, ConsoleHandler):
            handler.setLevel(level)

    logger = logging.getLogger(component_name)
    logger.setLevel(level)
    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def set_session_id(session_id: Optional[str]) -> None:
    """
    Update installed handlers to include a transfer session ID in their format.

    Args:
        session_id: Session ID to include, or None to restore the plain format
    """
    for handler in logging.getLogger().handlers:
        if isinstance(handler, ConsoleHandler):
            handler.setFormatter(_make_formatter(session_id))
