#!/usr/bin/env python3
"""
netsock Logging Configuration

Centralized logging setup for consistent formatting across the project.
Supports both development (console + file) and production (console) modes,
and provides the LogSink adapter that socket handles report failures to.

Usage:
    from shared.log import get_logger

    logger = get_logger(__name__)
    logger.info("Listening...")
    logger.warning("recv failed", extra={"fd": 7, "kind": "TIMEOUT"})
"""

from __future__ import annotations
import logging
import sys
from pathlib import Path
from typing import Optional, Dict, Any, Protocol
import os


# ========================================
#           LOGGING FORMATTERS
# ========================================

class GenericFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        # Work on a copy so other handlers see the original record
        record = logging.makeLogRecord(record.__dict__)

        # Socket context passed through `extra=`
        context = []

        if hasattr(record, 'fd'):
            context.append(f"fd={record.fd}")
        if hasattr(record, 'kind'):
            context.append(f"kind={record.kind}")
        if hasattr(record, 'peer'):
            context.append(f"peer={record.peer}")
        if hasattr(record, 'code'):
            context.append(f"code={record.code}")

        if context:
            context_str = f"[{' '.join(context)}] "
            record.msg = f"{context_str}{record.msg}"

        return super().format(record)


class ColoredFormatter(GenericFormatter):
    """Colored formatter for console output"""

    # ANSI Color codes
    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'       # Reset
    }

    def format(self, record: logging.LogRecord) -> str:
        # Add color to level name
        if record.levelname in self.COLORS:
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{self.COLORS['RESET']}"

        return super().format(record)


# ========================================
#           LOGGING CONFIGURATION
# ========================================

_loggers_configured = set()

def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a configured logger for the given module.

    Args:
        name: Usually __name__ from the calling module
        level: Override log level ("DEBUG", "INFO", "WARNING", "ERROR")

    Returns:
        Configured logger instance

    Examples:
        logger = get_logger(__name__)
        logger.info("Server starting")

        # With context
        logger.warning("connect failed", extra={
            "fd": 5,
            "kind": "CONNECTION_REFUSED",
            "peer": "127.0.0.1:9000",
        })
    """
    logger = logging.getLogger(name)

    # Only configure each logger once
    if name not in _loggers_configured:
        _configure_logger(logger, level)
        _loggers_configured.add(name)

    return logger


def _configure_logger(logger: logging.Logger, level: Optional[str] = None) -> None:
    """Configure a logger with appropriate handlers and formatters"""

    log_level = _get_log_level(level)
    logger.setLevel(log_level)

    # Clear existing handlers to avoid duplicates
    logger.handlers.clear()

    # Colors only while developing; the file handler is opt-in via NETSOCK_LOG_DIR
    _add_console_handler(logger, colored=_is_development())
    if _file_logging_enabled():
        _add_file_handler(logger)

    # Prevent duplicate messages from parent loggers
    logger.propagate = False


def _get_log_level(level: Optional[str] = None) -> int:
    """Determine appropriate log level"""

    level = level or os.getenv('NETSOCK_LOG_LEVEL')
    if level:
        return getattr(logging, level.upper(), logging.INFO)

    # Default based on environment
    return logging.DEBUG if _is_development() else logging.INFO


def _is_development() -> bool:
    """Detect if we're in development mode"""
    return (
        os.getenv('PYTHON_ENV', '').lower() in ['dev', 'development'] or
        'pytest' in sys.modules
    )


def _file_logging_enabled() -> bool:
    return os.getenv('NETSOCK_LOG_DIR') is not None


def _add_console_handler(logger: logging.Logger, colored: bool = True) -> None:
    """Add console handler with appropriate formatter"""

    fmt = '[%(levelname)-8s][%(asctime)s][%(name)-5s]: %(message)s'
    handler = logging.StreamHandler(sys.stderr)

    if colored and _supports_color():
        formatter = ColoredFormatter(
            fmt=fmt,
            datefmt='%H:%M:%S'
        )
    else:
        formatter = GenericFormatter(
            fmt=fmt,
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _add_file_handler(logger: logging.Logger) -> None:
    """Add file handler under NETSOCK_LOG_DIR"""

    log_dir = Path(os.getenv('NETSOCK_LOG_DIR', 'logs'))
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = log_dir / "netsock.log"
    handler = logging.FileHandler(log_file)

    formatter = GenericFormatter(
        fmt='%(asctime)s | %(name)-30s | %(levelname)-8s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _supports_color() -> bool:
    """Check if terminal supports color output"""

    if not (hasattr(sys.stderr, "isatty") and sys.stderr.isatty()):
        return False

    # TERM should not be dumb
    if os.getenv("TERM", "") == "dumb":
        return False

    if sys.platform == "win32":
        # On modern Windows terminals, ANSI colors are supported
        return os.getenv("ANSICON") is not None or os.getenv("WT_SESSION") is not None or os.getenv("TERM_PROGRAM") == "vscode" or "WindowsTerminal" in os.getenv("TERM", "")

    return True


# ========================================
#           CONVENIENCE FUNCTIONS
# ========================================

def configure_root_logging(level: str = "INFO") -> None:
    """
    Configure root logging for the entire application.
    Call this once at application startup.

    Args:
        level: Root log level ("DEBUG", "INFO", "WARNING", "ERROR")
    """
    root_logger = logging.getLogger()
    _configure_logger(root_logger, level)


def log_transport_event(logger: logging.Logger, level: str, message: str,
                        **context: Any) -> None:
    """
    Log a transport event with structured context.

    Args:
        logger: Logger instance
        level: Log level ("debug", "info", "warning", "error")
        message: Log message
        **context: Context fields (fd, kind, peer, code, ...)

    Example:
        log_transport_event(logger, "warning", "bind failed",
                            fd=4, kind="ADDRESS_IN_USE")
    """
    extra_context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}
    log_func = getattr(logger, level.lower())
    log_func(message, extra=extra_context)


# ========================================
#           LOGGING SINK
# ========================================

class LogSink(Protocol):
    """Anything socket handles can report diagnostics to."""

    def log(self, message: str, code: int) -> None:
        ...


class LoggerSink:
    """LogSink backed by a standard logger. Codes other than 0 log as warnings."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or get_logger("netsock.sink")

    def log(self, message: str, code: int) -> None:
        level = "warning" if code else "info"
        log_transport_event(self.logger, level, message, code=code)


class NullSink:
    def log(self, message: str, code: int) -> None:
        pass
