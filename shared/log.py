#!/usr/bin/env python3
"""
OCoup Logging Configuration

Centralized logging setup for consistent formatting across the client.
Supports both development (colored console) and production (plain) modes.

Usage:
    from shared.log import get_logger

    logger = get_logger(__name__)
    logger.info("Creating tournament...")
    logger.error("Registration failed", extra={"player": 2, "tournament_id": "t-1"})
"""

from __future__ import annotations
import logging
import sys
from pathlib import Path
from typing import Optional, Dict, Any
import os


# ========================================
#           LOGGING FORMATTERS
# ========================================

class ColoredFormatter(logging.Formatter):
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
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class GenericFormatter(logging.Formatter):
    """Prefixes the message with OCoup context taken from ``extra``."""

    def format(self, record: logging.LogRecord) -> str:
        context = []

        if hasattr(record, 'tournament_id'):
            context.append(f"tournament={str(record.tournament_id)[:8]}")
        if hasattr(record, 'player'):
            context.append(f"player={record.player}")
        if hasattr(record, 'msg_type'):
            context.append(f"msg={record.msg_type}")
        if hasattr(record, 'connection_id'):
            context.append(f"conn={record.connection_id}")

        if context:
            return f"[{' '.join(context)}] {super().format(record)}"
        return super().format(record)


class ColoredContextFormatter(GenericFormatter, ColoredFormatter):
    pass


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
        logger.info("Session open")

        # With context
        logger.warning("Dropped reply", extra={
            "player": 3,
            "msg_type": "Choose_action",
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

    if _is_development():
        _add_console_handler(logger, colored=True)
    else:
        _add_console_handler(logger, colored=False)
    if _file_logging_enabled():
        _add_file_handler(logger)

    # Prevent duplicate messages from parent loggers
    logger.propagate = False


def _get_log_level(level: Optional[str] = None) -> int:
    """Determine appropriate log level"""

    if level:
        return getattr(logging, level.upper(), logging.INFO)

    env_level = os.getenv('OCOUP_LOG_LEVEL')
    if env_level:
        return getattr(logging, env_level.upper(), logging.INFO)

    return logging.DEBUG if _is_development() else logging.INFO


def _is_development() -> bool:
    """Detect if we're in development mode"""
    return (
        os.getenv('PYTHON_ENV', '').lower() in ['dev', 'development'] or
        'pytest' in sys.modules
    )


def _file_logging_enabled() -> bool:
    return os.getenv('OCOUP_LOG_FILE', '1').lower() not in ['0', 'false', 'no']


def _add_console_handler(logger: logging.Logger, colored: bool = True) -> None:
    """Add console handler with appropriate formatter"""

    fmt = '[%(levelname)-8s][%(asctime)s][%(name)-5s]: %(message)s'
    # stdout is reserved for CLI output
    handler = logging.StreamHandler(sys.stderr)

    if colored and _supports_color():
        formatter = ColoredContextFormatter(
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
    """Add file handler for persistent logging"""

    log_dir = Path(os.getenv('OCOUP_LOG_DIR', 'logs'))
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = log_dir / "ocoup.log"
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

    if os.getenv("TERM", "") == "dumb" or os.getenv("NO_COLOR") is not None:
        return False

    if sys.platform == "win32":
        return os.getenv("ANSICON") is not None or os.getenv("WT_SESSION") is not None or os.getenv("TERM_PROGRAM") == "vscode"

    return True

# ========================================
#           CONVENIENCE FUNCTIONS
# ========================================

def configure_root_logging(level: str = "INFO") -> None:
    """
    Configure root logging for the entire application.
    Call this once at application startup.

    Already-created module loggers are re-levelled so the CLI ``--log-level``
    option applies everywhere.
    """
    root_logger = logging.getLogger()
    _configure_logger(root_logger, level)
    for name in _loggers_configured:
        logging.getLogger(name).setLevel(_get_log_level(level))


def log_protocol_message(logger: logging.Logger, level: str, message: str,
                         frame: Optional[Dict[str, Any]] = None,
                         **context: Any) -> None:
    """
    Log a protocol frame with structured context.

    Args:
        logger: Logger instance
        level: Log level ("debug", "info", "warning", "error")
        message: Log message
        frame: wire dict for automatic ``msg_type`` extraction
        **context: Additional context fields (player, tournament_id, ...)

    Example:
        log_protocol_message(logger, "debug", "Received frame",
                             frame=message.to_dict(), player=2)
    """

    extra_context: Dict[str, Any] = {}

    if frame and isinstance(frame, dict) and frame.get('type') is not None:
        extra_context['msg_type'] = frame.get('type')

    extra_context.update({k: v for k, v in context.items() if v is not None})

    log_func = getattr(logger, level.lower())
    log_func(message, extra=extra_context)
