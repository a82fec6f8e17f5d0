"""
Structured logging configuration and utilities
"""

import logging
import logging.handlers
import json
import traceback
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
from contextlib import contextmanager

from infrastructure.config.settings import get_config, LoggingConfig


# Attributes present on every LogRecord; anything else came in through `extra`
_RESERVED_RECORD_FIELDS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'taskName', 'message', 'asctime'
}


class StructuredFormatter(logging.Formatter):
    """
    Custom formatter that outputs structured JSON logs
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON"""

        # Base log structure
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Add exception information if present
        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info)
            }

        # Add extra fields from record
        extra_fields = {
            key: value for key, value in record.__dict__.items()
            if key not in _RESERVED_RECORD_FIELDS
        }

        if extra_fields:
            log_data["extra"] = extra_fields

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(logging_config: Optional[LoggingConfig] = None, debug: Optional[bool] = None) -> logging.Logger:
    """
    Set up structured logging for the application

    Args:
        logging_config: Logging settings (defaults to the global configuration)
        debug: Use human-readable console output instead of JSON

    Returns:
        logging.Logger: Configured root logger
    """
    if logging_config is None or debug is None:
        config = get_config()
        logging_config = logging_config or config.logging
        debug = config.debug if debug is None else debug

    # Create logs directory if it doesn't exist
    if logging_config.enable_file_logging:
        log_file_path = Path(logging_config.log_file)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, logging_config.level))

    # Clear existing handlers
    root_logger.handlers.clear()

    # Console handler with structured formatting
    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, logging_config.level))

    if debug:
        # Human-readable format for development
        console_formatter = logging.Formatter(
            logging_config.format + ' [%(filename)s:%(lineno)d]'
        )
    else:
        # Structured JSON format for production
        console_formatter = StructuredFormatter()

    console_handler.setFormatter(console_formatter)
    root_logger.addHandler(console_handler)

    # File handler with structured formatting (if enabled)
    if logging_config.enable_file_logging:
        file_handler = logging.handlers.RotatingFileHandler(
            logging_config.log_file,
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5
        )
        file_handler.setLevel(logging.DEBUG)  # Always debug level for files
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the specified name

    Args:
        name: Logger name (typically __name__)

    Returns:
        logging.Logger: Configured logger
    """
    return logging.getLogger(name)


def mask_token(token: Optional[str]) -> str:
    """Shorten a secret token to a loggable prefix"""
    if not token:
        return "<empty>"
    return f"{token[:8]}..."


@contextmanager
def log_execution_time(logger: logging.Logger, operation: str, **extra_fields):
    """
    Context manager to log execution time of operations

    Args:
        logger: Logger instance
        operation: Description of the operation
        **extra_fields: Additional fields to include in log
    """
    start_time = datetime.now()

    try:
        logger.debug(f"Starting {operation}", extra={
            "operation": operation,
            "start_time": start_time.isoformat(),
            **extra_fields
        })

        yield

        end_time = datetime.now()
        duration = (end_time - start_time).total_seconds()

        logger.debug(f"Completed {operation}", extra={
            "operation": operation,
            "start_time": start_time.isoformat(),
            "end_time": end_time.isoformat(),
            "duration_seconds": duration,
            "status": "success",
            **extra_fields
        })

    except Exception as e:
        end_time = datetime.now()
        duration = (end_time - start_time).total_seconds()

        # Domain failures are logged by the caller; only record the timing here
        logger.debug(f"Failed {operation}: {type(e).__name__}", extra={
            "operation": operation,
            "start_time": start_time.isoformat(),
            "end_time": end_time.isoformat(),
            "duration_seconds": duration,
            "status": "error",
            "error_type": type(e).__name__,
            **extra_fields
        })

        raise


def log_auth_event(logger: logging.Logger, event_type: str, **details):
    """
    Log authentication events for auditing

    Args:
        logger: Logger instance
        event_type: Type of event (e.g., "login_success", "logout", "lockout")
        **details: Additional event details (never passwords or full tokens)
    """
    level = logging.WARNING if event_type in {"login_failure", "lockout"} else logging.INFO
    logger.log(level, f"Auth event: {event_type}", extra={
        "event_type": "auth_event",
        "auth_event_type": event_type,
        "timestamp": datetime.now().isoformat(),
        **details
    })

