"""
Logging configuration and utilities.
"""

import inspect
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pubsub_service.config import Config


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class CloudLoggingJSONFormatter(logging.Formatter):
    """
    Custom formatter that outputs JSON for Cloud Logging when message contains structured data.
    Cloud Logging automatically parses JSON from stdout if the line starts with '{'.
    """

    def format(self, record):
        message = record.getMessage()
        if message.strip().startswith("{"):
            try:
                parsed = json.loads(message)
            except (json.JSONDecodeError, ValueError, TypeError):
                parsed = None
            if isinstance(parsed, dict):
                log_entry = {
                    "severity": record.levelname,
                    "message": parsed.get("message", str(message)),
                    "timestamp": _utc_timestamp(),
                    "logger": record.name,
                }
                for key, value in parsed.items():
                    if key != "message":
                        log_entry[key] = value
                if record.exc_info:
                    log_entry["exception"] = self.formatException(record.exc_info)
                return json.dumps(log_entry, default=str)

        # Standard format for non-JSON messages
        return super().format(record)


def setup_logger(
    service_name: Optional[str] = None, log_level: Optional[str] = None
) -> logging.Logger:
    """Setup and configure logger for a service."""

    name = service_name or Config.SERVICE_NAME
    level = log_level or Config.LOG_LEVEL

    # Configure root logger so module loggers inherit the handler
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    formatter = CloudLoggingJSONFormatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Host frameworks may have installed a console handler already
    has_console_handler = any(
        isinstance(h, logging.StreamHandler) for h in root_logger.handlers
    )
    if not has_console_handler:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, level.upper()))
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    return logging.getLogger(name)


def get_logger(name: str) -> logging.Logger:
    """Get or create a logger with the given name, setting it up if needed."""
    logger = logging.getLogger(name)

    if not logger.handlers and not logging.getLogger().handlers:
        setup_logger()

    return logger


class StructuredLogger:
    """
    Wrapper around logger that adds structured fields for Google Cloud Logging.
    This allows filtering by fields like topic_name or correlation_id in Cloud Logging Explorer.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def _format_structured_message(
        self,
        message: str,
        correlation_id: Optional[str] = None,
        **kwargs,
    ) -> str:
        """
        Format message with structured fields for Cloud Logging.

        When any structured field is present the whole entry is rendered as a
        JSON object, which CloudLoggingJSONFormatter then expands into a
        Cloud Logging jsonPayload. The correlation_id, when given, is also
        prefixed to the readable message.
        """
        formatted_message = message
        if correlation_id:
            formatted_message = f"[{correlation_id}] {message}"

        fields = {key: value for key, value in kwargs.items() if value is not None}
        if correlation_id or fields:
            structured_data: Dict[str, Any] = {"message": formatted_message}
            if correlation_id:
                structured_data["correlation_id"] = correlation_id
            structured_data.update(fields)
            return json.dumps(structured_data, default=str)
        return formatted_message

    def debug(self, message: str, correlation_id: Optional[str] = None, **kwargs):
        """Log debug message with optional structured fields."""
        self.logger.debug(
            self._format_structured_message(message, correlation_id, **kwargs)
        )

    def info(self, message: str, correlation_id: Optional[str] = None, **kwargs):
        """Log info message with optional structured fields."""
        self.logger.info(
            self._format_structured_message(message, correlation_id, **kwargs)
        )

    def warning(self, message: str, correlation_id: Optional[str] = None, **kwargs):
        """Log warning message with optional structured fields."""
        self.logger.warning(
            self._format_structured_message(message, correlation_id, **kwargs)
        )

    def error(
        self,
        message: str,
        correlation_id: Optional[str] = None,
        exc_info: Any = False,
        **kwargs,
    ):
        """Log error message with optional structured fields."""
        self.logger.error(
            self._format_structured_message(message, correlation_id, **kwargs),
            exc_info=exc_info,
        )

    def __getattr__(self, name: str):
        """Delegate other attributes to the underlying logger."""
        return getattr(self.logger, name)


def get_structured_logger(name: str) -> StructuredLogger:
    """
    Get a structured logger.

    Usage:
        logger = get_structured_logger(__name__)
        logger.info("Published", topic_name="orders")

    In Cloud Logging Explorer, you can then filter by:
        jsonPayload.topic_name="orders"
    """
    return StructuredLogger(get_logger(name))


def _caller_name(logger_name: Optional[str]) -> str:
    if logger_name is not None:
        return logger_name
    frame = inspect.currentframe()
    try:
        # _caller_name <- log_* <- caller
        caller_frame = frame.f_back.f_back
        return caller_frame.f_globals.get("__name__", "root")
    finally:
        del frame


def log_debug(
    message: str, correlation_id: str = "", logger_name: Optional[str] = None, **kwargs
):
    """Log a debug message with correlation_id and structured fields."""
    get_structured_logger(_caller_name(logger_name)).debug(
        message, correlation_id=correlation_id, **kwargs
    )


def log_info(
    message: str, correlation_id: str = "", logger_name: Optional[str] = None, **kwargs
):
    """
    Log an info message with correlation_id (can be empty string).

    Args:
        message: The log message
        correlation_id: Correlation_id for request tracing (can be empty string)
        logger_name: Optional logger name (defaults to caller's module name)
        **kwargs: Additional structured fields to include in the log (e.g., topic_name)
    """
    get_structured_logger(_caller_name(logger_name)).info(
        message, correlation_id=correlation_id, **kwargs
    )


def log_warning(
    message: str, correlation_id: str = "", logger_name: Optional[str] = None, **kwargs
):
    """Log a warning message with correlation_id and structured fields."""
    get_structured_logger(_caller_name(logger_name)).warning(
        message, correlation_id=correlation_id, **kwargs
    )


def log_error(
    message: str,
    correlation_id: str = "",
    logger_name: Optional[str] = None,
    exc_info: Any = False,
    **kwargs,
):
    """
    Log an error message with correlation_id and structured fields.

    Args:
        message: The log message
        correlation_id: Correlation_id for request tracing (can be empty string)
        logger_name: Optional logger name (defaults to caller's module name)
        exc_info: Exception info forwarded to the logging module
        **kwargs: Additional structured fields to include in the log
    """
    get_structured_logger(_caller_name(logger_name)).error(
        message, correlation_id=correlation_id, exc_info=exc_info, **kwargs
    )
