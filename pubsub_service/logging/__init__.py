"""
Logging utilities for the Pub/Sub service.
"""

from .logger import setup_logger, get_logger, get_structured_logger, StructuredLogger, CloudLoggingJSONFormatter, log_info, log_warning, log_error, log_debug

__all__ = ["setup_logger", "get_logger", "get_structured_logger", "StructuredLogger", "CloudLoggingJSONFormatter", "log_info", "log_warning", "log_error", "log_debug"]
