"""
Logging configuration for the CMS cache layer.

Provides structured logging with correlation IDs, centralized configuration,
and multiple output formats for different environments.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional, Union
from uuid import uuid4
import traceback
from contextvars import ContextVar
from pathlib import Path


# Context variables for correlation tracking
correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
request_id: ContextVar[Optional[str]] = ContextVar('request_id', default=None)


class CorrelationFilter(logging.Filter):
    """Add correlation IDs and context to log records."""

    def filter(self, record):
        """Add correlation context to log record."""
        record.correlation_id = correlation_id.get() or 'unknown'
        record.request_id = request_id.get() or 'no-request'
        record.component = getattr(record, 'component', 'unknown')
        record.operation = getattr(record, 'operation', 'unknown')
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    # Attributes every LogRecord carries; anything else came in through ``extra``
    _RESERVED = set(vars(logging.makeLogRecord({}))) | {'message', 'asctime'}

    def __init__(self, include_extra=True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record):
        """Format log record as JSON."""
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'correlation_id': getattr(record, 'correlation_id', 'unknown'),
            'request_id': getattr(record, 'request_id', 'no-request'),
            'component': getattr(record, 'component', 'unknown'),
            'operation': getattr(record, 'operation', 'unknown'),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        if self.include_extra:
            for key, value in record.__dict__.items():
                if key in log_entry or key in self._RESERVED or key.startswith('_'):
                    continue
                try:
                    json.dumps(value)
                    log_entry[key] = value
                except (TypeError, ValueError):
                    log_entry[key] = str(value)

        return json.dumps(log_entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output."""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        """Format log record with colors."""
        color = self.COLORS.get(record.levelname, '')
        formatted = super().format(record)
        correlation_info = f"[{getattr(record, 'correlation_id', 'unknown')[:8]}]"
        component_info = f"[{getattr(record, 'component', 'unknown')}]"

        return f"{color}{formatted}{self.RESET} {component_info} {correlation_info}"


class CacheLogger:
    """Component logger that attaches an operation name and structured extras."""

    def __init__(self, name: str, component: str = None):
        self.logger = logging.getLogger(name)
        self.component = component or name.split('.')[-1]

    def _log(self, log_level: int, message: str, operation: str = None, **kwargs):
        """Internal logging method with context."""
        extra = {
            'component': self.component,
            'operation': operation or 'unknown',
            **kwargs
        }
        self.logger.log(log_level, message, extra=extra)

    def debug(self, message: str, operation: str = None, **kwargs):
        """Log debug message."""
        self._log(logging.DEBUG, message, operation, **kwargs)

    def info(self, message: str, operation: str = None, **kwargs):
        """Log info message."""
        self._log(logging.INFO, message, operation, **kwargs)

    def warning(self, message: str, operation: str = None, **kwargs):
        """Log warning message."""
        self._log(logging.WARNING, message, operation, **kwargs)

    def error(self, message: str, operation: str = None, **kwargs):
        """Log error message."""
        self._log(logging.ERROR, message, operation, **kwargs)

    def exception(self, message: str, operation: str = None, **kwargs):
        """Log exception with traceback."""
        extra = {
            'component': self.component,
            'operation': operation or 'exception',
            **kwargs
        }
        self.logger.exception(message, extra=extra)


class LoggingConfig:
    """Centralized logging configuration."""

    DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    @classmethod
    def setup_logging(
        cls,
        level: Union[str, int] = logging.INFO,
        format_type: str = 'colored',
        log_file: Optional[str] = None,
        console_output: bool = True,
        correlation_tracking: bool = True
    ):
        """
        Setup logging for the cache layer.

        Args:
            level: Logging level
            format_type: 'json', 'colored', or 'standard'
            log_file: Optional log file path
            console_output: Enable console output
            correlation_tracking: Enable correlation ID tracking
        """
        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        correlation_filter = CorrelationFilter() if correlation_tracking else None

        if console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(level)
            console_handler.setFormatter(cls._make_formatter(format_type))
            if correlation_filter:
                console_handler.addFilter(correlation_filter)
            root_logger.addHandler(console_handler)

        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(level)
            file_handler.setFormatter(JSONFormatter())  # Always use JSON for files
            if correlation_filter:
                file_handler.addFilter(correlation_filter)
            root_logger.addHandler(file_handler)

        cls._configure_component_loggers()

        logger = CacheLogger(__name__, 'logging_config')
        logger.info(
            "Logging system initialized",
            operation="setup_logging",
            format_type=format_type,
            log_file=log_file,
        )

    @classmethod
    def _make_formatter(cls, format_type: str) -> logging.Formatter:
        if format_type == 'json':
            return JSONFormatter()
        if format_type == 'colored':
            return ColoredFormatter(cls.DEFAULT_FORMAT)
        return logging.Formatter(cls.DEFAULT_FORMAT)

    @classmethod
    def _configure_component_loggers(cls):
        """Reduce third-party noise."""
        third_party_loggers = {
            'uvicorn': logging.WARNING,
            'fastapi': logging.WARNING,
            'httpx': logging.WARNING,
        }

        for logger_name, level in third_party_loggers.items():
            logging.getLogger(logger_name).setLevel(level)


class CorrelationContext:
    """Context manager for correlation tracking."""

    def __init__(self, correlation_id_value: str = None, request_id_value: str = None):
        self.correlation_id_value = correlation_id_value or str(uuid4())
        self.request_id_value = request_id_value
        self.correlation_token = None
        self.request_token = None

    def __enter__(self):
        self.correlation_token = correlation_id.set(self.correlation_id_value)
        if self.request_id_value:
            self.request_token = request_id.set(self.request_id_value)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.correlation_token:
            correlation_id.reset(self.correlation_token)
        if self.request_token:
            request_id.reset(self.request_token)


def get_logger(name: str, component: str = None) -> CacheLogger:
    """Get a component logger instance."""
    return CacheLogger(name, component)


def get_correlation_id() -> Optional[str]:
    """Get current correlation ID."""
    return correlation_id.get()
