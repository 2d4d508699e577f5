"""
Structured logging for the operator.

Configures structlog with console output in development and JSON output in
production, bridges the standard library logging tree, and injects the API
currently being reconciled into every event.
"""

import asyncio
import logging
import logging.config
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional

import structlog
from structlog.types import FilteringBoundLogger

# Context variables for reconciliation tracking
api_name_context: ContextVar[Optional[str]] = ContextVar("api_name", default=None)
operation_context: ContextVar[Optional[str]] = ContextVar("operation", default=None)


def add_context_processor(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add reconciliation context to log events."""
    api_name = api_name_context.get()
    if api_name and "api_name" not in event_dict:
        event_dict["api_name"] = api_name

    operation = operation_context.get()
    if operation and "operation" not in event_dict:
        event_dict["operation"] = operation

    event_dict["timestamp"] = time.time()

    return event_dict


def setup_logging(
    log_level: str = "INFO",
    environment: str = "development",
    log_file: Optional[Path] = None
) -> None:
    """
    Set up structured logging configuration.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        environment: Environment name (development, staging, production)
        log_file: Optional log file path
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        add_context_processor,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    if environment == "production":
        processors.extend([
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer()
        ])
    else:
        processors.extend([
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
        ])

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level.upper())
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "format": "%(asctime)s %(name)s %(levelname)s %(message)s",
                "()": "pythonjsonlogger.jsonlogger.JsonFormatter"
            },
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level.upper(),
                "formatter": "json" if environment == "production" else "standard",
                "stream": sys.stdout
            }
        },
        "root": {
            "level": log_level.upper(),
            "handlers": ["console"]
        },
        "loggers": {
            # the kubernetes client is very chatty at DEBUG
            "kubernetes": {"level": "WARNING"},
            "urllib3": {"level": "WARNING"},
        }
    }

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logging_config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level.upper(),
            "formatter": "json",
            "filename": str(log_file),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5
        }
        logging_config["root"]["handlers"].append("file")

    logging.config.dictConfig(logging_config)


def get_logger(name: Optional[str] = None) -> FilteringBoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (defaults to caller's module name)

    Returns:
        FilteringBoundLogger: Configured logger instance
    """
    if name is None:
        import inspect
        frame = inspect.currentframe()
        if frame and frame.f_back:
            name = frame.f_back.f_globals.get("__name__", "servelane")

    return structlog.get_logger(name)


@contextmanager
def bind_api_context(api_name: str, operation: Optional[str] = None) -> Iterator[None]:
    """Attach an API name (and optionally the entry operation) to every log event in scope."""
    api_token = api_name_context.set(api_name)
    op_token = operation_context.set(operation) if operation else None
    try:
        yield
    finally:
        api_name_context.reset(api_token)
        if op_token is not None:
            operation_context.reset(op_token)


def log_execution_time(operation_name: Optional[str] = None):
    """
    Decorator to log function execution time.

    Works for both plain functions and coroutine functions.

    Args:
        operation_name: Optional operation name (defaults to function name)
    """
    def decorator(func: Callable) -> Callable:
        operation = operation_name or f"{func.__module__}.{func.__name__}"

        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                start_time = time.time()
                logger = get_logger(func.__module__)
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    duration_ms = (time.time() - start_time) * 1000
                    logger.info("Operation performance", operation=operation,
                                duration_ms=duration_ms, success=False, error=str(e))
                    raise
                duration_ms = (time.time() - start_time) * 1000
                logger.info("Operation performance", operation=operation,
                            duration_ms=duration_ms, success=True)
                return result

            return async_wrapper

        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            logger = get_logger(func.__module__)
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration_ms = (time.time() - start_time) * 1000
                logger.info("Operation performance", operation=operation,
                            duration_ms=duration_ms, success=False, error=str(e))
                raise
            duration_ms = (time.time() - start_time) * 1000
            logger.info("Operation performance", operation=operation,
                        duration_ms=duration_ms, success=True)
            return result

        return wrapper
    return decorator


__all__ = [
    "setup_logging",
    "get_logger",
    "bind_api_context",
    "log_execution_time",
    "api_name_context",
    "operation_context",
]
