"""
============================================================================
UPTIME MONITOR - LOGGING UTILITY
============================================================================
Loguru-based logging with console, rotating file, and error sinks.

Logging is configured explicitly by the entry point through
``setup_logging(settings.logging)``; importing this module has no side
effects, so tests and library users keep loguru's default stderr sink.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import sys
import time
from functools import wraps
from typing import Optional

from loguru import logger

from config.settings import LoggingSettings


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | "
    "{extra[component]}:{function}:{line} - {message}"
)


# ============================================================================
# LOGGER CONFIGURATION
# ============================================================================

def setup_logging(settings: Optional[LoggingSettings] = None) -> None:
    """
    Configure loguru sinks from the logging settings.

    Args:
        settings: Logging section of the application settings
    """
    settings = settings or LoggingSettings()

    logger.remove()
    logger.configure(extra={"component": "app"})

    log_level = settings.level.value

    # Console Handler
    if settings.console_enabled:
        logger.add(
            sys.stdout,
            format=CONSOLE_FORMAT,
            level=log_level,
            colorize=settings.console_colored,
            backtrace=True,
            diagnose=False,
        )

    # File Handler
    if settings.file_enabled:
        settings.file_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            settings.file_path,
            format=FILE_FORMAT,
            level=log_level,
            rotation=settings.file_rotation,
            retention=settings.file_retention,
            compression=settings.file_compression,
            serialize=settings.json_enabled,
            backtrace=True,
            diagnose=False,
            enqueue=True,
        )

    # Error log file (separate file for errors)
    if settings.error_file_enabled:
        settings.error_file_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            settings.error_file_path,
            format=FILE_FORMAT,
            level="ERROR",
            rotation="1 day",
            retention="7 days",
            compression=settings.file_compression,
            backtrace=True,
            diagnose=False,
            enqueue=True,
        )

    logger.info("Logging system initialized")
    logger.info(f"Log level: {log_level}")
    logger.info(f"Console logging: {settings.console_enabled}")
    logger.info(f"File logging: {settings.file_enabled}")


def get_logger(name: Optional[str] = None):
    """
    Get logger instance bound to a component name.

    Args:
        name: Component name shown in log lines

    Returns:
        Logger instance
    """
    return logger.bind(component=name or "app")


# ============================================================================
# LOG DECORATORS
# ============================================================================

def log_execution_time(func):
    """
    Decorator to log coroutine / function execution time at DEBUG level.

    Args:
        func: Function to decorate

    Returns:
        Decorated function
    """
    _log = get_logger("Performance")

    @wraps(func)
    async def async_wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
            _log.debug(
                f"{func.__qualname__} executed in {time.perf_counter() - start_time:.4f} seconds"
            )
            return result
        except Exception as e:
            _log.error(
                f"{func.__qualname__} failed after {time.perf_counter() - start_time:.4f} seconds: {e}"
            )
            raise

    @wraps(func)
    def sync_wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        try:
            result = func(*args, **kwargs)
            _log.debug(
                f"{func.__qualname__} executed in {time.perf_counter() - start_time:.4f} seconds"
            )
            return result
        except Exception as e:
            _log.error(
                f"{func.__qualname__} failed after {time.perf_counter() - start_time:.4f} seconds: {e}"
            )
            raise

    if asyncio.iscoroutinefunction(func):
        return async_wrapper
    return sync_wrapper


# ============================================================================
# SPECIALIZED LOGGERS
# ============================================================================

class MonitorLogger:
    """
    Specialized logger for monitoring operations.
    """

    def __init__(self):
        self.logger = get_logger("Monitor")

    def log_check(
        self,
        resource_id: int,
        name: str,
        success: bool,
        response_time: Optional[float] = None,
        error: Optional[str] = None,
    ) -> None:
        """Log a single probe outcome."""
        if success:
            elapsed = f"{response_time:.0f}ms" if response_time is not None else "n/a"
            self.logger.info(
                f"Check UP for resource {resource_id} ({name}) - Response time: {elapsed}"
            )
        else:
            self.logger.warning(
                f"Check DOWN for resource {resource_id} ({name}): {error or 'unknown error'}"
            )

    def log_downtime(self, resource_id: int, name: str, error: Optional[str] = None) -> None:
        """Log an incident start."""
        self.logger.error(f"Downtime detected for resource {resource_id} ({name}): {error}")

    def log_recovery(self, resource_id: int, name: str, downtime_seconds: int) -> None:
        """Log an incident resolution."""
        self.logger.info(
            f"Recovery detected for resource {resource_id} ({name}) - Downtime: {downtime_seconds}s"
        )
