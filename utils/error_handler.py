"""Error handling utilities for the ABX selector.

Provides context managers and helpers for consistent error handling
with automatic logging and optional error propagation.

Usage:
    # Best-effort teardown (logs but doesn't raise)
    with safe_operation("Closing output stream", silent=True):
        stream.close()

    # Calling user callbacks from engine threads
    safe_call(on_progress, 42.0, operation_name="progress callback")
"""

from contextlib import contextmanager
from typing import Optional, Callable, Any

from utils.logger import get_logger

logger = get_logger(__name__)


@contextmanager
def safe_operation(
    operation_name: str,
    silent: bool = False,
    log_level: str = "warning",
):
    """Context manager for safe operations with automatic error logging.

    Captures exceptions, logs them with context, and optionally suppresses propagation.

    Args:
        operation_name: Human-readable description of the operation
        silent: If True, suppresses exception propagation (default: False)
        log_level: Logging level for errors - "debug", "info", "warning", "error" (default: "warning")

    Raises:
        Exception: Re-raises caught exception if silent=False

    Examples:
        >>> with safe_operation("Releasing mixer pad", silent=True):
        ...     mixer.release_pad(pad)  # Logs but doesn't raise on error
    """
    try:
        yield
    except Exception as e:
        log_func = getattr(logger, log_level, logger.warning)

        log_func(
            f"Error during {operation_name}: {type(e).__name__}: {e}",
            exc_info=True
        )

        if not silent:
            raise


def safe_call(
    func: Callable,
    *args,
    operation_name: Optional[str] = None,
    silent: bool = True,
    default_return: Any = None,
    **kwargs
) -> Any:
    """Safely call a function with error handling.

    Args:
        func: Callable to execute
        *args: Positional arguments to pass to func
        operation_name: Description for logging (defaults to func.__name__)
        silent: If True, returns default_return on error; if False, re-raises
        default_return: Value to return if function fails and silent=True
        **kwargs: Keyword arguments to pass to func

    Returns:
        Result of func() if successful, or default_return if error and silent=True
    """
    op_name = operation_name or f"calling {getattr(func, '__name__', repr(func))}"

    try:
        return func(*args, **kwargs)
    except Exception as e:
        logger.warning(
            f"Error during {op_name}: {type(e).__name__}: {e}",
            exc_info=True
        )
        if not silent:
            raise
        return default_return


def log_exception(
    exception: BaseException,
    context: str = "",
    level: str = "error",
    include_traceback: bool = True
):
    """Log an exception with optional context.

    For when the caller handles the exception itself but still wants it logged.

    Examples:
        >>> try:
        ...     selector.select_source(9)
        ... except IndexOutOfRange as e:
        ...     log_exception(e, "Selecting source", level="warning")
    """
    log_func = getattr(logger, level, logger.error)

    prefix = f"{context}: " if context else ""
    message = f"{prefix}{type(exception).__name__}: {exception}"

    if include_traceback:
        log_func(message, exc_info=exception)
    else:
        log_func(message)
