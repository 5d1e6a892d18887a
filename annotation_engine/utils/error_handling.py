"""Standardized error handling utilities for the learning paths."""

import functools
import logging
from collections.abc import Callable
from typing import Any, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


def create_error_response(
    error: Exception | str,
    operation: str,
    context: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Create a standardized error payload for a swallowed learning failure.

    Args:
        error: The error that occurred
        operation: Name of the learning operation that failed
        context: Extra identifying fields (species, feature, event id)

    Returns:
        Dictionary with error information suitable for logging

    """
    error_message = str(error) if isinstance(error, Exception) else error

    return {
        "operation": operation,
        "error": error_message,
        "error_type": type(error).__name__ if isinstance(error, Exception) else "str",
        "context": dict(context or {}),
    }


def swallow_learning_errors(default: T) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorate a learning operation so failures are logged, never raised.

    Review actions must succeed even when the learning path behind them
    fails, so any exception is logged with its operation name and the
    decorated call returns ``default`` instead.

    Args:
        default: Value returned when the wrapped call raises

    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                response = create_error_response(e, func.__qualname__)
                logger.exception(f"Learning operation failed: {response}")
                return default

        return wrapper

    return decorator
