"""
Error taxonomy for the pizzeria controller.

Reconciliation failures fall into four groups:

- NotFound: the object vanished; a deleted Order ends its cycle cleanly.
- Transient: network, timeout or optimistic-concurrency failures. The
  dispatcher retries these with backoff, without limit.
- Construction: a Job cannot be built from an Order (scheme mismatch,
  unusable template). Logged; retried only on the next notification.
- Validation: the store rejected a write as invalid.

Exit Codes (CLI):
- 0: Success
- 10: Configuration error
- 11: Store error (transient or not found)
- 12: Validation or construction error
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    CONFIG_ERROR = 10
    STORE_ERROR = 11
    VALIDATION_ERROR = 12
    UNKNOWN_ERROR = 127


class PizzeriaError(Exception):
    """Base exception for pizzeria errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    retryable: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(PizzeriaError):
    """Raised for configuration-related errors."""

    exit_code = ExitCode.CONFIG_ERROR


class NotFoundError(PizzeriaError):
    """Raised when a requested object does not exist in the store."""

    exit_code = ExitCode.STORE_ERROR


class TransientError(PizzeriaError):
    """Raised for failures that may succeed when retried."""

    exit_code = ExitCode.STORE_ERROR
    retryable = True


class ConflictError(TransientError):
    """Raised when a write loses an optimistic-concurrency race."""


class ValidationError(PizzeriaError):
    """Raised when the store rejects an object as invalid."""

    exit_code = ExitCode.VALIDATION_ERROR


class ConstructionError(PizzeriaError):
    """Raised when a Job cannot be built from an Order."""

    exit_code = ExitCode.VALIDATION_ERROR


def is_retryable(exc: BaseException) -> bool:
    """Return True when the dispatcher should retry after ``exc``."""
    if isinstance(exc, PizzeriaError):
        return exc.retryable
    return isinstance(exc, (TimeoutError, ConnectionError))


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI main functions that provides unified error handling.

    Catches exceptions and converts them to appropriate exit codes with
    consistent error reporting.

    Exit codes:
        - PizzeriaError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except PizzeriaError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=e.exit_code,
                        **e.details,
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130  # Standard exit code for SIGINT
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=ExitCode.UNKNOWN_ERROR,
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator
