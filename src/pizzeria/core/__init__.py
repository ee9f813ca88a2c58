"""Core modules for pizzeria - centralized definitions and utilities."""

from pizzeria.core.errors import (
    ConfigurationError,
    ConflictError,
    ConstructionError,
    ExitCode,
    NotFoundError,
    PizzeriaError,
    TransientError,
    ValidationError,
    is_retryable,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "PizzeriaError",
    "ConfigurationError",
    "ConflictError",
    "ConstructionError",
    "NotFoundError",
    "TransientError",
    "ValidationError",
    "is_retryable",
    "main_with_error_handling",
]
