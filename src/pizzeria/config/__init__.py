"""
Pizzeria configuration.

Provides pydantic-based settings (environment variables, .env files) and the
frozen ControllerConfig value injected into the reconciler.
"""

from pizzeria.config.settings import ControllerConfig, Settings, get_settings

__all__ = [
    "ControllerConfig",
    "Settings",
    "get_settings",
]
