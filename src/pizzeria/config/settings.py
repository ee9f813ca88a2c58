"""
Application settings using Pydantic.

Provides environment-based configuration loading with PIZZERIA_ prefix.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PIZZERIA_",
    )

    # Kubernetes connection
    kubeconfig: str | None = None
    kube_context: str | None = None
    namespace: str | None = None  # None watches all namespaces
    request_timeout: float = 10.0

    # Order resource
    group: str = "resturant.foodie.io"
    version: str = "v1"
    kind: str = "Pizza"
    plural: str = "pizzas"
    job_owner_key: str = ".metadata.controller"

    # Pricing
    ready_price: int = 123

    # Dispatcher
    workers: int = 2
    reconcile_timeout: float = 30.0
    backoff_initial: float = 0.005
    backoff_max: float = 1000.0
    backoff_jitter: float = 1.0

    # Backends
    store_backend: str = "kubernetes"  # kubernetes, memory

    # Logging
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _check_deadlines(self) -> Settings:
        # A reconcile makes up to three API calls, each bounded by request_timeout.
        if self.reconcile_timeout < 3 * self.request_timeout:
            raise ValueError(
                f"reconcile_timeout ({self.reconcile_timeout}s) must be at least three times "
                f"request_timeout ({self.request_timeout}s)"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


@dataclass(frozen=True, slots=True)
class ControllerConfig:
    """Values the reconciler needs about the resource it manages."""

    group: str = "resturant.foodie.io"
    version: str = "v1"
    kind: str = "Pizza"
    plural: str = "pizzas"
    job_owner_key: str = ".metadata.controller"

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"

    @classmethod
    def from_settings(cls, settings: Settings) -> ControllerConfig:
        return cls(
            group=settings.group,
            version=settings.version,
            kind=settings.kind,
            plural=settings.plural,
            job_owner_key=settings.job_owner_key,
        )
