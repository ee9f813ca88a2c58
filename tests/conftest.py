"""Root test configuration."""

import logging

import pytest
import structlog
from pizzeria.config import ControllerConfig
from pizzeria.domain.models import ObjectMeta, Order
from pizzeria.index import register_job_owner_index
from pizzeria.manager import build_scheme
from pizzeria.store.memory import InMemoryStore


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


@pytest.fixture
def controller_config():
    return ControllerConfig()


@pytest.fixture
def scheme(controller_config):
    return build_scheme(controller_config)


@pytest.fixture
def store(controller_config):
    """In-memory store with the job owner index registered."""
    store = InMemoryStore()
    register_job_owner_index(store.field_indexer, controller_config)
    return store


@pytest.fixture
def make_order():
    def _make(name="margherita", namespace="default", template=None):
        return Order(
            metadata=ObjectMeta(name=name, namespace=namespace),
            job_template=template if template is not None else {},
        )

    return _make
