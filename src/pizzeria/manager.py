"""Wire the store, index, reconciler, dispatcher and watches together."""

from __future__ import annotations

import asyncio

import structlog

from pizzeria.config import ControllerConfig, Settings
from pizzeria.core.errors import ConfigurationError
from pizzeria.dispatcher import BackoffPolicy, Dispatcher
from pizzeria.domain.models import GroupVersionKind, ObjectKey, Order
from pizzeria.index import register_job_owner_index
from pizzeria.ownership import Scheme
from pizzeria.pricing import FixedPricePolicy
from pizzeria.reconciler import OrderReconciler, Result
from pizzeria.store import InMemoryStore, KubernetesStore, Store
from pizzeria.watch import watch_orders

logger = structlog.get_logger()


def build_scheme(config: ControllerConfig) -> Scheme:
    scheme = Scheme()
    scheme.register(Order, GroupVersionKind(config.group, config.version, config.kind))
    return scheme


def create_store(settings: Settings, config: ControllerConfig) -> Store:
    if settings.store_backend == "memory":
        return InMemoryStore()
    if settings.store_backend == "kubernetes":
        return KubernetesStore(
            config=config,
            namespace=settings.namespace,
            kubeconfig=settings.kubeconfig,
            context=settings.kube_context,
            request_timeout=settings.request_timeout,
        )
    raise ConfigurationError(
        f"unknown store backend {settings.store_backend!r}",
        details={"store_backend": settings.store_backend},
    )


class Manager:
    """Owns one controller: its store, reconciler and dispatcher."""

    def __init__(self, settings: Settings, store: Store | None = None) -> None:
        self.settings = settings
        self.config = ControllerConfig.from_settings(settings)
        self.scheme = build_scheme(self.config)
        self.store = store if store is not None else create_store(settings, self.config)
        register_job_owner_index(self.store.field_indexer, self.config)

        self.reconciler = OrderReconciler(
            store=self.store,
            scheme=self.scheme,
            config=self.config,
            pricing=FixedPricePolicy(settings.ready_price),
        )
        self.dispatcher = Dispatcher(
            self.reconciler.reconcile,
            workers=settings.workers,
            backoff=BackoffPolicy(
                initial=settings.backoff_initial,
                maximum=settings.backoff_max,
                jitter=settings.backoff_jitter,
            ),
            timeout=settings.reconcile_timeout,
        )

    async def run(self) -> None:
        """Reconcile orders as notifications arrive, until cancelled."""
        logger.info(
            "manager_started",
            kind=self.config.kind,
            api_version=self.config.api_version,
            namespace=self.settings.namespace or "*",
        )
        watcher = asyncio.create_task(watch_orders(self.store, self.dispatcher, self.config))
        try:
            await asyncio.gather(self.dispatcher.run(), watcher)
        finally:
            watcher.cancel()
            await asyncio.gather(watcher, return_exceptions=True)
            await self.dispatcher.shutdown()
            logger.info("manager_stopped")

    async def reconcile(self, key: ObjectKey) -> Result:
        """Run a single reconciliation cycle for ``key`` under the configured deadline."""
        return await asyncio.wait_for(
            self.reconciler.reconcile(key), self.settings.reconcile_timeout
        )
