"""
Kubernetes store.

Reads and writes Orders (a custom resource) and batch/v1 Jobs through the
official kubernetes client. The client is synchronous, so API calls run in
the default executor and watches run in daemon threads that hand events back
to the event loop.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from functools import partial
from typing import Any, AsyncIterator, Callable

import structlog
import urllib3

from pizzeria.config import ControllerConfig
from pizzeria.core.errors import (
    ConfigurationError,
    ConflictError,
    NotFoundError,
    PizzeriaError,
    TransientError,
    ValidationError,
)
from pizzeria.domain.models import (
    EventType,
    Job,
    JobEvent,
    Notification,
    ObjectKey,
    Order,
    OrderEvent,
)
from pizzeria.index import FieldIndexer

logger = structlog.get_logger()

RETRYABLE_STATUSES = (408, 429, 500, 502, 503, 504)


def translate_api_error(exc: Exception, **details: Any) -> PizzeriaError:
    """Map a kubernetes client failure onto the controller's error taxonomy."""
    from kubernetes.client.exceptions import ApiException

    if isinstance(exc, ApiException):
        status = exc.status or 0
        message = f"HTTP {status}: {exc.reason}"
        details = {"status": status, **details}
        if status == 404:
            return NotFoundError(message, details=details)
        if status == 409:
            return ConflictError(message, details=details)
        if status in RETRYABLE_STATUSES or status == 0:
            return TransientError(message, details=details)
        return ValidationError(message, details=details)
    if isinstance(exc, (urllib3.exceptions.HTTPError, TimeoutError, ConnectionError)):
        return TransientError(f"{type(exc).__name__}: {exc}", details=details)
    raise exc


@dataclass
class KubernetesStore:
    """
    Store backed by the Kubernetes API.

    Configuration:
        config: Group/version/kind of the Order resource
        namespace: Namespace to manage (None = all namespaces)
        kubeconfig: Path to kubeconfig file (optional)
        context: Kubeconfig context to use (optional)
        request_timeout: Deadline for every API request, in seconds
        watch_timeout: Server-side timeout of one watch request, in seconds
    """

    config: ControllerConfig = field(default_factory=ControllerConfig)
    namespace: str | None = None
    kubeconfig: str | None = None
    context: str | None = None
    request_timeout: float = 10.0
    watch_timeout: int = 300
    watch_retry_delay: float = 5.0
    field_indexer: FieldIndexer = field(default_factory=FieldIndexer)

    # Internal state
    _api_client: Any = field(default=None, repr=False, compare=False)
    _initialized: bool = field(default=False, repr=False, compare=False)

    def _ensure_initialized(self) -> None:
        """Initialize Kubernetes client if not already done."""
        if self._initialized:
            return

        from kubernetes import client, config

        # Try in-cluster config first, then kubeconfig
        try:
            config.load_incluster_config()
        except config.ConfigException:
            try:
                config.load_kube_config(
                    config_file=self.kubeconfig,
                    context=self.context,
                )
            except config.ConfigException as e:
                raise ConfigurationError(f"Failed to load Kubernetes config: {e}") from e

        self._api_client = client.ApiClient()
        self._initialized = True

    def _get_custom_api(self) -> Any:
        """Get CustomObjectsApi client."""
        self._ensure_initialized()
        from kubernetes import client

        return client.CustomObjectsApi(self._api_client)

    def _get_batch_api(self) -> Any:
        """Get BatchV1Api client."""
        self._ensure_initialized()
        from kubernetes import client

        return client.BatchV1Api(self._api_client)

    async def _run_sync(self, func: Any, *args: Any, **kwargs: Any) -> Any:
        """Run synchronous kubernetes API call in executor.

        The executor thread cannot be interrupted. When the caller is cancelled
        (for example by the reconcile deadline) the cancellation is held back
        until the call has returned, so a write is either applied or failed by
        the time the order is released for another attempt.
        """
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, partial(func, *args, **kwargs))
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            await asyncio.wait([future])
            if not future.cancelled():
                future.exception()  # mark as retrieved
            raise

    async def _call(self, func: Any, *args: Any, details: dict[str, Any], **kwargs: Any) -> Any:
        try:
            return await self._run_sync(func, *args, _request_timeout=self.request_timeout, **kwargs)
        except PizzeriaError:
            raise
        except Exception as exc:
            raise translate_api_error(exc, **details) from exc

    def _serialize(self, obj: Any) -> dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        return self._api_client.sanitize_for_serialization(obj)

    # Orders

    async def get_order(self, key: ObjectKey) -> Order:
        api = self._get_custom_api()
        raw = await self._call(
            api.get_namespaced_custom_object,
            self.config.group,
            self.config.version,
            key.namespace,
            self.config.plural,
            key.name,
            details={"order": str(key)},
        )
        return Order.from_dict(raw)

    async def update_order_status(self, order: Order) -> Order:
        # The body carries metadata.resourceVersion, so a stale write gets a 409.
        api = self._get_custom_api()
        raw = await self._call(
            api.replace_namespaced_custom_object_status,
            self.config.group,
            self.config.version,
            order.namespace,
            self.config.plural,
            order.name,
            order.to_dict(),
            details={"order": str(order.key)},
        )
        return Order.from_dict(raw)

    # Jobs

    async def list_jobs(
        self, namespace: str, matching_fields: dict[str, str] | None = None
    ) -> list[Job]:
        api = self._get_batch_api()
        job_list = await self._call(
            api.list_namespaced_job,
            namespace,
            details={"namespace": namespace},
        )
        jobs = [Job.from_dict(self._serialize(item)) for item in job_list.items]
        return self.field_indexer.filter(jobs, matching_fields)

    async def create_job(self, job: Job) -> Job:
        api = self._get_batch_api()
        created = await self._call(
            api.create_namespaced_job,
            job.metadata.namespace,
            job.to_dict(),
            details={"job": str(job.key)},
        )
        return Job.from_dict(self._serialize(created))

    # Watches

    def events(self) -> AsyncIterator[Notification]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[Notification] = asyncio.Queue()
        stop = threading.Event()

        def emit(event: Notification) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, event)

        custom_api = self._get_custom_api()
        batch_api = self._get_batch_api()

        if self.namespace:
            order_source = (
                custom_api.list_namespaced_custom_object,
                (self.config.group, self.config.version, self.namespace, self.config.plural),
            )
            job_source = (batch_api.list_namespaced_job, (self.namespace,))
        else:
            order_source = (
                custom_api.list_cluster_custom_object,
                (self.config.group, self.config.version, self.config.plural),
            )
            job_source = (batch_api.list_job_for_all_namespaces, ())

        threads = [
            threading.Thread(
                target=self._watch_loop,
                args=("orders", *order_source, self._order_event, emit, stop),
                name="pizzeria-watch-orders",
                daemon=True,
            ),
            threading.Thread(
                target=self._watch_loop,
                args=("jobs", *job_source, self._job_event, emit, stop),
                name="pizzeria-watch-jobs",
                daemon=True,
            ),
        ]
        for thread in threads:
            thread.start()

        return self._drain(queue, stop)

    async def _drain(
        self, queue: asyncio.Queue[Notification], stop: threading.Event
    ) -> AsyncIterator[Notification]:
        try:
            while True:
                yield await queue.get()
        finally:
            stop.set()

    def _order_event(self, event_type: EventType, obj: Any) -> Notification:
        return OrderEvent(event_type, Order.from_dict(self._serialize(obj)))

    def _job_event(self, event_type: EventType, obj: Any) -> Notification:
        return JobEvent(event_type, Job.from_dict(self._serialize(obj)))

    def _watch_loop(
        self,
        resource: str,
        list_func: Callable[..., Any],
        args: tuple[Any, ...],
        to_event: Callable[[EventType, Any], Notification],
        emit: Callable[[Notification], None],
        stop: threading.Event,
    ) -> None:
        """Stream watch events until ``stop`` is set, resuming after failures."""
        from kubernetes import watch
        from kubernetes.client.exceptions import ApiException

        log = logger.bind(resource=resource)
        resource_version: str | None = None

        while not stop.is_set():
            watcher = watch.Watch()
            kwargs: dict[str, Any] = {"timeout_seconds": self.watch_timeout}
            if resource_version:
                kwargs["resource_version"] = resource_version
            try:
                for raw in watcher.stream(list_func, *args, **kwargs):
                    if stop.is_set():
                        watcher.stop()
                        break
                    if raw["type"] == "ERROR":
                        status = (raw.get("raw_object") or {}).get("code")
                        log.info("watch_error_event", status=status, resource_version=resource_version)
                        if status == 410:
                            resource_version = None
                        watcher.stop()
                        break
                    try:
                        event_type = EventType(raw["type"])
                    except ValueError:
                        continue  # BOOKMARK
                    event = to_event(event_type, raw["object"])
                    resource_version = (
                        event.order.metadata.resource_version
                        if isinstance(event, OrderEvent)
                        else event.job.metadata.resource_version
                    )
                    emit(event)
            except ApiException as exc:
                if exc.status == 410:
                    log.info("watch_expired", resource_version=resource_version)
                    resource_version = None
                    continue
                log.warning("watch_failed", status=exc.status, error=str(exc))
                stop.wait(self.watch_retry_delay)
            except Exception as exc:
                log.warning("watch_failed", error=str(exc))
                stop.wait(self.watch_retry_delay)
