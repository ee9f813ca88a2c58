from __future__ import annotations

import asyncio
import copy
import itertools
import uuid
from datetime import datetime, timezone
from typing import AsyncIterator

import structlog

from pizzeria.core.errors import ConflictError, NotFoundError, ValidationError
from pizzeria.domain.models import (
    EventType,
    Job,
    JobCondition,
    JobEvent,
    Notification,
    ObjectKey,
    Order,
    OrderEvent,
)
from pizzeria.index import FieldIndexer

logger = structlog.get_logger()


class InMemoryStore:
    """Dict-backed store for local development and tests.

    Mirrors the API server behaviour the controller depends on: resource
    versions with optimistic concurrency on update, field-indexed job
    listing, cascade deletion of owned jobs and change notifications.
    """

    def __init__(self, field_indexer: FieldIndexer | None = None) -> None:
        self.field_indexer = field_indexer or FieldIndexer()
        self._orders: dict[ObjectKey, Order] = {}
        self._jobs: dict[ObjectKey, Job] = {}
        self._versions = itertools.count(1)
        self._subscribers: list[asyncio.Queue[Notification]] = []

    def _next_version(self) -> str:
        return str(next(self._versions))

    def _stamp_new(self, obj: Order | Job) -> None:
        obj.metadata.uid = str(uuid.uuid4())
        obj.metadata.resource_version = self._next_version()
        obj.metadata.creation_timestamp = datetime.now(timezone.utc)

    def _publish(self, event: Notification) -> None:
        for queue in self._subscribers:
            queue.put_nowait(event)

    def events(self) -> AsyncIterator[Notification]:
        # Subscribe now, not on first iteration, so no event slips between.
        queue: asyncio.Queue[Notification] = asyncio.Queue()
        self._subscribers.append(queue)
        return self._drain(queue)

    async def _drain(self, queue: asyncio.Queue[Notification]) -> AsyncIterator[Notification]:
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers.remove(queue)

    # Orders

    async def create_order(self, order: Order) -> Order:
        if order.key in self._orders:
            raise ConflictError(f"order {order.key} already exists", details={"order": str(order.key)})
        stored = copy.deepcopy(order)
        self._stamp_new(stored)
        self._orders[stored.key] = stored
        self._publish(OrderEvent(EventType.ADDED, copy.deepcopy(stored)))
        return copy.deepcopy(stored)

    async def get_order(self, key: ObjectKey) -> Order:
        try:
            return copy.deepcopy(self._orders[key])
        except KeyError:
            raise NotFoundError(f"order {key} not found", details={"order": str(key)}) from None

    async def update_order(self, order: Order) -> Order:
        """Replace an order's spec, as an external client would."""
        stored = self._check_version(order)
        stored.job_template = copy.deepcopy(order.job_template)
        stored.metadata.labels = dict(order.metadata.labels)
        stored.metadata.annotations = dict(order.metadata.annotations)
        stored.metadata.resource_version = self._next_version()
        self._publish(OrderEvent(EventType.MODIFIED, copy.deepcopy(stored)))
        return copy.deepcopy(stored)

    async def update_order_status(self, order: Order) -> Order:
        stored = self._check_version(order)
        stored.status = copy.deepcopy(order.status)
        stored.metadata.resource_version = self._next_version()
        self._publish(OrderEvent(EventType.MODIFIED, copy.deepcopy(stored)))
        return copy.deepcopy(stored)

    async def delete_order(self, key: ObjectKey) -> None:
        try:
            order = self._orders.pop(key)
        except KeyError:
            raise NotFoundError(f"order {key} not found", details={"order": str(key)}) from None
        self._publish(OrderEvent(EventType.DELETED, copy.deepcopy(order)))

        dependents = [
            job.key
            for job in self._jobs.values()
            if any(ref.uid == order.metadata.uid for ref in job.metadata.owner_references)
        ]
        for job_key in dependents:
            logger.debug("cascade_delete_job", order=str(key), job=str(job_key))
            await self.delete_job(job_key)

    def _check_version(self, order: Order) -> Order:
        stored = self._orders.get(order.key)
        if stored is None:
            raise NotFoundError(f"order {order.key} not found", details={"order": str(order.key)})
        if order.metadata.resource_version != stored.metadata.resource_version:
            raise ConflictError(
                f"order {order.key} has been modified",
                details={
                    "order": str(order.key),
                    "expected": stored.metadata.resource_version,
                    "got": order.metadata.resource_version,
                },
            )
        return stored

    # Jobs

    async def list_jobs(
        self, namespace: str, matching_fields: dict[str, str] | None = None
    ) -> list[Job]:
        in_namespace = (
            job for key, job in sorted(self._jobs.items()) if key.namespace == namespace
        )
        return [copy.deepcopy(job) for job in self.field_indexer.filter(in_namespace, matching_fields)]

    async def get_job(self, key: ObjectKey) -> Job:
        try:
            return copy.deepcopy(self._jobs[key])
        except KeyError:
            raise NotFoundError(f"job {key} not found", details={"job": str(key)}) from None

    async def create_job(self, job: Job) -> Job:
        if not job.metadata.name:
            raise ValidationError("job name is required")
        if job.key in self._jobs:
            raise ConflictError(f"job {job.key} already exists", details={"job": str(job.key)})
        stored = copy.deepcopy(job)
        self._stamp_new(stored)
        self._jobs[stored.key] = stored
        self._publish(JobEvent(EventType.ADDED, copy.deepcopy(stored)))
        return copy.deepcopy(stored)

    async def set_job_conditions(self, key: ObjectKey, conditions: list[JobCondition]) -> Job:
        """Record job progress, as the execution runtime would."""
        try:
            stored = self._jobs[key]
        except KeyError:
            raise NotFoundError(f"job {key} not found", details={"job": str(key)}) from None
        stored.conditions = copy.deepcopy(conditions)
        stored.metadata.resource_version = self._next_version()
        self._publish(JobEvent(EventType.MODIFIED, copy.deepcopy(stored)))
        return copy.deepcopy(stored)

    async def delete_job(self, key: ObjectKey) -> None:
        try:
            job = self._jobs.pop(key)
        except KeyError:
            raise NotFoundError(f"job {key} not found", details={"job": str(key)}) from None
        self._publish(JobEvent(EventType.DELETED, copy.deepcopy(job)))
