"""
Order reconciler.

Level-triggered: every call re-reads the order and its jobs and applies at
most one change. The observed state is one of

- no owned job: create one from the order's template;
- owned job still running: mark the order Preparing;
- owned job finished: mark the order Ready to Pickup and price it.

Errors other than a missing order or an unbuildable job propagate so the
dispatcher can retry with backoff.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

import structlog

from pizzeria.builder import build_job
from pizzeria.config import ControllerConfig
from pizzeria.core.errors import ConstructionError, NotFoundError
from pizzeria.domain.models import (
    ConditionStatus,
    Job,
    JobConditionType,
    ObjectKey,
    OrderPhase,
    OrderStatus,
)
from pizzeria.index import owned_jobs
from pizzeria.ownership import Scheme
from pizzeria.pricing import FixedPricePolicy, PricingPolicy
from pizzeria.store.base import Store

logger = structlog.get_logger()

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True, slots=True)
class Result:
    """Outcome of one reconciliation; the default means wait for the next event."""

    requeue: bool = False
    requeue_after: float | None = None


def is_job_finished(job: Job) -> bool:
    for condition in job.conditions:
        if (
            condition.type in (JobConditionType.COMPLETE, JobConditionType.FAILED)
            and condition.status == ConditionStatus.TRUE
        ):
            return True
    return False


def select_job(jobs: list[Job]) -> Job:
    """Pick the most recently created job; names break ties."""
    return max(
        jobs,
        key=lambda job: (job.metadata.creation_timestamp or _EPOCH, job.metadata.name),
    )


@dataclass
class OrderReconciler:
    store: Store
    scheme: Scheme
    config: ControllerConfig = field(default_factory=ControllerConfig)
    pricing: PricingPolicy = field(default_factory=FixedPricePolicy)
    clock: Callable[[], float] = time.time

    async def reconcile(self, key: ObjectKey) -> Result:
        log = logger.bind(order=str(key))

        try:
            order = await self.store.get_order(key)
        except NotFoundError:
            # Deleted; owned jobs go with it through cascade deletion.
            log.debug("order_not_found")
            return Result()

        jobs = await owned_jobs(self.store, key, self.config)

        if not jobs:
            try:
                job = build_job(order, self.scheme, clock=self.clock)
            except ConstructionError as exc:
                log.error("job_construction_failed", error=exc.message, **exc.details)
                return Result()

            await self.store.create_job(job)
            log.info("job_created", job=job.metadata.name)
            return Result()

        if len(jobs) > 1:
            log.warning("multiple_owned_jobs", jobs=sorted(j.metadata.name for j in jobs))
        job = select_job(jobs)

        if is_job_finished(job):
            desired = OrderStatus(phase=OrderPhase.READY, price=self.pricing.price_for(order))
        elif order.status.phase == OrderPhase.READY:
            # Phase never moves backwards once the order is ready.
            desired = order.status
        else:
            desired = OrderStatus(phase=OrderPhase.PREPARING, price=order.status.price)

        if desired == order.status:
            log.debug("order_status_unchanged", phase=order.status.phase, job=job.metadata.name)
            return Result()

        order.status = desired
        await self.store.update_order_status(order)
        log.info(
            "order_status_updated",
            phase=desired.phase,
            price=desired.price,
            job=job.metadata.name,
        )
        return Result()
