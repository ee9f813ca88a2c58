"""Build the Job that fulfils an Order."""

from __future__ import annotations

import copy
import time
from typing import Callable

from pizzeria.domain.models import Job, ObjectMeta, Order
from pizzeria.ownership import Scheme, set_controller_reference


def job_name_for(order: Order, now: float) -> str:
    # A timestamp suffix keeps names unique when an earlier Job was deleted.
    return f"{order.name}-{int(now)}"


def build_job(order: Order, scheme: Scheme, clock: Callable[[], float] = time.time) -> Job:
    """Produce a Job from the order's template, controlled by the order.

    Raises ConstructionError when the ownership reference cannot be set.
    """
    job = Job(
        metadata=ObjectMeta(
            name=job_name_for(order, clock()),
            namespace=order.namespace,
            labels={},
            annotations={},
        ),
        spec=copy.deepcopy(order.job_template.get("spec") or {}),
    )

    set_controller_reference(order, job, scheme)
    return job
