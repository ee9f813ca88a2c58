from __future__ import annotations

from typing import AsyncIterator, Protocol

from pizzeria.domain.models import Job, Notification, ObjectKey, Order
from pizzeria.index import FieldIndexer


class Store(Protocol):
    """Read/write access to orders and jobs, with change notifications.

    Implementations raise NotFoundError for missing objects, ConflictError
    when an update carries a stale resource version, TransientError for
    network or server failures and ValidationError for rejected writes.
    """

    field_indexer: FieldIndexer

    async def get_order(self, key: ObjectKey) -> Order: ...

    async def list_jobs(
        self, namespace: str, matching_fields: dict[str, str] | None = None
    ) -> list[Job]: ...

    async def create_job(self, job: Job) -> Job: ...

    async def update_order_status(self, order: Order) -> Order: ...

    def events(self) -> AsyncIterator[Notification]: ...
