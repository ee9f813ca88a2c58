"""
Job lookup index.

Maps an Order's identity to the Jobs it controls. The store evaluates the
registered extractor against each Job when a query names the index key, so
there is no separate cache to keep consistent.
"""

from __future__ import annotations

from typing import Callable, Iterable

from pizzeria.config import ControllerConfig
from pizzeria.core.errors import ConfigurationError
from pizzeria.domain.models import Job, ObjectKey
from pizzeria.ownership import get_controller_of

IndexFunc = Callable[[Job], list[str]]


class FieldIndexer:
    """Registry of named key-extraction functions over Jobs."""

    def __init__(self) -> None:
        self._indexers: dict[str, IndexFunc] = {}

    def index_field(self, key: str, extractor: IndexFunc) -> None:
        if key in self._indexers:
            raise ConfigurationError(f"index {key!r} is already registered", details={"key": key})
        self._indexers[key] = extractor

    def matches(self, job: Job, matching_fields: dict[str, str]) -> bool:
        """True when, for every field, the job's indexed values include the wanted one."""
        for key, wanted in matching_fields.items():
            extractor = self._indexers.get(key)
            if extractor is None:
                raise ConfigurationError(
                    f"no index registered for field {key!r}", details={"key": key}
                )
            if wanted not in extractor(job):
                return False
        return True

    def filter(self, jobs: Iterable[Job], matching_fields: dict[str, str] | None) -> list[Job]:
        if not matching_fields:
            return list(jobs)
        return [job for job in jobs if self.matches(job, matching_fields)]


def job_owner_indexer(config: ControllerConfig) -> IndexFunc:
    """Index Jobs by the name of the Order controlling them."""

    def extract(job: Job) -> list[str]:
        owner = get_controller_of(job)
        if owner is None:
            return []
        if owner.api_version != config.api_version or owner.kind != config.kind:
            return []
        return [owner.name]

    return extract


def register_job_owner_index(indexer: FieldIndexer, config: ControllerConfig) -> None:
    indexer.index_field(config.job_owner_key, job_owner_indexer(config))


async def owned_jobs(store, key: ObjectKey, config: ControllerConfig) -> list[Job]:
    """List the Jobs in ``key.namespace`` controlled by the Order ``key``."""
    return await store.list_jobs(
        key.namespace,
        matching_fields={config.job_owner_key: key.name},
    )
