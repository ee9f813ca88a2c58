"""
Domain models for orders and the batch jobs that fulfil them.

Orders and Jobs are owned by the orchestration store; these dataclasses are
the controller's typed view of them, converted to and from the camelCase
dictionaries the Kubernetes API speaks.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an RFC 3339 timestamp as returned by the API server."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


@dataclass(frozen=True, slots=True, order=True)
class ObjectKey:
    """Identity of a namespaced object."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> ObjectKey:
        """Parse ``namespace/name``."""
        namespace, sep, name = value.partition("/")
        if not sep or not namespace or not name:
            raise ValueError(f"expected NAMESPACE/NAME, got {value!r}")
        return cls(namespace=namespace, name=name)


@dataclass(frozen=True, slots=True)
class GroupVersionKind:
    group: str
    version: str
    kind: str

    @property
    def api_version(self) -> str:
        if not self.group:
            return self.version
        return f"{self.group}/{self.version}"


@dataclass(frozen=True, slots=True)
class OwnerReference:
    """Back-reference from a dependent object to its owner."""

    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool = False
    block_owner_deletion: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": self.controller,
            "blockOwnerDeletion": self.block_owner_deletion,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OwnerReference:
        return cls(
            api_version=data["apiVersion"],
            kind=data["kind"],
            name=data["name"],
            uid=data.get("uid", ""),
            controller=bool(data.get("controller")),
            block_owner_deletion=bool(data.get("blockOwnerDeletion")),
        )


@dataclass
class ObjectMeta:
    name: str
    namespace: str
    uid: str | None = None
    resource_version: str | None = None
    creation_timestamp: datetime | None = None
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    owner_references: list[OwnerReference] = field(default_factory=list)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(namespace=self.namespace, name=self.name)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "namespace": self.namespace,
            "labels": dict(self.labels),
            "annotations": dict(self.annotations),
        }
        if self.uid:
            data["uid"] = self.uid
        if self.resource_version:
            data["resourceVersion"] = self.resource_version
        if self.creation_timestamp:
            data["creationTimestamp"] = format_timestamp(self.creation_timestamp)
        if self.owner_references:
            data["ownerReferences"] = [ref.to_dict() for ref in self.owner_references]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ObjectMeta:
        return cls(
            name=data["name"],
            namespace=data.get("namespace") or "default",
            uid=data.get("uid"),
            resource_version=data.get("resourceVersion"),
            creation_timestamp=parse_timestamp(data.get("creationTimestamp")),
            labels=dict(data.get("labels") or {}),
            annotations=dict(data.get("annotations") or {}),
            owner_references=[
                OwnerReference.from_dict(ref) for ref in data.get("ownerReferences") or []
            ],
        )


class ConditionStatus(StrEnum):
    """Tri-state flag carried by a condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class JobConditionType(StrEnum):
    COMPLETE = "Complete"
    FAILED = "Failed"


@dataclass
class JobCondition:
    type: str
    status: str = ConditionStatus.UNKNOWN
    last_transition_time: datetime | None = None
    reason: str | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": str(self.type), "status": str(self.status)}
        if self.last_transition_time:
            data["lastTransitionTime"] = format_timestamp(self.last_transition_time)
        if self.reason:
            data["reason"] = self.reason
        if self.message:
            data["message"] = self.message
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobCondition:
        return cls(
            type=data["type"],
            status=data.get("status", ConditionStatus.UNKNOWN),
            last_transition_time=parse_timestamp(data.get("lastTransitionTime")),
            reason=data.get("reason"),
            message=data.get("message"),
        )


@dataclass
class Job:
    """A batch/v1 Job, reduced to the fields the controller reads or writes."""

    metadata: ObjectMeta
    spec: dict[str, Any] = field(default_factory=dict)
    conditions: list[JobCondition] = field(default_factory=list)

    @property
    def key(self) -> ObjectKey:
        return self.metadata.key

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "apiVersion": "batch/v1",
            "kind": "Job",
            "metadata": self.metadata.to_dict(),
            "spec": copy.deepcopy(self.spec),
        }
        if self.conditions:
            data["status"] = {"conditions": [c.to_dict() for c in self.conditions]}
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Job:
        status = data.get("status") or {}
        return cls(
            metadata=ObjectMeta.from_dict(data["metadata"]),
            spec=copy.deepcopy(data.get("spec") or {}),
            conditions=[JobCondition.from_dict(c) for c in status.get("conditions") or []],
        )


class OrderPhase(StrEnum):
    PREPARING = "Preparing"
    READY = "Ready to Pickup"


@dataclass
class OrderStatus:
    phase: str | None = None
    price: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in (("phase", self.phase), ("price", self.price)) if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> OrderStatus:
        data = data or {}
        return cls(phase=data.get("phase"), price=data.get("price"))


@dataclass
class Order:
    """The declarative order resource: a job template plus observed status."""

    metadata: ObjectMeta
    job_template: dict[str, Any] = field(default_factory=dict)
    status: OrderStatus = field(default_factory=OrderStatus)
    api_version: str = "resturant.foodie.io/v1"
    kind: str = "Pizza"

    @property
    def key(self) -> ObjectKey:
        return self.metadata.key

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": self.metadata.to_dict(),
            "spec": {"jobTemplate": copy.deepcopy(self.job_template)},
            "status": self.status.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Order:
        spec = data.get("spec") or {}
        return cls(
            metadata=ObjectMeta.from_dict(data["metadata"]),
            job_template=copy.deepcopy(spec.get("jobTemplate") or {}),
            status=OrderStatus.from_dict(data.get("status")),
            api_version=data.get("apiVersion", "resturant.foodie.io/v1"),
            kind=data.get("kind", "Pizza"),
        )


class EventType(StrEnum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass(frozen=True, slots=True)
class OrderEvent:
    type: EventType
    order: Order


@dataclass(frozen=True, slots=True)
class JobEvent:
    type: EventType
    job: Job


Notification = OrderEvent | JobEvent
