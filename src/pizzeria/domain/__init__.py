"""Typed views of orders, jobs and change notifications."""

from pizzeria.domain.models import (
    ConditionStatus,
    EventType,
    GroupVersionKind,
    Job,
    JobCondition,
    JobConditionType,
    JobEvent,
    Notification,
    ObjectKey,
    ObjectMeta,
    Order,
    OrderEvent,
    OrderPhase,
    OrderStatus,
    OwnerReference,
)

__all__ = [
    "ConditionStatus",
    "EventType",
    "GroupVersionKind",
    "Job",
    "JobCondition",
    "JobConditionType",
    "JobEvent",
    "Notification",
    "ObjectKey",
    "ObjectMeta",
    "Order",
    "OrderEvent",
    "OrderPhase",
    "OrderStatus",
    "OwnerReference",
]
