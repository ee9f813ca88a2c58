"""Route store notifications to the dispatcher as order keys."""

from __future__ import annotations

import structlog

from pizzeria.config import ControllerConfig
from pizzeria.dispatcher import Dispatcher
from pizzeria.domain.models import Notification, ObjectKey, OrderEvent
from pizzeria.ownership import get_controller_of
from pizzeria.store.base import Store

logger = structlog.get_logger()


def order_key_for(event: Notification, config: ControllerConfig) -> ObjectKey | None:
    """Return the order a notification concerns, or None if it concerns none we manage."""
    if isinstance(event, OrderEvent):
        return event.order.key

    owner = get_controller_of(event.job)
    if owner is None:
        return None
    if owner.api_version != config.api_version or owner.kind != config.kind:
        return None
    return ObjectKey(namespace=event.job.metadata.namespace, name=owner.name)


async def watch_orders(store: Store, dispatcher: Dispatcher, config: ControllerConfig) -> None:
    """Feed the dispatcher from the store's notifications until cancelled."""
    logger.info("watch_started", kind=config.kind, api_version=config.api_version)
    async for event in store.events():
        key = order_key_for(event, config)
        if key is None:
            continue
        logger.debug("order_event", order=str(key), source=type(event).__name__, type=event.type)
        dispatcher.add(key)
