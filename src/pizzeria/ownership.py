"""
Ownership stamping.

A Job created for an Order carries a controller owner reference back to it.
The store uses that reference for cascade deletion, and the job lookup index
uses it for the reverse mapping from Order to Jobs.
"""

from __future__ import annotations

from pizzeria.core.errors import ConstructionError
from pizzeria.domain.models import GroupVersionKind, Job, Order, OwnerReference


class Scheme:
    """Registry mapping Python types to the group/version/kind they represent."""

    def __init__(self) -> None:
        self._kinds: dict[type, GroupVersionKind] = {}

    def register(self, obj_type: type, gvk: GroupVersionKind) -> None:
        self._kinds[obj_type] = gvk

    def gvk_for(self, obj: object) -> GroupVersionKind:
        try:
            return self._kinds[type(obj)]
        except KeyError:
            raise ConstructionError(
                f"no kind is registered for type {type(obj).__name__}",
                details={"type": type(obj).__name__},
            ) from None


def get_controller_of(job: Job) -> OwnerReference | None:
    """Return the owner reference flagged as controller, if any."""
    for ref in job.metadata.owner_references:
        if ref.controller:
            return ref
    return None


def set_controller_reference(owner: Order, child: Job, scheme: Scheme) -> None:
    """Stamp ``child`` with a controller reference to ``owner``.

    Raises ConstructionError when the owner's type is not in the scheme, when
    the owner has no uid yet, when the two live in different namespaces, or
    when the child is already controlled by another object.
    """
    gvk = scheme.gvk_for(owner)
    if not owner.metadata.uid:
        raise ConstructionError(
            "owner has no uid; it must be read back from the store first",
            details={"owner": str(owner.key)},
        )
    if owner.namespace != child.metadata.namespace:
        raise ConstructionError(
            "cross-namespace owner references are not allowed",
            details={"owner": str(owner.key), "child": str(child.key)},
        )

    ref = OwnerReference(
        api_version=gvk.api_version,
        kind=gvk.kind,
        name=owner.name,
        uid=owner.metadata.uid,
        controller=True,
        block_owner_deletion=True,
    )

    existing = get_controller_of(child)
    if existing is not None and existing.uid != ref.uid:
        raise ConstructionError(
            "object is already owned by another controller",
            details={"child": str(child.key), "owner": f"{existing.kind}/{existing.name}"},
        )

    child.metadata.owner_references = [
        r for r in child.metadata.owner_references if r.uid != ref.uid
    ] + [ref]
