from __future__ import annotations

from pizzeria.store.base import Store
from pizzeria.store.kubernetes import KubernetesStore
from pizzeria.store.memory import InMemoryStore

__all__ = ["InMemoryStore", "KubernetesStore", "Store"]
