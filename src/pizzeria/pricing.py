"""Pricing policies applied when an order's job finishes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from pizzeria.domain.models import Order


class PricingPolicy(Protocol):
    def price_for(self, order: Order) -> int: ...


@dataclass(frozen=True, slots=True)
class FixedPricePolicy:
    """Charge the same amount for every order."""

    price: int = 123

    def price_for(self, order: Order) -> int:
        return self.price
