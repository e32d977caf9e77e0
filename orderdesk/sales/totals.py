from __future__ import annotations

from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from sqlalchemy.orm import Session

from orderdesk.sales.models import Lead, Order

_CENT = Decimal("0.01")


class PricedItem(Protocol):
    quantity: int
    price_per_unit: Decimal
    total_price: Decimal
    product_name: str


def money(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


def line_total(quantity: int, price_per_unit: Decimal) -> Decimal:
    return money(Decimal(quantity) * Decimal(price_per_unit))


def _apply(items: Sequence[PricedItem]) -> tuple[Decimal, int, str]:
    total = Decimal("0")
    quantity = 0
    names: list[str] = []
    for item in items:
        item.total_price = line_total(item.quantity, item.price_per_unit)
        total += item.total_price
        quantity += item.quantity
        names.append(item.product_name)
    return money(total), quantity, ", ".join(names)


def recompute_order_totals(session: Session, order: Order) -> Decimal:
    """Single write path for an order's derived totals after any item-set change."""
    session.flush()
    session.expire(order, ["items"])
    total, quantity, summary = _apply(order.items)
    order.price = total
    if order.items:
        order.quantity = quantity
        order.product_name = summary
    return total


def recompute_lead_totals(session: Session, lead: Lead) -> Decimal:
    session.flush()
    session.expire(lead, ["items"])
    total, quantity, summary = _apply(lead.items)
    lead.price = total
    if lead.items:
        lead.quantity = quantity
        lead.product_interest = summary
    return total
