"""Canonical status tables for orders and leads.

Every status change in the service is validated against these tables by a
single engine per entity; handlers never carry their own status lists.
"""

from __future__ import annotations

from enum import StrEnum


class OrderStatus(StrEnum):
    PENDING = "pending"
    TAKE = "take"
    CALL_AGAIN = "call_again"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    PAID = "paid"
    RETURNED = "returned"
    CANCELLED = "cancelled"
    TRASHED = "trashed"


class LeadStatus(StrEnum):
    NOT_CONTACTED = "not_contacted"
    NO_ANSWER = "no_answer"
    INTERESTED = "interested"
    NOT_INTERESTED = "not_interested"
    CALL_AGAIN = "call_again"
    CONFIRMED = "confirmed"


_PRE_FULFILMENT = {OrderStatus.PENDING, OrderStatus.TAKE, OrderStatus.CALL_AGAIN, OrderStatus.CONFIRMED}
_DROP = {OrderStatus.CANCELLED, OrderStatus.TRASHED}

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset((_PRE_FULFILMENT | _DROP) - {OrderStatus.PENDING}),
    OrderStatus.TAKE: frozenset((_PRE_FULFILMENT | _DROP) - {OrderStatus.TAKE}),
    OrderStatus.CALL_AGAIN: frozenset((_PRE_FULFILMENT | _DROP) - {OrderStatus.CALL_AGAIN}),
    OrderStatus.CONFIRMED: frozenset(
        (_PRE_FULFILMENT | _DROP | {OrderStatus.SHIPPED, OrderStatus.PAID, OrderStatus.RETURNED})
        - {OrderStatus.CONFIRMED}
    ),
    OrderStatus.SHIPPED: frozenset(
        {OrderStatus.DELIVERED, OrderStatus.PAID, OrderStatus.RETURNED, OrderStatus.CANCELLED}
    ),
    OrderStatus.DELIVERED: frozenset({OrderStatus.PAID, OrderStatus.RETURNED}),
    OrderStatus.PAID: frozenset({OrderStatus.RETURNED}),
    OrderStatus.RETURNED: frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.TRASHED}),
    OrderStatus.CANCELLED: frozenset(
        {OrderStatus.PENDING, OrderStatus.CALL_AGAIN, OrderStatus.CONFIRMED, OrderStatus.TRASHED}
    ),
    OrderStatus.TRASHED: frozenset({OrderStatus.PENDING}),
}

# Statuses that need name, phone, city and address on the order.
COMPLETE_DATA_STATUSES = frozenset(
    {
        OrderStatus.CONFIRMED,
        OrderStatus.SHIPPED,
        OrderStatus.RETURNED,
        OrderStatus.PAID,
        OrderStatus.CANCELLED,
    }
)
COMPLETE_DATA_FIELDS = ("customer_name", "customer_phone", "customer_city", "customer_address")

# Product and price fields are frozen once goods left the warehouse.
LOCKED_STATUSES = frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.PAID})

CREATE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CALL_AGAIN, OrderStatus.CONFIRMED})
BULK_STATUS_TARGETS = frozenset({OrderStatus.SHIPPED, OrderStatus.PAID, OrderStatus.CANCELLED, OrderStatus.RETURNED})

LEAD_CLAIM_STATUSES = frozenset({LeadStatus.INTERESTED, LeadStatus.CONFIRMED, LeadStatus.NO_ANSWER})
LEAD_CONVERTIBLE_STATUSES = frozenset({LeadStatus.CALL_AGAIN, LeadStatus.CONFIRMED})

ORDER_TO_LEAD: dict[OrderStatus, LeadStatus] = {
    OrderStatus.PENDING: LeadStatus.NOT_CONTACTED,
    OrderStatus.TAKE: LeadStatus.INTERESTED,
    OrderStatus.CALL_AGAIN: LeadStatus.NO_ANSWER,
    OrderStatus.CONFIRMED: LeadStatus.CONFIRMED,
    OrderStatus.SHIPPED: LeadStatus.CONFIRMED,
    OrderStatus.DELIVERED: LeadStatus.CONFIRMED,
    OrderStatus.PAID: LeadStatus.CONFIRMED,
    OrderStatus.RETURNED: LeadStatus.NOT_INTERESTED,
    OrderStatus.TRASHED: LeadStatus.NOT_INTERESTED,
    OrderStatus.CANCELLED: LeadStatus.NOT_INTERESTED,
}

CALL_OUTCOME_TO_LEAD: dict[str, LeadStatus] = {
    "no_answer": LeadStatus.NO_ANSWER,
    "interested": LeadStatus.INTERESTED,
    "not_interested": LeadStatus.NOT_INTERESTED,
    "call_again": LeadStatus.CALL_AGAIN,
}


def can_transition(current: str, target: str) -> bool:
    return OrderStatus(target) in ORDER_TRANSITIONS.get(OrderStatus(current), frozenset())


def lead_to_order_status(status: str) -> OrderStatus:
    if status == LeadStatus.CONFIRMED:
        return OrderStatus.CONFIRMED
    return OrderStatus.CALL_AGAIN


def order_to_lead_status(status: str) -> LeadStatus:
    return ORDER_TO_LEAD[OrderStatus(status)]
