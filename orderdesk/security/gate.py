from __future__ import annotations

from collections.abc import Iterable

from orderdesk.core.errors import Forbidden
from orderdesk.security.context import ActorContext, Capability

PRIVILEGED_ROLES: frozenset[str] = frozenset({"admin", "manager"})
AGENT_ROLES: frozenset[str] = frozenset({"agent", "pending_agent", "prediction_agent"})
WAREHOUSE_ROLES: frozenset[str] = frozenset({"warehouse"})
ADMIN_ONLY: frozenset[str] = frozenset({"admin"})

_STAFF = PRIVILEGED_ROLES | AGENT_ROLES
_FULFILMENT = PRIVILEGED_ROLES | WAREHOUSE_ROLES
_EVERYONE = PRIVILEGED_ROLES | AGENT_ROLES | WAREHOUSE_ROLES

# Role sets allowed to request each action. Admin appears in every
# row; an action missing from the table is denied to everybody.
ACTION_POLICY: dict[str, frozenset[str]] = {
    "order.create": _STAFF,
    "order.read": _EVERYONE,
    "order.update": _STAFF,
    "order.items.write": _STAFF,
    "order.notes.write": _EVERYONE,
    "order.assign": PRIVILEGED_ROLES,
    "order.bulk_assign": PRIVILEGED_ROLES,
    "order.bulk_unassign": PRIVILEGED_ROLES,
    "order.bulk_status": _FULFILMENT,
    "order.purge": ADMIN_ONLY,
    "order.status.pending": _STAFF,
    "order.status.take": _STAFF,
    "order.status.call_again": _STAFF,
    "order.status.confirmed": _EVERYONE,
    "order.status.shipped": _FULFILMENT,
    "order.status.delivered": _FULFILMENT,
    "order.status.paid": _FULFILMENT,
    "order.status.returned": PRIVILEGED_ROLES,
    "order.status.cancelled": PRIVILEGED_ROLES,
    "order.status.trashed": PRIVILEGED_ROLES,
    "lead.create": _STAFF,
    "lead.read": _STAFF,
    "lead.update": _STAFF,
    "lead.take": _STAFF,
    "lead.items.write": _STAFF,
    "lead.assign": PRIVILEGED_ROLES,
    "lead.bulk_assign": PRIVILEGED_ROLES,
    "lead.bulk_unassign": PRIVILEGED_ROLES,
    "lead.purge": ADMIN_ONLY,
    "call_log.create": _STAFF,
    "call_log.read": _STAFF,
    "product.read": _EVERYONE,
    "product.write": PRIVILEGED_ROLES,
    "inventory.read": _FULFILMENT,
    "inventory.restock": PRIVILEGED_ROLES,
    "inventory.adjust": PRIVILEGED_ROLES,
    "phone.lookup": _EVERYONE,
    "profile.read": _EVERYONE,
    "profile.write": PRIVILEGED_ROLES,
}


def resolve_capability(roles: Iterable[str]) -> Capability:
    if PRIVILEGED_ROLES.intersection(roles):
        return Capability.PRIVILEGED
    return Capability.SCOPED


def is_allowed(role_set: Iterable[str], action: str) -> bool:
    allowed = ACTION_POLICY.get(action)
    if allowed is None:
        return False
    return not allowed.isdisjoint(role_set)


def require(actor: ActorContext, action: str) -> None:
    if not is_allowed(actor.roles, action):
        raise Forbidden(f"Not allowed: {action}")


def can_act_on_order(actor: ActorContext, assigned_agent_id: str | None) -> bool:
    if actor.is_privileged or not WAREHOUSE_ROLES.isdisjoint(actor.roles):
        return True
    return assigned_agent_id == actor.user_id


def can_act_on_lead(actor: ActorContext, assigned_agent_id: str | None) -> bool:
    if actor.is_privileged:
        return True
    return assigned_agent_id is None or assigned_agent_id == actor.user_id
