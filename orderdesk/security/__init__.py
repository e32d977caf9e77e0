from orderdesk.security.context import ActorContext
from orderdesk.security.gate import (
    ACTION_POLICY,
    AGENT_ROLES,
    PRIVILEGED_ROLES,
    WAREHOUSE_ROLES,
    Capability,
    can_act_on_lead,
    can_act_on_order,
    is_allowed,
    require,
    resolve_capability,
)

__all__ = [
    "ACTION_POLICY",
    "AGENT_ROLES",
    "ActorContext",
    "Capability",
    "PRIVILEGED_ROLES",
    "WAREHOUSE_ROLES",
    "can_act_on_lead",
    "can_act_on_order",
    "is_allowed",
    "require",
    "resolve_capability",
]
