from __future__ import annotations

import uuid

from sqlalchemy.orm import Session

from orderdesk.sales.models import LeadHistoryEntry, OrderHistoryEntry
from orderdesk.security import ActorContext


def record_order_history(
    session: Session,
    order_id: uuid.UUID,
    *,
    from_status: str | None,
    to_status: str,
    actor: ActorContext,
    detail: str | None = None,
) -> OrderHistoryEntry:
    entry = OrderHistoryEntry(
        order_id=order_id,
        from_status=from_status,
        to_status=to_status,
        changed_by=actor.user_id,
        changed_by_name=actor.label,
        detail=detail,
    )
    session.add(entry)
    return entry


def record_lead_history(
    session: Session,
    lead_id: uuid.UUID,
    *,
    from_status: str | None,
    to_status: str,
    actor: ActorContext,
    detail: str | None = None,
) -> LeadHistoryEntry:
    entry = LeadHistoryEntry(
        lead_id=lead_id,
        from_status=from_status,
        to_status=to_status,
        changed_by=actor.user_id,
        changed_by_name=actor.label,
        detail=detail,
    )
    session.add(entry)
    return entry
