from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from orderdesk.core.config import get_settings
from orderdesk.sales.models import Lead, Order, normalize_phone
from orderdesk.sales.schemas import PhoneDuplicate
from orderdesk.security import ActorContext, require


def find_phone_duplicates(
    session: Session,
    phone: str | None,
    *,
    exclude_order_id: uuid.UUID | None = None,
) -> list[PhoneDuplicate]:
    """Orders and leads sharing a normalized phone, oldest first."""
    normalized = normalize_phone(phone)
    if len(normalized) < get_settings().phone_min_digits:
        return []

    order_stmt = select(Order.id, Order.display_id, Order.customer_name).where(
        Order.customer_phone_normalized == normalized
    )
    if exclude_order_id is not None:
        order_stmt = order_stmt.where(Order.id != exclude_order_id)
    duplicates = [
        PhoneDuplicate(source="order", source_id=display_id, source_name=name or "")
        for _, display_id, name in session.execute(order_stmt.order_by(Order.created_at.asc())).all()
    ]

    lead_stmt = select(Lead.id, Lead.name).where(Lead.phone_normalized == normalized)
    duplicates.extend(
        PhoneDuplicate(source="lead", source_id=str(lead_id), source_name=name or "")
        for lead_id, name in session.execute(lead_stmt.order_by(Lead.created_at.asc())).all()
    )
    return duplicates


def lookup_phone_duplicates(
    session: Session,
    actor: ActorContext,
    phone: str,
    *,
    exclude_order_id: uuid.UUID | None = None,
) -> list[PhoneDuplicate]:
    require(actor, "phone.lookup")
    return find_phone_duplicates(session, phone, exclude_order_id=exclude_order_id)
