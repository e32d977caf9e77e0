from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from orderdesk.core.config import get_settings
from orderdesk.sales.models import OrderSequence

ORDER_SEQUENCE = "order"


def next_display_id(session: Session) -> str:
    """Draw the next human-readable order code, e.g. ``ORD-01001``."""
    settings = get_settings()
    row = session.scalar(
        select(OrderSequence).where(OrderSequence.name == ORDER_SEQUENCE).with_for_update()
    )
    if row is None:
        row = OrderSequence(name=ORDER_SEQUENCE, next_value=settings.order_display_start)
        session.add(row)
    value = row.next_value
    row.next_value = value + 1
    session.flush()
    return f"{settings.order_display_prefix}{value:0{settings.order_display_width}d}"
