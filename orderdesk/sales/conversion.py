from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orderdesk.events import envelope
from orderdesk.metrics import observe_lead_conversion
from orderdesk.sales.history import record_order_history
from orderdesk.sales.models import Lead, Order, OrderLineItem, OrderNote
from orderdesk.sales.order_lifecycle import OrderLifecycle, order_lifecycle
from orderdesk.sales.sequence import next_display_id
from orderdesk.sales.states import LEAD_CONVERTIBLE_STATUSES, OrderStatus, can_transition, lead_to_order_status
from orderdesk.sales.totals import line_total, recompute_order_totals
from orderdesk.security import ActorContext

logger = logging.getLogger("orderdesk.sales.conversion")

ConversionOutcome = Literal["created", "updated", "unchanged", "blocked", "skipped"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ConversionResult:
    outcome: ConversionOutcome
    order: Order | None = None
    events: list[dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class ConversionPipeline:
    """Get-or-create of the single order linked to a lead.

    ``sales_order.source_lead_id`` is unique, so the insert is the arbiter
    when two requests convert the same lead: the loser's savepoint rolls
    back and it updates the winner's order instead.
    """

    lifecycle: OrderLifecycle = field(default_factory=lambda: order_lifecycle)

    def find_linked_order(self, session: Session, lead_id: uuid.UUID) -> Order | None:
        return session.scalar(select(Order).where(Order.source_lead_id == lead_id))

    def ensure_order(self, session: Session, actor: ActorContext, lead: Lead) -> ConversionResult:
        if lead.status not in LEAD_CONVERTIBLE_STATUSES:
            return ConversionResult(outcome="skipped")
        target = lead_to_order_status(lead.status)

        existing = self.find_linked_order(session, lead.id)
        if existing is not None:
            return self._sync_existing(session, actor, lead, existing, target)

        if not (lead.name or "").strip() and not (lead.phone or "").strip():
            observe_lead_conversion("skipped")
            logger.info("lead.conversion_skipped", extra={"lead_id": str(lead.id), "reason": "no_contact_data"})
            return ConversionResult(outcome="skipped")

        try:
            with session.begin_nested():
                order = self._materialize(session, actor, lead, target)
        except IntegrityError:
            existing = self.find_linked_order(session, lead.id)
            if existing is None:
                raise
            logger.info("lead.conversion_race_lost", extra={"lead_id": str(lead.id), "order_id": str(existing.id)})
            return self._sync_existing(session, actor, lead, existing, target)

        observe_lead_conversion("created")
        logger.info(
            "lead.converted",
            extra={"lead_id": str(lead.id), "order_id": str(order.id), "display_id": order.display_id, "to_status": order.status},
        )
        return ConversionResult(
            outcome="created",
            order=order,
            events=[
                envelope(
                    "sales.order.created",
                    order_id=str(order.id),
                    display_id=order.display_id,
                    status=order.status,
                    source_type=order.source_type,
                ),
                envelope(
                    "sales.lead.converted",
                    lead_id=str(lead.id),
                    order_id=str(order.id),
                    display_id=order.display_id,
                    outcome="created",
                ),
            ],
        )

    def _materialize(self, session: Session, actor: ActorContext, lead: Lead, target: OrderStatus) -> Order:
        order = Order(
            display_id=next_display_id(session),
            customer_name=lead.name,
            customer_phone=lead.phone,
            customer_city=lead.city,
            customer_address=lead.address,
            product_id=lead.product_id,
            product_name=lead.product_interest or "",
            quantity=lead.quantity,
            price=lead.price,
            status=str(target),
            source_type="prediction_lead",
            source_lead_id=lead.id,
            assigned_agent_id=lead.assigned_agent_id,
            assigned_agent_name=lead.assigned_agent_name,
            assigned_at=lead.assigned_at or (utcnow() if lead.assigned_agent_id else None),
            assigned_by=lead.assigned_by,
        )
        session.add(order)
        session.flush()

        for item in lead.items:
            session.add(
                OrderLineItem(
                    order_id=order.id,
                    product_id=item.product_id,
                    product_name=item.product_name,
                    quantity=item.quantity,
                    price_per_unit=item.price_per_unit,
                    total_price=line_total(item.quantity, item.price_per_unit),
                )
            )
        if lead.items:
            recompute_order_totals(session, order)

        if lead.notes:
            session.add(OrderNote(order_id=order.id, text=lead.notes, author_id=actor.user_id, author_name=actor.label))
        session.add(OrderNote(order_id=order.id, text="Converted from lead", author_id=actor.user_id, author_name=actor.label))
        record_order_history(
            session,
            order.id,
            from_status=None,
            to_status=target,
            actor=actor,
            detail="Converted from lead",
        )
        session.flush()
        return order

    def _sync_existing(
        self,
        session: Session,
        actor: ActorContext,
        lead: Lead,
        order: Order,
        target: OrderStatus,
    ) -> ConversionResult:
        if order.status == target:
            observe_lead_conversion("unchanged")
            return ConversionResult(outcome="unchanged", order=order)
        if not can_transition(order.status, target):
            observe_lead_conversion("blocked")
            logger.info(
                "lead.conversion_sync_blocked",
                extra={
                    "lead_id": str(lead.id),
                    "order_id": str(order.id),
                    "from_status": order.status,
                    "to_status": str(target),
                },
            )
            return ConversionResult(outcome="blocked", order=order)

        outcome = self.lifecycle.apply(
            session,
            actor,
            order,
            target,
            authorize=False,
            sync_lead=False,
            detail="Synced from lead",
        )
        observe_lead_conversion("updated")
        events = outcome.events()
        events.append(
            envelope(
                "sales.lead.converted",
                lead_id=str(lead.id),
                order_id=str(order.id),
                display_id=order.display_id,
                outcome="updated",
            )
        )
        return ConversionResult(outcome="updated", order=order, events=events)


conversion_pipeline = ConversionPipeline()
