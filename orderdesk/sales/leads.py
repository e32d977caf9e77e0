from __future__ import annotations

import hmac
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Select, delete, func, or_, select, update
from sqlalchemy.orm import Session, selectinload

from orderdesk.core.config import get_settings
from orderdesk.core.database import atomic
from orderdesk.core.errors import Forbidden, NotFound, PreconditionFailed, Unauthorized
from orderdesk.events import envelope, publish_all
from orderdesk.sales.history import record_lead_history, record_order_history
from orderdesk.sales.lead_lifecycle import LeadLifecycle, lead_lifecycle
from orderdesk.sales.models import CallLogEntry, Lead, LeadLineItem, Order
from orderdesk.sales.schemas import (
    Acknowledgement,
    CallLogCreate,
    CallLogRead,
    HistoryRead,
    InboundLead,
    InboundLeadResult,
    LeadCreate,
    LeadDetail,
    LeadListResponse,
    LeadRead,
    LeadUpdate,
    LineItemInput,
    LineItemUpdate,
)
from orderdesk.sales.sequence import next_display_id
from orderdesk.sales.states import CALL_OUTCOME_TO_LEAD, LeadStatus, OrderStatus
from orderdesk.sales.totals import line_total, recompute_lead_totals
from orderdesk.security import ActorContext, Capability, can_act_on_lead, can_act_on_order, require

logger = logging.getLogger("orderdesk.sales.leads")

_DERIVED_FIELDS = {"product_interest", "quantity", "price"}

WEBHOOK_ACTOR = ActorContext(user_id="system:webhook", capability=Capability.SCOPED, display_name="Inbound webhook")


@dataclass(slots=True)
class LeadService:
    lifecycle: LeadLifecycle = field(default_factory=lambda: lead_lifecycle)

    def _load(self, session: Session, lead_id: uuid.UUID) -> Lead:
        lead = session.get(Lead, lead_id)
        if lead is None:
            raise NotFound("Lead not found")
        return lead

    def _load_for_write(self, session: Session, actor: ActorContext, lead_id: uuid.UUID) -> Lead:
        lead = self._load(session, lead_id)
        if not can_act_on_lead(actor, lead.assigned_agent_id):
            raise Forbidden("Lead is already assigned to another agent")
        return lead

    def _new_item(self, lead_id: uuid.UUID, item: LineItemInput) -> LeadLineItem:
        return LeadLineItem(
            lead_id=lead_id,
            product_id=item.product_id,
            product_name=item.product_name,
            quantity=item.quantity,
            price_per_unit=item.price_per_unit,
            total_price=line_total(item.quantity, item.price_per_unit),
        )

    def create_lead(self, session: Session, actor: ActorContext, dto: LeadCreate) -> LeadRead:
        require(actor, "lead.create")
        payload = dto.model_dump(mode="python", exclude={"items"})
        with atomic(session):
            lead = Lead(**payload)
            session.add(lead)
            session.flush()
            for item in dto.items:
                session.add(self._new_item(lead.id, item))
            if dto.items:
                recompute_lead_totals(session, lead)
            record_lead_history(session, lead.id, from_status=None, to_status=lead.status, actor=actor)
        publish_all([envelope("sales.lead.created", lead_id=str(lead.id), source=lead.source)])
        return LeadRead.model_validate(lead)

    def list_leads(
        self,
        session: Session,
        actor: ActorContext,
        *,
        status: str | None = None,
        agent_id: str | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> LeadListResponse:
        require(actor, "lead.read")
        settings = get_settings()
        limit = min(limit or settings.default_page_size, settings.max_page_size)
        page = max(page, 1)

        stmt: Select[tuple[Lead]] = select(Lead)
        if status:
            stmt = stmt.where(Lead.status == status)
        if agent_id:
            stmt = stmt.where(Lead.assigned_agent_id == agent_id)
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(or_(Lead.name.ilike(pattern), Lead.phone.ilike(pattern), Lead.city.ilike(pattern)))
        if not actor.is_privileged:
            stmt = stmt.where(or_(Lead.assigned_agent_id.is_(None), Lead.assigned_agent_id == actor.user_id))

        total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        rows = session.scalars(
            stmt.options(selectinload(Lead.items))
            .order_by(Lead.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return LeadListResponse(leads=[LeadRead.model_validate(row) for row in rows], total=total, page=page, limit=limit)

    def get_lead(self, session: Session, actor: ActorContext, lead_id: uuid.UUID) -> LeadDetail:
        require(actor, "lead.read")
        lead = self._load_for_write(session, actor, lead_id)
        linked_order_id = session.scalar(select(Order.id).where(Order.source_lead_id == lead.id))
        detail = LeadDetail.model_validate(lead)
        return detail.model_copy(
            update={
                "history": [HistoryRead.model_validate(item) for item in reversed(lead.history)],
                "linked_order_id": linked_order_id,
            }
        )

    def update_lead(self, session: Session, actor: ActorContext, lead_id: uuid.UUID, dto: LeadUpdate) -> LeadRead:
        """Patch lead fields; a status change runs the lead state machine and conversion."""
        require(actor, "lead.update")
        changes: dict[str, Any] = dto.model_dump(exclude_unset=True)
        status = changes.pop("status", None)
        events: list[dict[str, Any]] = []
        with atomic(session):
            lead = self._load_for_write(session, actor, lead_id)
            if lead.items and _DERIVED_FIELDS.intersection(changes):
                raise PreconditionFailed("Product, quantity and price come from the line items; edit the items instead")
            for key, value in changes.items():
                setattr(lead, key, value)
            if status is not None:
                outcome = self.lifecycle.apply(session, actor, lead, status)
                events = outcome.events()
        publish_all(events)
        return LeadRead.model_validate(lead)

    def take_lead(self, session: Session, actor: ActorContext, lead_id: uuid.UUID) -> LeadRead:
        require(actor, "lead.take")
        with atomic(session):
            lead = self._load_for_write(session, actor, lead_id)
            if actor.is_privileged and lead.assigned_agent_id != actor.user_id:
                lead.assigned_agent_id = actor.user_id
                lead.assigned_agent_name = actor.label
                lead.assigned_by = actor.label
                lead.assigned_at = datetime.now(timezone.utc)
            else:
                self.lifecycle.claim(session, actor, lead)
            outcome = self.lifecycle.apply(session, actor, lead, LeadStatus.INTERESTED, detail="Lead taken")
        publish_all(outcome.events())
        return LeadRead.model_validate(lead)

    def add_item(self, session: Session, actor: ActorContext, lead_id: uuid.UUID, dto: LineItemInput) -> LeadRead:
        require(actor, "lead.items.write")
        with atomic(session):
            lead = self._load_for_write(session, actor, lead_id)
            session.add(self._new_item(lead.id, dto))
            recompute_lead_totals(session, lead)
        return LeadRead.model_validate(lead)

    def update_item(self, session: Session, actor: ActorContext, item_id: uuid.UUID, dto: LineItemUpdate) -> LeadRead:
        require(actor, "lead.items.write")
        with atomic(session):
            item = session.get(LeadLineItem, item_id)
            if item is None:
                raise NotFound("Lead item not found")
            lead = self._load_for_write(session, actor, item.lead_id)
            for key, value in dto.model_dump(exclude_unset=True).items():
                setattr(item, key, value)
            recompute_lead_totals(session, lead)
        return LeadRead.model_validate(lead)

    def delete_item(self, session: Session, actor: ActorContext, item_id: uuid.UUID) -> LeadRead:
        require(actor, "lead.items.write")
        with atomic(session):
            item = session.get(LeadLineItem, item_id)
            if item is None:
                raise NotFound("Lead item not found")
            lead = self._load_for_write(session, actor, item.lead_id)
            session.delete(item)
            recompute_lead_totals(session, lead)
        return LeadRead.model_validate(lead)

    def log_call(self, session: Session, actor: ActorContext, dto: CallLogCreate) -> CallLogRead:
        """Record a call; on a lead the outcome also drives the lead's status."""
        require(actor, "call_log.create")
        events: list[dict[str, Any]] = []
        with atomic(session):
            if dto.context_type == "lead":
                lead = self._load_for_write(session, actor, dto.context_id)
                mapped = CALL_OUTCOME_TO_LEAD.get(dto.outcome)
                if mapped is not None:
                    outcome = self.lifecycle.apply(session, actor, lead, mapped, detail=f"Call outcome: {dto.outcome}")
                    events = outcome.events()
            else:
                order = session.get(Order, dto.context_id)
                if order is None:
                    raise NotFound("Order not found")
                if not can_act_on_order(actor, order.assigned_agent_id):
                    raise Forbidden("You can only access orders assigned to you")
            entry = CallLogEntry(
                context_type=dto.context_type,
                context_id=dto.context_id,
                outcome=dto.outcome,
                notes=dto.notes,
                agent_id=actor.user_id,
                agent_name=actor.label,
            )
            session.add(entry)
        publish_all(events)
        return CallLogRead.model_validate(entry)

    def list_calls(
        self,
        session: Session,
        actor: ActorContext,
        *,
        context_type: str,
        context_id: uuid.UUID,
    ) -> list[CallLogRead]:
        require(actor, "call_log.read")
        rows = session.scalars(
            select(CallLogEntry)
            .where(CallLogEntry.context_type == context_type, CallLogEntry.context_id == context_id)
            .order_by(CallLogEntry.created_at.desc(), CallLogEntry.id.desc())
        ).all()
        return [CallLogRead.model_validate(row) for row in rows]

    def ingest_inbound(self, session: Session, dto: InboundLead, token: str | None) -> InboundLeadResult:
        """Create a lead and its pending order from an external lead source."""
        expected = get_settings().inbound_webhook_token
        if expected and not hmac.compare_digest(token or "", expected):
            raise Unauthorized("Invalid webhook token")

        with atomic(session):
            lead = Lead(
                name=dto.name.strip(),
                phone=dto.phone.strip(),
                city=dto.city.strip(),
                address=dto.address.strip(),
                product_interest=dto.product_interest,
                source=dto.source,
                status=str(LeadStatus.NOT_CONTACTED),
            )
            session.add(lead)
            session.flush()
            order = Order(
                display_id=next_display_id(session),
                customer_name=lead.name,
                customer_phone=lead.phone,
                customer_city=lead.city,
                customer_address=lead.address,
                product_name=dto.product_interest or "",
                status=str(OrderStatus.PENDING),
                source_type="inbound_lead",
                source_lead_id=lead.id,
            )
            session.add(order)
            session.flush()
            record_lead_history(session, lead.id, from_status=None, to_status=lead.status, actor=WEBHOOK_ACTOR)
            record_order_history(session, order.id, from_status=None, to_status=order.status, actor=WEBHOOK_ACTOR)

        publish_all(
            [
                envelope("sales.lead.created", lead_id=str(lead.id), source=lead.source),
                envelope(
                    "sales.order.created",
                    order_id=str(order.id),
                    display_id=order.display_id,
                    status=order.status,
                    source_type=order.source_type,
                ),
            ]
        )
        logger.info("lead.inbound_received", extra={"lead_id": str(lead.id), "order_id": str(order.id)})
        return InboundLeadResult(lead_id=lead.id, order_id=order.id, display_id=order.display_id)

    def purge_lead(self, session: Session, actor: ActorContext, lead_id: uuid.UUID) -> Acknowledgement:
        require(actor, "lead.purge")
        with atomic(session):
            lead = self._load(session, lead_id)
            session.execute(
                update(Order)
                .where(Order.source_lead_id == lead.id)
                .values(source_lead_id=None)
                .execution_options(synchronize_session=False)
            )
            session.execute(
                delete(CallLogEntry).where(CallLogEntry.context_type == "lead", CallLogEntry.context_id == lead.id)
            )
            session.delete(lead)
        logger.warning("lead.purged", extra={"lead_id": str(lead_id), "actor_user_id": actor.user_id})
        return Acknowledgement()


lead_service = LeadService()
