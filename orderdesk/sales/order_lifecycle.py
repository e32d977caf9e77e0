from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from orderdesk.core.database import atomic
from orderdesk.core.errors import Conflict, DomainError, Forbidden, NotFound, PreconditionFailed, ValidationFailed
from orderdesk.events import envelope, publish_all
from orderdesk.inventory.ledger import InventoryLedger, StockPosting, inventory_ledger
from orderdesk.metrics import observe_order_transition
from orderdesk.otel import get_tracer
from orderdesk.sales.history import record_lead_history, record_order_history
from orderdesk.sales.models import Lead, Order
from orderdesk.sales.schemas import BulkReport, OrderRead
from orderdesk.sales.states import (
    BULK_STATUS_TARGETS,
    COMPLETE_DATA_FIELDS,
    COMPLETE_DATA_STATUSES,
    OrderStatus,
    can_transition,
    order_to_lead_status,
)
from orderdesk.security import ActorContext, can_act_on_order, require

logger = logging.getLogger("orderdesk.sales.orders")
tracer = get_tracer("orderdesk.sales")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class TransitionOutcome:
    order: Order
    from_status: str
    to_status: str
    changed: bool
    lead_status: str | None = None
    postings: list[StockPosting] = field(default_factory=list)

    def events(self) -> list[dict[str, Any]]:
        if not self.changed:
            return []
        items = [posting.to_event() for posting in self.postings]
        items.append(
            envelope(
                "sales.order.status_changed",
                order_id=str(self.order.id),
                display_id=self.order.display_id,
                from_status=self.from_status,
                to_status=self.to_status,
                source_lead_id=str(self.order.source_lead_id) if self.order.source_lead_id else None,
                lead_status=self.lead_status,
            )
        )
        return items


def stock_requirements(order: Order) -> dict[uuid.UUID, int]:
    """Quantities per product an order draws on shipment.

    Line items win; freeform items without a product are skipped. An order
    without items falls back to its single product/quantity pair.
    """
    requirements: dict[uuid.UUID, int] = defaultdict(int)
    if order.items:
        for item in order.items:
            if item.product_id is not None:
                requirements[item.product_id] += item.quantity
    elif order.product_id is not None:
        requirements[order.product_id] += order.quantity
    return dict(requirements)


def missing_customer_fields(order: Order) -> list[str]:
    return [name for name in COMPLETE_DATA_FIELDS if not (getattr(order, name) or "").strip()]


@dataclass(slots=True)
class OrderLifecycle:
    ledger: InventoryLedger = field(default_factory=lambda: inventory_ledger)

    def apply(
        self,
        session: Session,
        actor: ActorContext,
        order: Order,
        target: str,
        *,
        authorize: bool = True,
        sync_lead: bool = True,
        detail: str | None = None,
    ) -> TransitionOutcome:
        """Validate and apply one status change inside the caller's transaction.

        Order of effects: validate, deduct or restore stock, persist status,
        write history, sync the linked lead. Nothing is committed here.
        ``authorize=False`` is the system path used by lead conversion: role,
        ownership and customer-data checks are skipped, the graph is not.
        """
        try:
            target_status = OrderStatus(target)
        except ValueError as exc:
            raise ValidationFailed(f"Unknown order status: {target}") from exc
        current = order.status

        if authorize:
            require(actor, f"order.status.{target_status}")
            if not can_act_on_order(actor, order.assigned_agent_id):
                raise Forbidden("You can only update orders assigned to you")
            if target_status in COMPLETE_DATA_STATUSES:
                missing = missing_customer_fields(order)
                if missing:
                    raise PreconditionFailed(
                        "Customer name, phone, city and address are required for this status"
                    )

        if current == target_status:
            observe_order_transition(target_status, "unchanged")
            return TransitionOutcome(order=order, from_status=current, to_status=current, changed=False)

        if not can_transition(current, target_status):
            observe_order_transition(target_status, "rejected")
            raise PreconditionFailed(f"Cannot change order status from {current} to {target_status}")

        with tracer.start_as_current_span("sales.order.transition") as span:
            span.set_attribute("order.display_id", order.display_id)
            span.set_attribute("order.to_status", str(target_status))
            session.flush()
            seen_version = order.row_version
            postings: list[StockPosting] = []
            stock_deducted = order.stock_deducted

            if target_status == OrderStatus.SHIPPED and not order.stock_deducted:
                postings = self.ledger.deduct_many(
                    session,
                    stock_requirements(order),
                    actor=actor,
                    note=f"Order {order.display_id} shipped",
                    reference=order.display_id,
                )
                stock_deducted = True
            elif target_status == OrderStatus.RETURNED and order.stock_deducted:
                for product_id, quantity in stock_requirements(order).items():
                    postings.append(
                        self.ledger.post(
                            session,
                            product_id=product_id,
                            delta=quantity,
                            reason="order_return",
                            actor=actor,
                            note=f"Order {order.display_id} returned",
                            reference=order.display_id,
                        )
                    )
                stock_deducted = False

            result = session.execute(
                update(Order)
                .where(Order.id == order.id, Order.row_version == seen_version, Order.status == current)
                .values(
                    status=str(target_status),
                    stock_deducted=stock_deducted,
                    row_version=Order.row_version + 1,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                observe_order_transition(target_status, "conflict")
                raise Conflict("Order was modified by another request")
            session.expire(order, ["status", "stock_deducted", "row_version", "updated_at"])

            record_order_history(
                session,
                order.id,
                from_status=current,
                to_status=target_status,
                actor=actor,
                detail=detail,
            )
            lead_status = self._sync_lead(session, actor, order, target_status) if sync_lead else None
            session.flush()

        observe_order_transition(target_status, "applied")
        logger.info(
            "order.status_changed",
            extra={
                "order_id": str(order.id),
                "display_id": order.display_id,
                "from_status": current,
                "to_status": str(target_status),
                "actor_user_id": actor.user_id,
            },
        )
        return TransitionOutcome(
            order=order,
            from_status=current,
            to_status=str(target_status),
            changed=True,
            lead_status=lead_status,
            postings=postings,
        )

    def _sync_lead(self, session: Session, actor: ActorContext, order: Order, target: OrderStatus) -> str | None:
        if order.source_lead_id is None:
            return None
        lead = session.get(Lead, order.source_lead_id)
        if lead is None:
            return None
        mapped = order_to_lead_status(target)
        if lead.status == mapped:
            return None
        previous = lead.status
        lead.status = str(mapped)
        lead.row_version += 1
        record_lead_history(
            session,
            lead.id,
            from_status=previous,
            to_status=mapped,
            actor=actor,
            detail=f"Synced from order {order.display_id}",
        )
        logger.info(
            "lead.synced_from_order",
            extra={"lead_id": str(lead.id), "order_id": str(order.id), "from_status": previous, "to_status": str(mapped)},
        )
        return str(mapped)

    def transition(
        self,
        session: Session,
        actor: ActorContext,
        order_id: uuid.UUID,
        target: str,
        *,
        note: str | None = None,
    ) -> OrderRead:
        with atomic(session):
            order = session.get(Order, order_id)
            if order is None:
                raise NotFound("Order not found")
            outcome = self.apply(session, actor, order, target, detail=note)
        publish_all(outcome.events())
        return OrderRead.model_validate(order)

    def bulk_status(
        self,
        session: Session,
        actor: ActorContext,
        order_ids: Iterable[uuid.UUID],
        target: str,
    ) -> BulkReport:
        """Move many orders at once; each item succeeds or is skipped on its own."""
        require(actor, "order.bulk_status")
        target_status = OrderStatus(target)
        if target_status not in BULK_STATUS_TARGETS:
            raise ValidationFailed(f"Bulk status must be one of: {', '.join(sorted(BULK_STATUS_TARGETS))}")

        report = BulkReport()
        events: list[dict[str, Any]] = []
        with atomic(session):
            for order_id in dict.fromkeys(order_ids):
                order = session.get(Order, order_id)
                if order is None:
                    report.add(order_id, "skipped", "Order not found")
                    continue
                if order.status == target_status:
                    report.add(order_id, "skipped", f"Already {target_status}")
                    continue
                if target_status == OrderStatus.PAID and order.status not in (OrderStatus.SHIPPED, OrderStatus.CONFIRMED):
                    report.add(order_id, "skipped", "Only shipped or confirmed orders can be marked paid")
                    continue
                try:
                    with session.begin_nested():
                        outcome = self.apply(session, actor, order, target_status)
                except DomainError as exc:
                    logger.info(
                        "order.bulk_status_skipped",
                        extra={"order_id": str(order_id), "to_status": str(target_status), "error": exc.message},
                    )
                    report.add(order_id, "skipped", exc.message)
                    continue
                events.extend(outcome.events())
                report.add(order_id, "updated")
        publish_all(events)
        return report


order_lifecycle = OrderLifecycle()
