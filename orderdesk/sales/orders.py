from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any

from sqlalchemy import Select, delete, func, or_, select
from sqlalchemy.orm import Session, selectinload

from orderdesk.core.config import get_settings
from orderdesk.core.database import atomic
from orderdesk.core.errors import Forbidden, NotFound, PreconditionFailed
from orderdesk.directory.service import profile_directory
from orderdesk.events import envelope, publish_all
from orderdesk.sales.duplicates import find_phone_duplicates
from orderdesk.sales.history import record_order_history
from orderdesk.sales.models import CallLogEntry, Order, OrderLineItem, OrderNote
from orderdesk.sales.schemas import (
    Acknowledgement,
    HistoryRead,
    LineItemInput,
    LineItemUpdate,
    NoteCreate,
    NoteRead,
    OrderCreate,
    OrderDetail,
    OrderListItem,
    OrderListResponse,
    OrderRead,
    OrderUpdate,
)
from orderdesk.sales.sequence import next_display_id
from orderdesk.sales.states import CREATE_STATUSES, LOCKED_STATUSES, OrderStatus
from orderdesk.sales.totals import line_total, recompute_order_totals
from orderdesk.security import ActorContext, can_act_on_order, require

logger = logging.getLogger("orderdesk.sales.orders")

_LOCKED_FIELDS = {"product_id", "product_name", "quantity", "price"}
_DERIVED_FIELDS = {"product_name", "quantity", "price"}


@dataclass(slots=True)
class OrderService:
    def _load(self, session: Session, actor: ActorContext, order_id: uuid.UUID) -> Order:
        order = session.get(Order, order_id)
        if order is None:
            raise NotFound("Order not found")
        if not can_act_on_order(actor, order.assigned_agent_id):
            raise Forbidden("You can only access orders assigned to you")
        return order

    def _ensure_unlocked(self, order: Order) -> None:
        if order.status in LOCKED_STATUSES:
            raise PreconditionFailed("Cannot modify products: order is shipped, delivered or paid")

    def create_order(self, session: Session, actor: ActorContext, dto: OrderCreate) -> OrderRead:
        require(actor, "order.create")
        status = dto.status if dto.status in CREATE_STATUSES else OrderStatus.PENDING

        agent_id = dto.assigned_agent_id if actor.is_privileged else actor.user_id
        agent_name = None
        if agent_id == actor.user_id:
            agent_name = actor.label
        elif agent_id is not None:
            agent_name = profile_directory.require_agent(session, agent_id).full_name

        with atomic(session):
            order = Order(
                display_id=next_display_id(session),
                customer_name=dto.customer_name.strip(),
                customer_phone=dto.customer_phone.strip(),
                customer_city=dto.customer_city.strip(),
                customer_address=dto.customer_address.strip(),
                postal_code=dto.postal_code,
                birthday=dto.birthday,
                product_id=dto.product_id,
                product_name=dto.product_name,
                quantity=dto.quantity,
                price=dto.price,
                status=str(status),
                source_type="manual",
                assigned_agent_id=agent_id,
                assigned_agent_name=agent_name,
                assigned_at=datetime.now(timezone.utc) if agent_id else None,
                assigned_by=actor.label if agent_id else None,
            )
            session.add(order)
            session.flush()
            for item in dto.items:
                session.add(self._new_item(order.id, item))
            if dto.items:
                recompute_order_totals(session, order)
            if dto.notes:
                session.add(OrderNote(order_id=order.id, text=dto.notes, author_id=actor.user_id, author_name=actor.label))
            session.add(OrderNote(order_id=order.id, text="Manual order created", author_id=actor.user_id, author_name=actor.label))
            record_order_history(session, order.id, from_status=None, to_status=status, actor=actor)

        publish_all(
            [
                envelope(
                    "sales.order.created",
                    order_id=str(order.id),
                    display_id=order.display_id,
                    status=order.status,
                    source_type=order.source_type,
                )
            ]
        )
        logger.info(
            "order.created",
            extra={"order_id": str(order.id), "display_id": order.display_id, "actor_user_id": actor.user_id},
        )
        return OrderRead.model_validate(order)

    def list_orders(
        self,
        session: Session,
        actor: ActorContext,
        *,
        status: str | None = None,
        agent_id: str | None = None,
        source_type: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> OrderListResponse:
        require(actor, "order.read")
        settings = get_settings()
        limit = min(limit or settings.default_page_size, settings.max_page_size)
        page = max(page, 1)

        stmt: Select[tuple[Order]] = select(Order)
        if status:
            stmt = stmt.where(Order.status == status)
        if agent_id:
            stmt = stmt.where(Order.assigned_agent_id == agent_id)
        if source_type:
            stmt = stmt.where(Order.source_type == source_type)
        if date_from is not None:
            stmt = stmt.where(Order.created_at >= datetime.combine(date_from, time.min, tzinfo=timezone.utc))
        if date_to is not None:
            stmt = stmt.where(Order.created_at <= datetime.combine(date_to, time.max, tzinfo=timezone.utc))
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(
                or_(
                    Order.display_id.ilike(pattern),
                    Order.customer_name.ilike(pattern),
                    Order.customer_phone.ilike(pattern),
                    Order.product_name.ilike(pattern),
                )
            )
        elif not can_act_on_order(actor, None):
            # Agents browse their own queue; a search looks across all orders.
            stmt = stmt.where(Order.assigned_agent_id == actor.user_id)

        total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        rows = session.scalars(
            stmt.options(selectinload(Order.items))
            .order_by(Order.created_at.desc(), Order.display_id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        orders = [
            OrderListItem.model_validate(row).model_copy(update={"is_owned": row.assigned_agent_id == actor.user_id})
            for row in rows
        ]
        return OrderListResponse(orders=orders, total=total, page=page, limit=limit)

    def get_order(self, session: Session, actor: ActorContext, order_id: uuid.UUID) -> OrderDetail:
        require(actor, "order.read")
        order = self._load(session, actor, order_id)
        detail = OrderDetail.model_validate(order)
        return detail.model_copy(
            update={
                "history": [HistoryRead.model_validate(item) for item in reversed(order.history)],
                "notes": [NoteRead.model_validate(item) for item in reversed(order.notes)],
                "phone_duplicates": find_phone_duplicates(
                    session, order.customer_phone, exclude_order_id=order.id
                ),
            }
        )

    def update_order(self, session: Session, actor: ActorContext, order_id: uuid.UUID, dto: OrderUpdate) -> OrderRead:
        require(actor, "order.update")
        changes: dict[str, Any] = dto.model_dump(exclude_unset=True)
        with atomic(session):
            order = self._load(session, actor, order_id)
            if _LOCKED_FIELDS.intersection(changes) and order.status in LOCKED_STATUSES:
                raise PreconditionFailed("Product and price are locked because the order is shipped, delivered or paid")
            if order.items and _DERIVED_FIELDS.intersection(changes):
                raise PreconditionFailed("Product, quantity and price come from the line items; edit the items instead")
            for key, value in changes.items():
                if isinstance(value, str) and key.startswith("customer_"):
                    value = value.strip()
                setattr(order, key, value)
            if changes:
                order.row_version += 1
        return OrderRead.model_validate(order)

    def _new_item(self, order_id: uuid.UUID, item: LineItemInput) -> OrderLineItem:
        return OrderLineItem(
            order_id=order_id,
            product_id=item.product_id,
            product_name=item.product_name,
            quantity=item.quantity,
            price_per_unit=item.price_per_unit,
            total_price=line_total(item.quantity, item.price_per_unit),
        )

    def _item_timeline(self, session: Session, actor: ActorContext, order: Order, detail: str) -> None:
        record_order_history(
            session,
            order.id,
            from_status=order.status,
            to_status=order.status,
            actor=actor,
            detail=detail,
        )

    def add_item(self, session: Session, actor: ActorContext, order_id: uuid.UUID, dto: LineItemInput) -> OrderRead:
        require(actor, "order.items.write")
        with atomic(session):
            order = self._load(session, actor, order_id)
            self._ensure_unlocked(order)
            session.add(self._new_item(order.id, dto))
            recompute_order_totals(session, order)
            self._item_timeline(session, actor, order, f"Product added: {dto.product_name} (qty {dto.quantity})")
        return OrderRead.model_validate(order)

    def update_item(
        self,
        session: Session,
        actor: ActorContext,
        item_id: uuid.UUID,
        dto: LineItemUpdate,
    ) -> OrderRead:
        require(actor, "order.items.write")
        with atomic(session):
            item = session.get(OrderLineItem, item_id)
            if item is None:
                raise NotFound("Order item not found")
            order = self._load(session, actor, item.order_id)
            self._ensure_unlocked(order)
            for key, value in dto.model_dump(exclude_unset=True).items():
                setattr(item, key, value)
            recompute_order_totals(session, order)
            self._item_timeline(session, actor, order, f"Product updated: {item.product_name} (qty {item.quantity})")
        return OrderRead.model_validate(order)

    def delete_item(self, session: Session, actor: ActorContext, item_id: uuid.UUID) -> OrderRead:
        require(actor, "order.items.write")
        with atomic(session):
            item = session.get(OrderLineItem, item_id)
            if item is None:
                raise NotFound("Order item not found")
            order = self._load(session, actor, item.order_id)
            self._ensure_unlocked(order)
            name = item.product_name
            session.delete(item)
            recompute_order_totals(session, order)
            self._item_timeline(session, actor, order, f"Product removed: {name}")
        return OrderRead.model_validate(order)

    def replace_items(
        self,
        session: Session,
        actor: ActorContext,
        order_id: uuid.UUID,
        items: list[LineItemInput],
    ) -> OrderRead:
        require(actor, "order.items.write")
        with atomic(session):
            order = self._load(session, actor, order_id)
            self._ensure_unlocked(order)
            session.execute(delete(OrderLineItem).where(OrderLineItem.order_id == order.id))
            for item in items:
                session.add(self._new_item(order.id, item))
            recompute_order_totals(session, order)
            self._item_timeline(session, actor, order, f"Products replaced ({len(items)} items)")
        return OrderRead.model_validate(order)

    def add_note(self, session: Session, actor: ActorContext, order_id: uuid.UUID, dto: NoteCreate) -> NoteRead:
        require(actor, "order.notes.write")
        with atomic(session):
            order = self._load(session, actor, order_id)
            note = OrderNote(order_id=order.id, text=dto.text, author_id=actor.user_id, author_name=actor.label)
            session.add(note)
        return NoteRead.model_validate(note)

    def purge_order(self, session: Session, actor: ActorContext, order_id: uuid.UUID) -> Acknowledgement:
        require(actor, "order.purge")
        with atomic(session):
            order = session.get(Order, order_id)
            if order is None:
                raise NotFound("Order not found")
            session.execute(
                delete(CallLogEntry).where(CallLogEntry.context_type == "order", CallLogEntry.context_id == order.id)
            )
            session.delete(order)
        logger.warning("order.purged", extra={"order_id": str(order_id), "actor_user_id": actor.user_id})
        return Acknowledgement()


order_service = OrderService()
