from __future__ import annotations

import re
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from orderdesk.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


_PHONE_STRIP_RE = re.compile(r"[^0-9+]")


def normalize_phone(value: str | None) -> str:
    return _PHONE_STRIP_RE.sub("", value or "")


class OrderSequence(Base):
    __tablename__ = "sales_order_sequence"

    name: Mapped[str] = mapped_column(String(32), primary_key=True)
    next_value: Mapped[int] = mapped_column(Integer, nullable=False)


class Lead(Base):
    __tablename__ = "sales_lead"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="", server_default="")
    phone: Mapped[str] = mapped_column(String(64), nullable=False, default="", server_default="")
    phone_normalized: Mapped[str] = mapped_column(String(64), nullable=False, default="", server_default="")
    city: Mapped[str] = mapped_column(String(128), nullable=False, default="", server_default="")
    address: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    product_interest: Mapped[str | None] = mapped_column(String(255), nullable=True)
    product_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("inventory_product.id", ondelete="SET NULL"),
        nullable=True,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="manual", server_default="manual")
    list_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="not_contacted", server_default="not_contacted")
    assigned_agent_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    assigned_agent_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    items: Mapped[list[LeadLineItem]] = relationship(
        "LeadLineItem",
        back_populates="lead",
        cascade="all, delete-orphan",
        order_by="LeadLineItem.created_at",
    )
    history: Mapped[list[LeadHistoryEntry]] = relationship(
        "LeadHistoryEntry",
        cascade="all, delete-orphan",
        order_by="LeadHistoryEntry.id",
    )

    __table_args__ = (
        Index("ix_sales_lead_status", "status"),
        Index("ix_sales_lead_assigned_agent", "assigned_agent_id"),
        Index("ix_sales_lead_phone_normalized", "phone_normalized"),
    )

    @validates("phone")
    def _normalize_phone(self, key: str, value: str | None) -> str:
        self.phone_normalized = normalize_phone(value)
        return value or ""


class LeadLineItem(Base):
    __tablename__ = "sales_lead_item"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sales_lead.id", ondelete="CASCADE"),
        nullable=False,
    )
    product_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("inventory_product.id", ondelete="SET NULL"),
        nullable=True,
    )
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    price_per_unit: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    lead: Mapped[Lead] = relationship("Lead", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_sales_lead_item_quantity_positive"),
        CheckConstraint("price_per_unit >= 0", name="ck_sales_lead_item_price_non_negative"),
    )


class LeadHistoryEntry(Base):
    __tablename__ = "sales_lead_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sales_lead.id", ondelete="CASCADE"),
        nullable=False,
    )
    from_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    to_status: Mapped[str] = mapped_column(String(32), nullable=False)
    changed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    changed_by_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (Index("ix_sales_lead_history_lead_changed", "lead_id", "changed_at"),)


class Order(Base):
    __tablename__ = "sales_order"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    display_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    product_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("inventory_product.id", ondelete="SET NULL"),
        nullable=True,
    )
    product_name: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False, default="", server_default="")
    customer_phone: Mapped[str] = mapped_column(String(64), nullable=False, default="", server_default="")
    customer_phone_normalized: Mapped[str] = mapped_column(String(64), nullable=False, default="", server_default="")
    customer_city: Mapped[str] = mapped_column(String(128), nullable=False, default="", server_default="")
    customer_address: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    postal_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    birthday: Mapped[date | None] = mapped_column(Date, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending", server_default="pending")
    source_type: Mapped[str] = mapped_column(String(32), nullable=False, default="manual", server_default="manual")
    source_lead_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sales_lead.id", ondelete="SET NULL"),
        nullable=True,
    )
    stock_deducted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    assigned_agent_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    assigned_agent_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    items: Mapped[list[OrderLineItem]] = relationship(
        "OrderLineItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLineItem.created_at",
    )
    history: Mapped[list[OrderHistoryEntry]] = relationship(
        "OrderHistoryEntry",
        cascade="all, delete-orphan",
        order_by="OrderHistoryEntry.id",
    )
    notes: Mapped[list[OrderNote]] = relationship(
        "OrderNote",
        cascade="all, delete-orphan",
        order_by="OrderNote.created_at",
    )

    __table_args__ = (
        # One linked order per lead: the conversion idempotency key.
        UniqueConstraint("source_lead_id", name="uq_sales_order_source_lead_id"),
        CheckConstraint("price >= 0", name="ck_sales_order_price_non_negative"),
        Index("ix_sales_order_status_created", "status", "created_at"),
        Index("ix_sales_order_assigned_agent", "assigned_agent_id"),
        Index("ix_sales_order_phone_normalized", "customer_phone_normalized"),
    )

    @validates("customer_phone")
    def _normalize_phone(self, key: str, value: str | None) -> str:
        self.customer_phone_normalized = normalize_phone(value)
        return value or ""


class OrderLineItem(Base):
    __tablename__ = "sales_order_item"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sales_order.id", ondelete="CASCADE"),
        nullable=False,
    )
    product_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("inventory_product.id", ondelete="SET NULL"),
        nullable=True,
    )
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    price_per_unit: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    order: Mapped[Order] = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_sales_order_item_quantity_positive"),
        CheckConstraint("price_per_unit >= 0", name="ck_sales_order_item_price_non_negative"),
        Index("ix_sales_order_item_order", "order_id"),
    )


class OrderHistoryEntry(Base):
    __tablename__ = "sales_order_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sales_order.id", ondelete="CASCADE"),
        nullable=False,
    )
    from_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    to_status: Mapped[str] = mapped_column(String(32), nullable=False)
    changed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    changed_by_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (Index("ix_sales_order_history_order_changed", "order_id", "changed_at"),)


class OrderNote(Base):
    __tablename__ = "sales_order_note"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sales_order.id", ondelete="CASCADE"),
        nullable=False,
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    author_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    author_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class CallLogEntry(Base):
    __tablename__ = "sales_call_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    context_type: Mapped[str] = mapped_column(String(16), nullable=False)
    context_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    outcome: Mapped[str] = mapped_column(String(32), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    agent_id: Mapped[str] = mapped_column(String(128), nullable=False)
    agent_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("context_type IN ('order', 'lead')", name="ck_sales_call_log_context_type"),
        Index("ix_sales_call_log_context", "context_type", "context_id", "created_at"),
    )
