from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column, validates

from orderdesk.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


LEDGER_REASONS = ("order_deduction", "order_return", "restock", "manual_adjust")


class Product(Base):
    __tablename__ = "inventory_product"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(128), nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    cost_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    _stock_quantity: Mapped[int] = mapped_column("stock_quantity", Integer, nullable=False, default=0, server_default="0")
    low_stock_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=5, server_default="5")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    supplier_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_inventory_product_stock_non_negative"),
        CheckConstraint("price >= 0", name="ck_inventory_product_price_non_negative"),
        Index("ix_inventory_product_active_name", "is_active", "name"),
    )

    @hybrid_property
    def stock_quantity(self) -> int:
        """Current stock projection. Written only by the inventory ledger."""
        return self._stock_quantity

    @validates("_stock_quantity")
    def _reject_stock_write(self, key: str, value: int) -> int:
        raise AttributeError("stock_quantity is owned by the inventory ledger")

    @property
    def is_low_stock(self) -> bool:
        return self._stock_quantity <= self.low_stock_threshold


class InventoryLedgerEntry(Base):
    __tablename__ = "inventory_ledger_entry"

    # Integer key keeps replay order stable for entries sharing a timestamp.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("inventory_product.id", ondelete="RESTRICT"),
        nullable=False,
    )
    change_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    new_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(32), nullable=False)
    actor_user_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    actor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    reference: Mapped[str | None] = mapped_column(String(64), nullable=True)
    supplier_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("new_stock >= 0", name="ck_inventory_ledger_entry_new_stock_non_negative"),
        CheckConstraint(
            "new_stock = previous_stock + change_amount",
            name="ck_inventory_ledger_entry_balanced",
        ),
        CheckConstraint(
            "reason IN ('order_deduction', 'order_return', 'restock', 'manual_adjust')",
            name="ck_inventory_ledger_entry_reason",
        ),
        Index("ix_inventory_ledger_entry_product_created", "product_id", "created_at", "id"),
        Index("ix_inventory_ledger_entry_reason", "reason"),
    )
