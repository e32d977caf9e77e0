from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Select, select, update
from sqlalchemy.orm import Session

from orderdesk.core.database import atomic
from orderdesk.core.errors import InsufficientStock, NotFound, OutOfStock, ValidationFailed
from orderdesk.events import envelope, publish_all
from orderdesk.inventory.models import LEDGER_REASONS, InventoryLedgerEntry, Product
from orderdesk.inventory.schemas import (
    AdjustmentRequest,
    LedgerEntryRead,
    ReconciliationRead,
    RestockRequest,
    RestockResult,
)
from orderdesk.metrics import observe_stock_posting, observe_stock_rejection
from orderdesk.otel import get_tracer
from orderdesk.security import ActorContext, require

logger = logging.getLogger("orderdesk.inventory.ledger")
tracer = get_tracer("orderdesk.inventory")

_DEDUCTING_REASONS = {"order_deduction"}
_ADDING_REASONS = {"restock", "order_return"}


@dataclass(slots=True)
class StockPosting:
    entry: InventoryLedgerEntry
    product_name: str
    low_stock_threshold: int

    def to_event(self) -> dict[str, Any]:
        return envelope(
            "inventory.stock_posted",
            product_id=str(self.entry.product_id),
            product_name=self.product_name,
            reason=self.entry.reason,
            change_amount=self.entry.change_amount,
            new_stock=self.entry.new_stock,
            low_stock_threshold=self.low_stock_threshold,
        )


@dataclass(slots=True)
class InventoryLedger:
    """Append-only stock log and sole writer of ``Product.stock_quantity``."""

    def post(
        self,
        session: Session,
        *,
        product_id: uuid.UUID,
        delta: int,
        reason: str,
        actor: ActorContext | None,
        note: str | None = None,
        reference: str | None = None,
        supplier_name: str | None = None,
        invoice_number: str | None = None,
    ) -> StockPosting:
        """Apply ``delta`` to a product's stock and append the ledger entry.

        The stock write is a single conditional UPDATE guarded by
        ``stock_quantity + delta >= 0``; a concurrent writer that already
        drained the stock makes it match no row and the posting is rejected
        with ``OutOfStock``. Nothing is committed here.
        """
        if reason not in LEDGER_REASONS:
            raise ValidationFailed(f"Unknown stock movement reason: {reason}")
        if delta == 0:
            raise ValidationFailed("Stock change must not be zero")
        if reason in _DEDUCTING_REASONS and delta > 0:
            raise ValidationFailed("Deductions must be negative")
        if reason in _ADDING_REASONS and delta < 0:
            raise ValidationFailed(f"{reason} must be positive")

        product = session.get(Product, product_id)
        if product is None:
            raise NotFound("Product not found")

        with tracer.start_as_current_span("inventory.post") as span:
            span.set_attribute("inventory.reason", reason)
            span.set_attribute("inventory.change_amount", delta)
            result = session.execute(
                update(Product)
                .where(Product.id == product_id, Product.stock_quantity + delta >= 0)
                .values({Product._stock_quantity: Product.stock_quantity + delta})
                .execution_options(synchronize_session=False)
            )
            session.expire(product, ["_stock_quantity", "updated_at"])
            if result.rowcount == 0:
                observe_stock_rejection(reason)
                logger.info(
                    "inventory.post_rejected",
                    extra={
                        "product_id": str(product_id),
                        "reason": reason,
                        "change_amount": delta,
                        "new_stock": product.stock_quantity,
                    },
                )
                raise OutOfStock(
                    f"Insufficient stock: {product.name} has {product.stock_quantity} available, "
                    f"but {-delta} requested"
                )

            new_stock = product.stock_quantity
            entry = InventoryLedgerEntry(
                product_id=product_id,
                change_amount=delta,
                previous_stock=new_stock - delta,
                new_stock=new_stock,
                reason=reason,
                actor_user_id=actor.user_id if actor is not None else None,
                actor_name=actor.label if actor is not None else None,
                note=note,
                reference=reference,
                supplier_name=supplier_name,
                invoice_number=invoice_number,
            )
            session.add(entry)
            session.flush()

        observe_stock_posting(reason)
        logger.info(
            "inventory.posted",
            extra={
                "product_id": str(product_id),
                "reason": reason,
                "change_amount": delta,
                "previous_stock": entry.previous_stock,
                "new_stock": new_stock,
                "actor_user_id": entry.actor_user_id,
            },
        )
        return StockPosting(entry=entry, product_name=product.name, low_stock_threshold=product.low_stock_threshold)

    def check_availability(self, session: Session, requirements: Mapping[uuid.UUID, int]) -> None:
        """Fail before any write if one of the required quantities is not on hand."""
        if not requirements:
            return
        products = session.scalars(select(Product).where(Product.id.in_(list(requirements)))).all()
        by_id = {product.id: product for product in products}
        for product_id, quantity in requirements.items():
            product = by_id.get(product_id)
            if product is None:
                raise NotFound("Product not found")
            if product.stock_quantity < quantity:
                observe_stock_rejection("order_deduction")
                raise InsufficientStock(
                    f"Insufficient stock: {product.name} has {product.stock_quantity} available, "
                    f"but {quantity} requested"
                )

    def deduct_many(
        self,
        session: Session,
        requirements: Mapping[uuid.UUID, int],
        *,
        actor: ActorContext | None,
        note: str,
        reference: str | None = None,
    ) -> list[StockPosting]:
        """All-or-nothing deduction for a shipment.

        Every requirement is checked first; the conditional UPDATEs then
        re-verify each one against the live row. A loss to a concurrent
        shipment surfaces as ``InsufficientStock`` and the caller's
        transaction rollback discards any posting already made.
        """
        self.check_availability(session, requirements)
        postings: list[StockPosting] = []
        for product_id in sorted(requirements, key=str):
            try:
                postings.append(
                    self.post(
                        session,
                        product_id=product_id,
                        delta=-requirements[product_id],
                        reason="order_deduction",
                        actor=actor,
                        note=note,
                        reference=reference,
                    )
                )
            except OutOfStock as exc:
                raise InsufficientStock(exc.message) from exc
        return postings

    def restock(self, session: Session, actor: ActorContext, dto: RestockRequest) -> RestockResult:
        require(actor, "inventory.restock")
        with atomic(session):
            posting = self.post(
                session,
                product_id=dto.product_id,
                delta=dto.quantity,
                reason="restock",
                actor=actor,
                note=dto.note or "Restock",
                supplier_name=dto.supplier_name,
                invoice_number=dto.invoice_number,
            )
        publish_all([posting.to_event()])
        return RestockResult(product_name=posting.product_name, new_stock=posting.entry.new_stock)

    def adjust(self, session: Session, actor: ActorContext, dto: AdjustmentRequest) -> LedgerEntryRead:
        require(actor, "inventory.adjust")
        with atomic(session):
            if dto.target_quantity is None:
                delta = dto.delta or 0
            else:
                product = session.get(Product, dto.product_id)
                if product is None:
                    raise NotFound("Product not found")
                delta = dto.target_quantity - product.stock_quantity
                if delta == 0:
                    raise ValidationFailed("Stock already at target quantity")
            posting = self.post(
                session,
                product_id=dto.product_id,
                delta=delta,
                reason="manual_adjust",
                actor=actor,
                note=dto.note or "Manual stock adjustment",
            )
        publish_all([posting.to_event()])
        return LedgerEntryRead.model_validate(posting.entry)

    def list_entries(
        self,
        session: Session,
        actor: ActorContext,
        *,
        product_id: uuid.UUID | None = None,
        reason: str | None = None,
        limit: int = 50,
    ) -> list[LedgerEntryRead]:
        require(actor, "inventory.read")
        stmt: Select[tuple[InventoryLedgerEntry]] = select(InventoryLedgerEntry)
        if product_id is not None:
            stmt = stmt.where(InventoryLedgerEntry.product_id == product_id)
        if reason is not None:
            stmt = stmt.where(InventoryLedgerEntry.reason == reason)
        stmt = stmt.order_by(InventoryLedgerEntry.created_at.desc(), InventoryLedgerEntry.id.desc()).limit(limit)
        return [LedgerEntryRead.model_validate(row) for row in session.scalars(stmt).all()]

    def replay(self, session: Session, product_id: uuid.UUID) -> tuple[int, int]:
        """Return ``(replayed_stock, entry_count)`` from the product's entries in posting order."""
        rows = session.scalars(
            select(InventoryLedgerEntry.change_amount)
            .where(InventoryLedgerEntry.product_id == product_id)
            .order_by(InventoryLedgerEntry.created_at.asc(), InventoryLedgerEntry.id.asc())
        ).all()
        stock = 0
        for change in rows:
            stock += change
        return stock, len(rows)

    def reconcile(self, session: Session, actor: ActorContext, product_id: uuid.UUID) -> ReconciliationRead:
        require(actor, "inventory.read")
        product = session.get(Product, product_id)
        if product is None:
            raise NotFound("Product not found")
        replayed, count = self.replay(session, product_id)
        consistent = replayed == product.stock_quantity
        if not consistent:
            logger.warning(
                "inventory.reconciliation_mismatch",
                extra={"product_id": str(product_id), "new_stock": product.stock_quantity, "change_amount": replayed},
            )
        return ReconciliationRead(
            product_id=product_id,
            stock_quantity=product.stock_quantity,
            replayed_quantity=replayed,
            entry_count=count,
            consistent=consistent,
        )


inventory_ledger = InventoryLedger()
