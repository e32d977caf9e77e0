from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy import Select, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orderdesk.core.errors import Conflict, NotFound
from orderdesk.events import publish_all
from orderdesk.inventory.ledger import InventoryLedger, inventory_ledger
from orderdesk.inventory.models import Product
from orderdesk.inventory.schemas import ProductCreate, ProductRead, ProductUpdate
from orderdesk.security import ActorContext, require

logger = logging.getLogger("orderdesk.inventory.catalog")


@dataclass(slots=True)
class ProductCatalog:
    ledger: InventoryLedger = field(default_factory=lambda: inventory_ledger)

    def create_product(self, session: Session, actor: ActorContext, dto: ProductCreate) -> ProductRead:
        require(actor, "product.write")
        payload = dto.model_dump(mode="python", exclude={"stock_quantity"})
        product = Product(**payload)
        session.add(product)
        events = []
        try:
            session.flush()
            if dto.stock_quantity > 0:
                posting = self.ledger.post(
                    session,
                    product_id=product.id,
                    delta=dto.stock_quantity,
                    reason="manual_adjust",
                    actor=actor,
                    note="Opening stock",
                )
                events.append(posting.to_event())
            session.commit()
        except IntegrityError:
            session.rollback()
            raise Conflict("Product with this SKU already exists")
        except Exception:
            session.rollback()
            raise
        session.refresh(product)
        publish_all(events)
        logger.info("inventory.product_created", extra={"product_id": str(product.id), "actor_user_id": actor.user_id})
        return ProductRead.model_validate(product)

    def get_product(self, session: Session, actor: ActorContext, product_id: uuid.UUID) -> ProductRead:
        require(actor, "product.read")
        product = session.get(Product, product_id)
        if product is None:
            raise NotFound("Product not found")
        return ProductRead.model_validate(product)

    def list_products(
        self,
        session: Session,
        actor: ActorContext,
        *,
        active: bool | None = None,
        low_stock: bool = False,
        search: str | None = None,
    ) -> list[ProductRead]:
        require(actor, "product.read")
        stmt: Select[tuple[Product]] = select(Product)
        if active is not None:
            stmt = stmt.where(Product.is_active.is_(active))
        if low_stock:
            stmt = stmt.where(Product.stock_quantity <= Product.low_stock_threshold)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(or_(Product.name.ilike(pattern), Product.sku.ilike(pattern)))
        rows = session.scalars(stmt.order_by(Product.name.asc())).all()
        return [ProductRead.model_validate(row) for row in rows]

    def update_product(
        self,
        session: Session,
        actor: ActorContext,
        product_id: uuid.UUID,
        dto: ProductUpdate,
    ) -> ProductRead:
        require(actor, "product.write")
        product = session.get(Product, product_id)
        if product is None:
            raise NotFound("Product not found")

        for key, value in dto.model_dump(exclude_unset=True).items():
            setattr(product, key, value)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise Conflict("Product with this SKU already exists")
        session.refresh(product)
        return ProductRead.model_validate(product)


product_catalog = ProductCatalog()
