from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from orderdesk.api.deps import get_actor
from orderdesk.core.database import get_db
from orderdesk.inventory.catalog import product_catalog
from orderdesk.inventory.ledger import inventory_ledger
from orderdesk.inventory.schemas import (
    AdjustmentRequest,
    LedgerEntryRead,
    LedgerReason,
    ProductCreate,
    ProductRead,
    ProductUpdate,
    ReconciliationRead,
    RestockRequest,
    RestockResult,
)
from orderdesk.security import ActorContext

products_router = APIRouter(prefix="/api/products", tags=["products"])
inventory_router = APIRouter(prefix="/api/inventory", tags=["inventory"])


@products_router.get("", response_model=list[ProductRead])
def list_products(
    active: bool | None = Query(default=None),
    low_stock: bool = Query(default=False),
    search: str | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> list[ProductRead]:
    return product_catalog.list_products(db, actor, active=active, low_stock=low_stock, search=search)


@products_router.post("", response_model=ProductRead, status_code=status.HTTP_201_CREATED)
def create_product(
    payload: ProductCreate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> ProductRead:
    return product_catalog.create_product(db, actor, payload)


@products_router.get("/{product_id}", response_model=ProductRead)
def get_product(
    product_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> ProductRead:
    return product_catalog.get_product(db, actor, product_id)


@products_router.patch("/{product_id}", response_model=ProductRead)
def update_product(
    product_id: uuid.UUID,
    payload: ProductUpdate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> ProductRead:
    return product_catalog.update_product(db, actor, product_id, payload)


@products_router.get("/{product_id}/ledger", response_model=list[LedgerEntryRead])
def list_product_ledger(
    product_id: uuid.UUID,
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> list[LedgerEntryRead]:
    return inventory_ledger.list_entries(db, actor, product_id=product_id, limit=limit)


@products_router.get("/{product_id}/reconciliation", response_model=ReconciliationRead)
def reconcile_product(
    product_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> ReconciliationRead:
    return inventory_ledger.reconcile(db, actor, product_id)


@inventory_router.post("/restock", response_model=RestockResult)
def restock(
    payload: RestockRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> RestockResult:
    return inventory_ledger.restock(db, actor, payload)


@inventory_router.post("/adjustments", response_model=LedgerEntryRead, status_code=status.HTTP_201_CREATED)
def adjust_stock(
    payload: AdjustmentRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> LedgerEntryRead:
    return inventory_ledger.adjust(db, actor, payload)


@inventory_router.get("/movements", response_model=list[LedgerEntryRead])
def list_movements(
    product_id: uuid.UUID | None = Query(default=None),
    reason: LedgerReason | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> list[LedgerEntryRead]:
    return inventory_ledger.list_entries(db, actor, product_id=product_id, reason=reason, limit=limit)
