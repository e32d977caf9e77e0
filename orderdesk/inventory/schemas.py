from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


LedgerReason = Literal["order_deduction", "order_return", "restock", "manual_adjust"]


class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    sku: str | None = Field(default=None, max_length=64)
    description: str | None = None
    category: str | None = Field(default=None, max_length=128)
    price: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    cost_price: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    stock_quantity: int = Field(default=0, ge=0)
    low_stock_threshold: int = Field(default=5, ge=0)
    is_active: bool = True
    supplier_id: UUID | None = None


class ProductUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=255)
    sku: str | None = Field(default=None, max_length=64)
    description: str | None = None
    category: str | None = Field(default=None, max_length=128)
    price: Decimal | None = Field(default=None, ge=Decimal("0"))
    cost_price: Decimal | None = Field(default=None, ge=Decimal("0"))
    low_stock_threshold: int | None = Field(default=None, ge=0)
    is_active: bool | None = None
    supplier_id: UUID | None = None


class ProductRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    sku: str | None
    description: str | None
    category: str | None
    price: Decimal
    cost_price: Decimal
    stock_quantity: int
    low_stock_threshold: int
    is_low_stock: bool
    is_active: bool
    supplier_id: UUID | None
    created_at: datetime
    updated_at: datetime


class RestockRequest(BaseModel):
    product_id: UUID
    quantity: int = Field(ge=1)
    supplier_name: str | None = Field(default=None, max_length=255)
    invoice_number: str | None = Field(default=None, max_length=128)
    note: str | None = None


class RestockResult(BaseModel):
    success: bool = True
    product_name: str
    new_stock: int


class AdjustmentRequest(BaseModel):
    product_id: UUID
    delta: int | None = None
    target_quantity: int | None = Field(default=None, ge=0)
    note: str | None = None

    @model_validator(mode="after")
    def _exactly_one_amount(self) -> AdjustmentRequest:
        if (self.delta is None) == (self.target_quantity is None):
            raise ValueError("provide exactly one of delta or target_quantity")
        if self.delta == 0:
            raise ValueError("delta must not be zero")
        return self


class LedgerEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: UUID
    change_amount: int
    previous_stock: int
    new_stock: int
    reason: str
    actor_user_id: str | None
    actor_name: str | None
    note: str | None
    reference: str | None
    supplier_name: str | None
    invoice_number: str | None
    created_at: datetime


class ReconciliationRead(BaseModel):
    product_id: UUID
    stock_quantity: int
    replayed_quantity: int
    entry_count: int
    consistent: bool
