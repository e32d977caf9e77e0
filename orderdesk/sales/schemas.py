from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from orderdesk.sales.states import LeadStatus, OrderStatus


CallOutcome = Literal["no_answer", "interested", "not_interested", "call_again", "wrong_number", "busy"]


class LineItemInput(BaseModel):
    product_id: UUID | None = None
    product_name: str = Field(min_length=1, max_length=255)
    quantity: int = Field(default=1, ge=1)
    price_per_unit: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))


class LineItemUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    product_id: UUID | None = None
    product_name: str | None = Field(default=None, min_length=1, max_length=255)
    quantity: int | None = Field(default=None, ge=1)
    price_per_unit: Decimal | None = Field(default=None, ge=Decimal("0"))

    @field_validator("product_name", "quantity", "price_per_unit")
    @classmethod
    def _not_null(cls, value: object) -> object:
        if value is None:
            raise ValueError("may not be null")
        return value


class LineItemsReplace(BaseModel):
    items: list[LineItemInput]


class LineItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID | None
    product_name: str
    quantity: int
    price_per_unit: Decimal
    total_price: Decimal
    created_at: datetime


class OrderCreate(BaseModel):
    customer_name: str = Field(default="", max_length=255)
    customer_phone: str = Field(default="", max_length=64)
    customer_city: str = Field(default="", max_length=128)
    customer_address: str = ""
    postal_code: str | None = Field(default=None, max_length=32)
    birthday: date | None = None
    product_id: UUID | None = None
    product_name: str = ""
    quantity: int = Field(default=1, ge=1)
    price: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    status: OrderStatus = OrderStatus.PENDING
    assigned_agent_id: str | None = None
    items: list[LineItemInput] = Field(default_factory=list)
    notes: str | None = None


class OrderUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    customer_name: str | None = Field(default=None, max_length=255)
    customer_phone: str | None = Field(default=None, max_length=64)
    customer_city: str | None = Field(default=None, max_length=128)
    customer_address: str | None = None
    postal_code: str | None = Field(default=None, max_length=32)
    birthday: date | None = None
    product_id: UUID | None = None
    product_name: str | None = None
    quantity: int | None = Field(default=None, ge=1)
    price: Decimal | None = Field(default=None, ge=Decimal("0"))

    @field_validator(
        "customer_name",
        "customer_phone",
        "customer_city",
        "customer_address",
        "product_name",
        "quantity",
        "price",
    )
    @classmethod
    def _not_null(cls, value: object) -> object:
        if value is None:
            raise ValueError("may not be null")
        return value


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    note: str | None = None


class OrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    display_id: str
    product_id: UUID | None
    product_name: str
    quantity: int
    customer_name: str
    customer_phone: str
    customer_city: str
    customer_address: str
    postal_code: str | None
    birthday: date | None
    price: Decimal
    status: str
    source_type: str
    source_lead_id: UUID | None
    stock_deducted: bool
    assigned_agent_id: str | None
    assigned_agent_name: str | None
    assigned_at: datetime | None
    assigned_by: str | None
    row_version: int
    created_at: datetime
    updated_at: datetime
    items: list[LineItemRead] = Field(default_factory=list)


class OrderListItem(OrderRead):
    is_owned: bool = False


class OrderListResponse(BaseModel):
    orders: list[OrderListItem]
    total: int
    page: int
    limit: int


class HistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    from_status: str | None
    to_status: str
    changed_by: str | None
    changed_by_name: str | None
    detail: str | None
    changed_at: datetime


class NoteCreate(BaseModel):
    text: str = Field(min_length=1)


class NoteRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    text: str
    author_id: str | None
    author_name: str | None
    created_at: datetime


class PhoneDuplicate(BaseModel):
    source: Literal["order", "lead"]
    source_id: str
    source_name: str


class OrderDetail(OrderRead):
    history: list[HistoryRead] = Field(default_factory=list)
    notes: list[NoteRead] = Field(default_factory=list)
    phone_duplicates: list[PhoneDuplicate] = Field(default_factory=list)


class AssignRequest(BaseModel):
    agent_id: str = Field(min_length=1)


class BulkAssignRequest(BaseModel):
    ids: list[UUID] = Field(min_length=1)
    agent_id: str = Field(min_length=1)


class BulkIdsRequest(BaseModel):
    ids: list[UUID] = Field(min_length=1)


class BulkStatusRequest(BaseModel):
    ids: list[UUID] = Field(min_length=1)
    status: OrderStatus


class BulkItemResult(BaseModel):
    id: UUID
    outcome: Literal["updated", "skipped"]
    reason: str | None = None


class BulkReport(BaseModel):
    success: bool = True
    updated: int = 0
    skipped: int = 0
    results: list[BulkItemResult] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def skipped_ids(self) -> list[UUID]:
        return [item.id for item in self.results if item.outcome == "skipped"]

    def add(self, item_id: UUID, outcome: Literal["updated", "skipped"], reason: str | None = None) -> None:
        self.results.append(BulkItemResult(id=item_id, outcome=outcome, reason=reason))
        if outcome == "updated":
            self.updated += 1
        else:
            self.skipped += 1


class Acknowledgement(BaseModel):
    success: bool = True


class LeadCreate(BaseModel):
    name: str = Field(default="", max_length=255)
    phone: str = Field(default="", max_length=64)
    city: str = Field(default="", max_length=128)
    address: str = ""
    product_interest: str | None = Field(default=None, max_length=255)
    product_id: UUID | None = None
    quantity: int = Field(default=1, ge=1)
    price: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    notes: str | None = None
    source: str = Field(default="manual", max_length=32)
    list_name: str | None = Field(default=None, max_length=255)
    items: list[LineItemInput] = Field(default_factory=list)


class LeadUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=64)
    city: str | None = Field(default=None, max_length=128)
    address: str | None = None
    product_interest: str | None = Field(default=None, max_length=255)
    product_id: UUID | None = None
    quantity: int | None = Field(default=None, ge=1)
    price: Decimal | None = Field(default=None, ge=Decimal("0"))
    notes: str | None = None
    list_name: str | None = Field(default=None, max_length=255)
    status: LeadStatus | None = None

    @field_validator("name", "phone", "city", "address", "quantity", "price", "status")
    @classmethod
    def _not_null(cls, value: object) -> object:
        if value is None:
            raise ValueError("may not be null")
        return value


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    phone: str
    city: str
    address: str
    product_interest: str | None
    product_id: UUID | None
    quantity: int
    price: Decimal
    notes: str | None
    source: str
    list_name: str | None
    status: str
    assigned_agent_id: str | None
    assigned_agent_name: str | None
    assigned_at: datetime | None
    assigned_by: str | None
    row_version: int
    created_at: datetime
    updated_at: datetime
    items: list[LineItemRead] = Field(default_factory=list)


class LeadDetail(LeadRead):
    history: list[HistoryRead] = Field(default_factory=list)
    linked_order_id: UUID | None = None


class LeadListResponse(BaseModel):
    leads: list[LeadRead]
    total: int
    page: int
    limit: int


class CallLogCreate(BaseModel):
    context_type: Literal["order", "lead"]
    context_id: UUID
    outcome: CallOutcome
    notes: str | None = None


class CallLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    context_type: str
    context_id: UUID
    outcome: str
    notes: str | None
    agent_id: str
    agent_name: str | None
    created_at: datetime


class InboundLead(BaseModel):
    name: str = Field(default="", max_length=255)
    phone: str = Field(min_length=1, max_length=64)
    source: str = Field(default="webhook", max_length=32)
    city: str = Field(default="", max_length=128)
    address: str = ""
    product_interest: str | None = Field(default=None, max_length=255)


class InboundLeadResult(BaseModel):
    success: bool = True
    lead_id: UUID
    order_id: UUID
    display_id: str
