from __future__ import annotations

import uuid
from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.orm import Session

from orderdesk.api.deps import get_actor
from orderdesk.core.database import get_db
from orderdesk.sales.assignment import assignment_manager
from orderdesk.sales.duplicates import lookup_phone_duplicates
from orderdesk.sales.leads import lead_service
from orderdesk.sales.order_lifecycle import order_lifecycle
from orderdesk.sales.orders import order_service
from orderdesk.sales.schemas import (
    Acknowledgement,
    AssignRequest,
    BulkAssignRequest,
    BulkIdsRequest,
    BulkReport,
    BulkStatusRequest,
    CallLogCreate,
    CallLogRead,
    InboundLead,
    InboundLeadResult,
    LeadCreate,
    LeadDetail,
    LeadListResponse,
    LeadRead,
    LeadUpdate,
    LineItemInput,
    LineItemsReplace,
    LineItemUpdate,
    NoteCreate,
    NoteRead,
    OrderCreate,
    OrderDetail,
    OrderListResponse,
    OrderRead,
    OrderStatusUpdate,
    OrderUpdate,
    PhoneDuplicate,
)
from orderdesk.security import ActorContext

orders_router = APIRouter(prefix="/api/orders", tags=["orders"])
order_items_router = APIRouter(prefix="/api/order-items", tags=["orders"])
leads_router = APIRouter(prefix="/api/leads", tags=["leads"])
lead_items_router = APIRouter(prefix="/api/lead-items", tags=["leads"])
call_logs_router = APIRouter(prefix="/api/call-logs", tags=["call-logs"])
webhooks_router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])
lookups_router = APIRouter(prefix="/api", tags=["lookups"])


@orders_router.post("", response_model=OrderRead, status_code=status.HTTP_201_CREATED)
def create_order(
    payload: OrderCreate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> OrderRead:
    return order_service.create_order(db, actor, payload)


@orders_router.get("", response_model=OrderListResponse)
def list_orders(
    status_filter: str | None = Query(default=None, alias="status"),
    agent_id: str | None = Query(default=None),
    source_type: str | None = Query(default=None),
    date_from: date | None = Query(default=None, alias="from"),
    date_to: date | None = Query(default=None, alias="to"),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> OrderListResponse:
    return order_service.list_orders(
        db,
        actor,
        status=status_filter,
        agent_id=agent_id,
        source_type=source_type,
        date_from=date_from,
        date_to=date_to,
        search=search,
        page=page,
        limit=limit,
    )


@orders_router.post("/bulk-assign", response_model=BulkReport)
def bulk_assign_orders(
    payload: BulkAssignRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> BulkReport:
    return assignment_manager.bulk_assign(db, actor, "order", payload.ids, payload.agent_id)


@orders_router.post("/bulk-unassign", response_model=BulkReport)
def bulk_unassign_orders(
    payload: BulkIdsRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> BulkReport:
    return assignment_manager.bulk_unassign(db, actor, "order", payload.ids)


@orders_router.post("/bulk-status", response_model=BulkReport)
def bulk_update_order_status(
    payload: BulkStatusRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> BulkReport:
    return order_lifecycle.bulk_status(db, actor, payload.ids, payload.status)


@orders_router.get("/{order_id}", response_model=OrderDetail)
def get_order(
    order_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> OrderDetail:
    return order_service.get_order(db, actor, order_id)


@orders_router.patch("/{order_id}", response_model=OrderRead)
def update_order(
    order_id: uuid.UUID,
    payload: OrderUpdate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> OrderRead:
    return order_service.update_order(db, actor, order_id, payload)


@orders_router.patch("/{order_id}/status", response_model=OrderRead)
def update_order_status(
    order_id: uuid.UUID,
    payload: OrderStatusUpdate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> OrderRead:
    return order_lifecycle.transition(db, actor, order_id, payload.status, note=payload.note)


@orders_router.post("/{order_id}/assign", response_model=OrderRead)
def assign_order(
    order_id: uuid.UUID,
    payload: AssignRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> OrderRead:
    order = assignment_manager.assign(db, actor, "order", order_id, payload.agent_id)
    return OrderRead.model_validate(order)


@orders_router.post("/{order_id}/items", response_model=OrderRead, status_code=status.HTTP_201_CREATED)
def add_order_item(
    order_id: uuid.UUID,
    payload: LineItemInput,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> OrderRead:
    return order_service.add_item(db, actor, order_id, payload)


@orders_router.put("/{order_id}/items", response_model=OrderRead)
def replace_order_items(
    order_id: uuid.UUID,
    payload: LineItemsReplace,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> OrderRead:
    return order_service.replace_items(db, actor, order_id, payload.items)


@orders_router.post("/{order_id}/notes", response_model=NoteRead, status_code=status.HTTP_201_CREATED)
def add_order_note(
    order_id: uuid.UUID,
    payload: NoteCreate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> NoteRead:
    return order_service.add_note(db, actor, order_id, payload)


@orders_router.delete("/{order_id}", response_model=Acknowledgement)
def purge_order(
    order_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Acknowledgement:
    return order_service.purge_order(db, actor, order_id)


@order_items_router.patch("/{item_id}", response_model=OrderRead)
def update_order_item(
    item_id: uuid.UUID,
    payload: LineItemUpdate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> OrderRead:
    return order_service.update_item(db, actor, item_id, payload)


@order_items_router.delete("/{item_id}", response_model=OrderRead)
def delete_order_item(
    item_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> OrderRead:
    return order_service.delete_item(db, actor, item_id)


@leads_router.post("", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    payload: LeadCreate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> LeadRead:
    return lead_service.create_lead(db, actor, payload)


@leads_router.get("", response_model=LeadListResponse)
def list_leads(
    status_filter: str | None = Query(default=None, alias="status"),
    agent_id: str | None = Query(default=None),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> LeadListResponse:
    return lead_service.list_leads(
        db,
        actor,
        status=status_filter,
        agent_id=agent_id,
        search=search,
        page=page,
        limit=limit,
    )


@leads_router.post("/bulk-assign", response_model=BulkReport)
def bulk_assign_leads(
    payload: BulkAssignRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> BulkReport:
    return assignment_manager.bulk_assign(db, actor, "lead", payload.ids, payload.agent_id)


@leads_router.post("/bulk-unassign", response_model=BulkReport)
def bulk_unassign_leads(
    payload: BulkIdsRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> BulkReport:
    return assignment_manager.bulk_unassign(db, actor, "lead", payload.ids)


@leads_router.get("/{lead_id}", response_model=LeadDetail)
def get_lead(
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> LeadDetail:
    return lead_service.get_lead(db, actor, lead_id)


@leads_router.patch("/{lead_id}", response_model=LeadRead)
def update_lead(
    lead_id: uuid.UUID,
    payload: LeadUpdate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> LeadRead:
    return lead_service.update_lead(db, actor, lead_id, payload)


@leads_router.post("/{lead_id}/take", response_model=LeadRead)
def take_lead(
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> LeadRead:
    return lead_service.take_lead(db, actor, lead_id)


@leads_router.post("/{lead_id}/assign", response_model=LeadRead)
def assign_lead(
    lead_id: uuid.UUID,
    payload: AssignRequest,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> LeadRead:
    lead = assignment_manager.assign(db, actor, "lead", lead_id, payload.agent_id)
    return LeadRead.model_validate(lead)


@leads_router.post("/{lead_id}/items", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def add_lead_item(
    lead_id: uuid.UUID,
    payload: LineItemInput,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> LeadRead:
    return lead_service.add_item(db, actor, lead_id, payload)


@leads_router.delete("/{lead_id}", response_model=Acknowledgement)
def purge_lead(
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> Acknowledgement:
    return lead_service.purge_lead(db, actor, lead_id)


@lead_items_router.patch("/{item_id}", response_model=LeadRead)
def update_lead_item(
    item_id: uuid.UUID,
    payload: LineItemUpdate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> LeadRead:
    return lead_service.update_item(db, actor, item_id, payload)


@lead_items_router.delete("/{item_id}", response_model=LeadRead)
def delete_lead_item(
    item_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> LeadRead:
    return lead_service.delete_item(db, actor, item_id)


@call_logs_router.post("", response_model=CallLogRead, status_code=status.HTTP_201_CREATED)
def create_call_log(
    payload: CallLogCreate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> CallLogRead:
    return lead_service.log_call(db, actor, payload)


@call_logs_router.get("", response_model=list[CallLogRead])
def list_call_logs(
    context_type: Literal["order", "lead"] = Query(),
    context_id: uuid.UUID = Query(),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> list[CallLogRead]:
    return lead_service.list_calls(db, actor, context_type=context_type, context_id=context_id)


@webhooks_router.post("/leads", response_model=InboundLeadResult, status_code=status.HTTP_201_CREATED)
def receive_inbound_lead(
    payload: InboundLead,
    x_webhook_token: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> InboundLeadResult:
    return lead_service.ingest_inbound(db, payload, x_webhook_token)


@lookups_router.get("/phone-duplicates", response_model=list[PhoneDuplicate])
def phone_duplicates(
    phone: str = Query(min_length=1),
    exclude_order_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
) -> list[PhoneDuplicate]:
    return lookup_phone_duplicates(db, actor, phone, exclude_order_id=exclude_order_id)
