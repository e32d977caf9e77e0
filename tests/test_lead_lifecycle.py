from __future__ import annotations

import uuid
from collections.abc import Generator
from typing import Any

import pytest
from sqlalchemy import create_engine, event, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from orderdesk import events
from orderdesk.core.database import Base
from orderdesk.core.errors import Forbidden
from orderdesk.sales import ConversionPipeline, lead_service, order_lifecycle
from orderdesk.sales.models import Lead, LeadHistoryEntry, Order, OrderNote
from orderdesk.sales.schemas import CallLogCreate, LeadCreate, LeadUpdate, LineItemInput
from orderdesk.security import ActorContext, Capability

ADMIN = ActorContext(user_id="admin-1", roles=frozenset({"admin"}), capability=Capability.PRIVILEGED)
AGENT = ActorContext(user_id="agent-1", roles=frozenset({"agent"}), display_name="Agent One")
OTHER_AGENT = ActorContext(user_id="agent-2", roles=frozenset({"prediction_agent"}))


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")

    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_events() -> Generator[None, None, None]:
    events.published_events.clear()
    yield
    events.published_events.clear()


def _lead(session: Session, **overrides: Any) -> uuid.UUID:
    payload: dict[str, Any] = {
        "name": "Karim Benali",
        "phone": "+212 661-000-111",
        "city": "Casablanca",
        "address": "7 Bd Zerktouni",
        "product_interest": "Argan Oil",
        "price": "99.00",
        "notes": "Prefers evening calls",
    }
    payload.update(overrides)
    return lead_service.create_lead(session, ADMIN, LeadCreate(**payload)).id


def _set_status(session: Session, actor: ActorContext, lead_id: uuid.UUID, status: str) -> None:
    lead_service.update_lead(session, actor, lead_id, LeadUpdate(status=status))


def _linked_orders(session: Session, lead_id: uuid.UUID) -> list[Order]:
    return list(session.scalars(select(Order).where(Order.source_lead_id == lead_id)).all())


def _lead_row(session: Session, lead_id: uuid.UUID) -> Lead:
    lead = session.get(Lead, lead_id)
    assert lead is not None
    session.refresh(lead)
    return lead


def test_claim_status_binds_agent(db_session: Session) -> None:
    lead_id = _lead(db_session)

    _set_status(db_session, AGENT, lead_id, "interested")

    lead = _lead_row(db_session, lead_id)
    assert lead.status == "interested"
    assert lead.assigned_agent_id == "agent-1"
    assert lead.assigned_agent_name == "Agent One"


def test_other_agent_is_locked_out(db_session: Session) -> None:
    lead_id = _lead(db_session)
    _set_status(db_session, AGENT, lead_id, "no_answer")

    with pytest.raises(Forbidden) as exc_info:
        _set_status(db_session, OTHER_AGENT, lead_id, "interested")

    assert exc_info.value.message == "Lead is already assigned to another agent"
    assert _lead_row(db_session, lead_id).status == "no_answer"


def test_privileged_actor_overrides_ownership(db_session: Session) -> None:
    lead_id = _lead(db_session)
    _set_status(db_session, AGENT, lead_id, "interested")

    _set_status(db_session, ADMIN, lead_id, "not_interested")

    lead = _lead_row(db_session, lead_id)
    assert lead.status == "not_interested"
    assert lead.assigned_agent_id == "agent-1"


def test_take_lead(db_session: Session) -> None:
    lead_id = _lead(db_session)

    taken = lead_service.take_lead(db_session, AGENT, lead_id)

    assert taken.assigned_agent_id == "agent-1"
    assert taken.status == "interested"
    with pytest.raises(Forbidden):
        lead_service.take_lead(db_session, OTHER_AGENT, lead_id)


def test_confirming_lead_creates_one_linked_order(db_session: Session) -> None:
    lead_id = _lead(db_session, items=[LineItemInput(product_name="Argan Oil", quantity=2, price_per_unit="49.50")])

    _set_status(db_session, AGENT, lead_id, "confirmed")

    orders = _linked_orders(db_session, lead_id)
    assert len(orders) == 1
    order = orders[0]
    assert order.status == "confirmed"
    assert order.source_type == "prediction_lead"
    assert order.display_id == "ORD-01001"
    assert order.customer_name == "Karim Benali"
    assert order.customer_phone_normalized == "+212661000111"
    assert order.assigned_agent_id == "agent-1"
    assert str(order.price) == "99.00"
    assert [(item.product_name, item.quantity) for item in order.items] == [("Argan Oil", 2)]
    notes = db_session.scalars(select(OrderNote.text).where(OrderNote.order_id == order.id)).all()
    assert sorted(notes) == ["Converted from lead", "Prefers evening calls"]
    event_types = [item["event_type"] for item in events.published_events]
    assert "sales.order.created" in event_types
    assert "sales.lead.converted" in event_types


def test_converting_twice_updates_the_same_order(db_session: Session) -> None:
    lead_id = _lead(db_session)

    _set_status(db_session, AGENT, lead_id, "confirmed")
    _set_status(db_session, AGENT, lead_id, "call_again")
    _set_status(db_session, AGENT, lead_id, "confirmed")

    orders = _linked_orders(db_session, lead_id)
    assert len(orders) == 1
    assert orders[0].status == "confirmed"


def test_call_again_lead_becomes_call_again_order(db_session: Session) -> None:
    lead_id = _lead(db_session)

    _set_status(db_session, ADMIN, lead_id, "call_again")

    orders = _linked_orders(db_session, lead_id)
    assert [order.status for order in orders] == ["call_again"]


def test_lead_without_contact_data_is_not_converted(db_session: Session) -> None:
    lead_id = _lead(db_session, name="", phone="")

    _set_status(db_session, ADMIN, lead_id, "confirmed")

    assert _lead_row(db_session, lead_id).status == "confirmed"
    assert _linked_orders(db_session, lead_id) == []


def test_order_status_flows_back_to_lead(db_session: Session) -> None:
    lead_id = _lead(db_session)
    _set_status(db_session, ADMIN, lead_id, "call_again")
    order_id = _linked_orders(db_session, lead_id)[0].id

    order_lifecycle.transition(db_session, ADMIN, order_id, "confirmed")
    assert _lead_row(db_session, lead_id).status == "confirmed"

    order_lifecycle.transition(db_session, ADMIN, order_id, "shipped")
    order_lifecycle.transition(db_session, ADMIN, order_id, "returned")
    assert _lead_row(db_session, lead_id).status == "not_interested"

    details = db_session.scalars(
        select(LeadHistoryEntry.detail)
        .where(LeadHistoryEntry.lead_id == lead_id)
        .order_by(LeadHistoryEntry.id)
    ).all()
    display_id = _linked_orders(db_session, lead_id)[0].display_id
    assert details[-1] == f"Synced from order {display_id}"
    assert len(_linked_orders(db_session, lead_id)) == 1


def test_paid_order_keeps_lead_confirmed(db_session: Session) -> None:
    lead_id = _lead(db_session)
    _set_status(db_session, ADMIN, lead_id, "confirmed")
    order_id = _linked_orders(db_session, lead_id)[0].id
    history_before = db_session.scalar(
        select(func.count()).select_from(LeadHistoryEntry).where(LeadHistoryEntry.lead_id == lead_id)
    )

    order_lifecycle.transition(db_session, ADMIN, order_id, "paid")

    assert _lead_row(db_session, lead_id).status == "confirmed"
    history_after = db_session.scalar(
        select(func.count()).select_from(LeadHistoryEntry).where(LeadHistoryEntry.lead_id == lead_id)
    )
    assert history_after == history_before


def test_conversion_sync_respects_order_graph(db_session: Session) -> None:
    lead_id = _lead(db_session)
    _set_status(db_session, ADMIN, lead_id, "call_again")
    order_id = _linked_orders(db_session, lead_id)[0].id
    order_lifecycle.transition(db_session, ADMIN, order_id, "trashed")
    assert _lead_row(db_session, lead_id).status == "not_interested"

    _set_status(db_session, ADMIN, lead_id, "confirmed")

    assert _lead_row(db_session, lead_id).status == "confirmed"
    orders = _linked_orders(db_session, lead_id)
    assert [order.status for order in orders] == ["trashed"]


def test_lost_conversion_race_updates_winner(db_session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    lead_id = _lead(db_session)
    _set_status(db_session, ADMIN, lead_id, "call_again")
    winner = _linked_orders(db_session, lead_id)[0]

    original = ConversionPipeline.find_linked_order
    calls = {"count": 0}

    def stale_lookup(self: ConversionPipeline, session: Session, lead_key: uuid.UUID) -> Order | None:
        calls["count"] += 1
        if calls["count"] == 1:
            return None
        return original(self, session, lead_key)

    monkeypatch.setattr(ConversionPipeline, "find_linked_order", stale_lookup)

    _set_status(db_session, ADMIN, lead_id, "confirmed")

    orders = _linked_orders(db_session, lead_id)
    assert [order.id for order in orders] == [winner.id]
    assert orders[0].status == "confirmed"
    assert calls["count"] == 2


def test_call_outcome_drives_lead_status(db_session: Session) -> None:
    lead_id = _lead(db_session)

    lead_service.log_call(
        db_session,
        AGENT,
        CallLogCreate(context_type="lead", context_id=lead_id, outcome="no_answer", notes="Voicemail"),
    )
    lead_service.log_call(db_session, AGENT, CallLogCreate(context_type="lead", context_id=lead_id, outcome="busy"))

    lead = _lead_row(db_session, lead_id)
    assert lead.status == "no_answer"
    assert lead.assigned_agent_id == "agent-1"
    calls = lead_service.list_calls(db_session, AGENT, context_type="lead", context_id=lead_id)
    assert [call.outcome for call in calls] == ["busy", "no_answer"]
    assert calls[1].notes == "Voicemail"


def test_call_again_outcome_converts(db_session: Session) -> None:
    lead_id = _lead(db_session)

    lead_service.log_call(db_session, ADMIN, CallLogCreate(context_type="lead", context_id=lead_id, outcome="call_again"))

    assert _lead_row(db_session, lead_id).status == "call_again"
    assert [order.status for order in _linked_orders(db_session, lead_id)] == ["call_again"]


def test_agent_sees_only_unclaimed_or_own_leads(db_session: Session) -> None:
    own = _lead(db_session, name="Own")
    other = _lead(db_session, name="Other")
    free = _lead(db_session, name="Free")
    _set_status(db_session, AGENT, own, "interested")
    _set_status(db_session, OTHER_AGENT, other, "interested")

    listing = lead_service.list_leads(db_session, AGENT)

    assert {lead.id for lead in listing.leads} == {own, free}
    with pytest.raises(Forbidden):
        lead_service.get_lead(db_session, AGENT, other)


def test_purge_lead_detaches_order(db_session: Session) -> None:
    lead_id = _lead(db_session)
    _set_status(db_session, ADMIN, lead_id, "confirmed")
    order_id = _linked_orders(db_session, lead_id)[0].id

    lead_service.purge_lead(db_session, ADMIN, lead_id)

    assert db_session.get(Lead, lead_id) is None
    order = db_session.get(Order, order_id)
    assert order is not None
    db_session.refresh(order)
    assert order.source_lead_id is None
