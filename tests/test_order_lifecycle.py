from __future__ import annotations

import uuid
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import Engine, create_engine, event, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from orderdesk import events
from orderdesk.core.database import Base
from orderdesk.core.errors import Conflict, Forbidden, InsufficientStock, PreconditionFailed
from orderdesk.directory.models import Profile
from orderdesk.inventory import InventoryLedgerEntry, Product, inventory_ledger, product_catalog
from orderdesk.inventory.schemas import ProductCreate
from orderdesk.sales import order_lifecycle, order_service
from orderdesk.sales.models import Order, OrderHistoryEntry
from orderdesk.sales.schemas import LineItemInput, OrderCreate
from orderdesk.security import ActorContext, Capability

ADMIN = ActorContext(user_id="admin-1", roles=frozenset({"admin"}), capability=Capability.PRIVILEGED)
WAREHOUSE = ActorContext(user_id="wh-1", roles=frozenset({"warehouse"}))
AGENT = ActorContext(user_id="agent-1", roles=frozenset({"agent"}), display_name="Agent One")
OTHER_AGENT = ActorContext(user_id="agent-2", roles=frozenset({"agent"}))

CUSTOMER: dict[str, Any] = {
    "customer_name": "Nadia Amrani",
    "customer_phone": "+212 600-111-222",
    "customer_city": "Rabat",
    "customer_address": "12 Rue Oued Fes",
}


def _sqlite_engine(url: str, **kwargs: Any) -> Engine:
    engine = create_engine(url, connect_args={"check_same_thread": False}, **kwargs)

    # pysqlite defers BEGIN on its own; hand transaction control to SQLAlchemy so SAVEPOINT works.
    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = _sqlite_engine("sqlite+pysqlite:///:memory:", poolclass=StaticPool)
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


def _product(session: Session, stock: int, name: str = "Argan Oil") -> uuid.UUID:
    return product_catalog.create_product(session, ADMIN, ProductCreate(name=name, price="50", stock_quantity=stock)).id


def _order(session: Session, product_id: uuid.UUID | None = None, *, status: str = "confirmed", **overrides: Any) -> uuid.UUID:
    payload: dict[str, Any] = {**CUSTOMER, "product_id": product_id, "product_name": "Argan Oil", "status": status}
    payload.update(overrides)
    return order_service.create_order(session, ADMIN, OrderCreate(**payload)).id


def _stock(session: Session, product_id: uuid.UUID) -> int:
    product = session.get(Product, product_id)
    assert product is not None
    session.refresh(product)
    return product.stock_quantity


def _history(session: Session, order_id: uuid.UUID) -> list[OrderHistoryEntry]:
    return list(
        session.scalars(
            select(OrderHistoryEntry).where(OrderHistoryEntry.order_id == order_id).order_by(OrderHistoryEntry.id)
        ).all()
    )


def test_display_ids_are_sequential(db_session: Session) -> None:
    first = order_service.create_order(db_session, ADMIN, OrderCreate(**CUSTOMER))
    second = order_service.create_order(db_session, ADMIN, OrderCreate(**CUSTOMER))

    assert first.display_id == "ORD-01001"
    assert second.display_id == "ORD-01002"


def test_second_shipment_of_last_unit_is_rejected(db_session: Session) -> None:
    product_id = _product(db_session, stock=1)
    first = _order(db_session, product_id)
    second = _order(db_session, product_id)

    shipped = order_lifecycle.transition(db_session, WAREHOUSE, first, "shipped")
    assert shipped.status == "shipped"
    assert shipped.stock_deducted is True

    with pytest.raises(InsufficientStock) as exc_info:
        order_lifecycle.transition(db_session, WAREHOUSE, second, "shipped")

    assert "has 0 available, but 1 requested" in exc_info.value.message
    assert _stock(db_session, product_id) == 0
    assert db_session.get(Order, second).status == "confirmed"  # type: ignore[union-attr]
    assert [entry.to_status for entry in _history(db_session, second)] == ["confirmed"]
    replayed, count = inventory_ledger.replay(db_session, product_id)
    assert (replayed, count) == (0, 2)


def test_multi_item_shipment_is_all_or_nothing(db_session: Session) -> None:
    soap = _product(db_session, stock=10, name="Soap")
    serum = _product(db_session, stock=3, name="Serum")
    order_id = _order(
        db_session,
        items=[
            LineItemInput(product_id=soap, product_name="Soap", quantity=2, price_per_unit="10"),
            LineItemInput(product_id=serum, product_name="Serum", quantity=5, price_per_unit="30"),
        ],
    )

    with pytest.raises(InsufficientStock):
        order_lifecycle.transition(db_session, ADMIN, order_id, "shipped")

    assert _stock(db_session, soap) == 10
    assert _stock(db_session, serum) == 3
    order = db_session.get(Order, order_id)
    assert order is not None
    assert order.status == "confirmed"
    assert order.stock_deducted is False


def test_items_drive_shipment_requirements(db_session: Session) -> None:
    soap = _product(db_session, stock=10, name="Soap")
    order_id = _order(
        db_session,
        items=[
            LineItemInput(product_id=soap, product_name="Soap", quantity=2, price_per_unit="10"),
            LineItemInput(product_id=soap, product_name="Soap gift", quantity=1, price_per_unit="0"),
            LineItemInput(product_name="Free sample", quantity=3, price_per_unit="0"),
        ],
    )

    order_lifecycle.transition(db_session, ADMIN, order_id, "shipped")

    assert _stock(db_session, soap) == 7


def test_complete_customer_data_required(db_session: Session) -> None:
    order_id = _order(db_session, customer_address="")

    with pytest.raises(PreconditionFailed) as exc_info:
        order_lifecycle.transition(db_session, ADMIN, order_id, "paid")

    assert exc_info.value.message == "Customer name, phone, city and address are required for this status"
    assert db_session.get(Order, order_id).status == "confirmed"  # type: ignore[union-attr]


def test_agent_cannot_ship(db_session: Session) -> None:
    db_session.add(Profile(user_id="agent-1", full_name="Agent One"))
    db_session.commit()
    order_id = _order(db_session, assigned_agent_id="agent-1")

    with pytest.raises(Forbidden):
        order_lifecycle.transition(db_session, AGENT, order_id, "shipped")


def test_agent_cannot_move_someone_elses_order(db_session: Session) -> None:
    db_session.add(Profile(user_id="agent-1", full_name="Agent One"))
    db_session.commit()
    order_id = _order(db_session, status="pending", assigned_agent_id="agent-1")

    with pytest.raises(Forbidden):
        order_lifecycle.transition(db_session, OTHER_AGENT, order_id, "confirmed")

    confirmed = order_lifecycle.transition(db_session, AGENT, order_id, "confirmed")
    assert confirmed.status == "confirmed"


def test_same_status_is_a_no_op(db_session: Session) -> None:
    order_id = _order(db_session)

    result = order_lifecycle.transition(db_session, ADMIN, order_id, "confirmed")

    assert result.status == "confirmed"
    assert len(_history(db_session, order_id)) == 1
    assert [item["event_type"] for item in events.published_events] == ["sales.order.created"]


def test_transition_outside_graph_is_rejected(db_session: Session) -> None:
    order_id = _order(db_session, status="pending")

    with pytest.raises(PreconditionFailed) as exc_info:
        order_lifecycle.transition(db_session, ADMIN, order_id, "delivered")

    assert exc_info.value.message == "Cannot change order status from pending to delivered"


def test_return_restores_deducted_stock(db_session: Session) -> None:
    product_id = _product(db_session, stock=5)
    order_id = _order(db_session, product_id, quantity=2)

    order_lifecycle.transition(db_session, ADMIN, order_id, "shipped")
    assert _stock(db_session, product_id) == 3
    returned = order_lifecycle.transition(db_session, ADMIN, order_id, "returned", note="Refused at door")

    assert returned.stock_deducted is False
    assert _stock(db_session, product_id) == 5
    reasons = [
        entry.reason
        for entry in db_session.scalars(
            select(InventoryLedgerEntry)
            .where(InventoryLedgerEntry.product_id == product_id)
            .order_by(InventoryLedgerEntry.id)
        ).all()
    ]
    assert reasons == ["manual_adjust", "order_deduction", "order_return"]
    history = _history(db_session, order_id)
    assert [(entry.from_status, entry.to_status) for entry in history] == [
        (None, "confirmed"),
        ("confirmed", "shipped"),
        ("shipped", "returned"),
    ]
    assert history[-1].detail == "Refused at door"


def test_return_without_shipment_leaves_stock(db_session: Session) -> None:
    product_id = _product(db_session, stock=5)
    order_id = _order(db_session, product_id)

    order_lifecycle.transition(db_session, ADMIN, order_id, "returned")

    assert _stock(db_session, product_id) == 5


def test_reshipping_a_cancelled_shipment_deducts_once(db_session: Session) -> None:
    product_id = _product(db_session, stock=5)
    order_id = _order(db_session, product_id)

    order_lifecycle.transition(db_session, WAREHOUSE, order_id, "shipped")
    order_lifecycle.transition(db_session, ADMIN, order_id, "cancelled")
    order_lifecycle.transition(db_session, ADMIN, order_id, "confirmed")
    reshipped = order_lifecycle.transition(db_session, WAREHOUSE, order_id, "shipped")

    assert reshipped.stock_deducted is True
    assert _stock(db_session, product_id) == 4
    assert inventory_ledger.replay(db_session, product_id) == (4, 2)

    order_lifecycle.transition(db_session, ADMIN, order_id, "returned")
    assert _stock(db_session, product_id) == 5


def test_shipment_publishes_stock_and_status_events(db_session: Session) -> None:
    product_id = _product(db_session, stock=5)
    order_id = _order(db_session, product_id)
    events.published_events.clear()

    order_lifecycle.transition(db_session, ADMIN, order_id, "shipped")

    assert [item["event_type"] for item in events.published_events] == [
        "inventory.stock_posted",
        "sales.order.status_changed",
    ]
    status_event = events.published_events[-1]["payload"]
    assert status_event["from_status"] == "confirmed"
    assert status_event["to_status"] == "shipped"


def test_bulk_status_skips_missing_and_unchanged_orders(db_session: Session) -> None:
    product_id = _product(db_session, stock=5)
    already = _order(db_session, product_id)
    order_lifecycle.transition(db_session, ADMIN, already, "shipped")
    missing = uuid.uuid4()

    report = order_lifecycle.bulk_status(db_session, WAREHOUSE, [already, missing], "shipped")

    assert report.updated == 0
    assert {item.id: item.reason for item in report.results} == {
        already: "Already shipped",
        missing: "Order not found",
    }
    assert report.skipped_ids == [already, missing]
    assert _stock(db_session, product_id) == 4


def test_bulk_status_keeps_successes_when_one_fails(db_session: Session) -> None:
    product_id = _product(db_session, stock=1)
    first = _order(db_session, product_id)
    second = _order(db_session, product_id)

    report = order_lifecycle.bulk_status(db_session, ADMIN, [first, second], "shipped")

    assert report.updated == 1
    assert report.skipped == 1
    assert report.results[0].outcome == "updated"
    assert report.results[1].reason is not None
    assert report.results[1].reason.startswith("Insufficient stock")
    assert _stock(db_session, product_id) == 0
    assert db_session.get(Order, first).status == "shipped"  # type: ignore[union-attr]
    assert db_session.get(Order, second).status == "confirmed"  # type: ignore[union-attr]


def test_bulk_paid_only_from_shipped_or_confirmed(db_session: Session) -> None:
    pending = _order(db_session, status="pending")

    report = order_lifecycle.bulk_status(db_session, ADMIN, [pending], "paid")

    assert report.results[0].reason == "Only shipped or confirmed orders can be marked paid"


@pytest.fixture()
def file_sessions(tmp_path: Path) -> Generator[tuple[Session, Session], None, None]:
    engine = _sqlite_engine(f"sqlite+pysqlite:///{tmp_path / 'orders.db'}")
    Base.metadata.create_all(bind=engine)
    first = sessionmaker(bind=engine, autoflush=False)()
    second = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    try:
        yield first, second
    finally:
        first.close()
        second.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


def test_stale_reader_cannot_oversell(file_sessions: tuple[Session, Session]) -> None:
    session_a, session_b = file_sessions
    product_id = _product(session_a, stock=1)
    first = _order(session_a, product_id)
    second = _order(session_a, product_id)

    stale_order = session_b.get(Order, second)
    assert stale_order is not None
    assert len(stale_order.items) == 0
    stale_product = session_b.get(Product, product_id)
    assert stale_product is not None and stale_product.stock_quantity == 1
    session_b.commit()

    order_lifecycle.transition(session_a, WAREHOUSE, first, "shipped")

    with pytest.raises(InsufficientStock):
        order_lifecycle.transition(session_b, WAREHOUSE, second, "shipped")

    assert _stock(session_a, product_id) == 0
    assert inventory_ledger.replay(session_a, product_id) == (0, 2)


def test_concurrent_ship_of_same_order_deducts_once(file_sessions: tuple[Session, Session]) -> None:
    session_a, session_b = file_sessions
    product_id = _product(session_a, stock=5)
    order_id = _order(session_a, product_id)

    stale_order = session_b.get(Order, order_id)
    assert stale_order is not None and stale_order.status == "confirmed"
    session_b.commit()

    order_lifecycle.transition(session_a, WAREHOUSE, order_id, "shipped")

    with pytest.raises(Conflict):
        order_lifecycle.transition(session_b, WAREHOUSE, order_id, "shipped")

    assert _stock(session_a, product_id) == 4
    assert inventory_ledger.replay(session_a, product_id) == (4, 2)


def test_concurrent_ship_of_same_order_with_stock_for_one(file_sessions: tuple[Session, Session]) -> None:
    session_a, session_b = file_sessions
    product_id = _product(session_a, stock=1)
    order_id = _order(session_a, product_id)

    stale_order = session_b.get(Order, order_id)
    assert stale_order is not None and stale_order.status == "confirmed"
    session_b.commit()

    order_lifecycle.transition(session_a, WAREHOUSE, order_id, "shipped")

    with pytest.raises(InsufficientStock):
        order_lifecycle.transition(session_b, WAREHOUSE, order_id, "shipped")

    assert _stock(session_a, product_id) == 0
    assert inventory_ledger.replay(session_a, product_id) == (0, 2)
