from __future__ import annotations

from collections.abc import Generator
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from orderdesk import events
from orderdesk.core.auth import issue_token
from orderdesk.core.config import get_settings
from orderdesk.core.database import Base, get_db
from orderdesk.core.events import event_bus
from orderdesk.main import _on_stock_posted, app


def _auth(user_id: str, *roles: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_token(user_id, roles)}"}


ADMIN = _auth("admin-1", "admin")
AGENT = _auth("agent-1", "agent")
WAREHOUSE = _auth("wh-1", "warehouse")

CUSTOMER: dict[str, Any] = {
    "customer_name": "Imane Tazi",
    "customer_phone": "0612 34 56 78",
    "customer_city": "Tangier",
    "customer_address": "21 Av. Pasteur",
}


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
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("INBOUND_WEBHOOK_TOKEN", "hook-secret")
    monkeypatch.setenv("METRICS_ENABLED", "true")
    get_settings.cache_clear()
    events.published_events.clear()
    yield
    get_settings.cache_clear()
    events.published_events.clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_product(client: TestClient, stock: int, name: str = "Argan Oil") -> str:
    response = client.post(
        "/api/products",
        json={"name": name, "price": "80", "stock_quantity": stock, "low_stock_threshold": 1},
        headers=ADMIN,
    )
    assert response.status_code == 201
    return response.json()["id"]


def _create_order(client: TestClient, product_id: str | None = None, **overrides: Any) -> dict[str, Any]:
    payload = {**CUSTOMER, "product_id": product_id, "product_name": "Argan Oil", "status": "confirmed", **overrides}
    response = client.post("/api/orders", json=payload, headers=ADMIN)
    assert response.status_code == 201
    return response.json()


def test_missing_token_is_rejected(client: TestClient) -> None:
    response = client.get("/api/orders")

    assert response.status_code == 401
    assert response.json() == {"error": "Missing authorization"}


def test_bad_token_is_rejected(client: TestClient) -> None:
    response = client.get("/api/orders", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid token"}


def test_validation_errors_use_error_envelope(client: TestClient) -> None:
    response = client.post("/api/orders", json={**CUSTOMER, "quantity": 0}, headers=ADMIN)

    assert response.status_code == 400
    assert response.json()["error"].startswith("quantity:")


def test_create_and_read_order(client: TestClient) -> None:
    created = _create_order(client)

    assert created["display_id"] == "ORD-01001"
    assert created["status"] == "confirmed"

    detail = client.get(f"/api/orders/{created['id']}", headers=ADMIN)
    assert detail.status_code == 200
    body = detail.json()
    assert [entry["to_status"] for entry in body["history"]] == ["confirmed"]
    assert [note["text"] for note in body["notes"]] == ["Manual order created"]


def test_status_change_and_stock_errors(client: TestClient) -> None:
    product_id = _create_product(client, stock=1)
    first = _create_order(client, product_id)
    second = _create_order(client, product_id)

    shipped = client.patch(f"/api/orders/{first['id']}/status", json={"status": "shipped"}, headers=WAREHOUSE)
    assert shipped.status_code == 200
    assert shipped.json()["status"] == "shipped"

    starved = client.patch(f"/api/orders/{second['id']}/status", json={"status": "shipped"}, headers=WAREHOUSE)
    assert starved.status_code == 409
    assert starved.json() == {"error": "Insufficient stock: Argan Oil has 0 available, but 1 requested"}

    product = client.get(f"/api/products/{product_id}", headers=ADMIN).json()
    assert product["stock_quantity"] == 0
    reconciliation = client.get(f"/api/products/{product_id}/reconciliation", headers=ADMIN).json()
    assert reconciliation["consistent"] is True
    assert reconciliation["entry_count"] == 2


def test_agent_cannot_ship_over_http(client: TestClient) -> None:
    order = _create_order(client)

    response = client.patch(f"/api/orders/{order['id']}/status", json={"status": "shipped"}, headers=AGENT)

    assert response.status_code == 403
    assert response.json() == {"error": "Not allowed: order.status.shipped"}


def test_missing_customer_data_is_unprocessable(client: TestClient) -> None:
    order = _create_order(client, customer_city="")

    response = client.patch(f"/api/orders/{order['id']}/status", json={"status": "paid"}, headers=ADMIN)

    assert response.status_code == 422


def test_bulk_status_report(client: TestClient) -> None:
    product_id = _create_product(client, stock=1)
    first = _create_order(client, product_id)
    second = _create_order(client, product_id)

    response = client.post(
        "/api/orders/bulk-status",
        json={"ids": [first["id"], second["id"]], "status": "shipped"},
        headers=ADMIN,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["updated"] == 1
    assert body["skipped"] == 1
    assert body["skipped_ids"] == [second["id"]]


def test_null_patch_fields_are_rejected_before_any_write(client: TestClient) -> None:
    order = _create_order(
        client,
        items=[{"product_name": "Argan Oil", "quantity": 2, "price_per_unit": "10"}],
    )
    item_id = order["items"][0]["id"]

    item_patch = client.patch(f"/api/order-items/{item_id}", json={"quantity": None}, headers=ADMIN)
    assert item_patch.status_code == 400
    assert item_patch.json()["error"].startswith("quantity:")

    order_patch = client.patch(f"/api/orders/{order['id']}", json={"customer_name": None}, headers=ADMIN)
    assert order_patch.status_code == 400
    assert order_patch.json()["error"].startswith("customer_name:")

    detail = client.get(f"/api/orders/{order['id']}", headers=ADMIN).json()
    assert detail["customer_name"] == CUSTOMER["customer_name"]
    assert detail["items"][0]["quantity"] == 2


def test_patching_total_of_itemised_order_is_unprocessable(client: TestClient) -> None:
    order = _create_order(
        client,
        items=[
            {"product_name": "Henna", "quantity": 2, "price_per_unit": "10"},
            {"product_name": "Comb", "quantity": 1, "price_per_unit": "5"},
        ],
    )

    response = client.patch(f"/api/orders/{order['id']}", json={"price": "999"}, headers=ADMIN)

    assert response.status_code == 422
    detail = client.get(f"/api/orders/{order['id']}", headers=ADMIN).json()
    assert detail["price"] == "25.00"


def test_phone_duplicates(client: TestClient) -> None:
    first = _create_order(client)
    second = _create_order(client, customer_phone="06-12-34-56-78")
    client.post("/api/leads", json={"name": "Imane", "phone": "0612345678"}, headers=ADMIN)

    response = client.get("/api/phone-duplicates", params={"phone": "0612345678", "exclude_order_id": first["id"]}, headers=AGENT)

    assert response.status_code == 200
    matches = response.json()
    assert [(item["source"], item["source_id"]) for item in matches][0] == ("order", second["display_id"])
    assert [item["source"] for item in matches] == ["order", "lead"]

    detail = client.get(f"/api/orders/{second['id']}", headers=ADMIN).json()
    assert [item["source_id"] for item in detail["phone_duplicates"] if item["source"] == "order"] == [first["display_id"]]


def test_short_phone_has_no_duplicates(client: TestClient) -> None:
    _create_order(client, customer_phone="1234")
    _create_order(client, customer_phone="1234")

    response = client.get("/api/phone-duplicates", params={"phone": "1234"}, headers=AGENT)

    assert response.json() == []


def test_inbound_webhook_creates_lead_and_order(client: TestClient) -> None:
    rejected = client.post("/api/webhooks/leads", json={"phone": "0700000000"}, headers={"x-webhook-token": "nope"})
    assert rejected.status_code == 401

    response = client.post(
        "/api/webhooks/leads",
        json={"name": "Web Visitor", "phone": "0700000000", "product_interest": "Serum"},
        headers={"x-webhook-token": "hook-secret"},
    )

    assert response.status_code == 201
    body = response.json()
    order = client.get(f"/api/orders/{body['order_id']}", headers=ADMIN).json()
    assert order["status"] == "pending"
    assert order["source_type"] == "inbound_lead"
    assert order["source_lead_id"] == body["lead_id"]
    lead = client.get(f"/api/leads/{body['lead_id']}", headers=ADMIN).json()
    assert lead["linked_order_id"] == body["order_id"]


def test_lead_conversion_over_http(client: TestClient) -> None:
    lead = client.post(
        "/api/leads",
        json={"name": "Reda", "phone": "0655443322", "city": "Agadir", "address": "Hay Dakhla"},
        headers=AGENT,
    ).json()

    response = client.patch(f"/api/leads/{lead['id']}", json={"status": "confirmed"}, headers=AGENT)

    assert response.status_code == 200
    assert response.json()["assigned_agent_id"] == "agent-1"
    detail = client.get(f"/api/leads/{lead['id']}", headers=AGENT).json()
    assert detail["linked_order_id"] is not None
    orders = client.get("/api/orders", headers=AGENT).json()
    assert [order["source_type"] for order in orders["orders"]] == ["prediction_lead"]


def test_correlation_id_is_echoed_and_stamped_on_events(client: TestClient) -> None:
    response = client.post(
        "/api/orders",
        json=CUSTOMER,
        headers={**ADMIN, "x-correlation-id": "corr-123"},
    )

    assert response.status_code == 201
    assert response.headers["x-correlation-id"] == "corr-123"
    assert events.published_events[-1]["event_type"] == "sales.order.created"
    assert events.published_events[-1]["correlation_id"] == "corr-123"


def test_low_stock_subscription_registered(client: TestClient) -> None:
    assert _on_stock_posted in event_bus.subscribers("inventory.stock_posted")


def test_metrics_endpoint_requires_privilege(client: TestClient) -> None:
    assert client.get("/metrics", headers=AGENT).status_code == 403

    response = client.get("/metrics", headers=ADMIN)

    assert response.status_code == 200
    assert "orderdesk_order_transitions_total" in response.text


def test_profile_names_label_actors(client: TestClient) -> None:
    upsert = client.put("/api/profiles/agent-1", json={"full_name": "Omar Agent"}, headers=ADMIN)
    assert upsert.status_code == 200

    me = client.get("/me", headers=AGENT).json()

    assert me["display_name"] == "Omar Agent"
    assert me["capability"] == "scoped"
