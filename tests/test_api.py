import pytest
from fastapi.testclient import TestClient

from fulfillment.main import create_app


@pytest.fixture
def client(database):
    return TestClient(create_app(database))


def order_payload(number="ORD-1", tracking_code="TRK-1"):
    return {
        "order": {
            "number": number,
            "date": "2025-01-10",
            "customer_name": "Jane Doe",
            "total": "25000.00",
        },
        "shipment": {
            "tracking_code": tracking_code,
            "carrier": "carrier_a",
            "service_level": "EXPRESS",
            "cost": "1200.00",
        },
    }


def test_root_and_health(client):
    assert client.get("/").json()["status"] == "running"
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "pass"
    assert client.get("/health/live").json() == {"status": "alive"}


def test_readiness_checks_the_store(client):
    resp = client.get("/health/ready")
    checks = resp.json()["checks"]
    assert checks["database:connectivity"]["status"] == "pass"
    assert checks["database:schema"]["status"] == "pass"


def test_list_shipments_empty(client):
    resp = client.get("/shipments/")
    assert resp.status_code == 200
    assert resp.json() == []


def test_create_order_with_shipment(client):
    resp = client.post("/orders/", json=order_payload())
    assert resp.status_code == 201
    body = resp.json()
    assert body["order"]["status"] == "NEW"
    assert body["shipment"]["status"] == "PREPARING"
    assert body["order"]["shipment_id"] == body["shipment"]["id"]

    fetched = client.get(f"/orders/{body['order']['id']}").json()
    assert fetched["number"] == "ORD-1"
    assert fetched["shipment"]["tracking_code"] == "TRK-1"
    assert fetched["shipment"]["carrier"] == "CARRIER_A"

    by_number = client.get("/orders/number/ORD-1").json()
    assert by_number["id"] == body["order"]["id"]
    assert client.get("/shipments/tracking/TRK-1").json()["id"] == body["shipment"]["id"]


def test_duplicate_order_number_is_unprocessable(client):
    client.post("/orders/", json=order_payload())
    resp = client.post("/orders/", json=order_payload(tracking_code="TRK-2"))
    assert resp.status_code == 422
    assert resp.json()["error"] == "ValidationError"
    assert resp.json()["field"] == "number"
    assert len(client.get("/shipments/").json()) == 1


def test_unknown_enum_literal_is_unprocessable(client):
    payload = order_payload()
    payload["shipment"]["carrier"] = "CARRIER_Z"
    resp = client.post("/orders/", json=payload)
    assert resp.status_code == 422
    assert resp.json()["error"] == "EnumParseError"
    assert resp.json()["field"] == "carrier"


def test_missing_entities_are_not_found(client):
    assert client.get("/orders/42").status_code == 404
    assert client.get("/shipments/42").status_code == 404
    assert client.get("/orders/number/NOPE").status_code == 404
    assert client.delete("/orders/42").status_code == 404


def test_referenced_shipment_delete_conflicts(client):
    body = client.post("/orders/", json=order_payload()).json()
    shipment_id = body["shipment"]["id"]

    resp = client.delete(f"/shipments/{shipment_id}")
    assert resp.status_code == 409
    assert resp.json()["error"] == "ReferentialIntegrityError"

    assert client.delete(f"/orders/{body['order']['id']}").status_code == 204
    assert client.delete(f"/shipments/{shipment_id}").status_code == 204
    assert client.get(f"/shipments/{shipment_id}").status_code == 404


def test_order_for_existing_shipment(client):
    shipment = client.post(
        "/shipments/",
        json={"tracking_code": "TRK-7", "carrier": "CARRIER_B", "cost": "80.00"},
    ).json()
    assert shipment["service_level"] == "STANDARD"

    resp = client.post(
        "/orders/existing-shipment",
        json={"number": "ORD-7", "date": "2025-03-01", "customer_name": "Ana", "total": "10",
              "shipment_id": shipment["id"]},
    )
    assert resp.status_code == 201
    assert resp.json()["shipment"]["tracking_code"] == "TRK-7"


def test_update_order_status(client):
    body = client.post("/orders/", json=order_payload()).json()
    resp = client.put(f"/orders/{body['order']['id']}", json={"status": "shipped"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "SHIPPED"
    assert resp.json()["shipment"]["tracking_code"] == "TRK-1"
