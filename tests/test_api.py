"""
Tests for the HTTP API.
"""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from api import create_app, GENERIC_FAILURE
from db import InMemoryStore
from models import DiscountType, Promotion
from orders import OrderService

from conftest import NOW, seed_menu


OWNER = {"X-User-Id": "owner-1", "X-User-Name": "Olivia Owner", "X-User-Role": "owner"}
CUSTOMER = {"X-User-Id": "cust-1", "X-User-Name": "Carlo Customer", "X-User-Role": "customer"}

ORDER_BODY = {
    "customer": {
        "name": "Carlo Customer",
        "phone": "09171234567",
        "address": "123 Rizal St, Barangay San Jose, Quezon City",
    },
    "items": [{"menu_item_id": "burger", "quantity": 2}],
    "order_type": "takeaway",
}


@pytest.fixture
def client(service):
    return TestClient(create_app(service))


def place(client, body=None):
    response = client.post("/orders", json=body or ORDER_BODY, headers=CUSTOMER)
    assert response.status_code == 201, response.text
    return response.json()


class TestOrders:

    def test_create_and_read(self, client):
        order = place(client)

        assert order["status"] == "pending"
        assert order["status_label"] == "Pending"
        assert order["total"] == 200
        assert order["payment_status"] is None

        response = client.get(f"/orders/{order['order_id']}", headers=CUSTOMER)
        assert response.json()["order_id"] == order["order_id"]

    def test_missing_identity(self, client):
        assert client.get("/orders").status_code == 401

    def test_unknown_role(self, client):
        headers = dict(CUSTOMER, **{"X-User-Role": "admin"})
        assert client.get("/orders", headers=headers).status_code == 401

    def test_prices_come_from_the_menu(self, client):
        body = dict(ORDER_BODY, items=[{"menu_item_id": "burger", "quantity": 1, "price": 1}])
        assert place(client, body)["subtotal"] == 100

    def test_validation_error_is_400(self, client):
        body = dict(ORDER_BODY, items=[{"menu_item_id": "pie"}])
        response = client.post("/orders", json=body, headers=CUSTOMER)

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

    def test_unknown_order_is_404(self, client):
        assert client.get("/orders/nope", headers=OWNER).status_code == 404

    def test_permission_is_403(self, client):
        order = place(client)
        response = client.post(f"/orders/{order['order_id']}/accept", json={}, headers=CUSTOMER)
        assert response.status_code == 403

    def test_invalid_transition_is_409(self, client):
        order = place(client)
        response = client.post(
            f"/orders/{order['order_id']}/status", json={"status": "completed"}, headers=OWNER
        )
        assert response.status_code == 409

    def test_lifecycle(self, client):
        order = place(client)
        order_id = order["order_id"]

        response = client.post(f"/orders/{order_id}/deny", json={"reason": "Out of stock"}, headers=OWNER)
        assert response.json()["denial_reason"] == "Out of stock"

        response = client.post(f"/orders/{order_id}/accept", json={"estimated_prep_time": 10}, headers=OWNER)
        body = response.json()
        assert body["status"] == "accepted"
        assert body["denial_reason"] is None
        assert body["estimated_prep_time"] == 10

        history = client.get(f"/orders/{order_id}/modifications", headers=OWNER).json()
        assert [r["modification_type"] for r in history] == ["status_changed", "status_changed"]

    def test_customer_cancel(self, client):
        order = place(client)
        response = client.post(f"/orders/{order['order_id']}/cancel", headers=CUSTOMER)
        assert response.json()["status"] == "cancelled"

    def test_status_filter(self, client):
        place(client)
        assert len(client.get("/orders?status=pending", headers=OWNER).json()) == 1
        assert client.get("/orders?status=cancelled", headers=OWNER).json() == []
        assert client.get("/orders?status=bogus", headers=OWNER).status_code == 400


class TestItemEdits:

    def test_edit_flow(self, client):
        order_id = place(client)["order_id"]

        response = client.post(
            f"/orders/{order_id}/items",
            json={"item": {"menu_item_id": "soda", "quantity": 1}},
            headers=OWNER,
        )
        assert response.json()["subtotal"] == 230

        response = client.patch(f"/orders/{order_id}/items/0/quantity", json={"quantity": 1}, headers=OWNER)
        assert response.json()["subtotal"] == 130

        response = client.patch(f"/orders/{order_id}/items/1/price", json={"unit_price": 20}, headers=OWNER)
        assert response.json()["subtotal"] == 120

        response = client.delete(f"/orders/{order_id}/items/1", headers=OWNER)
        assert response.json()["subtotal"] == 100

        history = client.get(f"/orders/{order_id}/modifications", headers=OWNER).json()
        assert len(history) == 4

    def test_replace_items(self, client):
        order_id = place(client)["order_id"]
        response = client.put(
            f"/orders/{order_id}/items",
            json={"items": [{"menu_item_id": "fries", "variant_id": "fries-l"}], "note": "Swapped"},
            headers=OWNER,
        )

        assert response.json()["items"][0]["name"] == "Fries (Large)"


class TestVouchersAndSettings:

    def test_running_promotions(self, client, store):
        store.add_promotion(Promotion(
            promotion_id="holiday",
            title="Holiday Treat",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=10,
            start_date=NOW - timedelta(days=1),
            end_date=NOW + timedelta(days=7),
        ))

        response = client.get("/promotions", headers=CUSTOMER)

        assert response.status_code == 200
        assert [(p["promotion_id"], p["discount_type"]) for p in response.json()] == [("holiday", "percentage")]

    def test_voucher_round(self, client):
        response = client.put(
            "/vouchers",
            json={
                "code": "promo5",
                "discount_type": "fixed",
                "value": 5,
                "expires_at": "2030-01-01T00:00:00Z",
            },
            headers=OWNER,
        )
        assert response.json()["code"] == "PROMO5"

        check = client.post("/vouchers/validate", json={"code": "PROMO5", "amount": 50}, headers=CUSTOMER)
        assert check.json() == {"valid": True, "discount": 5, "message": None, "reason": None, "code": "PROMO5"}

    def test_voucher_rejection_carries_reason(self, client):
        body = dict(ORDER_BODY, voucher_code="NOPE")
        response = client.post("/orders", json=body, headers=CUSTOMER)

        assert response.status_code == 400
        assert response.json()["reason"] == "invalid_code"

    def test_settings_and_schedule(self, client):
        response = client.patch("/settings", json={"platform_fee_enabled": True, "platform_fee": 10}, headers=OWNER)
        assert response.json()["platform_fee"] == 10

        client.put(
            "/settings/schedule",
            json={"restrictions_enabled": True, "dates": []},
            headers=OWNER,
        )
        client.post(
            "/settings/schedule/dates",
            json={"date": "2024-12-25", "start_time": "13:00", "end_time": "19:00"},
            headers=OWNER,
        )

        check = client.get("/settings/schedule/check?date=2024-12-25&time=18:59", headers=CUSTOMER)
        assert check.json()["allowed"] is True

        response = client.delete("/settings/schedule/dates/2024-12-25", headers=OWNER)
        assert response.json()["dates"] == []

    def test_bad_schedule_window(self, client):
        response = client.put(
            "/settings/schedule",
            json={"restrictions_enabled": True, "dates": [{"date": "2024-12-25", "start_time": "19:00", "end_time": "13:00"}]},
            headers=OWNER,
        )
        assert response.status_code == 400
        assert response.json()["error"] == "ScheduleViolation"

    def test_delivery_fees(self, client):
        client.put("/delivery-fees", json={"fees": [{"barangay": "San Jose", "fee": 30}]}, headers=OWNER)
        assert client.get("/delivery-fees", headers=CUSTOMER).json() == [{"barangay": "San Jose", "fee": 30}]

        assert client.delete("/delivery-fees/San Jose", headers=OWNER).status_code == 200
        assert client.delete("/delivery-fees/San Jose", headers=OWNER).status_code == 404

    def test_denial_reasons(self, client):
        reasons = client.get("/denial-reasons", headers=OWNER).json()
        assert [r["reason"] for r in reasons] == ["Out of stock", "Restaurant is too busy"]


class BrokenStore(InMemoryStore):

    async def save_order(self, order, expected_version, modification=None):
        raise RuntimeError("connection reset")


def test_store_failure_is_generic_500(config, clock):
    store = BrokenStore()
    seed_menu(store)
    client = TestClient(create_app(OrderService(store, config, clock=clock)), raise_server_exceptions=False)

    response = client.post("/orders", json=ORDER_BODY, headers=CUSTOMER)
    order_id = response.json()["order_id"]

    response = client.post(f"/orders/{order_id}/cancel", headers=CUSTOMER)
    assert response.status_code == 500
    assert response.json()["detail"] == GENERIC_FAILURE


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"
