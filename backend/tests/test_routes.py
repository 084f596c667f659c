# Overview: Pytest coverage for the HTTP layer: status codes, error bodies and JSON shapes.

"""
Route Tests

Requests go through the app's own FulfillmentCore (real clock, settings from
config). The slip provider key is empty in tests, so a submitted slip is
unreadable unless a test swaps in a scripted reader.
"""

from datetime import timedelta

from fulfillment.time_utils import utcnow

from conftest import FakeSlipReader, make_slip


def create_order(client, items, **extra):
    body = {"items": items, "customer": {"customer_name": "Somchai Jaidee"}}
    body.update(extra)
    return client.post("/api/orders/", json=body)


class TestOrderRoutes:
    def test_create_order(self, client, catalog):
        response = create_order(
            client,
            [
                {"product_id": catalog.product_a.id, "quantity": 2, "unit_price_cents": 1},
                {"product_id": catalog.product_b.id, "quantity": 1},
            ],
        )
        assert response.status_code == 201
        order = response.get_json()["order"]
        assert order["total_cents"] == 136318
        assert order["order_number"].startswith("BR1-")
        assert order["status"] == "pending"

    def test_empty_cart(self, client, catalog):
        response = create_order(client, [])
        assert response.status_code == 400
        assert response.get_json()["code"] == "EMPTY_CART"

    def test_unknown_product(self, client, catalog):
        response = create_order(client, [{"product_id": 99999}])
        assert response.status_code == 400
        assert response.get_json()["code"] == "PRODUCT_NOT_FOUND"

    def test_get_order(self, client, catalog):
        order_id = create_order(client, [{"product_id": catalog.product_c.id}]).get_json()["order"]["order_id"]

        response = client.get(f"/api/orders/{order_id}")
        assert response.status_code == 200
        body = response.get_json()["order"]
        assert body["total_cents"] == 89000
        assert body["status_history"][0]["to_status"] == "pending"

    def test_get_unknown_order(self, client, catalog):
        response = client.get("/api/orders/99999")
        assert response.status_code == 404
        assert response.get_json()["code"] == "ORDER_NOT_FOUND"

    def test_list_and_kitchen(self, client, catalog):
        create_order(client, [{"product_id": catalog.product_c.id}])

        listing = client.get("/api/orders/?status=pending").get_json()
        assert listing["total"] == 1

        kitchen = client.get("/api/orders/kitchen").get_json()
        assert len(kitchen["orders"]) == 1

    def test_bad_status_filter(self, client, catalog):
        response = client.get("/api/orders/?status=shipped")
        assert response.status_code == 400


class TestStatusRoutes:
    def test_transition(self, client, catalog):
        order_id = create_order(client, [{"product_id": catalog.product_c.id}]).get_json()["order"]["order_id"]

        response = client.post(f"/api/orders/{order_id}/status", json={"status": "confirmed", "actor": "admin"})
        assert response.status_code == 200
        assert response.get_json()["changed"] is True

        again = client.post(f"/api/orders/{order_id}/status", json={"status": "confirmed"})
        assert again.status_code == 200
        assert again.get_json()["changed"] is False

    def test_invalid_transition(self, client, catalog):
        order_id = create_order(client, [{"product_id": catalog.product_c.id}]).get_json()["order"]["order_id"]

        response = client.post(f"/api/orders/{order_id}/status", json={"status": "completed"})
        assert response.status_code == 409
        assert response.get_json()["code"] == "INVALID_STATUS_TRANSITION"

    def test_status_required(self, client, catalog):
        response = client.post("/api/orders/1/status", json={})
        assert response.status_code == 400

    def test_cancel(self, client, catalog):
        order_id = create_order(client, [{"product_id": catalog.product_c.id}]).get_json()["order"]["order_id"]

        response = client.post(f"/api/orders/{order_id}/cancel", json={"actor": "admin", "reason": "No show"})
        assert response.status_code == 200
        assert response.get_json()["new_status"] == "cancelled"


class TestPaymentRoutes:
    def test_unconfigured_provider_goes_to_review(self, client, catalog):
        order_id = create_order(client, [{"product_id": catalog.product_c.id}]).get_json()["order"]["order_id"]

        response = client.post(f"/api/orders/{order_id}/payment-slip", json={"image_reference": "slip.jpg"})
        assert response.status_code == 200
        decision = response.get_json()
        assert decision["outcome"] == "needs_review"
        assert decision["failed_checks"] == ["unreadable"]

        reviews = client.get("/api/payments/reviews").get_json()
        assert [e["id"] for e in reviews["evidence"]] == [decision["evidence_id"]]
        assert [o["id"] for o in reviews["orders"]] == [order_id]

        bad = client.post(f"/api/payments/reviews/{decision['evidence_id']}", json={"approve": "yes"})
        assert bad.status_code == 400

        approved = client.post(
            f"/api/payments/reviews/{decision['evidence_id']}",
            json={"approve": True, "actor": "owner"},
        )
        assert approved.status_code == 200
        assert approved.get_json()["payment_status"] == "paid"

        settled = client.post(f"/api/payments/reviews/{decision['evidence_id']}", json={"approve": False})
        assert settled.status_code == 409

    def test_scripted_slip_approved(self, app, client, catalog, monkeypatch):
        reader = FakeSlipReader()
        reader.script("slip.jpg", make_slip(transferred_at=utcnow() - timedelta(hours=1)))
        monkeypatch.setattr(app.extensions["fulfillment"].payments, "slip_reader", reader)

        order_id = create_order(client, [{"product_id": catalog.product_c.id}]).get_json()["order"]["order_id"]
        response = client.post(f"/api/orders/{order_id}/payment-slip", json={"image_reference": "slip.jpg"})
        assert response.get_json()["outcome"] == "approved"

        order = client.get(f"/api/orders/{order_id}").get_json()["order"]
        assert order["payment_status"] == "paid"
        assert order["status"] == "confirmed"

    def test_image_reference_required(self, client, catalog):
        order_id = create_order(client, [{"product_id": catalog.product_c.id}]).get_json()["order"]["order_id"]
        response = client.post(f"/api/orders/{order_id}/payment-slip", json={})
        assert response.status_code == 400

    def test_slip_for_unknown_order(self, client, catalog):
        response = client.post("/api/orders/99999/payment-slip", json={"image_reference": "slip.jpg"})
        assert response.status_code == 404


class TestStockRoutes:
    def test_adjust(self, client, catalog):
        response = client.post(
            "/api/stock/adjust",
            json={"ingredient_id": catalog.flour.id, "type": "add", "quantity": "2.5", "actor": "admin"},
        )
        assert response.status_code == 200
        body = response.get_json()
        assert body["new_stock"] == "12.500"
        assert body["adjustment"] == "2.500"

    def test_remove_too_much(self, client, catalog):
        response = client.post(
            "/api/stock/adjust",
            json={"ingredient_id": catalog.flour.id, "type": "remove", "quantity": "50"},
        )
        assert response.status_code == 422
        assert response.get_json()["code"] == "NEGATIVE_STOCK"

    def test_adjust_validation(self, client, catalog):
        assert client.post("/api/stock/adjust", json={"ingredient_id": "1", "type": "add", "quantity": 1}).status_code == 400
        assert client.post("/api/stock/adjust", json={"ingredient_id": catalog.flour.id, "type": "add"}).status_code == 400
        bad_type = client.post(
            "/api/stock/adjust", json={"ingredient_id": catalog.flour.id, "type": "deduct", "quantity": 1}
        )
        assert bad_type.get_json()["code"] == "INVALID_TYPE"

    def test_alerts(self, client, catalog):
        alerts = client.get(f"/api/stock/alerts?branch_id={catalog.branch.id}").get_json()["alerts"]
        assert [a["name"] for a in alerts] == ["Sugar"]
        assert alerts[0]["current_stock"] == "0.500"
        assert alerts[0]["shortfall"] == "0.500"

    def test_history(self, client, catalog):
        response = client.get(f"/api/stock/history/{catalog.flour.id}")
        assert response.status_code == 200
        assert response.get_json()["total"] == 1
        assert client.get("/api/stock/history/99999").status_code == 404

    def test_product_cost(self, client, catalog):
        body = client.get(f"/api/stock/cost/{catalog.product_a.id}").get_json()
        assert body["recipe_cost_cents"] == 300
        assert body["recipe"] == [{"ingredient_id": catalog.flour.id, "quantity_per_unit": "0.300"}]
        assert client.get("/api/stock/cost/99999").status_code == 400


class TestHealth:
    def test_health(self, client, db_session):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.get_json()
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["checks"]["slip_provider"]["configured"] is False
