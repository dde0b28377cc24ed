"""
HTTP boundary tests.

Verifies:
- Authentication (401) and role gates (403) in front of the services
- Typed engine failures map to their status codes and JSON bodies
- Order, table and unpaid-ledger flows end to end through the API
"""

import pytest

from cafepos.extensions import db
from cafepos.models import InventoryTransaction, Payment

from conftest import auth_headers, get_auth_token


# =============================================================================
# SYSTEM & AUTH
# =============================================================================


class TestSystem:
    def test_health(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "healthy"
        assert resp.json["checks"]["database"]["status"] == "healthy"


class TestAuth:
    def test_login_returns_token(self, client, users):
        resp = client.post("/api/auth/login", json={"username": "cashier", "password": "Password123!"})
        assert resp.status_code == 200
        assert resp.json["user"]["role"] == "cashier"
        assert resp.json["token"]
        assert resp.json["expires_at"].endswith("Z")

    def test_login_rejects_bad_credentials(self, client, users):
        resp = client.post("/api/auth/login", json={"username": "cashier", "password": "wrong-password"})
        assert resp.status_code == 401

        resp = client.post("/api/auth/login", json={"username": "cashier"})
        assert resp.status_code == 400

    def test_me_and_logout(self, client, users):
        headers = auth_headers(get_auth_token(client, "manager"))

        resp = client.get("/api/auth/me", headers=headers)
        assert resp.status_code == 200
        assert resp.json["user"]["username"] == "manager"

        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_garbage_token(self, client, users):
        resp = client.get("/api/auth/me", headers=auth_headers("not-a-real-token"))
        assert resp.status_code == 401


class TestUnauthenticatedAccess:
    """Protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/orders"),
            ("POST", "/api/orders"),
            ("GET", "/api/orders/1"),
            ("PATCH", "/api/orders/1/status"),
            ("GET", "/api/tables"),
            ("GET", "/api/tables/1/bill"),
            ("POST", "/api/tables/1/combine"),
            ("POST", "/api/tables/1/pay"),
            ("GET", "/api/unpaid"),
            ("POST", "/api/unpaid/1/pay"),
            ("GET", "/api/products/low-stock"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"


class TestRoleGates:
    def test_cashier_cannot_create_table(self, client, cashier_headers):
        resp = client.post("/api/tables", json={"table_number": "7"}, headers=cashier_headers)
        assert resp.status_code == 403
        assert resp.json["error"] == "Permission denied"

    def test_cashier_cannot_reset_table(self, client, cashier_headers, table):
        resp = client.post(f"/api/tables/{table.id}/reset", headers=cashier_headers)
        assert resp.status_code == 403

    def test_cashier_cannot_receive_stock(self, client, cashier_headers, products):
        resp = client.post(
            f"/api/products/{products['coffee'].id}/stock/receive",
            json={"quantity": 5},
            headers=cashier_headers,
        )
        assert resp.status_code == 403

    def test_manager_creates_table(self, client, manager_headers):
        resp = client.post(
            "/api/tables",
            json={"table_number": "7", "capacity": "6", "location": "Window"},
            headers=manager_headers,
        )
        assert resp.status_code == 201
        assert resp.json["table"]["capacity"] == 6
        assert resp.json["table"]["status"] == "available"

        resp = client.post("/api/tables", json={"table_number": "7"}, headers=manager_headers)
        assert resp.status_code == 400


# =============================================================================
# ORDERS
# =============================================================================


class TestOrders:
    def test_direct_order(self, client, cashier_headers, products):
        resp = client.post(
            "/api/orders",
            json={
                "items": [{"product_id": products["coffee"].id, "quantity": "2"}],
                "payment_method": "cash",
                "discount_cents": 100,
            },
            headers=cashier_headers,
        )
        assert resp.status_code == 201
        order = resp.json["order"]
        assert order["final_amount_cents"] == 500
        assert order["payment_status"] == "completed"
        assert order["cashier_name"] == "Cal Cashier"
        assert [p["amount_cents"] for p in order["payments"]] == [500]
        assert order["items"][0]["product_name"] == "Coffee"

        resp = client.get(f"/api/orders/{order['id']}", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.json["order"]["order_number"] == order["order_number"]

    def test_insufficient_stock_is_409(self, client, cashier_headers, products):
        resp = client.post(
            "/api/orders",
            json={"items": [{"product_id": products["cake"].id, "quantity": 6}], "payment_method": "cash"},
            headers=cashier_headers,
        )
        assert resp.status_code == 409
        assert resp.json["error"] == "insufficient_stock"
        assert resp.json["details"]["available"] == 5

        db.session.expire_all()
        assert products["cake"].stock_quantity == 5
        assert db.session.query(InventoryTransaction).filter_by(transaction_type="sale").count() == 0

    @pytest.mark.parametrize(
        "payload",
        [
            {"items": [], "payment_method": "cash"},
            {"items": [{"product_id": 1, "quantity": "2.5"}], "payment_method": "cash"},
            {"items": [{"product_id": 1, "quantity": 1}]},
            {"items": [{"product_id": 1, "quantity": 1}], "payment_method": "cash", "discount_cents": "1e3"},
        ],
    )
    def test_bad_payloads_are_400(self, client, cashier_headers, products, payload):
        resp = client.post("/api/orders", json=payload, headers=cashier_headers)
        assert resp.status_code == 400
        assert resp.json["error"] == "invalid_request"

    def test_unknown_order_is_404(self, client, cashier_headers):
        resp = client.get("/api/orders/999", headers=cashier_headers)
        assert resp.status_code == 404
        assert resp.json["error"] == "not_found"

    def test_refund_restocks_once(self, client, cashier_headers, products):
        coffee_id = products["coffee"].id
        resp = client.post(
            "/api/orders",
            json={"items": [{"product_id": coffee_id, "quantity": 3}], "payment_method": "card"},
            headers=cashier_headers,
        )
        order_id = resp.json["order"]["id"]

        resp = client.patch(f"/api/orders/{order_id}/status", json={"status": "refunded"}, headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.json["order"]["order_status"] == "refunded"

        resp = client.patch(f"/api/orders/{order_id}/status", json={"status": "active"}, headers=cashier_headers)
        assert resp.status_code == 409
        assert resp.json["error"] == "invalid_transition"

        resp = client.get(f"/api/products/{coffee_id}/stock", headers=cashier_headers)
        assert resp.json["product"]["stock_quantity"] == 20
        assert resp.json["reconciled"] is True
        assert sorted(t["quantity_delta"] for t in resp.json["transactions"]) == [-3, 3, 20]

    def test_list_orders_validates_date(self, client, cashier_headers, db_session):
        resp = client.get("/api/orders?date=yesterday", headers=cashier_headers)
        assert resp.status_code == 400

        resp = client.get("/api/orders?status=active&limit=5", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.json["orders"] == []


# =============================================================================
# TABLES
# =============================================================================


def _post_table_order(client, headers, table_id, product_id, quantity=1):
    resp = client.post(
        "/api/orders",
        json={"items": [{"product_id": product_id, "quantity": quantity}], "payment_method": "cash", "table_id": table_id},
        headers=headers,
    )
    assert resp.status_code == 201
    return resp.json["order"]


class TestTables:
    def test_table_payment_flow(self, client, cashier_headers, products, table):
        _post_table_order(client, cashier_headers, table.id, products["coffee"].id)
        _post_table_order(client, cashier_headers, table.id, products["cake"].id, 2)

        bill = client.get(f"/api/tables/{table.id}/bill", headers=cashier_headers).json
        assert bill["table"]["status"] == "occupied"
        assert bill["bill_summary"]["grand_total_cents"] == 1200

        resp = client.post(
            f"/api/tables/{table.id}/pay",
            json={"payment_method": "cash", "amount_paid_cents": 1000},
            headers=cashier_headers,
        )
        assert resp.status_code == 402
        assert resp.json["details"]["shortfall"] == 200

        resp = client.post(
            f"/api/tables/{table.id}/pay",
            json={"payment_method": "cash", "amount_paid_cents": "1200"},
            headers=cashier_headers,
        )
        assert resp.status_code == 200
        assert resp.json["orders_paid"] == 2
        assert resp.json["change_cents"] == 0

        table_resp = client.get(f"/api/tables/{table.id}", headers=cashier_headers)
        assert table_resp.json["table"]["status"] == "available"

        resp = client.post(
            f"/api/tables/{table.id}/pay",
            json={"payment_method": "cash", "amount_paid_cents": 100},
            headers=cashier_headers,
        )
        assert resp.status_code == 400
        assert resp.json["error"] == "no_open_orders"

        totals = client.get(f"/api/tables/{table.id}/totals", headers=cashier_headers).json
        assert totals["paid_cents"] == 1200

    def test_combine_and_settle_flow(self, client, cashier_headers, products, table):
        _post_table_order(client, cashier_headers, table.id, products["coffee"].id)
        _post_table_order(client, cashier_headers, table.id, products["sandwich"].id)

        resp = client.post(
            f"/api/tables/{table.id}/combine",
            json={"discount_type": "percentage", "discount_value": 10},
            headers=cashier_headers,
        )
        assert resp.status_code == 201
        combined = resp.json["combined_order"]
        assert resp.json["created"] is True
        assert combined["final_amount_cents"] == 990

        again = client.post(f"/api/tables/{table.id}/combine", headers=cashier_headers)
        assert again.status_code == 200
        assert again.json["combined_order"]["id"] == combined["id"]

        resp = client.post(
            f"/api/tables/{table.id}/pay",
            json={"payment_method": "cash", "amount_paid_cents": 1100},
            headers=cashier_headers,
        )
        assert resp.status_code == 409
        assert resp.json["error"] == "already_combined"

        resp = client.post(
            f"/api/orders/{combined['id']}/settle-combined",
            json={"payment_method": "card", "amount_paid_cents": 500},
            headers=cashier_headers,
        )
        assert resp.status_code == 402

        resp = client.post(
            f"/api/orders/{combined['id']}/settle-combined",
            json={"payment_method": "card", "amount_paid_cents": 1000},
            headers=cashier_headers,
        )
        assert resp.status_code == 200
        assert resp.json["orders_closed"] == 2
        assert resp.json["change_cents"] == 10

        db.session.expire_all()
        assert db.session.query(Payment).count() == 1

    def test_combine_empty_table(self, client, cashier_headers, table):
        resp = client.post(f"/api/tables/{table.id}/combine", headers=cashier_headers)
        assert resp.status_code == 400
        assert resp.json["error"] == "nothing_to_combine"

    def test_manager_resets_table(self, client, cashier_headers, manager_headers, products, table):
        _post_table_order(client, cashier_headers, table.id, products["coffee"].id)

        resp = client.post(f"/api/tables/{table.id}/reset", headers=manager_headers)
        assert resp.status_code == 200
        assert resp.json["orders_moved_to_total"] == 1
        assert resp.json["table"]["status"] == "available"


# =============================================================================
# UNPAID LEDGER
# =============================================================================


class TestUnpaid:
    def test_unpaid_flow(self, client, cashier_headers, products, table):
        order = _post_table_order(client, cashier_headers, table.id, products["sandwich"].id)

        resp = client.post(
            "/api/unpaid",
            json={"order_id": order["id"], "customer_name": "Ravi"},
            headers=cashier_headers,
        )
        assert resp.status_code == 201
        entry = resp.json["unpaid_order"]
        assert entry["total_amount_cents"] == 800
        assert entry["table_number"] == "1"

        resp = client.post(
            "/api/unpaid",
            json={"order_id": order["id"], "customer_name": "Ravi"},
            headers=cashier_headers,
        )
        assert resp.status_code == 409
        assert resp.json["error"] == "already_unpaid"

        listing = client.get("/api/unpaid?customer_name=rav", headers=cashier_headers).json
        assert [e["id"] for e in listing["unpaid_orders"]] == [entry["id"]]

        stats = client.get("/api/unpaid/stats", headers=cashier_headers).json
        assert stats["total_unpaid_amount_cents"] == 800

        resp = client.post(f"/api/unpaid/{entry['id']}/pay", json={"payment_method": "card"}, headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.json["amount_paid_cents"] == 800
        assert resp.json["order"]["payment_status"] == "completed"
        assert resp.json["table_released"] is True

        assert client.get(f"/api/unpaid/{entry['id']}", headers=cashier_headers).status_code == 404

    def test_remove_and_update(self, client, cashier_headers, products, table):
        order = _post_table_order(client, cashier_headers, table.id, products["coffee"].id)
        entry = client.post(
            "/api/unpaid",
            json={"order_id": order["id"], "customer_name": "Nora"},
            headers=cashier_headers,
        ).json["unpaid_order"]

        resp = client.patch(f"/api/unpaid/{entry['id']}", json={"customer_phone": "555-0100"}, headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.json["unpaid_order"]["customer_phone"] == "555-0100"

        resp = client.delete(f"/api/unpaid/{entry['id']}", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.json["order_id"] == order["id"]

        orders = client.get(f"/api/orders/table/{table.id}", headers=cashier_headers).json["orders"]
        assert [o["id"] for o in orders] == [order["id"]]
