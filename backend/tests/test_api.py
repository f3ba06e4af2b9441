"""
HTTP API tests.

Roles arrive in X-User-Role from the upstream auth layer; the tenant comes
from X-Tenant-Id or the Host header.
"""

import pytest

from oms.models import ROLE_ADMIN, ROLE_DEV_ADMIN, ROLE_SUPER_ADMIN


def headers(role=ROLE_ADMIN, tenant="shop-a", user="Kamal"):
    h = {"X-User-Role": role, "X-User-Name": user}
    if tenant:
        h["X-Tenant-Id"] = tenant
    return h


@pytest.fixture
def stocked_product(client, tenant_a):
    resp = client.post(
        "/api/products",
        json={"sku": "TEE-1", "name": "Cotton Tee", "price_cents": 2500},
        headers=headers(),
    )
    assert resp.status_code == 201
    pid = resp.get_json()["id"]

    resp = client.post(
        f"/api/products/{pid}/batches",
        json={"quantity": 5, "unit_cost_cents": 1000, "received_at": "2024-01-01T00:00:00Z"},
        headers=headers(),
    )
    assert resp.status_code == 201
    return pid


def create_order(client, product_id, quantity=2, **fields):
    order = {
        "customer_name": "Nimal Perera",
        "customer_phone": "0771234567",
        "customer_address": "12 Lake Road",
        "customer_city": "Colombo",
        "items": [{"product_id": product_id, "quantity": quantity}],
    }
    order.update(fields)
    resp = client.post("/api/orders", json={"order": order}, headers=headers())
    assert resp.status_code == 200
    return resp.get_json()


class TestSystem:

    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "connected"

    def test_store_health_lists_open_handles(self, client, store_a):
        body = client.get("/api/health/stores").get_json()
        assert body["count"] == 1

    def test_cors_for_known_origin(self, client):
        resp = client.get("/api/health", headers={"Origin": "http://localhost:5173"})
        assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"

        resp = client.get("/api/health", headers={"Origin": "https://evil.example"})
        assert "Access-Control-Allow-Origin" not in resp.headers


class TestAccess:

    def test_unknown_tenant_is_404(self, client, tenant_a):
        resp = client.get("/api/products", headers=headers(tenant=None))
        assert resp.status_code == 404

    def test_tenant_from_host(self, client, tenant_a):
        resp = client.get(
            "/api/products",
            headers=headers(tenant=None),
            base_url="http://www.shop-a.example.com:8080",
        )
        assert resp.status_code == 200

    def test_missing_role_is_401(self, client, tenant_a):
        resp = client.get("/api/products", headers={"X-Tenant-Id": "shop-a"})
        assert resp.status_code == 401

    def test_admin_cannot_read_finance(self, client, tenant_a):
        resp = client.get("/api/finance/report", headers=headers(role=ROLE_ADMIN))
        assert resp.status_code == 403
        assert set(resp.get_json()["required_roles"]) == {ROLE_DEV_ADMIN, ROLE_SUPER_ADMIN}

    def test_admin_cannot_purge(self, client, tenant_a):
        resp = client.delete("/api/orders?purge=true", headers=headers(role=ROLE_ADMIN))
        assert resp.status_code == 403
        assert resp.get_json() == {
            "error": "Permission denied",
            "required_roles": [ROLE_DEV_ADMIN, ROLE_SUPER_ADMIN],
        }


class TestAuthRoutes:

    def test_login(self, client, tenant_a):
        from oms.services import auth_service
        auth_service.create_user("shop-a", "kamal", "Str0ng!Pass")

        resp = client.post("/api/auth/login", json={"username": "kamal", "password": "Str0ng!Pass"})
        assert resp.status_code == 200
        assert resp.get_json()["user"]["tenant_name"] == "Shop A"

        resp = client.post("/api/auth/login", json={"username": "kamal", "password": "nope"})
        assert resp.status_code == 401

        resp = client.post("/api/auth/login", json={"username": "kamal"})
        assert resp.status_code == 400


class TestProductRoutes:

    def test_validation_error_is_400(self, client, tenant_a):
        resp = client.post("/api/products", json={"name": "No SKU"}, headers=headers())
        assert resp.status_code == 400
        assert "sku" in resp.get_json()["error"]

    def test_duplicate_sku_is_409(self, client, stocked_product):
        resp = client.post("/api/products", json={"sku": "TEE-1", "name": "Again"}, headers=headers())
        assert resp.status_code == 409

    def test_update_unknown_is_404(self, client, tenant_a):
        resp = client.put("/api/products/p-missing", json={"name": "X"}, headers=headers())
        assert resp.status_code == 404

    def test_list_and_soft_delete(self, client, stocked_product):
        listing = client.get("/api/products", headers=headers()).get_json()
        assert [(p["id"], p["stock"]) for p in listing] == [(stocked_product, 5)]

        assert client.delete(f"/api/products/{stocked_product}", headers=headers()).status_code == 200

        assert client.get("/api/products", headers=headers()).get_json() == []
        hidden = client.get("/api/products?include_inactive=true", headers=headers()).get_json()
        assert hidden[0]["batches"][0]["quantity"] == 5

    def test_bad_receipt_is_400(self, client, stocked_product):
        resp = client.post(
            f"/api/products/{stocked_product}/batches",
            json={"quantity": 0, "unit_cost_cents": 10},
            headers=headers(),
        )
        assert resp.status_code == 400


class TestOrderFlow:

    def test_create_confirm_ship_deliver(self, client, stocked_product, courier):
        order = create_order(client, stocked_product, quantity=2)
        assert order["status"] == "PENDING"
        assert order["total_amount_cents"] == 5000
        oid = order["id"]

        resp = client.post(f"/api/orders/{oid}/confirm", headers=headers())
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "CONFIRMED"

        courier.waybill = "WB-API-1"
        resp = client.post(f"/api/orders/{oid}/ship", headers=headers())
        assert resp.status_code == 200
        shipped = resp.get_json()
        assert shipped["tracking_number"] == "WB-API-1"
        assert courier.last_form()["api_key"] == "key-a"

        resp = client.post(f"/api/orders/{oid}/deliver", headers=headers())
        assert resp.get_json()["status"] == "DELIVERED"
        assert [log["message"] for log in resp.get_json()["logs"]] == [
            "Order Created", "Order Confirmed", "Shipped (Waybill: WB-API-1)", "Marked as Delivered",
        ]
        assert resp.get_json()["logs"][-1]["user"] == "Kamal"

        stock = client.get("/api/products", headers=headers()).get_json()[0]["stock"]
        assert stock == 3

    def test_insufficient_stock_body(self, client, stocked_product):
        oid = create_order(client, stocked_product, quantity=10)["id"]

        resp = client.post(f"/api/orders/{oid}/confirm", headers=headers())

        assert resp.status_code == 409
        body = resp.get_json()
        assert body["product_id"] == stocked_product
        assert body["requested"] == 10
        assert body["available"] == 5
        assert client.get(f"/api/orders/{oid}", headers=headers()).get_json()["status"] == "PENDING"

    def test_invalid_transition_is_409(self, client, stocked_product):
        oid = create_order(client, stocked_product)["id"]
        resp = client.post(f"/api/orders/{oid}/deliver", headers=headers())
        assert resp.status_code == 409

    def test_courier_refusal_is_502(self, client, stocked_product, courier):
        oid = create_order(client, stocked_product)["id"]
        client.post(f"/api/orders/{oid}/confirm", headers=headers())
        courier.status = 214

        resp = client.post(f"/api/orders/{oid}/ship", headers=headers())

        assert resp.status_code == 502
        assert resp.get_json() == {"error": "Courier Maintenance Mode", "courier_code": 214}

    def test_unknown_action_is_404(self, client, stocked_product):
        oid = create_order(client, stocked_product)["id"]
        assert client.post(f"/api/orders/{oid}/teleport", headers=headers()).status_code == 404

    def test_scan_return_and_return_status(self, client, stocked_product, courier):
        first = create_order(client, stocked_product)["id"]
        second = create_order(client, stocked_product)["id"]
        for oid, waybill in ((first, "WB-R1"), (second, "WB-R2")):
            client.post(f"/api/orders/{oid}/confirm", headers=headers())
            courier.waybill = waybill
            client.post(f"/api/orders/{oid}/ship", headers=headers())

        resp = client.post("/api/orders/scan-return", json={"trackingOrId": "wb-r1"}, headers=headers())
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "RETURN_COMPLETED"

        resp = client.post(
            f"/api/orders/{second}/return-status", json={"status": "RETURNED"}, headers=headers(),
        )
        assert resp.get_json()["status"] == "RETURNED"

        resp = client.post(
            f"/api/orders/{second}/return-status", json={"status": "DELIVERED"}, headers=headers(),
        )
        assert resp.status_code == 400

    def test_bulk_upsert(self, client, stocked_product):
        resp = client.post("/api/orders", json={"orders": [
            {"id": "ord-1", "customer_name": "A", "customer_phone": "0711111111"},
            {"id": "ord-2", "customer_phone": "0722222222"},
        ]}, headers=headers())

        body = resp.get_json()
        assert body["ok"] is False
        assert [r["ok"] for r in body["results"]] == [True, False]

    def test_listing_and_history(self, client, stocked_product):
        create_order(client, stocked_product, customer_phone="077 123 4567")

        listing = client.get("/api/orders?status=PENDING&limit=10", headers=headers()).get_json()
        assert listing["total"] == 1
        assert listing["limit"] == 10

        history = client.get(
            "/api/orders/customer-history?phone=0771234567", headers=headers(),
        ).get_json()
        assert history == {"order_count": 1, "return_count": 0}

        assert client.get("/api/orders?status=NOPE", headers=headers()).status_code == 400

    def test_delete_and_purge(self, client, stocked_product):
        first = create_order(client, stocked_product)["id"]
        create_order(client, stocked_product)

        assert client.delete("/api/orders", headers=headers()).status_code == 400

        resp = client.delete(f"/api/orders?id={first}", headers=headers())
        assert resp.get_json() == {"ok": True, "count": 1}

        resp = client.delete("/api/orders?purge=true", headers=headers(role=ROLE_SUPER_ADMIN))
        assert resp.get_json() == {"ok": True, "count": 1}

    def test_stock_history(self, client, stocked_product):
        oid = create_order(client, stocked_product, quantity=2)["id"]
        client.post(f"/api/orders/{oid}/confirm", headers=headers())

        history = client.get("/api/products/history", headers=headers()).get_json()
        assert sorted((m["type"], m["quantity"]) for m in history) == [("IN", 5), ("OUT", 2)]


class TestFinance:

    def test_report(self, client, stocked_product):
        oid = create_order(client, stocked_product, quantity=2)["id"]
        for action in ("confirm", "ship", "deliver"):
            client.post(f"/api/orders/{oid}/{action}", headers=headers())

        resp = client.get(
            "/api/finance/report?delivery_fee_cents=500&worker_count=2",
            headers=headers(role=ROLE_SUPER_ADMIN),
        )

        assert resp.status_code == 200
        report = resp.get_json()
        assert report["gross_revenue_cents"] == 5000
        assert report["total_cogs_cents"] == 2000
        assert report["net_profit_cents"] == 2500
        assert report["per_worker_profit_cents"] == 625
        assert report["rates"]["return_fee_cents"] == 15000

    def test_bad_rate_is_400(self, client, tenant_a):
        resp = client.get(
            "/api/finance/report?worker_count=two", headers=headers(role=ROLE_SUPER_ADMIN),
        )
        assert resp.status_code == 400


class TestCourierWebhook:

    def _shipped(self, client, product_id, courier, waybill):
        oid = create_order(client, product_id)["id"]
        client.post(f"/api/orders/{oid}/confirm", headers=headers())
        courier.waybill = waybill
        client.post(f"/api/orders/{oid}/ship", headers=headers())
        return oid

    def test_json_update(self, client, stocked_product, courier):
        oid = self._shipped(client, stocked_product, courier, "WB-HOOK-1")

        resp = client.post(
            "/api/courier/webhook",
            json={"waybill_id": "WB-HOOK-1", "delivery_status": "Delivered"},
        )

        assert resp.status_code == 200
        assert resp.get_data(as_text=True) == "Success"
        order = client.get(f"/api/orders/{oid}", headers=headers()).get_json()
        assert order["status"] == "DELIVERED"
        assert order["courier_status"] == "Delivered"

    def test_form_update(self, client, stocked_product, courier):
        oid = self._shipped(client, stocked_product, courier, "WB-HOOK-2")

        resp = client.post(
            "/api/courier/webhook",
            data={"waybillId": "WB-HOOK-2", "current_status": "Returned to sender"},
        )

        assert resp.get_data(as_text=True) == "Success"
        order = client.get(f"/api/orders/{oid}", headers=headers()).get_json()
        assert order["status"] == "RETURNED"

    def test_return_handover_on_shipped_order(self, client, stocked_product, courier):
        oid = self._shipped(client, stocked_product, courier, "WB-HOOK-4")

        resp = client.post(
            "/api/courier/webhook",
            json={"waybill_id": "WB-HOOK-4", "delivery_status": "Return Handover"},
        )

        assert resp.get_data(as_text=True) == "Success"
        order = client.get(f"/api/orders/{oid}", headers=headers()).get_json()
        assert order["status"] == "RETURN_HANDOVER"

    def test_json_sent_as_form_key(self, client, stocked_product, courier):
        oid = self._shipped(client, stocked_product, courier, "WB-HOOK-3")

        resp = client.post(
            "/api/courier/webhook",
            data='{"waybill_id": "WB-HOOK-3", "status": "delivered"}',
            content_type="application/x-www-form-urlencoded",
        )

        assert resp.get_data(as_text=True) == "Success"
        assert client.get(f"/api/orders/{oid}", headers=headers()).get_json()["status"] == "DELIVERED"

    def test_unknown_waybill_still_200(self, client, tenant_a, tenant_b):
        resp = client.post("/api/courier/webhook", json={"waybill_id": "WB-NOWHERE", "status": "Delivered"})
        assert resp.status_code == 200
        assert resp.get_data(as_text=True) == "Waybill Processed (Not in Registry)"

    def test_missing_waybill(self, client, tenant_a):
        resp = client.post("/api/courier/webhook", json={"status": "Delivered"})
        assert resp.status_code == 400


class TestTenantRoutes:

    def test_resolve_hides_courier_credentials(self, client, tenant_a):
        resp = client.get("/api/tenants/resolve?host=a-alias.example.com")

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["id"] == "shop-a"
        assert "courier_api_key" not in body["settings"]
        assert "courier_client_id" not in body["settings"]

    def test_resolve_unknown_host(self, client, tenant_a):
        assert client.get("/api/tenants/resolve?host=nobody.example.org").status_code == 404

    def test_operator_registry(self, client, tenant_a):
        resp = client.post("/api/tenants", json={
            "tenant": {"id": "shop-c", "name": "Shop C", "primary_domain": "shop-c.example.com"},
            "adminUser": {"username": "owner-c", "password": "Str0ng!Pass"},
        }, headers=headers(role=ROLE_DEV_ADMIN, tenant=None))
        assert resp.status_code == 200

        listing = client.get("/api/tenants", headers=headers(role=ROLE_DEV_ADMIN, tenant=None)).get_json()
        assert {t["id"] for t in listing} == {"shop-a", "shop-c"}

        resp = client.delete("/api/tenants/shop-c", headers=headers(role=ROLE_DEV_ADMIN, tenant=None))
        assert resp.get_json()["is_active"] is False

    def test_registry_is_operator_only(self, client, tenant_a):
        resp = client.get("/api/tenants", headers=headers(role=ROLE_SUPER_ADMIN))
        assert resp.status_code == 403

    def test_team_management(self, client, tenant_a):
        owner = headers(role=ROLE_SUPER_ADMIN)

        resp = client.post("/api/users", json={
            "username": "sunil", "password": "Str0ng!Pass", "permissions": ["orders"],
        }, headers=owner)
        assert resp.status_code == 201
        user_id = resp.get_json()["id"]

        resp = client.post("/api/users", json={
            "username": "boss", "password": "Str0ng!Pass", "role": ROLE_SUPER_ADMIN,
        }, headers=owner)
        assert resp.status_code == 403

        resp = client.post("/api/users", json={
            "username": "sunil", "password": "Str0ng!Pass",
        }, headers=owner)
        assert resp.status_code == 409

        assert [u["username"] for u in client.get("/api/users", headers=owner).get_json()] == ["sunil"]
        assert client.delete(f"/api/users/{user_id}", headers=owner).status_code == 200
        assert client.get("/api/users", headers=owner).get_json() == []

    def test_team_is_owner_only(self, client, tenant_a):
        assert client.get("/api/users", headers=headers(role=ROLE_ADMIN)).status_code == 403
