"""
Pytest fixtures for OMS backend tests.

Provides an app with an in-memory central database, temp-file SQLite tenant
stores, two tenants (one on the shared store, one on a dedicated store), a
scripted courier behind httpx.MockTransport, and small factories for
products and orders.
"""

from urllib.parse import parse_qs

import httpx
import pytest

from oms import create_app
from oms.extensions import db
from oms.services import auth_service, inventory_service, order_service, products_service
from oms.services.shipping_service import CourierEndpoints
from oms.services.store_router import get_router, get_store
from oms.services.tenant_service import context_for, upsert_tenant


class FakeCourier:
    """Scripted carrier: records requests and answers with the configured body."""

    def __init__(self):
        self.requests = []
        self.status = 200
        self.waybill = "WB1000001"
        self.body = None
        self.error = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.body is not None:
            return httpx.Response(200, text=self.body)
        return httpx.Response(200, json={"status": self.status, "waybill_no": self.waybill})

    def last_form(self) -> dict:
        body = self.requests[-1].content.decode()
        return {k: v[0] for k, v in parse_qs(body, keep_blank_values=True).items()}


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    """Cheapest bcrypt cost so hashing does not dominate the suite."""
    monkeypatch.setattr(auth_service, "BCRYPT_ROUNDS", 4)


@pytest.fixture
def courier():
    return FakeCourier()


@pytest.fixture
def endpoints():
    return CourierEndpoints(
        new_waybill_url="https://courier.test/new",
        existing_waybill_url="https://courier.test/existing",
    )


@pytest.fixture
def courier_client(courier):
    with httpx.Client(transport=httpx.MockTransport(courier)) as client:
        yield client


@pytest.fixture
def app(tmp_path, courier):
    """Application with fresh databases per test."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'TENANT_STORE_DEFAULT_URL': f"sqlite:///{tmp_path / 'shared_store.sqlite3'}",
        'COURIER_NEW_WAYBILL_URL': "https://courier.test/new",
        'COURIER_EXISTING_WAYBILL_URL': "https://courier.test/existing",
        'COURIER_TRANSPORT': httpx.MockTransport(courier),
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
        get_router().reset()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def tenant_a(app):
    """Tenant on the shared default store, with courier credentials."""
    return upsert_tenant({
        "id": "shop-a",
        "name": "Shop A",
        "primary_domain": "shop-a.example.com",
        "domains": [
            {"host": "a-alias.example.com", "type": "CNAME", "is_active": True},
            {"host": "a-pending.example.com", "type": "A", "is_active": False},
        ],
        "settings": {
            "courier_api_key": "key-a",
            "courier_client_id": "client-a",
            "delivery_fee_cents": 35000,
            "return_fee_cents": 15000,
        },
    })


@pytest.fixture
def tenant_b(app, tmp_path):
    """Tenant with a dedicated store."""
    return upsert_tenant({
        "id": "shop-b",
        "name": "Shop B",
        "primary_domain": "shop-b.example.com",
        "store_url": f"sqlite:///{tmp_path / 'shop_b.sqlite3'}",
    })


@pytest.fixture
def ctx_a(tenant_a):
    return context_for(tenant_a)


@pytest.fixture
def ctx_b(tenant_b):
    return context_for(tenant_b)


@pytest.fixture
def store_a(ctx_a):
    return get_store(ctx_a)


@pytest.fixture
def store_b(ctx_b):
    return get_store(ctx_b)


@pytest.fixture
def make_product(app):
    """
    make_product(ctx, sku, price_cents=..., batches=[(qty, unit_cost_cents, received_at)])
    -> product id
    """
    def _make(ctx, sku, *, price_cents=1000, batches=()):
        with get_store(ctx).session_scope() as session:
            product = products_service.upsert_product(
                session, ctx.tenant_id,
                {"sku": sku, "name": f"Product {sku}", "price_cents": price_cents},
            )
            for qty, cost, received_at in batches:
                inventory_service.add_batch(
                    session, ctx.tenant_id, product.id, qty, cost, received_at=received_at,
                )
            return product.id
    return _make


@pytest.fixture
def make_order(app):
    """make_order(ctx, [(product_id, qty), ...], **fields) -> PENDING order id"""
    def _make(ctx, lines, **fields):
        payload = {
            "customer_name": "Nimal Perera",
            "customer_phone": "077-123-4567",
            "customer_address": "12 Lake Road",
            "customer_city": "Colombo",
            "items": [{"product_id": pid, "quantity": qty} for pid, qty in lines],
        }
        payload.update(fields)
        with get_store(ctx).session_scope() as session:
            return order_service.upsert_order(session, ctx.tenant_id, payload).id
    return _make


@pytest.fixture
def batch_quantities(app):
    """batch_quantities(ctx, product_id) -> quantities in consumption order"""
    def _quantities(ctx, product_id):
        with get_store(ctx).session_scope() as session:
            product = inventory_service.get_product(session, ctx.tenant_id, product_id)
            return [b.quantity for b in inventory_service.ordered_batches(product)]
    return _quantities
