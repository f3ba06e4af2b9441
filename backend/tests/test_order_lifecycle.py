"""
Order lifecycle tests.

Every status move must follow the transition table, and the ledger side
effects (deduct on confirm, restock on return completion) must run exactly
once and atomically with the status change.
"""

from datetime import datetime

import httpx
import pytest

from oms.errors import (
    CourierError,
    InsufficientStock,
    InvalidTransition,
    NotFound,
    TransportError,
    ValidationError,
)
from oms.models import OrderStatus
from oms.services import lifecycle_service, order_service
from oms.services.lifecycle_service import TRANSITIONS, can_transition

T0 = datetime(2024, 3, 1, 8, 0, 0)
T1 = datetime(2024, 3, 2, 8, 0, 0)


def status_of(store, ctx, order_id):
    with store.session_scope() as session:
        return order_service.get_order(session, ctx.tenant_id, order_id).status


@pytest.fixture
def stocked(ctx_a, make_product):
    """Product with 5 units @100 then 5 units @120."""
    return make_product(ctx_a, "TEE-1", price_cents=2500, batches=[(5, 100, T0), (5, 120, T1)])


def _confirm(store, ctx, order_id):
    with store.session_scope() as session:
        return lifecycle_service.confirm_order(session, ctx.tenant_id, order_id, actor="Kamal")


def _ship(store, ctx, order_id, client, endpoints):
    with store.session_scope() as session:
        return lifecycle_service.ship_order(
            session, ctx, order_id, client=client, endpoints=endpoints, actor="Kamal",
        )


class TestTransitionTable:

    def test_every_status_has_an_entry(self):
        assert set(TRANSITIONS) == set(OrderStatus)

    @pytest.mark.parametrize("source,target,allowed", [
        ("PENDING", "CONFIRMED", True),
        ("PENDING", "SHIPPED", False),
        ("CONFIRMED", "SHIPPED", True),
        ("CONFIRMED", "RETURN_COMPLETED", True),
        ("SHIPPED", "DELIVERED", True),
        ("SHIPPED", "RETURN_HANDOVER", True),
        ("SHIPPED", "RETURN_AS_ON_SYSTEM", True),
        ("RETURNED", "RETURN_HANDOVER", True),
        ("RETURN_HANDOVER", "RETURNED", False),
        ("DELIVERED", "RETURNED", False),
        ("CANCELLED", "PENDING", False),
        ("PENDING", "BOGUS", False),
    ])
    def test_can_transition(self, source, target, allowed):
        assert can_transition(source, target) is allowed


class TestConfirm:

    def test_confirm_deducts_fifo_and_logs(
        self, ctx_a, store_a, stocked, make_order, batch_quantities
    ):
        oid = make_order(ctx_a, [(stocked, 7)])

        order = _confirm(store_a, ctx_a, oid)

        assert order.status == "CONFIRMED"
        assert order.confirmed_at is not None
        assert order.stock_deducted_at is not None
        assert order.logs[-1].message == "Order Confirmed"
        assert order.logs[-1].actor == "Kamal"
        assert batch_quantities(ctx_a, stocked) == [0, 3]

    def test_insufficient_stock_leaves_order_pending(
        self, ctx_a, store_a, stocked, make_product, make_order, batch_quantities
    ):
        scarce = make_product(ctx_a, "CAP-1", batches=[(1, 50, T0)])
        oid = make_order(ctx_a, [(stocked, 2), (scarce, 3)])

        with pytest.raises(InsufficientStock):
            _confirm(store_a, ctx_a, oid)

        assert status_of(store_a, ctx_a, oid) == "PENDING"
        assert batch_quantities(ctx_a, stocked) == [5, 5]
        assert batch_quantities(ctx_a, scarce) == [1]

    def test_confirm_twice_is_invalid_and_deducts_once(
        self, ctx_a, store_a, stocked, make_order, batch_quantities
    ):
        oid = make_order(ctx_a, [(stocked, 2)])
        _confirm(store_a, ctx_a, oid)

        with pytest.raises(InvalidTransition) as exc:
            _confirm(store_a, ctx_a, oid)

        assert exc.value.current == "CONFIRMED"
        assert batch_quantities(ctx_a, stocked) == [3, 5]

    def test_order_without_lines_cannot_be_confirmed(self, ctx_a, store_a, make_order):
        oid = make_order(ctx_a, [])

        with pytest.raises(ValidationError):
            _confirm(store_a, ctx_a, oid)

    def test_unknown_order(self, ctx_a, store_a):
        with pytest.raises(NotFound):
            _confirm(store_a, ctx_a, "o-missing")


class TestShip:

    def test_ship_records_waybill(
        self, ctx_a, store_a, stocked, make_order, courier, courier_client, endpoints
    ):
        oid = make_order(ctx_a, [(stocked, 1)])
        _confirm(store_a, ctx_a, oid)
        courier.waybill = "WB777"

        order = _ship(store_a, ctx_a, oid, courier_client, endpoints)

        assert order.status == "SHIPPED"
        assert order.tracking_number == "WB777"
        assert order.shipped_at is not None
        assert order.logs[-1].message == "Shipped (Waybill: WB777)"
        assert len(courier.requests) == 1
        assert str(courier.requests[0].url) == "https://courier.test/new"

    def test_courier_refusal_keeps_order_confirmed(
        self, ctx_a, store_a, stocked, make_order, courier, courier_client, endpoints
    ):
        oid = make_order(ctx_a, [(stocked, 1)])
        _confirm(store_a, ctx_a, oid)
        courier.status = 211

        with pytest.raises(CourierError) as exc:
            _ship(store_a, ctx_a, oid, courier_client, endpoints)

        assert exc.value.code == 211
        assert "Invalid API Key" in exc.value.message
        assert status_of(store_a, ctx_a, oid) == "CONFIRMED"

    def test_unreachable_courier_keeps_order_confirmed(
        self, ctx_a, store_a, stocked, make_order, courier, courier_client, endpoints
    ):
        oid = make_order(ctx_a, [(stocked, 1)])
        _confirm(store_a, ctx_a, oid)
        courier.error = httpx.ConnectError("connection refused")

        with pytest.raises(TransportError):
            _ship(store_a, ctx_a, oid, courier_client, endpoints)

        assert status_of(store_a, ctx_a, oid) == "CONFIRMED"

    def test_pending_order_is_not_sent_to_courier(
        self, ctx_a, store_a, stocked, make_order, courier, courier_client, endpoints
    ):
        oid = make_order(ctx_a, [(stocked, 1)])

        with pytest.raises(InvalidTransition):
            _ship(store_a, ctx_a, oid, courier_client, endpoints)

        assert courier.requests == []


class TestSimpleMoves:

    def test_deliver_after_ship(
        self, ctx_a, store_a, stocked, make_order, courier_client, endpoints
    ):
        oid = make_order(ctx_a, [(stocked, 1)])
        _confirm(store_a, ctx_a, oid)
        _ship(store_a, ctx_a, oid, courier_client, endpoints)

        with store_a.session_scope() as session:
            order = lifecycle_service.mark_delivered(session, ctx_a.tenant_id, oid)

        assert order.status == "DELIVERED"
        assert order.delivered_at is not None

    def test_deliver_from_pending_is_invalid(self, ctx_a, store_a, stocked, make_order):
        oid = make_order(ctx_a, [(stocked, 1)])

        with store_a.session_scope() as session:
            with pytest.raises(InvalidTransition):
                lifecycle_service.mark_delivered(session, ctx_a.tenant_id, oid)

    def test_reject_and_cancel_only_from_pending(
        self, ctx_a, store_a, stocked, make_order, batch_quantities
    ):
        rejected = make_order(ctx_a, [(stocked, 1)])
        cancelled = make_order(ctx_a, [(stocked, 1)])
        confirmed = make_order(ctx_a, [(stocked, 1)])
        _confirm(store_a, ctx_a, confirmed)

        with store_a.session_scope() as session:
            lifecycle_service.reject_order(session, ctx_a.tenant_id, rejected)
            lifecycle_service.cancel_order(session, ctx_a.tenant_id, cancelled)

        with store_a.session_scope() as session:
            with pytest.raises(InvalidTransition):
                lifecycle_service.cancel_order(session, ctx_a.tenant_id, confirmed)

        assert status_of(store_a, ctx_a, rejected) == "REJECTED"
        assert status_of(store_a, ctx_a, cancelled) == "CANCELLED"
        # Only the confirmed order took stock
        assert batch_quantities(ctx_a, stocked) == [4, 5]


class TestReturns:

    def _shipped(self, ctx, store, product_id, make_order, client, endpoints, qty=2):
        oid = make_order(ctx, [(product_id, qty)])
        _confirm(store, ctx, oid)
        _ship(store, ctx, oid, client, endpoints)
        return oid

    def test_scan_restocks_once(
        self, ctx_a, store_a, stocked, make_order, courier, courier_client, endpoints, batch_quantities
    ):
        courier.waybill = "WB-RET-1"
        oid = self._shipped(ctx_a, store_a, stocked, make_order, courier_client, endpoints)

        with store_a.session_scope() as session:
            order = lifecycle_service.scan_return(session, ctx_a.tenant_id, "wb-ret-1")
            assert order.id == oid
            assert order.status == "RETURN_COMPLETED"
            assert order.logs[-1].message == "Return Scanned & Restocked"

        with store_a.session_scope() as session:
            again = lifecycle_service.scan_return(session, ctx_a.tenant_id, oid)
            assert again.status == "RETURN_COMPLETED"

        quantities = batch_quantities(ctx_a, stocked)
        # 5/5 minus 2, plus exactly one return batch of 2
        assert sorted(quantities[:2]) == [3, 5]
        assert len(quantities) == 3
        assert quantities[2] == 2

    def test_scan_of_confirmed_order_restocks(
        self, ctx_a, store_a, stocked, make_order, batch_quantities
    ):
        oid = make_order(ctx_a, [(stocked, 4)])
        _confirm(store_a, ctx_a, oid)

        with store_a.session_scope() as session:
            lifecycle_service.scan_return(session, ctx_a.tenant_id, oid)

        assert sum(batch_quantities(ctx_a, stocked)) == 10

    def test_scan_of_pending_order_is_invalid(self, ctx_a, store_a, stocked, make_order):
        oid = make_order(ctx_a, [(stocked, 1)])

        with store_a.session_scope() as session:
            with pytest.raises(InvalidTransition):
                lifecycle_service.scan_return(session, ctx_a.tenant_id, oid)

    def test_scan_of_delivered_order_is_invalid(
        self, ctx_a, store_a, stocked, make_order, courier_client, endpoints, batch_quantities
    ):
        oid = self._shipped(ctx_a, store_a, stocked, make_order, courier_client, endpoints)
        with store_a.session_scope() as session:
            lifecycle_service.mark_delivered(session, ctx_a.tenant_id, oid)

        with store_a.session_scope() as session:
            with pytest.raises(InvalidTransition) as exc:
                lifecycle_service.scan_return(session, ctx_a.tenant_id, oid)

        assert exc.value.current == "DELIVERED"
        assert "already closed" in exc.value.message
        assert sum(batch_quantities(ctx_a, stocked)) == 8

    def test_scan_unknown_key(self, ctx_a, store_a):
        with store_a.session_scope() as session:
            with pytest.raises(NotFound):
                lifecycle_service.scan_return(session, ctx_a.tenant_id, "nothing-here")

    def test_advance_through_return_states(
        self, ctx_a, store_a, stocked, make_order, courier_client, endpoints, batch_quantities
    ):
        oid = self._shipped(ctx_a, store_a, stocked, make_order, courier_client, endpoints)

        for target in ("RETURNED", "RETURN_TRANSFER", "RETURN_HANDOVER"):
            with store_a.session_scope() as session:
                lifecycle_service.advance_return(session, ctx_a.tenant_id, oid, target)
            assert status_of(store_a, ctx_a, oid) == target
            # No restock before completion
            assert sum(batch_quantities(ctx_a, stocked)) == 8

        with store_a.session_scope() as session:
            order = lifecycle_service.advance_return(
                session, ctx_a.tenant_id, oid, "return_completed",
            )
            assert order.return_completed_at is not None
            assert order.logs[-1].message == "Status changed to Return Completed"

        assert sum(batch_quantities(ctx_a, stocked)) == 10

    def test_advance_rejects_non_return_target(self, ctx_a, store_a, stocked, make_order):
        oid = make_order(ctx_a, [(stocked, 1)])

        with store_a.session_scope() as session:
            with pytest.raises(ValidationError):
                lifecycle_service.advance_return(session, ctx_a.tenant_id, oid, "DELIVERED")

    def test_advance_backwards_is_invalid(
        self, ctx_a, store_a, stocked, make_order, courier_client, endpoints
    ):
        oid = self._shipped(ctx_a, store_a, stocked, make_order, courier_client, endpoints)
        with store_a.session_scope() as session:
            lifecycle_service.advance_return(session, ctx_a.tenant_id, oid, "RETURN_HANDOVER")

        with store_a.session_scope() as session:
            with pytest.raises(InvalidTransition):
                lifecycle_service.advance_return(session, ctx_a.tenant_id, oid, "RETURNED")


class TestCourierUpdates:

    def _shipped(self, ctx, store, product_id, make_order, client, endpoints):
        oid = make_order(ctx, [(product_id, 1)])
        _confirm(store, ctx, oid)
        _ship(store, ctx, oid, client, endpoints)
        return oid

    def test_delivered_update_moves_order(
        self, ctx_a, store_a, stocked, make_order, courier, courier_client, endpoints
    ):
        courier.waybill = "WB-500"
        oid = self._shipped(ctx_a, store_a, stocked, make_order, courier_client, endpoints)

        with store_a.session_scope() as session:
            order = lifecycle_service.apply_courier_update(
                session, ctx_a.tenant_id, "wb-500", "Delivered to customer",
            )
            assert order.id == oid
            assert order.status == "DELIVERED"
            assert order.courier_status == "Delivered to customer"
            assert order.logs[-1].actor == "Courier"

    def test_unmapped_status_only_records_text(
        self, ctx_a, store_a, stocked, make_order, courier, courier_client, endpoints
    ):
        courier.waybill = "WB-501"
        oid = self._shipped(ctx_a, store_a, stocked, make_order, courier_client, endpoints)

        with store_a.session_scope() as session:
            lifecycle_service.apply_courier_update(session, ctx_a.tenant_id, "WB-501", "In transit")

        with store_a.session_scope() as session:
            order = order_service.get_order(session, ctx_a.tenant_id, oid)
            assert order.status == "SHIPPED"
            assert order.courier_status == "In transit"

    def test_return_handover_on_shipped_parcel(
        self, ctx_a, store_a, stocked, make_order, courier, courier_client, endpoints,
        batch_quantities,
    ):
        courier.waybill = "WB-503"
        oid = self._shipped(ctx_a, store_a, stocked, make_order, courier_client, endpoints)

        with store_a.session_scope() as session:
            order = lifecycle_service.apply_courier_update(
                session, ctx_a.tenant_id, "WB-503", "Return Handover",
            )
            assert order.id == oid
            assert order.status == "RETURN_HANDOVER"
            assert order.logs[-1].message == "Courier update: Return Handover"

        # Stock comes back only when the return completes
        assert sum(batch_quantities(ctx_a, stocked)) == 9

    def test_illegal_move_is_ignored(
        self, ctx_a, store_a, stocked, make_order, courier, courier_client, endpoints
    ):
        courier.waybill = "WB-502"
        oid = self._shipped(ctx_a, store_a, stocked, make_order, courier_client, endpoints)
        with store_a.session_scope() as session:
            lifecycle_service.mark_delivered(session, ctx_a.tenant_id, oid)

        with store_a.session_scope() as session:
            order = lifecycle_service.apply_courier_update(
                session, ctx_a.tenant_id, "WB-502", "Returned to sender",
            )
            assert order.status == "DELIVERED"
            assert order.logs[-1].message == "Courier update ignored: Returned to sender"

    def test_unknown_waybill(self, ctx_a, store_a):
        with store_a.session_scope() as session:
            with pytest.raises(NotFound):
                lifecycle_service.apply_courier_update(session, ctx_a.tenant_id, "WB-0", "Delivered")
