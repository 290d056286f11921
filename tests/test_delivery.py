from decimal import Decimal

import pytest

from conftest import (
    auth_headers,
    fill_cart,
    make_address,
    make_product,
    make_user,
    sign,
)
from multimart.models import Delivery, Order, Product, UserRole, Wallet, WalletTransaction


def _d(value):
    return Decimal(str(value))


@pytest.fixture()
def shipped(harness_factory):
    """Paid order with 50.00 shipping and a delivery partner assigned before payment."""
    h = harness_factory(shipping_charge=Decimal("50.00"))
    db = h.session()
    admin = make_user(db, UserRole.admin)
    seller = make_user(db, UserRole.seller)
    partner = make_user(db, UserRole.deliveryPartner)
    buyer = make_user(db)
    address = make_address(db, buyer)
    fill_cart(db, buyer, make_product(db, seller, price="100.00", stock=5), 2)

    created = h.client.post(
        "/api/payments/create-order",
        json={"address_id": address.id},
        headers=auth_headers(h.settings, buyer),
    ).json()["data"]

    assigned = h.client.post(
        f"/api/admin/orders/{created['orderId']}/assign-delivery",
        json={"delivery_partner_id": partner.id},
        headers=auth_headers(h.settings, admin),
    )
    assert assigned.status_code == 200, assigned.json()

    gid = created["gatewayOrderId"]
    verified = h.client.post(
        "/api/payments/verify",
        json={
            "gateway_order_id": gid,
            "gateway_payment_id": "pay_ship",
            "gateway_signature": sign(gid, "pay_ship"),
        },
        headers=auth_headers(h.settings, buyer),
    )
    assert verified.status_code == 200, verified.json()

    yield {
        "h": h,
        "db": db,
        "admin": admin,
        "seller": seller,
        "partner": partner,
        "buyer": buyer,
        "order_id": created["orderId"],
        "delivery": assigned.json()["data"],
    }
    db.close()


def _advance(ctx, status, partner=None):
    h = ctx["h"]
    return h.client.patch(
        f"/api/delivery/{ctx['delivery']['id']}/status",
        json={"status": status},
        headers=auth_headers(h.settings, partner or ctx["partner"]),
    )


def test_assignment_sets_fee_from_shipping(shipped):
    assert shipped["delivery"]["status"] == "assigned"
    assert shipped["delivery"]["deliveryFee"] == "50.00"
    db = shipped["db"]
    db.expire_all()
    assert db.get(Order, shipped["order_id"]).delivery_partner_id == shipped["partner"].id


def test_payment_splits_shipping_from_seller_earnings(shipped):
    db = shipped["db"]
    db.expire_all()
    order = db.get(Order, shipped["order_id"])
    assert _d(order.final_amount) == Decimal("250.00")
    assert _d(order.platform_commission) == Decimal("20.00")
    assert _d(order.seller_earnings) == Decimal("180.00")

    partner_wallet = (
        db.query(Wallet)
        .filter(Wallet.user_id == shipped["partner"].id, Wallet.role == "deliveryPartner")
        .one()
    )
    assert _d(partner_wallet.balance) == Decimal("50.00")
    assert _d(partner_wallet.pending_amount) == Decimal("50.00")
    assert _d(partner_wallet.withdrawable_balance) == Decimal("0")


def test_delivered_releases_pending_fee_and_marks_order(shipped):
    for step in ("picked_up", "out_for_delivery", "delivered"):
        resp = _advance(shipped, step)
        assert resp.status_code == 200, resp.json()

    data = resp.json()["data"]
    assert data["status"] == "delivered"
    assert data["pickedUpAt"] is not None
    assert data["deliveredAt"] is not None

    db = shipped["db"]
    db.expire_all()
    assert db.get(Order, shipped["order_id"]).status.value == "delivered"

    wallet = db.query(Wallet).filter(Wallet.user_id == shipped["partner"].id).one()
    assert _d(wallet.pending_amount) == Decimal("0")
    assert _d(wallet.withdrawable_balance) == Decimal("50.00")
    assert _d(wallet.balance) == Decimal("50.00")
    assert _d(wallet.balance) == _d(wallet.withdrawable_balance) + _d(wallet.pending_amount)

    rows = (
        db.query(WalletTransaction)
        .filter(WalletTransaction.wallet_id == wallet.id)
        .order_by(WalletTransaction.id)
        .all()
    )
    assert [(r.type.value, r.category) for r in rows] == [
        ("pending", "delivery_fee"),
        ("received", "delivery_fee"),
    ]


def test_cannot_jump_straight_to_delivered(shipped):
    resp = _advance(shipped, "delivered")
    assert resp.status_code == 400


def test_other_partner_cannot_update(shipped):
    db = shipped["db"]
    other = make_user(db, UserRole.deliveryPartner)
    resp = _advance(shipped, "picked_up", partner=other)
    assert resp.status_code == 403


def test_partner_lists_assigned_deliveries(shipped):
    h = shipped["h"]
    resp = h.client.get("/api/delivery", headers=auth_headers(h.settings, shipped["partner"]))
    ids = [d["orderId"] for d in resp.json()["data"]]
    assert ids == [shipped["order_id"]]


def test_assigning_a_non_partner_is_rejected(shipped):
    h = shipped["h"]
    resp = h.client.post(
        f"/api/admin/orders/{shipped['order_id']}/assign-delivery",
        json={"delivery_partner_id": shipped["seller"].id},
        headers=auth_headers(h.settings, shipped["admin"]),
    )
    assert resp.status_code == 400


def test_assigning_a_delivered_order_is_rejected(shipped):
    for step in ("picked_up", "out_for_delivery", "delivered"):
        _advance(shipped, step)

    h = shipped["h"]
    resp = h.client.post(
        f"/api/admin/orders/{shipped['order_id']}/assign-delivery",
        json={"delivery_partner_id": shipped["partner"].id},
        headers=auth_headers(h.settings, shipped["admin"]),
    )
    assert resp.status_code == 400


def _partner_wallet(db, partner):
    db.expire_all()
    return (
        db.query(Wallet)
        .filter(Wallet.user_id == partner.id, Wallet.role == "deliveryPartner")
        .one()
    )


class TestCancelledOrders:
    def test_buyer_cancel_stops_the_delivery(self, shipped):
        h = shipped["h"]
        for step in ("picked_up", "out_for_delivery"):
            assert _advance(shipped, step).status_code == 200

        cancelled = h.client.post(
            f"/api/orders/{shipped['order_id']}/cancel",
            headers=auth_headers(h.settings, shipped["buyer"]),
        )
        delivered = _advance(shipped, "delivered")

        assert cancelled.status_code == 200
        assert delivered.status_code == 400
        db = shipped["db"]
        db.expire_all()
        assert db.get(Order, shipped["order_id"]).status.value == "cancelled"
        assert db.get(Delivery, shipped["delivery"]["id"]).status.value == "cancelled"
        assert db.query(Product).one().stock == 5
        wallet = _partner_wallet(db, shipped["partner"])
        assert _d(wallet.withdrawable_balance) == Decimal("0")

    def test_seller_cancel_stops_the_delivery(self, shipped):
        h = shipped["h"]

        resp = h.client.patch(
            f"/api/orders/{shipped['order_id']}/status",
            json={"status": "cancelled"},
            headers=auth_headers(h.settings, shipped["seller"]),
        )
        picked = _advance(shipped, "picked_up")

        assert resp.status_code == 200, resp.json()
        assert picked.status_code == 400
        db = shipped["db"]
        db.expire_all()
        delivery = db.get(Delivery, shipped["delivery"]["id"])
        assert delivery.status.value == "cancelled"
        assert delivery.cancellation_reason == "Order cancelled"


class TestReassignment:
    def test_reassigning_after_fee_credit_is_refused(self, shipped):
        h = shipped["h"]
        db = shipped["db"]
        other = make_user(db, UserRole.deliveryPartner)

        resp = h.client.post(
            f"/api/admin/orders/{shipped['order_id']}/assign-delivery",
            json={"delivery_partner_id": other.id},
            headers=auth_headers(h.settings, shipped["admin"]),
        )

        assert resp.status_code == 409
        db.expire_all()
        assert db.get(Order, shipped["order_id"]).delivery_partner_id == shipped["partner"].id
        assert db.get(Delivery, shipped["delivery"]["id"]).delivery_partner_id == shipped["partner"].id
        assert _d(_partner_wallet(db, shipped["partner"]).pending_amount) == Decimal("50.00")

    def test_reassigning_before_payment_sends_fee_to_new_partner(self, harness_factory):
        h = harness_factory(shipping_charge=Decimal("50.00"))
        db = h.session()
        admin_headers = auth_headers(h.settings, make_user(db, UserRole.admin))
        first = make_user(db, UserRole.deliveryPartner)
        second = make_user(db, UserRole.deliveryPartner)
        buyer = make_user(db)
        address = make_address(db, buyer)
        seller = make_user(db, UserRole.seller)
        fill_cart(db, buyer, make_product(db, seller, price="100.00", stock=5), 1)
        created = h.client.post(
            "/api/payments/create-order",
            json={"address_id": address.id},
            headers=auth_headers(h.settings, buyer),
        ).json()["data"]

        for partner in (first, second):
            resp = h.client.post(
                f"/api/admin/orders/{created['orderId']}/assign-delivery",
                json={"delivery_partner_id": partner.id},
                headers=admin_headers,
            )
            assert resp.status_code == 200, resp.json()

        gid = created["gatewayOrderId"]
        h.client.post(
            "/api/payments/verify",
            json={
                "gateway_order_id": gid,
                "gateway_payment_id": "pay_re",
                "gateway_signature": sign(gid, "pay_re"),
            },
            headers=auth_headers(h.settings, buyer),
        )

        assert _d(_partner_wallet(db, second).pending_amount) == Decimal("50.00")
        assert db.query(Wallet).filter(Wallet.user_id == first.id).count() == 0
        db.close()


def test_unknown_status_filter_is_a_bad_request(shipped):
    h = shipped["h"]
    resp = h.client.get(
        "/api/delivery?status=bogus", headers=auth_headers(h.settings, shipped["partner"])
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "Unknown delivery status: bogus"
