from decimal import Decimal

from sqlalchemy import update

from conftest import (
    auth_headers,
    fill_cart,
    make_address,
    make_product,
    make_user,
    make_variant,
)
from multimart.models import CartItem, Order, OrderItem, Product, ProductVariant, UserRole
from multimart.services import orders as order_service


def _checkout(client, settings, user, address, notes=None):
    return client.post(
        "/api/orders",
        json={"address_id": address.id, "notes": notes},
        headers=auth_headers(settings, user),
    )


class TestCreateOrderFromCart:
    def test_two_units_at_100_gives_200_and_leaves_three_in_stock(self, client, settings, db):
        seller = make_user(db, UserRole.seller)
        buyer = make_user(db)
        address = make_address(db, buyer)
        product = make_product(db, seller, price="100.00", stock=5)
        fill_cart(db, buyer, product, 2)

        resp = _checkout(client, settings, buyer, address, notes="leave at door")

        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        data = body["data"]
        assert data["totalAmount"] == "200.00"
        assert data["finalAmount"] == "200.00"
        assert data["shippingCharges"] == "0.00"
        assert data["status"] == "pending"
        assert data["paymentStatus"] == "pending"
        assert data["sellerId"] == seller.id
        assert data["notes"] == "leave at door"
        assert len(data["items"]) == 1
        assert data["items"][0]["finalPrice"] == "200.00"

        db.expire_all()
        assert db.get(Product, product.id).stock == 3
        assert db.query(CartItem).count() == 0

    def test_item_prices_sum_to_order_total(self, client, settings, db):
        seller = make_user(db, UserRole.seller)
        buyer = make_user(db)
        address = make_address(db, buyer)
        a = make_product(db, seller, price="19.99", stock=10, name="Pen")
        b = make_product(db, seller, price="5.05", stock=10, name="Ink")
        fill_cart(db, buyer, a, 3)
        fill_cart(db, buyer, b, 7)

        resp = _checkout(client, settings, buyer, address)
        assert resp.status_code == 201

        db.expire_all()
        order = db.query(Order).one()
        items = db.query(OrderItem).filter(OrderItem.order_id == order.id).all()
        assert sum(Decimal(str(i.final_price)) for i in items) == Decimal("95.32")
        assert Decimal(str(order.total_amount)) == Decimal("95.32")
        assert db.get(Product, a.id).stock == 7
        assert db.get(Product, b.id).stock == 3

    def test_shipping_charge_is_added_to_final_amount(self, harness_factory):
        h = harness_factory(shipping_charge=Decimal("40.00"))
        db = h.session()
        seller = make_user(db, UserRole.seller)
        buyer = make_user(db)
        address = make_address(db, buyer)
        product = make_product(db, seller, price="100.00", stock=5)
        fill_cart(db, buyer, product, 1)

        resp = _checkout(h.client, h.settings, buyer, address)

        data = resp.json()["data"]
        assert data["totalAmount"] == "100.00"
        assert data["shippingCharges"] == "40.00"
        assert data["finalAmount"] == "140.00"
        db.close()

    def test_variant_price_override_and_variant_stock(self, client, settings, db):
        seller = make_user(db, UserRole.seller)
        buyer = make_user(db)
        address = make_address(db, buyer)
        product = make_product(db, seller, price="100.00", stock=5)
        variant = make_variant(db, product, price="150.00", stock=4)
        fill_cart(db, buyer, product, 2, variant=variant)

        resp = _checkout(client, settings, buyer, address)

        assert resp.status_code == 201
        assert resp.json()["data"]["totalAmount"] == "300.00"
        db.expire_all()
        assert db.get(ProductVariant, variant.id).stock == 2
        assert db.get(Product, product.id).stock == 5


class TestCheckoutRejections:
    def test_insufficient_stock_leaves_nothing_behind(self, client, settings, db):
        seller = make_user(db, UserRole.seller)
        buyer = make_user(db)
        address = make_address(db, buyer)
        plenty = make_product(db, seller, price="10.00", stock=50, name="Plenty")
        scarce = make_product(db, seller, price="10.00", stock=1, name="Scarce")
        fill_cart(db, buyer, plenty, 5)
        fill_cart(db, buyer, scarce, 2)

        resp = _checkout(client, settings, buyer, address)

        assert resp.status_code == 400
        assert resp.json()["message"] == (
            'Insufficient stock for product "Scarce". Available: 1, Requested: 2'
        )
        db.expire_all()
        assert db.query(Order).count() == 0
        assert db.query(OrderItem).count() == 0
        assert db.get(Product, plenty.id).stock == 50
        assert db.get(Product, scarce.id).stock == 1
        assert db.query(CartItem).count() == 2

    def test_stock_taken_mid_checkout_is_a_conflict(self, client, settings, db, monkeypatch):
        seller = make_user(db, UserRole.seller)
        buyer = make_user(db)
        address = make_address(db, buyer)
        product = make_product(db, seller, price="10.00", stock=5)
        fill_cart(db, buyer, product, 3)
        load_line = order_service._load_line

        def sold_elsewhere(session, item):
            line = load_line(session, item)
            # another buyer takes all but one unit after validation
            session.execute(
                update(Product).where(Product.id == item.product_id).values(stock=1)
            )
            return line

        monkeypatch.setattr(order_service, "_load_line", sold_elsewhere)

        resp = _checkout(client, settings, buyer, address)

        assert resp.status_code == 409
        assert resp.json()["message"] == "Stock changed while placing the order"
        db.expire_all()
        assert db.query(Order).count() == 0
        assert db.query(OrderItem).count() == 0
        assert db.get(Product, product.id).stock == 5
        assert db.query(CartItem).one().quantity == 3

    def test_empty_cart(self, client, settings, db):
        buyer = make_user(db)
        address = make_address(db, buyer)

        resp = _checkout(client, settings, buyer, address)

        assert resp.status_code == 400
        assert resp.json()["message"] == "Cart is empty"

    def test_address_of_another_user(self, client, settings, db):
        seller = make_user(db, UserRole.seller)
        buyer = make_user(db)
        other = make_user(db)
        foreign_address = make_address(db, other)
        product = make_product(db, seller)
        fill_cart(db, buyer, product, 1)

        resp = _checkout(client, settings, buyer, foreign_address)

        assert resp.status_code == 404
        assert resp.json()["message"] == "Address not found"

    def test_inactive_product(self, client, settings, db):
        seller = make_user(db, UserRole.seller)
        buyer = make_user(db)
        address = make_address(db, buyer)
        product = make_product(db, seller, name="Retired")
        fill_cart(db, buyer, product, 1)
        product.is_active = False
        db.commit()

        resp = _checkout(client, settings, buyer, address)

        assert resp.status_code == 400
        assert resp.json()["message"] == 'Product "Retired" is no longer available'
        db.expire_all()
        assert db.query(Order).count() == 0

    def test_missing_address_id_is_a_field_error(self, client, settings, db):
        buyer = make_user(db)

        resp = client.post("/api/orders", json={}, headers=auth_headers(settings, buyer))

        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["message"] == "Validation error"
        assert any(e["field"] == "address_id" for e in body["errors"])

    def test_requires_authentication(self, client):
        resp = client.post("/api/orders", json={"address_id": 1})
        assert resp.status_code == 401
        assert resp.json()["success"] is False


class TestMyOrders:
    def test_list_is_newest_first_and_capped_at_ten(self, client, settings, db):
        seller = make_user(db, UserRole.seller)
        buyer = make_user(db)
        address = make_address(db, buyer)
        product = make_product(db, seller, stock=100)
        for _ in range(12):
            fill_cart(db, buyer, product, 1)
            assert _checkout(client, settings, buyer, address).status_code == 201

        resp = client.get("/api/orders?limit=50", headers=auth_headers(settings, buyer))

        data = resp.json()["data"]
        assert data["pagination"] == {"page": 1, "limit": 10, "total": 12}
        ids = [o["id"] for o in data["orders"]]
        assert len(ids) == 10
        assert ids == sorted(ids, reverse=True)

    def test_cannot_read_someone_elses_order(self, client, settings, db):
        seller = make_user(db, UserRole.seller)
        buyer = make_user(db)
        snoop = make_user(db)
        address = make_address(db, buyer)
        fill_cart(db, buyer, make_product(db, seller), 1)
        order_id = _checkout(client, settings, buyer, address).json()["data"]["id"]

        resp = client.get(f"/api/orders/{order_id}", headers=auth_headers(settings, snoop))

        assert resp.status_code == 403

    def test_cancel_restores_stock(self, client, settings, db):
        seller = make_user(db, UserRole.seller)
        buyer = make_user(db)
        address = make_address(db, buyer)
        product = make_product(db, seller, stock=5)
        fill_cart(db, buyer, product, 2)
        order_id = _checkout(client, settings, buyer, address).json()["data"]["id"]

        resp = client.post(f"/api/orders/{order_id}/cancel", headers=auth_headers(settings, buyer))

        assert resp.status_code == 200
        assert resp.json()["data"]["status"] == "cancelled"
        db.expire_all()
        assert db.get(Product, product.id).stock == 5

        again = client.post(f"/api/orders/{order_id}/cancel", headers=auth_headers(settings, buyer))
        assert again.status_code == 400


class TestSellerStatusUpdates:
    def _place(self, client, settings, db):
        seller = make_user(db, UserRole.seller)
        buyer = make_user(db)
        address = make_address(db, buyer)
        fill_cart(db, buyer, make_product(db, seller), 1)
        order_id = _checkout(client, settings, buyer, address).json()["data"]["id"]
        return seller, order_id

    def test_walks_forward_through_the_lifecycle(self, client, settings, db):
        seller, order_id = self._place(client, settings, db)
        headers = auth_headers(settings, seller)

        for step in ("confirmed", "processing", "shipped", "out_for_delivery", "delivered"):
            resp = client.patch(f"/api/orders/{order_id}/status", json={"status": step}, headers=headers)
            assert resp.status_code == 200, resp.json()
            assert resp.json()["data"]["status"] == step

    def test_skipping_a_step_is_rejected(self, client, settings, db):
        seller, order_id = self._place(client, settings, db)

        resp = client.patch(
            f"/api/orders/{order_id}/status",
            json={"status": "shipped"},
            headers=auth_headers(settings, seller),
        )

        assert resp.status_code == 400
        assert "pending" in resp.json()["message"]

    def test_only_the_orders_seller_may_update(self, client, settings, db):
        _, order_id = self._place(client, settings, db)
        stranger = make_user(db, UserRole.seller)

        resp = client.patch(
            f"/api/orders/{order_id}/status",
            json={"status": "confirmed"},
            headers=auth_headers(settings, stranger),
        )

        assert resp.status_code == 403

    def test_buyers_cannot_use_seller_endpoints(self, client, settings, db):
        buyer = make_user(db)
        resp = client.get("/api/orders/seller", headers=auth_headers(settings, buyer))
        assert resp.status_code == 403
