"""Integration tests for checkout and a customer's own orders."""

from storefront.db.models import Order, OrderStatus, PaymentStatus, User
from storefront.security.utils import create_access_token, hash_password


def add(client, headers, product_id, variant_id=None, quantity=1):
    body = {"productId": product_id, "quantity": quantity, "variantId": variant_id}
    return client.post("/v1/cart/items", json=body, headers=headers)


def checkout(client, headers, **extra):
    return client.post("/v1/orders", json={"paymentMethod": "pm_card_visa", **extra}, headers=headers)


class TestCheckout:
    def test_user_checkout(self, client, customer_headers, catalog):
        add(client, customer_headers, catalog.widget, quantity=2)
        add(client, customer_headers, catalog.shirt, catalog.large)

        resp = checkout(client, customer_headers, shippingAddress={
            "address_line1": "1 Main St", "city": "Dublin", "country": "IE", "postcode": "D01",
        })

        assert resp.status_code == 201
        body = resp.json()
        assert body["message"] == "Order created successfully"
        order = body["data"]
        assert order["order_number"].startswith("ORD-")
        assert order["status"] == "PENDING"
        assert order["payment_status"] == "PROCESSING"
        assert (order["subtotal_cents"], order["tax_cents"], order["total_cents"]) == (3500, 280, 3780)
        assert order["customer_email"] == "alice@example.com"
        assert order["shipping_address"]["city"] == "Dublin"
        assert len(order["items"]) == 2
        assert client.get("/v1/cart", headers=customer_headers).json()["data"]["items"] == []

    def test_empty_cart(self, client, customer_headers):
        resp = checkout(client, customer_headers)
        assert resp.status_code == 400
        assert resp.json()["error"] == {"code": "EMPTY_CART", "message": "Cart is empty"}

    def test_guest_checkout_needs_email(self, client, guest_headers, catalog):
        add(client, guest_headers, catalog.widget)
        resp = checkout(client, guest_headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"
        assert client.get("/v1/cart", headers=guest_headers).json()["data"]["summary"]["item_count"] == 1

    def test_guest_checkout(self, client, guest_headers, catalog, db):
        add(client, guest_headers, catalog.widget)
        resp = checkout(client, guest_headers, customerEmail="guest@example.com", customerName="Gus Guest")
        assert resp.status_code == 201
        db.expire_all()
        order = db.query(Order).one()
        assert order.user_id is None
        assert order.identity_key == "guest:guest-session-0001"
        assert order.customer_name == "Gus Guest"

    def test_missing_payment_method(self, client, customer_headers, catalog):
        add(client, customer_headers, catalog.widget)
        resp = client.post("/v1/orders", json={}, headers=customer_headers)
        assert resp.status_code == 400

    def test_declined_payment_is_a_server_error_but_order_is_kept(self, client, customer_headers, catalog, db):
        add(client, customer_headers, catalog.widget)
        resp = client.post("/v1/orders", json={"paymentMethod": "pm_card_declined"}, headers=customer_headers)

        assert resp.status_code == 500
        error = resp.json()["error"]
        assert error["code"] == "INTERNAL_SERVER_ERROR"
        assert error["message"] == "Payment could not be initiated"
        assert "stack" not in error

        db.expire_all()
        order = db.query(Order).one()
        assert order.payment_status == PaymentStatus.FAILED
        assert order.status == OrderStatus.PENDING


class TestMyOrders:
    def test_lists_only_own_orders(self, client, customer_headers, guest_headers, catalog):
        for _ in range(3):
            add(client, customer_headers, catalog.widget)
            checkout(client, customer_headers)
        add(client, guest_headers, catalog.widget)
        checkout(client, guest_headers, customerEmail="guest@example.com")

        resp = client.get("/v1/orders", params={"limit": 2}, headers=customer_headers)

        assert resp.status_code == 200
        body = resp.json()
        assert len(body["data"]) == 2
        assert body["meta"] == {"page": 1, "limit": 2, "total": 3, "totalPages": 2}

    def test_requires_login(self, client, guest_headers):
        assert client.get("/v1/orders", headers=guest_headers).status_code == 401

    def test_get_by_number(self, client, customer_headers, catalog):
        add(client, customer_headers, catalog.widget)
        number = checkout(client, customer_headers).json()["data"]["order_number"]
        resp = client.get(f"/v1/orders/{number}", headers=customer_headers)
        assert resp.status_code == 200
        assert resp.json()["data"]["order_number"] == number

    def test_other_users_order_is_not_found(self, client, db, customer_headers, catalog):
        add(client, customer_headers, catalog.widget)
        number = checkout(client, customer_headers).json()["data"]["order_number"]

        mallory = User(email="mallory@example.com", name="Mallory", password_hash=hash_password("password123"))
        db.add(mallory)
        db.commit()
        token, _ = create_access_token(mallory.email, mallory.id, "customer")

        resp = client.get(f"/v1/orders/{number}", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "ORDER_NOT_FOUND"
