import re

import pytest
from sqlalchemy import func, select

from storefront.core.errors import (
    EmptyCartError, PaymentError, PersistenceError, PriceUnavailableError, ValidationError,
)
from storefront.db.models import Order, OrderStatus, PaymentStatus, Product
from storefront.services.orders import (
    Customer, OrderService, apply_payment_event, can_transition, transition_order_status,
    transition_payment_status, update_order_admin,
)
from storefront.services.payments import MockPaymentGateway
from storefront.store.cart_store import CartIdentity, CartStore, MemoryCartBackend

SHOPPER = CartIdentity.guest("guest-orders-01")
ALICE = Customer(email="alice@example.com", name="Alice Smith")


@pytest.fixture()
def cart():
    return CartStore(MemoryCartBackend())


@pytest.fixture()
def published():
    return []


@pytest.fixture()
def service(db, cart, published):
    return OrderService(db, cart, MockPaymentGateway(), publisher=published.append)


@pytest.fixture()
def filled_cart(cart, catalog):
    cart.add_item(SHOPPER, catalog.widget, None, 2)
    cart.add_item(SHOPPER, catalog.shirt, catalog.large, 1)
    return cart


def order_count(db):
    return db.scalar(select(func.count()).select_from(Order))


class UnclearableBackend(MemoryCartBackend):
    def delete(self, key):
        raise PersistenceError(f"delete failed for {key}")


class UnreadableBackend(MemoryCartBackend):
    def load(self, key):
        raise PersistenceError(f"load failed for {key}")


class TestCreateOrder:
    def test_empty_cart_is_rejected_and_writes_nothing(self, db, service):
        with pytest.raises(EmptyCartError) as exc:
            service.create_order(SHOPPER, "pm_card_visa", ALICE)
        assert exc.value.code == "EMPTY_CART"
        assert order_count(db) == 0

    def test_creates_pending_order_with_totals(self, db, service, filled_cart, published):
        order = service.create_order(SHOPPER, "pm_card_visa", ALICE, notes="leave at door")

        assert re.fullmatch(r"ORD-\d{8}-\d{6}", order.order_number)
        assert order.status == OrderStatus.PENDING
        assert (order.subtotal_cents, order.tax_cents, order.total_cents) == (3500, 280, 3780)
        assert [(i.qty, i.unit_price_cents) for i in order.items] == [(2, 1000), (1, 1500)]
        assert order.items[1].title_snapshot == "Shirt (Large)"
        assert order.customer_email == "alice@example.com"
        assert order.identity_key == SHOPPER.key
        assert order.notes == "leave at door"
        assert published == [order]

    def test_payment_intent_moves_payment_to_processing(self, service, filled_cart):
        order = service.create_order(SHOPPER, "pm_card_visa", ALICE)
        assert order.payment_status == PaymentStatus.PROCESSING
        payment = order.payments[0]
        assert payment.provider == "mock"
        assert payment.provider_ref == f"pay_{order.order_number}"
        assert payment.amount_cents == 3780

    def test_cart_is_cleared_after_order(self, service, filled_cart):
        service.create_order(SHOPPER, "pm_card_visa", ALICE)
        assert filled_cart.get_items(SHOPPER) == []

    def test_prices_are_frozen_on_the_order(self, db, service, filled_cart, catalog):
        order = service.create_order(SHOPPER, "pm_card_visa", ALICE)
        widget = db.get(Product, catalog.widget)
        widget.price_cents = 9999
        db.commit()

        db.refresh(order)
        assert order.items[0].unit_price_cents == 1000
        assert order.total_cents == 3780

    def test_declined_payment_keeps_order_as_failed(self, db, service, filled_cart):
        with pytest.raises(PaymentError) as exc:
            service.create_order(SHOPPER, "pm_card_declined", ALICE)

        order = db.execute(select(Order)).scalar_one()
        assert exc.value.order_number == order.order_number
        assert exc.value.http_status == 500
        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.FAILED
        assert order.payments[0].failure_reason
        assert filled_cart.get_items(SHOPPER) == []

    def test_unavailable_price_leaves_cart_and_writes_nothing(self, db, service, cart, catalog):
        cart.add_item(SHOPPER, catalog.widget, None, 1)
        cart.add_item(SHOPPER, catalog.retired, None, 1)
        with pytest.raises(PriceUnavailableError):
            service.create_order(SHOPPER, "pm_card_visa", ALICE)
        assert order_count(db) == 0
        assert len(cart.get_items(SHOPPER)) == 2

    @pytest.mark.parametrize("method", ["", "   "])
    def test_payment_method_is_required(self, service, filled_cart, method):
        with pytest.raises(ValidationError):
            service.create_order(SHOPPER, method, ALICE)
        assert len(filled_cart.get_items(SHOPPER)) == 2

    def test_publish_failure_does_not_undo_order(self, db, filled_cart):
        def broken_publisher(order):
            raise RuntimeError("broker down")

        service = OrderService(db, filled_cart, MockPaymentGateway(), publisher=broken_publisher)
        order = service.create_order(SHOPPER, "pm_card_visa", ALICE)
        assert order.id is not None
        assert order_count(db) == 1

    def test_failed_cart_clear_still_initiates_payment(self, db, catalog, published):
        cart = CartStore(UnclearableBackend())
        cart.add_item(SHOPPER, catalog.widget, None, 1)
        service = OrderService(db, cart, MockPaymentGateway(), publisher=published.append)

        order = service.create_order(SHOPPER, "pm_card_visa", ALICE)

        assert order.payment_status == PaymentStatus.PROCESSING
        assert order.payments[0].provider_ref == f"pay_{order.order_number}"
        assert published == [order]
        assert order_count(db) == 1

    def test_storage_failure_before_order_is_raised(self, db, published):
        service = OrderService(db, CartStore(UnreadableBackend()), MockPaymentGateway(), publisher=published.append)
        with pytest.raises(PersistenceError):
            service.create_order(SHOPPER, "pm_card_visa", ALICE)
        assert order_count(db) == 0
        assert published == []

    def test_order_numbers_are_unique(self, service, cart, catalog):
        numbers = set()
        for _ in range(3):
            cart.add_item(SHOPPER, catalog.widget, None, 1)
            numbers.add(service.create_order(SHOPPER, "pm_card_visa", ALICE).order_number)
        assert len(numbers) == 3


class TestOrderStateMachine:
    @pytest.mark.parametrize("current,target", [
        (OrderStatus.PENDING, OrderStatus.CONFIRMED),
        (OrderStatus.PENDING, OrderStatus.CANCELLED),
        (OrderStatus.CONFIRMED, OrderStatus.PROCESSING),
        (OrderStatus.PROCESSING, OrderStatus.SHIPPED),
        (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
        (OrderStatus.DELIVERED, OrderStatus.REFUNDED),
    ])
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        (OrderStatus.PENDING, OrderStatus.SHIPPED),
        (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
        (OrderStatus.DELIVERED, OrderStatus.PENDING),
        (OrderStatus.CANCELLED, OrderStatus.CONFIRMED),
        (OrderStatus.REFUNDED, OrderStatus.DELIVERED),
    ])
    def test_forbidden(self, current, target):
        order = Order(status=current, payment_status=PaymentStatus.PENDING)
        with pytest.raises(ValidationError):
            transition_order_status(order, target)
        assert order.status == current

    def test_shipping_and_delivery_are_stamped(self):
        order = Order(status=OrderStatus.PROCESSING, payment_status=PaymentStatus.COMPLETED)
        transition_order_status(order, OrderStatus.SHIPPED)
        assert order.shipped_at is not None
        transition_order_status(order, OrderStatus.DELIVERED)
        assert order.delivered_at is not None

    def test_same_state_is_a_no_op(self):
        order = Order(status=OrderStatus.CANCELLED, payment_status=PaymentStatus.CANCELLED)
        transition_order_status(order, OrderStatus.CANCELLED)
        assert order.status == OrderStatus.CANCELLED

    def test_refund_requires_completed_payment(self):
        order = Order(status=OrderStatus.PENDING, payment_status=PaymentStatus.PENDING)
        with pytest.raises(ValidationError):
            transition_payment_status(order, PaymentStatus.REFUNDED)


class TestAdminUpdate:
    def test_updates_status_and_tracking(self, db, service, filled_cart):
        order = service.create_order(SHOPPER, "pm_card_visa", ALICE)
        update_order_admin(db, order, status=OrderStatus.CONFIRMED, tracking_number="1Z999")
        db.refresh(order)
        assert order.status == OrderStatus.CONFIRMED
        assert order.tracking_number == "1Z999"

    def test_rejected_update_changes_nothing(self, db, service, filled_cart):
        order = service.create_order(SHOPPER, "pm_card_visa", ALICE)
        with pytest.raises(ValidationError):
            update_order_admin(db, order, status=OrderStatus.DELIVERED, admin_notes="should not stick")
        db.refresh(order)
        assert order.status == OrderStatus.PENDING
        assert order.admin_notes == ""


class TestApplyPaymentEvent:
    @pytest.fixture()
    def order(self, service, filled_cart):
        return service.create_order(SHOPPER, "pm_card_visa", ALICE)

    def test_success_confirms_order(self, db, order):
        updated = apply_payment_event(db, {"type": "payment.succeeded", "provider_ref": f"pay_{order.order_number}"})
        assert updated.id == order.id
        assert updated.payment_status == PaymentStatus.COMPLETED
        assert updated.status == OrderStatus.CONFIRMED
        assert updated.payments[0].processed_at is not None

    def test_replayed_event_is_idempotent(self, db, order):
        event = {"type": "payment.succeeded", "order_number": order.order_number}
        apply_payment_event(db, event)
        again = apply_payment_event(db, event)
        assert again.payment_status == PaymentStatus.COMPLETED
        assert again.status == OrderStatus.CONFIRMED

    def test_late_failure_after_success_is_ignored(self, db, order):
        apply_payment_event(db, {"type": "payment.succeeded", "order_number": order.order_number})
        after = apply_payment_event(db, {"type": "payment.failed", "order_number": order.order_number})
        assert after.payment_status == PaymentStatus.COMPLETED

    def test_failure_records_reason(self, db, order):
        updated = apply_payment_event(
            db, {"type": "payment.failed", "order_id": order.id, "reason": "insufficient funds"},
        )
        assert updated.payment_status == PaymentStatus.FAILED
        assert updated.payments[0].failure_reason == "insufficient funds"
        assert updated.status == OrderStatus.PENDING

    def test_cancellation_cancels_pending_order(self, db, order):
        updated = apply_payment_event(db, {"type": "payment.canceled", "order_number": order.order_number})
        assert updated.payment_status == PaymentStatus.CANCELLED
        assert updated.status == OrderStatus.CANCELLED

    def test_unknown_event_type_is_ignored(self, db, order):
        assert apply_payment_event(db, {"type": "payment.mystery", "order_number": order.order_number}) is None

    def test_unknown_payment_is_ignored(self, db, order):
        assert apply_payment_event(db, {"type": "payment.succeeded", "provider_ref": "pay_nope"}) is None
