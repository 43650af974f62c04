"""Order creation, status transitions and payment callbacks.

Orders are written once with frozen unit prices and totals; afterwards only
``status``, ``payment_status`` and the operator fields change. Orders are never
deleted: a failed payment leaves the row in place with ``payment_status=FAILED``.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.errors import (
    EmptyCartError, NotFoundError, PaymentError, PersistenceError, ValidationError,
)
from storefront.db.models import Order, OrderItem, OrderStatus, Payment, PaymentStatus
from storefront.kafka.producer import publish_order_created
from storefront.services.payments import PaymentGateway
from storefront.services.pricing import CatalogPriceLookup, price_lines, totals_for
from storefront.store.cart_store import CartIdentity, CartStore

logger = logging.getLogger(__name__)

ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED, OrderStatus.REFUNDED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED, OrderStatus.REFUNDED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.REFUNDED},
    OrderStatus.DELIVERED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),
    OrderStatus.REFUNDED: set(),
}

PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.PROCESSING, PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED},
    PaymentStatus.PROCESSING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED},
    PaymentStatus.FAILED: {PaymentStatus.PROCESSING, PaymentStatus.CANCELLED},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
    PaymentStatus.CANCELLED: set(),
    PaymentStatus.REFUNDED: set(),
}

# provider event type -> payment status
PAYMENT_EVENT_STATUS = {
    "payment.processing": PaymentStatus.PROCESSING,
    "payment.succeeded": PaymentStatus.COMPLETED,
    "payment.failed": PaymentStatus.FAILED,
    "payment.canceled": PaymentStatus.CANCELLED,
    "payment.cancelled": PaymentStatus.CANCELLED,
    "payment.refunded": PaymentStatus.REFUNDED,
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS[OrderStatus(current)]


def can_transition_payment(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in PAYMENT_TRANSITIONS[PaymentStatus(current)]


def transition_order_status(order: Order, target: OrderStatus) -> None:
    target = OrderStatus(target)
    if order.status == target:
        return
    if not can_transition(order.status, target):
        raise ValidationError(f"Cannot move order from {OrderStatus(order.status).value} to {target.value}")
    now = datetime.utcnow()
    order.status = target
    if target == OrderStatus.SHIPPED:
        order.shipped_at = now
    elif target == OrderStatus.DELIVERED:
        order.delivered_at = now
    order.updated_at = now


def transition_payment_status(order: Order, target: PaymentStatus, payment: Optional[Payment] = None) -> None:
    target = PaymentStatus(target)
    if order.payment_status == target:
        return
    if not can_transition_payment(order.payment_status, target):
        raise ValidationError(
            f"Cannot move payment from {PaymentStatus(order.payment_status).value} to {target.value}"
        )
    now = datetime.utcnow()
    order.payment_status = target
    order.updated_at = now
    payment = payment or latest_payment(order)
    if payment is not None:
        payment.status = target
        if target in (PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.REFUNDED):
            payment.processed_at = now


def latest_payment(order: Order) -> Optional[Payment]:
    return max(order.payments, key=lambda p: p.id, default=None)


def format_order_number(order_id: int, created_at: datetime) -> str:
    return f"ORD-{created_at:%Y%m%d}-{order_id:06d}"


def _commit(db: Session, what: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Failed to %s", what, exc_info=True)
        raise PersistenceError(f"{what}: {e}") from e


@dataclass(frozen=True)
class Customer:
    email: str
    name: str = ""
    user_id: Optional[int] = None


class OrderService:
    def __init__(self, db: Session, cart_store: CartStore, gateway: PaymentGateway,
                 publisher: Callable = publish_order_created, tax_rate: Optional[Decimal] = None):
        self.db = db
        self.cart_store = cart_store
        self.gateway = gateway
        self.publisher = publisher
        self.tax_rate = tax_rate

    def create_order(self, identity: CartIdentity, payment_method_ref: str, customer: Customer,
                     shipping_address: Optional[dict] = None, notes: str = "") -> Order:
        if not payment_method_ref or not payment_method_ref.strip():
            raise ValidationError("Payment method is required")
        if not customer.email:
            raise ValidationError("Customer email is required")

        # The cart stays locked from snapshot until the order row is committed,
        # and is cleared only if that commit succeeded.
        order = None
        try:
            with self.cart_store.checkout(identity) as items:
                if not items:
                    raise EmptyCartError()
                priced = price_lines(items, CatalogPriceLookup(self.db))
                totals = totals_for(priced, self.tax_rate)
                order = self._persist(identity, customer, payment_method_ref, priced, totals, shipping_address, notes)
        except PersistenceError:
            if order is None:
                raise
            # the order is the durable record; a stale cart must not block payment
            logger.error(
                "Order %s committed but cart %s was not cleared", order.order_number, identity.key,
                exc_info=True, extra={"order_number": order.order_number, "identity": identity.key},
            )

        logger.info(
            "Order %s created for %s: %d items, total %d",
            order.order_number, identity.key, totals.item_count, order.total_cents,
            extra={"order_number": order.order_number, "identity": identity.key},
        )
        self._publish(order)
        self._initiate_payment(order)
        return order

    def _persist(self, identity, customer, payment_method_ref, priced, totals, shipping_address, notes) -> Order:
        now = datetime.utcnow()
        order = Order(
            user_id=customer.user_id,
            identity_key=identity.key,
            customer_name=customer.name or "",
            customer_email=customer.email,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            subtotal_cents=totals.subtotal_cents,
            tax_cents=totals.tax_cents,
            total_cents=totals.total_cents,
            currency=settings.CURRENCY,
            payment_method=payment_method_ref,
            shipping_address=shipping_address,
            notes=notes or "",
            created_at=now,
            updated_at=now,
        )
        for pos, line in enumerate(priced):
            order.items.append(OrderItem(
                position=pos,
                product_id=line.product_id,
                variant_id=line.variant_id,
                qty=line.quantity,
                unit_price_cents=line.unit_price_cents,
                title_snapshot=line.title[:255],
            ))
        order.payments.append(Payment(
            method=payment_method_ref,
            provider=self.gateway.name,
            amount_cents=totals.total_cents,
            currency=settings.CURRENCY,
            status=PaymentStatus.PENDING,
        ))
        try:
            self.db.add(order)
            self.db.flush()
            order.order_number = format_order_number(order.id, now)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to persist order for %s", identity.key, exc_info=True)
            raise PersistenceError(f"persist order: {e}") from e
        _commit(self.db, "persist order")
        return order

    def _publish(self, order: Order) -> None:
        try:
            self.publisher(order)
        except Exception:
            logger.error(
                "Could not publish order.created for %s", order.order_number,
                exc_info=True, extra={"order_number": order.order_number},
            )

    def _initiate_payment(self, order: Order) -> None:
        payment = latest_payment(order)
        try:
            intent = self.gateway.create_intent(
                order.order_number, order.total_cents, order.currency, order.payment_method,
            )
        except PaymentError as e:
            e.order_number = order.order_number
            transition_payment_status(order, PaymentStatus.FAILED, payment)
            payment.failure_reason = (e.detail or e.message)[:255]
            _commit(self.db, "record failed payment")
            logger.error(
                "Payment initiation failed for %s: %s", order.order_number, e.detail,
                extra={"order_number": order.order_number, "error_code": e.code},
            )
            raise
        payment.provider_ref = intent.provider_ref
        transition_payment_status(order, PaymentStatus.PROCESSING, payment)
        _commit(self.db, "record payment intent")


def get_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if not order:
        raise NotFoundError("order")
    return order


def get_order_by_number(db: Session, order_number: str) -> Order:
    order = db.execute(select(Order).where(Order.order_number == order_number)).scalar_one_or_none()
    if not order:
        raise NotFoundError("order")
    return order


def update_order_admin(db: Session, order: Order, status: Optional[OrderStatus] = None,
                       payment_status: Optional[PaymentStatus] = None,
                       tracking_number: Optional[str] = None, admin_notes: Optional[str] = None) -> Order:
    # validate both moves before touching the row so a rejected update changes nothing
    if status is not None and status != order.status and not can_transition(order.status, status):
        raise ValidationError(f"Cannot move order from {OrderStatus(order.status).value} to {OrderStatus(status).value}")
    if (payment_status is not None and payment_status != order.payment_status
            and not can_transition_payment(order.payment_status, payment_status)):
        raise ValidationError(
            f"Cannot move payment from {PaymentStatus(order.payment_status).value} to {PaymentStatus(payment_status).value}"
        )
    if status is not None:
        transition_order_status(order, status)
    if payment_status is not None:
        transition_payment_status(order, payment_status)
    if tracking_number is not None:
        order.tracking_number = tracking_number
    if admin_notes is not None:
        order.admin_notes = admin_notes
    order.updated_at = datetime.utcnow()
    _commit(db, "update order")
    logger.info("Order %s updated by admin", order.order_number, extra={"order_number": order.order_number})
    return order


def _find_payment(db: Session, event: dict) -> Optional[Payment]:
    ref = event.get("provider_ref") or event.get("payment_id")
    if ref:
        return db.execute(select(Payment).where(Payment.provider_ref == ref)).scalars().first()
    order = None
    if event.get("order_number"):
        order = db.execute(select(Order).where(Order.order_number == event["order_number"])).scalar_one_or_none()
    elif event.get("order_id") is not None:
        order = db.get(Order, int(event["order_id"]))
    return latest_payment(order) if order else None


def apply_payment_event(db: Session, event: dict) -> Optional[Order]:
    """Apply a provider callback. Unknown payments and out-of-order events are ignored."""
    kind = event.get("type")
    target = PAYMENT_EVENT_STATUS.get(kind)
    if target is None:
        logger.info("Ignoring payment event %s", kind, extra={"event_type": kind})
        return None
    payment = _find_payment(db, event)
    if payment is None:
        logger.warning("Payment event %s for unknown payment", kind, extra={"event_type": kind})
        return None
    order = payment.order
    if payment.status == target and order.payment_status == target:
        return order
    if not can_transition_payment(order.payment_status, target):
        logger.warning(
            "Ignoring %s for order %s in payment state %s", kind, order.order_number,
            PaymentStatus(order.payment_status).value,
            extra={"event_type": kind, "order_number": order.order_number},
        )
        return order
    transition_payment_status(order, target, payment)
    if target == PaymentStatus.FAILED and event.get("reason"):
        payment.failure_reason = str(event["reason"])[:255]
    if target == PaymentStatus.COMPLETED and order.status == OrderStatus.PENDING:
        transition_order_status(order, OrderStatus.CONFIRMED)
    elif target == PaymentStatus.CANCELLED and can_transition(order.status, OrderStatus.CANCELLED):
        transition_order_status(order, OrderStatus.CANCELLED)
    _commit(db, "apply payment event")
    logger.info(
        "Order %s payment %s", order.order_number, target.value,
        extra={"event_type": kind, "order_number": order.order_number},
    )
    return order
