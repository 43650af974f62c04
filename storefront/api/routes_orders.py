from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.api.deps import get_db, get_order_service
from storefront.api.schemas import CheckoutPayload, Envelope, OrderRead, Page, ok
from storefront.core.auth import get_cart_identity, get_current_identity, get_optional_claims
from storefront.core.errors import NotFoundError, UnauthorizedError, ValidationError
from storefront.db.models import OrderStatus, User
from storefront.services.admin_queries import OrderFilters, list_orders, page_meta
from storefront.services.orders import Customer, OrderService, get_order_by_number
from storefront.store.cart_store import CartIdentity

router = APIRouter()


def _customer_for(claims: Optional[dict], payload: CheckoutPayload, db: Session) -> Customer:
    if claims is not None:
        user = db.get(User, claims["uid"])
        if not user:
            raise UnauthorizedError("User not found")
        return Customer(email=user.email, name=user.name or payload.customer_name or "", user_id=user.id)
    if not payload.customer_email:
        raise ValidationError("customer_email is required for guest checkout")
    return Customer(email=str(payload.customer_email), name=payload.customer_name or "")


@router.post("/v1/orders", response_model=Envelope[OrderRead], status_code=201)
def checkout(payload: CheckoutPayload, identity: CartIdentity = Depends(get_cart_identity),
             claims: Optional[dict] = Depends(get_optional_claims), db: Session = Depends(get_db),
             service: OrderService = Depends(get_order_service)):
    order = service.create_order(
        identity,
        payload.payment_method,
        _customer_for(claims, payload, db),
        shipping_address=payload.shipping_address.model_dump() if payload.shipping_address else None,
        notes=payload.notes,
    )
    return ok(OrderRead.model_validate(order), "Order created successfully")


@router.get("/v1/orders", response_model=Page[OrderRead])
def my_orders(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
              status: Optional[OrderStatus] = None, claims: dict = Depends(get_current_identity),
              db: Session = Depends(get_db)):
    items, total = list_orders(db, OrderFilters(status=status, user_id=claims["uid"]), page, limit)
    return {"success": True, "data": items, "meta": page_meta(page, limit, total)}


@router.get("/v1/orders/{order_number}", response_model=Envelope[OrderRead])
def get_my_order(order_number: str, claims: dict = Depends(get_current_identity), db: Session = Depends(get_db)):
    order = get_order_by_number(db, order_number)
    if order.user_id != claims["uid"] and claims.get("role") != "admin":
        raise NotFoundError("order")
    return ok(OrderRead.model_validate(order))
