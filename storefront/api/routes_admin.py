from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.api.deps import get_db
from storefront.api.schemas import AdminOrderRead, AdminOrderUpdate, Envelope, Page, ProductRead, ok
from storefront.core.auth import require_admin
from storefront.db.models import OrderStatus, PaymentStatus
from storefront.services import admin_queries
from storefront.services.admin_queries import OrderFilters, page_meta
from storefront.services.orders import get_order, update_order_admin

router = APIRouter(dependencies=[Depends(require_admin)])  # main.py mounts at /v1/admin


@router.get("/orders", response_model=Page[AdminOrderRead])
def list_orders(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                status: Optional[OrderStatus] = None,
                payment_status: Optional[PaymentStatus] = Query(default=None, alias="paymentStatus"),
                search: Optional[str] = None, db: Session = Depends(get_db)):
    filters = OrderFilters(status=status, payment_status=payment_status, search_text=search)
    items, total = admin_queries.list_orders(db, filters, page, limit)
    return {"success": True, "data": items, "meta": page_meta(page, limit, total)}


@router.get("/orders/{order_id}", response_model=Envelope[AdminOrderRead])
def get_order_detail(order_id: int, db: Session = Depends(get_db)):
    return ok(AdminOrderRead.model_validate(get_order(db, order_id)))


@router.patch("/orders/{order_id}", response_model=Envelope[AdminOrderRead])
def update_order(order_id: int, payload: AdminOrderUpdate, db: Session = Depends(get_db)):
    order = update_order_admin(
        db,
        get_order(db, order_id),
        status=payload.status,
        payment_status=payload.payment_status,
        tracking_number=payload.tracking_number,
        admin_notes=payload.admin_notes,
    )
    return ok(AdminOrderRead.model_validate(order), "Order updated successfully")


@router.get("/products", response_model=Page[ProductRead])
def list_products(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                  search: Optional[str] = None, active: Optional[bool] = None, db: Session = Depends(get_db)):
    items, total = admin_queries.list_products(db, search, active, page, limit)
    return {"success": True, "data": items, "meta": page_meta(page, limit, total)}


@router.get("/analytics/dashboard", response_model=Envelope[dict])
def analytics_dashboard(db: Session = Depends(get_db)):
    return ok(admin_queries.dashboard(db))
