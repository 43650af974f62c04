import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from storefront.core.errors import ValidationError
from storefront.db.models import Order, OrderItem, OrderStatus, PaymentStatus, Product, User

MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class OrderFilters:
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    search_text: Optional[str] = None
    user_id: Optional[int] = None


def check_page(page: int, page_size: int) -> None:
    if page < 1:
        raise ValidationError("page must be >= 1")
    if page_size < 1 or page_size > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")


def total_pages(total: int, page_size: int) -> int:
    return math.ceil(total / page_size)


def page_meta(page: int, page_size: int, total: int) -> dict:
    return {"page": page, "limit": page_size, "total": total, "totalPages": total_pages(total, page_size)}


def _order_conditions(filters: OrderFilters) -> list:
    conds = []
    if filters.status is not None:
        conds.append(Order.status == filters.status)
    if filters.payment_status is not None:
        conds.append(Order.payment_status == filters.payment_status)
    if filters.user_id is not None:
        conds.append(Order.user_id == filters.user_id)
    if filters.search_text:
        text = filters.search_text.strip()
        if text:
            conds.append(or_(
                Order.order_number.icontains(text, autoescape=True),
                Order.customer_name.icontains(text, autoescape=True),
                Order.customer_email.icontains(text, autoescape=True),
            ))
    return conds


def list_orders(db: Session, filters: OrderFilters, page: int = 1, page_size: int = 10) -> Tuple[List[Order], int]:
    check_page(page, page_size)
    conds = _order_conditions(filters)
    total = db.scalar(select(func.count()).select_from(Order).where(*conds))
    stmt = (
        select(Order)
        .where(*conds)
        .options(selectinload(Order.items), selectinload(Order.payments))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(db.execute(stmt).scalars().all()), total


def list_products(db: Session, search: Optional[str] = None, active: Optional[bool] = None,
                  page: int = 1, page_size: int = 10) -> Tuple[List[Product], int]:
    check_page(page, page_size)
    conds = []
    if search:
        conds.append(or_(
            Product.title.icontains(search, autoescape=True),
            Product.sku.icontains(search, autoescape=True),
        ))
    if active is not None:
        conds.append(Product.active == active)
    total = db.scalar(select(func.count()).select_from(Product).where(*conds))
    stmt = (
        select(Product)
        .where(*conds)
        .options(selectinload(Product.variants))
        .order_by(Product.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(db.execute(stmt).scalars().all()), total


def _count_orders(db: Session, *conds) -> int:
    return db.scalar(select(func.count()).select_from(Order).where(*conds))


def _revenue(db: Session, *conds) -> int:
    stmt = select(func.coalesce(func.sum(Order.total_cents), 0)).where(
        Order.payment_status == PaymentStatus.COMPLETED, *conds,
    )
    return int(db.scalar(stmt))


def dashboard(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or datetime.utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    last_week = today - timedelta(days=7)
    last_month = today - timedelta(days=30)

    recent = db.execute(
        select(Order).order_by(Order.created_at.desc(), Order.id.desc()).limit(5)
    ).scalars().all()

    units = func.sum(OrderItem.qty).label("units")
    top = db.execute(
        select(OrderItem.product_id, Product.title, units)
        .join(Order, Order.id == OrderItem.order_id)
        .join(Product, Product.id == OrderItem.product_id, isouter=True)
        .where(Order.status != OrderStatus.CANCELLED)
        .group_by(OrderItem.product_id, Product.title)
        .order_by(units.desc(), OrderItem.product_id)
        .limit(5)
    ).all()

    return {
        "revenue": {
            "total_cents": _revenue(db),
            "last_30_days_cents": _revenue(db, Order.created_at >= last_month),
        },
        "orders": {
            "total": _count_orders(db),
            "today": _count_orders(db, Order.created_at >= today),
            "last_7_days": _count_orders(db, Order.created_at >= last_week),
            "last_30_days": _count_orders(db, Order.created_at >= last_month),
            "pending": _count_orders(db, Order.status == OrderStatus.PENDING),
            "delivered": _count_orders(db, Order.status == OrderStatus.DELIVERED),
        },
        "users": {"total": db.scalar(select(func.count()).select_from(User))},
        "products": {
            "total": db.scalar(select(func.count()).select_from(Product)),
            "active": db.scalar(select(func.count()).select_from(Product).where(Product.active.is_(True))),
        },
        "recent_orders": [
            {
                "id": o.id,
                "order_number": o.order_number,
                "customer_email": o.customer_email,
                "status": OrderStatus(o.status).value,
                "payment_status": PaymentStatus(o.payment_status).value,
                "total_cents": o.total_cents,
                "created_at": o.created_at.isoformat(),
            }
            for o in recent
        ],
        "top_products": [
            {"product_id": pid, "title": title, "units_sold": int(n)} for pid, title, n in top
        ],
    }
