from datetime import datetime, timedelta

import pytest

from storefront.core.errors import ValidationError
from storefront.db.models import Order, OrderItem, OrderStatus, PaymentStatus
from storefront.services.admin_queries import (
    OrderFilters, check_page, dashboard, list_orders, list_products, page_meta, total_pages,
)

NOW = datetime(2026, 3, 15, 12, 0, 0)


def make_order(db, n, name="Jane Doe", email=None, status=OrderStatus.PENDING,
               payment_status=PaymentStatus.PENDING, total=1000, created_at=None, items=()):
    created_at = created_at or NOW - timedelta(minutes=n)
    order = Order(
        order_number=f"ORD-20260315-{n:06d}",
        identity_key=f"guest:shopper-{n:04d}",
        customer_name=name,
        customer_email=email or f"shopper{n}@example.com",
        status=status,
        payment_status=payment_status,
        subtotal_cents=total,
        tax_cents=0,
        total_cents=total,
        currency="USD",
        payment_method="pm_card_visa",
        created_at=created_at,
        updated_at=created_at,
    )
    for pos, (product_id, qty) in enumerate(items):
        order.items.append(OrderItem(
            position=pos, product_id=product_id, qty=qty, unit_price_cents=100, title_snapshot="x",
        ))
    db.add(order)
    db.commit()
    return order


def numbers(orders):
    return [o.order_number for o in orders]


class TestPaging:
    @pytest.mark.parametrize("total,size,expected", [(0, 10, 0), (1, 10, 1), (10, 10, 1), (11, 10, 2), (25, 10, 3)])
    def test_total_pages(self, total, size, expected):
        assert total_pages(total, size) == expected

    def test_page_meta(self):
        assert page_meta(2, 10, 25) == {"page": 2, "limit": 10, "total": 25, "totalPages": 3}

    @pytest.mark.parametrize("page,size", [(0, 10), (1, 0), (1, 101)])
    def test_rejects_bad_paging(self, page, size):
        with pytest.raises(ValidationError):
            check_page(page, size)


class TestListOrders:
    def test_newest_first(self, db):
        make_order(db, 1, created_at=NOW - timedelta(days=2))
        make_order(db, 2, created_at=NOW)
        make_order(db, 3, created_at=NOW - timedelta(days=1))
        orders, total = list_orders(db, OrderFilters())
        assert total == 3
        assert numbers(orders) == ["ORD-20260315-000002", "ORD-20260315-000003", "ORD-20260315-000001"]

    def test_filters_are_conjunctive(self, db):
        make_order(db, 1, status=OrderStatus.CONFIRMED, payment_status=PaymentStatus.COMPLETED)
        make_order(db, 2, status=OrderStatus.CONFIRMED, payment_status=PaymentStatus.PENDING)
        make_order(db, 3, status=OrderStatus.PENDING, payment_status=PaymentStatus.COMPLETED)
        orders, total = list_orders(
            db, OrderFilters(status=OrderStatus.CONFIRMED, payment_status=PaymentStatus.COMPLETED),
        )
        assert total == 1
        assert numbers(orders) == ["ORD-20260315-000001"]

    def test_search_matches_number_name_or_email(self, db):
        make_order(db, 1, name="Maria Lopez", email="m.lopez@example.com")
        make_order(db, 2, name="John Carter", email="jc@lopezmail.com")
        make_order(db, 3, name="Ann Ng", email="ann@example.com")
        make_order(db, 77, name="Bo Li", email="bo@example.com")

        orders, total = list_orders(db, OrderFilters(search_text="LOPEZ"))
        assert total == 2
        assert set(numbers(orders)) == {"ORD-20260315-000001", "ORD-20260315-000002"}

        orders, _ = list_orders(db, OrderFilters(search_text="000077"))
        assert numbers(orders) == ["ORD-20260315-000077"]

    def test_search_combines_with_status(self, db):
        make_order(db, 1, name="Maria Lopez", status=OrderStatus.CANCELLED)
        make_order(db, 2, name="Maria Lopez", status=OrderStatus.PENDING)
        orders, total = list_orders(db, OrderFilters(status=OrderStatus.CANCELLED, search_text="maria"))
        assert total == 1
        assert numbers(orders) == ["ORD-20260315-000001"]

    def test_search_wildcards_are_literal(self, db):
        make_order(db, 1, name="Plain Name")
        _, total = list_orders(db, OrderFilters(search_text="%"))
        assert total == 0

    def test_blank_search_matches_everything(self, db):
        make_order(db, 1)
        make_order(db, 2)
        _, total = list_orders(db, OrderFilters(search_text="   "))
        assert total == 2

    def test_pagination(self, db):
        for n in range(1, 26):
            make_order(db, n)
        page3, total = list_orders(db, OrderFilters(), page=3, page_size=10)
        assert total == 25
        assert len(page3) == 5
        assert page_meta(3, 10, total)["totalPages"] == 3

        beyond, total = list_orders(db, OrderFilters(), page=4, page_size=10)
        assert beyond == []
        assert total == 25

    def test_pages_do_not_overlap(self, db):
        for n in range(1, 8):
            make_order(db, n)
        first, _ = list_orders(db, OrderFilters(), page=1, page_size=4)
        second, _ = list_orders(db, OrderFilters(), page=2, page_size=4)
        assert len(first) == 4 and len(second) == 3
        assert not set(numbers(first)) & set(numbers(second))


class TestListProducts:
    def test_search_and_active_filter(self, db, catalog):
        items, total = list_products(db, search="shi")
        assert total == 1 and items[0].title == "Shirt"
        _, active_total = list_products(db, active=True)
        assert active_total == 2


class TestDashboard:
    def test_counts_and_revenue(self, db, catalog):
        make_order(db, 1, payment_status=PaymentStatus.COMPLETED, status=OrderStatus.CONFIRMED, total=5000,
                   created_at=NOW - timedelta(hours=1), items=[(catalog.widget, 3)])
        make_order(db, 2, payment_status=PaymentStatus.COMPLETED, status=OrderStatus.DELIVERED, total=2000,
                   created_at=NOW - timedelta(days=60), items=[(catalog.shirt, 1)])
        make_order(db, 3, payment_status=PaymentStatus.FAILED, total=9999,
                   created_at=NOW - timedelta(days=2), items=[(catalog.shirt, 1)])
        make_order(db, 4, status=OrderStatus.CANCELLED, payment_status=PaymentStatus.CANCELLED, total=100,
                   created_at=NOW - timedelta(days=3), items=[(catalog.shirt, 10)])

        stats = dashboard(db, now=NOW)

        assert stats["revenue"] == {"total_cents": 7000, "last_30_days_cents": 5000}
        assert stats["orders"]["total"] == 4
        assert stats["orders"]["today"] == 1
        assert stats["orders"]["last_7_days"] == 3
        assert stats["orders"]["pending"] == 1
        assert stats["orders"]["delivered"] == 1
        assert stats["products"] == {"total": 3, "active": 2}
        assert [o["order_number"] for o in stats["recent_orders"]][0] == "ORD-20260315-000001"
        assert stats["top_products"][0] == {"product_id": catalog.widget, "title": "Widget", "units_sold": 3}
        assert stats["top_products"][1]["units_sold"] == 2
