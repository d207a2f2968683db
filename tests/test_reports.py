# tests/test_reports.py

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from shop_service import reports, store
from shop_service.errors import InvalidArgument, Timeout
from shop_service.models import Order


def _customer(db, name):
    return store.register_customer(db, name, "Test", f"{name.lower()}@example.com", "password-123")


def _priced_product(db, name, price, stock=1000):
    return store.create_product(db, name, price, stock_quantity=stock)


# -----------------------------
# Daily revenue
# -----------------------------
def test_daily_revenue_with_no_orders_is_zero(db):
    result = reports.daily_revenue(db, date(2024, 1, 1))
    assert result.revenue == Decimal("0")
    assert result.day == date(2024, 1, 1)


def test_daily_revenue_sums_only_that_day(db, catalog):
    alice, novel = catalog["alice"], catalog["novel"]
    store.create_order(db, alice.id, [(novel.id, 2)], order_date=date(2024, 1, 5))
    store.create_order(db, alice.id, [(novel.id, 1)], order_date=date(2024, 1, 5))
    store.create_order(db, alice.id, [(novel.id, 4)], order_date=date(2024, 1, 6))

    assert reports.daily_revenue(db, date(2024, 1, 5)).revenue == Decimal("37.50")
    assert reports.daily_revenue(db, date(2024, 1, 6)).revenue == Decimal("50.00")


def test_daily_revenue_does_not_write(db, catalog):
    store.create_order(db, catalog["alice"].id, [(catalog["novel"].id, 1)], order_date=date(2024, 1, 5))
    reports.daily_revenue(db, date(2024, 1, 5))
    assert not db.new
    assert not db.dirty


def test_daily_revenue_rejects_non_date(db):
    with pytest.raises(InvalidArgument):
        reports.daily_revenue(db, "2024-01-05")


# -----------------------------
# Top sellers
# -----------------------------
def test_top_sellers_for_february(db):
    alice = _customer(db, "Alice")
    p = _priced_product(db, "P", "1.00")
    q = _priced_product(db, "Q", "1.00")
    store.create_order(db, alice.id, [(p.id, 3)], order_date=date(2024, 2, 3))
    store.create_order(db, alice.id, [(p.id, 5), (q.id, 2)], order_date=date(2024, 2, 20))
    # Outside February
    store.create_order(db, alice.id, [(q.id, 50)], order_date=date(2024, 3, 1))

    start, end = reports.month_range(2024, 2)
    rows = reports.top_selling_products(db, start, end)

    assert [(r.product_id, r.name, r.total_quantity_sold) for r in rows] == [
        (p.id, "P", 8),
        (q.id, "Q", 2),
    ]


def test_top_sellers_range_is_inclusive_and_ties_break_by_id(db):
    alice = _customer(db, "Alice")
    first = _priced_product(db, "First", "2.00")
    second = _priced_product(db, "Second", "2.00")
    store.create_order(db, alice.id, [(second.id, 4)], order_date=date(2024, 5, 1))
    store.create_order(db, alice.id, [(first.id, 4)], order_date=date(2024, 5, 31))

    rows = reports.top_selling_products(db, date(2024, 5, 1), date(2024, 5, 31))
    assert [r.product_id for r in rows] == [first.id, second.id]

    rows = reports.top_selling_products(db, date(2024, 5, 1), date(2024, 5, 31), limit=1)
    assert [r.product_id for r in rows] == [first.id]


def test_top_sellers_empty_range(db, catalog):
    assert reports.top_selling_products(db, date(2020, 1, 1), date(2020, 1, 31)) == []


def test_top_sellers_rejects_reversed_range(db):
    with pytest.raises(InvalidArgument):
        reports.top_selling_products(db, date(2024, 3, 1), date(2024, 2, 1))


def test_month_range():
    assert reports.month_range(2024, 2) == (date(2024, 2, 1), date(2024, 2, 29))
    assert reports.month_range(2023, 12) == (date(2023, 12, 1), date(2023, 12, 31))
    with pytest.raises(InvalidArgument):
        reports.month_range(2024, 13)
    with pytest.raises(InvalidArgument):
        reports.month_range(0, 2)


# -----------------------------
# High spenders
# -----------------------------
def test_high_spenders_strictly_above_threshold(db, today):
    carol = _customer(db, "Carol")
    dave = _customer(db, "Dave")
    p300 = _priced_product(db, "Three hundred", "300.00")
    p250 = _priced_product(db, "Two fifty", "250.00")

    store.create_order(db, carol.id, [(p300.id, 1)], order_date=today - timedelta(days=3))
    store.create_order(db, carol.id, [(p250.id, 1)], order_date=today - timedelta(days=20))
    # Dave lands exactly on the threshold
    store.create_order(db, dave.id, [(p250.id, 1)], order_date=today - timedelta(days=1))
    store.create_order(db, dave.id, [(p250.id, 1)], order_date=today)

    rows = reports.high_spending_customers(db, 30, 500, now=today)

    assert [(r.customer_id, r.total_spent) for r in rows] == [(carol.id, Decimal("550.00"))]
    assert rows[0].email == "carol@example.com"


def test_high_spenders_ignores_orders_outside_window(db, today):
    erin = _customer(db, "Erin")
    big = _priced_product(db, "Big", "400.00")
    store.create_order(db, erin.id, [(big.id, 1)], order_date=today - timedelta(days=31))
    store.create_order(db, erin.id, [(big.id, 1)], order_date=today - timedelta(days=30))

    # Only the order 30 days back is inside a 30-day window
    assert reports.high_spending_customers(db, 30, 500, now=today) == []
    rows = reports.high_spending_customers(db, 31, 500, now=today)
    assert [r.total_spent for r in rows] == [Decimal("800.00")]


def test_high_spenders_ordered_by_total_desc(db, today):
    frank = _customer(db, "Frank")
    gina = _customer(db, "Gina")
    item = _priced_product(db, "Item", "100.00")
    store.create_order(db, frank.id, [(item.id, 2)], order_date=today)
    store.create_order(db, gina.id, [(item.id, 5)], order_date=today)

    rows = reports.high_spending_customers(db, 7, Decimal("50"), now=today)
    assert [r.customer_id for r in rows] == [gina.id, frank.id]


@pytest.mark.parametrize("window_days, threshold", [(0, 500), (-5, 500), (30, -1), (30, "lots")])
def test_high_spenders_rejects_bad_arguments(db, window_days, threshold):
    with pytest.raises(InvalidArgument):
        reports.high_spending_customers(db, window_days, threshold)


# -----------------------------
# Deadlines
# -----------------------------
def test_report_past_deadline_raises_timeout(db, catalog):
    store.create_order(db, catalog["alice"].id, [(catalog["novel"].id, 1)], order_date=date(2024, 1, 5))
    with pytest.raises(Timeout):
        reports.top_selling_products(db, date(2024, 1, 1), date(2024, 1, 31), timeout=1e-9)
    # The session is still usable afterwards
    assert reports.daily_revenue(db, date(2024, 1, 5), timeout=5).revenue == Decimal("12.50")


def test_report_generous_deadline(db, catalog):
    rows = reports.high_spending_customers(db, 30, 0, now=date.today(), timeout=10)
    assert rows == []


def test_non_positive_timeout_is_invalid(db):
    with pytest.raises(InvalidArgument):
        reports.daily_revenue(db, date(2024, 1, 1), timeout=0)


def test_reports_leave_orders_untouched(db, catalog):
    store.create_order(db, catalog["alice"].id, [(catalog["novel"].id, 1)], order_date=date(2024, 1, 5))
    reports.top_selling_products(db, date(2024, 1, 1), date(2024, 1, 31))
    reports.high_spending_customers(db, 30, 0, now=date(2024, 1, 10))
    assert db.query(Order).count() == 1


def test_reports_accept_datetimes_as_days(db, catalog):
    alice, novel = catalog["alice"], catalog["novel"]
    store.create_order(db, alice.id, [(novel.id, 2)], order_date=date(2024, 1, 5))

    assert reports.daily_revenue(db, datetime(2024, 1, 5, 18, 30)).revenue == Decimal("25.00")

    rows = reports.top_selling_products(db, datetime(2024, 1, 5, 23, 59), datetime(2024, 1, 5))
    assert [(r.product_id, r.total_quantity_sold) for r in rows] == [(novel.id, 2)]

    rows = reports.high_spending_customers(db, 1, 10, now=datetime(2024, 1, 5, 9, 0))
    assert [r.customer_id for r in rows] == [alice.id]
