# shop_service/reports.py

"""
Read-only reports over the order data.

- daily_revenue: sum of order totals on one calendar day.
- top_selling_products: units sold per product over an inclusive date range.
- high_spending_customers: customers whose spending in a trailing window
  strictly exceeds a threshold.

No report writes or commits. Each accepts an optional `timeout` in seconds;
a query that runs past it raises Timeout.
"""

import calendar
import time
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from .errors import InvalidArgument, Timeout
from .models import Customer, Order, OrderLine, Product
from .schemas import DailyRevenue, HighSpender, TopSeller

CENT = Decimal("0.01")

# PostgreSQL SQLSTATE for a statement cancelled by statement_timeout
QUERY_CANCELED = "57014"


def _to_money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT)


def _was_cancelled(error: OperationalError) -> bool:
    if getattr(error.orig, "pgcode", None) == QUERY_CANCELED:
        return True
    return "interrupted" in str(error.orig).lower()


@contextmanager
def deadline(db: Session, timeout: Optional[float]):
    """
    Bound the queries run inside the block by `timeout` seconds.

    PostgreSQL gets a transaction-local statement_timeout, SQLite a progress
    handler that interrupts the running statement. The elapsed time is
    checked again when the block completes.
    """
    if timeout is None:
        yield
        return
    if timeout <= 0:
        raise InvalidArgument("timeout must be positive")

    started = time.monotonic()
    expires = started + timeout
    dialect = db.get_bind().dialect.name
    raw = None

    if dialect == "postgresql":
        db.execute(text(f"SET LOCAL statement_timeout = {max(int(timeout * 1000), 1)}"))
    elif dialect == "sqlite":
        raw = db.connection().connection.driver_connection
        raw.set_progress_handler(lambda: int(time.monotonic() > expires), 1000)

    try:
        yield
    except OperationalError as e:
        if _was_cancelled(e):
            db.rollback()
            raise Timeout(f"query exceeded its {timeout}s deadline") from e
        raise
    finally:
        if raw is not None:
            raw.set_progress_handler(None, 0)

    if dialect == "postgresql":
        db.execute(text("SET LOCAL statement_timeout = DEFAULT"))
    if time.monotonic() > expires:
        raise Timeout(f"query exceeded its {timeout}s deadline")


def _as_day(value, field: str) -> date:
    # Order dates are calendar days; a datetime is cut down to its date
    if isinstance(value, datetime):
        return value.date()
    if not isinstance(value, date):
        raise InvalidArgument(f"{field} must be a date")
    return value


def month_range(year: int, month: int) -> Tuple[date, date]:
    """First and last day of a calendar month, both inclusive."""
    if not 1 <= month <= 12:
        raise InvalidArgument(f"month must be between 1 and 12, got {month}")
    if not date.min.year <= year <= date.max.year:
        raise InvalidArgument(f"year must be between {date.min.year} and {date.max.year}, got {year}")
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def daily_revenue(db: Session, day: date, timeout: Optional[float] = None) -> DailyRevenue:
    """Sum of total_amount over the orders placed on `day`; zero when there are none."""
    day = _as_day(day, "day")
    with deadline(db, timeout):
        total = (
            db.query(func.sum(Order.total_amount))
            .filter(Order.order_date == day)
            .scalar()
        )
    return DailyRevenue(day=day, revenue=_to_money(total))


def top_selling_products(
    db: Session,
    start: date,
    end: date,
    limit: Optional[int] = None,
    timeout: Optional[float] = None,
) -> List[TopSeller]:
    """
    Units sold per product for orders dated within [start, end], highest
    first, ties broken by ascending product id.
    """
    start = _as_day(start, "start")
    end = _as_day(end, "end")
    if start > end:
        raise InvalidArgument(f"start {start} is after end {end}")
    if limit is not None and limit < 1:
        raise InvalidArgument("limit must be positive")

    total = func.sum(OrderLine.quantity).label("total_quantity_sold")
    query = (
        db.query(Product.id, Product.name, total)
        .join(OrderLine, OrderLine.product_id == Product.id)
        .join(Order, OrderLine.order_id == Order.id)
        .filter(Order.order_date >= start, Order.order_date <= end)
        .group_by(Product.id, Product.name)
        .order_by(total.desc(), Product.id.asc())
    )
    if limit is not None:
        query = query.limit(limit)

    with deadline(db, timeout):
        rows = query.all()
    return [
        TopSeller(product_id=row.id, name=row.name, total_quantity_sold=int(row.total_quantity_sold))
        for row in rows
    ]


def high_spending_customers(
    db: Session,
    window_days: int,
    threshold,
    now: Optional[date] = None,
    timeout: Optional[float] = None,
) -> List[HighSpender]:
    """
    Customers whose orders dated within the last `window_days` days (up to
    and including `now`) sum to strictly more than `threshold`, biggest
    spenders first.
    """
    if isinstance(window_days, bool) or not isinstance(window_days, int) or window_days <= 0:
        raise InvalidArgument("window_days must be a positive integer")
    try:
        threshold = Decimal(str(threshold))
    except ArithmeticError:
        raise InvalidArgument("threshold must be a number") from None
    if not threshold.is_finite() or threshold < 0:
        raise InvalidArgument("threshold must be non-negative")

    today = _as_day(now, "now") if now is not None else date.today()
    since = today - timedelta(days=window_days)

    spent = func.sum(Order.total_amount).label("total_spent")
    query = (
        db.query(Customer.id, Customer.first_name, Customer.last_name, Customer.email, spent)
        .join(Order, Order.customer_id == Customer.id)
        .filter(Order.order_date >= since, Order.order_date <= today)
        .group_by(Customer.id, Customer.first_name, Customer.last_name, Customer.email)
        .having(func.sum(Order.total_amount) > threshold)
        .order_by(spent.desc(), Customer.id.asc())
    )
    with deadline(db, timeout):
        rows = query.all()
    return [
        HighSpender(
            customer_id=row.id,
            first_name=row.first_name,
            last_name=row.last_name,
            email=row.email,
            total_spent=_to_money(row.total_spent),
        )
        for row in rows
    ]
