# shop_service/store.py

"""
Entity store for categories, products, customers, orders and order lines.

Every function takes the SQLAlchemy session as its first argument. Writes go
through the checks in integrity.py and run as one transaction each; reads
never commit.
"""

import hashlib
import hmac
import logging
import secrets
from collections import OrderedDict
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session, selectinload

from .errors import ForeignKeyViolation, InsufficientStock, InvalidArgument, NotFound
from .integrity import atomic, ensure_unreferenced, require_exists, require_unique_email
from .models import Category, Customer, Order, OrderLine, Product

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
PBKDF2_ITERATIONS = 240_000


def _get_or_404(db: Session, model, record_id):
    record = db.get(model, record_id)
    if record is None:
        raise NotFound(f"{model.__tablename__} with id {record_id} not found")
    return record


def _require_name(value, field="name"):
    if value is None or not str(value).strip():
        raise InvalidArgument(f"{field} must not be empty")


def _money(value, field="price") -> Decimal:
    try:
        amount = Decimal(str(value))
    except ArithmeticError:
        raise InvalidArgument(f"{field} must be a decimal number") from None
    if not amount.is_finite() or amount < 0:
        raise InvalidArgument(f"{field} must be non-negative")
    return amount.quantize(CENT)


def _stock(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidArgument("stock_quantity must be a non-negative integer")
    return value


# -----------------------------
# Categories
# -----------------------------
def create_category(db: Session, name: str) -> Category:
    _require_name(name)
    with atomic(db):
        category = Category(name=name)
        db.add(category)
    db.refresh(category)
    return category


def get_category(db: Session, category_id: int) -> Category:
    return _get_or_404(db, Category, category_id)


def list_categories(db: Session, skip: int = 0, limit: int = 100) -> List[Category]:
    return db.query(Category).order_by(Category.id).offset(skip).limit(limit).all()


def update_category(db: Session, category_id: int, name: Optional[str] = None) -> Category:
    category = get_category(db, category_id)
    if name is not None:
        _require_name(name)
        with atomic(db):
            category.name = name
        db.refresh(category)
    return category


def delete_category(db: Session, category_id: int) -> None:
    category = get_category(db, category_id)
    with atomic(db):
        ensure_unreferenced(db, category, Product, Product.category_id)
        db.delete(category)


# -----------------------------
# Products
# -----------------------------
def create_product(
    db: Session,
    name: str,
    price,
    stock_quantity: int = 0,
    description: Optional[str] = None,
    category_id: Optional[int] = None,
) -> Product:
    _require_name(name)
    product = Product(
        name=name,
        description=description,
        price=_money(price),
        stock_quantity=_stock(stock_quantity),
        category_id=category_id,
    )
    with atomic(db):
        if category_id is not None:
            require_exists(db, Category, category_id)
        db.add(product)
    db.refresh(product)
    logger.debug("Created product %s (%s)", product.id, product.name)
    return product


def get_product(db: Session, product_id: int) -> Product:
    return _get_or_404(db, Product, product_id)


def list_products(
    db: Session,
    skip: int = 0,
    limit: int = 100,
    search: Optional[str] = None,
    category_id: Optional[int] = None,
) -> List[Product]:
    """
    List products ordered by id, optionally filtered by category and by a
    case-insensitive match on name or description.
    """
    query = db.query(Product)
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            (Product.name.ilike(pattern)) | (Product.description.ilike(pattern))
        )
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    return query.order_by(Product.id).offset(skip).limit(limit).all()


_PRODUCT_FIELDS = ("name", "description", "price", "stock_quantity", "category_id")


def update_product(db: Session, product_id: int, **changes) -> Product:
    """
    Apply a partial update. Unknown fields, empty names, negative prices and
    negative stock raise InvalidArgument; a missing category raises
    ForeignKeyViolation. Nothing is written unless every change is valid.
    """
    unknown = set(changes) - set(_PRODUCT_FIELDS)
    if unknown:
        raise InvalidArgument(f"Unknown product field(s): {', '.join(sorted(unknown))}")
    if "name" in changes:
        _require_name(changes["name"])
    if "price" in changes:
        changes["price"] = _money(changes["price"])
    if "stock_quantity" in changes:
        _stock(changes["stock_quantity"])

    product = get_product(db, product_id)
    with atomic(db):
        if changes.get("category_id") is not None:
            require_exists(db, Category, changes["category_id"])
        for field, value in changes.items():
            setattr(product, field, value)
    db.refresh(product)
    return product


def delete_product(db: Session, product_id: int) -> None:
    product = get_product(db, product_id)
    with atomic(db):
        ensure_unreferenced(db, product, OrderLine, OrderLine.product_id)
        db.delete(product)


# -----------------------------
# Customers
# -----------------------------
def hash_password(password: str, salt: Optional[str] = None) -> str:
    """Return a `salt$digest` string using PBKDF2-SHA256."""
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("utf-8"), PBKDF2_ITERATIONS
    )
    return f"{salt}${digest.hex()}"


def verify_password(customer: Customer, password: str) -> bool:
    salt, _, _ = customer.password.partition("$")
    return hmac.compare_digest(customer.password, hash_password(password, salt))


def register_customer(
    db: Session, first_name: str, last_name: str, email: str, password: str
) -> Customer:
    for field, value in (("first_name", first_name), ("last_name", last_name), ("email", email)):
        _require_name(value, field)
    if not password:
        raise InvalidArgument("password must not be empty")
    customer = Customer(
        first_name=first_name,
        last_name=last_name,
        email=email,
        password=hash_password(password),
    )
    with atomic(db):
        require_unique_email(db, email)
        db.add(customer)
    db.refresh(customer)
    logger.debug("Registered customer %s", customer.id)
    return customer


def get_customer(db: Session, customer_id: int) -> Customer:
    return _get_or_404(db, Customer, customer_id)


def get_customer_by_email(db: Session, email: str) -> Customer:
    customer = db.query(Customer).filter(Customer.email == email).first()
    if customer is None:
        raise NotFound(f"customer with email '{email}' not found")
    return customer


def list_customers(db: Session, skip: int = 0, limit: int = 100) -> List[Customer]:
    return db.query(Customer).order_by(Customer.id).offset(skip).limit(limit).all()


def update_customer(db: Session, customer_id: int, **changes) -> Customer:
    unknown = set(changes) - {"first_name", "last_name", "email", "password"}
    if unknown:
        raise InvalidArgument(f"Unknown customer field(s): {', '.join(sorted(unknown))}")
    for field in ("first_name", "last_name", "email"):
        if field in changes:
            _require_name(changes[field], field)
    if "password" in changes:
        if not changes["password"]:
            raise InvalidArgument("password must not be empty")
        changes["password"] = hash_password(changes["password"])

    customer = get_customer(db, customer_id)
    with atomic(db):
        if "email" in changes and changes["email"] != customer.email:
            require_unique_email(db, changes["email"], exclude_id=customer.id)
        for field, value in changes.items():
            setattr(customer, field, value)
    db.refresh(customer)
    return customer


def delete_customer(db: Session, customer_id: int) -> None:
    customer = get_customer(db, customer_id)
    with atomic(db):
        ensure_unreferenced(db, customer, Order, Order.customer_id)
        db.delete(customer)


# -----------------------------
# Orders
# -----------------------------
def _merge_items(items: Iterable[Tuple[int, int]]) -> "OrderedDict[int, int]":
    """Sum the requested quantity per product, keeping first-seen order."""
    merged = OrderedDict()
    for product_id, quantity in items:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidArgument(f"quantity for product {product_id} must be a positive integer")
        merged[product_id] = merged.get(product_id, 0) + quantity
    if not merged:
        raise InvalidArgument("an order needs at least one item")
    return merged


def create_order(
    db: Session,
    customer_id: int,
    items: Iterable[Tuple[int, int]],
    order_date: Optional[date] = None,
) -> Order:
    """
    Place an order for `customer_id` from (product_id, quantity) pairs.

    The customer and every product are validated and stock is checked before
    anything changes. Prices are snapshotted into the lines, the total is the
    sum of quantity * unit_price, and stock is decremented only after all
    checks pass. The order and its lines commit together or not at all.
    """
    items = list(items)
    requested = _merge_items(items)

    with atomic(db):
        require_exists(db, Customer, customer_id)

        # Lock product rows in id order so concurrent orders serialize without deadlocking
        locked = {
            p.id: p
            for p in db.query(Product)
            .filter(Product.id.in_(list(requested)))
            .order_by(Product.id)
            .with_for_update()
            .populate_existing()
            .all()
        }
        for product_id, quantity in requested.items():
            product = locked.get(product_id)
            if product is None:
                raise ForeignKeyViolation(Product.__tablename__, product_id)
            if product.stock_quantity < quantity:
                raise InsufficientStock(product_id, quantity, product.stock_quantity)

        order = Order(customer_id=customer_id, order_date=order_date or date.today())
        total = Decimal("0")
        for product_id, quantity in items:
            unit_price = Decimal(locked[product_id].price).quantize(CENT)
            order.lines.append(
                OrderLine(product_id=product_id, quantity=quantity, unit_price=unit_price)
            )
            total += unit_price * quantity
        order.total_amount = total.quantize(CENT)

        for product_id, quantity in requested.items():
            locked[product_id].stock_quantity -= quantity
        db.add(order)

    order = get_order(db, order.id)
    logger.debug("Created order %s for customer %s, total %s", order.id, customer_id, order.total_amount)
    return order


def get_order(db: Session, order_id: int) -> Order:
    order = (
        db.query(Order)
        .options(selectinload(Order.lines))
        .filter(Order.id == order_id)
        .first()
    )
    if order is None:
        raise NotFound(f"orders with id {order_id} not found")
    return order


def list_orders(
    db: Session, customer_id: Optional[int] = None, skip: int = 0, limit: int = 100
) -> List[Order]:
    query = db.query(Order).options(selectinload(Order.lines))
    if customer_id is not None:
        query = query.filter(Order.customer_id == customer_id)
    return query.order_by(Order.id).offset(skip).limit(limit).all()


def list_order_lines(db: Session, order_id: int) -> List[OrderLine]:
    get_order(db, order_id)
    return db.query(OrderLine).filter(OrderLine.order_id == order_id).order_by(OrderLine.id).all()


def delete_order(db: Session, order_id: int, restock: bool = False) -> None:
    """
    Delete an order together with its lines. With restock=True the order is
    treated as cancelled and each line's quantity goes back to its product.
    """
    order = get_order(db, order_id)
    with atomic(db):
        if restock:
            for line in order.lines:
                product = db.get(
                    Product, line.product_id, with_for_update=True, populate_existing=True
                )
                product.stock_quantity += line.quantity
        db.delete(order)
