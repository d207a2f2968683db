# shop_service/main.py

"""
FastAPI Shop Service API.
Manages categories, products, customers and orders on top of the entity
store, and exposes the three sales reports. Integrity errors raised by the
store are turned into HTTP responses by the exception handler below.
"""
import logging
import os
import sys
import time
from datetime import date
from decimal import Decimal
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from . import reports, store
from .db import REPORT_TIMEOUT_SECONDS, Base, engine, get_db
from .errors import (
    ForeignKeyViolation,
    InsufficientStock,
    InvalidArgument,
    NotFound,
    ReferentialConflict,
    ShopError,
    Timeout,
    UniqueConstraintViolation,
)
from .schemas import (
    CategoryCreate,
    CategoryResponse,
    CategoryUpdate,
    CustomerCreate,
    CustomerResponse,
    CustomerUpdate,
    DailyRevenue,
    HighSpender,
    OrderCreate,
    OrderLineResponse,
    OrderResponse,
    ProductCreate,
    ProductResponse,
    ProductUpdate,
    TopSeller,
)

# -----------------------------
# Configure Logging
# -----------------------------
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

# Suppress noisy logs from third-party libraries for cleaner output
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("uvicorn.error").setLevel(logging.INFO)


# -----------------------------
# FastAPI App Initialization
# -----------------------------
app = FastAPI(
    title="Shop Service API",
    description="Catalog, customers, orders and sales reports for a small e-commerce shop",
    version="1.0.0",
)

# Enable CORS (for frontend dev/testing)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Use specific origins in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_STATUS = {
    NotFound: status.HTTP_404_NOT_FOUND,
    ForeignKeyViolation: status.HTTP_422_UNPROCESSABLE_ENTITY,
    UniqueConstraintViolation: status.HTTP_409_CONFLICT,
    ReferentialConflict: status.HTTP_409_CONFLICT,
    InsufficientStock: status.HTTP_409_CONFLICT,
    InvalidArgument: status.HTTP_400_BAD_REQUEST,
    Timeout: status.HTTP_504_GATEWAY_TIMEOUT,
}


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    status_code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    if status_code == status.HTTP_404_NOT_FOUND:
        logger.warning(f"{request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {type(exc).__name__}: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    # The request's session is rolled back when get_db closes it
    logger.error(f"Unexpected error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An unexpected error occurred."},
    )


# --- FastAPI Event Handlers ---
@app.on_event("startup")
async def startup_event():
    """
    Ensures database tables are created (if not exist).
    Includes a retry mechanism for database connection robustness.
    """
    max_retries = 10
    retry_delay_seconds = 5
    for i in range(max_retries):
        try:
            logger.info(
                f"Attempting to connect to the database and create tables (attempt {i+1}/{max_retries})..."
            )
            Base.metadata.create_all(bind=engine)
            logger.info("Successfully connected to the database and ensured tables exist.")
            break
        except OperationalError as e:
            logger.warning(f"Failed to connect to the database: {e}")
            if i < max_retries - 1:
                logger.info(f"Retrying in {retry_delay_seconds} seconds...")
                time.sleep(retry_delay_seconds)
            else:
                logger.critical(
                    f"Failed to connect to the database after {max_retries} attempts. Exiting application."
                )
                sys.exit(1)


@app.get("/", status_code=status.HTTP_200_OK, summary="Root endpoint")
async def read_root():
    return {"message": "Welcome to the Shop Service!"}


@app.get("/health", status_code=status.HTTP_200_OK, summary="Health check endpoint")
async def health_check():
    """
    A simple health check endpoint to verify the service is running.
    """
    return {"status": "ok", "service": "shop-service"}


# -----------------------------
# Categories
# -----------------------------
@app.post(
    "/categories/",
    response_model=CategoryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new category",
)
def create_category(category: CategoryCreate, db: Session = Depends(get_db)):
    logger.info(f"Creating category: {category.name}")
    return store.create_category(db, category.name)


@app.get("/categories/", response_model=List[CategoryResponse], summary="List categories")
def list_categories(
    db: Session = Depends(get_db),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=100),
):
    return store.list_categories(db, skip=skip, limit=limit)


@app.get("/categories/{category_id}", response_model=CategoryResponse, summary="Retrieve a category by ID")
def get_category(category_id: int, db: Session = Depends(get_db)):
    return store.get_category(db, category_id)


@app.put("/categories/{category_id}", response_model=CategoryResponse, summary="Rename a category")
def update_category(category_id: int, updated: CategoryUpdate, db: Session = Depends(get_db)):
    logger.info(f"Updating category {category_id}: {updated.model_dump(exclude_unset=True)}")
    return store.update_category(db, category_id, **updated.model_dump(exclude_unset=True))


@app.delete(
    "/categories/{category_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a category that no product references",
)
def delete_category(category_id: int, db: Session = Depends(get_db)):
    logger.info(f"Attempting to delete category with ID: {category_id}")
    store.delete_category(db, category_id)
    logger.info(f"Category (ID: {category_id}) deleted successfully.")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# -----------------------------
# Products
# -----------------------------
@app.post(
    "/products/",
    response_model=ProductResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new product",
)
def create_product(product: ProductCreate, db: Session = Depends(get_db)):
    """
    Creates a new product entry.

    - Validates name, description, price and stock through `ProductCreate`.
    - A `category_id` that does not exist is rejected with 422.
    """
    logger.info(f"Creating product: {product.name}")
    db_product = store.create_product(db, **product.model_dump())
    logger.info(f"Product '{db_product.name}' (ID: {db_product.id}) created successfully.")
    return db_product


@app.get(
    "/products/",
    response_model=List[ProductResponse],
    summary="List all products with pagination and search",
)
def list_products(
    db: Session = Depends(get_db),
    skip: int = Query(0, ge=0, description="Number of items to skip (for pagination)."),
    limit: int = Query(100, ge=1, le=100, description="Maximum number of items to return."),
    search: Optional[str] = Query(
        None,
        max_length=255,
        description="Search term for product name or description (case-insensitive).",
    ),
    category_id: Optional[int] = Query(None, description="Only products of this category."),
):
    logger.info(f"Listing products with skip={skip}, limit={limit}, search='{search}'")
    products = store.list_products(db, skip=skip, limit=limit, search=search, category_id=category_id)
    logger.info(f"Retrieved {len(products)} products (skip={skip}, limit={limit}).")
    return products


@app.get("/products/{product_id}", response_model=ProductResponse, summary="Retrieve a product by ID")
def get_product(product_id: int, db: Session = Depends(get_db)):
    logger.info(f"Fetching product with ID: {product_id}")
    return store.get_product(db, product_id)


@app.put("/products/{product_id}", response_model=ProductResponse, summary="Update an existing product")
def update_product(product_id: int, updated: ProductUpdate, db: Session = Depends(get_db)):
    """
    Updates only the fields present in the request body.
    """
    changes = updated.model_dump(exclude_unset=True)
    logger.info(f"Updating product with ID: {product_id} with data: {changes}")
    product = store.update_product(db, product_id, **changes)
    logger.info(f"Product '{product.name}' (ID: {product_id}) updated successfully.")
    return product


@app.delete(
    "/products/{product_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a product no order line references",
)
def delete_product(product_id: int, db: Session = Depends(get_db)):
    logger.info(f"Attempting to delete product with ID: {product_id}")
    store.delete_product(db, product_id)
    logger.info(f"Product (ID: {product_id}) deleted successfully.")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# -----------------------------
# Customers
# -----------------------------
@app.post(
    "/customers/",
    response_model=CustomerResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a customer",
)
def register_customer(customer: CustomerCreate, db: Session = Depends(get_db)):
    # Only the email is logged; the password never is
    logger.info(f"Registering customer: {customer.email}")
    return store.register_customer(db, **customer.model_dump())


@app.get("/customers/", response_model=List[CustomerResponse], summary="List customers")
def list_customers(
    db: Session = Depends(get_db),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=100),
):
    return store.list_customers(db, skip=skip, limit=limit)


@app.get("/customers/{customer_id}", response_model=CustomerResponse, summary="Retrieve a customer by ID")
def get_customer(customer_id: int, db: Session = Depends(get_db)):
    return store.get_customer(db, customer_id)


@app.put("/customers/{customer_id}", response_model=CustomerResponse, summary="Update a customer")
def update_customer(customer_id: int, updated: CustomerUpdate, db: Session = Depends(get_db)):
    changes = updated.model_dump(exclude_unset=True)
    logger.info(f"Updating customer {customer_id}: fields {sorted(changes)}")
    return store.update_customer(db, customer_id, **changes)


@app.delete(
    "/customers/{customer_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a customer without orders",
)
def delete_customer(customer_id: int, db: Session = Depends(get_db)):
    logger.info(f"Attempting to delete customer with ID: {customer_id}")
    store.delete_customer(db, customer_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# -----------------------------
# Orders
# -----------------------------
@app.post(
    "/orders/",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place an order",
)
def create_order(order: OrderCreate, db: Session = Depends(get_db)):
    """
    Places an order atomically.

    - The customer and every product must exist (422 otherwise).
    - Every product needs enough stock (409 otherwise); nothing is written on failure.
    - Unit prices are snapshotted from the current product prices.
    """
    logger.info(f"Placing order for customer {order.customer_id} with {len(order.items)} item(s)")
    db_order = store.create_order(
        db,
        order.customer_id,
        [(item.product_id, item.quantity) for item in order.items],
        order_date=order.order_date,
    )
    logger.info(f"Order {db_order.id} placed, total {db_order.total_amount}.")
    return db_order


@app.get("/orders/", response_model=List[OrderResponse], summary="List orders")
def list_orders(
    db: Session = Depends(get_db),
    customer_id: Optional[int] = Query(None, description="Only orders of this customer."),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=100),
):
    return store.list_orders(db, customer_id=customer_id, skip=skip, limit=limit)


@app.get("/orders/{order_id}", response_model=OrderResponse, summary="Retrieve an order with its lines")
def get_order(order_id: int, db: Session = Depends(get_db)):
    return store.get_order(db, order_id)


@app.get("/orders/{order_id}/lines", response_model=List[OrderLineResponse], summary="List an order's lines")
def list_order_lines(order_id: int, db: Session = Depends(get_db)):
    return store.list_order_lines(db, order_id)


@app.delete(
    "/orders/{order_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an order and its lines",
)
def delete_order(
    order_id: int,
    db: Session = Depends(get_db),
    restock: bool = Query(False, description="Return the ordered quantities to stock (cancellation)."),
):
    logger.info(f"Deleting order {order_id} (restock={restock})")
    store.delete_order(db, order_id, restock=restock)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# -----------------------------
# Reports
# -----------------------------
@app.get("/reports/daily-revenue", response_model=DailyRevenue, summary="Revenue for one day")
def daily_revenue(
    day: date,
    db: Session = Depends(get_db),
    timeout: float = Query(REPORT_TIMEOUT_SECONDS, gt=0, description="Deadline in seconds."),
):
    logger.info(f"Daily revenue report for {day}")
    return reports.daily_revenue(db, day, timeout=timeout)


@app.get("/reports/top-sellers", response_model=List[TopSeller], summary="Best-selling products in a date range")
def top_sellers(
    db: Session = Depends(get_db),
    start: Optional[date] = Query(None, description="First day, inclusive."),
    end: Optional[date] = Query(None, description="Last day, inclusive."),
    year: Optional[int] = Query(None, description="With `month`, report on that calendar month."),
    month: Optional[int] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    timeout: float = Query(REPORT_TIMEOUT_SECONDS, gt=0, description="Deadline in seconds."),
):
    if year is not None and month is not None:
        start, end = reports.month_range(year, month)
    if start is None or end is None:
        raise InvalidArgument("either start and end, or year and month, are required")
    logger.info(f"Top sellers report for {start}..{end}")
    return reports.top_selling_products(db, start, end, limit=limit, timeout=timeout)


@app.get(
    "/reports/high-spenders",
    response_model=List[HighSpender],
    summary="Customers spending more than a threshold in a trailing window",
)
def high_spenders(
    db: Session = Depends(get_db),
    window_days: int = Query(30, ge=1, description="Length of the trailing window in days."),
    threshold: Decimal = Query(Decimal("500"), ge=0, description="Strict lower bound on total spent."),
    timeout: float = Query(REPORT_TIMEOUT_SECONDS, gt=0, description="Deadline in seconds."),
):
    logger.info(f"High spenders report: window={window_days}d threshold={threshold}")
    return reports.high_spending_customers(db, window_days, threshold, timeout=timeout)
