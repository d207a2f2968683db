# shop_service/schemas.py

"""
Pydantic schemas for the shop service API.
These define the data structures for incoming requests and outgoing responses,
including the rows returned by the reports.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


# -----------------------------
# Category
# -----------------------------
class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, description="Name of the category.")


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255, description="New name of the category.")


class CategoryResponse(CategoryCreate):
    id: int = Field(..., description="Unique identifier of the category.")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# -----------------------------
# Product
# -----------------------------
# Used in POST /products/.
class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, description="Name of the product.")
    description: Optional[str] = Field(None, max_length=2000, description="Detailed description of the product.")
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2, description="Price of the product. Must be non-negative.")
    stock_quantity: int = Field(0, ge=0, description="Current stock quantity. Must be non-negative.")
    category_id: Optional[int] = Field(None, description="Category the product belongs to, if any.")


# All fields are Optional, allowing partial updates (PATCH-like behavior for PUT).
class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255, description="New name of the product.")
    description: Optional[str] = Field(None, max_length=2000, description="New detailed description of the product.")
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2, description="New price. Must be non-negative.")
    stock_quantity: Optional[int] = Field(None, ge=0, description="New stock quantity. Must be non-negative.")
    category_id: Optional[int] = Field(None, description="New category; null detaches the product.")


class ProductResponse(ProductCreate):
    id: int = Field(..., description="Unique identifier of the product.")
    created_at: Optional[datetime] = Field(None, description="Timestamp when the product was created.")
    updated_at: Optional[datetime] = Field(None, description="Timestamp when the product was last updated.")

    model_config = ConfigDict(from_attributes=True)


# -----------------------------
# Customer
# -----------------------------
class CustomerBase(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr = Field(..., description="Login email, unique across customers.")


class CustomerCreate(CustomerBase):
    password: str = Field(..., min_length=8, max_length=128, description="Plaintext password; stored hashed.")


class CustomerUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=8, max_length=128)


# The password digest is never part of a response.
class CustomerResponse(CustomerBase):
    id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# -----------------------------
# Orders
# -----------------------------
class OrderItemIn(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1, description="Units ordered. Must be at least 1.")


class OrderCreate(BaseModel):
    customer_id: int
    order_date: Optional[date] = Field(None, description="Defaults to today.")
    items: List[OrderItemIn] = Field(..., min_length=1)


class OrderLineResponse(BaseModel):
    id: int
    product_id: int
    quantity: int
    unit_price: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderResponse(BaseModel):
    id: int
    customer_id: int
    order_date: date
    total_amount: Decimal
    lines: List[OrderLineResponse] = []
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# -----------------------------
# Reports
# -----------------------------
class DailyRevenue(BaseModel):
    day: date
    revenue: Decimal


class TopSeller(BaseModel):
    product_id: int
    name: str
    total_quantity_sold: int


class HighSpender(BaseModel):
    customer_id: int
    first_name: str
    last_name: str
    email: str
    total_spent: Decimal
