from __future__ import annotations
from datetime import date
from typing import List, Optional

from sqlmodel import SQLModel


class ProductIn(SQLModel):
    name: str
    category: str = ""
    price: float
    barcode: str
    hsn: str = ""
    cgst: float = 0.0
    sgst: float = 0.0


class ProductUpdate(SQLModel):
    name: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = None
    barcode: Optional[str] = None
    hsn: Optional[str] = None
    cgst: Optional[float] = None
    sgst: Optional[float] = None


class BatchIn(SQLModel):
    product_id: int
    quantity: int
    location: str
    batch_id: str = ""
    low_stock_threshold: int = 5
    expiry_date: Optional[date] = None
    purchase_date: Optional[date] = None


class BatchUpdate(SQLModel):
    low_stock_threshold: Optional[int] = None
    expiry_date: Optional[date] = None
    purchase_date: Optional[date] = None


class CartItemIn(SQLModel):
    product_id: int
    quantity: int = 1


class CustomerIn(SQLModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None


class CheckoutIn(SQLModel):
    items: List[CartItemIn]
    payment_method: str = "cash"
    payment_ref: Optional[str] = None
    customer: Optional[CustomerIn] = None


class SettingsIn(SQLModel):
    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    gst: Optional[str] = None
    upi_id: Optional[str] = None
    logo: Optional[str] = None
    bill_width: Optional[float] = None
    bill_height: Optional[float] = None
