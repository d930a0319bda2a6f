from __future__ import annotations
from datetime import date, datetime
from typing import Optional

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import SQLModel, Field


PAYMENT_METHODS = ("cash", "upi", "card")
STORE_SETTINGS_ID = "storeInfo"


def _now() -> datetime:
    return datetime.now().astimezone()


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    password_hash: str
    role: str = "BILLING"  # ADMIN, BILLING, INVENTORY
    is_active: bool = True


class Product(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    category: str = Field(default="", index=True)
    price: float
    barcode: str = Field(index=True, unique=True)
    hsn: str = ""
    cgst: float = 0.0
    sgst: float = 0.0


class InventoryBatch(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("product_id", "location", "batch_id", name="uq_inventory_batch"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="product.id", index=True)
    location: str
    batch_id: str
    quantity: int = 0
    low_stock_threshold: int = 5
    expiry_date: Optional[date] = None
    purchase_date: Optional[date] = None


class Bill(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    bill_no: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=_now, sa_type=DateTime(timezone=True), index=True)
    subtotal: float = 0.0
    cgst_total: float = 0.0
    sgst_total: float = 0.0
    tax: float = 0.0
    total: float = 0.0
    payment_method: str = "cash"  # cash, upi, card
    payment_ref: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    customer_address: Optional[str] = None


# product_id on bill rows is a snapshot reference, not a foreign key:
# deleting a product must not touch sales history.
class BillLine(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    bill_id: int = Field(foreign_key="bill.id", index=True)
    line_no: int
    product_id: int = Field(index=True)
    name: str
    price: float
    hsn: str = ""
    cgst: float = 0.0
    sgst: float = 0.0
    quantity: int
    amount: float
    batch_id: Optional[str] = None


class BillAllocation(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    bill_id: int = Field(foreign_key="bill.id", index=True)
    line_no: int
    product_id: int = Field(index=True)
    location: str
    batch_id: str
    quantity: int


class StoreSettings(SQLModel, table=True):
    id: str = Field(default=STORE_SETTINGS_ID, primary_key=True)
    name: str = "My Retail Store"
    address: str = ""
    phone: str = ""
    email: str = ""
    gst: str = ""
    upi_id: str = ""
    logo: str = ""  # data URL
    bill_width: float = 80.0  # mm
    bill_height: float = 140.0  # mm
