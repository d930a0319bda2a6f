import itertools
from datetime import date

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from retail_pos.db import enable_sqlite_foreign_keys, init_db
from retail_pos.models import InventoryBatch, Product


_codes = itertools.count(1)


def memory_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    init_db(engine)
    return engine


def add_product(s: Session, name="Paracetamol", price=100.0, cgst=9.0, sgst=9.0, barcode=None, category="medical", hsn="30049099"):
    p = Product(
        name=name,
        category=category,
        price=price,
        barcode=barcode or f"890123{next(_codes):07d}",
        hsn=hsn,
        cgst=cgst,
        sgst=sgst,
    )
    s.add(p)
    s.commit()
    s.refresh(p)
    return p


def add_batch(s: Session, product_id, location, qty, batch_id=None, expiry=None, purchased=None, threshold=5):
    b = InventoryBatch(
        product_id=product_id,
        location=location,
        batch_id=batch_id or f"B-{location}",
        quantity=qty,
        low_stock_threshold=threshold,
        expiry_date=expiry,
        purchase_date=purchased or date(2024, 1, 1),
    )
    s.add(b)
    s.commit()
    s.refresh(b)
    return b
