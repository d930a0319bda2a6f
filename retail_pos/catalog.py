from __future__ import annotations
import logging
from typing import List, Optional

from sqlmodel import Session, select

from retail_pos.errors import NotFoundError, ValidationError
from retail_pos.models import InventoryBatch, Product
from retail_pos.persistence import commit

logger = logging.getLogger(__name__)

_EDITABLE = ("name", "category", "price", "barcode", "hsn", "cgst", "sgst")


def _clean(fields: dict) -> dict:
    out = dict(fields)
    for k in ("name", "category", "barcode", "hsn"):
        if k in out and out[k] is not None:
            out[k] = str(out[k]).strip()
    return out


def validate_product_fields(fields: dict) -> None:
    if "name" in fields and not fields["name"]:
        raise ValidationError("Product name is required")
    if "barcode" in fields and not fields["barcode"]:
        raise ValidationError("Barcode is required")
    if "price" in fields:
        if fields["price"] is None or float(fields["price"]) <= 0:
            raise ValidationError("Price must be greater than zero")
    for k in ("cgst", "sgst"):
        if k in fields and fields[k] is not None and float(fields[k]) < 0:
            raise ValidationError(f"{k.upper()} cannot be negative")


def _barcode_taken(session: Session, barcode: str, exclude_id: Optional[int] = None) -> bool:
    q = select(Product).where(Product.barcode == barcode)
    if exclude_id is not None:
        q = q.where(Product.id != exclude_id)
    return session.exec(q).first() is not None


def get_product(session: Session, product_id: int) -> Product:
    p = session.get(Product, product_id)
    if not p:
        raise NotFoundError(f"Product {product_id} not found")
    return p


def find_by_barcode(session: Session, barcode: str) -> Optional[Product]:
    return session.exec(select(Product).where(Product.barcode == barcode.strip())).first()


def list_products(session: Session, category: str = "", query: str = "") -> List[Product]:
    """Products ordered by name, optionally narrowed by category and a search term.

    The category match is case-insensitive and exact; the search term matches
    a name substring (case-insensitive) or a barcode substring.
    """
    rows = session.exec(select(Product).order_by(Product.name)).all()
    if category:
        cat = category.lower()
        rows = [p for p in rows if (p.category or "").lower() == cat]
    if query:
        q = query.lower()
        rows = [p for p in rows if q in p.name.lower() or query in p.barcode]
    return rows


def create_product(session: Session, **fields) -> Product:
    fields = _clean({k: v for k, v in fields.items() if k in _EDITABLE})
    for required in ("name", "price", "barcode"):
        fields.setdefault(required, None)
    validate_product_fields(fields)
    if _barcode_taken(session, fields["barcode"]):
        raise ValidationError("Barcode already exists")

    p = Product(**fields)
    session.add(p)
    commit(session)
    session.refresh(p)
    logger.info("Product %s created (barcode=%s)", p.id, p.barcode)
    return p


def update_product(session: Session, product_id: int, **fields) -> Product:
    p = get_product(session, product_id)
    fields = _clean({k: v for k, v in fields.items() if k in _EDITABLE and v is not None})
    validate_product_fields(fields)
    if "barcode" in fields and _barcode_taken(session, fields["barcode"], exclude_id=p.id):
        raise ValidationError("Barcode already exists")

    for k, v in fields.items():
        setattr(p, k, v)
    session.add(p)
    commit(session)
    session.refresh(p)
    return p


def delete_product(session: Session, product_id: int) -> None:
    p = get_product(session, product_id)
    for b in session.exec(select(InventoryBatch).where(InventoryBatch.product_id == product_id)).all():
        session.delete(b)
    session.flush()
    session.delete(p)
    commit(session)
    logger.info("Product %s deleted with its inventory batches", product_id)
