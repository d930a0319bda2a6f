from __future__ import annotations
import enum
import logging
import time
from datetime import date, timedelta
from typing import List, Optional, Tuple

from sqlmodel import Session, select

from retail_pos import config
from retail_pos.errors import InsufficientStock, NotFoundError, ValidationError
from retail_pos.models import InventoryBatch, Product
from retail_pos.persistence import commit

logger = logging.getLogger(__name__)


class AllocationPolicy(str, enum.Enum):
    FEFO = "FEFO"
    FIRST_SEEN = "FIRST_SEEN"


def default_policy() -> AllocationPolicy:
    return AllocationPolicy(config.ALLOCATION_POLICY)


def default_batch_id() -> str:
    return f"BATCH-{str(int(time.time() * 1000))[-6:]}"


def _fefo_key(b: InventoryBatch):
    return (
        b.expiry_date is None,
        b.expiry_date or date.max,
        b.purchase_date is None,
        b.purchase_date or date.max,
        b.id or 0,
    )


def order_batches(batches: List[InventoryBatch], policy: AllocationPolicy) -> List[InventoryBatch]:
    if policy == AllocationPolicy.FEFO:
        return sorted(batches, key=_fefo_key)
    return sorted(batches, key=lambda b: b.id or 0)


def is_low_stock(batch: InventoryBatch) -> bool:
    return batch.quantity <= batch.low_stock_threshold


def is_expired(batch: InventoryBatch, today: Optional[date] = None) -> bool:
    if batch.expiry_date is None:
        return False
    return batch.expiry_date < (today or date.today())


def is_expiring_soon(batch: InventoryBatch, today: Optional[date] = None, days: Optional[int] = None) -> bool:
    if batch.expiry_date is None:
        return False
    today = today or date.today()
    window = config.EXPIRY_WARNING_DAYS if days is None else days
    return not is_expired(batch, today) and batch.expiry_date < today + timedelta(days=window)


def expiry_status(batch: InventoryBatch, today: Optional[date] = None) -> str:
    if is_expired(batch, today):
        return "expired"
    if is_expiring_soon(batch, today):
        return "expiring"
    return "ok"


def plan_allocation(batches: List[InventoryBatch], product_id: int, quantity: int) -> List[Tuple[InventoryBatch, int]]:
    """Greedy deduction plan over already-ordered batches.

    Takes min(batch.quantity, remaining) from each batch in turn. Nothing is
    mutated; raises InsufficientStock when the batches run out first.
    """
    remaining = quantity
    plan: List[Tuple[InventoryBatch, int]] = []
    for b in batches:
        if remaining == 0:
            break
        take = min(b.quantity, remaining)
        if take > 0:
            plan.append((b, take))
            remaining -= take
    if remaining > 0:
        raise InsufficientStock(product_id, shortfall=remaining, available=quantity - remaining)
    return plan


class InventoryLedger:
    """Per-(product, location, batch) stock records.

    The allocation order is fixed at construction by ``policy``. Every batch
    counts towards availability and allocation, expired ones included, unless
    ``include_expired`` is turned off (``EXCLUDE_EXPIRED_STOCK``).
    """

    def __init__(
        self,
        session: Session,
        policy: Optional[AllocationPolicy] = None,
        include_expired: Optional[bool] = None,
        today: Optional[date] = None,
    ):
        self.session = session
        self.policy = AllocationPolicy(policy) if policy else default_policy()
        self.include_expired = not config.EXCLUDE_EXPIRED_STOCK if include_expired is None else include_expired
        self._today = today

    @property
    def today(self) -> date:
        return self._today or date.today()

    def _query(self, product_id: Optional[int] = None, lock: bool = False):
        q = select(InventoryBatch)
        if product_id is not None:
            q = q.where(InventoryBatch.product_id == product_id)
        if lock:
            q = q.with_for_update()
        return q

    def list_batches(
        self,
        product_id: Optional[int] = None,
        include_expired: Optional[bool] = None,
        lock: bool = False,
    ) -> List[InventoryBatch]:
        show_expired = self.include_expired if include_expired is None else include_expired
        rows = self.session.exec(self._query(product_id, lock=lock)).all()
        if not show_expired:
            rows = [b for b in rows if not is_expired(b, self.today)]
        return order_batches(rows, self.policy)

    def get_batch(self, product_id: int, location: str, batch_id: str) -> InventoryBatch:
        b = self.session.exec(
            select(InventoryBatch).where(
                InventoryBatch.product_id == product_id,
                InventoryBatch.location == location,
                InventoryBatch.batch_id == batch_id,
            )
        ).first()
        if not b:
            raise NotFoundError(f"Batch {batch_id} at {location} not found for product_id={product_id}")
        return b

    def available(self, product_id: int) -> int:
        return sum(b.quantity for b in self.list_batches(product_id))

    def add_batch(
        self,
        product_id: int,
        quantity: int,
        location: str,
        batch_id: str = "",
        low_stock_threshold: int = 5,
        expiry_date: Optional[date] = None,
        purchase_date: Optional[date] = None,
    ) -> InventoryBatch:
        location = (location or "").strip()
        batch_id = (batch_id or "").strip() or default_batch_id()
        if int(quantity) <= 0:
            raise ValidationError("Quantity must be greater than zero")
        if not location:
            raise ValidationError("Location is required")
        if int(low_stock_threshold) < 0:
            raise ValidationError("Low stock threshold cannot be negative")
        if not self.session.get(Product, product_id):
            raise NotFoundError(f"Product {product_id} not found")
        try:
            self.get_batch(product_id, location, batch_id)
        except NotFoundError:
            pass
        else:
            raise ValidationError(f"Batch {batch_id} already exists at {location}")

        b = InventoryBatch(
            product_id=product_id,
            location=location,
            batch_id=batch_id,
            quantity=int(quantity),
            low_stock_threshold=int(low_stock_threshold),
            expiry_date=expiry_date,
            purchase_date=purchase_date or date.today(),
        )
        self.session.add(b)
        commit(self.session)
        self.session.refresh(b)
        logger.info("Added %s units of product_id=%s as %s at %s", b.quantity, product_id, batch_id, location)
        return b

    def update_batch(self, batch_pk: int, **fields) -> InventoryBatch:
        b = self.session.get(InventoryBatch, batch_pk)
        if not b:
            raise NotFoundError(f"Inventory batch {batch_pk} not found")
        if "low_stock_threshold" in fields and fields["low_stock_threshold"] is not None:
            if int(fields["low_stock_threshold"]) < 0:
                raise ValidationError("Low stock threshold cannot be negative")
            b.low_stock_threshold = int(fields["low_stock_threshold"])
        if "expiry_date" in fields:
            b.expiry_date = fields["expiry_date"]
        if "purchase_date" in fields:
            b.purchase_date = fields["purchase_date"]
        self.session.add(b)
        commit(self.session)
        self.session.refresh(b)
        return b

    def adjust(self, product_id: int, location: str, batch_id: str, delta: int) -> InventoryBatch:
        b = self.get_batch(product_id, location, batch_id)
        new_qty = b.quantity + int(delta)
        if new_qty < 0:
            raise InsufficientStock(product_id, shortfall=-new_qty, available=b.quantity)
        b.quantity = new_qty
        self.session.add(b)
        commit(self.session)
        self.session.refresh(b)
        logger.info(
            "Adjusted %s/%s/%s by %+d -> %s",
            product_id,
            location,
            batch_id,
            int(delta),
            new_qty,
            extra={"product_id": product_id, "location": location, "batch_id": batch_id},
        )
        return b

    def plan(self, product_id: int, quantity: int, lock: bool = False) -> List[Tuple[InventoryBatch, int]]:
        return plan_allocation(self.list_batches(product_id, lock=lock), product_id, quantity)

    def low_stock(self) -> List[InventoryBatch]:
        return [b for b in self.list_batches(include_expired=True) if is_low_stock(b)]

    def expiring_soon(self) -> List[InventoryBatch]:
        return [b for b in self.list_batches(include_expired=True) if is_expiring_soon(b, self.today)]

    def expired(self) -> List[InventoryBatch]:
        return [b for b in self.list_batches(include_expired=True) if is_expired(b, self.today)]
