from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from retail_pos.errors import InsufficientStock, NotFoundError, PersistenceError, PosError, ValidationError
from retail_pos.inventory import AllocationPolicy, InventoryLedger
from retail_pos.models import PAYMENT_METHODS, Bill, BillAllocation, BillLine, InventoryBatch, Product
from retail_pos.numbering import next_bill_no
from retail_pos.persistence import commit

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal(100)


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def money(value) -> Decimal:
    """Round half-up to 2 places. Used only at the persistence/display edge."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def local_now(now: Optional[datetime] = None) -> datetime:
    """Timezone-aware local time. A naive value is taken as local wall clock."""
    return (now or datetime.now()).astimezone()


def local_time(value: datetime) -> datetime:
    """Naive local wall clock for display and day grouping.

    SQLite hands stored timestamps back without an offset; server databases
    return them aware.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def day_start(d: date) -> datetime:
    return datetime.combine(d, datetime.min.time()).astimezone()


@dataclass(frozen=True)
class LineTotals:
    amount: Decimal
    cgst_amount: Decimal
    sgst_amount: Decimal

    @property
    def tax(self) -> Decimal:
        return self.cgst_amount + self.sgst_amount


@dataclass(frozen=True)
class BillTotals:
    subtotal: Decimal
    cgst: Decimal
    sgst: Decimal

    @property
    def tax(self) -> Decimal:
        return self.cgst + self.sgst

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.tax

    def rounded(self) -> Dict[str, float]:
        """Stored and printed figures.

        Each component is rounded once and the aggregates are summed from the
        rounded parts, so tax == cgst + sgst and total == subtotal + tax hold
        on the bill itself.
        """
        subtotal, cgst, sgst = money(self.subtotal), money(self.cgst), money(self.sgst)
        tax = cgst + sgst
        return {
            "subtotal": float(subtotal),
            "cgst": float(cgst),
            "sgst": float(sgst),
            "tax": float(tax),
            "total": float(subtotal + tax),
        }


def line_totals(price, quantity: int, cgst=0, sgst=0) -> LineTotals:
    amount = to_decimal(price) * int(quantity)
    return LineTotals(
        amount=amount,
        cgst_amount=amount * to_decimal(cgst) / HUNDRED,
        sgst_amount=amount * to_decimal(sgst) / HUNDRED,
    )


def bill_totals(lines: Iterable[LineTotals]) -> BillTotals:
    subtotal = cgst = sgst = Decimal(0)
    for ln in lines:
        subtotal += ln.amount
        cgst += ln.cgst_amount
        sgst += ln.sgst_amount
    return BillTotals(subtotal=subtotal, cgst=cgst, sgst=sgst)


# ---------------- Cart ----------------
@dataclass
class CartLine:
    product_id: int
    name: str
    price: float
    cgst: float
    sgst: float
    hsn: str
    quantity: int

    def totals(self) -> LineTotals:
        return line_totals(self.price, self.quantity, self.cgst, self.sgst)


def _check_qty(quantity) -> int:
    if isinstance(quantity, bool) or int(quantity) != quantity or int(quantity) <= 0:
        raise ValidationError("Quantity must be a positive whole number")
    return int(quantity)


@dataclass
class Cart:
    lines: List[CartLine] = field(default_factory=list)

    def _find(self, product_id: int) -> Optional[CartLine]:
        for ln in self.lines:
            if ln.product_id == product_id:
                return ln
        return None

    def add(self, product: Product, quantity: int = 1, available: Optional[int] = None) -> CartLine:
        quantity = _check_qty(quantity)
        ln = self._find(product.id)
        wanted = quantity + (ln.quantity if ln else 0)
        if available is not None and wanted > available:
            raise InsufficientStock(product.id, shortfall=wanted - available, available=available)
        if ln:
            ln.quantity = wanted
            return ln
        ln = CartLine(
            product_id=product.id,
            name=product.name,
            price=product.price,
            cgst=product.cgst,
            sgst=product.sgst,
            hsn=product.hsn,
            quantity=quantity,
        )
        self.lines.append(ln)
        return ln

    def set_quantity(self, product_id: int, quantity: int, available: Optional[int] = None) -> None:
        ln = self._find(product_id)
        if not ln:
            raise NotFoundError(f"Product {product_id} is not in the cart")
        if quantity == 0:
            self.remove(product_id)
            return
        quantity = _check_qty(quantity)
        if available is not None and quantity > available:
            raise InsufficientStock(product_id, shortfall=quantity - available, available=available)
        ln.quantity = quantity

    def remove(self, product_id: int) -> None:
        self.lines = [ln for ln in self.lines if ln.product_id != product_id]

    def clear(self) -> None:
        self.lines = []

    def is_empty(self) -> bool:
        return not self.lines

    def totals(self) -> BillTotals:
        return bill_totals(ln.totals() for ln in self.lines)


def cart_from_items(session: Session, items: Iterable[Tuple[int, int]]) -> Cart:
    """Build a cart from (product_id, quantity) pairs, merging repeats."""
    cart = Cart()
    for product_id, qty in items:
        p = session.get(Product, product_id)
        if not p:
            raise NotFoundError(f"Product {product_id} not found")
        cart.add(p, qty)
    return cart


# ---------------- Checkout ----------------
@dataclass
class Customer:
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None


Plan = List[Tuple[InventoryBatch, int]]


def _validate(session: Session, cart: Cart, ledger: InventoryLedger) -> List[Tuple[CartLine, Product, Plan]]:
    planned = []
    for ln in cart.lines:
        product = session.get(Product, ln.product_id)
        if not product:
            raise NotFoundError(f"Product {ln.product_id} not found")
        planned.append((ln, product, ledger.plan(product.id, ln.quantity, lock=True)))
    return planned


def checkout(
    session: Session,
    cart: Cart,
    payment_method: str,
    payment_ref: Optional[str] = None,
    customer: Optional[Customer] = None,
    policy: Optional[AllocationPolicy] = None,
    include_expired: Optional[bool] = None,
    now: Optional[datetime] = None,
) -> Bill:
    """Turn a cart into a persisted bill, deducting stock batch by batch.

    Every line is planned against current stock before anything is written,
    so either all deductions plus the bill are committed together or nothing
    is. Prices and tax rates are captured from the catalog at this moment.
    """
    if cart.is_empty():
        raise ValidationError("Cart is empty")
    method = (payment_method or "").strip().lower()
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"Unknown payment method: {payment_method}")
    now = local_now(now)
    customer = customer or Customer()

    ledger = InventoryLedger(session, policy=policy, include_expired=include_expired, today=now.date())
    try:
        planned = _validate(session, cart, ledger)
        bill_no = next_bill_no(session, now=now)
    except PosError as exc:
        session.rollback()
        logger.info("Checkout rejected: %s", exc)
        raise

    snapshots = []
    for ln, product, plan in planned:
        snapshots.append((product, ln.quantity, line_totals(product.price, ln.quantity, product.cgst, product.sgst), plan))
    totals = bill_totals(s[2] for s in snapshots).rounded()

    try:
        bill = Bill(
            bill_no=bill_no,
            created_at=now,
            subtotal=totals["subtotal"],
            cgst_total=totals["cgst"],
            sgst_total=totals["sgst"],
            tax=totals["tax"],
            total=totals["total"],
            payment_method=method,
            payment_ref=(payment_ref or "").strip() or None,
            customer_name=customer.name or None,
            customer_phone=customer.phone or None,
            customer_email=customer.email or None,
            customer_address=customer.address or None,
        )
        session.add(bill)
        session.flush()

        for line_no, (product, qty, lt, plan) in enumerate(snapshots, start=1):
            for batch, take in plan:
                batch.quantity -= take
                session.add(batch)
                session.add(
                    BillAllocation(
                        bill_id=bill.id,
                        line_no=line_no,
                        product_id=product.id,
                        location=batch.location,
                        batch_id=batch.batch_id,
                        quantity=take,
                    )
                )
            session.add(
                BillLine(
                    bill_id=bill.id,
                    line_no=line_no,
                    product_id=product.id,
                    name=product.name,
                    price=product.price,
                    hsn=product.hsn,
                    cgst=product.cgst,
                    sgst=product.sgst,
                    quantity=qty,
                    amount=float(money(lt.amount)),
                    batch_id=plan[0][0].batch_id if len(plan) == 1 else None,
                )
            )
        session.flush()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("Checkout failed while writing bill %s", bill_no)
        raise PersistenceError("Could not save bill") from exc

    commit(session)
    session.refresh(bill)
    logger.info(
        "Bill %s committed: %s lines, total=%.2f, payment=%s",
        bill.bill_no,
        len(snapshots),
        bill.total,
        method,
        extra={"bill_no": bill.bill_no, "payment_method": method},
    )
    return bill


# ---------------- Queries ----------------
def get_bill(session: Session, bill_id: int) -> Bill:
    bill = session.get(Bill, bill_id)
    if not bill:
        raise NotFoundError(f"Bill {bill_id} not found")
    return bill


def get_bill_lines(session: Session, bill_id: int) -> List[BillLine]:
    return session.exec(select(BillLine).where(BillLine.bill_id == bill_id).order_by(BillLine.line_no)).all()


def get_bill_allocations(session: Session, bill_id: int) -> List[BillAllocation]:
    return session.exec(
        select(BillAllocation).where(BillAllocation.bill_id == bill_id).order_by(BillAllocation.line_no, BillAllocation.id)
    ).all()


def list_bills(session: Session, start_date: Optional[date] = None, end_date: Optional[date] = None) -> List[Bill]:
    """Bills newest first; ``end_date`` includes that whole day."""
    q = select(Bill)
    if start_date:
        q = q.where(Bill.created_at >= day_start(start_date))
    if end_date:
        q = q.where(Bill.created_at < day_start(end_date + timedelta(days=1)))
    return session.exec(q.order_by(Bill.created_at.desc(), Bill.id.desc())).all()
