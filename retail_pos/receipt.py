from __future__ import annotations
import base64
import binascii
import io
import logging
import os
import textwrap
from dataclasses import dataclass
from typing import BinaryIO, List, Optional, Sequence, Tuple, Union

from jinja2 import Environment, FileSystemLoader, select_autoescape
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from retail_pos.billing import local_time, money
from retail_pos.errors import ValidationError
from retail_pos.models import Bill, BillLine, StoreSettings

logger = logging.getLogger(__name__)

FOOTER = ("Thank you for shopping with us!",)
MIN_COLUMNS = 32

_templates = Environment(
    loader=FileSystemLoader(os.path.join(os.path.dirname(__file__), "templates")),
    autoescape=select_autoescape(["html"]),
)


@dataclass
class ReceiptRow:
    item: str
    qty: str
    rate: str
    amount: str
    hsn: str = ""


@dataclass
class Receipt:
    store_name: str
    store_lines: List[str]
    bill_no: str
    date: str
    time: str
    rows: List[ReceiptRow]
    totals: List[Tuple[str, str]]
    payment_lines: List[str]
    customer: Optional[str] = None
    logo: str = ""
    footer: Sequence[str] = FOOTER
    width_mm: float = 80.0
    height_mm: float = 140.0
    total_label: str = "Total"
    grand_total: str = "0.00"


def _amt(value) -> str:
    return f"{money(value):.2f}"


def format_receipt(bill: Bill, lines: Sequence[BillLine], store: StoreSettings) -> Receipt:
    """Lay out a bill for the thermal printer. Presentation only."""
    store_lines = []
    if store.address:
        store_lines.append(store.address)
    if store.phone:
        store_lines.append(f"Tel: {store.phone}")
    if store.gst:
        store_lines.append(f"GSTIN: {store.gst}")

    customer = None
    if bill.customer_name or bill.customer_phone:
        customer = bill.customer_name or ""
        if bill.customer_phone:
            customer = f"{customer} ({bill.customer_phone})".strip()

    payment_lines = [f"Payment Method: {bill.payment_method.capitalize()}"]
    if bill.payment_ref:
        payment_lines.append(f"Reference: {bill.payment_ref}")

    created = local_time(bill.created_at)
    return Receipt(
        store_name=store.name,
        store_lines=store_lines,
        logo=store.logo or "",
        bill_no=bill.bill_no,
        date=created.strftime("%d/%m/%Y"),
        time=created.strftime("%I:%M %p"),
        customer=customer,
        rows=[
            ReceiptRow(item=ln.name, qty=str(ln.quantity), rate=_amt(ln.price), amount=_amt(ln.amount), hsn=ln.hsn or "")
            for ln in lines
        ],
        totals=[
            ("Subtotal", _amt(bill.subtotal)),
            ("CGST", _amt(bill.cgst_total)),
            ("SGST", _amt(bill.sgst_total)),
        ],
        grand_total=_amt(bill.total),
        payment_lines=payment_lines,
        width_mm=store.bill_width or 80.0,
        height_mm=store.bill_height or 140.0,
    )


# ---------------- Text ----------------
def default_columns(width_mm: float) -> int:
    return max(MIN_COLUMNS, int(width_mm * 0.6))


def render_text(receipt: Receipt, columns: Optional[int] = None) -> str:
    cols = max(columns or default_columns(receipt.width_mm), MIN_COLUMNS)
    qty_w, rate_w, amt_w = 5, 9, 10
    item_w = cols - qty_w - rate_w - amt_w
    dash = "-" * cols
    out: List[str] = [receipt.store_name.center(cols).rstrip()]
    out += [s.center(cols).rstrip() for s in receipt.store_lines]
    out.append(dash)
    out.append(f"Bill No: {receipt.bill_no}")
    left, right = f"Date: {receipt.date}", f"Time: {receipt.time}"
    out.append(left + right.rjust(cols - len(left)))
    if receipt.customer:
        out.append(f"Customer: {receipt.customer}")
    out.append(dash)
    out.append(f"{'Item':<{item_w}}{'Qty':>{qty_w}}{'Rate':>{rate_w}}{'Amt':>{amt_w}}")
    out.append(dash)
    for row in receipt.rows:
        wrapped = textwrap.wrap(row.item, item_w - 1) or [""]
        out.append(f"{wrapped[0]:<{item_w}}{row.qty:>{qty_w}}{row.rate:>{rate_w}}{row.amount:>{amt_w}}")
        out += wrapped[1:]
    out.append(dash)
    for label, value in receipt.totals:
        out.append(f"{label}:" + value.rjust(cols - len(label) - 1))
    out.append(dash)
    out.append(f"{receipt.total_label}:" + receipt.grand_total.rjust(cols - len(receipt.total_label) - 1))
    out.append("")
    out += receipt.payment_lines
    out.append("")
    out += [s.center(cols).rstrip() for s in receipt.footer]
    return "\n".join(out) + "\n"


# ---------------- HTML ----------------
def render_html(receipt: Receipt) -> str:
    return _templates.get_template("receipt.html").render(r=receipt)


# ---------------- PDF ----------------
def read_logo(data_url: str) -> ImageReader:
    """Decode an image data URL, raising ValidationError when it is not one."""
    if not data_url.startswith("data:image") or "," not in data_url:
        raise ValidationError("Logo must be an image data URL")
    try:
        img = ImageReader(io.BytesIO(base64.b64decode(data_url.split(",", 1)[1], validate=True)))
        img.getSize()
    except (binascii.Error, ValueError, OSError) as exc:
        raise ValidationError("Logo is not a readable image") from exc
    return img


def _logo_image(data_url: str) -> Optional[ImageReader]:
    if not data_url:
        return None
    try:
        return read_logo(data_url)
    except ValidationError as exc:
        logger.warning("Skipping store logo on receipt: %s", exc)
        return None


def build_receipt_pdf(target: Union[str, BinaryIO], receipt: Receipt) -> None:
    w = receipt.width_mm * mm
    line_h = 11
    needed = (14 + len(receipt.store_lines) + len(receipt.rows) + len(receipt.totals) + len(receipt.payment_lines)) * line_h
    logo = _logo_image(receipt.logo)
    if logo:
        needed += 16 * mm
    h = max(receipt.height_mm * mm, needed + 10 * mm)
    margin = 3 * mm
    right = w - margin

    c = canvas.Canvas(target, pagesize=(w, h))
    y = h - margin

    if logo:
        lw, lh = logo.getSize()
        draw_h = 14 * mm
        draw_w = draw_h * lw / lh if lh else draw_h
        y -= draw_h
        c.drawImage(logo, (w - draw_w) / 2, y, width=draw_w, height=draw_h, mask="auto")
        y -= 2 * mm

    y -= line_h
    c.setFont("Helvetica-Bold", 11)
    c.drawCentredString(w / 2, y, receipt.store_name)
    c.setFont("Helvetica", 7)
    for s in receipt.store_lines:
        y -= 9
        c.drawCentredString(w / 2, y, s)

    def rule(y_pos):
        c.setDash(1, 2)
        c.line(margin, y_pos, right, y_pos)
        c.setDash()

    y -= 6
    rule(y)
    c.setFont("Helvetica", 8)
    y -= line_h
    c.drawString(margin, y, f"Bill No: {receipt.bill_no}")
    y -= line_h
    c.drawString(margin, y, f"Date: {receipt.date}")
    c.drawRightString(right, y, f"Time: {receipt.time}")
    if receipt.customer:
        y -= line_h
        c.drawString(margin, y, f"Customer: {receipt.customer}")
    y -= 6
    rule(y)

    col_qty, col_rate = w * 0.62, w * 0.80
    y -= line_h
    c.setFont("Helvetica-Bold", 7)
    c.drawString(margin, y, "Item")
    c.drawRightString(col_qty, y, "Qty")
    c.drawRightString(col_rate, y, "Rate")
    c.drawRightString(right, y, "Amt")
    c.setFont("Helvetica", 7)
    max_chars = max(8, int((col_qty - margin) / 4) - 4)
    for row in receipt.rows:
        y -= line_h
        c.drawString(margin, y, row.item[:max_chars])
        c.drawRightString(col_qty, y, row.qty)
        c.drawRightString(col_rate, y, row.rate)
        c.drawRightString(right, y, row.amount)
    y -= 6
    rule(y)

    for label, value in receipt.totals:
        y -= line_h
        c.drawString(margin, y, f"{label}:")
        c.drawRightString(right, y, f"Rs. {value}")
    y -= 6
    rule(y)
    y -= line_h
    c.setFont("Helvetica-Bold", 9)
    c.drawString(margin, y, f"{receipt.total_label}:")
    c.drawRightString(right, y, f"Rs. {receipt.grand_total}")

    c.setFont("Helvetica", 7)
    y -= 4
    for s in receipt.payment_lines:
        y -= line_h
        c.drawString(margin, y, s)
    y -= 6
    for s in receipt.footer:
        y -= line_h
        c.drawCentredString(w / 2, y, s)

    c.showPage()
    c.save()


def receipt_pdf_bytes(receipt: Receipt) -> bytes:
    buf = io.BytesIO()
    build_receipt_pdf(buf, receipt)
    return buf.getvalue()
