from __future__ import annotations
import io
import re
from decimal import Decimal
from typing import Optional
from urllib.parse import quote

import qrcode

from retail_pos.errors import ValidationError

UPI_ID_RE = re.compile(r"^[a-zA-Z0-9._-]+@[a-zA-Z0-9]+$")


def is_valid_upi_id(upi_id: str) -> bool:
    return bool(upi_id) and UPI_ID_RE.match(upi_id) is not None


def _fmt_amount(amount) -> str:
    return format(Decimal(str(amount)).quantize(Decimal("0.01")), "f")


def build_upi_url(
    payee_vpa: str,
    payee_name: str,
    amount=None,
    note: Optional[str] = None,
    merchant_code: Optional[str] = None,
) -> str:
    """upi://pay link understood by UPI payment apps; currency is always INR."""
    if not is_valid_upi_id(payee_vpa or ""):
        raise ValidationError(f"Invalid UPI ID: {payee_vpa!r} (expected name@provider)")

    params = [("pa", payee_vpa), ("pn", payee_name or "")]
    if amount:
        params.append(("am", _fmt_amount(amount)))
    if note:
        params.append(("tn", note))
    if merchant_code:
        params.append(("mc", merchant_code))
    params.append(("cu", "INR"))
    query = "&".join(f"{k}={quote(str(v), safe='@.-_')}" for k, v in params)
    return f"upi://pay?{query}"


def upi_qr_png(url: str, box_size: int = 6, border: int = 1) -> bytes:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(url)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()
