from __future__ import annotations
import logging
import os
from datetime import date
from typing import Optional

from fastapi import FastAPI, Request, Form, Depends, HTTPException
from fastapi.responses import HTMLResponse, JSONResponse, FileResponse, PlainTextResponse, Response
from sqlmodel import Session

from retail_pos import billing, catalog, config, receipt, reports
from retail_pos.auth import ANY_ROLE, COOKIE, SALES_ROLES, STOCK_ROLES, authenticate, create_token, ensure_admin, require_roles
from retail_pos.db import engine, get_session, init_db
from retail_pos.errors import InsufficientStock, NotFoundError, PersistenceError, ValidationError
from retail_pos.inventory import InventoryLedger, expiry_status, is_low_stock
from retail_pos.logging_setup import setup_logging
from retail_pos.models import InventoryBatch
from retail_pos.schemas import BatchIn, BatchUpdate, CheckoutIn, ProductIn, ProductUpdate, SettingsIn
from retail_pos.store_settings import load_store_settings, update_store_settings
from retail_pos.upi import build_upi_url, upi_qr_png

logger = logging.getLogger(__name__)

app = FastAPI(title="Retail POS")


@app.on_event("startup")
def _startup():
    setup_logging()
    init_db()
    with Session(engine) as s:
        ensure_admin(s)
        load_store_settings(s)
    logger.info("Retail POS started (allocation policy %s)", config.ALLOCATION_POLICY)


# ---------------- Error mapping ----------------
@app.exception_handler(ValidationError)
def _validation_error(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
def _not_found(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InsufficientStock)
def _insufficient_stock(request: Request, exc: InsufficientStock):
    return JSONResponse(
        status_code=409,
        content={
            "detail": str(exc),
            "product_id": exc.product_id,
            "shortfall": exc.shortfall,
            "available": exc.available,
        },
    )


@app.exception_handler(PersistenceError)
def _persistence_error(request: Request, exc: PersistenceError):
    return JSONResponse(status_code=503, content={"detail": str(exc)})


# ---------------- Login / Logout ----------------
@app.post("/login")
def login(username: str = Form(...), password: str = Form(...), s: Session = Depends(get_session)):
    u = authenticate(s, username, password)
    if not u:
        raise HTTPException(401, "Invalid username or password")
    token = create_token(u.username, u.role)

    resp = JSONResponse({"username": u.username, "role": u.role})
    resp.set_cookie(COOKIE, token, httponly=True, samesite="lax")
    return resp


@app.get("/logout")
def logout():
    resp = JSONResponse({"ok": True})
    resp.delete_cookie(COOKIE)
    return resp


# ---------------- Products ----------------
@app.get("/products")
def products_list(category: str = "", q: str = "", s: Session = Depends(get_session), u=Depends(require_roles(*ANY_ROLE))):
    return catalog.list_products(s, category=category, query=q)


@app.post("/products", status_code=201)
def products_create(body: ProductIn, s: Session = Depends(get_session), u=Depends(require_roles(*STOCK_ROLES))):
    return catalog.create_product(s, **body.model_dump())


@app.get("/products/barcode/{barcode}")
def products_by_barcode(barcode: str, s: Session = Depends(get_session), u=Depends(require_roles(*ANY_ROLE))):
    p = catalog.find_by_barcode(s, barcode)
    if not p:
        raise HTTPException(404, "No product with that barcode")
    return p


@app.get("/products/{product_id}/availability")
def products_availability(product_id: int, s: Session = Depends(get_session), u=Depends(require_roles(*ANY_ROLE))):
    catalog.get_product(s, product_id)
    return {"product_id": product_id, "available": InventoryLedger(s).available(product_id)}


@app.put("/products/{product_id}")
def products_update(product_id: int, body: ProductUpdate, s: Session = Depends(get_session), u=Depends(require_roles(*STOCK_ROLES))):
    return catalog.update_product(s, product_id, **body.model_dump(exclude_unset=True))


@app.delete("/products/{product_id}", status_code=204)
def products_delete(product_id: int, s: Session = Depends(get_session), u=Depends(require_roles("ADMIN"))):
    catalog.delete_product(s, product_id)
    return Response(status_code=204)


# ---------------- Inventory ----------------
def _batch_view(ledger: InventoryLedger, b: InventoryBatch) -> dict:
    row = b.model_dump()
    row["is_low_stock"] = is_low_stock(b)
    row["expiry_status"] = expiry_status(b, ledger.today)
    return row


@app.get("/inventory")
def inventory_list(
    product_id: Optional[int] = None,
    low_stock: bool = False,
    include_expired: Optional[bool] = None,
    s: Session = Depends(get_session),
    u=Depends(require_roles(*ANY_ROLE)),
):
    ledger = InventoryLedger(s)
    rows = ledger.list_batches(product_id, include_expired=include_expired)
    if low_stock:
        rows = [b for b in rows if is_low_stock(b)]
    return [_batch_view(ledger, b) for b in rows]


@app.post("/inventory", status_code=201)
def inventory_add(body: BatchIn, s: Session = Depends(get_session), u=Depends(require_roles(*STOCK_ROLES))):
    ledger = InventoryLedger(s)
    return _batch_view(ledger, ledger.add_batch(**body.model_dump()))


@app.put("/inventory/{batch_pk}")
def inventory_update(batch_pk: int, body: BatchUpdate, s: Session = Depends(get_session), u=Depends(require_roles(*STOCK_ROLES))):
    ledger = InventoryLedger(s)
    return _batch_view(ledger, ledger.update_batch(batch_pk, **body.model_dump(exclude_unset=True)))


@app.post("/inventory/adjust")
def inventory_adjust(
    product_id: int = Form(...),
    location: str = Form(...),
    batch_id: str = Form(...),
    delta: int = Form(...),
    s: Session = Depends(get_session),
    u=Depends(require_roles(*STOCK_ROLES)),
):
    ledger = InventoryLedger(s)
    return _batch_view(ledger, ledger.adjust(product_id, location, batch_id, delta))


@app.get("/inventory/alerts")
def inventory_alerts(s: Session = Depends(get_session), u=Depends(require_roles(*ANY_ROLE))):
    ledger = InventoryLedger(s)
    return {
        "low_stock": [_batch_view(ledger, b) for b in ledger.low_stock()],
        "expiring_soon": [_batch_view(ledger, b) for b in ledger.expiring_soon()],
        "expired": [_batch_view(ledger, b) for b in ledger.expired()],
    }


# ---------------- Bills ----------------
def _bill_detail(s: Session, bill_id: int) -> dict:
    bill = billing.get_bill(s, bill_id)
    return {
        "bill": bill,
        "lines": billing.get_bill_lines(s, bill_id),
        "allocations": billing.get_bill_allocations(s, bill_id),
    }


@app.post("/bills", status_code=201)
def bills_checkout(body: CheckoutIn, s: Session = Depends(get_session), u=Depends(require_roles(*SALES_ROLES))):
    cart = billing.cart_from_items(s, [(it.product_id, it.quantity) for it in body.items])
    customer = billing.Customer(**body.customer.model_dump()) if body.customer else None
    bill = billing.checkout(s, cart, body.payment_method, payment_ref=body.payment_ref, customer=customer)
    return _bill_detail(s, bill.id)


@app.get("/bills")
def bills_list(from_date: str = "", to_date: str = "", s: Session = Depends(get_session), u=Depends(require_roles(*ANY_ROLE))):
    try:
        fd = date.fromisoformat(from_date) if from_date else None
        td = date.fromisoformat(to_date) if to_date else None
    except ValueError:
        raise HTTPException(400, "Dates must be YYYY-MM-DD")
    return billing.list_bills(s, start_date=fd, end_date=td)


@app.get("/bills/{bill_id}")
def bills_view(bill_id: int, s: Session = Depends(get_session), u=Depends(require_roles(*ANY_ROLE))):
    return _bill_detail(s, bill_id)


def _receipt(s: Session, bill_id: int) -> receipt.Receipt:
    bill = billing.get_bill(s, bill_id)
    return receipt.format_receipt(bill, billing.get_bill_lines(s, bill_id), load_store_settings(s))


@app.get("/bills/{bill_id}/receipt", response_class=HTMLResponse)
def bills_receipt(bill_id: int, s: Session = Depends(get_session), u=Depends(require_roles(*ANY_ROLE))):
    return HTMLResponse(receipt.render_html(_receipt(s, bill_id)))


@app.get("/bills/{bill_id}/receipt.txt", response_class=PlainTextResponse)
def bills_receipt_text(bill_id: int, columns: Optional[int] = None, s: Session = Depends(get_session), u=Depends(require_roles(*ANY_ROLE))):
    return PlainTextResponse(receipt.render_text(_receipt(s, bill_id), columns=columns))


@app.get("/bills/{bill_id}/pdf")
def bills_pdf(bill_id: int, s: Session = Depends(get_session), u=Depends(require_roles(*ANY_ROLE))):
    r = _receipt(s, bill_id)
    os.makedirs(config.RECEIPT_DIR, exist_ok=True)
    pdf_path = os.path.join(config.RECEIPT_DIR, f"Invoice-{r.bill_no}.pdf")
    receipt.build_receipt_pdf(pdf_path, r)
    return FileResponse(pdf_path, media_type="application/pdf", filename=f"Invoice-{r.bill_no}.pdf")


@app.get("/bills/{bill_id}/upi-qr")
def bills_upi_qr(bill_id: int, s: Session = Depends(get_session), u=Depends(require_roles(*ANY_ROLE))):
    bill = billing.get_bill(s, bill_id)
    store = load_store_settings(s)
    url = build_upi_url(store.upi_id, store.name, amount=bill.total, note=f"Bill {bill.bill_no}")
    return Response(upi_qr_png(url), media_type="image/png")


# ---------------- UPI (before the bill exists) ----------------
@app.get("/payments/upi")
def payments_upi(amount: float, note: str = "", s: Session = Depends(get_session), u=Depends(require_roles(*SALES_ROLES))):
    store = load_store_settings(s)
    return {"url": build_upi_url(store.upi_id, store.name, amount=amount, note=note or None)}


@app.get("/payments/upi-qr")
def payments_upi_qr(amount: float, note: str = "", s: Session = Depends(get_session), u=Depends(require_roles(*SALES_ROLES))):
    store = load_store_settings(s)
    url = build_upi_url(store.upi_id, store.name, amount=amount, note=note or None)
    return Response(upi_qr_png(url), media_type="image/png")


# ---------------- Settings ----------------
@app.get("/settings")
def settings_view(s: Session = Depends(get_session), u=Depends(require_roles(*ANY_ROLE))):
    return load_store_settings(s)


@app.put("/settings")
def settings_update(body: SettingsIn, s: Session = Depends(get_session), u=Depends(require_roles("ADMIN"))):
    return update_store_settings(s, **body.model_dump(exclude_unset=True))


# ---------------- Dashboard ----------------
@app.get("/dashboard")
def dashboard(s: Session = Depends(get_session), u=Depends(require_roles(*ANY_ROLE))):
    return reports.sales_summary(s)
