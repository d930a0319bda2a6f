from __future__ import annotations
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from sqlmodel import Session, select

from retail_pos.billing import local_time, money, to_decimal
from retail_pos.inventory import is_low_stock
from retail_pos.models import Bill, InventoryBatch, Product


def _sum_totals(bills) -> Decimal:
    return sum((to_decimal(b.total) for b in bills), Decimal(0))


def sales_summary(session: Session, today: Optional[date] = None) -> Dict:
    today = today or date.today()
    bills = session.exec(select(Bill)).all()

    def in_day(b: Bill, d: date) -> bool:
        return local_time(b.created_at).date() == d

    today_bills = [b for b in bills if in_day(b, today)]
    yesterday = today - timedelta(days=1)
    today_sales = _sum_totals(today_bills)
    yesterday_sales = _sum_totals(b for b in bills if in_day(b, yesterday))
    change = Decimal(0)
    if yesterday_sales:
        change = (today_sales - yesterday_sales) / yesterday_sales * 100

    prices = {p.id: to_decimal(p.price) for p in session.exec(select(Product)).all()}
    batches = session.exec(select(InventoryBatch)).all()
    inventory_value = sum((prices.get(b.product_id, Decimal(0)) * b.quantity for b in batches), Decimal(0))

    series: List[Dict] = []
    for i in range(6, -1, -1):
        d = today - timedelta(days=i)
        series.append({"date": d.isoformat(), "sales": float(money(_sum_totals(b for b in bills if in_day(b, d))))})

    return {
        "today_sales": float(money(today_sales)),
        "today_bill_count": len(today_bills),
        "yesterday_sales": float(money(yesterday_sales)),
        "change_percent": round(float(change), 1),
        "total_sales": float(money(_sum_totals(bills))),
        "bill_count": len(bills),
        "inventory_value": float(money(inventory_value)),
        "product_count": len(prices),
        "low_stock_count": sum(1 for b in batches if is_low_stock(b)),
        "last_7_days": series,
    }
