"""Read-only revenue aggregates for reports and the dashboard."""

from __future__ import annotations

import datetime
import sqlite3
from collections import Counter, defaultdict
from typing import Any

import database.models as models
from config import settings
from database.schemas import ConsignmentStatus


def _line_total(entry: dict[str, Any]) -> float:
    return entry["retail_price"] * entry["quantity"]


def _totals(entries: list[dict[str, Any]]) -> dict[str, float | int]:
    return {
        "revenue": sum(_line_total(e) for e in entries),
        "profit": sum((e["retail_price"] - e["cost_price"]) * e["quantity"] for e in entries),
        "units": sum(e["quantity"] for e in entries),
        "transactions": len(entries),
    }


def default_date_range(today: datetime.date | None = None) -> tuple[str, str]:
    """First and last day of the current month."""
    today = today or datetime.date.today()
    first = today.replace(day=1)
    next_month = (first + datetime.timedelta(days=32)).replace(day=1)
    last = next_month - datetime.timedelta(days=1)
    return first.isoformat(), last.isoformat()


def revenue_report(
    conn: sqlite3.Connection,
    date_from: str | None = None,
    date_to: str | None = None,
    *,
    consignor: str | None = None,
    customer: str | None = None,
    top_n: int | None = None,
) -> dict[str, Any]:
    """Totals plus best-selling products and top-spending customers.

    The date range is inclusive and defaults to the current month. Returns
    dict with keys: date_from, date_to, totals, top_products, top_customers,
    entries.
    """
    if not date_from or not date_to:
        default_from, default_to = default_date_range()
        date_from = date_from or default_from
        date_to = date_to or default_to
    top_n = top_n or settings.report_top_n

    entries = [
        e
        for e in models.get_collection(conn, models.REVENUE)
        if date_from <= e.get("date", "") <= date_to
        and (consignor is None or e.get("consignor_name") == consignor)
        and (customer is None or e.get("customer_name") == customer)
    ]

    products: Counter[str] = Counter()
    spending: defaultdict[str, float] = defaultdict(float)
    for e in entries:
        products[e["product_name"]] += e["quantity"]
        if e.get("customer_name", "").strip():
            spending[e["customer_name"]] += _line_total(e)

    top_customers = sorted(spending.items(), key=lambda kv: kv[1], reverse=True)[:top_n]
    return {
        "date_from": date_from,
        "date_to": date_to,
        "totals": _totals(entries),
        "top_products": [{"name": n, "quantity": q} for n, q in products.most_common(top_n)],
        "top_customers": [{"name": n, "total": t} for n, t in top_customers],
        "entries": sorted(entries, key=lambda e: e["date"], reverse=True),
    }


def dashboard_summary(
    conn: sqlite3.Connection,
    today: datetime.date | None = None,
    days: int = 30,
) -> dict[str, Any]:
    """All-time totals, a daily revenue series and the latest sales."""
    today = today or datetime.date.today()
    entries = models.get_collection(conn, models.REVENUE)
    consignment = models.get_collection(conn, models.CONSIGNMENT)

    daily = {
        (today - datetime.timedelta(days=i)).isoformat(): 0.0 for i in range(days - 1, -1, -1)
    }
    for e in entries:
        if e.get("date") in daily:
            daily[e["date"]] += _line_total(e)

    return {
        "totals": _totals(entries),
        "active_consignments": sum(
            1 for item in consignment if item.get("status") == ConsignmentStatus.IN_STOCK
        ),
        "daily_revenue": [{"date": d, "revenue": r} for d, r in daily.items()],
        "recent": sorted(entries, key=lambda e: e["date"], reverse=True)[: settings.report_top_n],
    }
