"""Consignor settlement.

Settling a consignor pays them for everything marked SOLD: the shop keeps
``fee_percent`` of each sale as commission, recorded in the revenue ledger
with zero cost, and the SOLD listings are removed from consignment stock.
"""

from __future__ import annotations

import datetime
import logging
import sqlite3
from typing import Any

import database.models as models
from api.exceptions import NothingToSettleError
from config import settings
from database.schemas import ConsignmentStatus, RevenueEntry, RevenueStatus, validate_document
from services import ledger

logger = logging.getLogger(__name__)


def commission_per_unit(item: dict[str, Any]) -> float:
    return float(item["consignment_price"]) * float(item["fee_percent"]) / 100


def payout_per_unit(item: dict[str, Any]) -> float:
    return float(item["consignment_price"]) * (1 - float(item["fee_percent"]) / 100)


def _sold_items(conn: sqlite3.Connection, consignor_name: str) -> list[dict[str, Any]]:
    return [
        item
        for item in models.get_collection(conn, models.CONSIGNMENT)
        if item["consignor_name"] == consignor_name
        and item.get("status") == ConsignmentStatus.SOLD
    ]


def _settlement_entry(item: dict[str, Any], consignor_name: str, date: str) -> dict[str, Any]:
    return {
        "date": date,
        "customer_name": consignor_name,
        "product_name": item["product_name"],
        "cost_price": 0,
        "retail_price": commission_per_unit(item),
        "quantity": item["quantity"],
        "status": RevenueStatus.DELIVERED,
        "consignor_name": consignor_name,
        "settlement": True,
        "note": f"Settlement: {item['fee_percent']:g}% of {item['consignment_price']:g}",
    }


def settle_consignor(
    conn: sqlite3.Connection,
    consignor_name: str,
    today: datetime.date | None = None,
) -> dict[str, Any]:
    """Settle every SOLD listing of *consignor_name* (exact name).

    One DELIVERED revenue entry is created per listing with the commission
    as its unit price; the entries are mirrored onto an invoice under the
    consignor's name. Each listing is deleted as soon as its entry is
    booked. SOLD listings with no units left are deleted without an entry.

    Returns dict with keys: consignor, entries, total_commission,
    total_payout, removed_ids.
    Raises NothingToSettleError when nothing is SOLD.
    """
    sold = _sold_items(conn, consignor_name)
    if not sold:
        msg = f"{consignor_name!r} has no sold consignment items to settle"
        raise NothingToSettleError(msg)

    date = (today or datetime.date.today()).isoformat()
    payable = [item for item in sold if item["quantity"] > 0]
    # Every entry is checked before the first one is booked.
    pending = [
        (item, validate_document(RevenueEntry, _settlement_entry(item, consignor_name, date)))
        for item in payable
    ]

    entries: list[dict[str, Any]] = []
    removed_ids: list[str] = []
    total_commission = 0.0
    total_payout = 0.0

    for item in sold:
        if item["quantity"] <= 0:
            logger.warning(
                "Settling %s: %s has %d unit(s) left, removed without a revenue entry",
                consignor_name, item["product_name"], item["quantity"],
            )
            models.remove_document(conn, models.CONSIGNMENT, item["id"], settings.version_retry_limit)
            removed_ids.append(item["id"])

    for item, payload in pending:
        result = ledger.create_revenue(conn, payload)
        entries.append(result["revenue"])
        # Removed right away so a retry never books the same listing twice.
        models.remove_document(conn, models.CONSIGNMENT, item["id"], settings.version_retry_limit)
        removed_ids.append(item["id"])
        total_commission += commission_per_unit(item) * item["quantity"]
        total_payout += payout_per_unit(item) * item["quantity"]

    logger.info(
        "Settled %s: %d item(s), commission %.2f, payout %.2f",
        consignor_name, len(removed_ids), total_commission, total_payout,
    )
    return {
        "consignor": consignor_name,
        "entries": entries,
        "total_commission": total_commission,
        "total_payout": total_payout,
        "removed_ids": removed_ids,
    }


def consignor_summary(conn: sqlite3.Connection, consignor_name: str | None = None) -> list[dict[str, Any]]:
    """Per-consignor quantities by status and the amount owed for SOLD stock."""
    summaries: dict[str, dict[str, Any]] = {}
    for item in models.get_collection(conn, models.CONSIGNMENT):
        name = item["consignor_name"]
        if consignor_name is not None and name != consignor_name:
            continue
        row = summaries.get(name)
        if row is None:
            row = summaries[name] = {
                "consignor": name,
                "total_items": 0,
                "by_status": {status.value: 0 for status in ConsignmentStatus},
                "total_transfer": 0.0,
            }
        qty = int(item["quantity"])
        row["total_items"] += qty
        row["by_status"][item.get("status", ConsignmentStatus.IN_STOCK)] += qty
        if item.get("status") == ConsignmentStatus.SOLD:
            row["total_transfer"] += payout_per_unit(item) * qty
    return list(summaries.values())
