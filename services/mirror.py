"""Keep revenue entries and their invoice lines aligned.

Every revenue entry with a customer name has exactly one mirrored line on
that customer's invoice (customers are grouped by trimmed, case-insensitive
name). The line carries ``revenue_entry_id`` pointing back at the entry and
copies its product name, price, quantity, status and shop item.

The revenue ledger is authoritative: ``rebuild_invoices`` regenerates every
mirrored line from it. Status changes made on the invoice side flow back to
the revenue entry through ``apply_invoice_status``.
"""

from __future__ import annotations

import copy
import logging
import sqlite3
from typing import Any

import database.models as models
from api.exceptions import NotFoundError, ValidationError
from config import settings
from database.schemas import RevenueStatus
from services import inventory
from services.stock_match import customer_key, product_key
from utils.ids import generate_id

logger = logging.getLogger(__name__)

_MIRRORED_FIELDS = ("product_name", "selling_price", "quantity", "status", "shop_item_id")


def _mirror_item(entry: dict[str, Any], item_id: str | None = None) -> dict[str, Any]:
    return {
        "id": item_id or generate_id(),
        "product_name": entry["product_name"],
        "selling_price": float(entry["retail_price"]),
        "quantity": int(entry["quantity"]),
        "status": entry["status"],
        "shop_item_id": entry.get("shop_item_id"),
        "revenue_entry_id": entry["id"],
    }


def _find_invoice(invoices: list[dict[str, Any]], customer: str) -> int | None:
    key = customer_key(customer)
    for i, invoice in enumerate(invoices):
        if customer_key(invoice.get("customer_name")) == key:
            return i
    return None


def _append_item(invoices: list[dict[str, Any]], customer: str, item: dict[str, Any]) -> None:
    idx = _find_invoice(invoices, customer)
    if idx is None:
        invoices.append(
            {
                "id": generate_id(),
                "customer_name": customer.strip(),
                "deposit": 0.0,
                "items": [item],
            }
        )
    else:
        invoices[idx]["items"].append(item)


def _remove_item(invoices: list[dict[str, Any]], inv_idx: int, item_idx: int) -> dict[str, Any]:
    """Detach an item, dropping its invoice when nothing is left on it."""
    item = invoices[inv_idx]["items"].pop(item_idx)
    if not invoices[inv_idx]["items"]:
        invoices.pop(inv_idx)
    return item


def locate_mirror(
    invoices: list[dict[str, Any]],
    entry_id: str,
    customer: str | None = None,
    product: str | None = None,
) -> tuple[int, int] | None:
    """Find the invoice line mirroring a revenue entry.

    Lines are found by ``revenue_entry_id``. For rows created before lines
    were linked, the first unlinked line with the same product on the
    customer's invoice is used instead, unless that line holds its own shop
    stock.
    """
    for inv_idx, invoice in enumerate(invoices):
        for item_idx, item in enumerate(invoice.get("items", [])):
            if item.get("revenue_entry_id") == entry_id:
                return inv_idx, item_idx

    if not customer or not product:
        return None
    inv_idx = _find_invoice(invoices, customer)
    if inv_idx is None:
        return None
    for item_idx, item in enumerate(invoices[inv_idx]["items"]):
        if item.get("revenue_entry_id") or product_key(item.get("product_name")) != product_key(product):
            continue
        if item.get("shop_item_id"):
            # A standalone line with a shop item holds its own stock.
            logger.warning(
                "Invoice line %s for %s / %s holds shop stock; not adopted as a mirror",
                item["id"], customer, product,
            )
            continue
        logger.warning(
            "Invoice line for %s / %s matched by product name (no back-reference)",
            customer, product,
        )
        return inv_idx, item_idx
    return None


def mirror_create(conn: sqlite3.Connection, entry: dict[str, Any]) -> dict[str, Any] | None:
    """Add the invoice line for a new revenue entry. Returns the line, if any."""
    if not customer_key(entry.get("customer_name")):
        return None

    def mutate(invoices: list[dict[str, Any]]) -> dict[str, Any]:
        item = _mirror_item(entry)
        _append_item(invoices, entry["customer_name"], item)
        return item

    return models.modify_collection(
        conn, models.INVOICES, mutate, retry_limit=settings.version_retry_limit
    )


def mirror_update(
    conn: sqlite3.Connection,
    old: dict[str, Any],
    new: dict[str, Any],
) -> dict[str, Any] | None:
    """Bring the mirrored line in line with an edited revenue entry.

    Moves the line to another invoice when the customer changed, removes it
    when the customer was cleared, and creates it when it is missing.
    """

    def mutate(invoices: list[dict[str, Any]]) -> dict[str, Any] | None:
        loc = locate_mirror(invoices, new["id"], old.get("customer_name"), old.get("product_name"))
        has_customer = bool(customer_key(new.get("customer_name")))

        if loc is None:
            if not has_customer:
                return None
            item = _mirror_item(new)
            _append_item(invoices, new["customer_name"], item)
            return item

        inv_idx, item_idx = loc
        current = invoices[inv_idx]["items"][item_idx]
        if not has_customer:
            _remove_item(invoices, inv_idx, item_idx)
            return None

        updated = _mirror_item(new, item_id=current["id"])
        if customer_key(invoices[inv_idx]["customer_name"]) == customer_key(new["customer_name"]):
            current.update({key: updated[key] for key in (*_MIRRORED_FIELDS, "revenue_entry_id")})
            return current

        _remove_item(invoices, inv_idx, item_idx)
        _append_item(invoices, new["customer_name"], updated)
        return updated

    return models.modify_collection(
        conn, models.INVOICES, mutate, retry_limit=settings.version_retry_limit
    )


def mirror_delete(conn: sqlite3.Connection, entry: dict[str, Any]) -> bool:
    """Remove the mirrored line of a deleted revenue entry."""

    def mutate(invoices: list[dict[str, Any]]) -> bool:
        loc = locate_mirror(
            invoices, entry["id"], entry.get("customer_name"), entry.get("product_name")
        )
        if loc is None:
            return False
        _remove_item(invoices, *loc)
        return True

    return models.modify_collection(
        conn, models.INVOICES, mutate, retry_limit=settings.version_retry_limit
    )


# ---------------------------------------------------------------------------
# Invoice -> revenue
# ---------------------------------------------------------------------------


def apply_invoice_status(
    conn: sqlite3.Connection,
    invoice_id: str,
    status: str,
    item_ids: list[str] | None = None,
) -> dict[str, Any]:
    """Set the status of invoice lines and propagate it to their revenue entries.

    *item_ids* defaults to every line on the invoice. Lines that mirror a
    revenue entry update that entry, whose stock is then adjusted; standalone
    lines adjust their own shop stock. Returns ``{"invoice", "revenue",
    "stock_warnings"}``.
    """
    try:
        status = RevenueStatus(status).value
    except ValueError as exc:
        msg = f"Invalid status: {status!r}"
        raise ValidationError(msg) from exc

    def mutate(invoices: list[dict[str, Any]]) -> tuple[dict[str, Any], list[tuple[dict, dict]]]:
        idx = models.find_index(invoices, invoice_id)
        if idx is None:
            raise NotFoundError("Invoice not found")
        invoice = invoices[idx]
        wanted = set(item_ids) if item_ids is not None else None
        changes = []
        for item in invoice["items"]:
            if wanted is not None and item["id"] not in wanted:
                continue
            if item.get("status") == status:
                continue
            before = copy.deepcopy(item)
            item["status"] = status
            changes.append((before, copy.deepcopy(item)))
        return invoice, changes

    invoice, changes = models.modify_collection(
        conn, models.INVOICES, mutate, retry_limit=settings.version_retry_limit
    )

    updated_entries: list[dict[str, Any]] = []
    warnings: list[str] = []
    for before, after in changes:
        entry_id = after.get("revenue_entry_id")
        if not entry_id:
            outcome = inventory.on_edit(conn, before, after, mutation="invoice-status")
            warnings.extend(outcome.warnings())
            continue
        entry, outcome = _propagate_status(conn, entry_id, status)
        if entry is None:
            logger.warning("Revenue entry %s for invoice line %s not found", entry_id, after["id"])
            continue
        updated_entries.append(entry)
        warnings.extend(outcome.warnings())

    if changes:
        logger.info(
            "Invoice %s: %d line(s) set to %s", invoice_id, len(changes), status
        )
    return {"invoice": invoice, "revenue": updated_entries, "stock_warnings": warnings}


def _propagate_status(
    conn: sqlite3.Connection,
    entry_id: str,
    status: str,
) -> tuple[dict[str, Any] | None, inventory.AdjustmentOutcome | None]:
    old = models.get_document(conn, models.REVENUE, entry_id)
    if old is None:
        return None, None
    new = {**old, "status": status}
    outcome = inventory.on_edit(conn, old, new, mutation="invoice-status")

    def mutate(entries: list[dict[str, Any]]) -> dict[str, Any] | None:
        idx = models.find_index(entries, entry_id)
        if idx is None:
            return None
        entries[idx]["status"] = status
        return entries[idx]

    entry = models.modify_collection(
        conn, models.REVENUE, mutate, retry_limit=settings.version_retry_limit
    )
    return entry, outcome


# ---------------------------------------------------------------------------
# Rebuild
# ---------------------------------------------------------------------------


def rebuild_invoices(conn: sqlite3.Connection) -> dict[str, int]:
    """Regenerate every mirrored invoice line from the revenue ledger.

    Standalone lines and deposits are kept; existing line and invoice ids are
    reused. Entries are mirrored in (date, id) order. Invoices left with no
    lines are dropped.
    """
    entries = sorted(
        models.get_collection(conn, models.REVENUE),
        key=lambda e: (e.get("date", ""), e["id"]),
    )

    def mutate(invoices: list[dict[str, Any]]) -> dict[str, int]:
        existing_ids: dict[str, str] = {}
        removed = 0
        for invoice in invoices:
            kept = []
            for item in invoice["items"]:
                if item.get("revenue_entry_id"):
                    existing_ids[item["revenue_entry_id"]] = item["id"]
                    removed += 1
                else:
                    kept.append(item)
            invoice["items"] = kept

        mirrored = 0
        for entry in entries:
            if not customer_key(entry.get("customer_name")):
                continue
            item = _mirror_item(entry, item_id=existing_ids.get(entry["id"]))
            _append_item(invoices, entry["customer_name"], item)
            mirrored += 1

        before = len(invoices)
        invoices[:] = [inv for inv in invoices if inv["items"]]
        return {
            "mirrored": mirrored,
            "replaced": removed,
            "dropped_invoices": before - len(invoices),
        }

    stats = models.modify_collection(
        conn, models.INVOICES, mutate, retry_limit=settings.version_retry_limit
    )
    logger.info("Rebuilt invoices: %s", stats)
    return stats
