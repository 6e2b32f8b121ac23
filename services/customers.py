"""Customer book: purchase history from the revenue ledger plus contact details."""

from __future__ import annotations

import sqlite3
from typing import Any

import database.models as models
from api.exceptions import NotFoundError
from config import settings
from database.schemas import CustomerInfo, validate_document
from services.stock_match import customer_key


def list_customers(conn: sqlite3.Connection, *, search: str | None = None) -> list[dict[str, Any]]:
    """Every customer seen in the revenue ledger, biggest spender first.

    Names are grouped the way invoices are (trimmed, case-insensitive) and
    shown with the first spelling seen. Each row carries: name, phone,
    address, total_spent, total_items, transactions, first_purchase,
    last_purchase.
    """
    info = {customer_key(c["name"]): c for c in models.get_collection(conn, models.CUSTOMERS)}
    customers: dict[str, dict[str, Any]] = {}

    for entry in models.get_collection(conn, models.REVENUE):
        key = customer_key(entry.get("customer_name"))
        if not key:
            continue
        row = customers.get(key)
        if row is None:
            contact = info.get(key, {})
            row = customers[key] = {
                "name": entry["customer_name"].strip(),
                "phone": contact.get("phone"),
                "address": contact.get("address"),
                "total_spent": 0.0,
                "total_items": 0,
                "transactions": 0,
                "first_purchase": entry["date"],
                "last_purchase": entry["date"],
            }
        row["total_spent"] += entry["retail_price"] * entry["quantity"]
        row["total_items"] += entry["quantity"]
        row["transactions"] += 1
        row["first_purchase"] = min(row["first_purchase"], entry["date"])
        row["last_purchase"] = max(row["last_purchase"], entry["date"])

    rows = sorted(customers.values(), key=lambda c: c["total_spent"], reverse=True)
    if search:
        term = search.strip().lower()
        rows = [c for c in rows if term in c["name"].lower()]
    return rows


def get_customer(conn: sqlite3.Connection, name: str) -> dict[str, Any]:
    """One customer's summary with ``purchase_history`` (newest first)."""
    key = customer_key(name)
    row = next((c for c in list_customers(conn) if customer_key(c["name"]) == key), None)
    if row is None:
        raise NotFoundError("Customer not found")
    history = [
        e
        for e in models.get_collection(conn, models.REVENUE)
        if customer_key(e.get("customer_name")) == key
    ]
    history.sort(key=lambda e: e["date"], reverse=True)
    return {**row, "purchase_history": history}


def save_customer_info(conn: sqlite3.Connection, data: dict[str, Any]) -> dict[str, Any]:
    """Insert or replace the contact details stored under a customer's name."""
    info = validate_document(CustomerInfo, data)
    key = customer_key(info["name"])

    def mutate(docs: list[dict[str, Any]]) -> dict[str, Any]:
        for idx, doc in enumerate(docs):
            if customer_key(doc["name"]) == key:
                docs[idx] = info
                return info
        docs.append(info)
        return info

    return models.modify_collection(conn, models.CUSTOMERS, mutate, settings.version_retry_limit)
