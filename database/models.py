"""Document store operations.

Each collection (revenue, invoices, consignment, shop inventory, customers)
is stored as one JSON array and is always read and written whole. Every
row carries a version counter: writers pass back the version they read and
a stale write raises ``VersionConflictError`` instead of silently losing
the other writer's update. Successful writes notify registered change
listeners with the collection name.

Also holds the adjustment and cloud sync log tables.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any, TypeVar

from api.exceptions import VersionConflictError

logger = logging.getLogger(__name__)

REVENUE = "revenue"
INVOICES = "invoices"
CONSIGNMENT = "consignment"
SHOP_INVENTORY = "shop_inventory"
CUSTOMERS = "customers"

ALL_COLLECTIONS = (REVENUE, INVOICES, CONSIGNMENT, SHOP_INVENTORY, CUSTOMERS)

# Key each collection uses inside a cloud snapshot.
SNAPSHOT_KEYS = {
    REVENUE: "revenue",
    INVOICES: "invoices",
    CONSIGNMENT: "consignment",
    SHOP_INVENTORY: "inventory",
    CUSTOMERS: "customers",
}

ChangeListener = Callable[[str], None]
T = TypeVar("T")

_change_listeners: list[ChangeListener] = []

# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _now() -> str:
    """Return the current UTC timestamp as an ISO-8601 string."""
    return datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")


def _check_collection(name: str) -> None:
    if name not in ALL_COLLECTIONS:
        msg = f"Unknown collection: {name!r}"
        raise ValueError(msg)


def _rows_to_list(rows: list[sqlite3.Row]) -> list[dict[str, Any]]:
    """Convert a list of sqlite3.Row to a list of dicts."""
    return [dict(r) for r in rows]


# ---------------------------------------------------------------------------
# Change notification
# ---------------------------------------------------------------------------


def add_change_listener(listener: ChangeListener) -> None:
    """Register *listener* to be called with the collection name on every write."""
    if listener not in _change_listeners:
        _change_listeners.append(listener)


def remove_change_listener(listener: ChangeListener) -> None:
    if listener in _change_listeners:
        _change_listeners.remove(listener)


def _notify(name: str) -> None:
    for listener in list(_change_listeners):
        try:
            listener(name)
        except Exception:
            logger.warning("Change listener failed for %s", name, exc_info=True)


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------


def read_collection(conn: sqlite3.Connection, name: str) -> tuple[list[dict[str, Any]], int]:
    """Return ``(documents, version)`` for a collection."""
    _check_collection(name)
    row = conn.execute(
        "SELECT content, version FROM documents WHERE collection = ?", (name,)
    ).fetchone()
    if row is None:
        msg = f"Collection {name!r} is not initialised"
        raise RuntimeError(msg)
    return json.loads(row["content"]), int(row["version"])


def get_collection(conn: sqlite3.Connection, name: str) -> list[dict[str, Any]]:
    """Return the documents of a collection, ignoring its version."""
    docs, _version = read_collection(conn, name)
    return docs


def write_collection(
    conn: sqlite3.Connection,
    name: str,
    docs: list[dict[str, Any]],
    expected_version: int | None = None,
) -> int:
    """Replace a collection's documents and return the new version.

    When *expected_version* is given the write only succeeds if nobody else
    wrote the collection since it was read; otherwise it is last-writer-wins.
    """
    _check_collection(name)
    content = json.dumps(docs, ensure_ascii=False)
    if expected_version is None:
        cur = conn.execute(
            """
            UPDATE documents
            SET content = ?, version = version + 1, updated_at = ?
            WHERE collection = ?
            """,
            (content, _now(), name),
        )
    else:
        cur = conn.execute(
            """
            UPDATE documents
            SET content = ?, version = version + 1, updated_at = ?
            WHERE collection = ? AND version = ?
            """,
            (content, _now(), name, expected_version),
        )
    if cur.rowcount == 0:
        conn.rollback()
        if expected_version is None:
            msg = f"Collection {name!r} is not initialised"
            raise RuntimeError(msg)
        msg = f"Collection {name!r} changed since version {expected_version}"
        raise VersionConflictError(msg)
    conn.commit()

    row = conn.execute(
        "SELECT version FROM documents WHERE collection = ?", (name,)
    ).fetchone()
    _notify(name)
    return int(row["version"])


def modify_collection(
    conn: sqlite3.Connection,
    name: str,
    mutate: Callable[[list[dict[str, Any]]], T],
    retry_limit: int = 3,
) -> T:
    """Read a collection, let *mutate* change it in place, and write it back.

    The write is guarded by the version that was read; if another writer got
    in first the collection is re-read and *mutate* runs again, up to
    *retry_limit* times. Returns whatever *mutate* returned.
    """
    for _attempt in range(retry_limit):
        docs, version = read_collection(conn, name)
        result = mutate(docs)
        try:
            write_collection(conn, name, docs, expected_version=version)
        except VersionConflictError:
            logger.warning("Version conflict writing %s, retrying", name)
            continue
        return result
    msg = f"Collection {name!r} kept changing; gave up after {retry_limit} attempts"
    raise VersionConflictError(msg)


def find_index(docs: list[dict[str, Any]], doc_id: str | None) -> int | None:
    """Return the position of the document with *doc_id*, or None."""
    if not doc_id:
        return None
    for i, doc in enumerate(docs):
        if doc.get("id") == doc_id:
            return i
    return None


def get_document(
    conn: sqlite3.Connection,
    name: str,
    doc_id: str,
) -> dict[str, Any] | None:
    """Return a single document by id."""
    docs = get_collection(conn, name)
    idx = find_index(docs, doc_id)
    return None if idx is None else docs[idx]


def insert_document(
    conn: sqlite3.Connection,
    name: str,
    doc: dict[str, Any],
    retry_limit: int = 3,
) -> dict[str, Any]:
    """Append *doc* to a collection."""

    def mutate(docs: list[dict[str, Any]]) -> dict[str, Any]:
        docs.append(doc)
        return doc

    return modify_collection(conn, name, mutate, retry_limit)


def replace_document(
    conn: sqlite3.Connection,
    name: str,
    doc: dict[str, Any],
    retry_limit: int = 3,
) -> dict[str, Any] | None:
    """Replace the document with ``doc["id"]``. Returns None if it is gone."""

    def mutate(docs: list[dict[str, Any]]) -> dict[str, Any] | None:
        idx = find_index(docs, doc["id"])
        if idx is None:
            return None
        docs[idx] = doc
        return doc

    return modify_collection(conn, name, mutate, retry_limit)


def remove_documents(
    conn: sqlite3.Connection,
    name: str,
    predicate: Callable[[dict[str, Any]], bool],
    retry_limit: int = 3,
) -> list[dict[str, Any]]:
    """Remove every document matching *predicate* and return them."""

    def mutate(docs: list[dict[str, Any]]) -> list[dict[str, Any]]:
        removed = [d for d in docs if predicate(d)]
        docs[:] = [d for d in docs if not predicate(d)]
        return removed

    return modify_collection(conn, name, mutate, retry_limit)


def remove_document(
    conn: sqlite3.Connection,
    name: str,
    doc_id: str,
    retry_limit: int = 3,
) -> dict[str, Any] | None:
    """Remove one document by id. Returns it, or None if it was not there."""
    removed = remove_documents(conn, name, lambda d: d.get("id") == doc_id, retry_limit)
    return removed[0] if removed else None


# ---------------------------------------------------------------------------
# Snapshots (cloud mirror)
# ---------------------------------------------------------------------------


def snapshot(conn: sqlite3.Connection) -> dict[str, list[dict[str, Any]]]:
    """Return every collection keyed by its snapshot key."""
    return {SNAPSHOT_KEYS[name]: get_collection(conn, name) for name in ALL_COLLECTIONS}


def restore_snapshot(conn: sqlite3.Connection, data: dict[str, Any]) -> list[str]:
    """Overwrite local collections with those present in *data*.

    Keys missing from the snapshot leave the local collection untouched.
    Returns the names of the collections that were replaced.
    """
    present = {
        name: data[SNAPSHOT_KEYS[name]]
        for name in ALL_COLLECTIONS
        if data.get(SNAPSHOT_KEYS[name]) is not None
    }
    # All keys are checked before any collection is written.
    for name, docs in present.items():
        if not isinstance(docs, list):
            msg = f"Snapshot key {SNAPSHOT_KEYS[name]!r} must be a list"
            raise ValueError(msg)
    for name, docs in present.items():
        write_collection(conn, name, docs)
    return list(present)


def clear_collections(conn: sqlite3.Connection, names: Iterable[str]) -> None:
    """Empty the given collections."""
    for name in names:
        write_collection(conn, name, [])


# ---------------------------------------------------------------------------
# Adjustment log
# ---------------------------------------------------------------------------


def create_adjustment_log(
    conn: sqlite3.Connection,
    mutation: str,
    record_id: str,
    steps: list[dict[str, Any]],
    error: str | None = None,
) -> dict[str, Any]:
    """Persist a saga that stopped with pending steps."""
    cur = conn.execute(
        """
        INSERT INTO adjustment_log (mutation, record_id, steps, error)
        VALUES (?, ?, ?, ?)
        """,
        (mutation, record_id, json.dumps(steps), error),
    )
    conn.commit()
    row = conn.execute("SELECT * FROM adjustment_log WHERE id = ?", (cur.lastrowid,)).fetchone()
    return dict(row)


def list_failed_adjustments(conn: sqlite3.Connection) -> list[dict[str, Any]]:
    """Return failed sagas oldest first, with ``steps`` decoded."""
    rows = _rows_to_list(
        conn.execute(
            "SELECT * FROM adjustment_log WHERE status = 'failed' ORDER BY id"
        ).fetchall()
    )
    for row in rows:
        row["steps"] = json.loads(row["steps"])
    return rows


def update_adjustment_log(
    conn: sqlite3.Connection,
    log_id: int,
    status: str,
    steps: list[dict[str, Any]],
    error: str | None = None,
) -> bool:
    """Record the outcome of a retry. Returns True if the row exists."""
    cur = conn.execute(
        "UPDATE adjustment_log SET status = ?, steps = ?, error = ? WHERE id = ?",
        (status, json.dumps(steps), error, log_id),
    )
    conn.commit()
    return cur.rowcount > 0


# ---------------------------------------------------------------------------
# Sync log
# ---------------------------------------------------------------------------


def create_sync_log(
    conn: sqlite3.Connection,
    direction: str,
    status: str,
    error: str | None = None,
) -> dict[str, Any]:
    """Record a cloud push/pull attempt."""
    cur = conn.execute(
        "INSERT INTO sync_log (direction, status, error, created_at) VALUES (?, ?, ?, ?)",
        (direction, status, error, _now()),
    )
    conn.commit()
    row = conn.execute("SELECT * FROM sync_log WHERE id = ?", (cur.lastrowid,)).fetchone()
    return dict(row)


def get_last_sync(conn: sqlite3.Connection, direction: str | None = None) -> dict[str, Any] | None:
    """Return the most recent successful sync, optionally for one direction."""
    if direction is not None:
        row = conn.execute(
            """
            SELECT * FROM sync_log
            WHERE status = 'ok' AND direction = ?
            ORDER BY id DESC LIMIT 1
            """,
            (direction,),
        ).fetchone()
    else:
        row = conn.execute(
            "SELECT * FROM sync_log WHERE status = 'ok' ORDER BY id DESC LIMIT 1"
        ).fetchone()
    return None if row is None else dict(row)
