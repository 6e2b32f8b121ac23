"""Best-effort cloud mirror of the whole store.

The store is pushed as one JSON snapshot into a single row of a Supabase
table (``{id, content, updated_at}``) through its PostgREST endpoint, and
pulled back verbatim. There is no merge: a pull overwrites every collection
present in the snapshot. Every attempt is recorded in ``sync_log``.
"""

from __future__ import annotations

import contextlib
import logging
import sqlite3
from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any

import requests

import database.models as models
from api.exceptions import CloudSyncError
from config import settings
from database.connection import get_db

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30

# Collections whose changes trigger an automatic push.
AUTO_PUSH_COLLECTIONS = frozenset(
    {models.REVENUE, models.INVOICES, models.CONSIGNMENT, models.SHOP_INVENTORY}
)

_auto_push_suspended = False
_dirty: set[str] = set()

# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def _endpoint() -> str:
    if not settings.cloud_configured:
        msg = "Cloud sync not configured. Set CLOUD_URL and CLOUD_KEY."
        raise CloudSyncError(msg)
    return f"{settings.cloud_url.rstrip('/')}/rest/v1/{settings.cloud_table}"


def _headers(**extra: str) -> dict[str, str]:
    headers = {
        "apikey": settings.cloud_key,
        "Authorization": f"Bearer {settings.cloud_key}",
        "Content-Type": "application/json",
    }
    headers.update(extra)
    return headers


def _record(conn: sqlite3.Connection, direction: str, error: str | None = None) -> None:
    models.create_sync_log(conn, direction, "failed" if error else "ok", error)


# ---------------------------------------------------------------------------
# Push / pull
# ---------------------------------------------------------------------------


def push_snapshot(conn: sqlite3.Connection) -> dict[str, Any]:
    """Upload every collection as one snapshot row.

    Returns dict with keys: record_id, updated_at, counts.
    Raises CloudSyncError on any transport or HTTP failure.
    """
    data = models.snapshot(conn)
    updated_at = datetime.now(UTC).isoformat()
    row = {"id": settings.cloud_record_id, "content": data, "updated_at": updated_at}

    try:
        resp = requests.post(
            _endpoint(),
            json=row,
            headers=_headers(Prefer="resolution=merge-duplicates,return=minimal"),
            timeout=REQUEST_TIMEOUT,
        )
        resp.raise_for_status()
    except (requests.RequestException, CloudSyncError) as exc:
        logger.warning("Cloud push failed: %s", exc)
        _record(conn, "push", str(exc))
        if isinstance(exc, CloudSyncError):
            raise
        msg = f"Cloud push failed: {exc}"
        raise CloudSyncError(msg) from exc

    _record(conn, "push")
    counts = {key: len(docs) for key, docs in data.items()}
    logger.info("Pushed snapshot to cloud: %s", counts)
    return {"record_id": settings.cloud_record_id, "updated_at": updated_at, "counts": counts}


def pull_snapshot(conn: sqlite3.Connection) -> dict[str, Any]:
    """Download the snapshot row and return its ``content`` untouched."""
    try:
        resp = requests.get(
            _endpoint(),
            params={"select": "content", "id": f"eq.{settings.cloud_record_id}"},
            headers=_headers(),
            timeout=REQUEST_TIMEOUT,
        )
        resp.raise_for_status()
        rows = resp.json()
        if not rows:
            msg = f"No cloud snapshot with id {settings.cloud_record_id!r}"
            raise CloudSyncError(msg)
        content = rows[0]["content"]
        if not isinstance(content, dict):
            msg = "Cloud snapshot content is not an object"
            raise CloudSyncError(msg)
    except (requests.RequestException, ValueError, KeyError, CloudSyncError) as exc:
        logger.warning("Cloud pull failed: %s", exc)
        _record(conn, "pull", str(exc))
        if isinstance(exc, CloudSyncError):
            raise
        msg = f"Cloud pull failed: {exc}"
        raise CloudSyncError(msg) from exc
    return content


def pull_and_restore(conn: sqlite3.Connection) -> list[str]:
    """Pull the snapshot and overwrite local collections with it.

    Local data is untouched if the pull fails. Returns the restored
    collection names.
    """
    content = pull_snapshot(conn)
    with suspend_auto_push():
        try:
            restored = models.restore_snapshot(conn, content)
        except ValueError as exc:
            _record(conn, "pull", str(exc))
            msg = f"Cloud snapshot rejected: {exc}"
            raise CloudSyncError(msg) from exc
    _record(conn, "pull")
    logger.info("Restored %s from cloud snapshot", ", ".join(restored) or "nothing")
    return restored


def sync_status(conn: sqlite3.Connection) -> dict[str, Any]:
    """Whether sync is configured and when it last succeeded each way."""
    last_push = models.get_last_sync(conn, "push")
    last_pull = models.get_last_sync(conn, "pull")
    return {
        "configured": settings.cloud_configured,
        "auto_push": settings.cloud_auto_push,
        "last_push": last_push["created_at"] if last_push else None,
        "last_pull": last_pull["created_at"] if last_pull else None,
    }


# ---------------------------------------------------------------------------
# Auto push
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def suspend_auto_push() -> Iterator[None]:
    """Disable auto push while restoring data that came from the cloud."""
    global _auto_push_suspended
    previous = _auto_push_suspended
    _auto_push_suspended = True
    try:
        yield
    finally:
        _auto_push_suspended = previous


def _mark_dirty(collection: str) -> None:
    if _auto_push_suspended or collection not in AUTO_PUSH_COLLECTIONS:
        return
    _dirty.add(collection)


def flush_auto_push() -> bool:
    """Push once if any watched collection changed since the last flush.

    Called after each API request and CLI command, so one mutation touching
    several collections costs a single push. A failed push is logged and
    recorded in ``sync_log``; the local writes stand. Returns True when a
    push succeeded.
    """
    if not _dirty:
        return False
    changed = sorted(_dirty)
    _dirty.clear()
    conn = get_db(settings.database_path)
    try:
        push_snapshot(conn)
    except CloudSyncError as exc:
        logger.warning("Auto push after changes to %s failed: %s", ", ".join(changed), exc)
        return False
    finally:
        conn.close()
    return True


def enable_auto_push() -> bool:
    """Track writes to watched collections for :func:`flush_auto_push`, if configured."""
    if not (settings.cloud_auto_push and settings.cloud_configured):
        return False
    models.add_change_listener(_mark_dirty)
    logger.info("Cloud auto push enabled")
    return True


def disable_auto_push() -> None:
    models.remove_change_listener(_mark_dirty)
    _dirty.clear()


def pull_on_startup() -> list[str] | None:
    """Restore the cloud snapshot once at startup, if enabled.

    Returns the restored collection names, or None when disabled or the
    pull failed; local data is kept in that case.
    """
    if not (settings.cloud_pull_on_start and settings.cloud_configured):
        return None
    conn = get_db(settings.database_path)
    try:
        return pull_and_restore(conn)
    except CloudSyncError as exc:
        logger.warning("Startup pull failed, keeping local data: %s", exc)
        return None
    finally:
        conn.close()
