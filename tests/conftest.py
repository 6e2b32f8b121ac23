"""Shared test fixtures."""

from __future__ import annotations

import sqlite3
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest

import database.models as models
from services import cloud_sync, consignment, shop_inventory

_SCHEMA_PATH = Path(__file__).resolve().parent.parent / "database" / "schema.sql"


class _NoCloseConnection:
    """Wrapper around a sqlite3.Connection that ignores .close() calls.

    Prevents finally-block and teardown closes from destroying the shared
    in-memory fixture.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        object.__setattr__(self, "_conn", conn)

    def close(self) -> None:  # noqa: D102
        pass

    def __getattr__(self, name: str) -> object:
        return getattr(self._conn, name)

    def __setattr__(self, name: str, value: object) -> None:
        setattr(self._conn, name, value)


@pytest.fixture
def db() -> Generator[sqlite3.Connection, None, None]:
    """In-memory SQLite database with the full schema applied."""
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    schema = _SCHEMA_PATH.read_text()
    conn.executescript(schema)
    yield conn
    conn.close()


@pytest.fixture(autouse=True)
def _no_change_listeners(monkeypatch: pytest.MonkeyPatch) -> None:
    """Start every test without listeners or pending pushes from earlier tests."""
    monkeypatch.setattr(models, "_change_listeners", [])
    monkeypatch.setattr(cloud_sync, "_dirty", set())


@pytest.fixture
def no_close_db(db: sqlite3.Connection) -> _NoCloseConnection:
    return _NoCloseConnection(db)


@pytest.fixture
def client(no_close_db: _NoCloseConnection, monkeypatch: pytest.MonkeyPatch):
    """Flask test client whose requests all share the in-memory ``db``."""
    from api.app import create_app

    monkeypatch.setattr("api.routes.get_db", lambda _path: no_close_db)
    app = create_app()
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def shop_item(db: sqlite3.Connection) -> dict[str, Any]:
    """Insert and return a shop item with 10 units on hand."""
    return shop_inventory.create_item(
        db,
        {
            "product_name": "Silk Scarf",
            "import_price": 50000,
            "retail_price": 120000,
            "quantity": 10,
        },
    )


@pytest.fixture
def consignment_item(db: sqlite3.Connection) -> dict[str, Any]:
    """Insert and return a consignment listing of 3 dresses from An."""
    return consignment.create_item(
        db,
        {
            "consignor_name": "An",
            "product_name": "Dress",
            "consignment_price": 200000,
            "quantity": 3,
            "fee_percent": 20,
        },
    )
