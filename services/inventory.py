"""Stock adjustments for revenue and invoice mutations.

Every create/edit/delete of a stock-holding line is turned into an ordered
list of ``StockStep`` objects and executed by ``AdjustmentSaga``:

* create  -> take the new line's stock
* edit    -> give back everything the old line held, then take the new line's
             stock (two full phases, even when the target did not change)
* delete  -> give back everything the old line held

A line holds shop stock while its status is not RETURNED. It holds
consignment stock for as long as it exists: a RETURNED status does not give
consignment stock back, deleting the line does.

Invoice items that mirror a revenue entry never hold stock; the revenue entry
does. Each step re-reads its collection and writes it back with the version
it read. A step whose target record no longer exists is skipped. A step that
cannot be written stops the saga; the remaining steps are persisted to the
adjustment log and can be replayed with ``retry_failed_adjustments``. The
primary mutation is committed either way.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any

import database.models as models
from api.exceptions import AppError, ConflictError, VersionConflictError
from config import settings
from services.stock_match import (
    StockSource,
    is_returned,
    line_price,
    resolve_consignment_item,
    resolve_shop_item,
    stock_source,
)

logger = logging.getLogger(__name__)

_REF_FIELDS = ("shop_item_id", "consignor_name", "consignment_item_id", "product_name")


class StepStatus(StrEnum):
    PENDING = "pending"
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class StockStep:
    """One quantity change on one shop or consignment record."""

    ledger: str
    delta: int
    ref: dict[str, Any]
    sync_prices: dict[str, float] | None = None
    status: StepStatus = StepStatus.PENDING
    target_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = str(self.status)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StockStep:
        return cls(
            ledger=data["ledger"],
            delta=int(data["delta"]),
            ref=dict(data["ref"]),
            sync_prices=data.get("sync_prices"),
            status=StepStatus(data.get("status", StepStatus.PENDING)),
            target_id=data.get("target_id"),
            error=data.get("error"),
        )


@dataclass
class AdjustmentOutcome:
    """Per-step result of a saga; doubles as the token needed to replay it."""

    mutation: str
    record_id: str
    steps: list[StockStep] = field(default_factory=list)
    log_id: int | None = None

    @property
    def failed(self) -> bool:
        return any(s.status in (StepStatus.FAILED, StepStatus.PENDING) for s in self.steps)

    @property
    def skipped(self) -> list[StockStep]:
        return [s for s in self.steps if s.status == StepStatus.SKIPPED]

    def consignment_item_id(self) -> str | None:
        """Id of the consignment record the new line took stock from, if any."""
        for step in reversed(self.steps):
            if (
                step.ledger == models.CONSIGNMENT
                and step.delta < 0
                and step.status == StepStatus.APPLIED
            ):
                return step.target_id
        return None

    def warnings(self) -> list[str]:
        """Human-readable problems, for API responses and CLI output."""
        messages = []
        for step in self.steps:
            label = "shop item" if step.ledger == models.SHOP_INVENTORY else "consignment item"
            name = step.ref.get("product_name") or step.ref.get("shop_item_id")
            if step.status == StepStatus.SKIPPED:
                messages.append(f"Stock not adjusted: {label} for {name!r} no longer exists")
            elif step.status == StepStatus.FAILED:
                messages.append(f"Stock adjustment failed for {label} {name!r}: {step.error}")
        return messages

    def to_dict(self) -> dict[str, Any]:
        return {
            "mutation": self.mutation,
            "record_id": self.record_id,
            "log_id": self.log_id,
            "steps": [s.to_dict() for s in self.steps],
        }


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


def _ref(line: dict[str, Any]) -> dict[str, Any]:
    ref = {key: line.get(key) for key in _REF_FIELDS}
    ref["retail_price"] = line_price(line)
    return ref


def _price_sync(line: dict[str, Any]) -> dict[str, float]:
    prices = {"retail_price": line_price(line)}
    if "cost_price" in line:
        prices["import_price"] = float(line["cost_price"])
    return prices


def held_stock_steps(line: dict[str, Any] | None, *, release: bool) -> list[StockStep]:
    """Steps that take (``release=False``) or give back the stock *line* holds."""
    if not line or line.get("revenue_entry_id") or line.get("settlement"):
        return []
    quantity = int(line.get("quantity", 0))
    if quantity <= 0:
        return []

    sign = 1 if release else -1
    source = stock_source(line)
    if source == StockSource.SHOP and not is_returned(line):
        return [
            StockStep(
                ledger=models.SHOP_INVENTORY,
                delta=sign * quantity,
                ref=_ref(line),
                sync_prices=None if release else _price_sync(line),
            )
        ]
    if source == StockSource.CONSIGNMENT:
        return [StockStep(ledger=models.CONSIGNMENT, delta=sign * quantity, ref=_ref(line))]
    return []


def plan_create(line: dict[str, Any]) -> list[StockStep]:
    return held_stock_steps(line, release=False)


def plan_edit(old: dict[str, Any], new: dict[str, Any]) -> list[StockStep]:
    """Revert the old linkage completely, then apply the new one."""
    return held_stock_steps(old, release=True) + held_stock_steps(new, release=False)


def plan_delete(old: dict[str, Any]) -> list[StockStep]:
    return held_stock_steps(old, release=True)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class AdjustmentSaga:
    """Run stock steps in order, recording each step's outcome."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        mutation: str,
        record_id: str,
        steps: list[StockStep],
        *,
        log_id: int | None = None,
        retry_limit: int | None = None,
    ) -> None:
        self.conn = conn
        self.outcome = AdjustmentOutcome(mutation, record_id, steps, log_id)
        self.retry_limit = retry_limit or settings.version_retry_limit

    def run(self) -> AdjustmentOutcome:
        for step in self.outcome.steps:
            if step.status in (StepStatus.APPLIED, StepStatus.SKIPPED):
                continue
            try:
                self._apply(step)
            except (AppError, sqlite3.Error) as exc:
                step.status = StepStatus.FAILED
                step.error = str(exc)
                logger.warning(
                    "Stock adjustment for %s %s stopped at %s: %s",
                    self.outcome.mutation, self.outcome.record_id, step.ledger, exc,
                )
                self._persist_failure(str(exc))
                break
        return self.outcome

    def _apply(self, step: StockStep) -> None:
        for _attempt in range(self.retry_limit):
            docs, version = models.read_collection(self.conn, step.ledger)
            if step.ledger == models.SHOP_INVENTORY:
                match = resolve_shop_item(docs, step.ref)
            else:
                match = resolve_consignment_item(docs, step.ref)

            if match is None:
                step.status = StepStatus.SKIPPED
                logger.warning(
                    "Skipping %s adjustment of %+d for %s: referenced record not found",
                    step.ledger, step.delta, step.ref.get("product_name"),
                )
                return

            item = docs[match.index]
            item["quantity"] = int(item.get("quantity", 0)) + step.delta
            if step.sync_prices:
                item.update(step.sync_prices)

            try:
                models.write_collection(self.conn, step.ledger, docs, expected_version=version)
            except VersionConflictError:
                logger.warning("Version conflict on %s, re-reading", step.ledger)
                continue

            step.status = StepStatus.APPLIED
            step.target_id = match.item_id
            return

        msg = f"{step.ledger} kept changing; gave up after {self.retry_limit} attempts"
        raise ConflictError(msg)

    def _persist_failure(self, error: str) -> None:
        steps = [s.to_dict() for s in self.outcome.steps]
        if self.outcome.log_id is None:
            row = models.create_adjustment_log(
                self.conn, self.outcome.mutation, self.outcome.record_id, steps, error
            )
            self.outcome.log_id = row["id"]
        else:
            models.update_adjustment_log(self.conn, self.outcome.log_id, "failed", steps, error)


def run_adjustments(
    conn: sqlite3.Connection,
    mutation: str,
    record_id: str,
    steps: list[StockStep],
) -> AdjustmentOutcome:
    return AdjustmentSaga(conn, mutation, record_id, steps).run()


def on_create(conn: sqlite3.Connection, line: dict[str, Any], mutation: str = "create") -> AdjustmentOutcome:
    """Take stock for a newly created line."""
    return run_adjustments(conn, mutation, line["id"], plan_create(line))


def on_edit(
    conn: sqlite3.Connection,
    old: dict[str, Any],
    new: dict[str, Any],
    mutation: str = "edit",
) -> AdjustmentOutcome:
    """Move stock from the old version of a line to the new one."""
    return run_adjustments(conn, mutation, new["id"], plan_edit(old, new))


def on_delete(conn: sqlite3.Connection, old: dict[str, Any], mutation: str = "delete") -> AdjustmentOutcome:
    """Give back the stock a deleted line held."""
    return run_adjustments(conn, mutation, old["id"], plan_delete(old))


def retry_failed_adjustments(conn: sqlite3.Connection) -> list[AdjustmentOutcome]:
    """Replay every saga left with pending or failed steps."""
    outcomes = []
    for row in models.list_failed_adjustments(conn):
        steps = [StockStep.from_dict(s) for s in row["steps"]]
        for step in steps:
            if step.status == StepStatus.FAILED:
                step.status = StepStatus.PENDING
                step.error = None
        saga = AdjustmentSaga(conn, row["mutation"], row["record_id"], steps, log_id=row["id"])
        outcome = saga.run()
        if not outcome.failed:
            models.update_adjustment_log(
                conn, row["id"], "retried", [s.to_dict() for s in outcome.steps]
            )
            logger.info("Replayed stock adjustment log #%s", row["id"])
        outcomes.append(outcome)
    return outcomes
