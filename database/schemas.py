"""Pydantic models for the documents kept in each collection.

Documents are persisted as plain dicts (``model_dump(mode="json")``); the
models are used to validate user input before any mutation runs.
"""

from __future__ import annotations

import datetime
from enum import StrEnum
from typing import Annotated, Any, TypeVar

import pydantic
from pydantic import BaseModel, BeforeValidator, Field, field_validator, model_validator

from api.exceptions import ValidationError
from utils.ids import generate_id


class RevenueStatus(StrEnum):
    HOLDING = "HOLDING"
    SHIPPING = "SHIPPING"
    DELIVERED = "DELIVERED"
    RETURNED = "RETURNED"


class ConsignmentStatus(StrEnum):
    IN_STOCK = "IN_STOCK"
    DEPOSITED = "DEPOSITED"
    SOLD = "SOLD"
    RETURNED = "RETURNED"


def _today() -> str:
    return datetime.date.today().isoformat()


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


OptionalRef = Annotated[str | None, BeforeValidator(_blank_to_none)]


class _Document(BaseModel):
    model_config = pydantic.ConfigDict(str_strip_whitespace=True, use_enum_values=True)

    id: str = Field(default_factory=generate_id)


class RevenueEntry(_Document):
    """One sold batch in the revenue ledger."""

    date: str = Field(default_factory=_today)
    customer_name: str = ""
    product_name: str = Field(min_length=1)
    cost_price: float = Field(default=0, ge=0)
    retail_price: float = Field(ge=0)
    quantity: int = Field(default=1, ge=1)
    status: RevenueStatus = RevenueStatus.HOLDING
    consignor_name: OptionalRef = None
    shop_item_id: OptionalRef = None
    consignment_item_id: OptionalRef = None
    # Commission recognised by a consignor settlement; holds no stock.
    settlement: bool = False
    note: str = ""

    @field_validator("date")
    @classmethod
    def _iso_date(cls, value: str) -> str:
        try:
            return datetime.date.fromisoformat(value).isoformat()
        except ValueError as exc:
            msg = f"date must be YYYY-MM-DD, got {value!r}"
            raise ValueError(msg) from exc

    @model_validator(mode="after")
    def _single_stock_source(self) -> RevenueEntry:
        if self.shop_item_id and self.consignor_name:
            msg = "An entry cannot reference both a shop item and a consignor"
            raise ValueError(msg)
        return self


class InvoiceItem(_Document):
    """A line on a customer invoice."""

    product_name: str = Field(min_length=1)
    selling_price: float = Field(default=0, ge=0)
    quantity: int = Field(default=1, ge=1)
    status: RevenueStatus = RevenueStatus.HOLDING
    shop_item_id: OptionalRef = None
    revenue_entry_id: OptionalRef = None


class Invoice(_Document):
    """All outstanding lines for one customer plus their deposit."""

    customer_name: str = Field(min_length=1)
    deposit: float = Field(default=0, ge=0)
    items: list[InvoiceItem] = Field(default_factory=list)


class ConsignmentItem(_Document):
    """Stock held on behalf of a consignor."""

    consignor_name: str = Field(min_length=1)
    product_name: str = Field(min_length=1)
    consignment_price: float = Field(ge=0)
    # Negative when oversold; sales never block on stock.
    quantity: int = 1
    fee_percent: float = Field(default=20, ge=0, le=100)
    status: ConsignmentStatus = ConsignmentStatus.IN_STOCK
    note: str = ""


class ShopItem(_Document):
    """A SKU owned by the shop."""

    product_name: str = Field(min_length=1)
    import_price: float = Field(default=0, ge=0)
    retail_price: float = Field(default=0, ge=0)
    quantity: int = 0
    note: str = ""


class CustomerInfo(BaseModel):
    """Contact details keyed by customer name."""

    model_config = pydantic.ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1)
    phone: str | None = None
    address: str | None = None


ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_document(model: type[ModelT], data: dict[str, Any]) -> ModelT:
    """Validate *data* against *model*, raising the app's ValidationError."""
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}"
            for err in exc.errors()
        )
        msg = f"Invalid {model.__name__}: {problems}"
        raise ValidationError(msg) from exc


def validate_document(model: type[BaseModel], data: dict[str, Any]) -> dict[str, Any]:
    """Validate *data* and return it as a JSON-ready dict."""
    return parse_document(model, data).model_dump(mode="json")
