"""Reader for payment-platform ticket exports (CSV or JSON lines)."""

from __future__ import annotations

import csv
import json
from datetime import UTC, datetime
from decimal import Decimal
from logging import getLogger
from typing import TYPE_CHECKING

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from mealledger.domain.errors import InvalidRequestError
from mealledger.domain.model import PaymentMethod, split_full_name, to_decimal
from mealledger.domain.reconciliation.contracts import LineItem
from mealledger.domain.reconciliation.mapping import parse_payment_method, parse_timestamp

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping
    from pathlib import Path

log = getLogger(__name__)

EXPORT_DATE_FORMATS = ("%m/%d/%Y, %I:%M %p", "%m/%d/%Y %I:%M %p", "%m/%d/%Y")
PLACEHOLDER_PHONES = frozenset({"no phone provided", "n/a", "none"})


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


def parse_export_date(value: str | None) -> datetime | None:
    """Parse ``"12/31/2025, 3:04 PM"`` (read as UTC) or an ISO-8601 timestamp."""

    if not value:
        return None
    text = value.strip()
    for pattern in EXPORT_DATE_FORMATS:
        try:
            return datetime.strptime(text, pattern).replace(tzinfo=UTC)
        except ValueError:
            continue
    return parse_timestamp(text)


class ExportRow(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    first_name: str | None = Field(
        default=None, validation_alias=AliasChoices("First Name", "first_name", "firstName")
    )
    last_name: str | None = Field(
        default=None, validation_alias=AliasChoices("Last Name", "last_name", "lastName")
    )
    buyer_name: str | None = Field(
        default=None, validation_alias=AliasChoices("Buyer name", "Buyer Name", "Name", "name")
    )
    email: str | None = Field(
        default=None, validation_alias=AliasChoices("Email", "Buyer email", "email")
    )
    phone: str | None = Field(default=None, validation_alias=AliasChoices("Phone", "phone"))
    payment_date: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "Payment Date", "Purchase Date", "Date", "purchaseTimestamp", "purchased_at"
        ),
    )
    details: str | None = Field(
        default=None, validation_alias=AliasChoices("Details", "detailsText", "details_text")
    )
    ticket_type: str | None = Field(
        default=None, validation_alias=AliasChoices("Ticket type", "Ticket Type")
    )
    quantity: int | None = Field(
        default=None, validation_alias=AliasChoices("Quantity", "Ticket Quantity", "quantity")
    )
    amount: str | None = Field(
        default=None,
        validation_alias=AliasChoices("Total Amount", "Amount", "Amount Paid", "amount_paid"),
    )
    payment_method: str | None = Field(
        default=None, validation_alias=AliasChoices("Payment Method", "payment_method")
    )
    reference: str | None = Field(
        default=None,
        validation_alias=AliasChoices("Transaction ID", "Ticket number", "external_ref"),
    )

    _normalize_blanks = field_validator(
        "first_name",
        "last_name",
        "buyer_name",
        "email",
        "phone",
        "payment_date",
        "details",
        "ticket_type",
        "amount",
        "payment_method",
        "reference",
        mode="before",
    )(_blank_to_none)

    @field_validator("quantity", mode="before")
    @classmethod
    def _parse_quantity(cls, value: object) -> object:
        value = _blank_to_none(value)
        if isinstance(value, str):
            return int(float(value))
        return value

    @field_validator("amount", "reference", mode="before")
    @classmethod
    def _stringify(cls, value: object) -> object:
        if isinstance(value, int | float | Decimal) and not isinstance(value, bool):
            return str(value)
        return value

    def to_line_item(self) -> LineItem:
        first_name, last_name = self.first_name or "", self.last_name or ""
        if not (first_name or last_name) and self.buyer_name:
            first_name, last_name = split_full_name(self.buyer_name)
        details = self.details or (f"1x {self.ticket_type}" if self.ticket_type else "")
        phone = self.phone
        if phone and phone.casefold() in PLACEHOLDER_PHONES:
            phone = None
        return LineItem(
            first_name=first_name,
            last_name=last_name,
            email=self.email,
            phone=phone,
            purchased_at=parse_export_date(self.payment_date),
            details_text=details,
            quantity=self.quantity,
            amount_paid=to_decimal(self.amount),
            payment_method=(
                parse_payment_method(self.payment_method)
                if self.payment_method
                else PaymentMethod.CARD
            ),
            external_ref=self.reference,
        )


def parse_rows(rows: Iterable[Mapping[str, object]]) -> list[LineItem]:
    items: list[LineItem] = []
    for number, row in enumerate(rows, start=1):
        try:
            export_row = ExportRow.model_validate(dict(row))
        except (ValidationError, ValueError) as exc:
            raise InvalidRequestError(f"Export row {number} is invalid: {exc}") from exc
        items.append(export_row.to_line_item())
    return items


def read_ticket_export(path: Path) -> list[LineItem]:
    """Read ``path`` as JSON lines when it ends in ``.jsonl``/``.ndjson``, else as CSV."""

    if path.suffix.lower() in {".jsonl", ".ndjson"}:
        items = parse_rows(_iter_json_lines(path))
    else:
        with path.open(newline="", encoding="utf-8-sig") as handle:
            items = parse_rows(csv.DictReader(handle))
    log.info("Read %s line items from %s", len(items), path)
    return items


def _iter_json_lines(path: Path) -> Iterator[Mapping[str, object]]:
    with path.open(encoding="utf-8") as handle:
        for number, line in enumerate(handle, start=1):
            if not line.strip():
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError as exc:
                raise InvalidRequestError(f"Line {number} of {path} is not JSON: {exc}") from exc
            if not isinstance(payload, dict):
                raise InvalidRequestError(f"Line {number} of {path} is not an object")
            yield payload
