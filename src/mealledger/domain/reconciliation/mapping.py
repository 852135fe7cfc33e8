"""Translate ticket records to and from ``Transaction`` entities."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from mealledger.domain.model import Identity, PaymentMethod, Transaction, to_decimal, to_number

if TYPE_CHECKING:
    from mealledger.domain.model import StoredRecord


@dataclass(frozen=True, slots=True)
class TransactionFields:
    """Column names shared by every event ticket table."""

    first_name: str = "First Name"
    last_name: str = "Last Name"
    email: str = "Email"
    phone: str = "Phone"
    payment_method: str = "Payment Method"
    purchase_date: str = "Purchase Date"
    amount_paid: str = "Amount Paid"
    subtotal: str = "Ticket Subtotal"
    quantity: str = "Ticket Quantity"
    transaction_id: str = "Transaction ID"
    refunded: str = "Refunded"
    notes: str = "Payment Notes"
    staff: str = "Staff Initials"


def parse_timestamp(value: object) -> datetime | None:
    """Parse an ISO-8601 date or timestamp as stored by the record store."""

    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def parse_payment_method(value: object) -> PaymentMethod:
    text = str(value or "").strip()
    if not text:
        return PaymentMethod.UNKNOWN
    try:
        return PaymentMethod(text)
    except ValueError:
        pass
    lowered = text.casefold()
    for method in PaymentMethod:
        if method.value.casefold() == lowered:
            return method
    if lowered.startswith("card"):
        return PaymentMethod.CARD
    return PaymentMethod.OTHER


def transaction_from_record(
    record: StoredRecord,
    *,
    member_count_field: str,
    non_member_count_field: str,
    fields: TransactionFields | None = None,
) -> Transaction:
    names = fields or TransactionFields()
    subtotal = to_decimal(record.fields.get(names.subtotal))
    external_ref = record.get_str(names.transaction_id) or None
    return Transaction(
        identity=Identity(
            first_name=record.get_str(names.first_name),
            last_name=record.get_str(names.last_name),
            email=record.get_str(names.email) or None,
            phone=record.get_str(names.phone) or None,
        ),
        member_count=record.get_int(member_count_field),
        non_member_count=record.get_int(non_member_count_field),
        amount_paid=to_decimal(record.fields.get(names.amount_paid)) or Decimal(0),
        subtotal=subtotal,
        payment_method=parse_payment_method(record.fields.get(names.payment_method)),
        purchased_at=parse_timestamp(record.fields.get(names.purchase_date)),
        refunded=record.get_bool(names.refunded),
        external_ref=external_ref,
        notes=record.get_str(names.notes),
        staff=record.get_str(names.staff),
        id=record.id,
        created_at=record.created_at,
    )


def transaction_to_fields(
    transaction: Transaction,
    *,
    member_count_field: str,
    non_member_count_field: str,
    fields: TransactionFields | None = None,
) -> dict[str, object]:
    names = fields or TransactionFields()
    identity = transaction.identity
    payload: dict[str, object] = {
        names.first_name: identity.first_name,
        names.last_name: identity.last_name,
        names.email: identity.email or "",
        names.phone: identity.phone or "",
        names.payment_method: transaction.payment_method.value,
        names.amount_paid: to_number(transaction.amount_paid),
        names.quantity: transaction.quantity,
        member_count_field: transaction.member_count,
        non_member_count_field: transaction.non_member_count,
    }
    if transaction.subtotal is not None:
        payload[names.subtotal] = to_number(transaction.subtotal)
    if transaction.purchased_at is not None:
        payload[names.purchase_date] = format_timestamp(transaction.purchased_at)
    if transaction.external_ref:
        payload[names.transaction_id] = transaction.external_ref
    if transaction.notes:
        payload[names.notes] = transaction.notes
    if transaction.staff:
        payload[names.staff] = transaction.staff
    if transaction.refunded:
        payload[names.refunded] = True
    return payload
