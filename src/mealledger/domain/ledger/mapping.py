"""Translate meal card and reservation records to and from domain entities."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from mealledger.domain.model import (
    Identity,
    LedgerAccount,
    MealType,
    Reservation,
    ReservationStatus,
    Tier,
    to_decimal,
    to_number,
)
from mealledger.domain.reconciliation.mapping import parse_payment_method, parse_timestamp

if TYPE_CHECKING:
    from mealledger.domain.model import StoredRecord

_CARD_TYPE = re.compile(r"^\s*(\d+)")


@dataclass(frozen=True, slots=True)
class CardFields:
    name: str = "Name"
    phone: str = "Phone"
    card_type: str = "Card Type"
    member_status: str = "Member Status"
    total: str = "Total Meals"
    remaining: str = "Remaining Meals"
    amount_paid: str = "Amount Paid"
    payment_method: str = "Payment Method"
    purchase_date: str = "Purchase Date"
    staff: str = "Staff"
    weekly_delivery: str = "Weekly Delivery"
    delivery_address: str = "Delivery Address"
    frozen_addon: str = "Frozen Friday"


@dataclass(frozen=True, slots=True)
class ReservationFields:
    name: str = "Name"
    date: str = "Date"
    meal_type: str = "Meal Type"
    quantity: str = "Quantity"
    member_status: str = "Member Status"
    amount: str = "Amount"
    payment_method: str = "Payment Method"
    notes: str = "Notes"
    staff: str = "Staff"
    status: str = "Status"
    account: str = "Lunch Card"


CARD_FIELDS = CardFields()
RESERVATION_FIELDS = ReservationFields()


def card_type_label(meals: int) -> str:
    return f"{meals} Meals"


def parse_member_status(value: object) -> Tier:
    text = str(value or "").strip().casefold()
    if text in {"non-member", "nonmember", "non member"}:
        return Tier.NON_MEMBER
    if text == "member":
        return Tier.MEMBER
    return Tier.UNKNOWN


def parse_meal_type(value: object) -> MealType:
    text = str(value or "").strip().casefold()
    for meal_type in MealType:
        if meal_type.value.casefold() == text:
            return meal_type
    # older rows say "Pickup"
    return MealType.TO_GO


def parse_status(value: object) -> ReservationStatus:
    text = str(value or "").strip().casefold()
    for status in ReservationStatus:
        if status.value.casefold() == text:
            return status
    return ReservationStatus.RESERVED


def account_from_record(record: StoredRecord, fields: CardFields = CARD_FIELDS) -> LedgerAccount:
    match = _CARD_TYPE.match(record.get_str(fields.card_type))
    card_tier = int(match.group(1)) if match else 0
    total = record.get_int(fields.total) or card_tier
    payment = record.get_str(fields.payment_method)
    return LedgerAccount(
        id=record.id,
        identity=Identity.from_full_name(
            record.get_str(fields.name),
            phone=record.get_str(fields.phone) or None,
        ),
        card_tier=card_tier or total,
        total=total,
        remaining=record.get_int(fields.remaining),
        member_status=parse_member_status(record.fields.get(fields.member_status)),
        amount_paid=to_decimal(record.fields.get(fields.amount_paid)) or Decimal(0),
        payment_method=parse_payment_method(payment) if payment else None,
        weekly_delivery=record.get_bool(fields.weekly_delivery),
        frozen_addon=record.get_bool(fields.frozen_addon),
        delivery_address=record.get_str(fields.delivery_address) or None,
        created_at=record.created_at,
    )


def account_to_fields(
    account: LedgerAccount,
    *,
    purchased_on: date,
    staff: str,
    fields: CardFields = CARD_FIELDS,
) -> dict[str, object]:
    payload: dict[str, object] = {
        fields.name: account.identity.full_name,
        fields.phone: account.identity.phone or "",
        fields.card_type: card_type_label(account.card_tier),
        fields.member_status: account.member_status.value,
        fields.total: account.total,
        fields.remaining: account.remaining,
        fields.amount_paid: to_number(account.amount_paid),
        fields.purchase_date: purchased_on.isoformat(),
        fields.staff: staff,
    }
    if account.payment_method is not None:
        payload[fields.payment_method] = account.payment_method.value
    if account.weekly_delivery:
        payload[fields.weekly_delivery] = True
    if account.frozen_addon:
        payload[fields.frozen_addon] = True
    if account.delivery_address:
        payload[fields.delivery_address] = account.delivery_address
    return payload


def reservation_from_record(
    record: StoredRecord,
    fields: ReservationFields = RESERVATION_FIELDS,
) -> Reservation:
    links = record.get_links(fields.account)
    served_at = parse_timestamp(record.fields.get(fields.date))
    return Reservation(
        id=record.id,
        identity=Identity.from_full_name(record.get_str(fields.name)),
        date=served_at.date() if served_at else record.created_at.date(),
        meal_type=parse_meal_type(record.fields.get(fields.meal_type)),
        # reservations written before the quantity column existed held one meal
        quantity=record.get_int(fields.quantity) or 1,
        account_id=links[0] if links else None,
        member_status=parse_member_status(record.fields.get(fields.member_status)),
        payment_method=parse_payment_method(record.fields.get(fields.payment_method)),
        amount=to_decimal(record.fields.get(fields.amount)) or Decimal(0),
        notes=record.get_str(fields.notes),
        status=parse_status(record.fields.get(fields.status)),
        staff=record.get_str(fields.staff),
        created_at=record.created_at,
    )


def reservation_to_fields(
    reservation: Reservation,
    fields: ReservationFields = RESERVATION_FIELDS,
) -> dict[str, object]:
    payload: dict[str, object] = {
        fields.name: reservation.identity.full_name,
        fields.date: reservation.date.isoformat(),
        fields.meal_type: reservation.meal_type.value,
        fields.quantity: reservation.quantity,
        fields.member_status: reservation.member_status.value,
        fields.amount: to_number(reservation.amount),
        fields.payment_method: reservation.payment_method.value,
        fields.notes: reservation.notes,
        fields.staff: reservation.staff,
        fields.status: reservation.status.value,
    }
    if reservation.account_id is not None:
        payload[fields.account] = [reservation.account_id]
    return payload


def append_note(existing: str, note: str) -> str:
    existing = existing.strip()
    if not existing:
        return note
    return f"{existing}\n{note}"
