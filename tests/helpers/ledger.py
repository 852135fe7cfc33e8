"""Meal card and reservation factories for ledger tests."""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING

from mealledger.domain.ledger import CardPurchase, ReservationRequest
from mealledger.domain.model import MealType, PaymentMethod, Tier

if TYPE_CHECKING:
    from tests.helpers.record_store import InMemoryRecordStore

CARDS_TABLE = "tblCards"
RESERVATIONS_TABLE = "tblReservations"
SERVICE_DAY = date(2025, 3, 14)


def seed_card(
    store: InMemoryRecordStore,
    *,
    name: str = "Ann Lee",
    total: int = 10,
    remaining: int = 10,
) -> str:
    record = store.seed(
        CARDS_TABLE,
        {
            "Name": name,
            "Phone": "555-0100",
            "Card Type": f"{total} Meals",
            "Member Status": "Member",
            "Total Meals": total,
            "Remaining Meals": remaining,
            "Amount Paid": 9 * total,
            "Payment Method": "Cash",
        },
    )
    return record.id


def card_purchase(**overrides: object) -> CardPurchase:
    values: dict[str, object] = {
        "name": "Ann Lee",
        "phone": "555-0100",
        "meals": 10,
        "meal_type": MealType.TO_GO,
        "member_status": Tier.MEMBER,
        "payment_method": PaymentMethod.CASH,
        "staff": "AL",
    }
    values.update(overrides)
    return CardPurchase(**values)  # type: ignore[arg-type]


def card_reservation(
    account_id: str | None,
    *,
    quantity: int = 1,
    **overrides: object,
) -> ReservationRequest:
    values: dict[str, object] = {
        "name": "Ann Lee",
        "date": SERVICE_DAY,
        "meal_type": MealType.TO_GO,
        "member_status": Tier.MEMBER,
        "payment_method": PaymentMethod.MEAL_CARD,
        "staff": "AL",
        "quantity": quantity,
        "account_id": account_id,
    }
    values.update(overrides)
    return ReservationRequest(**values)  # type: ignore[arg-type]
