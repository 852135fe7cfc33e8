from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal

from mealledger.domain.ledger import (
    account_from_record,
    account_to_fields,
    reservation_from_record,
    reservation_to_fields,
)
from mealledger.domain.model import (
    AccountState,
    Identity,
    LedgerAccount,
    MealType,
    PaymentMethod,
    Reservation,
    ReservationStatus,
    StoredRecord,
    Tier,
)

CREATED = datetime(2025, 3, 1, 10, 0, tzinfo=UTC)


def test_account_total_falls_back_to_card_type() -> None:
    record = StoredRecord(
        id="recCard",
        created_at=CREATED,
        fields={
            "Name": "Mary Ann Smith",
            "Card Type": "15 Meals",
            "Member Status": "Non-Member",
            "Remaining Meals": 0,
            "Amount Paid": "150",
        },
    )

    account = account_from_record(record)

    assert account.identity == Identity(first_name="Mary", last_name="Ann Smith")
    assert (account.card_tier, account.total, account.remaining) == (15, 15, 0)
    assert account.member_status is Tier.NON_MEMBER
    assert account.amount_paid == Decimal(150)
    assert account.payment_method is None
    assert account.state is AccountState.EXHAUSTED
    assert account.used == 15


def test_account_to_fields_writes_only_set_options() -> None:
    account = LedgerAccount(
        id="",
        identity=Identity(first_name="Ann", last_name="Lee", phone="555-0100"),
        card_tier=5,
        total=5,
        remaining=5,
        amount_paid=Decimal(45),
        payment_method=PaymentMethod.CHECK,
    )

    fields = account_to_fields(account, purchased_on=date(2025, 3, 14), staff="AL")

    assert fields == {
        "Name": "Ann Lee",
        "Phone": "555-0100",
        "Card Type": "5 Meals",
        "Member Status": "Member",
        "Total Meals": 5,
        "Remaining Meals": 5,
        "Amount Paid": 45,
        "Purchase Date": "2025-03-14",
        "Staff": "AL",
        "Payment Method": "Check",
    }


def test_older_reservation_rows_read_with_defaults() -> None:
    record = StoredRecord(
        id="recRes",
        created_at=CREATED,
        fields={
            "Name": "Ann Lee",
            "Meal Type": "Pickup",
            "Lunch Card": ["recCard"],
            "Payment Method": "Lunch Card",
        },
    )

    reservation = reservation_from_record(record)

    assert reservation.date == CREATED.date()
    assert reservation.meal_type is MealType.TO_GO
    assert reservation.quantity == 1
    assert reservation.account_id == "recCard"
    assert reservation.status is ReservationStatus.RESERVED
    assert reservation.member_status is Tier.UNKNOWN
    assert reservation.consumes_credit


def test_reservation_to_fields_links_the_card() -> None:
    reservation = Reservation(
        identity=Identity(first_name="Ann", last_name="Lee"),
        date=date(2025, 3, 14),
        meal_type=MealType.DINE_IN,
        quantity=2,
        account_id="recCard",
        payment_method=PaymentMethod.MEAL_CARD,
        status=ReservationStatus.CANCELLED,
    )

    fields = reservation_to_fields(reservation)

    assert fields["Lunch Card"] == ["recCard"]
    assert fields["Date"] == "2025-03-14"
    assert fields["Quantity"] == 2
    assert fields["Amount"] == 0
    assert fields["Status"] == "Cancelled"
    assert not reservation.consumes_credit
