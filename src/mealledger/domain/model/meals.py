"""Meal program aggregates: prepaid meal cards and reservations."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

from .enums import AccountState, MealType, PaymentMethod, ReservationStatus, Tier
from .identity import Identity

if TYPE_CHECKING:
    from datetime import date, datetime


@dataclass(slots=True, kw_only=True)
class LedgerAccount:
    """A meal card. ``remaining`` is the balance the ledger debits and credits."""

    id: str
    identity: Identity = field(default_factory=Identity)
    card_tier: int = 0
    total: int = 0
    remaining: int = 0
    member_status: Tier = Tier.MEMBER
    amount_paid: Decimal = Decimal(0)
    payment_method: PaymentMethod | None = None
    weekly_delivery: bool = False
    frozen_addon: bool = False
    delivery_address: str | None = None
    created_at: datetime | None = None

    @property
    def state(self) -> AccountState:
        return AccountState.ACTIVE if self.remaining > 0 else AccountState.EXHAUSTED

    @property
    def used(self) -> int:
        return self.total - self.remaining


@dataclass(slots=True, kw_only=True)
class Reservation:
    """One meal service entry; debits a card when ``account_id`` is set."""

    id: str | None = None
    identity: Identity = field(default_factory=Identity)
    date: date
    meal_type: MealType = MealType.TO_GO
    quantity: int = 1
    account_id: str | None = None
    member_status: Tier = Tier.MEMBER
    payment_method: PaymentMethod = PaymentMethod.CASH
    amount: Decimal = Decimal(0)
    notes: str = ""
    status: ReservationStatus = ReservationStatus.RESERVED
    staff: str = ""
    created_at: datetime | None = None

    @property
    def consumes_credit(self) -> bool:
        return self.account_id is not None and self.status is not ReservationStatus.CANCELLED
