"""Domain enums (pure, dependency-light).

Values are the labels stored in the record collections.
"""

from __future__ import annotations

from enum import StrEnum


class Tier(StrEnum):
    MEMBER = "Member"
    NON_MEMBER = "Non-Member"
    SPLIT = "Split"
    UNKNOWN = "Unknown"


class PaymentMethod(StrEnum):
    CASH = "Cash"
    CHECK = "Check"
    CARD = "Card (Zeffy)"
    COMP = "Comp"
    OTHER = "Other"
    PENDING = "Pending"
    MEAL_CARD = "Lunch Card"
    UNKNOWN = "Unknown"


class MealType(StrEnum):
    TO_GO = "To Go"
    DINE_IN = "Dine In"
    DELIVERY = "Delivery"


class ReservationStatus(StrEnum):
    RESERVED = "Reserved"
    FULFILLED = "Fulfilled"
    CANCELLED = "Cancelled"


class AccountState(StrEnum):
    ACTIVE = "active"
    EXHAUSTED = "exhausted"


class MatchKind(StrEnum):
    """How the identity resolver matched a candidate against existing records."""

    EXACT = "exact"
    FUZZY = "fuzzy"
    NONE = "none"
