"""Domain model package."""

from __future__ import annotations

from .enums import AccountState, MatchKind, MealType, PaymentMethod, ReservationStatus, Tier
from .identity import Identity, split_full_name
from .meals import LedgerAccount, Reservation
from .primitives import CENT, CollectionName, PriceBand, RecordId, to_decimal, to_number
from .records import StoredRecord
from .ticketing import Transaction

__all__ = [
    "CENT",
    "AccountState",
    "CollectionName",
    "Identity",
    "LedgerAccount",
    "MatchKind",
    "MealType",
    "PaymentMethod",
    "PriceBand",
    "RecordId",
    "Reservation",
    "ReservationStatus",
    "StoredRecord",
    "Tier",
    "Transaction",
    "split_full_name",
    "to_decimal",
    "to_number",
]
