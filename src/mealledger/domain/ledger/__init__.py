"""Prepaid meal-card ledger and reservation pairing."""

from __future__ import annotations

from .ledger import (
    CARD_PAYMENT_FAILED,
    CardPurchase,
    Ledger,
    PairingAudit,
    PairingDiscrepancy,
    ReservationOutcome,
    ReservationRequest,
)
from .mapping import (
    CARD_FIELDS,
    RESERVATION_FIELDS,
    CardFields,
    ReservationFields,
    account_from_record,
    account_to_fields,
    reservation_from_record,
    reservation_to_fields,
)

__all__ = [
    "CARD_FIELDS",
    "CARD_PAYMENT_FAILED",
    "RESERVATION_FIELDS",
    "CardFields",
    "CardPurchase",
    "Ledger",
    "PairingAudit",
    "PairingDiscrepancy",
    "ReservationFields",
    "ReservationOutcome",
    "ReservationRequest",
    "account_from_record",
    "account_to_fields",
    "reservation_from_record",
    "reservation_to_fields",
]
