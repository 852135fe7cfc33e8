"""Event ticket transactions."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

from .enums import PaymentMethod, Tier
from .identity import Identity

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(slots=True, kw_only=True)
class Transaction:
    """A ticket purchase, possibly spanning the member and non-member tiers.

    ``id`` and ``created_at`` are assigned by the record store; both are ``None``
    until the transaction has been written.
    """

    identity: Identity = field(default_factory=Identity)
    member_count: int = 0
    non_member_count: int = 0
    amount_paid: Decimal = Decimal(0)
    subtotal: Decimal | None = None
    payment_method: PaymentMethod = PaymentMethod.CARD
    purchased_at: datetime | None = None
    refunded: bool = False
    external_ref: str | None = None
    notes: str = ""
    staff: str = ""
    id: str | None = None
    created_at: datetime | None = None

    @property
    def quantity(self) -> int:
        return self.member_count + self.non_member_count

    @property
    def tier(self) -> Tier:
        if self.member_count and self.non_member_count:
            return Tier.SPLIT
        if self.member_count:
            return Tier.MEMBER
        if self.non_member_count:
            return Tier.NON_MEMBER
        return Tier.UNKNOWN

    def counts(self) -> dict[Tier, int]:
        return {Tier.MEMBER: self.member_count, Tier.NON_MEMBER: self.non_member_count}
