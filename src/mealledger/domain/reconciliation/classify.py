"""Membership tier inference for ticket line items.

Explicit tier counts are trusted as given. Without them the price paid per
ticket is matched against the event's configured price bands; a price that
falls outside every band is ``Tier.UNKNOWN`` and goes to manual review.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from mealledger.domain.errors import ClassificationUnknownError
from mealledger.domain.model import CENT, Tier

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from mealledger.domain.model import PriceBand


@dataclass(frozen=True, slots=True)
class Classification:
    tier: Tier
    member_count: int = 0
    non_member_count: int = 0
    price_per_unit: Decimal | None = None
    reason: str | None = None

    @property
    def known(self) -> bool:
        return self.tier is not Tier.UNKNOWN

    @property
    def quantity(self) -> int:
        return self.member_count + self.non_member_count


def classify(
    explicit_counts: Mapping[Tier, int] | None,
    amount_paid: Decimal | None,
    quantity: int,
    bands: Sequence[PriceBand],
) -> Classification:
    member = (explicit_counts or {}).get(Tier.MEMBER, 0)
    non_member = (explicit_counts or {}).get(Tier.NON_MEMBER, 0)
    if member > 0 or non_member > 0:
        return Classification(
            tier=_tier_for_counts(member, non_member),
            member_count=member,
            non_member_count=non_member,
            reason="explicit_counts",
        )

    if quantity <= 0:
        return Classification(tier=Tier.UNKNOWN, reason="no_quantity")
    if amount_paid is None:
        return Classification(tier=Tier.UNKNOWN, reason="no_amount")

    price = (amount_paid / quantity).quantize(CENT, rounding=ROUND_HALF_UP)
    for band in bands:
        if not band.contains(price):
            continue
        if band.tier is Tier.MEMBER:
            return Classification(
                tier=Tier.MEMBER,
                member_count=quantity,
                price_per_unit=price,
                reason="price_band",
            )
        if band.tier is Tier.NON_MEMBER:
            return Classification(
                tier=Tier.NON_MEMBER,
                non_member_count=quantity,
                price_per_unit=price,
                reason="price_band",
            )

    return Classification(tier=Tier.UNKNOWN, price_per_unit=price, reason="price_outside_bands")


def classify_or_raise(
    name: str,
    explicit_counts: Mapping[Tier, int] | None,
    amount_paid: Decimal | None,
    quantity: int,
    bands: Sequence[PriceBand],
) -> Classification:
    result = classify(explicit_counts, amount_paid, quantity, bands)
    if not result.known:
        raise ClassificationUnknownError(
            name,
            reason=result.reason or "unknown",
            price_per_unit=result.price_per_unit,
        )
    return result


def _tier_for_counts(member: int, non_member: int) -> Tier:
    if member and non_member:
        return Tier.SPLIT
    return Tier.MEMBER if member else Tier.NON_MEMBER
