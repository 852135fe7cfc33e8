"""Domain primitives: scalar aliases + small value objects."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .enums import Tier

type RecordId = str
type CollectionName = str

CENT = Decimal("0.01")


def to_decimal(value: object) -> Decimal | None:
    """Coerce a stored number (int, float, str) to a Decimal rounded to cents."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value.quantize(CENT, rounding=ROUND_HALF_UP)
    text = str(value).strip().replace("$", "").replace(",", "")
    if not text:
        return None
    try:
        return Decimal(text).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None


def to_number(value: Decimal) -> int | float:
    """Render a Decimal the way the record store expects numeric fields."""

    if value == value.to_integral_value():
        return int(value)
    return float(value)


@dataclass(frozen=True, slots=True)
class PriceBand:
    """Inclusive price-per-unit range that identifies a tier for one event."""

    tier: Tier
    low: Decimal
    high: Decimal

    def __post_init__(self) -> None:
        if self.low > self.high:
            raise ValueError(
                f"Price band for {self.tier} has low {self.low} above high {self.high}"
            )

    def contains(self, price: Decimal) -> bool:
        return self.low <= price <= self.high
