"""Meal card and reservation configuration values."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

from mealledger.domain.model import MealType, PaymentMethod, Tier

from .errors import ConfigurationError
from .env import optional_env_var
from .record_store import CollectionNames, get_collection_names

if TYPE_CHECKING:
    from collections.abc import Mapping

CARD_SIZES: tuple[int, ...] = (5, 10, 15, 20)
MAX_MEALS_PER_RESERVATION = 20

# price of one meal on a prepaid card, by membership and service
CARD_MEAL_PRICES: dict[Tier, dict[MealType, Decimal]] = {
    Tier.MEMBER: {
        MealType.DINE_IN: Decimal(8),
        MealType.TO_GO: Decimal(9),
        MealType.DELIVERY: Decimal(10),
    },
    Tier.NON_MEMBER: {
        MealType.DINE_IN: Decimal(9),
        MealType.TO_GO: Decimal(10),
        MealType.DELIVERY: Decimal(11),
    },
}

# price of a single meal paid at the door
SINGLE_MEAL_PRICES: dict[Tier, dict[MealType, Decimal]] = {
    Tier.MEMBER: {
        MealType.DINE_IN: Decimal(8),
        MealType.TO_GO: Decimal(9),
        MealType.DELIVERY: Decimal(12),
    },
    Tier.NON_MEMBER: {
        MealType.DINE_IN: Decimal(10),
        MealType.TO_GO: Decimal(11),
        MealType.DELIVERY: Decimal(14),
    },
}


@dataclass(frozen=True, slots=True)
class LedgerConfig:
    """Card sizes, prices and the payment method used when a card debit fails."""

    collections: CollectionNames
    card_sizes: tuple[int, ...] = CARD_SIZES
    card_meal_prices: Mapping[Tier, Mapping[MealType, Decimal]] = field(
        default_factory=lambda: CARD_MEAL_PRICES
    )
    single_meal_prices: Mapping[Tier, Mapping[MealType, Decimal]] = field(
        default_factory=lambda: SINGLE_MEAL_PRICES
    )
    fallback_method: PaymentMethod = PaymentMethod.UNKNOWN
    max_meals_per_reservation: int = MAX_MEALS_PER_RESERVATION

    def card_price(self, meals: int, tier: Tier, meal_type: MealType) -> Decimal:
        return self.card_meal_prices[_priced_tier(tier)][meal_type] * meals

    def meal_price(self, tier: Tier, meal_type: MealType, quantity: int = 1) -> Decimal:
        return self.single_meal_prices[_priced_tier(tier)][meal_type] * quantity


def get_ledger_config() -> LedgerConfig:
    fallback = optional_env_var("LEDGER_FALLBACK_PAYMENT_METHOD")
    fallback_method = PaymentMethod.UNKNOWN
    if fallback is not None:
        try:
            fallback_method = PaymentMethod(fallback)
        except ValueError:
            raise ConfigurationError(
                f"LEDGER_FALLBACK_PAYMENT_METHOD must be one of "
                f"{', '.join(method.value for method in PaymentMethod)}",
                setting="LEDGER_FALLBACK_PAYMENT_METHOD",
            ) from None
        if fallback_method is PaymentMethod.MEAL_CARD:
            raise ConfigurationError(
                "LEDGER_FALLBACK_PAYMENT_METHOD cannot be the meal card",
                setting="LEDGER_FALLBACK_PAYMENT_METHOD",
            )
    return LedgerConfig(collections=get_collection_names(), fallback_method=fallback_method)


def _priced_tier(tier: Tier) -> Tier:
    return Tier.MEMBER if tier is Tier.MEMBER else Tier.NON_MEMBER
