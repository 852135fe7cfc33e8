"""Per-event ticket configuration.

Price bands, ticket labels and field names differ for every event table, so
they are read from a TOML file instead of living in code::

    name = "NYE Gala Dance 2025"
    collection = "tbl5OyCybJCfrebOb"
    member_count_field = "NYE Member Tickets"
    non_member_count_field = "NYE Non-Member Tickets"

    [labels]
    member = ["NYE Dance (Member)"]
    non_member = ["NYE Dance (Nonmember)"]

    [unit_prices]
    member = "35"
    non_member = "45"

    [[price_bands]]
    tier = "member"
    low = "34"
    high = "36"
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from mealledger.domain.model import PriceBand, Tier
from mealledger.domain.reconciliation.identity import DEFAULT_PLACEHOLDER_EMAILS, IdentityRules
from mealledger.domain.reconciliation.mapping import TransactionFields

from .errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

DEFAULT_TOLERANCE = Decimal("0.50")
DEFAULT_STAFF_INITIALS = "IMPORT"

_TIER_KEYS: dict[str, Tier] = {
    "member": Tier.MEMBER,
    "non_member": Tier.NON_MEMBER,
    "nonmember": Tier.NON_MEMBER,
}


@dataclass(frozen=True, slots=True)
class EventConfig:
    """Everything the reconciliation engine needs to know about one event table."""

    name: str
    collection: str
    member_count_field: str
    non_member_count_field: str
    labels: Mapping[Tier, tuple[str, ...]] = field(default_factory=dict["Tier", "tuple[str, ...]"])
    unit_prices: Mapping[Tier, Decimal] = field(default_factory=dict["Tier", "Decimal"])
    price_bands: tuple[PriceBand, ...] = ()
    tolerance: Decimal = DEFAULT_TOLERANCE
    staff_initials: str = DEFAULT_STAFF_INITIALS
    identity: IdentityRules = field(default_factory=IdentityRules)
    fields: TransactionFields = field(default_factory=TransactionFields)

    def expected_subtotal(self, counts: Mapping[Tier, int]) -> Decimal | None:
        """Sum of count times unit price, or ``None`` when a price is not configured."""

        subtotal = Decimal(0)
        for tier, count in counts.items():
            if not count:
                continue
            price = self.unit_prices.get(tier)
            if price is None:
                return None
            subtotal += price * count
        return subtotal


def load_event_config(path: Path) -> EventConfig:
    try:
        with path.open("rb") as handle:
            document = tomllib.load(handle)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Event configuration not found: {path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Invalid event configuration {path}: {exc}") from exc
    return event_config_from_mapping(document)


def event_config_from_mapping(document: Mapping[str, object]) -> EventConfig:
    missing = [
        key
        for key in ("name", "collection", "member_count_field", "non_member_count_field")
        if not str(document.get(key, "")).strip()
    ]
    if missing:
        raise ConfigurationError(f"Event configuration is missing: {', '.join(missing)}")

    identity_section = _section(document, "identity")
    rules = IdentityRules(
        placeholder_emails=DEFAULT_PLACEHOLDER_EMAILS
        | frozenset(
            str(value).casefold() for value in _list(identity_section, "placeholder_emails")
        ),
        placeholder_domains=frozenset(
            str(value).casefold() for value in _list(identity_section, "placeholder_domains")
        ),
    )

    labels = {
        _tier(key): tuple(str(label) for label in _as_list(values, key))
        for key, values in _section(document, "labels").items()
    }
    unit_prices = {
        _tier(key): _decimal(value, f"unit_prices.{key}")
        for key, value in _section(document, "unit_prices").items()
    }
    bands = tuple(_price_band(entry) for entry in _list(document, "price_bands"))

    return EventConfig(
        name=str(document["name"]),
        collection=str(document["collection"]),
        member_count_field=str(document["member_count_field"]),
        non_member_count_field=str(document["non_member_count_field"]),
        labels=labels,
        unit_prices=unit_prices,
        price_bands=bands,
        tolerance=_decimal(document.get("tolerance", DEFAULT_TOLERANCE), "tolerance"),
        staff_initials=str(document.get("staff_initials", DEFAULT_STAFF_INITIALS)),
        identity=rules,
    )


def _section(document: Mapping[str, object], key: str) -> Mapping[str, object]:
    value = document.get(key, {})
    if not isinstance(value, dict):
        raise ConfigurationError(f"Event configuration [{key}] must be a table", setting=key)
    return value


def _list(document: Mapping[str, object], key: str) -> list[object]:
    return _as_list(document.get(key, []), key)


def _as_list(value: object, key: str) -> list[object]:
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigurationError(f"Event configuration {key} must be a list", setting=key)
    return value


def _tier(key: str) -> Tier:
    try:
        return _TIER_KEYS[key.casefold()]
    except KeyError:
        raise ConfigurationError(f"Unknown ticket tier: {key}") from None


def _decimal(value: object, key: str) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ConfigurationError(
            f"Event configuration {key} is not a number: {value!r}", setting=key
        ) from None


def _price_band(entry: object) -> PriceBand:
    if not isinstance(entry, dict):
        raise ConfigurationError("Each [[price_bands]] entry must be a table")
    try:
        return PriceBand(
            tier=_tier(str(entry["tier"])),
            low=_decimal(entry["low"], "price_bands.low"),
            high=_decimal(entry["high"], "price_bands.high"),
        )
    except KeyError as exc:
        raise ConfigurationError(f"Price band is missing {exc.args[0]}") from None
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from None
