"""Attendance lists built from an event's ticket transactions.

Refunded transactions stay in the store but never count toward attendance.
Several purchases by the same person collapse into one entry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

from mealledger.domain.model import Identity, PaymentMethod, Tier

from .identity import DEFAULT_RULES, identity_key, same_person

if TYPE_CHECKING:
    from collections.abc import Iterable

    from mealledger.domain.model import Transaction

    from .identity import IdentityRules


@dataclass(slots=True)
class AttendanceEntry:
    identity: Identity
    member_count: int = 0
    non_member_count: int = 0
    amount_paid: Decimal = Decimal(0)
    payment_methods: list[PaymentMethod] = field(default_factory=list["PaymentMethod"])
    transaction_ids: list[str] = field(default_factory=list["str"])

    @property
    def total(self) -> int:
        return self.member_count + self.non_member_count

    def add(self, transaction: Transaction) -> None:
        self.member_count += transaction.member_count
        self.non_member_count += transaction.non_member_count
        self.amount_paid += transaction.amount_paid
        if transaction.payment_method not in self.payment_methods:
            self.payment_methods.append(transaction.payment_method)
        if transaction.id:
            self.transaction_ids.append(transaction.id)


@dataclass(frozen=True, slots=True)
class Tally:
    by_tier: dict[Tier, int]
    by_payment_method: dict[PaymentMethod, int]
    amount_by_payment_method: dict[PaymentMethod, Decimal]

    @property
    def total(self) -> int:
        return sum(self.by_tier.values())


def build_attendance(
    transactions: Iterable[Transaction],
    *,
    rules: IdentityRules = DEFAULT_RULES,
) -> list[AttendanceEntry]:
    entries: list[AttendanceEntry] = []
    for transaction in transactions:
        if transaction.refunded:
            continue
        entry = None
        if identity_key(transaction.identity, rules).usable:
            entry = next(
                (
                    candidate
                    for candidate in entries
                    if same_person(candidate.identity, transaction.identity, rules)
                ),
                None,
            )
        if entry is None:
            entry = AttendanceEntry(identity=transaction.identity)
            entries.append(entry)
        entry.add(transaction)

    entries.sort(
        key=lambda entry: (
            entry.identity.last_name.casefold(),
            entry.identity.first_name.casefold(),
        )
    )
    return entries


def tally(transactions: Iterable[Transaction]) -> Tally:
    by_tier: dict[Tier, int] = {}
    by_method: dict[PaymentMethod, int] = {}
    amounts: dict[PaymentMethod, Decimal] = {}
    for transaction in transactions:
        if transaction.refunded:
            continue
        for tier, count in transaction.counts().items():
            if count:
                by_tier[tier] = by_tier.get(tier, 0) + count
        method = transaction.payment_method
        by_method[method] = by_method.get(method, 0) + transaction.quantity
        amounts[method] = amounts.get(method, Decimal(0)) + transaction.amount_paid
    return Tally(by_tier=by_tier, by_payment_method=by_method, amount_by_payment_method=amounts)


def render_attendance(entries: Iterable[AttendanceEntry]) -> str:
    lines = []
    for entry in entries:
        methods = ", ".join(method.value for method in entry.payment_methods)
        lines.append(
            f"{entry.identity.last_name}, {entry.identity.first_name}\t"
            f"{entry.member_count}M {entry.non_member_count}NM\t{methods}"
        )
    return "\n".join(lines)
