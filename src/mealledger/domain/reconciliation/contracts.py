"""Inputs and outputs of a reconciliation run."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

from mealledger.domain.model import Identity, PaymentMethod, Tier

if TYPE_CHECKING:
    from datetime import datetime

    from mealledger.domain.model import Transaction


@dataclass(frozen=True, slots=True, kw_only=True)
class LineItem:
    """One row of an external ticket-sales export."""

    first_name: str
    last_name: str
    email: str | None = None
    phone: str | None = None
    purchased_at: datetime | None = None
    details_text: str = ""
    quantity: int | None = None
    amount_paid: Decimal | None = None
    payment_method: PaymentMethod = PaymentMethod.CARD
    external_ref: str | None = None

    @property
    def identity(self) -> Identity:
        return Identity(
            first_name=self.first_name.strip(),
            last_name=self.last_name.strip(),
            email=(self.email or "").strip() or None,
            phone=(self.phone or "").strip() or None,
        )

    @property
    def display_name(self) -> str:
        return self.identity.full_name or self.email or "(no name)"


@dataclass(slots=True, kw_only=True)
class MergedEntry:
    """Line items of one batch that belong to the same person, combined."""

    identity: Identity
    counts: dict[Tier, int] = field(default_factory=dict["Tier", "int"])
    quantity: int | None = None
    amount_paid: Decimal | None = None
    payment_method: PaymentMethod = PaymentMethod.CARD
    purchased_at: datetime | None = None
    external_refs: list[str] = field(default_factory=list["str"])
    unrecognized: list[str] = field(default_factory=list["str"])
    items: list[LineItem] = field(default_factory=list["LineItem"])

    @property
    def display_name(self) -> str:
        return self.items[0].display_name if self.items else self.identity.full_name


UNKNOWN_TIER = "unknown_tier"


@dataclass(frozen=True, slots=True)
class TicketCounts:
    member: int = 0
    non_member: int = 0
    amount: Decimal | None = None

    @property
    def total(self) -> int:
        return self.member + self.non_member

    def describe(self) -> str:
        text = f"{self.member} member / {self.non_member} non-member"
        if self.amount is not None:
            text += f", ${self.amount}"
        return text


@dataclass(frozen=True, slots=True)
class Mismatch:
    identity: Identity
    expected: TicketCounts
    actual: TicketCounts
    record_ids: tuple[str, ...] = ()
    reason: str = "quantity"


@dataclass(frozen=True, slots=True)
class ItemIssue:
    """A line item that needs an operator: unknown tier, ambiguity or store failure."""

    name: str
    error: str
    message: str


@dataclass(slots=True)
class ReconciliationSummary:
    event: str
    created: list[Transaction] = field(default_factory=list["Transaction"])
    skipped: list[Identity] = field(default_factory=list["Identity"])
    mismatches: list[Mismatch] = field(default_factory=list["Mismatch"])
    price_mismatches: list[Mismatch] = field(default_factory=list["Mismatch"])
    unknown: list[ItemIssue] = field(default_factory=list["ItemIssue"])
    failed: list[ItemIssue] = field(default_factory=list["ItemIssue"])
    unrecognized: dict[str, list[str]] = field(default_factory=dict["str", "list[str]"])
    totals_by_tier: dict[Tier, int] = field(default_factory=dict["Tier", "int"])
    totals_by_payment_method: dict[PaymentMethod, int] = field(
        default_factory=dict["PaymentMethod", "int"]
    )
    amount_by_payment_method: dict[PaymentMethod, Decimal] = field(
        default_factory=dict["PaymentMethod", "Decimal"]
    )
    expected_total: int | None = None
    dry_run: bool = False

    @property
    def created_count(self) -> int:
        return len(self.created)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    @property
    def total_tickets(self) -> int:
        return sum(self.totals_by_tier.values())

    @property
    def matches_expected(self) -> bool | None:
        if self.expected_total is None:
            return None
        return self.total_tickets == self.expected_total

    def add_totals(self, counts: TicketCounts, payment_method: PaymentMethod) -> None:
        for tier, count in ((Tier.MEMBER, counts.member), (Tier.NON_MEMBER, counts.non_member)):
            if count:
                self.totals_by_tier[tier] = self.totals_by_tier.get(tier, 0) + count
        if counts.total:
            self.totals_by_payment_method[payment_method] = (
                self.totals_by_payment_method.get(payment_method, 0) + counts.total
            )
        if counts.amount is not None:
            self.amount_by_payment_method[payment_method] = (
                self.amount_by_payment_method.get(payment_method, Decimal(0)) + counts.amount
            )

    def render(self) -> str:
        prefix = "[dry run] " if self.dry_run else ""
        lines = [
            f"{prefix}Reconciliation for {self.event}",
            f"  created: {self.created_count}",
            f"  skipped (already imported): {self.skipped_count}",
            f"  mismatched: {len(self.mismatches)}",
            f"  unknown classification: {len(self.unknown)}",
            f"  failed: {len(self.failed)}",
        ]
        for tier, count in sorted(self.totals_by_tier.items()):
            lines.append(f"  {tier} tickets: {count}")
        for method, count in sorted(self.totals_by_payment_method.items()):
            amount = self.amount_by_payment_method.get(method)
            suffix = f" (${amount})" if amount is not None else ""
            lines.append(f"  {method}: {count} tickets{suffix}")
        lines.append(f"  total tickets: {self.total_tickets}")
        if self.expected_total is not None:
            verdict = "OK" if self.matches_expected else "DISCREPANCY"
            lines.append(f"  expected total: {self.expected_total} -> {verdict}")
        for mismatch in self.mismatches:
            if mismatch.reason == UNKNOWN_TIER:
                lines.append(
                    f"  MISMATCH {mismatch.identity.full_name or mismatch.identity.email}: "
                    f"export ${mismatch.expected.amount} of unknown tier, "
                    f"store {mismatch.actual.describe()}"
                )
                continue
            lines.append(
                f"  MISMATCH {mismatch.identity.full_name or mismatch.identity.email}: "
                f"export {mismatch.expected.describe()}, store {mismatch.actual.describe()}"
            )
        for mismatch in self.price_mismatches:
            lines.append(
                f"  PRICE {mismatch.identity.full_name or mismatch.identity.email}: "
                f"paid {mismatch.actual.describe()}, expected {mismatch.expected.describe()}"
            )
        lines.extend(f"  UNKNOWN {issue.name}: {issue.message}" for issue in self.unknown)
        lines.extend(f"  FAILED {issue.name}: {issue.message}" for issue in self.failed)
        for name, segments in self.unrecognized.items():
            lines.append(f"  UNRECOGNIZED {name}: {'; '.join(segments)}")
        return "\n".join(lines)
