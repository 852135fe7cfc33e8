"""Reconciliation of a ticket-export batch against an event's ticket table.

Responsibilities of this module:
- merge line items of one batch that belong to the same person
- resolve every merged entry against the stored transactions (exact rules only)
- skip entries that are already imported, report those that disagree
- classify and create the remaining entries through the record store gateway
- keep running totals for the operator's end-of-run check

One entry's failure never stops the run; it is recorded in the summary and the
next entry is processed. Entries are handled in batch order.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from functools import partial
from logging import getLogger
from typing import TYPE_CHECKING
from uuid import uuid4

from mealledger.domain.errors import (
    AmbiguousIdentityError,
    ClassificationUnknownError,
    InvalidRequestError,
    MealLedgerError,
    QuantityMismatchError,
)
from mealledger.domain.model import MatchKind, Tier, Transaction

from .classify import classify_or_raise
from .contracts import (
    UNKNOWN_TIER,
    ItemIssue,
    MergedEntry,
    Mismatch,
    ReconciliationSummary,
    TicketCounts,
)
from .details import parse_details
from .identity import identity_key, resolve, same_person
from .mapping import transaction_from_record, transaction_to_fields

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from mealledger.config.events import EventConfig
    from mealledger.domain.model import Identity, StoredRecord
    from mealledger.domain.ports import RecordStoreGateway

    from .classify import Classification
    from .contracts import LineItem

log = getLogger(__name__)

IMPORT_NOTE = "Imported from ticket export"


def generate_external_ref() -> str:
    return f"IMPORT-{uuid4().hex[:10].upper()}"


class ReconciliationEngine:
    def __init__(
        self,
        gateway: RecordStoreGateway,
        event: EventConfig,
        *,
        ref_factory: Callable[[], str] = generate_external_ref,
    ) -> None:
        self._gateway = gateway
        self._event = event
        self._ref_factory = ref_factory

    @property
    def event(self) -> EventConfig:
        return self._event

    def load_existing(self) -> list[StoredRecord]:
        records = self._gateway.list_all(self._event.collection)
        log.info("Loaded %s existing records from %s", len(records), self._event.collection)
        return records

    def to_transaction(self, record: StoredRecord) -> Transaction:
        return transaction_from_record(
            record,
            member_count_field=self._event.member_count_field,
            non_member_count_field=self._event.non_member_count_field,
            fields=self._event.fields,
        )

    def merge_batch(self, batch: Iterable[LineItem]) -> list[MergedEntry]:
        """Combine line items of the same person, keeping first-appearance order."""

        entries: list[MergedEntry] = []
        for item in batch:
            identity = item.identity
            target = None
            if identity_key(identity, self._event.identity).usable:
                target = next(
                    (
                        entry
                        for entry in entries
                        if same_person(entry.identity, identity, self._event.identity)
                    ),
                    None,
                )
            if target is None:
                target = MergedEntry(identity=identity, payment_method=item.payment_method)
                entries.append(target)
            else:
                log.info("Merging another line item for %s", item.display_name)
                target.identity = _fill_identity(target.identity, identity)
            self._absorb(target, item)
        return entries

    def reconcile(
        self,
        batch: Sequence[LineItem],
        existing: Iterable[StoredRecord] | None = None,
        *,
        expected_total: int | None = None,
        dry_run: bool = False,
    ) -> ReconciliationSummary:
        """Import ``batch`` into the event table; running it twice creates nothing new."""

        summary = ReconciliationSummary(
            event=self._event.name,
            expected_total=expected_total,
            dry_run=dry_run,
        )
        records = self.load_existing() if existing is None else list(existing)
        known = [self.to_transaction(record) for record in records]

        entries = self.merge_batch(batch)
        log.info("Reconciling %s line items as %s entries", len(batch), len(entries))
        for entry in entries:
            name = entry.display_name
            if entry.unrecognized:
                summary.unrecognized[name] = list(entry.unrecognized)
            try:
                self._reconcile_entry(entry, known, summary, dry_run=dry_run)
            except ClassificationUnknownError as exc:
                log.warning("%s", exc)
                summary.unknown.append(
                    ItemIssue(name=name, error=type(exc).__name__, message=str(exc))
                )
            except MealLedgerError as exc:
                log.error("Failed to reconcile %s: %s", name, exc)
                summary.failed.append(
                    ItemIssue(name=name, error=type(exc).__name__, message=str(exc))
                )

        if summary.matches_expected is False:
            log.warning(
                "Ticket total %s does not match the expected %s",
                summary.total_tickets,
                expected_total,
            )
        return summary

    def _reconcile_entry(
        self,
        entry: MergedEntry,
        known: list[Transaction],
        summary: ReconciliationSummary,
        *,
        dry_run: bool,
    ) -> None:
        name = entry.display_name
        if not identity_key(entry.identity, self._event.identity).usable:
            raise InvalidRequestError(f"{name} has neither a name nor a usable email")

        explicit = {tier: count for tier, count in entry.counts.items() if count}
        quantity = sum(explicit.values()) or (entry.quantity or 0)
        matches = self._find_matches(entry, known)
        try:
            classification = classify_or_raise(
                name,
                explicit,
                entry.amount_paid,
                quantity,
                self._event.price_bands,
            )
        except ClassificationUnknownError:
            if not matches:
                raise
            self._compare_unclassified(entry, quantity, matches, summary)
            return
        expected = TicketCounts(
            member=classification.member_count,
            non_member=classification.non_member_count,
            amount=entry.amount_paid,
        )
        if matches:
            self._compare(entry, expected, matches, summary)
            return

        transaction = self._build_transaction(entry, classification)
        self._check_price(entry, transaction, summary)
        if dry_run:
            log.info("[dry run] Would create %s ticket(s) for %s", transaction.quantity, name)
        else:
            record = self._gateway.create(
                self._event.collection,
                transaction_to_fields(
                    transaction,
                    member_count_field=self._event.member_count_field,
                    non_member_count_field=self._event.non_member_count_field,
                    fields=self._event.fields,
                ),
            )
            transaction = self.to_transaction(record)
            log.info("Created %s for %s (%s tickets)", record.id, name, transaction.quantity)
        known.append(transaction)
        summary.created.append(transaction)
        summary.add_totals(expected, entry.payment_method)

    def _find_matches(self, entry: MergedEntry, known: list[Transaction]) -> list[Transaction]:
        if entry.external_refs:
            refs = set(entry.external_refs)
            by_ref = [transaction for transaction in known if transaction.external_ref in refs]
            if by_ref:
                return by_ref
        result = resolve(
            entry.identity,
            known,
            identity_of=lambda transaction: transaction.identity,
            rules=self._event.identity,
        )
        if result.kind is not MatchKind.EXACT:
            return []
        return list(result.matches)

    def _compare(
        self,
        entry: MergedEntry,
        expected: TicketCounts,
        matches: list[Transaction],
        summary: ReconciliationSummary,
    ) -> None:
        active = self._unrefunded(entry, matches, summary)
        if not active:
            return
        if self._skip_agreeing(entry, active, summary, partial(self._agrees, expected)):
            summary.add_totals(expected, entry.payment_method)
            return

        actual = self._single_match(entry, active)
        log.warning(
            "%s",
            QuantityMismatchError(
                entry.display_name, expected=expected.describe(), actual=actual.describe()
            ),
        )
        summary.mismatches.append(
            Mismatch(
                identity=entry.identity,
                expected=expected,
                actual=actual,
                record_ids=_ids_of(active),
            )
        )
        summary.add_totals(expected, entry.payment_method)

    def _compare_unclassified(
        self,
        entry: MergedEntry,
        quantity: int,
        matches: list[Transaction],
        summary: ReconciliationSummary,
    ) -> None:
        """Match found but tiers could not be inferred: compare ticket total and amount only.

        An unknown ``quantity`` (0) leaves the amount as the only check. Totals of a
        skipped entry come from the stored records.
        """

        active = self._unrefunded(entry, matches, summary)
        if not active:
            return

        def agrees(actual: TicketCounts) -> bool:
            if quantity and actual.total != quantity:
                return False
            return self._amount_agrees(entry.amount_paid, actual.amount)

        group = self._skip_agreeing(entry, active, summary, agrees)
        if group:
            summary.add_totals(_counts_of(group), entry.payment_method)
            return

        actual = self._single_match(entry, active)
        described = f"{quantity or 'an unknown number of'} ticket(s) of unknown tier"
        log.warning(
            "%s",
            QuantityMismatchError(entry.display_name, expected=described, actual=actual.describe()),
        )
        summary.mismatches.append(
            Mismatch(
                identity=entry.identity,
                expected=TicketCounts(amount=entry.amount_paid),
                actual=actual,
                record_ids=_ids_of(active),
                reason=UNKNOWN_TIER,
            )
        )

    def _unrefunded(
        self,
        entry: MergedEntry,
        matches: list[Transaction],
        summary: ReconciliationSummary,
    ) -> list[Transaction]:
        active = [transaction for transaction in matches if not transaction.refunded]
        if not active:
            log.info("Skipping %s: already imported and refunded", entry.display_name)
            summary.skipped.append(entry.identity)
        return active

    def _skip_agreeing(
        self,
        entry: MergedEntry,
        active: list[Transaction],
        summary: ReconciliationSummary,
        agrees: Callable[[TicketCounts], bool],
    ) -> list[Transaction]:
        """Skip the entry when one match, or all of them together, agree; returns that group."""

        candidates = [[transaction] for transaction in active]
        if len(active) > 1:
            candidates.append(active)
        for group in candidates:
            if agrees(_counts_of(group)):
                log.info("Skipping %s: already imported as %s", entry.display_name, _ids_of(group))
                summary.skipped.append(entry.identity)
                return group
        return []

    def _single_match(self, entry: MergedEntry, active: list[Transaction]) -> TicketCounts:
        if len(active) > 1:
            raise AmbiguousIdentityError(
                entry.display_name, [transaction.id or "" for transaction in active]
            )
        return _counts_of(active)

    def _agrees(self, expected: TicketCounts, actual: TicketCounts) -> bool:
        if (expected.member, expected.non_member) != (actual.member, actual.non_member):
            return False
        return self._amount_agrees(expected.amount, actual.amount)

    def _amount_agrees(self, expected: Decimal | None, actual: Decimal | None) -> bool:
        if expected is None or actual is None:
            return True
        return abs(expected - actual) <= self._event.tolerance

    def _build_transaction(self, entry: MergedEntry, classification: Classification) -> Transaction:
        counts = {
            Tier.MEMBER: classification.member_count,
            Tier.NON_MEMBER: classification.non_member_count,
        }
        subtotal = self._event.expected_subtotal(counts)
        external_ref = entry.external_refs[0] if entry.external_refs else self._ref_factory()
        return Transaction(
            identity=entry.identity,
            member_count=classification.member_count,
            non_member_count=classification.non_member_count,
            amount_paid=(
                entry.amount_paid if entry.amount_paid is not None else (subtotal or Decimal(0))
            ),
            subtotal=subtotal,
            payment_method=entry.payment_method,
            purchased_at=entry.purchased_at,
            external_ref=external_ref,
            notes=IMPORT_NOTE,
            staff=self._event.staff_initials,
        )

    def _check_price(
        self,
        entry: MergedEntry,
        transaction: Transaction,
        summary: ReconciliationSummary,
    ) -> None:
        if entry.amount_paid is None or transaction.subtotal is None:
            return
        if abs(entry.amount_paid - transaction.subtotal) <= self._event.tolerance:
            return
        log.warning(
            "%s paid %s for tickets priced at %s",
            entry.display_name,
            entry.amount_paid,
            transaction.subtotal,
        )
        summary.price_mismatches.append(
            Mismatch(
                identity=entry.identity,
                expected=TicketCounts(
                    transaction.member_count, transaction.non_member_count, transaction.subtotal
                ),
                actual=TicketCounts(
                    transaction.member_count, transaction.non_member_count, entry.amount_paid
                ),
                reason="price",
            )
        )

    def _absorb(self, entry: MergedEntry, item: LineItem) -> None:
        parsed = parse_details(item.details_text, self._event.labels)
        for tier, count in parsed.counts.items():
            entry.counts[tier] = entry.counts.get(tier, 0) + count
        entry.unrecognized.extend(parsed.unrecognized)
        if item.quantity is not None:
            entry.quantity = (entry.quantity or 0) + item.quantity
        if item.amount_paid is not None:
            entry.amount_paid = (entry.amount_paid or Decimal(0)) + item.amount_paid
        if item.purchased_at is not None and (
            entry.purchased_at is None or item.purchased_at < entry.purchased_at
        ):
            entry.purchased_at = item.purchased_at
        if item.external_ref and item.external_ref not in entry.external_refs:
            entry.external_refs.append(item.external_ref)
        entry.items.append(item)


def _fill_identity(current: Identity, other: Identity) -> Identity:
    if current.email and current.phone:
        return current
    return replace(
        current,
        email=current.email or other.email,
        phone=current.phone or other.phone,
    )


def _counts_of(transactions: Iterable[Transaction]) -> TicketCounts:
    member = non_member = 0
    amount = Decimal(0)
    for transaction in transactions:
        member += transaction.member_count
        non_member += transaction.non_member_count
        amount += transaction.amount_paid
    return TicketCounts(member=member, non_member=non_member, amount=amount)


def _ids_of(transactions: Iterable[Transaction]) -> tuple[str, ...]:
    return tuple(transaction.id for transaction in transactions if transaction.id)
