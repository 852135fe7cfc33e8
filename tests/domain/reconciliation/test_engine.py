from __future__ import annotations

from decimal import Decimal
from itertools import count

import pytest

from mealledger.config import EventConfig
from mealledger.domain.model import PaymentMethod, Tier
from mealledger.domain.reconciliation import ReconciliationEngine
from tests.helpers.events import (
    EVENT_TABLE,
    MEMBER_FIELD,
    NON_MEMBER_FIELD,
    make_event,
    make_item,
    ticket_fields,
)
from tests.helpers.record_store import InMemoryRecordStore

MEMBER_TICKET = "NYE Dance (Member)"
NON_MEMBER_TICKET = "NYE Dance (Nonmember)"


def _engine(store: InMemoryRecordStore, event: EventConfig) -> ReconciliationEngine:
    refs = count(1)
    return ReconciliationEngine(store, event, ref_factory=lambda: f"IMPORT-{next(refs):04d}")


def test_second_run_of_the_same_batch_creates_nothing(store: InMemoryRecordStore) -> None:
    event = make_event(
        labels={"member": ["TierMember"], "non_member": ["TierNonMember"]},
        unit_prices={"member": "15", "non_member": "20"},
    )
    batch = [make_item("A B", email="a@x.com", details="2x TierMember")]

    first = _engine(store, event).reconcile(batch)
    second = _engine(store, event).reconcile(batch)

    assert first.created_count == 1
    assert second.created_count == 0
    assert second.skipped_count == 1
    (record,) = store.records(EVENT_TABLE)
    assert record.fields[MEMBER_FIELD] == 2
    assert record.fields[NON_MEMBER_FIELD] == 0
    assert record.fields["Amount Paid"] == 30
    assert record.fields["Ticket Subtotal"] == 30
    assert record.fields["Transaction ID"] == "IMPORT-0001"
    assert record.fields["Staff Initials"] == "IMPORT"
    assert second.totals_by_tier == {Tier.MEMBER: 2}


def test_created_record_keeps_the_export_reference(
    store: InMemoryRecordStore,
    nye_event: EventConfig,
) -> None:
    batch = [make_item(details=f"1x {MEMBER_TICKET}", amount="35", reference="ZX-77")]

    summary = _engine(store, nye_event).reconcile(batch)

    assert summary.created[0].external_ref == "ZX-77"
    assert summary.created[0].id == store.records(EVENT_TABLE)[0].id


def test_export_reference_matches_despite_a_renamed_buyer(
    store: InMemoryRecordStore,
    nye_event: EventConfig,
) -> None:
    store.seed(EVENT_TABLE, ticket_fields("Annie Leigh", member=1, amount=35, reference="ZX-77"))
    batch = [make_item("Ann Lee", details=f"1x {MEMBER_TICKET}", amount="35", reference="ZX-77")]

    summary = _engine(store, nye_event).reconcile(batch)

    assert summary.skipped_count == 1
    assert store.count("create") == 0


def test_disagreeing_counts_are_reported_not_written(
    store: InMemoryRecordStore,
    nye_event: EventConfig,
) -> None:
    stored = store.seed(EVENT_TABLE, ticket_fields("Ann Lee", member=1, amount=35))
    batch = [make_item("Ann Lee", details=f"2x {MEMBER_TICKET}")]

    summary = _engine(store, nye_event).reconcile(batch)

    assert summary.created_count == 0
    (mismatch,) = summary.mismatches
    assert (mismatch.expected.member, mismatch.actual.member) == (2, 1)
    assert mismatch.record_ids == (stored.id,)
    assert store.count("update") == 0
    assert "MISMATCH Ann Lee" in summary.render()


def test_line_items_of_one_buyer_are_merged(
    store: InMemoryRecordStore,
    nye_event: EventConfig,
) -> None:
    batch = [
        make_item("Ann Lee", email="ann@example.org", details=f"1x {MEMBER_TICKET}", amount="35"),
        make_item("Bob Stone", details=f"1x {NON_MEMBER_TICKET}", amount="45"),
        make_item(
            "Ann Lee",
            email="ANN@example.org",
            details=f"1x {NON_MEMBER_TICKET}",
            amount="45",
        ),
    ]

    summary = _engine(store, nye_event).reconcile(batch)

    assert summary.created_count == 2
    ann = next(
        record for record in store.records(EVENT_TABLE) if record.fields["First Name"] == "Ann"
    )
    assert ann.fields[MEMBER_FIELD] == 1
    assert ann.fields[NON_MEMBER_FIELD] == 1
    assert ann.fields["Amount Paid"] == 80
    assert summary.totals_by_tier == {Tier.MEMBER: 1, Tier.NON_MEMBER: 2}
    assert summary.price_mismatches == []


def test_tier_is_inferred_from_price_bands(
    store: InMemoryRecordStore,
    nye_event: EventConfig,
) -> None:
    batch = [
        make_item("Ann Lee", quantity=2, amount="70"),
        make_item("Bob Stone", quantity=1, amount="40"),
    ]

    summary = _engine(store, nye_event).reconcile(batch)

    assert summary.created_count == 1
    assert summary.created[0].member_count == 2
    (issue,) = summary.unknown
    assert issue.name == "Bob Stone"
    assert issue.error == "ClassificationUnknownError"
    assert summary.failed == []


def test_matched_buyer_with_out_of_band_price_is_a_mismatch(
    store: InMemoryRecordStore,
    nye_event: EventConfig,
) -> None:
    stored = store.seed(EVENT_TABLE, ticket_fields("Ann Lee", member=1, amount=35))
    batch = [make_item("Ann Lee", quantity=1, amount="40")]

    summary = _engine(store, nye_event).reconcile(batch)

    assert summary.unknown == []
    assert summary.created_count == 0
    (mismatch,) = summary.mismatches
    assert mismatch.reason == "unknown_tier"
    assert mismatch.expected.amount == Decimal(40)
    assert mismatch.actual.member == 1
    assert mismatch.record_ids == (stored.id,)
    assert summary.total_tickets == 0
    assert store.count("create") == 0
    assert "MISMATCH Ann Lee: export $40 of unknown tier" in summary.render()


def test_matched_buyer_with_out_of_band_price_is_skipped_when_totals_agree(
    store: InMemoryRecordStore,
    nye_event: EventConfig,
) -> None:
    store.seed(EVENT_TABLE, ticket_fields("Bob Stone", non_member=1, amount=40))
    batch = [make_item("Bob Stone", quantity=1, amount="40", payment_method=PaymentMethod.CASH)]

    summary = _engine(store, nye_event).reconcile(batch)

    assert summary.unknown == []
    assert summary.mismatches == []
    assert summary.skipped_count == 1
    assert summary.totals_by_tier == {Tier.NON_MEMBER: 1}
    assert summary.amount_by_payment_method == {PaymentMethod.CASH: Decimal(40)}
    assert store.count("create") == 0


def test_price_outside_tolerance_is_flagged(
    store: InMemoryRecordStore,
    nye_event: EventConfig,
) -> None:
    batch = [make_item(details=f"1x {MEMBER_TICKET}", amount="30")]

    summary = _engine(store, nye_event).reconcile(batch)

    assert summary.created_count == 1
    (mismatch,) = summary.price_mismatches
    assert mismatch.reason == "price"
    assert mismatch.expected.amount == Decimal(35)
    assert mismatch.actual.amount == Decimal(30)
    assert store.records(EVENT_TABLE)[0].fields["Amount Paid"] == 30


def test_dry_run_writes_nothing(store: InMemoryRecordStore, nye_event: EventConfig) -> None:
    batch = [
        make_item("Ann Lee", details=f"2x {MEMBER_TICKET}"),
        make_item("Bob Stone", details=f"1x {NON_MEMBER_TICKET}"),
    ]

    summary = _engine(store, nye_event).reconcile(batch, dry_run=True)

    assert summary.created_count == 2
    assert all(transaction.id is None for transaction in summary.created)
    assert store.count("create") == 0
    assert summary.render().startswith("[dry run]")


def test_store_failure_is_isolated_per_entry(
    store: InMemoryRecordStore,
    nye_event: EventConfig,
) -> None:
    batch = [
        make_item("Ann Lee", details=f"1x {MEMBER_TICKET}"),
        make_item("Bob Stone", details=f"1x {NON_MEMBER_TICKET}"),
    ]
    store.fail("create", EVENT_TABLE)

    failed_run = _engine(store, nye_event).reconcile(batch)

    assert [issue.name for issue in failed_run.failed] == ["Ann Lee", "Bob Stone"]
    assert {issue.error for issue in failed_run.failed} == {"GatewayUnavailableError"}
    assert failed_run.total_tickets == 0

    store.recover()
    retried = _engine(store, nye_event).reconcile(batch)

    assert retried.created_count == 2


def test_refunded_purchase_is_not_reimported(
    store: InMemoryRecordStore,
    nye_event: EventConfig,
) -> None:
    store.seed(EVENT_TABLE, ticket_fields("Ann Lee", member=1, amount=35, refunded=True))
    batch = [make_item("Ann Lee", details=f"1x {MEMBER_TICKET}", amount="35")]

    summary = _engine(store, nye_event).reconcile(batch)

    assert summary.skipped_count == 1
    assert summary.total_tickets == 0
    assert store.count("create") == 0


def test_several_stored_purchases_may_add_up_to_the_export(
    store: InMemoryRecordStore,
    nye_event: EventConfig,
) -> None:
    store.seed(EVENT_TABLE, ticket_fields("Ann Lee", member=1, amount=35))
    store.seed(EVENT_TABLE, ticket_fields("Ann Lee", member=1, amount=35))

    summary = _engine(store, nye_event).reconcile(
        [make_item("Ann Lee", details=f"2x {MEMBER_TICKET}", amount="70")]
    )

    assert summary.skipped_count == 1
    assert summary.failed == []


def test_ambiguous_matches_are_failed_for_review(
    store: InMemoryRecordStore,
    nye_event: EventConfig,
) -> None:
    store.seed(EVENT_TABLE, ticket_fields("Ann Lee", member=1, amount=35))
    store.seed(EVENT_TABLE, ticket_fields("Ann Lee", member=1, amount=35))

    summary = _engine(store, nye_event).reconcile(
        [make_item("Ann Lee", details=f"3x {MEMBER_TICKET}", amount="105")]
    )

    (issue,) = summary.failed
    assert issue.error == "AmbiguousIdentityError"
    assert store.count("create") == 0


def test_buyer_without_name_or_email_fails(
    store: InMemoryRecordStore,
    nye_event: EventConfig,
) -> None:
    batch = [make_item(" ", email="n/a", details=f"1x {MEMBER_TICKET}")]

    summary = _engine(store, nye_event).reconcile(batch)

    (issue,) = summary.failed
    assert issue.error == "InvalidRequestError"
    assert store.count("create") == 0


def test_unrecognized_segments_are_reported(
    store: InMemoryRecordStore,
    nye_event: EventConfig,
) -> None:
    batch = [make_item(details=f"1x {MEMBER_TICKET}, 1x Raffle ticket", amount="45")]

    summary = _engine(store, nye_event).reconcile(batch)

    assert summary.unrecognized == {"Ann Lee": ["1x Raffle ticket"]}
    assert "UNRECOGNIZED Ann Lee: 1x Raffle ticket" in summary.render()


@pytest.mark.parametrize(("expected_total", "verdict"), [(3, "OK"), (4, "DISCREPANCY")])
def test_expected_total_is_checked(
    store: InMemoryRecordStore,
    nye_event: EventConfig,
    expected_total: int,
    verdict: str,
) -> None:
    store.seed(EVENT_TABLE, ticket_fields("Ann Lee", member=2, amount=70))
    batch = [
        make_item("Ann Lee", details=f"2x {MEMBER_TICKET}", amount="70"),
        make_item(
            "Bob Stone",
            details=f"1x {NON_MEMBER_TICKET}",
            amount="45",
            payment_method=PaymentMethod.CASH,
        ),
    ]

    summary = _engine(store, nye_event).reconcile(batch, expected_total=expected_total)

    assert summary.total_tickets == 3
    assert summary.matches_expected is (verdict == "OK")
    assert summary.totals_by_payment_method == {PaymentMethod.CARD: 2, PaymentMethod.CASH: 1}
    assert summary.amount_by_payment_method[PaymentMethod.CASH] == Decimal(45)
    assert f"expected total: {expected_total} -> {verdict}" in summary.render()


def test_existing_records_can_be_passed_in(
    store: InMemoryRecordStore,
    nye_event: EventConfig,
) -> None:
    existing = [store.seed(EVENT_TABLE, ticket_fields("Ann Lee", member=1, amount=35))]
    batch = [make_item("Ann Lee", details=f"1x {MEMBER_TICKET}", amount="35")]

    summary = _engine(store, nye_event).reconcile(batch, existing)

    assert summary.skipped_count == 1
    assert store.count("list_all") == 0
