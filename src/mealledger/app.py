"""Application orchestration entry points."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from mealledger.adapters.airtable import AirtableGateway
from mealledger.adapters.ticket_export import read_ticket_export
from mealledger.config import get_ledger_config, get_record_store_config, load_event_config
from mealledger.domain.ledger import Ledger, account_from_record
from mealledger.domain.model import Identity, MatchKind
from mealledger.domain.reconciliation import (
    ReconciliationEngine,
    build_attendance,
    delete_duplicates,
    find_duplicates,
    resolve,
    tally,
    transaction_key,
)

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence
    from pathlib import Path

    from mealledger.config import EventConfig, LedgerConfig
    from mealledger.domain.ports import RecordStoreGateway
    from mealledger.domain.reconciliation import (
        AttendanceEntry,
        DeletionResult,
        DuplicateReport,
        ReconciliationSummary,
        Tally,
    )
    from mealledger.domain.reconciliation.deduplicate import ConfirmDeletion

log = getLogger(__name__)


def build_gateway(*, cache_reads: bool = False) -> RecordStoreGateway:
    return AirtableGateway(config=get_record_store_config(cache_reads=cache_reads))


@contextmanager
def _gateway_scope(
    gateway: RecordStoreGateway | None,
    *,
    cache_reads: bool = False,
) -> Iterator[RecordStoreGateway]:
    """Yield ``gateway``, or build one that is closed on exit."""

    if gateway is not None:
        yield gateway
        return
    with AirtableGateway(config=get_record_store_config(cache_reads=cache_reads)) as built:
        yield built


def build_ledger(
    *,
    gateway: RecordStoreGateway | None = None,
    config: LedgerConfig | None = None,
) -> Ledger:
    return Ledger(gateway or build_gateway(), config or get_ledger_config())


def reconcile_ticket_export(
    *,
    export_path: Path,
    event_path: Path,
    expected_total: int | None = None,
    dry_run: bool = False,
    gateway: RecordStoreGateway | None = None,
) -> ReconciliationSummary:
    """Import a ticket export into the event's table and summarize the run."""

    event = load_event_config(event_path)
    batch = read_ticket_export(export_path)
    log.info(
        "Starting reconciliation: event=%s, items=%s, expected_total=%s, dry_run=%s",
        event.name,
        len(batch),
        expected_total,
        dry_run,
    )
    with _gateway_scope(gateway) as store:
        engine = ReconciliationEngine(store, event)
        summary = engine.reconcile(batch, expected_total=expected_total, dry_run=dry_run)
    log.info(
        "Finished reconciliation: created=%s, skipped=%s, mismatched=%s, unknown=%s, failed=%s",
        summary.created_count,
        summary.skipped_count,
        len(summary.mismatches),
        len(summary.unknown),
        len(summary.failed),
    )
    return summary


def find_event_duplicates(
    *,
    event_path: Path,
    include_date: bool = False,
    gateway: RecordStoreGateway | None = None,
) -> tuple[EventConfig, DuplicateReport]:
    event = load_event_config(event_path)
    with _gateway_scope(gateway, cache_reads=True) as store:
        records = store.list_all(event.collection)
    report = find_duplicates(
        records,
        transaction_key(
            member_count_field=event.member_count_field,
            non_member_count_field=event.non_member_count_field,
            include_date=include_date,
            fields=event.fields,
            rules=event.identity,
        ),
    )
    log.info(
        "Found %s duplicate groups (%s records to delete) in %s",
        len(report.groups),
        len(report.duplicate_ids),
        event.name,
    )
    return event, report


def remove_event_duplicates(
    *,
    event: EventConfig,
    report: DuplicateReport,
    confirm: ConfirmDeletion,
    gateway: RecordStoreGateway | None = None,
) -> DeletionResult:
    with _gateway_scope(gateway) as store:
        result = delete_duplicates(store, event.collection, report, confirm=confirm)
    log.info(
        "Duplicate cleanup: deleted=%s, failed=%s, skipped=%s",
        len(result.deleted),
        len(result.failed),
        len(result.skipped),
    )
    return result


@dataclass(frozen=True, slots=True)
class NameAudit:
    name: str
    kind: MatchKind
    matches: tuple[str, ...] = ()


def audit_names(
    names: Sequence[str],
    *,
    event_path: Path | None = None,
    gateway: RecordStoreGateway | None = None,
) -> list[NameAudit]:
    """Look each name up among meal cards (or an event's buyers) for manual review."""

    identities: list[Identity]
    with _gateway_scope(gateway, cache_reads=True) as store:
        if event_path is not None:
            engine = ReconciliationEngine(store, load_event_config(event_path))
            identities = [
                engine.to_transaction(record).identity for record in engine.load_existing()
            ]
        else:
            cards = get_ledger_config().collections.lunch_cards
            identities = [account_from_record(record).identity for record in store.list_all(cards)]

    results: list[NameAudit] = []
    for name in names:
        if not name.strip():
            continue
        candidate = Identity.from_full_name(name.strip())
        match = resolve(candidate, identities, identity_of=lambda identity: identity, fuzzy=True)
        results.append(
            NameAudit(
                name=name.strip(),
                kind=match.kind,
                matches=tuple(identity.full_name for identity in match.matches),
            )
        )
    return results


def event_attendance(
    *,
    event_path: Path,
    gateway: RecordStoreGateway | None = None,
) -> tuple[list[AttendanceEntry], Tally]:
    event = load_event_config(event_path)
    with _gateway_scope(gateway, cache_reads=True) as store:
        engine = ReconciliationEngine(store, event)
        transactions = [engine.to_transaction(record) for record in engine.load_existing()]
    return build_attendance(transactions, rules=event.identity), tally(transactions)
