"""Duplicate detection over a fetched record set.

Responsibilities of this module:
- group records by a caller-supplied composite key
- pick the earliest-created record of each group as the survivor
- flag groups whose survivor choice rests on a creation-time tie
- delete flagged duplicates only after explicit confirmation

Analysis never mutates the store; ``delete_duplicates`` is the one function
that writes, and it re-checks that every survivor still exists first.
"""

from __future__ import annotations

from collections.abc import Hashable
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Protocol

from mealledger.domain.errors import MealLedgerError

from .identity import DEFAULT_RULES, normalize_email, normalize_text
from .mapping import TransactionFields, parse_timestamp

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from mealledger.domain.model import StoredRecord
    from mealledger.domain.ports import RecordStoreGateway

    from .identity import IdentityRules

type DuplicateKey = tuple[Hashable, ...]
type KeyFunction = Callable[[StoredRecord], DuplicateKey | None]

log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DuplicateGroup:
    key: DuplicateKey
    survivor: StoredRecord
    duplicates: tuple[StoredRecord, ...]
    # survivor shares its creation time with another member of the group
    ambiguous: bool = False

    @property
    def records(self) -> tuple[StoredRecord, ...]:
        return (self.survivor, *self.duplicates)


@dataclass(slots=True)
class DuplicateReport:
    groups: list[DuplicateGroup] = field(default_factory=list["DuplicateGroup"])

    @property
    def duplicate_ids(self) -> list[str]:
        return [record.id for group in self.groups for record in group.duplicates]

    @property
    def ambiguous_groups(self) -> list[DuplicateGroup]:
        return [group for group in self.groups if group.ambiguous]

    def render(self, *, describe: Callable[[StoredRecord], str] | None = None) -> str:
        label = describe or (lambda record: record.id)
        lines: list[str] = []
        for group in self.groups:
            lines.append(f"{len(group.records)} records for {label(group.survivor)}:")
            survivor = group.survivor
            lines.append(f"  KEEP   {survivor.id} created {survivor.created_at.isoformat()}")
            lines.extend(
                f"  DELETE {record.id} created {record.created_at.isoformat()}"
                for record in group.duplicates
            )
            if group.ambiguous:
                lines.append("  ! identical creation times; survivor chosen by record id")
        lines.append(f"Total duplicates to delete: {len(self.duplicate_ids)}")
        return "\n".join(lines)


@dataclass(slots=True)
class DeletionResult:
    deleted: list[str] = field(default_factory=list["str"])
    failed: dict[str, str] = field(default_factory=dict["str", "str"])
    skipped: list[str] = field(default_factory=list["str"])
    confirmed: bool = False


class ConfirmDeletion(Protocol):
    def __call__(self, report: DuplicateReport) -> bool: ...


def find_duplicates(records: Iterable[StoredRecord], key_fn: KeyFunction) -> DuplicateReport:
    """Group ``records`` by ``key_fn`` and keep the earliest-created of each group.

    Records for which ``key_fn`` returns ``None`` never take part. The result is
    independent of the input order.
    """

    grouped: dict[DuplicateKey, list[StoredRecord]] = {}
    for record in records:
        key = key_fn(record)
        if key is None:
            continue
        grouped.setdefault(key, []).append(record)

    groups: list[DuplicateGroup] = []
    for key, members in grouped.items():
        if len(members) < 2:
            continue
        ordered = sorted(members, key=_creation_order)
        survivor, *rest = ordered
        ambiguous = rest[0].created_at == survivor.created_at
        if ambiguous:
            log.warning(
                "Survivor for key %s chosen by record id: %s and %s share created time %s",
                key,
                survivor.id,
                rest[0].id,
                survivor.created_at,
            )
        groups.append(
            DuplicateGroup(key=key, survivor=survivor, duplicates=tuple(rest), ambiguous=ambiguous)
        )

    groups.sort(key=lambda group: _creation_order(group.survivor))
    return DuplicateReport(groups=groups)


def delete_duplicates(
    gateway: RecordStoreGateway,
    collection: str,
    report: DuplicateReport,
    *,
    confirm: ConfirmDeletion,
) -> DeletionResult:
    result = DeletionResult()
    if not report.groups:
        return result
    if not confirm(report):
        log.info("Deletion of %s duplicates not confirmed", len(report.duplicate_ids))
        return result
    result.confirmed = True

    present = {record.id for record in gateway.list_all(collection)}
    for group in report.groups:
        if group.survivor.id not in present:
            log.warning(
                "Survivor %s no longer exists; leaving %s untouched",
                group.survivor.id,
                ", ".join(record.id for record in group.duplicates),
            )
            result.skipped.extend(record.id for record in group.duplicates)
            continue
        for record in group.duplicates:
            if record.id not in present:
                result.skipped.append(record.id)
                continue
            try:
                gateway.delete(collection, record.id)
            except MealLedgerError as exc:
                log.error("Failed to delete %s: %s", record.id, exc)
                result.failed[record.id] = str(exc)
                continue
            log.info("Deleted duplicate %s (kept %s)", record.id, group.survivor.id)
            result.deleted.append(record.id)
    return result


def transaction_key(
    *,
    member_count_field: str,
    non_member_count_field: str,
    include_date: bool = False,
    fields: TransactionFields | None = None,
    rules: IdentityRules = DEFAULT_RULES,
) -> KeyFunction:
    """Key of normalized full name, normalized email and total ticket count.

    Pass ``include_date=True`` where one person may legitimately buy the same
    number of tickets more than once.
    """

    names = fields or TransactionFields()

    def key_fn(record: StoredRecord) -> DuplicateKey | None:
        full_name = normalize_text(
            f"{record.get_str(names.first_name)} {record.get_str(names.last_name)}"
        )
        email = normalize_email(record.get_str(names.email), rules) or ""
        if not full_name and not email:
            return None
        quantity = record.get_int(member_count_field) + record.get_int(non_member_count_field)
        if not include_date:
            return (full_name, email, quantity)
        purchased_at = parse_timestamp(record.fields.get(names.purchase_date))
        return (full_name, email, quantity, purchased_at.date() if purchased_at else None)

    return key_fn


def _creation_order(record: StoredRecord) -> tuple[object, str]:
    return (record.created_at, record.id)
