"""Reconciliation of ticket-export batches against stored ticket records.

Layered flow:
1) parse each line item's detail text into tier counts
2) merge line items that belong to the same person
3) resolve identities against the stored records (exact rules only)
4) classify unknown tiers from price bands
5) skip, report or create through the record store gateway
6) summarize totals for the operator

Duplicate detection and attendance lists work on the same stored records.
"""

from __future__ import annotations

from .attendance import AttendanceEntry, Tally, build_attendance, render_attendance, tally
from .classify import Classification, classify, classify_or_raise
from .contracts import (
    ItemIssue,
    LineItem,
    MergedEntry,
    Mismatch,
    ReconciliationSummary,
    TicketCounts,
)
from .deduplicate import (
    DeletionResult,
    DuplicateGroup,
    DuplicateReport,
    delete_duplicates,
    find_duplicates,
    transaction_key,
)
from .details import ParsedDetails, parse_details
from .engine import ReconciliationEngine
from .identity import (
    DEFAULT_RULES,
    IdentityKey,
    IdentityRules,
    MatchResult,
    fuzzy_matches,
    identity_key,
    normalize_email,
    resolve,
    same_person,
)
from .mapping import TransactionFields, transaction_from_record, transaction_to_fields

__all__ = [
    "DEFAULT_RULES",
    "AttendanceEntry",
    "Classification",
    "DeletionResult",
    "DuplicateGroup",
    "DuplicateReport",
    "IdentityKey",
    "IdentityRules",
    "ItemIssue",
    "LineItem",
    "MatchResult",
    "MergedEntry",
    "Mismatch",
    "ParsedDetails",
    "ReconciliationEngine",
    "ReconciliationSummary",
    "Tally",
    "TicketCounts",
    "TransactionFields",
    "build_attendance",
    "classify",
    "classify_or_raise",
    "delete_duplicates",
    "find_duplicates",
    "fuzzy_matches",
    "identity_key",
    "normalize_email",
    "parse_details",
    "render_attendance",
    "resolve",
    "same_person",
    "tally",
    "transaction_from_record",
    "transaction_to_fields",
]
