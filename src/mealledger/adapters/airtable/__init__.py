"""Public interface for the Airtable record store adapter."""

from __future__ import annotations

from .client import AirtableGateway
from .schema import DeletedRecordPayload, ErrorPayload, ListRecordsPayload, RecordPayload

__all__ = [
    "AirtableGateway",
    "DeletedRecordPayload",
    "ErrorPayload",
    "ListRecordsPayload",
    "RecordPayload",
]
