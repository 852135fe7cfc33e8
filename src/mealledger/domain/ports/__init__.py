"""Domain port definitions for adapters."""

from __future__ import annotations

from .record_store import RecordStoreGateway

__all__ = ["RecordStoreGateway"]
