"""Port for the tabular record store that backs tickets and meal cards."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping

    from mealledger.domain.model import StoredRecord


@runtime_checkable
class RecordStoreGateway(Protocol):
    """Fetch-all and single-record CRUD against named collections.

    Implementations handle pagination inside ``list_all`` and raise
    ``GatewayUnavailableError`` once transient failures outlast their retries.
    """

    def list_all(self, collection: str) -> list[StoredRecord]: ...

    def get(self, collection: str, record_id: str) -> StoredRecord: ...

    def create(self, collection: str, fields: Mapping[str, object]) -> StoredRecord: ...

    def update(
        self,
        collection: str,
        record_id: str,
        fields: Mapping[str, object],
    ) -> StoredRecord: ...

    def delete(self, collection: str, record_id: str) -> None: ...
