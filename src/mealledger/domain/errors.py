"""Error taxonomy shared by the ledger and the reconciliation engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence
    from decimal import Decimal


class MealLedgerError(RuntimeError):
    """Base class for every error raised by the ledger and reconciliation code."""


class RecordStoreError(MealLedgerError):
    """The record store rejected a request (validation, permissions, unknown field)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_type: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_type = error_type


class RecordNotFoundError(RecordStoreError):
    """The requested record does not exist in the collection."""

    def __init__(self, collection: str, record_id: str) -> None:
        super().__init__(
            f"Record {record_id} not found in {collection}",
            status_code=404,
            error_type="NOT_FOUND",
        )
        self.collection = collection
        self.record_id = record_id


class GatewayUnavailableError(MealLedgerError):
    """Transient store failure that persisted after bounded retries."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AccountNotFoundError(MealLedgerError):
    def __init__(self, account_id: str) -> None:
        super().__init__(f"Meal card {account_id} not found")
        self.account_id = account_id


class InsufficientBalanceError(MealLedgerError):
    def __init__(self, account_id: str, *, remaining: int, requested: int) -> None:
        super().__init__(
            f"Insufficient meals on card {account_id}: has {remaining}, needs {requested}"
        )
        self.account_id = account_id
        self.remaining = remaining
        self.requested = requested


class BalanceLimitError(MealLedgerError):
    """A credit or correction would push the balance above the card total."""

    def __init__(self, account_id: str, *, remaining: int, total: int, requested: int) -> None:
        super().__init__(
            f"Crediting {requested} meals to card {account_id} would exceed its total "
            f"({remaining} + {requested} > {total})"
        )
        self.account_id = account_id
        self.remaining = remaining
        self.total = total
        self.requested = requested


class InvalidRequestError(MealLedgerError, ValueError):
    """A card purchase or reservation request failed validation."""


class AmbiguousIdentityError(MealLedgerError):
    def __init__(self, name: str, candidate_ids: Sequence[str]) -> None:
        ids = ", ".join(candidate_ids)
        super().__init__(f"{name} matches {len(candidate_ids)} existing records: {ids}")
        self.name = name
        self.candidate_ids = tuple(candidate_ids)


class ClassificationUnknownError(MealLedgerError):
    def __init__(self, name: str, *, reason: str, price_per_unit: Decimal | None = None) -> None:
        super().__init__(f"Cannot classify tickets for {name}: {reason}")
        self.name = name
        self.reason = reason
        self.price_per_unit = price_per_unit


class QuantityMismatchError(MealLedgerError):
    def __init__(self, name: str, *, expected: str, actual: str) -> None:
        super().__init__(f"{name}: export says {expected}, store has {actual}")
        self.name = name
        self.expected = expected
        self.actual = actual
