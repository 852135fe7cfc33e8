from __future__ import annotations

import pytest

from mealledger.config import CollectionNames, EventConfig, LedgerConfig
from mealledger.domain.ledger import Ledger
from tests.helpers.events import make_event
from tests.helpers.ledger import CARDS_TABLE, RESERVATIONS_TABLE, SERVICE_DAY
from tests.helpers.record_store import InMemoryRecordStore


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "AIRTABLE_API_KEY",
        "AIRTABLE_BASE_ID",
        "AIRTABLE_LUNCH_CARDS_TABLE_ID",
        "AIRTABLE_LUNCH_RESERVATIONS_TABLE_ID",
        "LEDGER_FALLBACK_PAYMENT_METHOD",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def nye_event() -> EventConfig:
    return make_event()


@pytest.fixture
def ledger_config() -> LedgerConfig:
    return LedgerConfig(
        collections=CollectionNames(
            lunch_cards=CARDS_TABLE,
            lunch_reservations=RESERVATIONS_TABLE,
        )
    )


@pytest.fixture
def ledger(store: InMemoryRecordStore, ledger_config: LedgerConfig) -> Ledger:
    return Ledger(store, ledger_config, today=lambda: SERVICE_DAY)
