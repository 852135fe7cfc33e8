from __future__ import annotations

import pytest

from mealledger.config import (
    ConfigurationError,
    MissingConfigurationError,
    get_collection_names,
    get_ledger_config,
    get_record_store_config,
    optional_env_var,
    require_env_var,
    require_env_vars,
)
from mealledger.domain.model import PaymentMethod


def test_require_env_vars_returns_stripped_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXAMPLE_VAR", "  value ")

    result = require_env_vars(["EXAMPLE_VAR"])

    assert result["EXAMPLE_VAR"] == "value"


def test_require_env_vars_lists_every_missing_name(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MISSING_B", raising=False)
    monkeypatch.delenv("MISSING_A", raising=False)

    with pytest.raises(MissingConfigurationError) as exc:
        require_env_vars(["MISSING_B", "MISSING_A"])

    assert "MISSING_A, MISSING_B" in str(exc.value)


def test_require_env_var_handles_blank_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXAMPLE_VAR", "   ")

    with pytest.raises(MissingConfigurationError):
        require_env_var("EXAMPLE_VAR")


def test_optional_env_var_falls_back_to_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BLANK_VAR", "")

    assert optional_env_var("BLANK_VAR", "fallback") == "fallback"
    assert optional_env_var("UNSET_VAR_FOR_TEST") is None


def test_record_store_config_builds_airtable_resilience(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AIRTABLE_API_KEY", "patSecret")
    monkeypatch.setenv("AIRTABLE_BASE_ID", "appBase")

    config = get_record_store_config()

    assert config.base_id == "appBase"
    assert config.resilience.base_url == "https://api.airtable.com/v0/appBase/"
    assert config.resilience.default_headers is not None
    assert config.resilience.default_headers["Authorization"] == "Bearer patSecret"
    assert config.resilience.ratelimit is not None
    assert config.resilience.ratelimit.max_calls == 5
    assert config.resilience.cache is None


def test_record_store_config_can_cache_reads(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AIRTABLE_API_KEY", "patSecret")
    monkeypatch.setenv("AIRTABLE_BASE_ID", "appBase")

    config = get_record_store_config(cache_reads=True)

    assert config.resilience.cache is not None
    assert config.resilience.cache.sqlite_path is None


def test_record_store_config_requires_credentials() -> None:
    with pytest.raises(MissingConfigurationError) as exc:
        get_record_store_config()

    assert "AIRTABLE_API_KEY" in str(exc.value)
    assert exc.value.names == ("AIRTABLE_API_KEY", "AIRTABLE_BASE_ID")


def test_collection_names_default_to_table_names(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AIRTABLE_LUNCH_CARDS_TABLE_ID", "tblCardsXYZ")

    names = get_collection_names()

    assert names.lunch_cards == "tblCardsXYZ"
    assert names.lunch_reservations == "Lunch Reservations"


def test_ledger_config_reads_fallback_method(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LEDGER_FALLBACK_PAYMENT_METHOD", "Cash")

    assert get_ledger_config().fallback_method is PaymentMethod.CASH


def test_ledger_config_defaults_to_unknown_fallback() -> None:
    assert get_ledger_config().fallback_method is PaymentMethod.UNKNOWN


@pytest.mark.parametrize("value", ["Lunch Card", "Bitcoin"])
def test_ledger_config_rejects_bad_fallback(monkeypatch: pytest.MonkeyPatch, value: str) -> None:
    monkeypatch.setenv("LEDGER_FALLBACK_PAYMENT_METHOD", value)

    with pytest.raises(ConfigurationError) as exc:
        get_ledger_config()

    assert exc.value.setting == "LEDGER_FALLBACK_PAYMENT_METHOD"
