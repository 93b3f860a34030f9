"""
Tests for environment-based configuration
"""

import pytest
from decimal import Decimal

from general_ledger import config as config_module
from general_ledger.config import LedgerConfig, create_storage, get_config, reload_config
from general_ledger.storage import InMemoryStorage, SQLiteStorage


class TestLedgerConfig:
    """Test configuration defaults and environment overrides"""

    def test_defaults(self, monkeypatch):
        for name in ["LEDGER_BALANCE_TOLERANCE", "LEDGER_DOC_NO_PREFIX", "LEDGER_DATABASE_URL"]:
            monkeypatch.delenv(name, raising=False)
        cfg = LedgerConfig(_env_file=None)

        assert cfg.tolerance == Decimal('0.01')
        assert cfg.doc_no_prefix == "JE-"
        assert cfg.doc_no_width == 6
        assert cfg.reversal_prefix == "REV-"
        assert cfg.enable_audit_logging
        assert cfg.enable_domain_events

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("LEDGER_BALANCE_TOLERANCE", "0.005")
        monkeypatch.setenv("LEDGER_DOC_NO_PREFIX", "GJ-")
        monkeypatch.setenv("LEDGER_ENABLE_DOMAIN_EVENTS", "false")
        cfg = LedgerConfig(_env_file=None)

        assert cfg.tolerance == Decimal('0.005')
        assert cfg.doc_no_prefix == "GJ-"
        assert not cfg.enable_domain_events

    def test_reload_config(self, monkeypatch):
        original = get_config()
        monkeypatch.setenv("LEDGER_BASE_CURRENCY", "EUR")
        try:
            reloaded = reload_config()
            assert reloaded.base_currency == "EUR"
            assert get_config() is reloaded
        finally:
            config_module.config = original


class TestCreateStorage:
    """Test building a backend from database_url"""

    def test_memory(self):
        storage = create_storage(LedgerConfig(database_url="memory://"))
        assert isinstance(storage, InMemoryStorage)

    def test_sqlite_file(self, tmp_path):
        storage = create_storage(LedgerConfig(database_url=f"sqlite:///{tmp_path / 'ledger.db'}"))
        try:
            assert isinstance(storage, SQLiteStorage)
            assert storage.db_path.endswith("ledger.db")
        finally:
            storage.close()

    def test_sqlite_without_path_is_in_memory(self):
        storage = create_storage(LedgerConfig(database_url="sqlite:///"))
        try:
            assert storage.db_path == ":memory:"
        finally:
            storage.close()

    def test_unsupported_scheme(self):
        with pytest.raises(ValueError, match="Unsupported"):
            create_storage(LedgerConfig(database_url="mongodb://localhost"))
