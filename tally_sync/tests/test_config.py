"""
Tests for configuration loading.
"""
import json
import pytest

from tally_sync.config import SyncConfig
from tally_sync.errors import UnknownTableError
from tally_sync.tables import TableKind

ENV_VARS = [
    "TALLY_SERVER", "TALLY_PORT", "TALLY_COMPANY", "TALLY_SYNC_TABLES",
    "TALLY_SYNC_INTERVAL_MINUTES", "TALLY_SYNC_LOOKBACK_DAYS",
    "TALLY_SYNC_BACKEND_URL", "TALLY_SYNC_ORGANISATION_ID", "TALLY_SYNC_EXPORT_PATH",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = SyncConfig()
    assert config.tally_url == "http://localhost:9000"
    assert config.sync_interval_minutes == 15
    assert config.table_kinds() == list(TableKind)
    assert config.backend_url is None
    assert config.validate() == []


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("TALLY_SERVER", "10.0.0.5")
    monkeypatch.setenv("TALLY_PORT", "9090")
    monkeypatch.setenv("TALLY_SYNC_TABLES", "Ledgers, Vouchers")
    monkeypatch.setenv("TALLY_SYNC_ORGANISATION_ID", "12")

    config = SyncConfig.from_env()
    assert config.tally_url == "http://10.0.0.5:9090"
    assert config.table_kinds() == [TableKind.LEDGERS, TableKind.VOUCHERS]
    assert config.organisation_id == 12


def test_load_overlays_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "tally": {"server": "tally.lan", "port": 9100, "company": "Acme"},
        "sync": {"intervalMinutes": 5, "tables": ["Groups"]},
        "backend": {"url": "http://backend.local/", "organisationId": 3},
    }))

    config = SyncConfig.load(path)
    assert config.tally_url == "http://tally.lan:9100"
    assert config.tally_company == "Acme"
    assert config.sync_interval_minutes == 5
    assert config.tables == ["Groups"]
    assert config.backend_url == "http://backend.local"
    assert config.organisation_id == 3
    # Untouched sections keep their defaults
    assert config.sync_lookback_days == 30


def test_missing_file_uses_env(tmp_path, monkeypatch):
    monkeypatch.setenv("TALLY_PORT", "9001")
    config = SyncConfig.load(tmp_path / "absent.json")
    assert config.tally_port == 9001


def test_unreadable_file_uses_env(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")
    assert SyncConfig.load(path).tally_server == "localhost"


@pytest.mark.parametrize("document", [
    [],
    "just a string",
    {"tally": {"port": "abc"}},
    {"tally": ["localhost"]},
    {"sync": {"intervalMinutes": "often"}},
    {"backend": {"organisationId": "acme"}},
])
def test_invalid_file_uses_env(tmp_path, monkeypatch, document):
    monkeypatch.setenv("TALLY_SERVER", "env-host")
    path = tmp_path / "config.json"
    path.write_text(json.dumps(document))

    config = SyncConfig.load(path)
    assert config.tally_server == "env-host"
    assert config.tally_port == 9000
    assert config.sync_interval_minutes == 15
    assert config.organisation_id is None


def test_partially_applied_file_is_discarded(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "tally": {"server": "tally.lan"},
        "sync": {"intervalMinutes": "often"},
    }))
    assert SyncConfig.load(path).tally_server == "localhost"


def test_save_load_round_trip(tmp_path):
    config = SyncConfig(
        tally_server="tally.lan",
        tally_company="Acme",
        tables=["Ledgers", "StockItems"],
        backend_url="http://backend.local",
        organisation_id=9,
    )
    path = config.save(tmp_path / "config.json")

    loaded = SyncConfig.load(path)
    assert loaded.to_dict() == config.to_dict()


def test_validate_reports_problems():
    config = SyncConfig(tally_port=0, sync_interval_minutes=0, tables=["Ledgers", "Bogus"])
    errors = config.validate()
    assert len(errors) == 3
    assert any("Bogus" in e for e in errors)


def test_unknown_table_kind():
    config = SyncConfig(tables=["Bogus"])
    with pytest.raises(UnknownTableError):
        config.table_kinds()
