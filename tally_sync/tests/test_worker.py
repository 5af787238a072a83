"""
Tests for the sync loop (mocked Tally client and backend).
"""
import threading
import pytest
from datetime import date, timedelta
from unittest.mock import Mock

from tally_sync.config import SyncConfig
from tally_sync.errors import (
    AuthExpired,
    ConnectionRefused,
    HttpError,
    ProtocolError,
    TallyResponseError,
)
from tally_sync.tables import TableKind
from tally_sync.worker import SyncWorker

LEDGERS_XML = "<ENVELOPE><LEDGER NAME='Cash'/><LEDGER NAME='Bank'/></ENVELOPE>"


def make_config(tmp_path, tables=("Ledgers", "Groups", "Vouchers"), **kwargs):
    defaults = dict(
        tally_server="localhost",
        tally_port=9000,
        tally_company="Acme",
        tables=list(tables),
        export_path=str(tmp_path / "exports"),
        backend_url="http://backend.local",
        organisation_id=None,
        sync_interval_minutes=15,
        sync_lookback_days=7,
    )
    defaults.update(kwargs)
    return SyncConfig(**defaults)


def make_client(responses=None):
    """Tally client mock; responses maps table value -> xml or exception."""
    responses = responses or {}
    client = Mock()
    client.active_company = "Acme"

    def fetch(table, from_date=None, to_date=None, company=None):
        value = responses.get(table.value, LEDGERS_XML)
        if isinstance(value, Exception):
            raise value
        return value

    client.fetch_table.side_effect = fetch
    client.count_records.return_value = 2
    return client


def make_auth(authenticated=True, organisation_id=42):
    auth = Mock()
    auth.is_authenticated.return_value = authenticated
    auth.require_token.return_value = "raw-token"
    auth.organisation_id = organisation_id
    return auth


class TestRunOnce:
    """Tests for a single cycle."""

    def test_all_tables_exported_and_delivered(self, tmp_path):
        config = make_config(tmp_path)
        client, auth = make_client(), make_auth()
        worker = SyncWorker(config, client, auth)

        report = worker.run_once()

        assert report.skipped is None
        assert [r.table for r in report.results] == ["Ledgers", "Groups", "Vouchers"]
        assert report.succeeded == 3
        assert auth.backend.ingest.call_count == 3

        exported = sorted(p.name for p in (tmp_path / "exports").iterdir())
        assert exported == ["Groups.xml", "Ledgers.xml", "Vouchers.xml"]
        assert report.results[0].exported_to.read_text(encoding="utf-8") == LEDGERS_XML
        assert report.results[0].records == 2

    def test_exports_overwritten_each_cycle(self, tmp_path):
        config = make_config(tmp_path, tables=["Ledgers", "Groups"])
        client = make_client()
        worker = SyncWorker(config, client, make_auth())
        worker.run_once()

        client.fetch_table.side_effect = lambda *args, **kwargs: "<ENVELOPE/>"
        worker.run_once()
        worker.run_once()

        export_dir = tmp_path / "exports"
        assert sorted(p.name for p in export_dir.iterdir()) == ["Groups.xml", "Ledgers.xml"]
        ledgers = worker.export_file(TableKind.LEDGERS)
        assert ledgers == export_dir / "Ledgers.xml"
        assert ledgers.read_text(encoding="utf-8") == "<ENVELOPE/>"

    def test_sync_window_passed_to_fetch(self, tmp_path):
        config = make_config(tmp_path, tables=["Vouchers"], sync_lookback_days=7)
        client = make_client()
        SyncWorker(config, client, make_auth()).run_once()

        table, from_date, to_date = client.fetch_table.call_args.args
        assert table is TableKind.VOUCHERS
        assert to_date == date.today()
        assert to_date - from_date == timedelta(days=7)

    def test_ingest_payload(self, tmp_path):
        config = make_config(tmp_path, tables=["Ledgers"])
        auth = make_auth(organisation_id=42)
        SyncWorker(config, make_client(), auth).run_once()

        token, payload = auth.backend.ingest.call_args.args
        assert token == "raw-token"
        assert payload["table"] == "Ledgers"
        assert payload["collectionType"] == "Ledger"
        assert payload["company"] == "Acme"
        assert payload["organisationId"] == 42
        assert payload["data"] == LEDGERS_XML

    def test_config_organisation_wins(self, tmp_path):
        config = make_config(tmp_path, tables=["Ledgers"], organisation_id=7)
        auth = make_auth(organisation_id=42)
        SyncWorker(config, make_client(), auth).run_once()
        assert auth.backend.ingest.call_args.args[1]["organisationId"] == 7

    def test_failed_table_does_not_stop_others(self, tmp_path):
        config = make_config(tmp_path)
        client = make_client({
            "Ledgers": ConnectionRefused("tally down"),
            "Groups": TallyResponseError("bad TDL"),
        })
        auth = make_auth()
        report = SyncWorker(config, client, auth).run_once()

        assert [r.ok for r in report.results] == [False, False, True]
        assert "ConnectionRefused" in report.results[0].error
        assert "TallyResponseError" in report.results[1].error
        assert auth.backend.ingest.call_count == 1

    def test_unexpected_exception_is_contained(self, tmp_path):
        config = make_config(tmp_path)
        client = make_client({"Groups": RuntimeError("bug")})
        report = SyncWorker(config, client, make_auth()).run_once()
        assert [r.ok for r in report.results] == [True, False, True]
        assert report.results[1].error == "bug"

    def test_backend_rejection_marks_table_failed(self, tmp_path):
        config = make_config(tmp_path, tables=["Ledgers", "Groups"])
        auth = make_auth()
        auth.backend.ingest.side_effect = [HttpError("413", status_code=413), Mock()]
        report = SyncWorker(config, make_client(), auth).run_once()

        assert [r.ok for r in report.results] == [False, True]
        # Local export still happened for the failed delivery
        assert report.results[0].exported_to is not None
        assert report.results[0].delivered is False

    def test_token_expiring_mid_cycle(self, tmp_path):
        config = make_config(tmp_path, tables=["Ledgers", "Groups"])
        auth = make_auth()
        auth.require_token.side_effect = ["raw-token", AuthExpired("expired")]
        report = SyncWorker(config, make_client(), auth).run_once()
        assert [r.ok for r in report.results] == [True, False]

    def test_count_failure_is_only_diagnostic(self, tmp_path):
        config = make_config(tmp_path, tables=["Ledgers"])
        client = make_client()
        client.count_records.side_effect = ProtocolError("not xml")
        report = SyncWorker(config, client, make_auth()).run_once()
        assert report.results[0].ok is True
        assert report.results[0].records is None

    def test_not_authenticated_skips_cycle(self, tmp_path):
        config = make_config(tmp_path)
        client, auth = make_client(), make_auth(authenticated=False)
        report = SyncWorker(config, client, auth).run_once()

        assert report.skipped == "not authenticated"
        assert report.results == []
        client.fetch_table.assert_not_called()

    def test_without_backend_exports_only(self, tmp_path):
        config = make_config(tmp_path, tables=["Ledgers"], backend_url=None)
        report = SyncWorker(config, make_client(), auth=None).run_once()
        assert report.results[0].ok is True
        assert report.results[0].delivered is False

    def test_without_export_path(self, tmp_path):
        config = make_config(tmp_path, tables=["Ledgers"], export_path=None)
        auth = make_auth()
        report = SyncWorker(config, make_client(), auth).run_once()
        assert report.results[0].exported_to is None
        assert report.results[0].delivered is True

    def test_stop_between_tables(self, tmp_path):
        config = make_config(tmp_path)
        stop = threading.Event()
        client = make_client()
        original = client.fetch_table.side_effect

        def fetch_then_stop(*args, **kwargs):
            stop.set()
            return original(*args, **kwargs)

        client.fetch_table.side_effect = fetch_then_stop
        report = SyncWorker(config, client, make_auth()).run_once(stop)
        assert len(report.results) == 1

    def test_unknown_table_in_config(self, tmp_path):
        config = make_config(tmp_path, tables=["Ledgers", "Bogus"])
        with pytest.raises(ValueError):
            SyncWorker(config, make_client(), make_auth())


class TestRunForever:
    """Tests for the loop and its interruptible wait."""

    def test_already_stopped(self, tmp_path):
        config = make_config(tmp_path)
        client = make_client()
        stop = threading.Event()
        stop.set()
        SyncWorker(config, client, make_auth()).run_forever(stop)
        client.fetch_table.assert_not_called()

    def test_stop_interrupts_wait(self, tmp_path):
        config = make_config(tmp_path, tables=["Ledgers"], sync_interval_minutes=15)
        client = make_client()
        cycle_done = threading.Event()
        original = client.fetch_table.side_effect

        def fetch(*args, **kwargs):
            cycle_done.set()
            return original(*args, **kwargs)

        client.fetch_table.side_effect = fetch
        worker = SyncWorker(config, client, make_auth())
        stop = threading.Event()
        thread = threading.Thread(target=worker.run_forever, args=(stop,), daemon=True)
        thread.start()

        assert cycle_done.wait(5)
        stop.set()
        thread.join(timeout=5)
        assert not thread.is_alive()
        assert worker.cycles == 1

    def test_cycle_error_does_not_end_loop(self, tmp_path):
        config = make_config(tmp_path, tables=["Ledgers"])
        worker = SyncWorker(config, make_client(), make_auth())
        stop = threading.Event()
        calls = []

        def run_once(stop_event=None):
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            stop.set()

        worker.run_once = run_once
        worker.interval = timedelta(seconds=0)
        worker.run_forever(stop)
        assert len(calls) == 2
