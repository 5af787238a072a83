"""
Scheduled sync loop.

Every cycle exports each configured table from Tally, writes it to the
export directory and forwards it to the backend ingest endpoint. Failures
are recorded per table; one bad table never stops the others, and one bad
cycle never stops the loop.

Usage:
    stop = threading.Event()
    worker = SyncWorker(config, client, auth)
    worker.run_forever(stop)      # until stop.set()
"""
from __future__ import annotations
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Optional
from loguru import logger

from .auth import AuthManager
from .backend import BackendClient
from .client import TallyClient
from .config import SyncConfig
from .errors import ProtocolError, TallySyncError
from .tables import TableDescriptor, TableKind


@dataclass
class TableResult:
    """Outcome of syncing one table in one cycle."""
    table: str
    ok: bool = False
    bytes: int = 0
    records: Optional[int] = None
    exported_to: Optional[Path] = None
    delivered: bool = False
    error: Optional[str] = None


@dataclass
class CycleReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    skipped: Optional[str] = None
    results: list[TableResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)


class SyncWorker:
    """
    Long-running orchestrator tying TallyClient and AuthManager together.

    ``auth`` may be None when no backend is configured; the worker then only
    writes exports to disk.
    """

    def __init__(
        self,
        config: SyncConfig,
        client: TallyClient,
        auth: Optional[AuthManager] = None,
        backend: Optional[BackendClient] = None,
    ):
        self.config = config
        self.client = client
        self.auth = auth
        self.backend = backend or (auth.backend if auth else None)
        self.tables: list[TableKind] = config.table_kinds()
        self.export_dir = Path(config.export_path) if config.export_path else None
        self.interval = timedelta(minutes=config.sync_interval_minutes)
        self.cycles = 0

    def sync_window(self, today: Optional[date] = None) -> tuple[date, date]:
        """Date range passed to Tally on each cycle."""
        today = today or date.today()
        return today - timedelta(days=self.config.sync_lookback_days), today

    def _organisation_id(self) -> Optional[int]:
        if self.config.organisation_id is not None:
            return self.config.organisation_id
        return self.auth.organisation_id if self.auth else None

    def export_file(self, table: TableKind | TableDescriptor) -> Path:
        """Latest export of a table; each cycle overwrites it."""
        descriptor = table.descriptor if isinstance(table, TableKind) else table
        return self.export_dir / f"{descriptor.name}.xml"

    def _export(self, descriptor: TableDescriptor, xml: str) -> Path:
        self.export_dir.mkdir(parents=True, exist_ok=True)
        path = self.export_file(descriptor)
        # Readers never see a half-written export
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_text(xml, encoding="utf-8")
        tmp_path.replace(path)
        logger.debug(f"  Saved {descriptor.name} to {path}")
        return path

    def _deliver(
        self,
        descriptor: TableDescriptor,
        xml: str,
        from_date: date,
        to_date: date,
    ) -> None:
        token = self.auth.require_token()
        payload = {
            "table": descriptor.name,
            "collectionType": descriptor.collection_type,
            "company": self.client.active_company,
            "organisationId": self._organisation_id(),
            "fromDate": from_date.isoformat(),
            "toDate": to_date.isoformat(),
            "syncedAt": datetime.now().astimezone().isoformat(),
            "data": xml,
        }
        self.backend.ingest(token, payload)
        logger.debug(f"  Delivered {descriptor.name} to backend")

    def sync_table(
        self,
        table: TableKind,
        from_date: date,
        to_date: date,
    ) -> TableResult:
        """Fetch and deliver one table. Errors from this package become a failed result."""
        descriptor = table.descriptor
        result = TableResult(table=descriptor.name)
        try:
            xml = self.client.fetch_table(table, from_date, to_date)
            result.bytes = len(xml)

            try:
                result.records = self.client.count_records(xml, descriptor)
            except ProtocolError as e:
                logger.warning(f"  Could not count {descriptor.name} records: {e}")

            if self.export_dir is not None:
                result.exported_to = self._export(descriptor, xml)
            if self.auth is not None:
                self._deliver(descriptor, xml, from_date, to_date)
                result.delivered = True
            result.ok = True
        except TallySyncError as e:
            result.error = f"{type(e).__name__}: {e}"
        except OSError as e:
            result.error = f"Export failed: {e}"
        return result

    def run_once(self, stop_event: Optional[threading.Event] = None) -> CycleReport:
        """Run a single sync cycle."""
        report = CycleReport(started_at=datetime.now())
        self.cycles += 1
        logger.info(f"=== Sync cycle {self.cycles} started at {report.started_at:%Y-%m-%d %H:%M:%S} ===")

        if self.auth is not None and not self.auth.is_authenticated():
            report.skipped = "not authenticated"
            report.finished_at = datetime.now()
            logger.warning("Not authenticated with backend; skipping cycle. Run with --login first.")
            return report

        from_date, to_date = self.sync_window()

        for table in self.tables:
            if stop_event is not None and stop_event.is_set():
                logger.info("Stop requested; abandoning remaining tables")
                break
            try:
                result = self.sync_table(table, from_date, to_date)
            except Exception as e:
                logger.exception(f"Unexpected error syncing {table.value}")
                result = TableResult(table=table.value, error=str(e))

            report.results.append(result)
            if result.ok:
                records = result.records if result.records is not None else "?"
                logger.info(f"  {result.table}: {records} records, {result.bytes} bytes")
            else:
                logger.error(f"  {result.table} failed: {result.error}")

        report.finished_at = datetime.now()
        logger.info(
            f"=== Sync cycle {self.cycles} complete: "
            f"{report.succeeded} succeeded, {report.failed} failed ==="
        )
        return report

    def run_forever(self, stop_event: threading.Event) -> None:
        """
        Loop until stop_event is set.

        The inter-cycle wait is ``stop_event.wait`` so a shutdown signal
        ends it immediately.
        """
        logger.info(
            f"Worker started: {len(self.tables)} tables every "
            f"{self.config.sync_interval_minutes} minutes"
        )
        while not stop_event.is_set():
            try:
                self.run_once(stop_event)
            except Exception:
                logger.exception("Error during Tally sync cycle")

            if stop_event.wait(self.interval.total_seconds()):
                break
        logger.info("Worker stopped")
