"""
Complete sync: freshness check -> export -> requests -> fields -> watermark.

Everything after the freshness check runs inside a single transaction which
is committed once at the end, so a failed run leaves the database untouched.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy import MetaData
from sqlalchemy.engine import Connection, Engine

from ..config import Settings
from ..db.sync_state import ensure_sync_state, read_watermark, write_watermark
from ..exceptions import MalformedRowError, SyncCancelled
from ..ingestion.arcgis_fetcher import ArcGISFetcher, ExportStream
from ..ingestion.local_fetcher import open_local_export
from ..processing.csv_reader import CsvRows
from ..processing.fields_processor import parse_field_row
from ..processing.request_processor import RequestParser
from .partitions import PartitionManager
from .request_index import RequestYearIndex
from .upsert_writer import UpsertWriter

logger = logging.getLogger(__name__)


def utc_now_millis() -> datetime:
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


@dataclass
class SyncResult:
    up_to_date: bool = False
    requests: int = 0
    fields: int = 0
    fields_skipped: int = 0
    years: List[int] = field(default_factory=list)
    modified: Optional[datetime] = None


class SyncRun:
    """
    Owns all state of one run: the year partitions already ensured, the cached
    statements, and the request ID -> year index used to route field rows.
    A new SyncRun is needed for every run.
    """

    def __init__(
        self,
        engine: Engine,
        settings: Settings,
        fetcher: Optional[ArcGISFetcher] = None,
        cancel: Optional[threading.Event] = None,
        now: Callable[[], datetime] = utc_now_millis,
    ):
        self.engine = engine
        self.settings = settings
        self.cancel = cancel or threading.Event()
        self.fetcher = fetcher or ArcGISFetcher(settings, cancel=self.cancel)
        self.now = now
        self.metadata = MetaData()
        self.index = RequestYearIndex()
        self.result = SyncResult()

    def _check_cancel(self) -> None:
        if self.cancel.is_set():
            raise SyncCancelled("sync cancelled")

    def _open_requests(self) -> Optional[ExportStream]:
        if self.settings.requests_file:
            return open_local_export(self.settings.requests_file)
        with self.engine.connect() as conn:
            since = read_watermark(conn)
        return self.fetcher.download(self.settings.requests_dataset_id, since)

    def _open_fields(self) -> ExportStream:
        if self.settings.fields_file:
            return open_local_export(self.settings.fields_file)
        return self.fetcher.download(self.settings.fields_dataset_id, check=False)

    def _ingest_requests(self, export: ExportStream, writer: UpsertWriter) -> None:
        rows = CsvRows(export.stream, name="requests")
        parser = RequestParser(rows.header)

        for row in rows:
            self._check_cancel()
            request = parser.parse(row, line=rows.line_num)
            self.index.record(request.id, request.year)
            writer.upsert_request(request, self.now())

            self.result.requests += 1
            if self.result.requests % self.settings.progress_every == 0:
                logger.info("processed %d requests", self.result.requests)

    def _ingest_fields(self, export: ExportStream, writer: UpsertWriter) -> None:
        rows = CsvRows(export.stream, skip_malformed=True, name="fields")

        for row in rows:
            self._check_cancel()
            try:
                request_field = parse_field_row(row, line=rows.line_num)
            except MalformedRowError as e:
                self.result.fields_skipped += 1
                logger.warning("skipping malformed fields row: %s", e)
                continue

            year = self.index.year_for(request_field.id)
            writer.upsert_field(request_field, year)

            self.result.fields += 1
            if self.result.fields % self.settings.progress_every == 0:
                logger.info("processed %d fields", self.result.fields)

        self.result.fields_skipped += rows.skipped

    def _apply(self, conn: Connection, requests_export: ExportStream) -> None:
        partitions = PartitionManager(conn, self.metadata)
        writer = UpsertWriter(conn, partitions)

        with requests_export:
            self._ingest_requests(requests_export, writer)

        # fields can only be routed once every request has been indexed
        with self._open_fields() as fields_export:
            self._ingest_fields(fields_export, writer)

        if requests_export.modified is not None:
            write_watermark(conn, requests_export.modified)
        self.result.modified = requests_export.modified
        self.result.years = partitions.years

    def run(self) -> SyncResult:
        ensure_sync_state(self.engine)

        requests_export = self._open_requests()
        if requests_export is None:
            self.result.up_to_date = True
            return self.result

        try:
            with self.engine.begin() as conn:
                self._apply(conn, requests_export)
        finally:
            requests_export.close()

        logger.info(
            "sync complete: %d requests, %d fields (%d skipped) across years %s",
            self.result.requests,
            self.result.fields,
            self.result.fields_skipped,
            self.result.years,
        )
        return self.result
