"""
arcgis_fetcher.py
This code talks to the ArcGIS hosting platform the city publishes its datasets on.

Responsibility:
    1. Read an item's metadata and decide whether it changed since our watermark.
    2. Ask the download API to generate a CSV export and poll until it is ready.
    3. Open the finished export as a byte stream.
Output: an ExportStream, or None when the item has not changed.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, BinaryIO, Callable, Dict, Optional

import requests

from ..config import Settings
from ..exceptions import ExportTimeoutError, SyncCancelled, UpstreamError

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def millis_to_datetime(value: Any) -> datetime:
    """Convert the metadata's `modified` value (ms since epoch) to an aware UTC datetime."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise UpstreamError(f"modified is not an integer timestamp: {value!r}")
    return EPOCH + timedelta(milliseconds=value)


@dataclass
class ExportStream:
    """An open CSV export plus the modification instant it corresponds to."""

    stream: BinaryIO
    modified: Optional[datetime]
    source: str
    closer: Optional[Callable[[], None]] = None

    def close(self) -> None:
        if self.closer is not None:
            self.closer()
        else:
            self.stream.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class ArcGISFetcher:
    """Freshness check, export polling and payload download for ArcGIS items."""

    def __init__(
        self,
        settings: Settings,
        session: Optional[requests.Session] = None,
        cancel: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.session = session or requests.Session()
        self.cancel = cancel or threading.Event()
        self.clock = clock

    # ------------------------------
    # HTTP helpers
    # ------------------------------
    def _check_cancel(self) -> None:
        if self.cancel.is_set():
            raise SyncCancelled("sync cancelled")

    def _get(self, url: str, what: str, **kwargs) -> requests.Response:
        self._check_cancel()
        try:
            return self.session.get(url, timeout=self.settings.http_timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"{what}: request to {url} failed: {e}") from e

    def _get_json(self, url: str, what: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        response = self._get(url, what, params=params)
        try:
            body = response.text
            if response.status_code // 100 != 2:
                raise UpstreamError(
                    f"{what}: unexpected status code: {response.status_code} -- {body}",
                    status_code=response.status_code,
                )
            try:
                data = response.json()
            except ValueError as e:
                raise UpstreamError(f"{what}: invalid JSON from {url}: {e}") from e
        finally:
            response.close()

        if not isinstance(data, dict):
            raise UpstreamError(f"{what}: expected a JSON object from {url}, got {type(data).__name__}")
        return data

    # ------------------------------
    # Freshness
    # ------------------------------
    def get_modified(self, dataset_id: str) -> datetime:
        """Return the item's last-modified instant from its metadata."""
        url = f"{self.settings.items_url}/{dataset_id}"
        data = self._get_json(url, "getting modified time", params={"f": "json"})
        if "modified" not in data:
            raise UpstreamError(f"getting modified time: no 'modified' field in metadata for {dataset_id}")
        return millis_to_datetime(data["modified"])

    def check_freshness(self, dataset_id: str, since: Optional[datetime]) -> Optional[datetime]:
        """
        Return the new modification instant if the item changed after `since`,
        or None if there is nothing new. `since=None` means we never synced.
        """
        modified = self.get_modified(dataset_id)
        if since is not None and not modified > since:
            logger.info("%s up to date, last modified %s", dataset_id, modified.isoformat())
            return None
        logger.info(
            "downloading %s last modified %s current modified %s",
            dataset_id,
            since.isoformat() if since else "never",
            modified.isoformat(),
        )
        return modified

    # ------------------------------
    # Export generation
    # ------------------------------
    def poll_export(self, dataset_id: str) -> str:
        """
        Request a CSV export until the API hands back a result URL.

        Pending responses are retried every `poll_interval` seconds until
        `export_deadline` seconds have passed, then ExportTimeoutError is raised.
        The wait between polls ends early if the cancel event is set.
        """
        url = f"{self.settings.download_url}/{dataset_id}/csv"
        params = {"redirect": "false", "layers": "0"}
        deadline = self.clock() + self.settings.export_deadline
        attempts = 0

        while True:
            data = self._get_json(url, "requesting export", params=params)
            attempts += 1

            result_url = data.get("resultUrl") or ""
            if not isinstance(result_url, str):
                raise UpstreamError(f"requesting export: resultUrl is not a string: {result_url!r}")
            if result_url:
                logger.info("downloading %s from %s", dataset_id, result_url)
                return result_url

            remaining = deadline - self.clock()
            if remaining <= 0:
                raise ExportTimeoutError(
                    f"export of {dataset_id} not ready after {attempts} attempts "
                    f"({self.settings.export_deadline:g}s deadline)"
                )

            logger.info("waiting %s body %s", dataset_id, data)
            if self.cancel.wait(min(self.settings.poll_interval, remaining)):
                raise SyncCancelled(f"sync cancelled while waiting for export of {dataset_id}")

    def open_stream(self, url: str, modified: Optional[datetime] = None) -> ExportStream:
        """Open the export payload; the caller owns (and must close) the stream."""
        response = self._get(url, "downloading export", stream=True)
        if response.status_code // 100 != 2:
            try:
                body = response.text
            finally:
                response.close()
            raise UpstreamError(
                f"downloading export: unexpected status code: {response.status_code} -- {body}",
                status_code=response.status_code,
            )
        response.raw.decode_content = True
        return ExportStream(stream=response.raw, modified=modified, source=url, closer=response.close)

    def download(self, dataset_id: str, since: Optional[datetime] = None, check: bool = True) -> Optional[ExportStream]:
        """
        Freshness check, poll, and open in one call.

        Returns None when `check` is set and the item has not changed since `since`.
        With `check=False` the export is always fetched and carries no modified instant.
        """
        modified = None
        if check:
            modified = self.check_freshness(dataset_id, since)
            if modified is None:
                return None
        result_url = self.poll_export(dataset_id)
        return self.open_stream(result_url, modified)
