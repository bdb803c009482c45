import csv
import io
import json
from unittest.mock import MagicMock

import pytest

from cityworks_sync.config import Settings
from cityworks_sync.db.session import get_engine

REQUEST_HEADER = [
    "REQUEST_ID", "DATE_INITIATED", "DATE_CLOSED", "DESCRIPTION", "INITIATED_BY",
    "PRIORITY", "ADDRESS", "COMMUNITY", "DISTRICT", "REQUEST_CATEGORY", "RESOLUTION",
    "LATITUDE", "LONGITUDE", "STATUS", "DEPT_RESPONSIBILITY", "WORK_ORDER",
    "ObjectId", "PROJECT_NAME",
]

FIELDS_HEADER = ["REQUEST_ID", "CATEGORY_ID", "CATEGORY", "OUTCOME"]


class BrokenStream:
    """Yields some lines of an export, then fails the way a dropped download does."""

    def __init__(self, lines, error):
        self.lines = lines
        self.error = error
        self.closed = False

    def __iter__(self):
        yield from self.lines
        raise self.error

    def close(self):
        self.closed = True


def _request_row(**overrides):
    row = {
        "REQUEST_ID": "42",
        "DATE_INITIATED": "3/5/2019 2:07:44 PM",
        "DATE_CLOSED": "",
        "DESCRIPTION": "Pothole on Main St",
        "INITIATED_BY": "Phone",
        "PRIORITY": "Normal",
        "ADDRESS": "1 Main St",
        "COMMUNITY": "Halifax",
        "DISTRICT": "7",
        "REQUEST_CATEGORY": "Roads",
        "RESOLUTION": "",
        "LATITUDE": "44.6488",
        "LONGITUDE": "-63.5752",
        "STATUS": "Open",
        "DEPT_RESPONSIBILITY": "Public Works",
        "WORK_ORDER": "WO-1",
        "ObjectId": "1",
        "PROJECT_NAME": "",
    }
    row.update(overrides)
    return row


def _to_csv(header, rows):
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\r\n")
    writer.writerow(header)
    for row in rows:
        writer.writerow([row.get(h, "") for h in header] if isinstance(row, dict) else row)
    return buf.getvalue()


@pytest.fixture
def request_row():
    """Factory for one requests export row as a dict keyed by CSV column."""
    return _request_row


@pytest.fixture
def requests_csv():
    """Build requests export text; `header` lets a test reorder the columns."""

    def build(rows, header=REQUEST_HEADER):
        return _to_csv(header, rows)

    return build


@pytest.fixture
def fields_csv():
    def build(rows):
        return _to_csv(FIELDS_HEADER, rows)

    return build


@pytest.fixture
def write_file(tmp_path):
    def write(name, text):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8", newline="")
        return str(path)

    return write


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite engine, configured the way a real run is."""
    eng = get_engine(str(tmp_path / "data.db"))
    yield eng
    eng.dispose()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        db_path=str(tmp_path / "data.db"),
        items_url="https://items.test/items",
        download_url="https://download.test/items",
        export_deadline=5,
        poll_interval=0.01,
        http_timeout=1,
        progress_every=2,
    )


@pytest.fixture
def fake_response():
    """Mock requests.Response with the bits the fetcher looks at."""

    def build(status=200, payload=None, text=None, raw=None):
        resp = MagicMock()
        resp.status_code = status
        resp.text = text if text is not None else json.dumps(payload)
        if payload is None and text is not None:
            resp.json.side_effect = ValueError("Expecting value: line 1 column 1 (char 0)")
        else:
            resp.json.return_value = payload
        resp.raw = raw
        return resp

    return build
