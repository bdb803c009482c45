"""
request_processor.py
Turns rows of the service request export into ServiceRequest records.

Responsibility: parse identifiers, timestamps and coordinates, and decide which
year partition each request belongs to.
Input: CSV rows plus the export's header.
Output: ServiceRequest objects ready for the upsert writer.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from ..exceptions import PartitionError, RecordError
from .csv_reader import column_extractor

# The publisher writes local Halifax wall-clock times, e.g. "3/5/2019 2:07:44 PM"
LOCAL_TZ = ZoneInfo("America/Halifax")
TIME_FORMAT = "%m/%d/%Y %I:%M:%S %p"

# Anything initiated before this is treated as a bad value
EARLIEST_VALID_INITIATED = datetime(2000, 1, 1, tzinfo=LOCAL_TZ)

# CSV column -> database column, in the order the writer expects them
REQUEST_COLUMNS = {
    "REQUEST_ID": "id",
    "DATE_INITIATED": "initiated",
    "DATE_CLOSED": "closed",
    "DESCRIPTION": "description",
    "INITIATED_BY": "initiator",
    "PRIORITY": "priority",
    "ADDRESS": "address",
    "COMMUNITY": "community",
    "DISTRICT": "district",
    "REQUEST_CATEGORY": "category",
    "RESOLUTION": "resolution",
    "LATITUDE": "latitude",
    "LONGITUDE": "longitude",
    "STATUS": "status",
    "DEPT_RESPONSIBILITY": "department",
    "WORK_ORDER": "work_order",
    "PROJECT_NAME": "project_name",
}

TEXT_COLUMNS = (
    "description", "initiator", "priority", "address", "community", "district",
    "category", "resolution", "status", "department", "work_order", "project_name",
)


def parse_local_time(value: str) -> datetime:
    """Parse a publisher timestamp as Halifax local time (raises ValueError)."""
    return datetime.strptime(value.strip(), TIME_FORMAT).replace(tzinfo=LOCAL_TZ)


def partition_year(initiated: datetime, closed: Optional[datetime], request_id: Any = None) -> int:
    """
    Calendar year (Halifax time) a request is filed under.

    Requests initiated before 2000 carry a corrupt initiated value; they are
    filed by their closed time instead, and are unusable if never closed.
    """
    effective = initiated
    if initiated < EARLIEST_VALID_INITIATED:
        if closed is None:
            raise PartitionError(f"invalid initiated time: {request_id} {initiated.isoformat()}")
        effective = closed
    return effective.astimezone(LOCAL_TZ).year


def _parse_coordinate(value: str, name: str) -> Optional[float]:
    value = value.strip()
    if not value:
        return None
    try:
        return float(value)
    except ValueError as e:
        raise RecordError(f"parsing {name}: {value!r} is not a number") from e


@dataclass
class ServiceRequest:
    id: int
    initiated: datetime
    closed: Optional[datetime]
    year: int
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    text: Dict[str, str] = field(default_factory=dict)

    def to_params(self, first_observed: datetime) -> Dict[str, Any]:
        """Bind parameters for one row of requests_<year>."""
        params = {
            "id": self.id,
            "initiated": self.initiated,
            "closed": self.closed,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "first_observed": first_observed,
        }
        for name in TEXT_COLUMNS:
            params[name] = self.text.get(name, "")
        return params


class RequestParser:
    """Parses service request rows; the header is resolved once, up front."""

    def __init__(self, header: Sequence[str]):
        self._csv_names = list(REQUEST_COLUMNS)
        self._columns = [REQUEST_COLUMNS[c] for c in self._csv_names]
        self._extract = column_extractor(header, self._csv_names)

    def parse(self, row: List[str], line: Optional[int] = None) -> ServiceRequest:
        values = dict(zip(self._columns, self._extract(row)))
        raw_id = values["id"].strip()

        try:
            request_id = int(raw_id)
        except ValueError:
            raise RecordError(f"parsing request ID: {raw_id!r} is not an integer", line=line) from None

        try:
            initiated = parse_local_time(values["initiated"])
        except ValueError as e:
            raise RecordError(f"parsing initiated time for {request_id}: {e}", line=line) from e

        closed = None
        if values["closed"].strip():
            try:
                closed = parse_local_time(values["closed"])
            except ValueError as e:
                raise RecordError(f"parsing closed time for {request_id}: {e}", line=line) from e

        try:
            year = partition_year(initiated, closed, request_id)
            latitude = _parse_coordinate(values["latitude"], "latitude")
            longitude = _parse_coordinate(values["longitude"], "longitude")
        except RecordError as e:
            if line is None:
                raise
            raise type(e)(str(e), line=line) from e

        return ServiceRequest(
            id=request_id,
            initiated=initiated.astimezone(timezone.utc),
            closed=closed.astimezone(timezone.utc) if closed else None,
            year=year,
            latitude=latitude,
            longitude=longitude,
            text={name: values[name] for name in TEXT_COLUMNS},
        )
