"""
models.py
----------
Defines the tables the sync writes, using SQLAlchemy Core.

sync_state holds the watermark. Requests and their fields are sharded by year
into requests_<year> / request_fields_<year>; those Table objects are built on
demand into a MetaData owned by the current run.
"""

from sqlalchemy import (
    Column, DateTime, Float, ForeignKey, Integer, MetaData, PrimaryKeyConstraint, Table, Text
)

from ..exceptions import SyncError

state_metadata = MetaData()

sync_state = Table(
    "sync_state",
    state_metadata,
    # last successfully applied "modified" instant of the requests dataset
    Column("requests_modified", DateTime(timezone=True), nullable=True),
)

MIN_PARTITION_YEAR = 1000
MAX_PARTITION_YEAR = 9999


def partition_name(prefix: str, year: int) -> str:
    """
    The one place a per-year table name is built. Only integer years in a
    four-digit range are accepted, so nothing else ever reaches the SQL text.
    """
    if isinstance(year, bool) or not isinstance(year, int):
        raise SyncError(f"partition year must be an int, got {year!r}")
    if not MIN_PARTITION_YEAR <= year <= MAX_PARTITION_YEAR:
        raise SyncError(f"partition year out of range: {year}")
    return f"{prefix}_{year:d}"


def requests_table(metadata: MetaData, year: int) -> Table:
    name = partition_name("requests", year)
    if name in metadata.tables:
        return metadata.tables[name]
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=False),
        Column("initiated", DateTime(timezone=True)),
        Column("closed", DateTime(timezone=True)),
        # set on first insert only, never by the upsert's update clause
        Column("first_observed", DateTime(timezone=True)),
        Column("description", Text),
        Column("initiator", Text),
        Column("priority", Text),
        Column("address", Text),
        Column("community", Text),
        Column("district", Text),
        Column("category", Text),
        Column("resolution", Text),
        Column("latitude", Float),
        Column("longitude", Float),
        Column("status", Text),
        Column("department", Text),
        Column("work_order", Text),
        Column("project_name", Text),
    )


def request_fields_table(metadata: MetaData, year: int) -> Table:
    name = partition_name("request_fields", year)
    if name in metadata.tables:
        return metadata.tables[name]
    parent = requests_table(metadata, year)
    return Table(
        name,
        metadata,
        Column("id", Integer, ForeignKey(parent.c.id), nullable=False),
        Column("category_id", Integer, nullable=False),
        Column("category", Text),
        Column("outcome", Text),
        PrimaryKeyConstraint("id", "category_id"),
    )
