"""
upsert_writer.py
Insert-or-update of requests and request fields into their year partitions.

One statement is built per (dataset, year) the first time that year shows up
and reused for every later row of the run.
"""

import logging
from datetime import datetime
from typing import Callable, Dict

from sqlalchemy.engine import Connection
from sqlalchemy.sql.expression import Insert

from ..exceptions import SyncError
from ..processing.fields_processor import RequestField
from ..processing.request_processor import ServiceRequest
from .partitions import PartitionManager

logger = logging.getLogger(__name__)

# columns never touched by the update half of an upsert
REQUEST_KEY = ("id",)
REQUEST_INSERT_ONLY = ("first_observed",)
FIELD_KEY = ("id", "category_id")


def dialect_insert(dialect_name: str) -> Callable[..., Insert]:
    """Return the dialect's insert() that supports ON CONFLICT DO UPDATE."""
    if dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        return insert
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        return insert
    raise SyncError(f"upserts are not supported on the {dialect_name} dialect")


def build_upsert(insert_fn, table, key_columns, skip_on_update=()) -> Insert:
    stmt = insert_fn(table)
    excluded = set(key_columns) | set(skip_on_update)
    return stmt.on_conflict_do_update(
        index_elements=[table.c[name] for name in key_columns],
        set_={c.name: stmt.excluded[c.name] for c in table.columns if c.name not in excluded},
    )


class UpsertWriter:
    """Writes parsed rows through cached per-year upsert statements."""

    def __init__(self, conn: Connection, partitions: PartitionManager):
        self.conn = conn
        self.partitions = partitions
        self._insert = dialect_insert(conn.dialect.name)
        self._request_stmts: Dict[int, Insert] = {}
        self._field_stmts: Dict[int, Insert] = {}

    def request_statement(self, year: int) -> Insert:
        stmt = self._request_stmts.get(year)
        if stmt is None:
            requests, _ = self.partitions.ensure(year)
            stmt = build_upsert(self._insert, requests, REQUEST_KEY, REQUEST_INSERT_ONLY)
            self._request_stmts[year] = stmt
        return stmt

    def field_statement(self, year: int) -> Insert:
        stmt = self._field_stmts.get(year)
        if stmt is None:
            _, fields = self.partitions.ensure(year)
            stmt = build_upsert(self._insert, fields, FIELD_KEY)
            self._field_stmts[year] = stmt
        return stmt

    def upsert_request(self, request: ServiceRequest, first_observed: datetime) -> None:
        self.conn.execute(self.request_statement(request.year), request.to_params(first_observed))

    def upsert_field(self, field: RequestField, year: int) -> None:
        self.conn.execute(self.field_statement(year), field.to_params())
