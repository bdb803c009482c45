"""
partitions.py
Makes sure the year tables a run writes to exist.

Schema creation is idempotent ("create if absent") and runs on the run's own
connection, so new partitions only become visible when the run commits.
"""

import logging
from typing import List, Set, Tuple

from sqlalchemy import MetaData, Table
from sqlalchemy.engine import Connection

from ..db.models import request_fields_table, requests_table

logger = logging.getLogger(__name__)


class PartitionManager:
    """Tracks which year partitions have been ensured during one run."""

    def __init__(self, conn: Connection, metadata: MetaData):
        self.conn = conn
        self.metadata = metadata
        self._ensured: Set[int] = set()

    @property
    def years(self) -> List[int]:
        return sorted(self._ensured)

    def tables(self, year: int) -> Tuple[Table, Table]:
        return requests_table(self.metadata, year), request_fields_table(self.metadata, year)

    def ensure(self, year: int) -> Tuple[Table, Table]:
        tables = self.tables(year)
        if year not in self._ensured:
            self.metadata.create_all(self.conn, tables=list(tables), checkfirst=True)
            self._ensured.add(year)
            logger.info("ensured partition tables for %d", year)
        return tables
