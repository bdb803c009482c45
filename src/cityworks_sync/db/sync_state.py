"""Reads and writes the sync watermark kept in the sync_state table."""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Connection, Engine

from .models import state_metadata, sync_state

logger = logging.getLogger(__name__)


def ensure_sync_state(engine: Engine) -> None:
    """Create sync_state if it does not exist yet."""
    with engine.begin() as conn:
        state_metadata.create_all(conn, tables=[sync_state], checkfirst=True)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything we store is UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def read_watermark(conn: Connection) -> Optional[datetime]:
    """Return the stored watermark, or None if we have never synced."""
    value = conn.execute(select(sync_state.c.requests_modified).limit(1)).scalar()
    return _as_utc(value)


def write_watermark(conn: Connection, modified: datetime) -> None:
    """Overwrite the watermark row, inserting it on the first successful sync."""
    result = conn.execute(update(sync_state).values(requests_modified=modified))
    if result.rowcount == 0:
        conn.execute(insert(sync_state).values(requests_modified=modified))
    logger.info("watermark set to %s", modified.isoformat())
