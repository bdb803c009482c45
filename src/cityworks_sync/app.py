"""
app.py: command-line entry point for cityworks-sync.

Run with:
    cityworks-sync --db data.db
    cityworks-sync --db data.db --requests requests.csv --fields fields.csv

Without --requests the service request export is only downloaded when the
publisher reports a modification newer than the stored watermark.
"""

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .config import Settings
from .consumers.sync_pipeline import SyncRun
from .db.session import get_engine
from .exceptions import ConfigError, SyncCancelled, SyncError

logger = logging.getLogger("cityworks_sync")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Sync municipal service requests into year-partitioned tables")
    p.add_argument("--db", default=None, help="SQLite database file path (default: $SYNC_DB_PATH or data.db)")
    p.add_argument("--database-url", default=None, help="SQLAlchemy URL, overrides --db")
    p.add_argument("--requests", default=None, help="Requests CSV file path, otherwise download")
    p.add_argument("--fields", default=None, help="Fields CSV file path, otherwise download")
    p.add_argument("--log-level", default=None, help="Logging level (default: $LOG_LEVEL or INFO)")
    return p


def install_signal_handlers(cancel: threading.Event) -> None:
    """SIGINT / SIGTERM set the cancel event instead of killing us mid-transaction."""

    def _handle(signum, frame):
        logger.warning("received signal %d, cancelling", signum)
        cancel.set()

    signal.signal(signal.SIGINT, _handle)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handle)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = Settings.from_env().with_overrides(
            db_path=args.db,
            database_url=args.database_url,
            requests_file=args.requests,
            fields_file=args.fields,
            log_level=args.log_level.upper() if args.log_level else None,
        )
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
        logger.error("invalid configuration: %s", e)
        return EXIT_FAILED

    logging.basicConfig(level=settings.log_level, format="%(asctime)s [%(levelname)s] %(message)s")

    cancel = threading.Event()
    if threading.current_thread() is threading.main_thread():
        install_signal_handlers(cancel)

    engine = get_engine(settings.db_path, settings.database_url)
    try:
        result = SyncRun(engine, settings, cancel=cancel).run()
    except SyncCancelled as e:
        logger.error("%s; no changes were made", e)
        return EXIT_CANCELLED
    except (SyncError, SQLAlchemyError) as e:
        logger.error("sync failed, no changes were made: %s", e)
        return EXIT_FAILED
    finally:
        engine.dispose()

    if result.up_to_date:
        logger.info("no new data")
    else:
        logger.info("processed %d requests and %d fields", result.requests, result.fields)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
