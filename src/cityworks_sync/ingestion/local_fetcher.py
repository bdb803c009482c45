"""Open a pre-downloaded export from disk instead of the network."""

import os

from ..exceptions import SyncError
from .arcgis_fetcher import ExportStream


def open_local_export(path: str) -> ExportStream:
    if not os.path.exists(path):
        raise SyncError(f"opening data file: local export not found: {path}")
    try:
        stream = open(path, "rb")
    except OSError as e:
        raise SyncError(f"opening data file {path}: {e}") from e
    return ExportStream(stream=stream, modified=None, source=path)
