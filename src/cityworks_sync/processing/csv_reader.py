"""
csv_reader.py
Streams rows out of a CSV export without loading it into memory.

The publisher does not promise a stable column order, so callers resolve the
header once with `column_extractor` and reuse the returned function for every row.
"""

import csv
import logging
from operator import itemgetter
from typing import BinaryIO, Callable, Iterator, List, Sequence, Tuple

import requests
import urllib3

from ..exceptions import MalformedRowError, MissingColumnError, RecordError, UpstreamError

logger = logging.getLogger(__name__)

# description fields can run far past the csv module's 128 KiB default
FIELD_SIZE_LIMIT = 2 ** 31 - 1

BOM = "\ufeff"

# failures of the underlying stream while the export is still downloading
TRANSPORT_ERRORS = (OSError, urllib3.exceptions.HTTPError, requests.exceptions.RequestException)


def column_extractor(header: Sequence[str], columns: Sequence[str]) -> Callable[[List[str]], Tuple[str, ...]]:
    """
    Resolve `columns` against `header` and return a function that pulls those
    values out of a row, always in the order given by `columns`.
    """
    indices = {}
    for i, name in enumerate(header):
        indices.setdefault(name.strip(), i)

    missing = [c for c in columns if c not in indices]
    if missing:
        raise MissingColumnError(f"CSV header is missing columns: {', '.join(missing)}")

    getter = itemgetter(*(indices[c] for c in columns))
    if len(columns) == 1:
        return lambda row: (getter(row),)
    return getter


class CsvRows:
    """
    Forward-only iterator over the data rows of a CSV byte stream.

    The header is read on construction. A row the csv module rejects, whose
    field count differs from the header's, or that is not valid UTF-8 raises
    MalformedRowError unless `skip_malformed` is set, in which case it is
    logged and counted in `skipped`.
    """

    def __init__(self, stream: BinaryIO, skip_malformed: bool = False, name: str = "csv"):
        self.name = name
        self.skip_malformed = skip_malformed
        self.skipped = 0
        # (physical line, reason) for lines that failed to decode
        self._bad_lines: List[Tuple[int, str]] = []

        csv.field_size_limit(FIELD_SIZE_LIMIT)
        self._reader = csv.reader(self._decode_lines(stream), strict=True)
        try:
            self.header = next(self._reader)
        except StopIteration:
            raise RecordError(f"reading {name} header: empty input") from None
        except csv.Error as e:
            raise RecordError(f"reading {name} header: {e}", line=self._reader.line_num) from e
        except TRANSPORT_ERRORS as e:
            raise UpstreamError(f"reading {name} export: {e}") from e

        bad = self._take_bad_lines(self._reader.line_num)
        if bad:
            raise RecordError(f"reading {name} header: {bad}", line=self._reader.line_num)

    def _decode_lines(self, stream: BinaryIO) -> Iterator[str]:
        # a newline byte never occurs inside a multi-byte UTF-8 sequence,
        # so decoding line by line keeps errors on the line they belong to
        for number, raw in enumerate(stream, 1):
            try:
                text = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                self._bad_lines.append((number, f"invalid UTF-8: {e.reason} at byte {e.start}"))
                text = raw.decode("utf-8", errors="replace")
            if number == 1 and text.startswith(BOM):
                text = text[len(BOM):]
            yield text

    def _take_bad_lines(self, upto: int) -> str:
        """Pop decode failures on lines up to `upto` and describe them."""
        taken = [reason for number, reason in self._bad_lines if number <= upto]
        self._bad_lines = [(n, r) for n, r in self._bad_lines if n > upto]
        return "; ".join(taken)

    @property
    def line_num(self) -> int:
        return self._reader.line_num

    def _reject(self, reason: str, cause=None) -> None:
        if not self.skip_malformed:
            raise MalformedRowError(f"reading {self.name} row: {reason}", line=self.line_num) from cause
        self.skipped += 1
        logger.warning("skipping malformed %s row at line %d: %s", self.name, self.line_num, reason)

    def __iter__(self) -> Iterator[List[str]]:
        width = len(self.header)
        while True:
            try:
                row = next(self._reader)
            except StopIteration:
                return
            except csv.Error as e:
                self._take_bad_lines(self.line_num)
                self._reject(str(e), e)
                continue
            except TRANSPORT_ERRORS as e:
                raise UpstreamError(f"reading {self.name} export at line {self.line_num}: {e}") from e

            bad = self._take_bad_lines(self.line_num)
            if bad:
                self._reject(bad)
                continue
            if not row:
                continue
            if len(row) != width:
                self._reject(f"wrong number of fields: expected {width}, got {len(row)}")
                continue
            yield row
