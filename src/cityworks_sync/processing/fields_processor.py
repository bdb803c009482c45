"""
fields_processor.py
Parses rows of the request fields export.

The export has a header row, but its columns are read by position:
request id, category id, category label, outcome label.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..exceptions import MalformedRowError, RecordError

FIELD_COLUMN_COUNT = 4


@dataclass
class RequestField:
    id: int
    category_id: int
    category: str
    outcome: str

    def to_params(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category_id": self.category_id,
            "category": self.category,
            "outcome": self.outcome,
        }


def parse_field_row(row: List[str], line: Optional[int] = None) -> RequestField:
    """
    A bad request id is fatal (RecordError); a short row or a bad category id
    only spoils this row (MalformedRowError).
    """
    if len(row) < FIELD_COLUMN_COUNT:
        raise MalformedRowError(f"expected {FIELD_COLUMN_COUNT} fields, got {len(row)}", line=line)

    raw_id, raw_category_id, category, outcome = row[:FIELD_COLUMN_COUNT]
    try:
        request_id = int(raw_id.strip())
    except ValueError:
        raise RecordError(f"parsing request ID: {raw_id!r} is not an integer", line=line) from None

    try:
        category_id = int(raw_category_id.strip())
    except ValueError:
        raise MalformedRowError(f"parsing category ID: {raw_category_id!r} is not an integer", line=line) from None

    return RequestField(id=request_id, category_id=category_id, category=category, outcome=outcome)
