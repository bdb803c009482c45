"""Request ID -> year partition lookup, built while requests are ingested."""

from typing import Dict

from ..exceptions import JoinError


class RequestYearIndex:
    """
    Remembers the partition each request landed in during this run.

    The fields export carries no dates, so this is the only way to route a
    field row. There is no memory across runs: a field row whose request was
    not in this run's requests export is an error.
    """

    def __init__(self):
        self._years: Dict[int, int] = {}

    def record(self, request_id: int, year: int) -> None:
        self._years[request_id] = year

    def year_for(self, request_id: int) -> int:
        try:
            return self._years[request_id]
        except KeyError:
            raise JoinError(f"missing request year: {request_id}") from None

    def __contains__(self, request_id) -> bool:
        return request_id in self._years

    def __len__(self) -> int:
        return len(self._years)
