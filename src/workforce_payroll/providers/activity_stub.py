"""In-memory activity source for local development and testing."""

from __future__ import annotations

import datetime

from workforce_payroll.exceptions import ExternalDataUnavailableError


class StaticActivitySource:
    """Serves fixed delivery counts.

    Dates listed in unavailable raise ExternalDataUnavailableError, which
    lets callers exercise the fail-closed path.
    """

    source_name = "static_activity"

    def __init__(
        self,
        counts: dict[tuple[str, datetime.date], int] | None = None,
        default: int = 0,
        unavailable: set[datetime.date] | None = None,
    ):
        self.counts = dict(counts or {})
        self.default = default
        self.unavailable = set(unavailable or ())
        self.calls: list[tuple[str, datetime.date]] = []

    async def completed_deliveries(
        self,
        employee_ref: str,
        work_date: datetime.date,
        counted_statuses: tuple[str, ...],
    ) -> int:
        self.calls.append((employee_ref, work_date))
        if work_date in self.unavailable:
            raise ExternalDataUnavailableError(self.source_name, f"no data for {work_date}")
        return self.counts.get((employee_ref, work_date), self.default)
