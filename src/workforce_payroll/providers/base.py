"""Protocol for external activity (delivery-count) sources.

The outstation engine calls an ActivitySource once per candidate day pair.
Sources must raise ExternalDataUnavailableError on any failure; the engine
excludes that pair and carries on.
"""

from __future__ import annotations

import datetime
from typing import Protocol


class ActivitySource(Protocol):
    """Completed-activity counts keyed by employee and date."""

    source_name: str

    async def completed_deliveries(
        self,
        employee_ref: str,
        work_date: datetime.date,
        counted_statuses: tuple[str, ...],
    ) -> int:
        """Return the number of completed deliveries on work_date.

        Args:
            employee_ref: The employee's identifier in the activity system
            work_date: Calendar date to count
            counted_statuses: Delivery statuses that count as completed

        Raises:
            ExternalDataUnavailableError: source unreachable, timed out or
                returned an unusable response.
        """
        ...
