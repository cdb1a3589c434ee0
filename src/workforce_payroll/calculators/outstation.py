"""Outstation (travel) allowance eligibility.

A work day earns the allowance when it and the following day show the
employee stayed away from home overnight and kept working. Checks run in
order and the first failure excludes the pair:

1. day2 is the calendar day after day1
2. day1 clock-out and day2 clock-in coordinates are present
3. day1 clock-out is at least min_distance_km from the home base
4. both days are flagged outstation and neither point is in a home region
5. day1 clock-out to day2 clock-in is within overnight_tolerance_km
6. day2 completed deliveries exceed min_deliveries (lookup failure excludes)
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Sequence

from workforce_payroll.calculators.policy import OutstationPolicy
from workforce_payroll.calculators.types import (
    AttendanceDay,
    GeoPoint,
    OutstationResult,
    PairExclusion,
    QualifyingDayPair,
)
from workforce_payroll.exceptions import ExternalDataUnavailableError

if TYPE_CHECKING:
    from workforce_payroll.providers.base import ActivitySource

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0
ONE_DAY = timedelta(days=1)


def haversine_km(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two points in kilometres."""
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    dphi = math.radians(b.lat - a.lat)
    dlambda = math.radians(b.lng - a.lng)

    h = math.sin(dphi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2.0) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def infer_outstation_flag(
    day: AttendanceDay, home_base: GeoPoint | None, policy: OutstationPolicy
) -> bool | None:
    """Engine-derived flag for a record the attendance source left unset.

    Returns None when nothing can be inferred (flag already set, no
    clock-out point, or no home base).
    """
    if day.is_outstation is not None or day.clock_out is None or home_base is None:
        return None
    far = haversine_km(home_base, day.clock_out) >= policy.min_distance_km
    return far and not policy.in_home_region(day.clock_out)


class OutstationEngine:
    """Evaluates consecutive attendance day pairs for travel allowance."""

    def __init__(
        self,
        policy: OutstationPolicy,
        activity_source: ActivitySource | None,
        lookup_timeout: float | None = None,
    ):
        self.policy = policy
        self.activity_source = activity_source
        self.lookup_timeout = lookup_timeout

    def _flagged(self, day: AttendanceDay) -> bool:
        if day.is_outstation is not True:
            return False
        return self.policy.accept_inferred_flags or not day.outstation_inferred

    async def compute_eligible_days(
        self,
        employee_ref: str,
        days: Sequence[AttendanceDay],
        home_base: GeoPoint | None,
    ) -> OutstationResult:
        """Find qualifying day pairs among chronologically adjacent records."""
        result = OutstationResult(per_day_rate=self.policy.per_day_rate)
        ordered = sorted(days, key=lambda d: d.work_date)

        for day1, day2 in zip(ordered, ordered[1:]):
            reason, qualifying = await self._evaluate_pair(employee_ref, day1, day2, home_base)
            if qualifying is not None:
                result.qualifying_pairs.append(qualifying)
            else:
                result.excluded.append(PairExclusion(day1.work_date, day2.work_date, reason))

        if result.source_unavailable:
            logger.warning(
                "Activity source unavailable for %s on %d day(s); excluded",
                employee_ref,
                sum(1 for e in result.excluded if e.reason == "activity_source_unavailable"),
            )
        return result

    async def _evaluate_pair(
        self,
        employee_ref: str,
        day1: AttendanceDay,
        day2: AttendanceDay,
        home_base: GeoPoint | None,
    ) -> tuple[str, QualifyingDayPair | None]:
        policy = self.policy

        if day2.work_date - day1.work_date != ONE_DAY:
            return "not_consecutive", None

        if day1.clock_out is None or day2.clock_in is None:
            return "missing_coordinates", None
        if home_base is None:
            return "no_home_base", None

        distance = haversine_km(home_base, day1.clock_out)
        if distance < policy.min_distance_km:
            return "below_min_distance", None

        if not (self._flagged(day1) and self._flagged(day2)):
            return "not_flagged_outstation", None
        if policy.in_home_region(day1.clock_out) or policy.in_home_region(day2.clock_in):
            return "inside_home_region", None

        if haversine_km(day1.clock_out, day2.clock_in) > policy.overnight_tolerance_km:
            return "relocated_overnight", None

        if self.activity_source is None:
            return "activity_source_unavailable", None
        try:
            lookup = self.activity_source.completed_deliveries(
                employee_ref, day2.work_date, policy.counted_statuses
            )
            if self.lookup_timeout is not None:
                deliveries = await asyncio.wait_for(lookup, self.lookup_timeout)
            else:
                deliveries = await lookup
        except (ExternalDataUnavailableError, asyncio.TimeoutError) as e:
            logger.debug("Activity lookup failed for %s on %s: %s", employee_ref, day2.work_date, e)
            return "activity_source_unavailable", None

        if deliveries <= policy.min_deliveries:
            return "insufficient_activity", None

        return "qualifying", QualifyingDayPair(
            day=day1.work_date,
            next_day=day2.work_date,
            distance_km=Decimal(repr(distance)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP),
            deliveries=deliveries,
            allowance=policy.per_day_rate,
        )
