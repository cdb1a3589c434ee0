"""Type definitions for the calculation pipeline."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

ZERO = Decimal("0")

# Every component summed into gross. Column names on PayrollItem.
EARNING_COMPONENTS: tuple[str, ...] = (
    "basic_pay",
    "fixed_allowance",
    "commission_amount",
    "ot_amount",
    "extra_days_amount",
    "travel_allowance",
    "bonus",
    "claims_amount",
)


class StatutoryCategory(str, Enum):
    """Statutory contribution categories."""

    RETIREMENT_FUND = "retirement_fund"
    SOCIAL_SECURITY = "social_security"
    EMPLOYMENT_INSURANCE = "employment_insurance"
    INCOME_TAX = "income_tax"


CONTRIBUTION_CATEGORIES = (
    StatutoryCategory.RETIREMENT_FUND,
    StatutoryCategory.SOCIAL_SECURITY,
    StatutoryCategory.EMPLOYMENT_INSURANCE,
)


class OvertimeMode(str, Enum):
    """How a pay scheme computes overtime."""

    NONE = "none"
    THRESHOLD_MULTIPLIER = "threshold_multiplier"
    EXCESS_HOURS_PER_DAY = "excess_hours_per_day"


# =============================================================================
# Statutory
# =============================================================================


@dataclass(frozen=True)
class EmployeeProfile:
    """Snapshot of the eligibility attributes used by statutory tables.

    Any attribute may be None; the calculator substitutes policy defaults
    and reports which fields were missing.
    """

    date_of_birth: date | None = None
    residency_status: str | None = None
    marital_status: str | None = None
    spouse_working: bool | None = None
    dependent_count: int | None = None
    is_disabled: bool | None = None
    spouse_disabled: bool | None = None
    contribution_type_override: str | None = None

    @classmethod
    def from_employee(cls, employee: Any) -> EmployeeProfile:
        return cls(
            date_of_birth=employee.date_of_birth,
            residency_status=employee.residency_status,
            marital_status=employee.marital_status,
            spouse_working=employee.spouse_working,
            dependent_count=employee.dependent_count,
            is_disabled=employee.is_disabled,
            spouse_disabled=employee.spouse_disabled,
            contribution_type_override=employee.contribution_type_override,
        )


@dataclass(frozen=True)
class YtdAccumulators:
    """Year-to-date totals from finalized periods before the current one."""

    wages: Decimal = ZERO
    retirement_contribution: Decimal = ZERO
    withholding: Decimal = ZERO
    tax_credits: Decimal = ZERO


@dataclass(frozen=True)
class CategoryContribution:
    """Employee and employer amounts for one statutory category."""

    category: StatutoryCategory
    employee: Decimal = ZERO
    employer: Decimal = ZERO
    contribution_base: Decimal = ZERO


@dataclass
class StatutoryResult:
    """Output of a statutory computation for one employee and period."""

    contributions: dict[StatutoryCategory, CategoryContribution] = field(default_factory=dict)
    withholding_tax: Decimal = ZERO
    profile_incomplete: bool = False
    missing_fields: tuple[str, ...] = ()
    missing_tables: tuple[StatutoryCategory, ...] = ()
    warnings: list[Warning] = field(default_factory=list)

    def employee_amount(self, category: StatutoryCategory) -> Decimal:
        contribution = self.contributions.get(category)
        return contribution.employee if contribution else ZERO

    def employer_amount(self, category: StatutoryCategory) -> Decimal:
        contribution = self.contributions.get(category)
        return contribution.employer if contribution else ZERO

    @property
    def employee_total(self) -> Decimal:
        """Employee contributions plus withholding."""
        return sum((c.employee for c in self.contributions.values()), ZERO) + self.withholding_tax

    @property
    def employer_total(self) -> Decimal:
        return sum((c.employer for c in self.contributions.values()), ZERO)


# =============================================================================
# Attendance and overtime
# =============================================================================


@dataclass(frozen=True)
class GeoPoint:
    """Latitude/longitude in decimal degrees."""

    lat: float
    lng: float

    @classmethod
    def parse(cls, lat: Any, lng: Any) -> GeoPoint | None:
        """Build a point from raw values; None if missing or unparseable."""
        if lat is None or lng is None:
            return None
        try:
            lat_f = float(lat)
            lng_f = float(lng)
        except (TypeError, ValueError):
            return None
        if not (math.isfinite(lat_f) and math.isfinite(lng_f)):
            return None
        if not (-90.0 <= lat_f <= 90.0 and -180.0 <= lng_f <= 180.0):
            return None
        return cls(lat_f, lng_f)


@dataclass(frozen=True)
class AttendanceDay:
    """Engine view of one attendance record."""

    work_date: date
    worked_minutes: int = 0
    clock_in: GeoPoint | None = None
    clock_out: GeoPoint | None = None
    is_outstation: bool | None = None
    outstation_inferred: bool = False

    @classmethod
    def from_record(cls, record: Any) -> AttendanceDay:
        return cls(
            work_date=record.work_date,
            worked_minutes=record.worked_minutes,
            clock_in=GeoPoint.parse(record.clock_in_lat, record.clock_in_lng),
            clock_out=GeoPoint.parse(record.clock_out_lat, record.clock_out_lng),
            is_outstation=record.is_outstation,
            outstation_inferred=record.outstation_inferred,
        )

    @property
    def worked(self) -> bool:
        return self.worked_minutes > 0


@dataclass(frozen=True)
class DayOvertime:
    """Overtime computed for a single work date."""

    work_date: date
    worked_minutes: int
    excess_minutes: int
    hours: Decimal
    multiplier: Decimal
    amount: Decimal
    tier: str


@dataclass
class OvertimeResult:
    """Overtime for a period. amount and extra_days_amount are rounded once."""

    mode: OvertimeMode
    hours: Decimal = ZERO
    amount: Decimal = ZERO
    worked_days: int = 0
    extra_days: int = 0
    extra_days_amount: Decimal = ZERO
    days: list[DayOvertime] = field(default_factory=list)


# =============================================================================
# Outstation
# =============================================================================


@dataclass(frozen=True)
class QualifyingDayPair:
    """A consecutive day pair that earns one day of travel allowance."""

    day: date
    next_day: date
    distance_km: Decimal
    deliveries: int
    allowance: Decimal


@dataclass(frozen=True)
class PairExclusion:
    """A candidate pair that failed a check, with the failing rule."""

    day: date
    next_day: date
    reason: str


@dataclass
class OutstationResult:
    """Eligible day pairs and total travel allowance for a period."""

    qualifying_pairs: list[QualifyingDayPair] = field(default_factory=list)
    excluded: list[PairExclusion] = field(default_factory=list)
    per_day_rate: Decimal = ZERO

    @property
    def qualifying_days(self) -> int:
        return len(self.qualifying_pairs)

    @property
    def total_allowance(self) -> Decimal:
        return self.per_day_rate * self.qualifying_days

    @property
    def source_unavailable(self) -> bool:
        return any(e.reason == "activity_source_unavailable" for e in self.excluded)


# =============================================================================
# Earnings
# =============================================================================


@dataclass
class EarningInputs:
    """Source figures a pay scheme turns into earning components."""

    basic_pay: Decimal
    attendance: list[AttendanceDay] = field(default_factory=list)
    holidays: frozenset[date] = frozenset()
    commission_amount: Decimal = ZERO
    claims_amount: Decimal = ZERO
    bonus: Decimal = ZERO
    outstation: OutstationResult | None = None


@dataclass
class EarningsBreakdown:
    """Earning components produced by a scheme, keyed by component name."""

    components: dict[str, Decimal]
    overtime: OvertimeResult
    outstation_days: int = 0

    @property
    def gross(self) -> Decimal:
        return sum(self.components.values(), ZERO)

    def component(self, name: str) -> Decimal:
        return self.components.get(name, ZERO)
