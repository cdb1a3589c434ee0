"""Typed, versioned tenant payroll policy.

Tenants store a JSON payload per company (optionally per department) in
payroll_policy. The payload is validated into PolicyConfig once per
computation; every field has a default so a partial or empty payload is
always usable.

Defaults:
    ot.office / ot.shift / ot.sales
        480 minute threshold, per-minute rounding to nearest, 1.5x normal,
        2.0x holiday, 3.0x holiday beyond the threshold, weekends at the
        normal rate, hourly rate basic / 22 / 8, 22 standard days.
    ot.driver
        540 minute threshold, excess rounded down to the half hour, 1.0x,
        hourly rate basic / 26 / 8, 22 standard days.
    outstation
        100 per qualifying day, 180 km minimum distance from home base,
        0.5 km overnight tolerance, more than 3 completed deliveries.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from workforce_payroll.calculators.types import EARNING_COMPONENTS, GeoPoint


class RoundingDirection(str, Enum):
    DOWN = "down"
    NEAREST = "nearest"
    UP = "up"


class _PolicyModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class OvertimePolicy(_PolicyModel):
    """Overtime thresholds, multipliers and rate divisors for one scheme."""

    daily_threshold_minutes: int = Field(480, ge=0)
    rounding_increment_minutes: int = Field(1, ge=1)
    rounding_direction: RoundingDirection = RoundingDirection.NEAREST
    normal_multiplier: Decimal = Field(Decimal("1.5"), ge=0)
    holiday_multiplier: Decimal = Field(Decimal("2.0"), ge=0)
    # None: beyond-threshold holiday minutes use holiday_multiplier
    holiday_beyond_normal_multiplier: Decimal | None = Field(Decimal("3.0"), ge=0)
    # None: weekend minutes beyond the threshold use normal_multiplier
    weekend_multiplier: Decimal | None = Field(None, ge=0)
    rate_divisor_days: Decimal = Field(Decimal("22"), gt=0)
    rate_divisor_hours: Decimal = Field(Decimal("8"), gt=0)
    standard_days_per_month: int = Field(22, ge=1)

    def hourly_rate(self, basic_pay: Decimal) -> Decimal:
        return basic_pay / self.rate_divisor_days / self.rate_divisor_hours

    def daily_rate(self, basic_pay: Decimal) -> Decimal:
        return basic_pay / self.rate_divisor_days

    def non_holiday_tier(self, work_date: date) -> tuple[str, Decimal]:
        """Tier name and multiplier for overtime on a day that is not a holiday."""
        if self.weekend_multiplier is not None and work_date.weekday() >= 5:
            return "weekend", self.weekend_multiplier
        return "normal", self.normal_multiplier


DEFAULT_OVERTIME: dict[str, OvertimePolicy] = {
    "office": OvertimePolicy(),
    "shift": OvertimePolicy(),
    "sales": OvertimePolicy(),
    "driver": OvertimePolicy(
        daily_threshold_minutes=540,
        rounding_increment_minutes=30,
        rounding_direction=RoundingDirection.DOWN,
        normal_multiplier=Decimal("1.0"),
        holiday_multiplier=Decimal("1.0"),
        holiday_beyond_normal_multiplier=None,
        rate_divisor_days=Decimal("26"),
    ),
}


class HomeBase(_PolicyModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)

    @property
    def point(self) -> GeoPoint:
        return GeoPoint(self.lat, self.lng)


class HomeRegion(_PolicyModel):
    """Latitude/longitude bounding box treated as 'home' for outstation checks."""

    name: str
    lat_min: float
    lat_max: float
    lng_min: float
    lng_max: float

    @model_validator(mode="after")
    def _check_bounds(self) -> HomeRegion:
        if self.lat_min > self.lat_max or self.lng_min > self.lng_max:
            raise ValueError(f"home region {self.name} has inverted bounds")
        return self

    def contains(self, point: GeoPoint) -> bool:
        return (
            self.lat_min <= point.lat <= self.lat_max
            and self.lng_min <= point.lng <= self.lng_max
        )


class OutstationPolicy(_PolicyModel):
    per_day_rate: Decimal = Field(Decimal("100"), ge=0)
    min_distance_km: float = Field(180.0, ge=0)
    overnight_tolerance_km: float = Field(0.5, ge=0)
    min_deliveries: int = Field(3, ge=0)
    home_regions: tuple[HomeRegion, ...] = ()
    default_home_base: HomeBase | None = None
    accept_inferred_flags: bool = False
    counted_statuses: tuple[str, ...] = ("delivered", "completed", "success")

    def in_home_region(self, point: GeoPoint) -> bool:
        return any(region.contains(point) for region in self.home_regions)


class AllowancePolicy(_PolicyModel):
    # Fixed monthly allowance per scheme tag
    fixed: dict[str, Decimal] = Field(default_factory=dict)

    def fixed_for(self, scheme_tag: str) -> Decimal:
        return self.fixed.get(scheme_tag, Decimal("0"))


class StatutoryPolicy(_PolicyModel):
    # None: use the company's jurisdiction
    jurisdiction: str | None = None
    retirement_fund_enabled: bool = True
    social_security_enabled: bool = True
    employment_insurance_enabled: bool = True
    income_tax_enabled: bool = True
    default_age: int = Field(30, ge=0)
    default_residency: str = "citizen"
    default_marital_status: str = "single"

    def is_enabled(self, category: str) -> bool:
        return bool(getattr(self, f"{category}_enabled", False))


class FeaturePolicy(_PolicyModel):
    unpaid_leave_deduction: bool = True
    carry_forward_basic: bool = True
    link_claims_on_finalize: bool = True
    require_review_clear: bool = False
    net_variance_threshold: Decimal = Decimal("0.10")


class BankExportPolicy(_PolicyModel):
    columns: tuple[str, ...] = ("bank_name", "account_number", "employee_name", "net_pay")
    header: bool = True
    skip_non_positive: bool = True


# Earning components a scheme never counts toward the statutory base,
# whatever a tenant override says. Claims are reimbursements for every scheme.
NON_STATUTORY_COMPONENTS: dict[str, frozenset[str]] = {
    "office": frozenset({"fixed_allowance", "claims_amount"}),
    "sales": frozenset({"claims_amount"}),
    "driver": frozenset({"ot_amount", "extra_days_amount", "travel_allowance", "claims_amount"}),
    "shift": frozenset({"claims_amount"}),
}


class SchemePolicy(_PolicyModel):
    """Per-scheme tenant overrides."""

    statutory_base_components: tuple[str, ...] | None = None

    @field_validator("statutory_base_components")
    @classmethod
    def _known_components(cls, value: tuple[str, ...] | None) -> tuple[str, ...] | None:
        if value is None:
            return value
        unknown = set(value) - set(EARNING_COMPONENTS)
        if unknown:
            raise ValueError(f"unknown earning components: {sorted(unknown)}")
        return value


class PolicyConfig(_PolicyModel):
    """Resolved payroll policy for one computation."""

    version: int = 1
    ot: dict[str, OvertimePolicy] = Field(default_factory=lambda: dict(DEFAULT_OVERTIME))
    outstation: OutstationPolicy = Field(default_factory=OutstationPolicy)
    allowances: AllowancePolicy = Field(default_factory=AllowancePolicy)
    statutory: StatutoryPolicy = Field(default_factory=StatutoryPolicy)
    features: FeaturePolicy = Field(default_factory=FeaturePolicy)
    bank_export: BankExportPolicy = Field(default_factory=BankExportPolicy)
    schemes: dict[str, SchemePolicy] = Field(default_factory=dict)

    @field_validator("ot", mode="before")
    @classmethod
    def _merge_overtime_defaults(cls, value: Any) -> Any:
        """Layer per-scheme overrides on that scheme's defaults."""
        if not isinstance(value, dict):
            return value
        merged: dict[str, Any] = {
            tag: policy.model_dump() for tag, policy in DEFAULT_OVERTIME.items()
        }
        for tag, override in value.items():
            if isinstance(override, OvertimePolicy):
                override = override.model_dump(exclude_unset=True)
            base = merged.get(tag, {})
            merged[tag] = {**base, **override} if isinstance(override, dict) else override
        return merged

    @model_validator(mode="after")
    def _check_base_overrides(self) -> PolicyConfig:
        for tag, scheme in self.schemes.items():
            if scheme.statutory_base_components is None:
                continue
            excluded = set(scheme.statutory_base_components) & NON_STATUTORY_COMPONENTS.get(
                tag, frozenset()
            )
            if excluded:
                raise ValueError(
                    f"{sorted(excluded)} cannot count toward the {tag} statutory base"
                )
        return self

    def overtime_for(self, scheme_tag: str) -> OvertimePolicy:
        return self.ot.get(scheme_tag) or OvertimePolicy()

    def statutory_base_override(self, scheme_tag: str) -> tuple[str, ...] | None:
        scheme = self.schemes.get(scheme_tag)
        return scheme.statutory_base_components if scheme else None
