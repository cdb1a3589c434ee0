"""Statutory contribution and income-tax withholding calculator.

A pure harness over StatutoryTables: no I/O, no shared mutable state.
Tables are loaded by services.statutory_service.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from workforce_payroll.calculators.money import round_money, round_to_increment
from workforce_payroll.calculators.policy import StatutoryPolicy
from workforce_payroll.calculators.rate_tables import (
    ContributionTable,
    IncomeTaxSchedule,
    StatutoryTables,
)
from workforce_payroll.calculators.types import (
    CONTRIBUTION_CATEGORIES,
    ZERO,
    CategoryContribution,
    EmployeeProfile,
    StatutoryCategory,
    StatutoryResult,
    YtdAccumulators,
)
from workforce_payroll.exceptions import ProfileIncompleteWarning, ValidationError

logger = logging.getLogger(__name__)

SINGLE = "single"
MARRIED_SPOUSE_NOT_WORKING = "married_spouse_not_working"
MARRIED_SPOUSE_WORKING = "married_spouse_working"


def age_on(date_of_birth: date, as_of: date) -> int:
    """Completed years of age on as_of."""
    years = as_of.year - date_of_birth.year
    if (as_of.month, as_of.day) < (date_of_birth.month, date_of_birth.day):
        years -= 1
    return years


class _ResolvedProfile:
    """Profile with defaults filled in, plus the list of fields that were missing."""

    def __init__(self, profile: EmployeeProfile, policy: StatutoryPolicy, as_of: date):
        missing: list[str] = []

        if profile.date_of_birth is None:
            missing.append("date_of_birth")
            self.age = policy.default_age
        else:
            self.age = age_on(profile.date_of_birth, as_of)

        if profile.residency_status is None:
            missing.append("residency_status")
        residency = profile.residency_status or policy.default_residency
        self.contribution_type = profile.contribution_type_override or residency

        if profile.marital_status is None:
            missing.append("marital_status")
        self.married = (profile.marital_status or policy.default_marital_status) == "married"

        # A married employee with unknown spouse status is treated as a
        # working spouse, which claims no spouse relief.
        if self.married and profile.spouse_working is None:
            missing.append("spouse_working")
        self.spouse_working = profile.spouse_working is not False

        if profile.dependent_count is None:
            missing.append("dependent_count")
        self.dependents = max(profile.dependent_count or 0, 0)

        self.disabled = bool(profile.is_disabled)
        self.spouse_disabled = bool(profile.spouse_disabled)
        self.missing = tuple(missing)

    @property
    def tax_category(self) -> str:
        if not self.married:
            return SINGLE
        return MARRIED_SPOUSE_WORKING if self.spouse_working else MARRIED_SPOUSE_NOT_WORKING


class StatutoryCalculator:
    """Computes per-category contributions and withholding for one period.

    Pipeline:
    1. Resolve the eligibility profile, substituting policy defaults
    2. For each contribution category: cap at ceiling, find the band row,
       apply rate and fixed amount, round once
    3. Income tax: cumulative-average withholding over the remaining
       months of the year using YTD accumulators
    """

    def __init__(self, tables: StatutoryTables, policy: StatutoryPolicy | None = None):
        self.tables = tables
        self.policy = policy or StatutoryPolicy()

    def compute(
        self,
        statutory_base: Decimal,
        profile: EmployeeProfile,
        ytd: YtdAccumulators | None = None,
        *,
        as_of: date,
        period_month: int,
    ) -> StatutoryResult:
        """Compute contributions and withholding on a statutory wage base.

        Raises:
            ValidationError: negative base or month outside 1-12.
        """
        if statutory_base < 0:
            raise ValidationError("Statutory base must not be negative", field="statutory_base")
        if not 1 <= period_month <= 12:
            raise ValidationError(f"Invalid period month {period_month}", field="period_month")

        ytd = ytd or YtdAccumulators()
        resolved = _ResolvedProfile(profile, self.policy, as_of)
        result = StatutoryResult(
            profile_incomplete=bool(resolved.missing),
            missing_fields=resolved.missing,
        )
        if resolved.missing:
            result.warnings.append(
                ProfileIncompleteWarning(
                    f"Profile missing {', '.join(resolved.missing)}; defaults applied"
                )
            )

        missing_tables: list[StatutoryCategory] = []
        for category in CONTRIBUTION_CATEGORIES:
            if not self.policy.is_enabled(category.value):
                continue
            table = self.tables.contributions.get(category)
            if table is None:
                missing_tables.append(category)
                continue
            result.contributions[category] = self._calculate_contribution(
                category, table, statutory_base, resolved
            )

        if self.policy.is_enabled(StatutoryCategory.INCOME_TAX.value):
            if self.tables.income_tax is None:
                missing_tables.append(StatutoryCategory.INCOME_TAX)
            else:
                retirement = result.employee_amount(StatutoryCategory.RETIREMENT_FUND)
                result.withholding_tax = self._calculate_withholding(
                    self.tables.income_tax,
                    statutory_base,
                    retirement,
                    resolved,
                    ytd,
                    period_month,
                )

        result.missing_tables = tuple(missing_tables)
        if missing_tables:
            logger.warning(
                "No %s statutory table for %s; treated as zero",
                ",".join(c.value for c in missing_tables),
                self.tables.jurisdiction,
            )
        return result

    def _calculate_contribution(
        self,
        category: StatutoryCategory,
        table: ContributionTable,
        wage: Decimal,
        profile: _ResolvedProfile,
    ) -> CategoryContribution:
        base = wage
        if table.ceiling is not None and base > table.ceiling:
            base = table.ceiling

        row = table.find_row(base, profile.age, profile.contribution_type)
        if row is None:
            return CategoryContribution(category=category, contribution_base=base)

        if table.base_rounding_step is not None and base > 0:
            base = round_to_increment(base, table.base_rounding_step, "up")
            if table.ceiling is not None and base > table.ceiling:
                base = table.ceiling

        employee = base * row.employee_rate + row.employee_fixed
        employer = base * row.employer_rate + row.employer_fixed
        return CategoryContribution(
            category=category,
            employee=round_money(employee, table.output_increment),
            employer=round_money(employer, table.output_increment),
            contribution_base=base,
        )

    def _calculate_withholding(
        self,
        schedule: IncomeTaxSchedule,
        wage: Decimal,
        retirement_contribution: Decimal,
        profile: _ResolvedProfile,
        ytd: YtdAccumulators,
        period_month: int,
    ) -> Decimal:
        """Cumulative-average withholding for the current month.

        Projects annual income as YTD wages plus the current wage for each
        remaining month (current month included), taxes it progressively,
        then spreads what has not yet been withheld over those months.
        """
        remaining = Decimal(13 - period_month)
        projected = ytd.wages + wage * remaining

        reliefs = schedule.reliefs
        relief_total = reliefs.self_relief + reliefs.other
        if reliefs.retirement_cap > 0:
            projected_retirement = ytd.retirement_contribution + retirement_contribution * remaining
            relief_total += min(projected_retirement, reliefs.retirement_cap)
        if profile.married and not profile.spouse_working:
            relief_total += reliefs.spouse
        relief_total += reliefs.per_dependent * profile.dependents
        if profile.disabled:
            relief_total += reliefs.disability
        if profile.married and profile.spouse_disabled:
            relief_total += reliefs.spouse_disability

        chargeable = max(projected - relief_total, ZERO)
        bracket = schedule.bracket_for(chargeable)
        annual_tax = (chargeable - bracket.threshold) * bracket.rate + bracket.base_tax
        annual_tax -= schedule.rebate_for(profile.tax_category, chargeable)
        annual_tax = max(annual_tax, ZERO)

        outstanding = annual_tax - ytd.withholding - ytd.tax_credits
        if outstanding <= 0:
            return ZERO

        monthly = round_money(outstanding / remaining, schedule.rounding_increment)
        if monthly < schedule.minimum_withholding:
            return ZERO
        return monthly
