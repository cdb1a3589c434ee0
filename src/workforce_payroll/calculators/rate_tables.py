"""Pluggable statutory rate tables.

Tables are configuration data stored in statutory_table.payload_json, one
row per (jurisdiction, category, effective_start). Percentages are
fractions (0.11 means 11%).

Contribution categories (retirement_fund, social_security,
employment_insurance) use:
{
    "ceiling": 5000,                 // optional wage cap applied first
    "base_rounding_step": 100,       // optional, base rounded up to a step
    "output_increment": 0.01,        // optional, currency increment
    "rows": [
        {"wage_above": null, "wage_up_to": 5000,
         "age_from": null, "age_below": 60,
         "contribution_types": ["citizen", "permanent_resident"],
         "employee_rate": 0.11, "employer_rate": 0.13,
         "employee_fixed": 0, "employer_fixed": 0},
        ...
    ]
}
The first matching row wins. No matching row means no contribution.

Income tax uses:
{
    "brackets": [{"threshold": 0, "rate": 0, "base_tax": 0},
                 {"threshold": 5000, "rate": 0.01, "base_tax": 0}, ...],
    "rebates": {"single": 400, "married_spouse_not_working": 800},
    "rebate_income_limit": 35000,    // optional
    "reliefs": {"self": 9000, "spouse": 4000, "per_dependent": 2000,
                "disability": 6000, "spouse_disability": 5000,
                "retirement_cap": 4000, "other": 700},
    "minimum_withholding": 10,
    "rounding_increment": 0.05
}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from workforce_payroll.calculators.types import StatutoryCategory

ZERO = Decimal("0")


class _TableModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class ContributionRow(_TableModel):
    """One band of a contribution table.

    Wage band is (wage_above, wage_up_to]; age band is [age_from, age_below).
    Unset bounds are open.
    """

    wage_above: Decimal | None = None
    wage_up_to: Decimal | None = None
    age_from: int | None = None
    age_below: int | None = None
    contribution_types: tuple[str, ...] | None = None
    employee_rate: Decimal = Field(ZERO, ge=0)
    employer_rate: Decimal = Field(ZERO, ge=0)
    employee_fixed: Decimal = Field(ZERO, ge=0)
    employer_fixed: Decimal = Field(ZERO, ge=0)

    def matches(self, wage: Decimal, age: int, contribution_type: str) -> bool:
        if self.wage_above is not None and wage <= self.wage_above:
            return False
        if self.wage_up_to is not None and wage > self.wage_up_to:
            return False
        if self.age_from is not None and age < self.age_from:
            return False
        if self.age_below is not None and age >= self.age_below:
            return False
        if self.contribution_types is not None and contribution_type not in self.contribution_types:
            return False
        return True


class ContributionTable(_TableModel):
    ceiling: Decimal | None = Field(None, ge=0)
    base_rounding_step: Decimal | None = Field(None, gt=0)
    output_increment: Decimal = Field(Decimal("0.01"), gt=0)
    rows: tuple[ContributionRow, ...] = ()

    def find_row(self, wage: Decimal, age: int, contribution_type: str) -> ContributionRow | None:
        for row in self.rows:
            if row.matches(wage, age, contribution_type):
                return row
        return None


class TaxBracket(_TableModel):
    """Chargeable income above threshold is taxed at rate, plus base_tax."""

    threshold: Decimal = Field(ge=0)
    rate: Decimal = Field(ge=0)
    base_tax: Decimal = ZERO


class TaxReliefs(_TableModel):
    self_relief: Decimal = Field(ZERO, alias="self")
    spouse: Decimal = ZERO
    per_dependent: Decimal = ZERO
    disability: Decimal = ZERO
    spouse_disability: Decimal = ZERO
    retirement_cap: Decimal = ZERO
    other: Decimal = ZERO

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class IncomeTaxSchedule(_TableModel):
    brackets: tuple[TaxBracket, ...]
    rebates: dict[str, Decimal] = Field(default_factory=dict)
    rebate_income_limit: Decimal | None = None
    reliefs: TaxReliefs = Field(default_factory=TaxReliefs)
    minimum_withholding: Decimal = Field(ZERO, ge=0)
    rounding_increment: Decimal = Field(Decimal("0.01"), gt=0)

    @field_validator("brackets")
    @classmethod
    def _sort_brackets(cls, value: tuple[TaxBracket, ...]) -> tuple[TaxBracket, ...]:
        if not value:
            raise ValueError("income tax schedule needs at least one bracket")
        return tuple(sorted(value, key=lambda b: b.threshold))

    def bracket_for(self, chargeable: Decimal) -> TaxBracket:
        selected = self.brackets[0]
        for bracket in self.brackets:
            if chargeable > bracket.threshold:
                selected = bracket
        return selected

    def rebate_for(self, tax_category: str, chargeable: Decimal) -> Decimal:
        if self.rebate_income_limit is not None and chargeable > self.rebate_income_limit:
            return ZERO
        return self.rebates.get(tax_category, ZERO)


@dataclass
class StatutoryTables:
    """Tables in force for one jurisdiction on one date."""

    jurisdiction: str
    contributions: dict[StatutoryCategory, ContributionTable] = field(default_factory=dict)
    income_tax: IncomeTaxSchedule | None = None

    @classmethod
    def from_payloads(
        cls, jurisdiction: str, payloads: Mapping[str, Mapping[str, Any]]
    ) -> StatutoryTables:
        """Validate raw payloads keyed by category name."""
        tables = cls(jurisdiction=jurisdiction)
        for name, payload in payloads.items():
            category = StatutoryCategory(name)
            if category is StatutoryCategory.INCOME_TAX:
                tables.income_tax = IncomeTaxSchedule.model_validate(payload)
            else:
                tables.contributions[category] = ContributionTable.model_validate(payload)
        return tables

    def has(self, category: StatutoryCategory) -> bool:
        if category is StatutoryCategory.INCOME_TAX:
            return self.income_tax is not None
        return category in self.contributions
