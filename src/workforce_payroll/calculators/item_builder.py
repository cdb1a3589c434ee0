"""Payroll item assembly and invariant checks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable

from workforce_payroll.calculators.money import round_money
from workforce_payroll.calculators.types import (
    EARNING_COMPONENTS,
    ZERO,
    StatutoryCategory,
    StatutoryResult,
)
from workforce_payroll.exceptions import ArithmeticInvariantViolation

if TYPE_CHECKING:
    from workforce_payroll.calculators.policy import PolicyConfig
    from workforce_payroll.calculators.schemes import PayScheme
    from workforce_payroll.models.payroll import PayrollItem

logger = logging.getLogger(__name__)

STATUTORY_COLUMNS = {
    StatutoryCategory.RETIREMENT_FUND: ("retirement_ee", "retirement_er"),
    StatutoryCategory.SOCIAL_SECURITY: ("social_security_ee", "social_security_er"),
    StatutoryCategory.EMPLOYMENT_INSURANCE: ("employment_insurance_ee", "employment_insurance_er"),
}

EMPLOYEE_DEDUCTION_COLUMNS = (
    "retirement_ee",
    "social_security_ee",
    "employment_insurance_ee",
    "withholding_tax",
    "unpaid_leave_deduction",
    "other_deductions",
)

EMPLOYER_CONTRIBUTION_COLUMNS = (
    "retirement_er",
    "social_security_er",
    "employment_insurance_er",
)


@dataclass
class RunTotals:
    total_gross: Decimal = ZERO
    total_deductions: Decimal = ZERO
    total_net: Decimal = ZERO
    total_employer_cost: Decimal = ZERO
    employee_count: int = 0


class ItemBuilder:
    """Writes computed figures onto a PayrollItem and checks its invariants.

    Sign conventions:
    - Earning components and deductions are stored positive
    - net_pay = gross - total_deductions (may be negative; surfaced on review)
    - employer_cost = gross + employer contributions
    """

    @staticmethod
    def apply_components(item: PayrollItem, components: dict[str, Decimal]) -> None:
        """Set earning components (except manual bonus) and gross."""
        for name in EARNING_COMPONENTS:
            if name == "bonus":
                continue
            setattr(item, name, components.get(name, ZERO))
        item.gross = ItemBuilder.calculate_gross(item)

    @staticmethod
    def apply_statutory(item: PayrollItem, result: StatutoryResult) -> None:
        for category, (ee_column, er_column) in STATUTORY_COLUMNS.items():
            setattr(item, ee_column, result.employee_amount(category))
            setattr(item, er_column, result.employer_amount(category))
        item.withholding_tax = result.withholding_tax
        item.profile_incomplete = result.profile_incomplete

    @staticmethod
    def calculate_gross(item: PayrollItem) -> Decimal:
        return sum((getattr(item, name) or ZERO for name in EARNING_COMPONENTS), ZERO)

    @staticmethod
    def apply_totals(item: PayrollItem) -> None:
        """Derive total deductions, net pay and employer cost."""
        item.gross = ItemBuilder.calculate_gross(item)
        item.total_deductions = round_money(
            sum((getattr(item, c) or ZERO for c in EMPLOYEE_DEDUCTION_COLUMNS), ZERO)
        )
        item.net_pay = item.gross - item.total_deductions
        item.employer_cost = item.gross + sum(
            (getattr(item, c) or ZERO for c in EMPLOYER_CONTRIBUTION_COLUMNS), ZERO
        )

    @staticmethod
    def validate(item: PayrollItem, scheme: PayScheme, policy: PolicyConfig) -> None:
        """Check gross, statutory base and net invariants.

        Raises:
            ArithmeticInvariantViolation: the item is internally inconsistent.
        """
        ref = item.payroll_item_id or item.employee_id

        expected_gross = ItemBuilder.calculate_gross(item)
        if item.gross != expected_gross:
            ItemBuilder._violation("gross_equals_components", expected_gross, item.gross, ref)

        components = {name: getattr(item, name) or ZERO for name in EARNING_COMPONENTS}
        expected_base = scheme.statutory_base(components, policy)
        if item.statutory_base != expected_base:
            ItemBuilder._violation(
                f"statutory_base_{scheme.tag}", expected_base, item.statutory_base, ref
            )

        expected_net = item.gross - item.total_deductions
        if item.net_pay != expected_net:
            ItemBuilder._violation("net_equals_gross_less_deductions", expected_net, item.net_pay, ref)

    @staticmethod
    def _violation(invariant: str, expected: Decimal, actual: Decimal, ref: object) -> None:
        error = ArithmeticInvariantViolation(invariant, expected, actual, ref)
        logger.error("Engine defect: %s", error.message)
        raise error

    @staticmethod
    def sum_run_totals(items: Iterable[PayrollItem]) -> RunTotals:
        totals = RunTotals()
        for item in items:
            totals.total_gross += item.gross
            totals.total_deductions += item.total_deductions
            totals.total_net += item.net_pay
            totals.total_employer_cost += item.employer_cost
            totals.employee_count += 1
        return totals
