"""Pay scheme strategies.

Each employee carries a scheme tag. The scheme decides which overtime mode
applies, whether travel allowance is computed, and which earning
components form the statutory base. Tenants may override the base
components per scheme through PolicyConfig.schemes.
"""

from __future__ import annotations

from decimal import Decimal

from workforce_payroll.calculators.money import round_money
from workforce_payroll.calculators.overtime import compute_overtime
from workforce_payroll.calculators.policy import NON_STATUTORY_COMPONENTS, PolicyConfig
from workforce_payroll.calculators.types import (
    EARNING_COMPONENTS,
    ZERO,
    EarningInputs,
    EarningsBreakdown,
    OvertimeMode,
)
from workforce_payroll.exceptions import ValidationError

DEFAULT_BASE_COMPONENTS = frozenset({"basic_pay", "commission_amount", "bonus"})


class PayScheme:
    """Common scheme behaviour; subclasses set the class attributes."""

    tag: str = ""
    ot_mode: OvertimeMode = OvertimeMode.NONE
    statutory_base_components: frozenset[str] = DEFAULT_BASE_COMPONENTS
    excluded_base_components: frozenset[str] = frozenset()
    uses_outstation: bool = False

    def base_components(self, policy: PolicyConfig) -> frozenset[str]:
        """Components counted toward the statutory base under this policy.

        Raises:
            ValidationError: the override names a component this scheme
                keeps out of the base.
        """
        override = policy.statutory_base_override(self.tag)
        if override is None:
            return self.statutory_base_components
        excluded = frozenset(override) & self.excluded_base_components
        if excluded:
            raise ValidationError(
                f"{sorted(excluded)} cannot count toward the {self.tag} statutory base",
                field="statutory_base_components",
            )
        return frozenset(override)

    def compute_earnings(self, inputs: EarningInputs, policy: PolicyConfig) -> EarningsBreakdown:
        """Turn source figures into earning components."""
        overtime = compute_overtime(
            self.ot_mode,
            inputs.attendance,
            inputs.basic_pay,
            policy.overtime_for(self.tag),
            inputs.holidays,
        )

        components: dict[str, Decimal] = {name: ZERO for name in EARNING_COMPONENTS}
        components["basic_pay"] = round_money(inputs.basic_pay)
        components["fixed_allowance"] = round_money(policy.allowances.fixed_for(self.tag))
        components["commission_amount"] = round_money(inputs.commission_amount)
        components["ot_amount"] = overtime.amount
        components["extra_days_amount"] = overtime.extra_days_amount
        components["bonus"] = round_money(inputs.bonus)
        components["claims_amount"] = round_money(inputs.claims_amount)

        outstation_days = 0
        if self.uses_outstation and inputs.outstation is not None:
            components["travel_allowance"] = round_money(inputs.outstation.total_allowance)
            outstation_days = inputs.outstation.qualifying_days

        return EarningsBreakdown(
            components=components,
            overtime=overtime,
            outstation_days=outstation_days,
        )

    def statutory_base(self, components: dict[str, Decimal], policy: PolicyConfig) -> Decimal:
        return sum(
            (components.get(name, ZERO) for name in sorted(self.base_components(policy))),
            ZERO,
        )


class OfficeScheme(PayScheme):
    """Salaried office staff. Fixed allowance stays out of the statutory base."""

    tag = "office"
    ot_mode = OvertimeMode.THRESHOLD_MULTIPLIER
    excluded_base_components = NON_STATUTORY_COMPONENTS["office"]


class SalesScheme(PayScheme):
    """Commissioned sales staff; no automated overtime."""

    tag = "sales"
    ot_mode = OvertimeMode.NONE
    excluded_base_components = NON_STATUTORY_COMPONENTS["sales"]


class DriverScheme(PayScheme):
    """Drivers: daily excess-hours OT, extra-days pay and travel allowance.

    None of the three count toward the statutory base.
    """

    tag = "driver"
    ot_mode = OvertimeMode.EXCESS_HOURS_PER_DAY
    excluded_base_components = NON_STATUTORY_COMPONENTS["driver"]
    uses_outstation = True


class ShiftScheme(PayScheme):
    """Outlet shift workers with holiday overtime tiers."""

    tag = "shift"
    ot_mode = OvertimeMode.THRESHOLD_MULTIPLIER
    excluded_base_components = NON_STATUTORY_COMPONENTS["shift"]


SCHEMES: dict[str, PayScheme] = {
    scheme.tag: scheme
    for scheme in (OfficeScheme(), SalesScheme(), DriverScheme(), ShiftScheme())
}


def get_scheme(tag: str) -> PayScheme:
    """Look up a scheme by tag.

    Raises:
        ValidationError: unknown tag.
    """
    try:
        return SCHEMES[tag]
    except KeyError:
        raise ValidationError(f"Unknown pay scheme '{tag}'", field="pay_scheme") from None
