"""Payroll calculation engine."""

from workforce_payroll.calculators.engine import ItemComputation, PayrollEngine, PeriodContext
from workforce_payroll.calculators.item_builder import ItemBuilder
from workforce_payroll.calculators.outstation import OutstationEngine
from workforce_payroll.calculators.policy import PolicyConfig
from workforce_payroll.calculators.policy_resolver import PolicyResolver, ResolvedPolicy
from workforce_payroll.calculators.rate_resolver import RateResolver
from workforce_payroll.calculators.schemes import SCHEMES, PayScheme, get_scheme
from workforce_payroll.calculators.statutory import StatutoryCalculator

__all__ = [
    "ItemBuilder",
    "ItemComputation",
    "OutstationEngine",
    "PayScheme",
    "PayrollEngine",
    "PeriodContext",
    "PolicyConfig",
    "PolicyResolver",
    "RateResolver",
    "ResolvedPolicy",
    "SCHEMES",
    "StatutoryCalculator",
    "get_scheme",
]
