"""Property-based tests for money invariants.

These tests use hypothesis to generate earning inputs and wage bases and
check that the invariants hold for all of them.
"""

from datetime import date
from decimal import Decimal

from hypothesis import given, settings, strategies as st

from workforce_payroll.calculators.item_builder import ItemBuilder
from workforce_payroll.calculators.money import round_money
from workforce_payroll.calculators.policy import PolicyConfig
from workforce_payroll.calculators.rate_tables import StatutoryTables
from workforce_payroll.calculators.schemes import SCHEMES
from workforce_payroll.calculators.statutory import StatutoryCalculator
from workforce_payroll.calculators.types import (
    EARNING_COMPONENTS,
    AttendanceDay,
    EarningInputs,
    EmployeeProfile,
    StatutoryCategory,
)
from workforce_payroll.models import PayrollItem

money = st.decimals(min_value=Decimal("0"), max_value=Decimal("50000"), places=2)

TABLES = StatutoryTables.from_payloads(
    "default",
    {
        "retirement_fund": {"rows": [{"employee_rate": "0.11", "employer_rate": "0.13"}]},
        "social_security": {
            "ceiling": "5000",
            "rows": [{"employee_rate": "0.005", "employer_rate": "0.0175"}],
        },
        "income_tax": {
            "brackets": [
                {"threshold": "0", "rate": "0"},
                {"threshold": "5000", "rate": "0.01"},
                {"threshold": "20000", "rate": "0.03", "base_tax": "150"},
            ],
            "reliefs": {"self": "9000"},
        },
    },
)


class TestEarningsInvariants:
    """gross always equals the sum of its components."""

    @given(
        tag=st.sampled_from(sorted(SCHEMES)),
        basic=money,
        commission=money,
        bonus=money,
        claims=money,
        minutes=st.lists(st.integers(min_value=0, max_value=1440), max_size=31),
    )
    @settings(max_examples=100, deadline=None)
    def test_gross_equals_components(self, tag, basic, commission, bonus, claims, minutes):
        scheme = SCHEMES[tag]
        policy = PolicyConfig()
        inputs = EarningInputs(
            basic_pay=basic,
            attendance=[
                AttendanceDay(work_date=date(2024, 3, i + 1), worked_minutes=m)
                for i, m in enumerate(minutes)
            ],
            commission_amount=commission,
            bonus=bonus,
            claims_amount=claims,
        )

        earnings = scheme.compute_earnings(inputs, policy)

        assert earnings.gross == sum(earnings.components[c] for c in EARNING_COMPONENTS)
        base = scheme.statutory_base(earnings.components, policy)
        assert base == basic + commission + bonus
        assert base <= earnings.gross

    @given(basic=money, other=money)
    @settings(max_examples=50)
    def test_net_is_gross_less_deductions(self, basic, other):
        item = PayrollItem(basic_pay=basic, other_deductions=other)
        for name in EARNING_COMPONENTS:
            if name != "basic_pay":
                setattr(item, name, Decimal("0"))

        ItemBuilder.apply_totals(item)

        assert item.net_pay == item.gross - item.total_deductions


class TestStatutoryInvariants:
    @given(base=money, month=st.integers(min_value=1, max_value=12))
    @settings(max_examples=100)
    def test_amounts_non_negative_and_rounded(self, base, month):
        result = StatutoryCalculator(TABLES).compute(
            base, EmployeeProfile(), as_of=date(2024, month, 1), period_month=month
        )

        for contribution in result.contributions.values():
            assert contribution.employee >= 0
            assert contribution.employer >= 0
            assert contribution.employee == round_money(contribution.employee)
        assert result.withholding_tax >= 0

    @given(base=money)
    @settings(max_examples=50)
    def test_ceiling_caps_contribution(self, base):
        result = StatutoryCalculator(TABLES).compute(
            base, EmployeeProfile(), as_of=date(2024, 3, 31), period_month=3
        )

        assert result.employee_amount(StatutoryCategory.SOCIAL_SECURITY) <= Decimal("25.00")


class TestRounding:
    @given(amount=st.decimals(min_value=Decimal("-1000000"), max_value=Decimal("1000000"), places=6))
    @settings(max_examples=100)
    def test_round_money_idempotent(self, amount):
        once = round_money(amount)
        assert round_money(once) == once
        assert abs(once - amount) <= Decimal("0.005")
