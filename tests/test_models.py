"""Tests for model helpers."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

from workforce_payroll.models import Employee, PayRate, PayrollRun, StatutoryTable


class TestPayRate:
    def test_is_active_on(self):
        rate = PayRate(start_date=date(2024, 1, 1), end_date=date(2024, 2, 29), amount=Decimal("2800"))

        assert rate.is_active_on(date(2024, 2, 29)) is True
        assert rate.is_active_on(date(2023, 12, 31)) is False
        assert rate.is_active_on(date(2024, 3, 1)) is False

    def test_open_ended(self):
        rate = PayRate(start_date=date(2024, 1, 1), amount=Decimal("2800"))
        assert rate.is_active_on(date(2030, 1, 1)) is True


class TestStatutoryTable:
    def test_is_effective_on(self):
        table = StatutoryTable(
            jurisdiction="default",
            category="social_security",
            effective_start=date(2024, 1, 1),
            effective_end=date(2024, 12, 31),
            payload_json={},
        )

        assert table.is_effective_on(date(2024, 6, 1)) is True
        assert table.is_effective_on(date(2025, 1, 1)) is False


class TestEmployee:
    def test_active_employee_payable(self):
        employee = Employee(status="active", hire_date=date(2023, 1, 1))
        assert employee.is_payable_in(date(2024, 3, 1), date(2024, 3, 31)) is True

    def test_hired_after_period(self):
        employee = Employee(status="active", hire_date=date(2024, 4, 1))
        assert employee.is_payable_in(date(2024, 3, 1), date(2024, 3, 31)) is False

    def test_leaver_paid_in_final_month(self):
        employee = Employee(status="terminated", termination_date=date(2024, 3, 15))

        assert employee.is_payable_in(date(2024, 3, 1), date(2024, 3, 31)) is True
        assert employee.is_payable_in(date(2024, 4, 1), date(2024, 4, 30)) is False


class TestPayrollRun:
    def test_period_label(self):
        run = PayrollRun(period_year=2024, period_month=3)
        assert run.period_label == "2024-03"

    def test_to_dict(self):
        run_id = uuid4()
        run = PayrollRun(payroll_run_id=run_id, period_year=2024, period_month=3, status="draft")

        data = run.to_dict()

        assert data["payroll_run_id"] == run_id
        assert data["status"] == "draft"
