"""Tests for bank transfer export."""

from decimal import Decimal
from uuid import uuid4

import pytest

from workforce_payroll.calculators.policy import BankExportPolicy
from workforce_payroll.exceptions import NotFoundError, StateConflictError, ValidationError
from workforce_payroll.services import (
    BankExportService,
    BankTransferRow,
    PayrollRunService,
    render_bank_file,
)


def row(number: str, net: str) -> BankTransferRow:
    return BankTransferRow(
        employee_number=number,
        employee_name=f"Employee {number}",
        bank_name="Maybank",
        account_number=f"5140{number[-3:]}00123",
        net_pay=Decimal(net),
    )


class TestExportRows:
    async def test_draft_run_rejected(self, session, statutory_tables, company_policy, company, office_employee):
        result = await PayrollRunService(session).create_run(company.company_id, 2024, 3)

        with pytest.raises(StateConflictError):
            await BankExportService(session).export_rows(result.run.payroll_run_id)

    async def test_unknown_run(self, session):
        with pytest.raises(NotFoundError):
            await BankExportService(session).export_rows(uuid4())

    async def test_finalized_rows(
        self,
        session,
        statutory_tables,
        company_policy,
        company,
        office_employee,
        driver_employee,
    ):
        service = PayrollRunService(session)
        result = await service.create_run(company.company_id, 2024, 3)
        await service.finalize_run(result.run.payroll_run_id)

        rows = await BankExportService(session).export_rows(result.run.payroll_run_id)

        assert [r.employee_number for r in rows] == ["DRV001", "EMP001"]
        office = rows[1]
        assert office.bank_name == "Maybank"
        assert office.account_number == "514000100123"
        assert office.net_pay == Decimal("2631.00")


class TestRenderBankFile:
    def test_default_layout(self):
        content = render_bank_file([row("EMP001", "2631")])

        assert content.splitlines() == [
            "Bank Name,Account Number,Employee Name,Net Pay",
            "Maybank,514000100123,Employee EMP001,2631.00",
        ]

    def test_skips_non_positive(self):
        content = render_bank_file([row("EMP001", "2631"), row("EMP002", "0"), row("EMP003", "-5")])

        assert len(content.splitlines()) == 2

    def test_keep_non_positive_when_configured(self):
        policy = BankExportPolicy(skip_non_positive=False, header=False)

        content = render_bank_file([row("EMP002", "0")], policy)

        assert content == "Maybank,514000200123,Employee EMP002,0.00\n"

    def test_custom_columns(self):
        policy = BankExportPolicy(columns=("employee_number", "net_pay"))

        content = render_bank_file([row("EMP001", "1500.5")], policy)

        assert content.splitlines() == ["Employee Number,Net Pay", "EMP001,1500.50"]

    def test_unknown_column(self):
        with pytest.raises(ValidationError):
            render_bank_file([], BankExportPolicy(columns=("iban",)))
