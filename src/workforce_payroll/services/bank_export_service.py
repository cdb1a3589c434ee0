"""Bank transfer export for finalized payroll runs."""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from workforce_payroll.calculators.policy import BankExportPolicy
from workforce_payroll.exceptions import NotFoundError, StateConflictError, ValidationError
from workforce_payroll.models import Employee, PayrollItem, PayrollRun
from workforce_payroll.services.state_machine import PayrollRunStatus

COLUMN_LABELS = {
    "employee_number": "Employee Number",
    "employee_name": "Employee Name",
    "bank_name": "Bank Name",
    "account_number": "Account Number",
    "net_pay": "Net Pay",
}


@dataclass(frozen=True)
class BankTransferRow:
    employee_number: str
    employee_name: str
    bank_name: str
    account_number: str
    net_pay: Decimal


class BankExportService:
    """One transfer row per item of a finalized run.

    net_pay is read from the item as stored; nothing is recomputed here.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def export_rows(self, payroll_run_id: UUID) -> list[BankTransferRow]:
        """Rows ordered by employee number.

        Raises:
            NotFoundError: run does not exist.
            StateConflictError: run is not finalized.
        """
        run = await self.session.get(PayrollRun, payroll_run_id)
        if run is None:
            raise NotFoundError("Payroll run", payroll_run_id)
        if run.status != PayrollRunStatus.FINALIZED:
            raise StateConflictError(
                f"Bank export requires a finalized run; {payroll_run_id} is {run.status}",
                current_state=run.status,
            )

        result = await self.session.execute(
            select(PayrollItem, Employee)
            .join(Employee, Employee.employee_id == PayrollItem.employee_id)
            .where(PayrollItem.payroll_run_id == payroll_run_id)
            .order_by(Employee.employee_number)
        )
        return [
            BankTransferRow(
                employee_number=employee.employee_number,
                employee_name=employee.full_name,
                bank_name=employee.bank_name or "",
                account_number=employee.bank_account_number or "",
                net_pay=item.net_pay,
            )
            for item, employee in result.all()
        ]


def render_bank_file(rows: list[BankTransferRow], policy: BankExportPolicy | None = None) -> str:
    """Render rows as CSV using the tenant's column layout.

    Raises:
        ValidationError: the layout names an unknown column.
    """
    policy = policy or BankExportPolicy()
    unknown = [c for c in policy.columns if c not in COLUMN_LABELS]
    if unknown:
        raise ValidationError(f"Unknown bank export column(s): {', '.join(unknown)}", field="columns")

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    if policy.header:
        writer.writerow([COLUMN_LABELS[c] for c in policy.columns])
    for row in rows:
        if policy.skip_non_positive and row.net_pay <= 0:
            continue
        writer.writerow([_format(getattr(row, c)) for c in policy.columns])
    return buffer.getvalue()


def _format(value: object) -> str:
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    return str(value)
