"""Basic pay resolution with carry-forward."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from workforce_payroll.exceptions import BasicPayUnresolvedError
from workforce_payroll.models import PayRate, PayrollItem, PayrollRun


def earlier_period(period_year: int, period_month: int):
    """SQL predicate: run period strictly before the given month."""
    return or_(
        PayrollRun.period_year < period_year,
        and_(PayrollRun.period_year == period_year, PayrollRun.period_month < period_month),
    )


@dataclass(frozen=True)
class ResolvedBasicPay:
    amount: Decimal
    carried_forward: bool = False
    pay_rate_id: UUID | None = None


class RateResolver:
    """Resolves an employee's basic monthly pay for a period.

    Selection priority:
    1. Pay rate active at any point in the period; latest start_date wins
    2. If carry_forward: basic_pay of the employee's most recent payroll
       item in an earlier period (flagged as carried forward)
    3. Otherwise BasicPayUnresolvedError
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def resolve_basic_pay(
        self,
        employee_id: UUID,
        period_year: int,
        period_month: int,
        period_start: date,
        period_end: date,
        carry_forward: bool = True,
    ) -> ResolvedBasicPay:
        """Resolve basic pay.

        Raises:
            BasicPayUnresolvedError: no rate and nothing to carry forward.
        """
        rate = await self._get_period_rate(employee_id, period_start, period_end)
        if rate is not None:
            return ResolvedBasicPay(amount=rate.amount, pay_rate_id=rate.pay_rate_id)

        if carry_forward:
            previous = await self._get_previous_basic(employee_id, period_year, period_month)
            if previous is not None:
                return ResolvedBasicPay(amount=previous, carried_forward=True)

        raise BasicPayUnresolvedError(employee_id, f"{period_year:04d}-{period_month:02d}")

    async def _get_period_rate(
        self, employee_id: UUID, period_start: date, period_end: date
    ) -> PayRate | None:
        result = await self.session.execute(
            select(PayRate)
            .where(
                PayRate.employee_id == employee_id,
                PayRate.start_date <= period_end,
                (PayRate.end_date.is_(None) | (PayRate.end_date >= period_start)),
            )
            .order_by(PayRate.start_date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _get_previous_basic(
        self, employee_id: UUID, period_year: int, period_month: int
    ) -> Decimal | None:
        result = await self.session.execute(
            select(PayrollItem.basic_pay)
            .join(PayrollRun, PayrollRun.payroll_run_id == PayrollItem.payroll_run_id)
            .where(
                PayrollItem.employee_id == employee_id,
                earlier_period(period_year, period_month),
            )
            .order_by(PayrollRun.period_year.desc(), PayrollRun.period_month.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()
