"""Outstation allowance service - eligibility over stored attendance."""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from workforce_payroll.calculators.engine import employee_home_base
from workforce_payroll.calculators.outstation import OutstationEngine, infer_outstation_flag
from workforce_payroll.calculators.policy_resolver import PolicyResolver, ResolvedPolicy
from workforce_payroll.calculators.types import AttendanceDay, OutstationResult
from workforce_payroll.exceptions import NotFoundError, ValidationError
from workforce_payroll.models import AttendanceRecord, Employee

if TYPE_CHECKING:
    from workforce_payroll.providers.base import ActivitySource

logger = logging.getLogger(__name__)


class OutstationService:
    """Computes travel allowance for an employee and date range.

    Also the one place the engine writes to attendance: inferring the
    outstation flag on records the attendance source left unset.
    """

    def __init__(
        self,
        session: AsyncSession,
        activity_source: ActivitySource | None = None,
        lookup_timeout: float | None = None,
    ):
        self.session = session
        self.activity_source = activity_source
        self.lookup_timeout = lookup_timeout
        self.policy_resolver = PolicyResolver(session)

    async def _load(
        self, employee_id: UUID, period_start: date, period_end: date
    ) -> tuple[Employee, ResolvedPolicy, list[AttendanceRecord]]:
        if period_start > period_end:
            raise ValidationError("period_start must not be after period_end", field="period_start")
        employee = await self.session.get(Employee, employee_id)
        if employee is None:
            raise NotFoundError("Employee", employee_id)
        resolved = await self.policy_resolver.resolve_policy(
            employee.company_id, employee.department_id
        )
        records = await self.session.scalars(
            select(AttendanceRecord)
            .where(
                AttendanceRecord.employee_id == employee_id,
                AttendanceRecord.work_date >= period_start,
                AttendanceRecord.work_date <= period_end,
            )
            .order_by(AttendanceRecord.work_date)
        )
        return employee, resolved, list(records.all())

    async def compute_outstation_allowance(
        self, employee_id: UUID, period_start: date, period_end: date
    ) -> OutstationResult:
        """Qualifying day pairs and total allowance for the range.

        Raises:
            ValidationError: period_start is after period_end.
            NotFoundError: employee does not exist.
        """
        employee, resolved, records = await self._load(employee_id, period_start, period_end)
        engine = OutstationEngine(
            resolved.config.outstation, self.activity_source, self.lookup_timeout
        )
        result = await engine.compute_eligible_days(
            employee.activity_ref or employee.employee_number,
            [AttendanceDay.from_record(r) for r in records],
            employee_home_base(employee, resolved),
        )
        logger.debug(
            "Outstation for %s %s..%s: %d qualifying day(s), %s",
            employee.employee_number,
            period_start,
            period_end,
            result.qualifying_days,
            result.total_allowance,
        )
        return result

    async def infer_outstation_flags(
        self, employee_id: UUID, period_start: date, period_end: date
    ) -> int:
        """Set engine-derived outstation flags on unflagged records.

        Returns the number of records marked outstation. Commits.
        """
        employee, resolved, records = await self._load(employee_id, period_start, period_end)
        policy = resolved.config.outstation
        home_base = employee_home_base(employee, resolved)

        marked = 0
        try:
            for record in records:
                flag = infer_outstation_flag(AttendanceDay.from_record(record), home_base, policy)
                if flag:
                    record.is_outstation = True
                    record.outstation_inferred = True
                    marked += 1
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        if marked:
            logger.info(
                "Inferred outstation flag on %d record(s) for %s",
                marked,
                employee.employee_number,
            )
        return marked
