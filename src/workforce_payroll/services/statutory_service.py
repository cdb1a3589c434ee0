"""Statutory service - contribution breakdowns outside a payroll run."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from workforce_payroll.calculators.policy import StatutoryPolicy
from workforce_payroll.calculators.rate_tables import StatutoryTables
from workforce_payroll.calculators.statutory import StatutoryCalculator
from workforce_payroll.calculators.table_loader import StatutoryTableLoader
from workforce_payroll.calculators.types import EmployeeProfile, StatutoryResult, YtdAccumulators


class StatutoryService:
    """Loads the tables in force and runs the statutory calculator."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.loader = StatutoryTableLoader(session)

    async def load_tables(self, jurisdiction: str, as_of: date) -> StatutoryTables:
        return await self.loader.load(jurisdiction, as_of)

    async def compute_statutory(
        self,
        profile: EmployeeProfile,
        statutory_base: Decimal,
        ytd: YtdAccumulators | None = None,
        *,
        jurisdiction: str,
        as_of: date,
        period_month: int,
        policy: StatutoryPolicy | None = None,
    ) -> StatutoryResult:
        """Contribution breakdown for one wage base.

        Raises:
            ValidationError: negative base or month outside 1-12.
        """
        tables = await self.load_tables(jurisdiction, as_of)
        calculator = StatutoryCalculator(tables, policy)
        return calculator.compute(
            statutory_base, profile, ytd, as_of=as_of, period_month=period_month
        )
