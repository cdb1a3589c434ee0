"""Effective-dated statutory table loading."""

from __future__ import annotations

import logging
from datetime import date

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from workforce_payroll.calculators.rate_tables import (
    ContributionTable,
    IncomeTaxSchedule,
    StatutoryTables,
)
from workforce_payroll.calculators.types import StatutoryCategory
from workforce_payroll.models import StatutoryTable

logger = logging.getLogger(__name__)


class StatutoryTableLoader:
    """Loads the tables in force for a jurisdiction on a date.

    For each category the row with the latest effective_start on or before
    as_of wins. A payload that fails validation is skipped with a warning
    and the category is reported as missing by the calculator.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def load(self, jurisdiction: str, as_of: date) -> StatutoryTables:
        result = await self.session.execute(
            select(StatutoryTable)
            .where(
                StatutoryTable.jurisdiction == jurisdiction,
                StatutoryTable.effective_start <= as_of,
                (StatutoryTable.effective_end.is_(None) | (StatutoryTable.effective_end >= as_of)),
            )
            .order_by(StatutoryTable.effective_start.desc())
        )

        tables = StatutoryTables(jurisdiction=jurisdiction)
        seen: set[str] = set()
        for row in result.scalars().all():
            if row.category in seen:
                continue
            seen.add(row.category)
            try:
                category = StatutoryCategory(row.category)
                if category is StatutoryCategory.INCOME_TAX:
                    tables.income_tax = IncomeTaxSchedule.model_validate(row.payload_json)
                else:
                    tables.contributions[category] = ContributionTable.model_validate(
                        row.payload_json
                    )
            except (ValueError, PydanticValidationError) as e:
                logger.warning(
                    "Skipping statutory table %s (%s/%s): %s",
                    row.statutory_table_id,
                    jurisdiction,
                    row.category,
                    e,
                )
        return tables
