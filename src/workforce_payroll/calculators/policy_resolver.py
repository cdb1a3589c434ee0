"""Tenant policy resolution with documented fallbacks."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from workforce_payroll.calculators.policy import PolicyConfig
from workforce_payroll.exceptions import ConfigurationMissingError
from workforce_payroll.models import PayrollPolicy, PublicHoliday

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedPolicy:
    """Policy in force for one computation and where it came from."""

    config: PolicyConfig
    source: str  # "department" | "company" | "default"
    payroll_policy_id: UUID | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_default(self) -> bool:
        return self.source == "default"


class PolicyResolver:
    """Resolves the payroll policy for a company and optional department.

    Resolution order:
    1. Active department policy, highest version
    2. Active company-wide policy, highest version
    3. PolicyConfig defaults (logged; never raises)

    A stored payload that fails validation is skipped with a warning, as
    if it were absent. Policies are read fresh on every call.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def resolve_policy(
        self, company_id: UUID, department_id: UUID | None = None
    ) -> ResolvedPolicy:
        warnings: list[str] = []
        try:
            return await self._load_policy(company_id, department_id, warnings)
        except ConfigurationMissingError as e:
            logger.warning("%s; using defaults", e.message)
            warnings.append(e.message)
        return ResolvedPolicy(config=PolicyConfig(), source="default", warnings=tuple(warnings))

    async def _load_policy(
        self, company_id: UUID, department_id: UUID | None, warnings: list[str]
    ) -> ResolvedPolicy:
        """Load the most specific valid stored policy.

        Raises:
            ConfigurationMissingError: no usable policy row exists.
        """
        scopes: list[tuple[str, UUID | None]] = []
        if department_id is not None:
            scopes.append(("department", department_id))
        scopes.append(("company", None))

        for source, scope_department in scopes:
            row = await self._get_active_policy(company_id, scope_department)
            if row is None:
                continue
            try:
                config = PolicyConfig.model_validate(row.payload_json or {})
            except PydanticValidationError as e:
                message = (
                    f"Invalid {source} payroll policy {row.payroll_policy_id} "
                    f"v{row.version}: {e.error_count()} error(s)"
                )
                logger.warning(message)
                warnings.append(message)
                continue
            return ResolvedPolicy(
                config=config,
                source=source,
                payroll_policy_id=row.payroll_policy_id,
                warnings=tuple(warnings),
            )

        scope = f"company {company_id}"
        if department_id is not None:
            scope += f" department {department_id}"
        raise ConfigurationMissingError(scope)

    async def _get_active_policy(
        self, company_id: UUID, department_id: UUID | None
    ) -> PayrollPolicy | None:
        stmt = select(PayrollPolicy).where(
            PayrollPolicy.company_id == company_id,
            PayrollPolicy.is_active.is_(True),
        )
        if department_id is None:
            stmt = stmt.where(PayrollPolicy.department_id.is_(None))
        else:
            stmt = stmt.where(PayrollPolicy.department_id == department_id)
        result = await self.session.execute(
            stmt.order_by(PayrollPolicy.version.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def load_holidays(
        self, company_id: UUID, period_start: date, period_end: date
    ) -> frozenset[date]:
        result = await self.session.execute(
            select(PublicHoliday.holiday_date).where(
                PublicHoliday.company_id == company_id,
                PublicHoliday.holiday_date >= period_start,
                PublicHoliday.holiday_date <= period_end,
            )
        )
        return frozenset(result.scalars().all())
