"""Claim linking: each approved claim is linked to at most one payroll item."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from workforce_payroll.calculators.money import round_money, to_decimal
from workforce_payroll.exceptions import NotFoundError, StateConflictError
from workforce_payroll.models import ClaimRecord, PayrollItem, PayrollRun

logger = logging.getLogger(__name__)


class ClaimLinkingService:
    """Writes ClaimRecord.linked_payroll_item_id exactly once.

    Every write is a conditional update on linked_payroll_item_id IS NULL,
    so two writers racing for the same claim cannot both succeed.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def link_claim(self, claim_id: UUID, payroll_item_id: UUID) -> ClaimRecord:
        """Link one approved claim to an item of the same employee.

        Raises:
            NotFoundError: claim or item does not exist.
            StateConflictError: claim already linked, not approved, or
                belongs to another employee.
        """
        item = await self.session.get(PayrollItem, payroll_item_id)
        if item is None:
            raise NotFoundError("Payroll item", payroll_item_id)

        result = await self.session.execute(
            update(ClaimRecord)
            .where(
                ClaimRecord.claim_record_id == claim_id,
                ClaimRecord.employee_id == item.employee_id,
                ClaimRecord.status == "approved",
                ClaimRecord.linked_payroll_item_id.is_(None),
            )
            .values(
                linked_payroll_item_id=payroll_item_id,
                linked_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        claim = await self.session.get(ClaimRecord, claim_id, populate_existing=True)
        if result.rowcount == 0:
            if claim is None:
                raise NotFoundError("Claim", claim_id)
            if claim.linked_payroll_item_id is not None:
                raise StateConflictError(
                    f"Claim {claim_id} is already linked to payroll item "
                    f"{claim.linked_payroll_item_id}",
                    current_state="linked",
                )
            if claim.employee_id != item.employee_id:
                raise StateConflictError(
                    f"Claim {claim_id} belongs to a different employee",
                    current_state=claim.status,
                )
            raise StateConflictError(
                f"Claim {claim_id} is {claim.status}, only approved claims can be linked",
                current_state=claim.status,
            )
        return claim

    async def link_period_claims(self, run: PayrollRun, items: list[PayrollItem]) -> int:
        """Link every approved, unlinked claim dated in the run period.

        Returns count of claims linked.
        """
        linked_at = datetime.now(timezone.utc)
        linked = 0
        for item in items:
            result = await self.session.execute(
                update(ClaimRecord)
                .where(
                    ClaimRecord.employee_id == item.employee_id,
                    ClaimRecord.status == "approved",
                    ClaimRecord.linked_payroll_item_id.is_(None),
                    ClaimRecord.claim_date >= run.period_start,
                    ClaimRecord.claim_date <= run.period_end,
                )
                .values(linked_payroll_item_id=item.payroll_item_id, linked_at=linked_at)
                .execution_options(synchronize_session=False)
            )
            linked += result.rowcount or 0
        logger.info("Linked %d claim(s) for payroll run %s", linked, run.payroll_run_id)
        return linked

    async def linked_total(self, payroll_item_id: UUID) -> Decimal:
        result = await self.session.execute(
            select(func.coalesce(func.sum(ClaimRecord.amount), 0)).where(
                ClaimRecord.linked_payroll_item_id == payroll_item_id
            )
        )
        return round_money(to_decimal(result.scalar_one()))

    async def count_linked_to_run(self, run: PayrollRun) -> int:
        result = await self.session.execute(
            select(func.count(ClaimRecord.claim_record_id))
            .join(PayrollItem, PayrollItem.payroll_item_id == ClaimRecord.linked_payroll_item_id)
            .where(PayrollItem.payroll_run_id == run.payroll_run_id)
        )
        return int(result.scalar_one())
