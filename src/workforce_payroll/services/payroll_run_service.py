"""Payroll run service - orchestrates the draft/finalized run lifecycle."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any, AsyncIterator
from uuid import UUID, uuid4

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from workforce_payroll.calculators.engine import PayrollEngine, PeriodContext
from workforce_payroll.calculators.item_builder import ItemBuilder
from workforce_payroll.calculators.schemes import get_scheme
from workforce_payroll.calculators.types import ZERO
from workforce_payroll.exceptions import (
    BasicPayUnresolvedError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from workforce_payroll.models import (
    AuditEvent,
    Company,
    Department,
    Employee,
    PayrollItem,
    PayrollRun,
)
from workforce_payroll.services.claim_linking_service import ClaimLinkingService
from workforce_payroll.services.state_machine import (
    InvalidTransitionError,
    PayrollRunStateMachine,
    PayrollRunStatus,
)

if TYPE_CHECKING:
    from workforce_payroll.providers.base import ActivitySource

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("workforce_payroll.audit")

COMPANY_SCOPE = "*"

MANUAL_MONEY_FIELDS = ("bonus", "other_deductions", "basic_pay")
MANUAL_TEXT_FIELDS = ("remarks", "deduction_remarks")


@dataclass
class SkippedEmployee:
    employee_id: UUID
    employee_number: str
    reason: str


@dataclass
class CreateRunResult:
    """Outcome of create_run; skipped employees do not fail the run."""

    run: PayrollRun
    items: list[PayrollItem]
    skipped: list[SkippedEmployee] = field(default_factory=list)
    carried_forward: list[UUID] = field(default_factory=list)


@dataclass
class RecalcSummary:
    recalculated: int
    total: int


@dataclass
class ItemAdjustment:
    """Manual edits to one item. None leaves a field unchanged."""

    bonus: Decimal | None = None
    other_deductions: Decimal | None = None
    basic_pay: Decimal | None = None
    remarks: str | None = None
    deduction_remarks: str | None = None

    def changed_fields(self) -> dict[str, Any]:
        return {
            name: getattr(self, name)
            for name in MANUAL_MONEY_FIELDS + MANUAL_TEXT_FIELDS
            if getattr(self, name) is not None
        }


def _manual_snapshot(item: PayrollItem) -> dict[str, Any]:
    snapshot: dict[str, Any] = {
        name: str(getattr(item, name)) for name in MANUAL_MONEY_FIELDS
    }
    snapshot.update({name: getattr(item, name) for name in MANUAL_TEXT_FIELDS})
    snapshot["gross"] = str(item.gross)
    snapshot["net_pay"] = str(item.net_pay)
    return snapshot


class PayrollRunService:
    """Service for managing the payroll run lifecycle.

    Operations:
    - create_run: Assemble a draft run for a company/department and month
    - recalc_item / recalc_all: Re-derive computed fields while draft
    - finalize_run: Link claims, lock items and finalize atomically
    - delete_run: Remove a draft run and its items
    - adjust_item: Audited manual edit of an item's discretionary fields

    Every public operation is one transaction.
    """

    def __init__(
        self,
        session: AsyncSession,
        activity_source: ActivitySource | None = None,
        lookup_timeout: float | None = None,
    ):
        self.session = session
        self.engine = PayrollEngine(session, activity_source, lookup_timeout)
        self.claim_linking = ClaimLinkingService(session)

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[None]:
        """Commit on success; roll back and re-raise on any error."""
        try:
            yield
            await self.session.commit()
        except StaleDataError as e:
            await self.session.rollback()
            raise StateConflictError(
                "Payroll item was modified concurrently; retry the operation"
            ) from e
        except Exception:
            await self.session.rollback()
            raise

    async def get_run(
        self, payroll_run_id: UUID, for_update: bool = False
    ) -> PayrollRun | None:
        """Load a payroll run with its items."""
        stmt = (
            select(PayrollRun)
            .where(PayrollRun.payroll_run_id == payroll_run_id)
            .options(selectinload(PayrollRun.items))
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _require_run(self, payroll_run_id: UUID, for_update: bool = False) -> PayrollRun:
        run = await self.get_run(payroll_run_id, for_update=for_update)
        if run is None:
            raise NotFoundError("Payroll run", payroll_run_id)
        return run

    async def _require_item(self, payroll_item_id: UUID) -> PayrollItem:
        result = await self.session.execute(
            select(PayrollItem)
            .where(PayrollItem.payroll_item_id == payroll_item_id)
            .options(selectinload(PayrollItem.run))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise NotFoundError("Payroll item", payroll_item_id)
        return item

    async def _context_for_run(self, run: PayrollRun) -> PeriodContext:
        company = await self.session.get(Company, run.company_id)
        if company is None:
            raise NotFoundError("Company", run.company_id)
        return await self.engine.build_context(
            company, run.department_id, run.period_year, run.period_month
        )

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    async def create_run(
        self,
        company_id: UUID,
        period_year: int,
        period_month: int,
        department_id: UUID | None = None,
        actor: str | None = None,
    ) -> CreateRunResult:
        """Create a draft run and compute an item per payable employee.

        Employees without a resolvable basic pay are skipped and reported
        in the result rather than failing the run.

        Raises:
            ValidationError: bad period or department outside the company.
            NotFoundError: company does not exist.
            StateConflictError: a run already exists for the scope and period.
        """
        if not isinstance(period_month, int) or not 1 <= period_month <= 12:
            raise ValidationError("period_month must be between 1 and 12", field="period_month")
        if not isinstance(period_year, int) or not 1900 <= period_year <= 9999:
            raise ValidationError("period_year is out of range", field="period_year")

        async with self._transaction():
            company = await self.session.get(Company, company_id)
            if company is None:
                raise NotFoundError("Company", company_id)
            if department_id is not None:
                department = await self.session.get(Department, department_id)
                if department is None or department.company_id != company_id:
                    raise ValidationError(
                        f"Department {department_id} does not belong to company {company_id}",
                        field="department_id",
                    )

            scope_key = str(department_id) if department_id else COMPANY_SCOPE
            existing = await self.session.execute(
                select(PayrollRun.payroll_run_id, PayrollRun.status).where(
                    PayrollRun.company_id == company_id,
                    PayrollRun.scope_key == scope_key,
                    PayrollRun.period_year == period_year,
                    PayrollRun.period_month == period_month,
                )
            )
            row = existing.first()
            if row is not None:
                raise StateConflictError(
                    f"Payroll run for {period_year:04d}-{period_month:02d} already exists "
                    f"({row.payroll_run_id})",
                    current_state=row.status,
                )

            ctx = await self.engine.build_context(company, department_id, period_year, period_month)
            run = PayrollRun(
                payroll_run_id=uuid4(),
                company_id=company_id,
                department_id=department_id,
                scope_key=scope_key,
                period_year=period_year,
                period_month=period_month,
                period_start=ctx.period_start,
                period_end=ctx.period_end,
                status=PayrollRunStatus.DRAFT.value,
                items=[],
            )
            self.session.add(run)
            try:
                await self.session.flush()
            except IntegrityError as e:
                raise StateConflictError(
                    f"Payroll run for {ctx.period_label} already exists"
                ) from e

            result = CreateRunResult(run=run, items=[])
            for employee in await self._payable_employees(ctx):
                item = await self._build_item(ctx, run, employee, result)
                if item is not None:
                    result.items.append(item)

            await self.session.flush()
            self._apply_run_totals(run, result.items)
            await self._record_audit(
                company_id=company_id,
                entity_type="payroll_run",
                entity_id=run.payroll_run_id,
                action="created",
                actor=actor,
                after={
                    "period": run.period_label,
                    "scope": scope_key,
                    "employee_count": run.employee_count,
                    "skipped": [str(s.employee_id) for s in result.skipped],
                    "carried_forward": [str(e) for e in result.carried_forward],
                },
            )

        logger.info(
            "Created payroll run %s for %s: %d item(s), %d skipped",
            run.payroll_run_id,
            run.period_label,
            len(result.items),
            len(result.skipped),
        )
        return result

    async def _payable_employees(self, ctx: PeriodContext) -> list[Employee]:
        stmt = select(Employee).where(Employee.company_id == ctx.company.company_id)
        if ctx.department_id is not None:
            stmt = stmt.where(Employee.department_id == ctx.department_id)
        result = await self.session.execute(stmt.order_by(Employee.employee_number))
        return [
            e for e in result.scalars().all() if e.is_payable_in(ctx.period_start, ctx.period_end)
        ]

    async def _build_item(
        self,
        ctx: PeriodContext,
        run: PayrollRun,
        employee: Employee,
        result: CreateRunResult,
    ) -> PayrollItem | None:
        try:
            scheme = get_scheme(employee.pay_scheme)
        except ValidationError as e:
            self._skip(result, employee, e.message)
            return None

        resolved = await self.engine.policy_for(ctx, employee.department_id)
        try:
            basic = await self.engine.rate_resolver.resolve_basic_pay(
                employee.employee_id,
                ctx.period_year,
                ctx.period_month,
                ctx.period_start,
                ctx.period_end,
                carry_forward=resolved.config.features.carry_forward_basic,
            )
        except BasicPayUnresolvedError as e:
            self._skip(result, employee, e.message)
            return None

        item = PayrollItem(
            payroll_item_id=uuid4(),
            employee_id=employee.employee_id,
            pay_scheme=scheme.tag,
            basic_pay=basic.amount,
            basic_pay_carried_forward=basic.carried_forward,
            bonus=ZERO,
            other_deductions=ZERO,
            is_locked=False,
        )
        run.items.append(item)
        await self.engine.compute_item(ctx, employee, item)
        if basic.carried_forward:
            result.carried_forward.append(employee.employee_id)
        return item

    @staticmethod
    def _skip(result: CreateRunResult, employee: Employee, reason: str) -> None:
        logger.warning("Skipping employee %s: %s", employee.employee_number, reason)
        result.skipped.append(
            SkippedEmployee(
                employee_id=employee.employee_id,
                employee_number=employee.employee_number,
                reason=reason,
            )
        )

    # ------------------------------------------------------------------
    # recalc
    # ------------------------------------------------------------------

    async def recalc_item(self, payroll_item_id: UUID) -> PayrollItem:
        """Re-derive one item's computed fields; manual fields are kept.

        Raises:
            NotFoundError: item does not exist.
            StateConflictError: run is finalized or the item is locked.
        """
        async with self._transaction():
            item = await self._require_item(payroll_item_id)
            run = item.run
            self._require_editable(run, item, "recalculate item")

            ctx = await self._context_for_run(run)
            await self._recompute(ctx, item)
            await self.session.flush()
            await self._refresh_run_totals(run)
        return item

    async def recalc_all(self, payroll_run_id: UUID, actor: str | None = None) -> RecalcSummary:
        """Re-derive every item of a draft run.

        Items are row-locked for the transaction so a concurrent manual
        adjustment waits rather than being overwritten.
        """
        async with self._transaction():
            run = await self._require_run(payroll_run_id, for_update=True)
            PayrollRunStateMachine.require_items_mutable(run, "recalculate")
            await self.session.execute(
                select(PayrollItem.payroll_item_id)
                .where(PayrollItem.payroll_run_id == payroll_run_id)
                .with_for_update()
            )

            ctx = await self._context_for_run(run)
            recalculated = 0
            for item in run.items:
                if await self._recompute(ctx, item):
                    recalculated += 1
            await self.session.flush()
            self._apply_run_totals(run, run.items)
            await self._record_audit(
                company_id=run.company_id,
                entity_type="payroll_run",
                entity_id=run.payroll_run_id,
                action="recalculated",
                actor=actor,
                after={"recalculated": recalculated, "total": len(run.items)},
            )

        logger.info(
            "Recalculated %d of %d item(s) in payroll run %s",
            recalculated,
            len(run.items),
            payroll_run_id,
        )
        return RecalcSummary(recalculated=recalculated, total=len(run.items))

    async def _recompute(self, ctx: PeriodContext, item: PayrollItem) -> bool:
        employee = await self.session.get(Employee, item.employee_id)
        if employee is None:
            logger.warning(
                "Employee %s no longer exists; item %s left unchanged",
                item.employee_id,
                item.payroll_item_id,
            )
            return False
        await self.engine.compute_item(ctx, employee, item)
        return True

    @staticmethod
    def _require_editable(run: PayrollRun, item: PayrollItem, action: str) -> None:
        PayrollRunStateMachine.require_items_mutable(run, action)
        if item.is_locked:
            raise StateConflictError(
                f"Cannot {action}: payroll item {item.payroll_item_id} is locked",
                current_state="locked",
            )

    # ------------------------------------------------------------------
    # finalize
    # ------------------------------------------------------------------

    async def finalize_run(self, payroll_run_id: UUID, actor: str | None = None) -> PayrollRun:
        """Finalize a draft run.

        In one transaction: validate status, recompute every item against
        current inputs and policy, claim the transition with a conditional
        update, link period claims, re-validate every item, lock items and
        persist totals. A second call fails with StateConflictError and has
        no side effects.
        """
        async with self._transaction():
            run = await self._require_run(payroll_run_id, for_update=True)
            if run.status != PayrollRunStatus.DRAFT:
                raise InvalidTransitionError(
                    run.status,
                    PayrollRunStatus.FINALIZED,
                    "Payroll run is already finalized",
                )
            await self.session.execute(
                select(PayrollItem.payroll_item_id)
                .where(PayrollItem.payroll_run_id == payroll_run_id)
                .with_for_update()
            )

            ctx = await self._context_for_run(run)
            for item in run.items:
                await self._recompute(ctx, item)

            run_policy = await self.engine.policy_for(ctx, run.department_id)
            features = run_policy.config.features
            errors = PayrollRunStateMachine.validate_run_for_finalize(
                run, review_clear_required=features.require_review_clear
            )
            if errors:
                raise InvalidTransitionError(
                    run.status, PayrollRunStatus.FINALIZED, "; ".join(errors)
                )

            finalized_at = datetime.now(timezone.utc)
            result = await self.session.execute(
                update(PayrollRun)
                .where(
                    PayrollRun.payroll_run_id == payroll_run_id,
                    PayrollRun.status == PayrollRunStatus.DRAFT.value,
                )
                .values(status=PayrollRunStatus.FINALIZED.value, finalized_at=finalized_at)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise StateConflictError(
                    f"Payroll run {payroll_run_id} changed status during finalize",
                    current_state=PayrollRunStatus.FINALIZED.value,
                )
            run.status = PayrollRunStatus.FINALIZED.value
            run.finalized_at = finalized_at

            linked = 0
            if features.link_claims_on_finalize:
                linked = await self.claim_linking.link_period_claims(run, run.items)
                for item in run.items:
                    linked_total = await self.claim_linking.linked_total(item.payroll_item_id)
                    if linked_total != item.claims_amount:
                        await self._recompute(ctx, item)

            for item in run.items:
                resolved = await self.engine.policy_for(ctx, await self._department_of(item))
                ItemBuilder.validate(item, get_scheme(item.pay_scheme), resolved.config)
                item.is_locked = True

            await self.session.flush()
            self._apply_run_totals(run, run.items)
            await self._record_audit(
                company_id=run.company_id,
                entity_type="payroll_run",
                entity_id=run.payroll_run_id,
                action="status_change:draft:finalized",
                actor=actor,
                after={
                    "claims_linked": linked,
                    "total_net": str(run.total_net),
                    "employee_count": run.employee_count,
                },
            )

        logger.info("Finalized payroll run %s (%d claim(s) linked)", payroll_run_id, linked)
        return run

    async def _department_of(self, item: PayrollItem) -> UUID | None:
        employee = await self.session.get(Employee, item.employee_id)
        return employee.department_id if employee is not None else None

    # ------------------------------------------------------------------
    # delete
    # ------------------------------------------------------------------

    async def delete_run(self, payroll_run_id: UUID, actor: str | None = None) -> None:
        """Delete a draft run and all of its items.

        Raises:
            NotFoundError: run does not exist.
            StateConflictError: run is finalized or claims are linked to it.
        """
        async with self._transaction():
            run = await self._require_run(payroll_run_id, for_update=True)
            if not PayrollRunStateMachine.can_delete(run.status):
                raise StateConflictError(
                    f"Cannot delete payroll run {payroll_run_id}: it is {run.status}",
                    current_state=run.status,
                )
            if await self.claim_linking.count_linked_to_run(run):
                raise StateConflictError(
                    f"Cannot delete payroll run {payroll_run_id}: claims are linked to its items",
                    current_state=run.status,
                )

            company_id = run.company_id
            period = run.period_label
            item_count = len(run.items)

            await self.session.execute(
                delete(PayrollItem)
                .where(PayrollItem.payroll_run_id == payroll_run_id)
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(
                delete(PayrollRun)
                .where(
                    PayrollRun.payroll_run_id == payroll_run_id,
                    PayrollRun.status == PayrollRunStatus.DRAFT.value,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise StateConflictError(
                    f"Payroll run {payroll_run_id} changed status during delete"
                )
            self.session.expunge(run)

            await self._record_audit(
                company_id=company_id,
                entity_type="payroll_run",
                entity_id=payroll_run_id,
                action="deleted",
                actor=actor,
                before={"period": period, "employee_count": item_count},
            )

        logger.info("Deleted draft payroll run %s (%s)", payroll_run_id, period)

    # ------------------------------------------------------------------
    # manual adjustment
    # ------------------------------------------------------------------

    async def adjust_item(
        self,
        payroll_item_id: UUID,
        changes: ItemAdjustment,
        actor: str,
        reason: str,
    ) -> PayrollItem:
        """Apply an audited manual edit and re-derive the item.

        Only bonus, other_deductions, basic_pay and the two remark fields
        may be edited. The edit is recorded as an audit event and logged
        on the audit logger.

        Raises:
            ValidationError: no changes, no reason, or a negative amount.
            StateConflictError: run is finalized or the item is locked.
        """
        updates = changes.changed_fields()
        if not updates:
            raise ValidationError("No changes supplied", field="changes")
        if not reason or not reason.strip():
            raise ValidationError("A reason is required for manual adjustments", field="reason")
        for name in MANUAL_MONEY_FIELDS:
            value = updates.get(name)
            if value is not None and Decimal(value) < 0:
                raise ValidationError(f"{name} must not be negative", field=name)

        async with self._transaction():
            item = await self._require_item(payroll_item_id)
            run = item.run
            self._require_editable(run, item, "adjust item")

            before = _manual_snapshot(item)
            for name, value in updates.items():
                if name in MANUAL_MONEY_FIELDS:
                    value = Decimal(value)
                setattr(item, name, value)
            if "basic_pay" in updates:
                item.basic_pay_carried_forward = False

            ctx = await self._context_for_run(run)
            await self._recompute(ctx, item)
            await self.session.flush()
            await self._refresh_run_totals(run)

            after = _manual_snapshot(item)
            await self._record_audit(
                company_id=run.company_id,
                entity_type="payroll_item",
                entity_id=item.payroll_item_id,
                action="manual_adjustment",
                actor=actor,
                reason=reason,
                before=before,
                after=after,
            )

        audit_logger.info(
            "Manual adjustment of payroll item %s by %s (%s): %s",
            payroll_item_id,
            actor,
            reason,
            ", ".join(f"{k}: {before[k]} -> {after[k]}" for k in updates),
        )
        return item

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _refresh_run_totals(self, run: PayrollRun) -> None:
        result = await self.session.execute(
            select(PayrollItem).where(PayrollItem.payroll_run_id == run.payroll_run_id)
        )
        self._apply_run_totals(run, list(result.scalars().all()))

    @staticmethod
    def _apply_run_totals(run: PayrollRun, items: list[PayrollItem]) -> None:
        totals = ItemBuilder.sum_run_totals(items)
        run.total_gross = totals.total_gross
        run.total_deductions = totals.total_deductions
        run.total_net = totals.total_net
        run.total_employer_cost = totals.total_employer_cost
        run.employee_count = totals.employee_count
        run.has_review_flags = any(item.review_flags for item in items)

    async def _record_audit(
        self,
        company_id: UUID | None,
        entity_type: str,
        entity_id: UUID,
        action: str,
        actor: str | None = None,
        reason: str | None = None,
        before: dict | None = None,
        after: dict | None = None,
    ) -> None:
        """Record an audit event."""
        self.session.add(
            AuditEvent(
                audit_event_id=uuid4(),
                company_id=company_id,
                actor=actor,
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                reason=reason,
                before_json=before,
                after_json=after,
            )
        )

