"""Payroll calculation engine - per-employee item computation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from workforce_payroll.calculators.item_builder import ItemBuilder
from workforce_payroll.calculators.money import round_money, to_decimal
from workforce_payroll.calculators.outstation import OutstationEngine
from workforce_payroll.calculators.policy_resolver import PolicyResolver, ResolvedPolicy
from workforce_payroll.calculators.rate_resolver import RateResolver, earlier_period
from workforce_payroll.calculators.rate_tables import StatutoryTables
from workforce_payroll.calculators.schemes import get_scheme
from workforce_payroll.calculators.statutory import StatutoryCalculator
from workforce_payroll.calculators.table_loader import StatutoryTableLoader
from workforce_payroll.calculators.types import (
    ZERO,
    AttendanceDay,
    EarningInputs,
    EmployeeProfile,
    GeoPoint,
    OutstationResult,
    OvertimeResult,
    StatutoryResult,
    YtdAccumulators,
)
from workforce_payroll.models import (
    AttendanceRecord,
    ClaimRecord,
    CommissionRecord,
    Company,
    Employee,
    LeaveRecord,
    PayrollItem,
    PayrollRun,
)

if TYPE_CHECKING:
    from workforce_payroll.providers.base import ActivitySource

logger = logging.getLogger(__name__)


@dataclass
class PeriodContext:
    """Everything shared by the items of one computation.

    Policies and statutory tables are resolved once per computation and
    cached here, never across computations.
    """

    company: Company
    department_id: UUID | None
    period_year: int
    period_month: int
    period_start: date
    period_end: date
    holidays: frozenset[date] = frozenset()
    policies: dict[UUID | None, ResolvedPolicy] = field(default_factory=dict)
    tables: dict[str, StatutoryTables] = field(default_factory=dict)

    @property
    def period_label(self) -> str:
        return f"{self.period_year:04d}-{self.period_month:02d}"


@dataclass
class ItemComputation:
    """Detail behind one computed item, for callers that report it."""

    item: PayrollItem
    policy: ResolvedPolicy
    overtime: OvertimeResult
    statutory: StatutoryResult
    outstation: OutstationResult | None = None
    review_flags: list[str] = field(default_factory=list)


def month_bounds(period_year: int, period_month: int) -> tuple[date, date]:
    start = date(period_year, period_month, 1)
    if period_month == 12:
        end = date(period_year, 12, 31)
    else:
        end = date(period_year, period_month + 1, 1) - timedelta(days=1)
    return start, end


def weekday_overlap(start: date, end: date, period_start: date, period_end: date) -> int:
    """Mon-Fri days in the intersection of [start, end] and the period."""
    first = max(start, period_start)
    last = min(end, period_end)
    days = 0
    current = first
    while current <= last:
        if current.weekday() < 5:
            days += 1
        current += timedelta(days=1)
    return days


def employee_home_base(employee: Employee, policy: ResolvedPolicy) -> GeoPoint | None:
    point = GeoPoint.parse(employee.home_base_lat, employee.home_base_lng)
    if point is None and policy.config.outstation.default_home_base is not None:
        point = policy.config.outstation.default_home_base.point
    return point


class PayrollEngine:
    """Computes payroll items.

    Calculation pipeline (stable order per employee):
    1) Resolve scheme and policy for the employee's department
    2) Load attendance, commissions, claims and unpaid leave
    3) Travel allowance for outstation schemes
    4) Earnings components via the pay scheme
    5) Statutory base and contributions with YTD accumulators
    6) Deductions, net pay and employer cost
    7) Validate gross/base/net invariants
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
        self.rate_resolver = RateResolver(session)
        self.table_loader = StatutoryTableLoader(session)

    async def build_context(
        self,
        company: Company,
        department_id: UUID | None,
        period_year: int,
        period_month: int,
    ) -> PeriodContext:
        period_start, period_end = month_bounds(period_year, period_month)
        holidays = await self.policy_resolver.load_holidays(
            company.company_id, period_start, period_end
        )
        return PeriodContext(
            company=company,
            department_id=department_id,
            period_year=period_year,
            period_month=period_month,
            period_start=period_start,
            period_end=period_end,
            holidays=holidays,
        )

    async def policy_for(self, ctx: PeriodContext, department_id: UUID | None) -> ResolvedPolicy:
        if department_id not in ctx.policies:
            ctx.policies[department_id] = await self.policy_resolver.resolve_policy(
                ctx.company.company_id, department_id
            )
        return ctx.policies[department_id]

    async def tables_for(self, ctx: PeriodContext, jurisdiction: str) -> StatutoryTables:
        if jurisdiction not in ctx.tables:
            ctx.tables[jurisdiction] = await self.table_loader.load(jurisdiction, ctx.period_end)
        return ctx.tables[jurisdiction]

    async def compute_item(
        self, ctx: PeriodContext, employee: Employee, item: PayrollItem
    ) -> ItemComputation:
        """Re-derive every derived field of item from current source data.

        item.basic_pay, bonus, other_deductions and the remark fields are
        read, never written.
        """
        # 1) Scheme and policy
        scheme = get_scheme(item.pay_scheme)
        resolved = await self.policy_for(ctx, employee.department_id)
        policy = resolved.config
        flags: list[str] = []
        if resolved.is_default:
            flags.append("policy_default")

        # 2) Source data
        records = await self.load_attendance(employee.employee_id, ctx.period_start, ctx.period_end)
        days = [AttendanceDay.from_record(r) for r in records]
        commission = await self._load_commission_total(
            employee.employee_id, ctx.period_year, ctx.period_month
        )
        claims = await self._load_claims_total(
            employee.employee_id, item.payroll_item_id, ctx.period_start, ctx.period_end
        )

        # 3) Travel allowance
        outstation: OutstationResult | None = None
        if scheme.uses_outstation:
            engine = OutstationEngine(
                policy.outstation, self.activity_source, self.lookup_timeout
            )
            outstation = await engine.compute_eligible_days(
                employee.activity_ref or employee.employee_number,
                days,
                employee_home_base(employee, resolved),
            )
            if outstation.source_unavailable:
                flags.append("outstation_source_unavailable")

        # 4) Earnings
        earnings = scheme.compute_earnings(
            EarningInputs(
                basic_pay=item.basic_pay,
                attendance=days,
                holidays=ctx.holidays,
                commission_amount=commission,
                claims_amount=claims,
                bonus=item.bonus or ZERO,
                outstation=outstation,
            ),
            policy,
        )
        ItemBuilder.apply_components(item, earnings.components)
        item.ot_hours = earnings.overtime.hours
        item.extra_days = earnings.overtime.extra_days
        item.outstation_days = earnings.outstation_days

        # 5) Statutory
        item.statutory_base = scheme.statutory_base(
            {name: getattr(item, name) for name in earnings.components}, policy
        )
        jurisdiction = policy.statutory.jurisdiction or ctx.company.jurisdiction
        calculator = StatutoryCalculator(
            await self.tables_for(ctx, jurisdiction), policy.statutory
        )
        ytd = await self._load_ytd(employee.employee_id, ctx.period_year, ctx.period_month)
        statutory = calculator.compute(
            item.statutory_base,
            EmployeeProfile.from_employee(employee),
            ytd,
            as_of=ctx.period_end,
            period_month=ctx.period_month,
        )
        ItemBuilder.apply_statutory(item, statutory)
        if statutory.profile_incomplete:
            flags.append("profile_incomplete")
            logger.warning(
                "Employee %s profile incomplete (%s); defaults applied",
                employee.employee_number,
                ", ".join(statutory.missing_fields),
            )
        flags.extend(f"statutory_table_missing:{c.value}" for c in statutory.missing_tables)

        # 6) Deductions and totals
        leave_days = await self._load_unpaid_leave_days(
            employee.employee_id, ctx.period_start, ctx.period_end
        )
        item.unpaid_leave_days = leave_days
        item.unpaid_leave_deduction = ZERO
        if policy.features.unpaid_leave_deduction and leave_days:
            standard_days = policy.overtime_for(scheme.tag).standard_days_per_month
            deduction = round_money(item.basic_pay / Decimal(standard_days) * leave_days)
            item.unpaid_leave_deduction = min(deduction, item.basic_pay)
        ItemBuilder.apply_totals(item)

        if item.basic_pay_carried_forward:
            flags.append("basic_pay_carried_forward")
        if item.net_pay < 0:
            flags.append("negative_net_pay")
        previous_net = await self._load_previous_net(
            employee.employee_id, ctx.period_year, ctx.period_month
        )
        if previous_net is not None and previous_net > 0:
            variance = abs(item.net_pay - previous_net) / previous_net
            if variance > policy.features.net_variance_threshold:
                flags.append("net_pay_variance")

        # 7) Invariants
        ItemBuilder.validate(item, scheme, policy)

        item.review_flags = flags
        return ItemComputation(
            item=item,
            policy=resolved,
            overtime=earnings.overtime,
            statutory=statutory,
            outstation=outstation,
            review_flags=flags,
        )

    async def load_attendance(
        self, employee_id: UUID, period_start: date, period_end: date
    ) -> list[AttendanceRecord]:
        result = await self.session.execute(
            select(AttendanceRecord)
            .where(
                AttendanceRecord.employee_id == employee_id,
                AttendanceRecord.work_date >= period_start,
                AttendanceRecord.work_date <= period_end,
            )
            .order_by(AttendanceRecord.work_date)
        )
        return list(result.scalars().all())

    async def _load_commission_total(
        self, employee_id: UUID, period_year: int, period_month: int
    ) -> Decimal:
        result = await self.session.execute(
            select(func.coalesce(func.sum(CommissionRecord.amount), 0)).where(
                CommissionRecord.employee_id == employee_id,
                CommissionRecord.period_year == period_year,
                CommissionRecord.period_month == period_month,
                CommissionRecord.status == "active",
            )
        )
        return round_money(to_decimal(result.scalar_one()))

    async def _load_claims_total(
        self,
        employee_id: UUID,
        payroll_item_id: UUID | None,
        period_start: date,
        period_end: date,
    ) -> Decimal:
        """Approved claims in the period not linked elsewhere."""
        unlinked_or_ours = ClaimRecord.linked_payroll_item_id.is_(None)
        if payroll_item_id is not None:
            unlinked_or_ours = unlinked_or_ours | (
                ClaimRecord.linked_payroll_item_id == payroll_item_id
            )
        result = await self.session.execute(
            select(func.coalesce(func.sum(ClaimRecord.amount), 0)).where(
                ClaimRecord.employee_id == employee_id,
                ClaimRecord.status == "approved",
                ClaimRecord.claim_date >= period_start,
                ClaimRecord.claim_date <= period_end,
                unlinked_or_ours,
            )
        )
        return round_money(to_decimal(result.scalar_one()))

    async def _load_unpaid_leave_days(
        self, employee_id: UUID, period_start: date, period_end: date
    ) -> int:
        result = await self.session.execute(
            select(LeaveRecord).where(
                LeaveRecord.employee_id == employee_id,
                LeaveRecord.is_paid.is_(False),
                LeaveRecord.status == "approved",
                LeaveRecord.start_date <= period_end,
                LeaveRecord.end_date >= period_start,
            )
        )
        return sum(
            weekday_overlap(leave.start_date, leave.end_date, period_start, period_end)
            for leave in result.scalars().all()
        )

    async def _load_ytd(
        self, employee_id: UUID, period_year: int, period_month: int
    ) -> YtdAccumulators:
        """Sums over finalized items earlier in the same calendar year."""
        result = await self.session.execute(
            select(
                func.coalesce(func.sum(PayrollItem.statutory_base), 0),
                func.coalesce(func.sum(PayrollItem.retirement_ee), 0),
                func.coalesce(func.sum(PayrollItem.withholding_tax), 0),
            )
            .join(PayrollRun, PayrollRun.payroll_run_id == PayrollItem.payroll_run_id)
            .where(
                PayrollItem.employee_id == employee_id,
                PayrollRun.status == "finalized",
                PayrollRun.period_year == period_year,
                PayrollRun.period_month < period_month,
            )
        )
        wages, retirement, withholding = result.one()
        return YtdAccumulators(
            wages=round_money(to_decimal(wages)),
            retirement_contribution=round_money(to_decimal(retirement)),
            withholding=round_money(to_decimal(withholding)),
        )

    async def _load_previous_net(
        self, employee_id: UUID, period_year: int, period_month: int
    ) -> Decimal | None:
        result = await self.session.execute(
            select(PayrollItem.net_pay)
            .join(PayrollRun, PayrollRun.payroll_run_id == PayrollItem.payroll_run_id)
            .where(
                PayrollItem.employee_id == employee_id,
                PayrollRun.status == "finalized",
                earlier_period(period_year, period_month),
            )
            .order_by(PayrollRun.period_year.desc(), PayrollRun.period_month.desc())
            .limit(1)
        )
        value = result.scalar_one_or_none()
        return to_decimal(value) if value is not None else None
