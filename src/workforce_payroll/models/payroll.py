"""Payroll run, item and audit models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workforce_payroll.models.base import Base, JsonType, TimestampMixin

if TYPE_CHECKING:
    from workforce_payroll.models.employee import Employee

ZERO = Decimal("0")


class PayrollRun(Base, TimestampMixin):
    """Payroll run for one company scope and calendar month.

    Totals are derived from items and are only written by the run service.
    """

    __tablename__ = "payroll_run"

    payroll_run_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    department_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("department.department_id"),
        nullable=True,
    )
    # "*" for company-wide runs, otherwise the department id; NULLs would
    # not participate in the unique constraint.
    scope_key: Mapped[str] = mapped_column(String, nullable=False)
    period_year: Mapped[int] = mapped_column(Integer, nullable=False)
    period_month: Mapped[int] = mapped_column(Integer, nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")

    total_gross: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    total_deductions: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    total_net: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    total_employer_cost: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    employee_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    has_review_flags: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    finalized_at: Mapped[datetime | None] = mapped_column(nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "company_id",
            "scope_key",
            "period_year",
            "period_month",
            name="payroll_run_scope_period_unique",
        ),
        CheckConstraint("status IN ('draft', 'finalized')", name="payroll_run_status_check"),
        CheckConstraint("period_month BETWEEN 1 AND 12", name="payroll_run_month_check"),
    )

    items: Mapped[list[PayrollItem]] = relationship(
        back_populates="run",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def period_label(self) -> str:
        return f"{self.period_year:04d}-{self.period_month:02d}"


class PayrollItem(Base, TimestampMixin):
    """One employee's computed pay for a run.

    Manual fields (bonus, other_deductions, remarks, deduction_remarks and
    basic_pay once set) survive recalculation; every other money column is
    derived.
    """

    __tablename__ = "payroll_item"

    payroll_item_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.payroll_run_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    pay_scheme: Mapped[str] = mapped_column(String, nullable=False)

    # Earnings
    basic_pay: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    fixed_allowance: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    commission_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    ot_hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=ZERO)
    ot_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    extra_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    extra_days_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    outstation_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    travel_allowance: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    bonus: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    claims_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    # Deductions
    unpaid_leave_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unpaid_leave_deduction: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    other_deductions: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    # Statutory
    gross: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    statutory_base: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    retirement_ee: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    retirement_er: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    social_security_ee: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    social_security_er: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    employment_insurance_ee: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    employment_insurance_er: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    withholding_tax: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    total_deductions: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    net_pay: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    employer_cost: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    # Review state
    profile_incomplete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    basic_pay_carried_forward: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    review_flags: Mapped[list[str]] = mapped_column(JsonType, nullable=False, default=list)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    deduction_remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("payroll_run_id", "employee_id", name="payroll_item_run_employee_unique"),
    )
    __mapper_args__ = {"version_id_col": version_id}

    run: Mapped[PayrollRun] = relationship(back_populates="items")
    employee: Mapped[Employee] = relationship()


class AuditEvent(Base, TimestampMixin):
    """Audit trail entry."""

    __tablename__ = "audit_event"

    audit_event_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=True,
    )
    actor: Mapped[str | None] = mapped_column(String, nullable=True)
    entity_type: Mapped[str] = mapped_column(String, nullable=False)
    entity_id: Mapped[UUID] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    before_json: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    after_json: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
