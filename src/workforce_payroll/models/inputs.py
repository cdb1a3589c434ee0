"""Source records consumed by payroll assembly.

Attendance, commission, claim and leave rows are owned by other
subsystems. The engine reads them, infers the outstation flag on
attendance, and links approved claims to payroll items at finalize.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from workforce_payroll.models.base import Base, TimestampMixin


class AttendanceRecord(Base, TimestampMixin):
    """One clock-in/clock-out record per employee per work date."""

    __tablename__ = "attendance_record"

    attendance_record_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    clock_in_at: Mapped[datetime | None] = mapped_column(nullable=True)
    clock_out_at: Mapped[datetime | None] = mapped_column(nullable=True)
    total_worked_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    clock_in_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    clock_in_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    clock_out_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    clock_out_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_outstation: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    outstation_inferred: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("employee_id", "work_date", name="attendance_employee_date_unique"),
    )

    @property
    def worked_minutes(self) -> int:
        """Stored total, else derived from clock timestamps, else zero."""
        if self.total_worked_minutes is not None:
            return self.total_worked_minutes
        if self.clock_in_at and self.clock_out_at and self.clock_out_at > self.clock_in_at:
            return int((self.clock_out_at - self.clock_in_at).total_seconds() // 60)
        return 0


class CommissionRecord(Base, TimestampMixin):
    """Commission earned by an employee for a pay period."""

    __tablename__ = "commission_record"

    commission_record_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    period_year: Mapped[int] = mapped_column(Integer, nullable=False)
    period_month: Mapped[int] = mapped_column(Integer, nullable=False)
    commission_type: Mapped[str] = mapped_column(String, nullable=False, default="sales")
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")

    __table_args__ = (
        CheckConstraint("status IN ('active', 'void')", name="commission_status_check"),
    )


class ClaimRecord(Base, TimestampMixin):
    """Expense claim. linked_payroll_item_id is written at most once."""

    __tablename__ = "claim_record"

    claim_record_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    claim_date: Mapped[date] = mapped_column(Date, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False, default="general")
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    linked_payroll_item_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payroll_item.payroll_item_id", ondelete="SET NULL"),
        nullable=True,
    )
    linked_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="claim_status_check",
        ),
        CheckConstraint("amount >= 0", name="claim_amount_check"),
    )


class LeaveRecord(Base, TimestampMixin):
    """Leave taken by an employee. Only approved unpaid leave is deducted."""

    __tablename__ = "leave_record"

    leave_record_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="approved")

    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="leave_dates_check"),
    )
