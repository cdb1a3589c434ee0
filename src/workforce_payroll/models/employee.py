"""Employee and pay rate models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workforce_payroll.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from workforce_payroll.models.company import Company, Department


class Employee(Base, TimestampMixin):
    """Employee record with the eligibility profile read by the engine.

    Profile columns are nullable: the statutory calculator fills gaps with
    conservative defaults and flags the payroll item for review.
    """

    __tablename__ = "employee"

    employee_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    department_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("department.department_id"),
        nullable=True,
    )
    employee_number: Mapped[str] = mapped_column(String, nullable=False)
    full_name: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")
    hire_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    termination_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    pay_scheme: Mapped[str] = mapped_column(String, nullable=False, default="office")

    # Eligibility profile
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    residency_status: Mapped[str | None] = mapped_column(String, nullable=True)
    marital_status: Mapped[str | None] = mapped_column(String, nullable=True)
    spouse_working: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    dependent_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_disabled: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    spouse_disabled: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    contribution_type_override: Mapped[str | None] = mapped_column(String, nullable=True)

    # Outstation
    home_base_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    home_base_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    activity_ref: Mapped[str | None] = mapped_column(String, nullable=True)

    # Bank transfer
    bank_name: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_account_number: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        UniqueConstraint("company_id", "employee_number", name="employee_company_number_unique"),
        CheckConstraint(
            "status IN ('active', 'resigned', 'terminated')",
            name="employee_status_check",
        ),
    )

    # Relationships
    company: Mapped[Company] = relationship(back_populates="employees")
    department: Mapped[Department | None] = relationship()
    pay_rates: Mapped[list[PayRate]] = relationship(back_populates="employee")

    def is_payable_in(self, period_start: date, period_end: date) -> bool:
        """Active employees, or leavers whose last day falls in the period."""
        if self.hire_date and self.hire_date > period_end:
            return False
        if self.status == "active":
            return True
        return self.termination_date is not None and self.termination_date >= period_start


class PayRate(Base, TimestampMixin):
    """Effective-dated basic monthly pay."""

    __tablename__ = "pay_rate"

    pay_rate_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="pay_rate_amount_check"),
    )

    employee: Mapped[Employee] = relationship(back_populates="pay_rates")

    def is_active_on(self, check_date: date) -> bool:
        """Check if rate is active on a given date."""
        if check_date < self.start_date:
            return False
        if self.end_date and check_date > self.end_date:
            return False
        return True
