"""Company, department and tenant configuration models."""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import Boolean, Date, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workforce_payroll.models.base import Base, JsonType, TimestampMixin

if TYPE_CHECKING:
    from workforce_payroll.models.employee import Employee


class Company(Base, TimestampMixin):
    """Tenant company. Each company runs payroll independently."""

    __tablename__ = "company"

    company_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    jurisdiction: Mapped[str] = mapped_column(String, nullable=False, default="default")

    # Relationships
    departments: Mapped[list[Department]] = relationship(back_populates="company")
    employees: Mapped[list[Employee]] = relationship(back_populates="company")


class Department(Base, TimestampMixin):
    """Department or outlet within a company."""

    __tablename__ = "department"

    department_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("company_id", "name", name="department_company_name_unique"),
    )

    company: Mapped[Company] = relationship(back_populates="departments")


class PublicHoliday(Base):
    """Designated holiday for a company; drives holiday OT multipliers."""

    __tablename__ = "public_holiday"

    holiday_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    holiday_date: Mapped[date] = mapped_column(Date, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("company_id", "holiday_date", name="public_holiday_company_date_unique"),
    )


class PayrollPolicy(Base, TimestampMixin):
    """Versioned OT/allowance/statutory policy for a company or department.

    payload_json is validated into a PolicyConfig when resolved. A row with
    department_id set overrides the company-wide row for that department.
    """

    __tablename__ = "payroll_policy"

    payroll_policy_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    department_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("department.department_id", ondelete="CASCADE"),
        nullable=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    payload_json: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "company_id", "department_id", "version", name="payroll_policy_scope_version_unique"
        ),
    )


class StatutoryTable(Base, TimestampMixin):
    """Externally supplied rate table for one statutory category.

    category is one of retirement_fund, social_security,
    employment_insurance or income_tax. The payload structure is described
    on the table classes in calculators.rate_tables.
    """

    __tablename__ = "statutory_table"

    statutory_table_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    jurisdiction: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    effective_start: Mapped[date] = mapped_column(Date, nullable=False)
    effective_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    payload_json: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "jurisdiction", "category", "effective_start", name="statutory_table_effective_unique"
        ),
    )

    def is_effective_on(self, check_date: date) -> bool:
        """Check if table applies on a given date."""
        if check_date < self.effective_start:
            return False
        if self.effective_end and check_date > self.effective_end:
            return False
        return True
