"""ORM models."""

from workforce_payroll.models.base import Base, TimestampMixin
from workforce_payroll.models.company import (
    Company,
    Department,
    PayrollPolicy,
    PublicHoliday,
    StatutoryTable,
)
from workforce_payroll.models.employee import Employee, PayRate
from workforce_payroll.models.inputs import (
    AttendanceRecord,
    ClaimRecord,
    CommissionRecord,
    LeaveRecord,
)
from workforce_payroll.models.payroll import AuditEvent, PayrollItem, PayrollRun

__all__ = [
    "Base",
    "TimestampMixin",
    "Company",
    "Department",
    "PayrollPolicy",
    "PublicHoliday",
    "StatutoryTable",
    "Employee",
    "PayRate",
    "AttendanceRecord",
    "ClaimRecord",
    "CommissionRecord",
    "LeaveRecord",
    "AuditEvent",
    "PayrollItem",
    "PayrollRun",
]
