"""Pytest fixtures for payroll engine tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, AsyncGenerator, Awaitable, Callable
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from workforce_payroll.models import (
    AttendanceRecord,
    Base,
    ClaimRecord,
    Company,
    Department,
    Employee,
    PayRate,
    PayrollPolicy,
    StatutoryTable,
)

# In-memory SQLite shared across the engine's connections for one test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Kuala Lumpur office and a depot roughly 290 km away in Penang
HOME_BASE = (3.1390, 101.6869)
FAR_SITE = (5.4141, 100.3288)


@pytest.fixture
async def engine():
    """Create a fresh test database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def statutory_payloads() -> dict[str, dict[str, Any]]:
    """Sample rate tables; not any real jurisdiction's figures."""
    return {
        "retirement_fund": {
            "rows": [
                {"age_below": 60, "employee_rate": "0.11", "employer_rate": "0.13"},
                {"age_from": 60, "employee_rate": "0", "employer_rate": "0.04"},
            ],
        },
        "social_security": {
            "ceiling": "5000",
            "rows": [{"employee_rate": "0.005", "employer_rate": "0.0175"}],
        },
        "employment_insurance": {
            "ceiling": "5000",
            "rows": [{"employee_rate": "0.002", "employer_rate": "0.002"}],
        },
        "income_tax": {
            "brackets": [
                {"threshold": "0", "rate": "0", "base_tax": "0"},
                {"threshold": "5000", "rate": "0.01", "base_tax": "0"},
                {"threshold": "20000", "rate": "0.03", "base_tax": "150"},
                {"threshold": "35000", "rate": "0.06", "base_tax": "600"},
                {"threshold": "50000", "rate": "0.11", "base_tax": "1500"},
            ],
            "reliefs": {"self": "9000", "spouse": "4000", "per_dependent": "2000"},
            "minimum_withholding": "10",
            "rounding_increment": "0.05",
        },
    }


@pytest.fixture
async def statutory_tables(
    session: AsyncSession, statutory_payloads: dict[str, dict[str, Any]]
) -> list[StatutoryTable]:
    """Store the sample tables for the default jurisdiction."""
    rows = [
        StatutoryTable(
            statutory_table_id=uuid4(),
            jurisdiction="default",
            category=category,
            effective_start=date(2020, 1, 1),
            payload_json=payload,
        )
        for category, payload in statutory_payloads.items()
    ]
    session.add_all(rows)
    await session.commit()
    return rows


@pytest.fixture
async def company(session: AsyncSession) -> Company:
    """Create a test company."""
    company = Company(
        company_id=uuid4(),
        name="Test Logistics Sdn Bhd",
        jurisdiction="default",
    )
    session.add(company)
    await session.commit()
    return company


@pytest.fixture
async def department(session: AsyncSession, company: Company) -> Department:
    """Create a test department."""
    department = Department(
        department_id=uuid4(),
        company_id=company.company_id,
        name="Operations",
    )
    session.add(department)
    await session.commit()
    return department


@pytest.fixture
async def company_policy(session: AsyncSession, company: Company) -> PayrollPolicy:
    """Company-wide policy stored with default values."""
    policy = PayrollPolicy(
        payroll_policy_id=uuid4(),
        company_id=company.company_id,
        version=1,
        is_active=True,
        payload_json={"version": 1},
    )
    session.add(policy)
    await session.commit()
    return policy


async def _create_employee(
    session: AsyncSession,
    company: Company,
    department: Department | None,
    number: str,
    pay_scheme: str,
    basic: Decimal | None,
    **overrides: Any,
) -> Employee:
    values: dict[str, Any] = dict(
        employee_id=uuid4(),
        company_id=company.company_id,
        department_id=department.department_id if department else None,
        employee_number=number,
        full_name=f"Employee {number}",
        status="active",
        hire_date=date(2023, 1, 1),
        pay_scheme=pay_scheme,
        date_of_birth=date(1990, 6, 15),
        residency_status="citizen",
        marital_status="single",
        spouse_working=None,
        dependent_count=0,
        is_disabled=False,
        spouse_disabled=False,
        bank_name="Maybank",
        bank_account_number=f"5140{number[-3:]}00123",
    )
    values.update(overrides)
    employee = Employee(**values)
    session.add(employee)
    await session.flush()
    if basic is not None:
        session.add(
            PayRate(
                pay_rate_id=uuid4(),
                employee_id=employee.employee_id,
                start_date=date(2023, 1, 1),
                amount=basic,
            )
        )
    await session.commit()
    return employee


@pytest.fixture
async def office_employee(
    session: AsyncSession, company: Company, department: Department
) -> Employee:
    """Office employee on 3000 basic with a complete profile."""
    return await _create_employee(
        session, company, department, "EMP001", "office", Decimal("3000.00")
    )


@pytest.fixture
async def driver_employee(
    session: AsyncSession, company: Company, department: Department
) -> Employee:
    """Driver on 2600 basic based in Kuala Lumpur."""
    return await _create_employee(
        session,
        company,
        department,
        "DRV001",
        "driver",
        Decimal("2600.00"),
        home_base_lat=HOME_BASE[0],
        home_base_lng=HOME_BASE[1],
        activity_ref="DRV-1",
    )


@pytest.fixture
def create_employee(
    session: AsyncSession, company: Company
) -> Callable[..., Awaitable[Employee]]:
    """Factory for additional employees."""

    async def _create(
        number: str,
        pay_scheme: str = "office",
        basic: Decimal | None = Decimal("3000.00"),
        department: Department | None = None,
        **overrides: Any,
    ) -> Employee:
        return await _create_employee(
            session, company, department, number, pay_scheme, basic, **overrides
        )

    return _create


@pytest.fixture
def add_attendance(session: AsyncSession) -> Callable[..., Awaitable[AttendanceRecord]]:
    """Factory for attendance records."""

    async def _add(
        employee: Employee,
        work_date: date,
        minutes: int = 480,
        clock_in: tuple[float, float] | None = None,
        clock_out: tuple[float, float] | None = None,
        is_outstation: bool | None = None,
    ) -> AttendanceRecord:
        record = AttendanceRecord(
            attendance_record_id=uuid4(),
            employee_id=employee.employee_id,
            work_date=work_date,
            total_worked_minutes=minutes,
            clock_in_lat=clock_in[0] if clock_in else None,
            clock_in_lng=clock_in[1] if clock_in else None,
            clock_out_lat=clock_out[0] if clock_out else None,
            clock_out_lng=clock_out[1] if clock_out else None,
            is_outstation=is_outstation,
            outstation_inferred=False,
        )
        session.add(record)
        await session.commit()
        return record

    return _add


@pytest.fixture
def add_claim(session: AsyncSession) -> Callable[..., Awaitable[ClaimRecord]]:
    """Factory for expense claims."""

    async def _add(
        employee: Employee,
        claim_date: date,
        amount: Decimal,
        status: str = "approved",
    ) -> ClaimRecord:
        claim = ClaimRecord(
            claim_record_id=uuid4(),
            employee_id=employee.employee_id,
            claim_date=claim_date,
            category="travel",
            amount=amount,
            status=status,
        )
        session.add(claim)
        await session.commit()
        return claim

    return _add
