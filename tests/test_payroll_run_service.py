"""Tests for the payroll run lifecycle."""

import logging
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from workforce_payroll.exceptions import NotFoundError, StateConflictError, ValidationError
from workforce_payroll.models import (
    AuditEvent,
    ClaimRecord,
    Company,
    Department,
    LeaveRecord,
    PayRate,
    PayrollItem,
    PayrollPolicy,
)
from workforce_payroll.services import ItemAdjustment, PayrollRunService
from workforce_payroll.services.state_machine import InvalidTransitionError, PayrollRunStatus


@pytest.fixture
def service(session):
    return PayrollRunService(session)


@pytest.fixture
async def configured(statutory_tables, company_policy):
    """Statutory tables plus a stored company policy."""
    return company_policy


async def audit_actions(session, entity_id):
    result = await session.execute(
        select(AuditEvent.action)
        .where(AuditEvent.entity_id == entity_id)
        .order_by(AuditEvent.created_at)
    )
    return list(result.scalars().all())


class TestCreateRun:
    """Creating a draft run computes one item per payable employee."""

    async def test_office_item_values(self, service, configured, company, office_employee):
        result = await service.create_run(company.company_id, 2024, 3)

        run = result.run
        assert run.status == PayrollRunStatus.DRAFT
        assert run.period_start == date(2024, 3, 1)
        assert run.period_end == date(2024, 3, 31)
        assert len(result.items) == 1

        item = result.items[0]
        assert item.basic_pay == Decimal("3000.00")
        assert item.gross == Decimal("3000.00")
        assert item.statutory_base == Decimal("3000.00")
        assert item.retirement_ee == Decimal("330.00")
        assert item.retirement_er == Decimal("390.00")
        assert item.social_security_ee == Decimal("15.00")
        assert item.social_security_er == Decimal("52.50")
        assert item.employment_insurance_ee == Decimal("6.00")
        assert item.employment_insurance_er == Decimal("6.00")
        assert item.withholding_tax == Decimal("18.00")
        assert item.total_deductions == Decimal("369.00")
        assert item.net_pay == Decimal("2631.00")
        assert item.employer_cost == Decimal("3448.50")
        assert item.review_flags == []

        assert run.total_net == Decimal("2631.00")
        assert run.employee_count == 1
        assert run.has_review_flags is False

    async def test_driver_ot_outside_base(
        self, service, configured, company, driver_employee, add_attendance
    ):
        await add_attendance(driver_employee, date(2024, 3, 4), 600)

        result = await service.create_run(company.company_id, 2024, 3)

        item = result.items[0]
        assert item.ot_hours == Decimal("1.00")
        assert item.ot_amount == Decimal("12.50")
        assert item.gross == Decimal("2612.50")
        assert item.statutory_base == Decimal("2600.00")

    async def test_run_totals_sum_items(
        self, service, configured, company, office_employee, driver_employee
    ):
        result = await service.create_run(company.company_id, 2024, 3)

        assert result.run.employee_count == 2
        assert result.run.total_gross == sum(i.gross for i in result.items)
        assert result.run.total_net == sum(i.net_pay for i in result.items)

    async def test_missing_configuration_flags_items(self, service, company, office_employee):
        result = await service.create_run(company.company_id, 2024, 3)

        flags = result.items[0].review_flags
        assert "policy_default" in flags
        assert "statutory_table_missing:retirement_fund" in flags
        assert result.run.has_review_flags is True

    async def test_incomplete_profile_flagged(self, service, configured, company, create_employee):
        await create_employee("EMP010", date_of_birth=None, marital_status=None)

        result = await service.create_run(company.company_id, 2024, 3)

        item = result.items[0]
        assert item.profile_incomplete is True
        assert "profile_incomplete" in item.review_flags

    async def test_unresolvable_employees_skipped(
        self, service, configured, company, office_employee, create_employee
    ):
        no_rate = await create_employee("EMP002", basic=None)
        bad_scheme = await create_employee("EMP003", pay_scheme="contractor")

        result = await service.create_run(company.company_id, 2024, 3)

        assert [i.employee_id for i in result.items] == [office_employee.employee_id]
        assert {s.employee_id for s in result.skipped} == {
            no_rate.employee_id,
            bad_scheme.employee_id,
        }

    async def test_terminated_employee_excluded(self, service, configured, company, create_employee):
        await create_employee("EMP004", status="terminated", termination_date=date(2024, 1, 31))

        result = await service.create_run(company.company_id, 2024, 3)

        assert result.items == []
        assert result.skipped == []

    async def test_department_scope(
        self, service, configured, company, department, office_employee, create_employee
    ):
        await create_employee("EMP005")  # no department

        result = await service.create_run(
            company.company_id, 2024, 3, department_id=department.department_id
        )

        assert [i.employee_id for i in result.items] == [office_employee.employee_id]
        assert result.run.scope_key == str(department.department_id)

    async def test_basic_pay_carried_forward(self, session, service, configured, company, create_employee):
        employee = await create_employee("EMP006", basic=None)
        session.add(
            PayRate(
                pay_rate_id=uuid4(),
                employee_id=employee.employee_id,
                start_date=date(2023, 1, 1),
                end_date=date(2024, 2, 29),
                amount=Decimal("2800.00"),
            )
        )
        await session.commit()

        february = await service.create_run(company.company_id, 2024, 2)
        assert february.carried_forward == []

        march = await service.create_run(company.company_id, 2024, 3)

        item = march.items[0]
        assert march.carried_forward == [employee.employee_id]
        assert item.basic_pay == Decimal("2800.00")
        assert item.basic_pay_carried_forward is True
        assert "basic_pay_carried_forward" in item.review_flags

    async def test_unpaid_leave_deducted(self, session, service, configured, company, office_employee):
        # Mon 2024-03-11 to Tue 2024-03-12
        session.add(
            LeaveRecord(
                leave_record_id=uuid4(),
                employee_id=office_employee.employee_id,
                start_date=date(2024, 3, 11),
                end_date=date(2024, 3, 12),
                is_paid=False,
                status="approved",
            )
        )
        await session.commit()

        result = await service.create_run(company.company_id, 2024, 3)

        item = result.items[0]
        assert item.unpaid_leave_days == 2
        # 3000 / 22 * 2
        assert item.unpaid_leave_deduction == Decimal("272.73")
        assert item.net_pay == item.gross - item.total_deductions

    async def test_audit_event_written(self, session, service, configured, company, office_employee):
        result = await service.create_run(company.company_id, 2024, 3, actor="ops")

        assert await audit_actions(session, result.run.payroll_run_id) == ["created"]


class TestCreateRunValidation:
    async def test_duplicate_run_conflicts(self, service, configured, company, office_employee):
        await service.create_run(company.company_id, 2024, 3)

        with pytest.raises(StateConflictError):
            await service.create_run(company.company_id, 2024, 3)

    @pytest.mark.parametrize("month", [0, 13])
    async def test_bad_month(self, service, company, month):
        with pytest.raises(ValidationError) as exc_info:
            await service.create_run(company.company_id, 2024, month)
        assert exc_info.value.field == "period_month"

    async def test_unknown_company(self, service):
        with pytest.raises(NotFoundError):
            await service.create_run(uuid4(), 2024, 3)

    async def test_department_of_other_company(self, session, service, company):
        other = Company(company_id=uuid4(), name="Other Co", jurisdiction="default")
        session.add(other)
        await session.flush()
        foreign = Department(department_id=uuid4(), company_id=other.company_id, name="Ops")
        session.add(foreign)
        await session.commit()

        with pytest.raises(ValidationError):
            await service.create_run(company.company_id, 2024, 3, department_id=foreign.department_id)


class TestRecalc:
    """Recalculation re-derives computed fields and keeps manual ones."""

    async def test_recalc_item_keeps_manual_fields(
        self, service, configured, company, office_employee, add_attendance
    ):
        result = await service.create_run(company.company_id, 2024, 3)
        item = result.items[0]
        await service.adjust_item(
            item.payroll_item_id,
            ItemAdjustment(bonus=Decimal("500"), remarks="Q1 incentive"),
            actor="hr",
            reason="Quarterly incentive",
        )
        # Tuesday, one hour over threshold
        await add_attendance(office_employee, date(2024, 3, 5), 540)

        item = await service.recalc_item(item.payroll_item_id)

        assert item.bonus == Decimal("500")
        assert item.remarks == "Q1 incentive"
        # 3000 / 22 / 8 * 1.5
        assert item.ot_amount == Decimal("25.57")
        assert item.gross == Decimal("3525.57")

    async def test_recalc_all_summary(
        self, session, service, configured, company, office_employee, driver_employee
    ):
        result = await service.create_run(company.company_id, 2024, 3)

        summary = await service.recalc_all(result.run.payroll_run_id, actor="ops")

        assert summary.recalculated == 2
        assert summary.total == 2
        assert sorted(await audit_actions(session, result.run.payroll_run_id)) == [
            "created",
            "recalculated",
        ]

    async def test_recalc_picks_up_new_claims(
        self, service, configured, company, office_employee, add_claim
    ):
        result = await service.create_run(company.company_id, 2024, 3)
        await add_claim(office_employee, date(2024, 3, 10), Decimal("120.00"))

        await service.recalc_all(result.run.payroll_run_id)
        run = await service.get_run(result.run.payroll_run_id)

        assert run.items[0].claims_amount == Decimal("120.00")
        assert run.total_gross == Decimal("3120.00")

    async def test_recalc_finalized_conflicts(self, service, configured, company, office_employee):
        result = await service.create_run(company.company_id, 2024, 3)
        run_id = result.run.payroll_run_id
        item_id = result.items[0].payroll_item_id
        await service.finalize_run(run_id)

        with pytest.raises(StateConflictError):
            await service.recalc_all(run_id)
        with pytest.raises(StateConflictError):
            await service.recalc_item(item_id)

    async def test_recalc_unknown_item(self, service):
        with pytest.raises(NotFoundError):
            await service.recalc_item(uuid4())


class TestFinalize:
    async def test_finalize_locks_and_links(
        self, session, service, configured, company, office_employee, add_claim
    ):
        approved = await add_claim(office_employee, date(2024, 3, 10), Decimal("200.00"))
        pending = await add_claim(office_employee, date(2024, 3, 11), Decimal("50.00"), "pending")
        result = await service.create_run(company.company_id, 2024, 3)
        item = result.items[0]
        assert item.claims_amount == Decimal("200.00")

        run = await service.finalize_run(result.run.payroll_run_id, actor="ops")

        assert run.status == PayrollRunStatus.FINALIZED
        assert run.finalized_at is not None
        assert all(i.is_locked for i in run.items)
        assert run.items[0].claims_amount == Decimal("200.00")

        approved = await session.get(ClaimRecord, approved.claim_record_id, populate_existing=True)
        pending = await session.get(ClaimRecord, pending.claim_record_id, populate_existing=True)
        assert approved.linked_payroll_item_id == item.payroll_item_id
        assert approved.linked_at is not None
        assert pending.linked_payroll_item_id is None

    async def test_second_finalize_conflicts(
        self, session, service, configured, company, office_employee, add_claim
    ):
        claim = await add_claim(office_employee, date(2024, 3, 10), Decimal("200.00"))
        claim_id = claim.claim_record_id
        result = await service.create_run(company.company_id, 2024, 3)
        run_id = result.run.payroll_run_id
        item_id = result.items[0].payroll_item_id

        run = await service.finalize_run(run_id)
        totals = (run.total_gross, run.total_net, run.total_employer_cost)
        claim = await session.get(ClaimRecord, claim_id, populate_existing=True)
        linked = (claim.linked_payroll_item_id, claim.linked_at)
        assert linked[0] == item_id
        assert totals[0] == Decimal("3200.00")

        with pytest.raises(StateConflictError):
            await service.finalize_run(run_id)

        run = await service.get_run(run_id)
        assert (run.total_gross, run.total_net, run.total_employer_cost) == totals
        claim = await session.get(ClaimRecord, claim_id, populate_existing=True)
        assert (claim.linked_payroll_item_id, claim.linked_at) == linked
        actions = await audit_actions(session, run_id)
        assert actions.count("status_change:draft:finalized") == 1

    async def test_policy_change_during_draft(
        self, session, service, configured, company, office_employee, caplog
    ):
        result = await service.create_run(company.company_id, 2024, 3)
        run_id = result.run.payroll_run_id
        item_id = result.items[0].payroll_item_id
        await service.adjust_item(
            item_id, ItemAdjustment(bonus=Decimal("500")), actor="hr", reason="Incentive"
        )
        # Bonus no longer counts toward the office base from version 2
        session.add(
            PayrollPolicy(
                payroll_policy_id=uuid4(),
                company_id=company.company_id,
                version=2,
                is_active=True,
                payload_json={
                    "schemes": {
                        "office": {
                            "statutory_base_components": ["basic_pay", "commission_amount"]
                        }
                    }
                },
            )
        )
        await session.commit()

        with caplog.at_level(logging.ERROR):
            run = await service.finalize_run(run_id)

        assert run.status == PayrollRunStatus.FINALIZED
        item = run.items[0]
        assert item.bonus == Decimal("500")
        assert item.gross == Decimal("3500.00")
        assert item.statutory_base == Decimal("3000.00")
        assert item.retirement_ee == Decimal("330.00")
        assert item.net_pay == item.gross - item.total_deductions
        assert run.total_gross == Decimal("3500.00")
        assert not [r for r in caplog.records if r.levelno >= logging.ERROR]

    async def test_empty_run_cannot_finalize(self, service, configured, company):
        result = await service.create_run(company.company_id, 2024, 3)

        with pytest.raises(InvalidTransitionError):
            await service.finalize_run(result.run.payroll_run_id)

    async def test_review_clear_required(self, session, service, statutory_tables, company, create_employee):
        session.add(
            PayrollPolicy(
                payroll_policy_id=uuid4(),
                company_id=company.company_id,
                version=1,
                is_active=True,
                payload_json={"features": {"require_review_clear": True}},
            )
        )
        await session.commit()
        await create_employee("EMP011", date_of_birth=None)
        result = await service.create_run(company.company_id, 2024, 3)
        run_id = result.run.payroll_run_id

        with pytest.raises(InvalidTransitionError):
            await service.finalize_run(run_id)

        # Rollback expires loaded objects; reload by id
        run = await service.get_run(run_id)
        assert run.status == PayrollRunStatus.DRAFT
        assert not any(i.is_locked for i in run.items)

    async def test_finalized_run_feeds_next_month_ytd(
        self, service, configured, company, office_employee
    ):
        march = await service.create_run(company.company_id, 2024, 3)
        await service.finalize_run(march.run.payroll_run_id)

        april = await service.create_run(company.company_id, 2024, 4)

        # (3000 + 3000 * 9 - 9000) taxes to 180 a year; 18 already withheld
        assert april.items[0].withholding_tax == Decimal("18.00")

    async def test_unknown_run(self, service):
        with pytest.raises(NotFoundError):
            await service.finalize_run(uuid4())


class TestDeleteRun:
    async def test_delete_draft(self, session, service, configured, company, office_employee):
        result = await service.create_run(company.company_id, 2024, 3)
        run_id = result.run.payroll_run_id

        await service.delete_run(run_id, actor="ops")

        assert await service.get_run(run_id) is None
        remaining = await session.scalar(
            select(func.count(PayrollItem.payroll_item_id)).where(
                PayrollItem.payroll_run_id == run_id
            )
        )
        assert remaining == 0
        assert "deleted" in await audit_actions(session, run_id)

    async def test_delete_frees_period(self, service, configured, company, office_employee):
        result = await service.create_run(company.company_id, 2024, 3)
        await service.delete_run(result.run.payroll_run_id)

        again = await service.create_run(company.company_id, 2024, 3)

        assert len(again.items) == 1

    async def test_delete_finalized_conflicts(self, service, configured, company, office_employee):
        result = await service.create_run(company.company_id, 2024, 3)
        run_id = result.run.payroll_run_id
        await service.finalize_run(run_id)

        with pytest.raises(StateConflictError):
            await service.delete_run(run_id)

        run = await service.get_run(run_id)
        assert run.status == PayrollRunStatus.FINALIZED

    async def test_delete_unknown(self, service):
        with pytest.raises(NotFoundError):
            await service.delete_run(uuid4())


class TestAdjustItem:
    """Manual edits are validated, recomputed and audited."""

    async def test_adjust_bonus(self, session, service, configured, company, office_employee, caplog):
        result = await service.create_run(company.company_id, 2024, 3)
        item_id = result.items[0].payroll_item_id

        with caplog.at_level(logging.INFO, logger="workforce_payroll.audit"):
            item = await service.adjust_item(
                item_id,
                ItemAdjustment(bonus=Decimal("500")),
                actor="hr",
                reason="Quarterly incentive",
            )

        assert item.bonus == Decimal("500")
        assert item.gross == Decimal("3500.00")
        assert item.statutory_base == Decimal("3500.00")
        assert item.retirement_ee == Decimal("385.00")
        # 26000 chargeable over 10 months
        assert item.withholding_tax == Decimal("33.00")
        assert item.net_pay == Decimal("3057.50")

        event = await session.scalar(
            select(AuditEvent).where(
                AuditEvent.entity_id == item_id,
                AuditEvent.action == "manual_adjustment",
            )
        )
        assert event.actor == "hr"
        assert event.reason == "Quarterly incentive"
        assert Decimal(event.before_json["bonus"]) == Decimal("0")
        assert Decimal(event.after_json["bonus"]) == Decimal("500")
        assert "Manual adjustment" in caplog.text

    async def test_adjust_basic_clears_carry_forward(
        self, service, configured, company, office_employee
    ):
        result = await service.create_run(company.company_id, 2024, 3)

        item = await service.adjust_item(
            result.items[0].payroll_item_id,
            ItemAdjustment(basic_pay=Decimal("3200")),
            actor="hr",
            reason="Backdated raise",
        )

        assert item.basic_pay == Decimal("3200")
        assert item.basic_pay_carried_forward is False
        assert item.gross == Decimal("3200.00")

    async def test_adjust_requires_reason(self, service, configured, company, office_employee):
        result = await service.create_run(company.company_id, 2024, 3)

        with pytest.raises(ValidationError):
            await service.adjust_item(
                result.items[0].payroll_item_id,
                ItemAdjustment(bonus=Decimal("100")),
                actor="hr",
                reason="  ",
            )

    async def test_adjust_rejects_negative(self, service, configured, company, office_employee):
        result = await service.create_run(company.company_id, 2024, 3)

        with pytest.raises(ValidationError):
            await service.adjust_item(
                result.items[0].payroll_item_id,
                ItemAdjustment(other_deductions=Decimal("-1")),
                actor="hr",
                reason="Typo",
            )

    async def test_adjust_requires_changes(self, service):
        with pytest.raises(ValidationError):
            await service.adjust_item(uuid4(), ItemAdjustment(), actor="hr", reason="Nothing")

    async def test_adjust_finalized_conflicts(self, service, configured, company, office_employee):
        result = await service.create_run(company.company_id, 2024, 3)
        await service.finalize_run(result.run.payroll_run_id)

        with pytest.raises(StateConflictError):
            await service.adjust_item(
                result.items[0].payroll_item_id,
                ItemAdjustment(bonus=Decimal("100")),
                actor="hr",
                reason="Late bonus",
            )
