"""Overtime computation for the scheme-selected OT modes.

All functions are pure. Per-day amounts are kept unrounded internally and
the period total is rounded once; DayOvertime.amount is the rounded
per-day figure for display only.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Iterable

from workforce_payroll.calculators.money import round_money, round_to_increment
from workforce_payroll.calculators.policy import OvertimePolicy
from workforce_payroll.calculators.types import (
    ZERO,
    AttendanceDay,
    DayOvertime,
    OvertimeMode,
    OvertimeResult,
)
from workforce_payroll.exceptions import ValidationError

SIXTY = Decimal("60")
HOURS_PRECISION = Decimal("0.01")


def rounded_minutes(minutes: int, policy: OvertimePolicy) -> Decimal:
    """Apply the policy's rounding increment and direction to a minute count."""
    if minutes <= 0:
        return ZERO
    return round_to_increment(
        Decimal(minutes),
        Decimal(policy.rounding_increment_minutes),
        policy.rounding_direction.value,
    )


def _require_basic(basic_pay: Decimal | None) -> Decimal:
    if basic_pay is None:
        raise ValidationError("Overtime requires a resolved basic pay", field="basic_pay")
    if basic_pay < 0:
        raise ValidationError("Basic pay must not be negative", field="basic_pay")
    return basic_pay


def _day_entry(
    day: AttendanceDay,
    excess_minutes: int,
    hours: Decimal,
    multiplier: Decimal,
    raw_amount: Decimal,
    tier: str,
) -> DayOvertime:
    return DayOvertime(
        work_date=day.work_date,
        worked_minutes=day.worked_minutes,
        excess_minutes=excess_minutes,
        hours=hours.quantize(HOURS_PRECISION),
        multiplier=multiplier,
        amount=round_money(raw_amount),
        tier=tier,
    )


def compute_excess_hours_overtime(
    attendance: Iterable[AttendanceDay],
    basic_pay: Decimal | None,
    policy: OvertimePolicy,
    holidays: frozenset[date] = frozenset(),
) -> OvertimeResult:
    """Per-day excess over the threshold plus extra days over the standard month.

    With driver defaults (540 minutes, half-hour floor, basic/26/8):
    600 worked minutes on basic 2600 gives 1.0 hour at 12.50.
    """
    basic = _require_basic(basic_pay)
    hourly = policy.hourly_rate(basic)
    result = OvertimeResult(mode=OvertimeMode.EXCESS_HOURS_PER_DAY)

    total_hours = ZERO
    total_raw = ZERO
    for day in sorted(attendance, key=lambda d: d.work_date):
        if not day.worked:
            continue
        result.worked_days += 1

        excess = max(0, day.worked_minutes - policy.daily_threshold_minutes)
        hours = rounded_minutes(excess, policy) / SIXTY
        if hours <= 0:
            continue

        is_holiday = day.work_date in holidays
        multiplier = policy.holiday_multiplier if is_holiday else policy.normal_multiplier
        raw = hours * hourly * multiplier
        total_hours += hours
        total_raw += raw
        result.days.append(
            _day_entry(day, excess, hours, multiplier, raw, "holiday" if is_holiday else "normal")
        )

    result.hours = total_hours.quantize(HOURS_PRECISION)
    result.amount = round_money(total_raw)

    extra_days, extra_amount = compute_extra_days_pay(result.worked_days, basic, policy)
    result.extra_days = extra_days
    result.extra_days_amount = extra_amount
    return result


def compute_extra_days_pay(
    worked_days: int, basic_pay: Decimal | None, policy: OvertimePolicy
) -> tuple[int, Decimal]:
    """Days worked beyond the standard month, paid at basic / rate_divisor_days.

    Returns (extra_days, amount). 25 days on basic 2600 with a 22 day
    standard and divisor 26 gives (3, 300.00).
    """
    basic = _require_basic(basic_pay)
    extra_days = max(0, worked_days - policy.standard_days_per_month)
    amount = round_money(Decimal(extra_days) * policy.daily_rate(basic))
    return extra_days, amount


def compute_threshold_overtime(
    attendance: Iterable[AttendanceDay],
    basic_pay: Decimal | None,
    policy: OvertimePolicy,
    holidays: frozenset[date] = frozenset(),
) -> OvertimeResult:
    """Three-tier overtime: normal, holiday, and holiday beyond the threshold.

    On a normal day only minutes beyond the threshold are overtime. On a
    holiday every worked minute is overtime; minutes within the threshold
    use holiday_multiplier and minutes beyond it use
    holiday_beyond_normal_multiplier. Saturday and Sunday overtime uses
    weekend_multiplier when the policy sets one.
    """
    basic = _require_basic(basic_pay)
    hourly = policy.hourly_rate(basic)
    beyond_multiplier = policy.holiday_beyond_normal_multiplier
    if beyond_multiplier is None:
        beyond_multiplier = policy.holiday_multiplier

    result = OvertimeResult(mode=OvertimeMode.THRESHOLD_MULTIPLIER)
    total_hours = ZERO
    total_raw = ZERO

    for day in sorted(attendance, key=lambda d: d.work_date):
        if not day.worked:
            continue
        result.worked_days += 1
        threshold = policy.daily_threshold_minutes

        if day.work_date in holidays:
            tiers = [
                ("holiday", min(day.worked_minutes, threshold), policy.holiday_multiplier),
                (
                    "holiday_beyond_normal",
                    max(0, day.worked_minutes - threshold),
                    beyond_multiplier,
                ),
            ]
        else:
            tier, multiplier = policy.non_holiday_tier(day.work_date)
            tiers = [(tier, max(0, day.worked_minutes - threshold), multiplier)]

        for tier, minutes, multiplier in tiers:
            hours = rounded_minutes(minutes, policy) / SIXTY
            if hours <= 0:
                continue
            raw = hours * hourly * multiplier
            total_hours += hours
            total_raw += raw
            result.days.append(_day_entry(day, minutes, hours, multiplier, raw, tier))

    result.hours = total_hours.quantize(HOURS_PRECISION)
    result.amount = round_money(total_raw)
    return result


def compute_overtime(
    mode: OvertimeMode,
    attendance: Iterable[AttendanceDay],
    basic_pay: Decimal | None,
    policy: OvertimePolicy,
    holidays: frozenset[date] = frozenset(),
) -> OvertimeResult:
    """Dispatch to the computation for a scheme's OT mode."""
    if mode is OvertimeMode.EXCESS_HOURS_PER_DAY:
        return compute_excess_hours_overtime(attendance, basic_pay, policy, holidays)
    if mode is OvertimeMode.THRESHOLD_MULTIPLIER:
        return compute_threshold_overtime(attendance, basic_pay, policy, holidays)
    _require_basic(basic_pay)
    days = list(attendance)
    return OvertimeResult(mode=OvertimeMode.NONE, worked_days=sum(1 for d in days if d.worked))
