"""Occupational pension (LPP) contribution."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from decimal import Decimal

from bookkeeping_engine.calculators.types import (
    EmployeeSnapshot,
    LppAgeBand,
    LppLine,
    LppPlanSnapshot,
    LppStatus,
)
from bookkeeping_engine.money import ZERO, round_to_cents

MONTHS_PER_YEAR = Decimal("12")


def age_at(birth_date: date, on: date) -> int:
    """Completed years of age on a given date."""
    years = on.year - birth_date.year
    if (on.month, on.day) < (birth_date.month, birth_date.day):
        years -= 1
    return years


def find_age_band(bands: Iterable[LppAgeBand], age: int) -> LppAgeBand | None:
    """The band with age_min <= age <= age_max. Rates never interpolate."""
    for band in bands:
        if band.age_min <= age <= band.age_max:
            return band
    return None


def insured_salary(plan: LppPlanSnapshot, annual_salary: Decimal) -> Decimal:
    """Coordinated salary: capped at the plan maximum, minus coordination, floored."""
    capped = annual_salary
    if plan.max_insurable_salary > 0:
        capped = min(capped, plan.max_insurable_salary)
    coordinated = capped - plan.coordination_deduction
    return round_to_cents(max(coordinated, plan.min_coordinated_salary, ZERO))


def compute_lpp(
    plan: LppPlanSnapshot | None,
    employee: EmployeeSnapshot,
    monthly_gross: Decimal,
    period_end: date,
) -> tuple[LppLine | None, LppStatus]:
    """Monthly pension contribution for one payrun.

    Age is taken at period end. A missing or inactive plan, or a salary
    below the entry threshold, yields no line and a status instead of an
    error.
    """
    if plan is None:
        return None, LppStatus.NO_PLAN
    if not plan.is_active:
        return None, LppStatus.PLAN_INACTIVE
    if employee.birth_date is None:
        return None, LppStatus.NO_BIRTH_DATE

    annual_salary = monthly_gross * MONTHS_PER_YEAR
    if annual_salary < plan.entry_threshold:
        return None, LppStatus.BELOW_THRESHOLD

    age = age_at(employee.birth_date, period_end)
    band = find_age_band(plan.age_bands, age)
    status = LppStatus.OK if band is not None else LppStatus.NO_AGE_BAND
    saving_rate = band.saving_rate if band is not None else ZERO

    insured = insured_salary(plan, annual_salary)
    monthly_total = round_to_cents(insured * (saving_rate + plan.risk_admin_rate) / MONTHS_PER_YEAR)

    employer_share = (
        employee.lpp_employer_share_override
        if employee.lpp_employer_share_override is not None
        else plan.employer_share
    )
    employer_amount = round_to_cents(monthly_total * employer_share)
    employee_amount = monthly_total - employer_amount

    return (
        LppLine(
            plan_id=plan.plan_id,
            age_years=age,
            annual_insured_salary=insured,
            saving_rate=saving_rate,
            risk_admin_rate=plan.risk_admin_rate,
            employer_share=employer_share,
            employee_amount=employee_amount,
            employer_amount=employer_amount,
        ),
        status,
    )
