"""Gross-to-net payroll computation.

Pure function of an employee snapshot and the parameter snapshots for the
period's year. No database access, no shared state: computations can run
in parallel across employees and periods.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from bookkeeping_engine.calculators.line_builder import PayrunLineBuilder
from bookkeeping_engine.calculators.lpp import compute_lpp
from bookkeeping_engine.calculators.types import (
    EmployeeSnapshot,
    LineKind,
    PayPeriod,
    PayrollParameters,
    PayrunDraft,
    PayrunLine,
    ReplacementSnapshot,
)
from bookkeeping_engine.config import AcCeilingPolicy
from bookkeeping_engine.errors import ConfigurationError, ValidationError
from bookkeeping_engine.models.payroll import PayrunMode
from bookkeeping_engine.money import ZERO, round_to_cents

MONTHS_PER_YEAR = Decimal("12")


def _overlap_days(period: PayPeriod, start: date, end: date | None) -> int:
    first = max(period.start, start)
    last = min(period.end, end) if end is not None else period.end
    return max(0, (last - first).days + 1)


class PayrollCalculator:
    """Computes one payrun draft.

    Calculation pipeline:
    1) Base gross from the mode (monthly pro-rata, hourly, event indemnity)
    2) Thirteenth salary accrual on base gross
    3) Benefits in kind (flat values and company car percentage)
    4) Statutory contributions, each rate x min(gross, ceiling):
       AVS/AI/APG, AC, AAP/AANP, IJM, AF
    5) LPP from the employee's plan and age band
    6) net = gross + benefits - employee deductions
       employer_cost = gross + employer contributions
    """

    def __init__(self, params: PayrollParameters):
        self.params = params

    def compute(
        self,
        employee: EmployeeSnapshot,
        period: PayPeriod,
        mode: PayrunMode | str,
        hours: Decimal | None = None,
        override_rate: Decimal | None = None,
        replacement: ReplacementSnapshot | None = None,
        ytd_ac_basis: Decimal | None = None,
    ) -> PayrunDraft:
        """Compute a draft for one employee and one period.

        Args:
            employee: Employee snapshot
            period: Pay period (calendar month)
            mode: hourly, monthly or event
            hours: Hours worked (hourly) or number of events (event, default 1)
            override_rate: Replaces the employee's default hourly rate
            replacement: Active replacement record (event mode)
            ytd_ac_basis: AC basis already used this year, if known

        Raises:
            ValidationError: invalid inputs or non-positive gross
            ConfigurationError: parameter year does not match the period
        """
        try:
            mode = PayrunMode(mode)
        except ValueError as exc:
            raise ValidationError(f"Unknown payrun mode {mode!r}") from exc
        if hours is not None and hours <= 0:
            raise ValidationError("hours must be greater than zero")
        if self.params.rates.year != period.year:
            raise ConfigurationError(
                f"Rates for {self.params.rates.year} cannot compute period {period}"
            )

        builder = PayrunLineBuilder
        lines: list[PayrunLine] = []
        warnings: list[str] = []

        # 1) Base gross
        base_gross, hourly_rate = self._base_gross(employee, period, mode, hours, override_rate, replacement)
        if base_gross <= 0:
            raise ValidationError(f"Gross must be greater than zero (got {base_gross})")
        lines.append(builder.earning("base", base_gross, f"{mode.value} base for {period}"))

        # 2) Thirteenth salary
        thirteenth_fraction = ZERO
        thirteenth_amount = ZERO
        if employee.thirteenth_enabled:
            thirteenth_fraction = self._thirteenth_fraction(employee)
            thirteenth_amount = round_to_cents(base_gross * thirteenth_fraction)
            lines.append(
                builder.earning("thirteenth", thirteenth_amount, f"{thirteenth_fraction} of base")
            )
        gross = base_gross + thirteenth_amount

        # 3) Benefits in kind
        benefit_lines = self._benefits(employee)
        lines.extend(benefit_lines)
        benefits_amount = builder.total(benefit_lines, LineKind.BENEFIT)

        draft = PayrunDraft(
            employee_id=employee.employee_id,
            period=period,
            mode=mode.value,
            hours=hours,
            hourly_rate=hourly_rate,
            base_gross=base_gross,
            thirteenth_fraction=thirteenth_fraction,
            thirteenth_amount=thirteenth_amount,
            gross=gross,
            benefits_amount=benefits_amount,
            benefit_lodging=employee.benefit_lodging,
            benefit_meals=employee.benefit_meals,
            benefit_transport=employee.benefit_transport,
            benefit_company_car=employee.benefit_company_car,
        )

        # 4) Statutory contributions
        for line in self._statutory(gross, ytd_ac_basis):
            lines.append(line)
            setattr(draft, line.code, line.amount)

        # 5) LPP
        lpp_line, lpp_status = compute_lpp(self.params.lpp_plan, employee, gross, period.end)
        draft.lpp_status = lpp_status
        draft.lpp_line = lpp_line
        if lpp_line is not None:
            draft.lpp_emp = lpp_line.employee_amount
            draft.lpp_er = lpp_line.employer_amount
            lines.append(
                PayrunLine(
                    kind=LineKind.EMPLOYEE_DEDUCTION,
                    code="lpp_emp",
                    amount=lpp_line.employee_amount,
                    basis=lpp_line.annual_insured_salary,
                    rate=lpp_line.saving_rate + lpp_line.risk_admin_rate,
                    explanation=f"age {lpp_line.age_years}",
                )
            )
            lines.append(
                PayrunLine(
                    kind=LineKind.EMPLOYER_CONTRIBUTION,
                    code="lpp_er",
                    amount=lpp_line.employer_amount,
                    basis=lpp_line.annual_insured_salary,
                    rate=lpp_line.saving_rate + lpp_line.risk_admin_rate,
                    explanation=f"employer share {lpp_line.employer_share}",
                )
            )
        else:
            warnings.append(f"No LPP contribution: {lpp_status.value}")

        # 6) Totals
        draft.net = gross + benefits_amount - draft.employee_deductions
        draft.employer_cost = gross + draft.employer_contributions
        if draft.net <= 0:
            warnings.append(f"Net pay is not positive ({draft.net})")

        draft.lines = lines
        draft.warnings = warnings
        return draft

    def _base_gross(
        self,
        employee: EmployeeSnapshot,
        period: PayPeriod,
        mode: PayrunMode,
        hours: Decimal | None,
        override_rate: Decimal | None,
        replacement: ReplacementSnapshot | None,
    ) -> tuple[Decimal, Decimal | None]:
        if mode == PayrunMode.MONTHLY:
            if employee.monthly_base is None or employee.monthly_base <= 0:
                raise ValidationError("Monthly mode requires a positive monthly_base")
            days = _overlap_days(period, employee.start_date, employee.end_date)
            if days == 0:
                raise ValidationError(f"Employee is not employed during {period}")
            if days == period.days:
                return round_to_cents(employee.monthly_base), None
            return round_to_cents(employee.monthly_base * days / period.days), None

        if mode == PayrunMode.HOURLY:
            if hours is None:
                raise ValidationError("Hourly mode requires hours")
            rate = override_rate if override_rate is not None else employee.hourly_rate_default
            if rate is None or rate <= 0:
                raise ValidationError("Hourly mode requires a positive hourly rate")
            return round_to_cents(hours * rate * employee.hourly_multiplier), rate

        if replacement is None:
            raise ValidationError(f"No active replacement record for {period}")
        if _overlap_days(period, replacement.start_date, replacement.end_date) == 0:
            raise ValidationError(f"Replacement record does not cover {period}")
        units = hours if hours is not None else Decimal("1")
        return round_to_cents(units * replacement.indemnity_rate), replacement.indemnity_rate

    def _thirteenth_fraction(self, employee: EmployeeSnapshot) -> Decimal:
        if employee.thirteenth_fraction is not None:
            return employee.thirteenth_fraction
        if self.params.thirteenth_fraction is not None:
            return self.params.thirteenth_fraction
        return self.params.policy.thirteenth_fraction

    def _benefits(self, employee: EmployeeSnapshot) -> list[PayrunLine]:
        if not employee.has_benefits:
            return []
        allowances = self.params.allowances
        if allowances is None:
            raise ConfigurationError("Employee has benefits in kind but no allowances profile")

        builder = PayrunLineBuilder
        lines: list[PayrunLine] = []
        if employee.benefit_lodging:
            lines.append(builder.benefit("lodging", allowances.lodging_monthly, "flat monthly value"))
        if employee.benefit_meals:
            lines.append(builder.benefit("meals", allowances.meals_monthly, "flat monthly value"))
        if employee.benefit_transport:
            lines.append(
                builder.benefit("transport", allowances.transport_monthly, "flat monthly value")
            )
        if employee.benefit_company_car:
            if not employee.company_car_price:
                raise ValidationError("Company car benefit requires company_car_price")
            lines.append(
                builder.benefit(
                    "company_car",
                    employee.company_car_price * allowances.company_car_monthly_pct,
                    f"{allowances.company_car_monthly_pct} of vehicle price",
                )
            )
        return [line for line in lines if line.amount > 0]

    def _ac_basis(self, gross: Decimal, ytd_ac_basis: Decimal | None) -> Decimal:
        ceiling = self.params.rates.ac_ceiling_year
        if ceiling <= 0:
            return gross
        if ytd_ac_basis is not None:
            return min(gross, max(ZERO, ceiling - ytd_ac_basis))
        if self.params.policy.ac_ceiling_policy == AcCeilingPolicy.MONTHLY:
            return min(gross, ceiling / MONTHS_PER_YEAR)
        return min(gross, ceiling)

    def _statutory(self, gross: Decimal, ytd_ac_basis: Decimal | None) -> list[PayrunLine]:
        rates = self.params.rates
        insurance = self.params.insurance
        builder = PayrunLineBuilder
        emp, er = LineKind.EMPLOYEE_DEDUCTION, LineKind.EMPLOYER_CONTRIBUTION

        lines = [
            builder.contribution(emp, "avs_ai_apg_emp", gross, rates.avs_ai_apg_employee, "AVS/AI/APG"),
            builder.contribution(er, "avs_ai_apg_er", gross, rates.avs_ai_apg_employer, "AVS/AI/APG"),
        ]

        ac_basis = self._ac_basis(gross, ytd_ac_basis)
        lines.append(builder.contribution(emp, "ac_emp", ac_basis, rates.ac_employee, "AC"))
        lines.append(builder.contribution(er, "ac_er", ac_basis, rates.ac_employer, "AC"))

        laa_basis = gross
        if insurance.laa_ceiling_year > 0:
            laa_basis = min(gross, insurance.laa_ceiling_year / MONTHS_PER_YEAR)
        lines.append(builder.contribution(er, "aap_er", laa_basis, insurance.aap_employer_rate, "LAA AAP"))
        lines.extend(
            builder.split("aanp", laa_basis, insurance.aanp_rate, insurance.aanp_employee_share, "LAA AANP")
        )

        if insurance.ijm_enabled:
            lines.extend(
                builder.split("ijm", gross, insurance.ijm_rate, insurance.ijm_employee_share, "IJM")
            )

        lines.append(builder.contribution(er, "af_er", gross, rates.af_employer, "AF"))
        return lines


def compute_payrun(
    employee: EmployeeSnapshot,
    period: PayPeriod,
    mode: PayrunMode | str,
    params: PayrollParameters,
    hours: Decimal | None = None,
    override_rate: Decimal | None = None,
    replacement: ReplacementSnapshot | None = None,
    ytd_ac_basis: Decimal | None = None,
) -> PayrunDraft:
    """Functional entry point around PayrollCalculator.compute."""
    return PayrollCalculator(params).compute(
        employee,
        period,
        mode,
        hours=hours,
        override_rate=override_rate,
        replacement=replacement,
        ytd_ac_basis=ytd_ac_basis,
    )
