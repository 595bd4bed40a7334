"""Type definitions for the payroll computation pipeline.

Every parameter table is copied into a frozen snapshot before computation so
the calculator is a pure function of its inputs and can run without a
database.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from bookkeeping_engine.config import PayrollPolicy
from bookkeeping_engine.errors import ValidationError
from bookkeeping_engine.money import ZERO

if TYPE_CHECKING:
    from bookkeeping_engine.models import (
        AllowancesProfile,
        Employee,
        EmployeeReplacement,
        InsuranceConfig,
        LppPlan,
        PayrollRates,
    )


class LineKind(str, Enum):
    """Payrun line categories."""

    EARNING = "EARNING"
    BENEFIT = "BENEFIT"
    EMPLOYEE_DEDUCTION = "EMPLOYEE_DEDUCTION"
    EMPLOYER_CONTRIBUTION = "EMPLOYER_CONTRIBUTION"


class LppStatus(str, Enum):
    """Outcome of the pension step."""

    OK = "ok"
    NO_PLAN = "no_plan"
    PLAN_INACTIVE = "plan_inactive"
    BELOW_THRESHOLD = "below_threshold"
    NO_AGE_BAND = "no_age_band"
    NO_BIRTH_DATE = "no_birth_date"


@dataclass(frozen=True)
class PayPeriod:
    """A calendar month."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValidationError(f"Invalid period month {self.month}")
        if self.year < 1900:
            raise ValidationError(f"Invalid period year {self.year}")

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return date(self.year, self.month, self.days)

    @property
    def days(self) -> int:
        return calendar.monthrange(self.year, self.month)[1]

    def __str__(self) -> str:
        return f"{self.year}-{self.month:02d}"


@dataclass(frozen=True)
class EmployeeSnapshot:
    """Employee attributes the calculator reads."""

    employee_id: UUID
    start_date: date
    end_date: date | None = None
    birth_date: date | None = None
    monthly_base: Decimal | None = None
    hourly_rate_default: Decimal | None = None
    hourly_multiplier: Decimal = Decimal("1")
    thirteenth_enabled: bool = False
    thirteenth_fraction: Decimal | None = None
    lpp_employer_share_override: Decimal | None = None
    benefit_lodging: bool = False
    benefit_meals: bool = False
    benefit_transport: bool = False
    benefit_company_car: bool = False
    company_car_price: Decimal | None = None

    @classmethod
    def from_model(cls, employee: Employee) -> EmployeeSnapshot:
        return cls(
            employee_id=employee.id,
            start_date=employee.start_date,
            end_date=employee.end_date,
            birth_date=employee.birth_date,
            monthly_base=employee.monthly_base,
            hourly_rate_default=employee.hourly_rate_default,
            hourly_multiplier=employee.hourly_multiplier,
            thirteenth_enabled=employee.thirteenth_enabled,
            thirteenth_fraction=employee.thirteenth_fraction,
            lpp_employer_share_override=employee.lpp_employer_share_override,
            benefit_lodging=employee.benefit_lodging,
            benefit_meals=employee.benefit_meals,
            benefit_transport=employee.benefit_transport,
            benefit_company_car=employee.benefit_company_car,
            company_car_price=employee.company_car_price,
        )

    @property
    def has_benefits(self) -> bool:
        return (
            self.benefit_lodging
            or self.benefit_meals
            or self.benefit_transport
            or self.benefit_company_car
        )


@dataclass(frozen=True)
class ReplacementSnapshot:
    """Active replacement assignment for event mode."""

    indemnity_rate: Decimal
    start_date: date
    end_date: date | None = None

    @classmethod
    def from_model(cls, replacement: EmployeeReplacement) -> ReplacementSnapshot:
        return cls(
            indemnity_rate=replacement.indemnity_rate,
            start_date=replacement.start_date,
            end_date=replacement.end_date,
        )


@dataclass(frozen=True)
class RatesSnapshot:
    """First-pillar, unemployment and family allowance rates for a year."""

    year: int
    avs_ai_apg_employee: Decimal
    avs_ai_apg_employer: Decimal
    ac_employee: Decimal
    ac_employer: Decimal
    ac_ceiling_year: Decimal
    af_employer: Decimal = ZERO

    @classmethod
    def from_model(cls, rates: PayrollRates) -> RatesSnapshot:
        return cls(
            year=rates.year,
            avs_ai_apg_employee=rates.avs_ai_apg_employee,
            avs_ai_apg_employer=rates.avs_ai_apg_employer,
            ac_employee=rates.ac_employee,
            ac_employer=rates.ac_employer,
            ac_ceiling_year=rates.ac_ceiling_year,
            af_employer=rates.af_employer,
        )


@dataclass(frozen=True)
class InsuranceSnapshot:
    """Accident and daily-sickness insurance parameters for a year."""

    laa_ceiling_year: Decimal = ZERO
    aap_employer_rate: Decimal = ZERO
    aanp_rate: Decimal = ZERO
    aanp_employee_share: Decimal = Decimal("1")
    ijm_enabled: bool = False
    ijm_rate: Decimal = ZERO
    ijm_employee_share: Decimal = Decimal("0.5")

    @classmethod
    def from_model(cls, config: InsuranceConfig) -> InsuranceSnapshot:
        return cls(
            laa_ceiling_year=config.laa_ceiling_year,
            aap_employer_rate=config.aap_employer_rate,
            aanp_rate=config.aanp_rate,
            aanp_employee_share=config.aanp_employee_share,
            ijm_enabled=config.ijm_enabled,
            ijm_rate=config.ijm_rate,
            ijm_employee_share=config.ijm_employee_share,
        )


@dataclass(frozen=True)
class AllowancesSnapshot:
    """Monthly benefit-in-kind valuations."""

    lodging_monthly: Decimal = ZERO
    meals_monthly: Decimal = ZERO
    transport_monthly: Decimal = ZERO
    company_car_monthly_pct: Decimal = ZERO

    @classmethod
    def from_model(cls, profile: AllowancesProfile) -> AllowancesSnapshot:
        return cls(
            lodging_monthly=profile.lodging_monthly,
            meals_monthly=profile.meals_monthly,
            transport_monthly=profile.transport_monthly,
            company_car_monthly_pct=profile.company_car_monthly_pct,
        )


@dataclass(frozen=True)
class LppAgeBand:
    """Inclusive age band with its saving rate."""

    age_min: int
    age_max: int
    saving_rate: Decimal


@dataclass(frozen=True)
class LppPlanSnapshot:
    """Pension plan parameters."""

    plan_id: UUID | None
    is_active: bool
    entry_threshold: Decimal
    coordination_deduction: Decimal
    max_insurable_salary: Decimal
    employer_share: Decimal = Decimal("0.5")
    risk_admin_rate: Decimal = ZERO
    min_coordinated_salary: Decimal = ZERO
    age_bands: tuple[LppAgeBand, ...] = ()

    @classmethod
    def from_model(cls, plan: LppPlan) -> LppPlanSnapshot:
        return cls(
            plan_id=plan.id,
            is_active=plan.is_active,
            entry_threshold=plan.entry_threshold,
            coordination_deduction=plan.coordination_deduction,
            max_insurable_salary=plan.max_insurable_salary,
            employer_share=plan.employer_share,
            risk_admin_rate=plan.risk_admin_rate,
            min_coordinated_salary=plan.min_coordinated_salary,
            age_bands=tuple(
                LppAgeBand(r.age_min, r.age_max, r.saving_rate) for r in plan.age_rates
            ),
        )


@dataclass(frozen=True)
class PayrollParameters:
    """Versioned configuration passed explicitly into a computation."""

    rates: RatesSnapshot
    insurance: InsuranceSnapshot
    allowances: AllowancesSnapshot | None = None
    lpp_plan: LppPlanSnapshot | None = None
    policy: PayrollPolicy = field(default_factory=PayrollPolicy)
    # Company-level override of policy.thirteenth_fraction
    thirteenth_fraction: Decimal | None = None


@dataclass(frozen=True)
class PayrunLine:
    """One explained amount of a payrun."""

    kind: LineKind
    code: str
    amount: Decimal
    basis: Decimal | None = None
    rate: Decimal | None = None
    explanation: str | None = None


@dataclass(frozen=True)
class LppLine:
    """Pension contribution for one payrun."""

    plan_id: UUID | None
    age_years: int
    annual_insured_salary: Decimal
    saving_rate: Decimal
    risk_admin_rate: Decimal
    employer_share: Decimal
    employee_amount: Decimal
    employer_amount: Decimal


@dataclass
class PayrunDraft:
    """Result of computing one employee for one period. Nothing is persisted."""

    employee_id: UUID
    period: PayPeriod
    mode: str
    hours: Decimal | None
    hourly_rate: Decimal | None
    base_gross: Decimal
    thirteenth_fraction: Decimal
    thirteenth_amount: Decimal
    gross: Decimal
    benefits_amount: Decimal

    avs_ai_apg_emp: Decimal = ZERO
    avs_ai_apg_er: Decimal = ZERO
    ac_emp: Decimal = ZERO
    ac_er: Decimal = ZERO
    aap_er: Decimal = ZERO
    aanp_emp: Decimal = ZERO
    aanp_er: Decimal = ZERO
    ijm_emp: Decimal = ZERO
    ijm_er: Decimal = ZERO
    af_er: Decimal = ZERO
    lpp_emp: Decimal = ZERO
    lpp_er: Decimal = ZERO

    net: Decimal = ZERO
    employer_cost: Decimal = ZERO

    benefit_lodging: bool = False
    benefit_meals: bool = False
    benefit_transport: bool = False
    benefit_company_car: bool = False

    lpp_status: LppStatus = LppStatus.OK
    lpp_line: LppLine | None = None
    lines: list[PayrunLine] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    EMPLOYEE_DEDUCTION_FIELDS = ("avs_ai_apg_emp", "ac_emp", "aanp_emp", "ijm_emp", "lpp_emp")
    EMPLOYER_CONTRIBUTION_FIELDS = (
        "avs_ai_apg_er",
        "ac_er",
        "aap_er",
        "aanp_er",
        "ijm_er",
        "af_er",
        "lpp_er",
    )

    @property
    def employee_deductions(self) -> Decimal:
        return sum((getattr(self, f) for f in self.EMPLOYEE_DEDUCTION_FIELDS), ZERO)

    @property
    def employer_contributions(self) -> Decimal:
        return sum((getattr(self, f) for f in self.EMPLOYER_CONTRIBUTION_FIELDS), ZERO)
