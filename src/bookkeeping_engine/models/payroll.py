"""Employee, payroll parameter, payrun and audit models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bookkeeping_engine.models.base import Base, TimestampMixin


def _money(**kwargs) -> Mapped[Decimal]:
    return mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"), **kwargs)


def _rate(**kwargs) -> Mapped[Decimal]:
    return mapped_column(Numeric(8, 5), nullable=False, default=Decimal("0"), **kwargs)


class PayrunMode(str, Enum):
    """How base gross is determined."""

    HOURLY = "hourly"
    MONTHLY = "monthly"
    EVENT = "event"


# ===== Employees =====


class Employee(Base, TimestampMixin):
    """Employee snapshot source."""

    __tablename__ = "employee"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.id", ondelete="CASCADE"), nullable=False, index=True
    )
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    birth_date: Mapped[date | None] = mapped_column(Date)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date)
    employment_type: Mapped[str] = mapped_column(String(20), nullable=False, default="monthly")

    monthly_base: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    hourly_rate_default: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    hourly_multiplier: Mapped[Decimal] = mapped_column(
        Numeric(8, 5), nullable=False, default=Decimal("1")
    )

    thirteenth_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    thirteenth_fraction: Mapped[Decimal | None] = mapped_column(Numeric(8, 5))

    lpp_plan_id: Mapped[UUID | None] = mapped_column(ForeignKey("lpp_plan.id"))
    lpp_employer_share_override: Mapped[Decimal | None] = mapped_column(Numeric(6, 4))

    benefit_lodging: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    benefit_meals: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    benefit_transport: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    benefit_company_car: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    company_car_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))

    __table_args__ = (
        CheckConstraint(
            "employment_type IN ('hourly', 'monthly', 'event')",
            name="employee_employment_type_check",
        ),
    )

    replacements: Mapped[list[EmployeeReplacement]] = relationship(
        back_populates="employee", cascade="all, delete-orphan"
    )


class EmployeeReplacement(Base, TimestampMixin):
    """Replacement/temp assignment paid at a flat indemnity per event."""

    __tablename__ = "employee_replacement"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.id", ondelete="CASCADE"), nullable=False, index=True
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date)
    indemnity_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    employee: Mapped[Employee] = relationship(back_populates="replacements")


# ===== Parameter tables (read-only for the calculator) =====


class PayrollRates(Base, TimestampMixin):
    """Social insurance rates for one year. company_id null means global default."""

    __tablename__ = "payroll_rates"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID | None] = mapped_column(ForeignKey("company.id", ondelete="CASCADE"))
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    avs_ai_apg_employee: Mapped[Decimal] = _rate()
    avs_ai_apg_employer: Mapped[Decimal] = _rate()
    ac_employee: Mapped[Decimal] = _rate()
    ac_employer: Mapped[Decimal] = _rate()
    ac_ceiling_year: Mapped[Decimal] = _money()
    af_employer: Mapped[Decimal] = _rate()

    __table_args__ = (UniqueConstraint("company_id", "year", name="payroll_rates_year_unique"),)


class InsuranceConfig(Base, TimestampMixin):
    """Accident (LAA) and daily-sickness (IJM) insurance parameters for one year."""

    __tablename__ = "insurance_config"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID | None] = mapped_column(ForeignKey("company.id", ondelete="CASCADE"))
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    laa_ceiling_year: Mapped[Decimal] = _money()
    aap_employer_rate: Mapped[Decimal] = _rate()
    aanp_rate: Mapped[Decimal] = _rate()
    aanp_employee_share: Mapped[Decimal] = mapped_column(
        Numeric(6, 4), nullable=False, default=Decimal("1")
    )
    ijm_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ijm_rate: Mapped[Decimal] = _rate()
    ijm_employee_share: Mapped[Decimal] = mapped_column(
        Numeric(6, 4), nullable=False, default=Decimal("0.5")
    )

    __table_args__ = (
        UniqueConstraint("company_id", "year", name="insurance_config_year_unique"),
    )


class AllowancesProfile(Base, TimestampMixin):
    """Benefit-in-kind valuations for one year."""

    __tablename__ = "allowances_profile"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID | None] = mapped_column(ForeignKey("company.id", ondelete="CASCADE"))
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    lodging_monthly: Mapped[Decimal] = _money()
    meals_monthly: Mapped[Decimal] = _money()
    transport_monthly: Mapped[Decimal] = _money()
    company_car_monthly_pct: Mapped[Decimal] = _rate()

    __table_args__ = (
        UniqueConstraint("company_id", "year", name="allowances_profile_year_unique"),
    )


class LppPlan(Base, TimestampMixin):
    """Occupational pension plan."""

    __tablename__ = "lpp_plan"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    entry_threshold: Mapped[Decimal] = _money()
    coordination_deduction: Mapped[Decimal] = _money()
    max_insurable_salary: Mapped[Decimal] = _money()
    min_coordinated_salary: Mapped[Decimal] = _money()
    employer_share: Mapped[Decimal] = mapped_column(
        Numeric(6, 4), nullable=False, default=Decimal("0.5")
    )
    risk_admin_rate: Mapped[Decimal] = _rate()

    age_rates: Mapped[list[LppAgeRate]] = relationship(
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="LppAgeRate.age_min",
    )


class LppAgeRate(Base):
    """Saving rate for an inclusive age band."""

    __tablename__ = "lpp_age_rate"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    plan_id: Mapped[UUID] = mapped_column(
        ForeignKey("lpp_plan.id", ondelete="CASCADE"), nullable=False, index=True
    )
    age_min: Mapped[int] = mapped_column(Integer, nullable=False)
    age_max: Mapped[int] = mapped_column(Integer, nullable=False)
    saving_rate: Mapped[Decimal] = _rate()

    __table_args__ = (CheckConstraint("age_max >= age_min", name="lpp_age_rate_band_check"),)

    plan: Mapped[LppPlan] = relationship(back_populates="age_rates")


# ===== Payruns =====


class Payrun(Base, TimestampMixin):
    """One employee for one pay period."""

    __tablename__ = "payrun"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.id", ondelete="CASCADE"), nullable=False, index=True
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.id", ondelete="RESTRICT"), nullable=False
    )
    period_year: Mapped[int] = mapped_column(Integer, nullable=False)
    period_month: Mapped[int] = mapped_column(Integer, nullable=False)
    mode: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    # Incremented by every edit after approval; versions the ledger events
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    hours: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    hourly_rate: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    base_gross: Mapped[Decimal] = _money()
    thirteenth_fraction: Mapped[Decimal] = _rate()
    thirteenth_amount: Mapped[Decimal] = _money()
    gross: Mapped[Decimal] = _money()

    benefit_lodging: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    benefit_meals: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    benefit_transport: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    benefit_company_car: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    benefits_amount: Mapped[Decimal] = _money()

    avs_ai_apg_emp: Mapped[Decimal] = _money()
    avs_ai_apg_er: Mapped[Decimal] = _money()
    ac_emp: Mapped[Decimal] = _money()
    ac_er: Mapped[Decimal] = _money()
    aap_er: Mapped[Decimal] = _money()
    aanp_emp: Mapped[Decimal] = _money()
    aanp_er: Mapped[Decimal] = _money()
    ijm_emp: Mapped[Decimal] = _money()
    ijm_er: Mapped[Decimal] = _money()
    af_er: Mapped[Decimal] = _money()
    lpp_emp: Mapped[Decimal] = _money()
    lpp_er: Mapped[Decimal] = _money()
    lpp_status: Mapped[str] = mapped_column(String(30), nullable=False, default="ok")

    net: Mapped[Decimal] = _money()
    employer_cost: Mapped[Decimal] = _money()

    notes: Mapped[str | None] = mapped_column(Text)
    engine_version: Mapped[str | None] = mapped_column(String(20))
    created_by: Mapped[UUID | None]
    submitted_at: Mapped[datetime | None]
    submitted_by: Mapped[UUID | None]
    approved_at: Mapped[datetime | None]
    approved_by: Mapped[UUID | None]
    paid_at: Mapped[datetime | None]
    canceled_at: Mapped[datetime | None]
    modified_by: Mapped[UUID | None]
    modified_at: Mapped[datetime | None]
    modification_notes: Mapped[str | None] = mapped_column(Text)
    ledger_entry_id: Mapped[UUID | None]
    payment_entry_id: Mapped[UUID | None]

    __table_args__ = (
        CheckConstraint("mode IN ('hourly', 'monthly', 'event')", name="payrun_mode_check"),
        CheckConstraint(
            "status IN ('draft', 'submitted', 'approved', 'paid', 'canceled')",
            name="payrun_status_check",
        ),
        CheckConstraint("period_month BETWEEN 1 AND 12", name="payrun_period_month_check"),
        Index("payrun_employee_period_idx", "company_id", "employee_id", "period_year", "period_month"),
    )

    lpp_line: Mapped[PayrollLppLine | None] = relationship(
        back_populates="payrun", cascade="all, delete-orphan", uselist=False
    )
    audits: Mapped[list[PayrunAudit]] = relationship(
        back_populates="payrun",
        cascade="all, delete-orphan",
        order_by="PayrunAudit.created_at",
    )


class PayrollLppLine(Base):
    """Pension contribution derived for one payrun."""

    __tablename__ = "payroll_lpp_line"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payrun_id: Mapped[UUID] = mapped_column(
        ForeignKey("payrun.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    plan_id: Mapped[UUID | None]
    age_years: Mapped[int] = mapped_column(Integer, nullable=False)
    annual_insured_salary: Mapped[Decimal] = _money()
    saving_rate: Mapped[Decimal] = _rate()
    risk_admin_rate: Mapped[Decimal] = _rate()
    employer_share: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    employee_amount: Mapped[Decimal] = _money()
    employer_amount: Mapped[Decimal] = _money()

    payrun: Mapped[Payrun] = relationship(back_populates="lpp_line")


class PayrunAudit(Base, TimestampMixin):
    """One post-computation field change on a payrun."""

    __tablename__ = "payrun_audit"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payrun_id: Mapped[UUID] = mapped_column(
        ForeignKey("payrun.id", ondelete="CASCADE"), nullable=False, index=True
    )
    company_id: Mapped[UUID] = mapped_column(nullable=False)
    field_name: Mapped[str] = mapped_column(String(50), nullable=False)
    old_value: Mapped[str | None] = mapped_column(Text)
    new_value: Mapped[str | None] = mapped_column(Text)
    modified_by: Mapped[UUID | None]
    change_reason: Mapped[str | None] = mapped_column(Text)
    status_at_change: Mapped[str] = mapped_column(String(20), nullable=False)
    approved_by: Mapped[UUID | None]
    approved_at: Mapped[datetime | None]

    payrun: Mapped[Payrun] = relationship(back_populates="audits")
