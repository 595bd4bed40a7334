"""Loads payroll parameter snapshots and runs the calculator."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TypeVar
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bookkeeping_engine.calculators.payroll_calculator import PayrollCalculator
from bookkeeping_engine.calculators.types import (
    AllowancesSnapshot,
    EmployeeSnapshot,
    InsuranceSnapshot,
    LppPlanSnapshot,
    PayPeriod,
    PayrollParameters,
    PayrunDraft,
    RatesSnapshot,
    ReplacementSnapshot,
)
from bookkeeping_engine.config import PayrollPolicy, get_settings
from bookkeeping_engine.errors import MissingRateTableError, NotFoundError, ValidationError
from bookkeeping_engine.models import (
    AllowancesProfile,
    Company,
    Employee,
    EmployeeReplacement,
    InsuranceConfig,
    LppPlan,
    PayrollRates,
    PayrunMode,
)

logger = logging.getLogger(__name__)

YearTable = TypeVar("YearTable", PayrollRates, InsuranceConfig, AllowancesProfile)


class PayrollService:
    """Builds PayrollParameters for a company and year, then computes drafts.

    Parameter lookup order for year-scoped tables:
    1. Row for (company_id, year)
    2. Global default row (company_id IS NULL, year)
    """

    def __init__(self, session: AsyncSession, policy: PayrollPolicy | None = None):
        self.session = session
        self.policy = policy or get_settings().payroll

    async def _year_table(
        self, model: type[YearTable], company_id: UUID, year: int
    ) -> YearTable | None:
        result = await self.session.execute(
            select(model)
            .where(
                model.year == year,
                or_(model.company_id == company_id, model.company_id.is_(None)),
            )
            # Company-specific rows sort before the global default
            .order_by(model.company_id.is_(None))
        )
        return result.scalars().first()

    async def get_employee(self, company_id: UUID, employee_id: UUID) -> Employee:
        result = await self.session.execute(
            select(Employee).where(Employee.id == employee_id, Employee.company_id == company_id)
        )
        employee = result.scalar_one_or_none()
        if employee is None:
            raise NotFoundError("Employee", employee_id)
        return employee

    async def load_parameters(
        self, company_id: UUID, year: int, employee: Employee | None = None
    ) -> PayrollParameters:
        """Snapshot every parameter table the calculator needs for one year.

        Raises:
            MissingRateTableError: no rates or insurance row for the year, or
                no allowances profile while the employee has benefits in kind
        """
        company = await self.session.get(Company, company_id)
        if company is None:
            raise NotFoundError("Company", company_id)

        rates = await self._year_table(PayrollRates, company_id, year)
        if rates is None:
            raise MissingRateTableError("payroll_rates", company_id, year)
        insurance = await self._year_table(InsuranceConfig, company_id, year)
        if insurance is None:
            raise MissingRateTableError("insurance_config", company_id, year)
        allowances = await self._year_table(AllowancesProfile, company_id, year)

        lpp_plan = None
        if employee is not None:
            snapshot = EmployeeSnapshot.from_model(employee)
            if snapshot.has_benefits and allowances is None:
                raise MissingRateTableError("allowances_profile", company_id, year)
            if employee.lpp_plan_id is not None:
                result = await self.session.execute(
                    select(LppPlan)
                    .where(LppPlan.id == employee.lpp_plan_id, LppPlan.company_id == company_id)
                    .options(selectinload(LppPlan.age_rates))
                )
                lpp_plan = result.scalar_one_or_none()

        return PayrollParameters(
            rates=RatesSnapshot.from_model(rates),
            insurance=InsuranceSnapshot.from_model(insurance),
            allowances=AllowancesSnapshot.from_model(allowances) if allowances else None,
            lpp_plan=LppPlanSnapshot.from_model(lpp_plan) if lpp_plan else None,
            policy=self.policy,
            thirteenth_fraction=company.thirteenth_fraction,
        )

    async def find_replacement(
        self, employee_id: UUID, period: PayPeriod
    ) -> ReplacementSnapshot | None:
        """Active replacement record overlapping the period, latest start first."""
        result = await self.session.execute(
            select(EmployeeReplacement)
            .where(
                EmployeeReplacement.employee_id == employee_id,
                EmployeeReplacement.is_active.is_(True),
                EmployeeReplacement.start_date <= period.end,
                or_(
                    EmployeeReplacement.end_date.is_(None),
                    EmployeeReplacement.end_date >= period.start,
                ),
            )
            .order_by(EmployeeReplacement.start_date.desc())
        )
        replacement = result.scalars().first()
        return ReplacementSnapshot.from_model(replacement) if replacement else None

    async def compute_payrun(
        self,
        company_id: UUID,
        employee_id: UUID,
        period: PayPeriod,
        mode: PayrunMode | str,
        hours: Decimal | None = None,
        override_rate: Decimal | None = None,
        ytd_ac_basis: Decimal | None = None,
    ) -> PayrunDraft:
        """Compute a draft from the stored employee and parameter tables.

        Reads only; nothing is written.
        """
        try:
            mode = PayrunMode(mode)
        except ValueError as exc:
            raise ValidationError(f"Unknown payrun mode {mode!r}") from exc
        employee = await self.get_employee(company_id, employee_id)
        params = await self.load_parameters(company_id, period.year, employee)

        replacement = None
        if mode == PayrunMode.EVENT:
            replacement = await self.find_replacement(employee_id, period)

        draft = PayrollCalculator(params).compute(
            EmployeeSnapshot.from_model(employee),
            period,
            mode,
            hours=hours,
            override_rate=override_rate,
            replacement=replacement,
            ytd_ac_basis=ytd_ac_basis,
        )
        logger.info(
            "Computed payrun draft for employee %s period %s: gross=%s net=%s lpp=%s",
            employee_id,
            period,
            draft.gross,
            draft.net,
            draft.lpp_status.value,
        )
        return draft
