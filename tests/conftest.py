"""Pytest fixtures for bookkeeping engine tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from bookkeeping_engine.actor import Actor, Role
from bookkeeping_engine.calculators.types import (
    AllowancesSnapshot,
    EmployeeSnapshot,
    InsuranceSnapshot,
    LppAgeBand,
    LppPlanSnapshot,
    PayrollParameters,
    RatesSnapshot,
)
from bookkeeping_engine.database import create_schema, make_session_factory
from bookkeeping_engine.models import (
    Account,
    AllowancesProfile,
    Company,
    Employee,
    InsuranceConfig,
    LppAgeRate,
    LppPlan,
    PayrollRates,
    PostingRule,
)
from bookkeeping_engine.posting.rule_engine import PostingRuleService
from bookkeeping_engine.services.chart_of_accounts import ChartOfAccountsService

TEST_YEAR = 2025

# 2025 Swiss parameters used across the payroll tests
AVS_RATE = Decimal("0.053")
AC_RATE = Decimal("0.011")
AC_CEILING = Decimal("148200")
AF_RATE = Decimal("0.02")
AAP_RATE = Decimal("0.007")
AANP_RATE = Decimal("0.013")

LPP_BANDS = [(25, 34, "0.07"), (35, 44, "0.10"), (45, 54, "0.15"), (55, 65, "0.18")]


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite so the dispatcher's own sessions see committed rows."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookkeeping.db'}", echo=False)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Tenant and chart
# ============================================================================


@pytest.fixture
async def company(session: AsyncSession) -> Company:
    company = Company(id=uuid4(), name="Cabinet Test SA", edit_requires_reapproval=True)
    session.add(company)
    await session.flush()
    return company


@pytest.fixture
async def other_company(session: AsyncSession) -> Company:
    company = Company(id=uuid4(), name="Autre Sàrl", edit_requires_reapproval=True)
    session.add(company)
    await session.flush()
    return company


@pytest.fixture
async def chart(session: AsyncSession, company: Company) -> list[Account]:
    """The Swiss SME template installed for the test company."""
    return await ChartOfAccountsService(session).install_template(company.id)


@pytest.fixture
async def posting_rules(
    session: AsyncSession, company: Company, chart: list[Account]
) -> list[PostingRule]:
    """Default invoice and payroll rules."""
    return await PostingRuleService(session).install_default_rules(company.id)


# ============================================================================
# Actors
# ============================================================================


@pytest.fixture
def owner(company: Company) -> Actor:
    return Actor(company_id=company.id, user_id=uuid4(), role=Role.OWNER)


@pytest.fixture
def hr(company: Company) -> Actor:
    return Actor(company_id=company.id, user_id=uuid4(), role=Role.HR)


@pytest.fixture
def fiduciary(company: Company) -> Actor:
    return Actor(company_id=company.id, user_id=uuid4(), role=Role.FIDUCIARY)


@pytest.fixture
def viewer(company: Company) -> Actor:
    return Actor(company_id=company.id, user_id=uuid4(), role=Role.VIEWER)


# ============================================================================
# Payroll parameter tables (database)
# ============================================================================


@pytest.fixture
async def payroll_tables(session: AsyncSession, company: Company) -> LppPlan:
    """Global rates, insurance and allowances for TEST_YEAR plus a company LPP plan."""
    session.add_all(
        [
            PayrollRates(
                company_id=None,
                year=TEST_YEAR,
                avs_ai_apg_employee=AVS_RATE,
                avs_ai_apg_employer=AVS_RATE,
                ac_employee=AC_RATE,
                ac_employer=AC_RATE,
                ac_ceiling_year=AC_CEILING,
                af_employer=AF_RATE,
            ),
            InsuranceConfig(
                company_id=None,
                year=TEST_YEAR,
                laa_ceiling_year=Decimal("148200"),
                aap_employer_rate=AAP_RATE,
                aanp_rate=AANP_RATE,
                aanp_employee_share=Decimal("1"),
                ijm_enabled=False,
            ),
            AllowancesProfile(
                company_id=None,
                year=TEST_YEAR,
                lodging_monthly=Decimal("345"),
                meals_monthly=Decimal("645"),
                transport_monthly=Decimal("0"),
                company_car_monthly_pct=Decimal("0.009"),
            ),
        ]
    )
    plan = LppPlan(
        company_id=company.id,
        name="Plan minimum LPP",
        is_active=True,
        entry_threshold=Decimal("22050"),
        coordination_deduction=Decimal("25725"),
        max_insurable_salary=Decimal("88200"),
        min_coordinated_salary=Decimal("3675"),
        employer_share=Decimal("0.5"),
        risk_admin_rate=Decimal("0.01"),
        age_rates=[
            LppAgeRate(age_min=low, age_max=high, saving_rate=Decimal(rate))
            for low, high, rate in LPP_BANDS
        ],
    )
    session.add(plan)
    await session.flush()
    return plan


@pytest.fixture
async def employee(session: AsyncSession, company: Company, payroll_tables: LppPlan) -> Employee:
    """Monthly employee, 6000 CHF, aged 39 in TEST_YEAR, in the company plan."""
    employee = Employee(
        company_id=company.id,
        first_name="Anna",
        last_name="Muster",
        birth_date=date(1985, 6, 15),
        start_date=date(2020, 1, 1),
        employment_type="monthly",
        monthly_base=Decimal("6000"),
        hourly_rate_default=Decimal("40"),
        lpp_plan_id=payroll_tables.id,
    )
    session.add(employee)
    await session.flush()
    return employee


# ============================================================================
# Payroll parameter snapshots (no database)
# ============================================================================


@pytest.fixture
def lpp_plan_snapshot() -> LppPlanSnapshot:
    return LppPlanSnapshot(
        plan_id=uuid4(),
        is_active=True,
        entry_threshold=Decimal("22050"),
        coordination_deduction=Decimal("25725"),
        max_insurable_salary=Decimal("88200"),
        employer_share=Decimal("0.5"),
        risk_admin_rate=Decimal("0.01"),
        min_coordinated_salary=Decimal("3675"),
        age_bands=tuple(LppAgeBand(low, high, Decimal(rate)) for low, high, rate in LPP_BANDS),
    )


@pytest.fixture
def payroll_params(lpp_plan_snapshot: LppPlanSnapshot) -> PayrollParameters:
    return PayrollParameters(
        rates=RatesSnapshot(
            year=TEST_YEAR,
            avs_ai_apg_employee=AVS_RATE,
            avs_ai_apg_employer=AVS_RATE,
            ac_employee=AC_RATE,
            ac_employer=AC_RATE,
            ac_ceiling_year=AC_CEILING,
            af_employer=AF_RATE,
        ),
        insurance=InsuranceSnapshot(
            laa_ceiling_year=Decimal("148200"),
            aap_employer_rate=AAP_RATE,
            aanp_rate=AANP_RATE,
        ),
        allowances=AllowancesSnapshot(
            lodging_monthly=Decimal("345"),
            meals_monthly=Decimal("645"),
            company_car_monthly_pct=Decimal("0.009"),
        ),
        lpp_plan=lpp_plan_snapshot,
    )


@pytest.fixture
def employee_snapshot() -> EmployeeSnapshot:
    return EmployeeSnapshot(
        employee_id=uuid4(),
        start_date=date(2020, 1, 1),
        birth_date=date(1985, 6, 15),
        monthly_base=Decimal("6000"),
        hourly_rate_default=Decimal("40"),
    )
