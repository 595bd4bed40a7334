"""Chart of accounts endpoints."""

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Path, Query, status

from bookkeeping_engine.api.dependencies import CompanyId, DbSession
from bookkeeping_engine.api.schemas import (
    AccountBalanceResponse,
    AccountCreate,
    AccountResponse,
    AccountUpdate,
    AccountUsageResponse,
    ErrorResponse,
)
from bookkeeping_engine.services.chart_of_accounts import ChartOfAccountsService
from bookkeeping_engine.services.ledger_service import LedgerService

router = APIRouter(prefix="/accounts", tags=["accounts"])

AccountCode = Annotated[str, Path(min_length=1, max_length=20)]


@router.get("", response_model=list[AccountResponse])
async def list_accounts(
    db: DbSession,
    company_id: CompanyId,
    active_only: bool = False,
) -> list[AccountResponse]:
    """List the company's chart of accounts ordered by code."""
    accounts = await ChartOfAccountsService(db).list_accounts(company_id, active_only=active_only)
    return [AccountResponse.model_validate(a) for a in accounts]


@router.post(
    "",
    response_model=AccountResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
)
async def create_account(
    db: DbSession,
    company_id: CompanyId,
    payload: AccountCreate,
) -> AccountResponse:
    account = await ChartOfAccountsService(db).create_account(
        company_id,
        payload.code,
        payload.name,
        payload.nature,
        parent_code=payload.parent_code,
        is_system=payload.is_system,
    )
    await db.commit()
    return AccountResponse.model_validate(account)


@router.post(
    "/install-template",
    response_model=list[AccountResponse],
    status_code=status.HTTP_201_CREATED,
)
async def install_template(db: DbSession, company_id: CompanyId) -> list[AccountResponse]:
    """Seed the Swiss SME chart. Returns only the accounts that were created."""
    created = await ChartOfAccountsService(db).install_template(company_id)
    await db.commit()
    return [AccountResponse.model_validate(a) for a in created]


@router.get(
    "/{code}",
    response_model=AccountResponse,
    responses={400: {"model": ErrorResponse, "description": "Unknown account code"}},
)
async def get_account(db: DbSession, company_id: CompanyId, code: AccountCode) -> AccountResponse:
    account = await ChartOfAccountsService(db).get_account(company_id, code)
    return AccountResponse.model_validate(account)


@router.patch(
    "/{code}",
    response_model=AccountResponse,
    responses={400: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def update_account(
    db: DbSession,
    company_id: CompanyId,
    code: AccountCode,
    payload: AccountUpdate,
) -> AccountResponse:
    """Rename, reclassify or re-parent. Nature is locked once entries exist."""
    account = await ChartOfAccountsService(db).update_account(
        company_id,
        code,
        name=payload.name,
        nature=payload.nature,
        parent_code=payload.parent_code,
        clear_parent=payload.clear_parent,
    )
    await db.commit()
    return AccountResponse.model_validate(account)


@router.post("/{code}/deactivate", response_model=AccountResponse)
async def deactivate_account(
    db: DbSession, company_id: CompanyId, code: AccountCode
) -> AccountResponse:
    account = await ChartOfAccountsService(db).deactivate_account(company_id, code)
    await db.commit()
    return AccountResponse.model_validate(account)


@router.post("/{code}/reactivate", response_model=AccountResponse)
async def reactivate_account(
    db: DbSession, company_id: CompanyId, code: AccountCode
) -> AccountResponse:
    account = await ChartOfAccountsService(db).reactivate_account(company_id, code)
    await db.commit()
    return AccountResponse.model_validate(account)


@router.delete(
    "/{code}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={422: {"model": ErrorResponse}},
)
async def delete_account(db: DbSession, company_id: CompanyId, code: AccountCode) -> None:
    """Hard delete; only for accounts without entries and without children."""
    await ChartOfAccountsService(db).delete_account(company_id, code)
    await db.commit()


@router.get("/{code}/has-entries", response_model=AccountUsageResponse)
async def account_has_entries(
    db: DbSession, company_id: CompanyId, code: AccountCode
) -> AccountUsageResponse:
    has_entries = await LedgerService(db).account_has_entries(company_id, code)
    return AccountUsageResponse(account_code=code, has_entries=has_entries)


@router.get("/{code}/balance", response_model=AccountBalanceResponse)
async def account_balance(
    db: DbSession,
    company_id: CompanyId,
    code: AccountCode,
    as_of: Annotated[date | None, Query()] = None,
) -> AccountBalanceResponse:
    balance = await LedgerService(db).account_balance(company_id, code, as_of=as_of)
    return AccountBalanceResponse(
        account_code=balance.account_code,
        debit_total=balance.debit_total,
        credit_total=balance.credit_total,
        balance=balance.balance,
    )
