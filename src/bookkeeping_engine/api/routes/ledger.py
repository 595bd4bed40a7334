"""Ledger endpoints: manual entries, reversals, trial balance."""

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from bookkeeping_engine.api.dependencies import CurrentActor, DbSession
from bookkeeping_engine.api.schemas import (
    AccountBalanceResponse,
    ErrorResponse,
    LedgerEntryCreate,
    LedgerEntryResponse,
    PostResponse,
    ReverseRequest,
    TrialBalanceResponse,
)
from bookkeeping_engine.services.ledger_service import LedgerService, LineInput

router = APIRouter(prefix="/ledger", tags=["ledger"])


@router.post(
    "/entries",
    response_model=PostResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Unknown or inactive account"},
        422: {"model": ErrorResponse, "description": "Entry does not balance"},
    },
)
async def create_entry(
    db: DbSession,
    actor: CurrentActor,
    payload: LedgerEntryCreate,
) -> PostResponse:
    """Post a manual entry.

    Replaying the same idempotency key returns the original entry with
    is_new=false instead of posting twice.
    """
    lines = [LineInput(**line.model_dump()) for line in payload.lines]
    result = await LedgerService(db).create_entry(
        actor.company_id,
        lines,
        idempotency_key=payload.idempotency_key,
        entry_date=payload.entry_date,
        description=payload.description,
        source_type=payload.source_type,
        source_id=payload.source_id,
        created_by=actor.user_id,
    )
    await db.commit()
    return PostResponse(entry_id=result.entry_id, is_new=result.is_new)


@router.get(
    "/entries/{entry_id}",
    response_model=LedgerEntryResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_entry(
    db: DbSession,
    actor: CurrentActor,
    entry_id: Annotated[UUID, Path()],
) -> LedgerEntryResponse:
    entry = await LedgerService(db).get_entry(actor.company_id, entry_id)
    return LedgerEntryResponse.model_validate(entry)


@router.post(
    "/entries/{entry_id}/reverse",
    response_model=PostResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse, "description": "Entry already reversed"},
    },
)
async def reverse_entry(
    db: DbSession,
    actor: CurrentActor,
    entry_id: Annotated[UUID, Path()],
    payload: ReverseRequest | None = None,
) -> PostResponse:
    payload = payload or ReverseRequest()
    result = await LedgerService(db).reverse_entry(
        actor.company_id,
        entry_id,
        reason=payload.reason,
        entry_date=payload.entry_date,
        created_by=actor.user_id,
    )
    await db.commit()
    return PostResponse(entry_id=result.entry_id, is_new=result.is_new)


@router.get("/trial-balance", response_model=TrialBalanceResponse)
async def trial_balance(
    db: DbSession,
    actor: CurrentActor,
    as_of: Annotated[date | None, Query()] = None,
) -> TrialBalanceResponse:
    report = await LedgerService(db).trial_balance(actor.company_id, as_of=as_of)
    return TrialBalanceResponse(
        rows=[
            AccountBalanceResponse(
                account_code=row.account_code,
                debit_total=row.debit_total,
                credit_total=row.credit_total,
                balance=row.balance,
            )
            for row in report.rows
        ],
        total_debit=report.total_debit,
        total_credit=report.total_credit,
    )
