"""Payrun API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from bookkeeping_engine.api.dependencies import CurrentActor, DbSession
from bookkeeping_engine.api.schemas import (
    CanModifyResponse,
    ErrorResponse,
    PayrunAuditResponse,
    PayrunCancel,
    PayrunCompute,
    PayrunCreate,
    PayrunDraftResponse,
    PayrunLineResponse,
    PayrunModify,
    PayrunResponse,
)
from bookkeeping_engine.calculators.types import PayPeriod, PayrunDraft
from bookkeeping_engine.services.payroll_service import PayrollService
from bookkeeping_engine.services.payrun_service import PayrunService

router = APIRouter(prefix="/payruns", tags=["payruns"])

PayrunId = Annotated[UUID, Path()]


def _draft_response(draft: PayrunDraft) -> PayrunDraftResponse:
    return PayrunDraftResponse(
        employee_id=draft.employee_id,
        period=str(draft.period),
        mode=draft.mode,
        base_gross=draft.base_gross,
        thirteenth_amount=draft.thirteenth_amount,
        gross=draft.gross,
        benefits_amount=draft.benefits_amount,
        employee_deductions=draft.employee_deductions,
        employer_contributions=draft.employer_contributions,
        net=draft.net,
        employer_cost=draft.employer_cost,
        lpp_status=draft.lpp_status.value,
        lines=[
            PayrunLineResponse(
                kind=line.kind.value,
                code=line.code,
                amount=line.amount,
                basis=line.basis,
                rate=line.rate,
                explanation=line.explanation,
            )
            for line in draft.lines
        ],
        warnings=list(draft.warnings),
    )


async def _compute(db: DbSession, actor: CurrentActor, payload: PayrunCompute) -> PayrunDraft:
    return await PayrollService(db).compute_payrun(
        actor.company_id,
        payload.employee_id,
        PayPeriod(payload.period_year, payload.period_month),
        payload.mode,
        hours=payload.hours,
        override_rate=payload.override_rate,
        ytd_ac_basis=payload.ytd_ac_basis,
    )


# ============================================================================
# Computation
# ============================================================================


@router.post(
    "/preview",
    response_model=PayrunDraftResponse,
    responses={
        400: {"model": ErrorResponse},
        422: {"model": ErrorResponse, "description": "Missing rate tables"},
    },
)
async def preview_payrun(
    db: DbSession,
    actor: CurrentActor,
    payload: PayrunCompute,
) -> PayrunDraftResponse:
    """Compute gross-to-net without persisting anything."""
    draft = await _compute(db, actor, payload)
    return _draft_response(draft)


@router.post(
    "",
    response_model=PayrunResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def create_payrun(
    db: DbSession,
    actor: CurrentActor,
    payload: PayrunCreate,
) -> PayrunResponse:
    """Compute and store a payrun in draft status."""
    draft = await _compute(db, actor, payload)
    payrun = await PayrunService(db).create_payrun(actor, draft, notes=payload.notes)
    await db.commit()
    return PayrunResponse.model_validate(payrun)


# ============================================================================
# Queries
# ============================================================================


@router.get("", response_model=list[PayrunResponse])
async def list_payruns(
    db: DbSession,
    actor: CurrentActor,
    period_year: Annotated[int | None, Query(ge=1900, le=2999)] = None,
    period_month: Annotated[int | None, Query(ge=1, le=12)] = None,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
) -> list[PayrunResponse]:
    payruns = await PayrunService(db).list_payruns(
        actor.company_id,
        period_year=period_year,
        period_month=period_month,
        status=status_filter,
    )
    return [PayrunResponse.model_validate(p) for p in payruns]


@router.get(
    "/{payrun_id}",
    response_model=PayrunResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payrun(db: DbSession, actor: CurrentActor, payrun_id: PayrunId) -> PayrunResponse:
    payrun = await PayrunService(db).get_payrun(actor.company_id, payrun_id)
    return PayrunResponse.model_validate(payrun)


@router.get(
    "/{payrun_id}/audits",
    response_model=list[PayrunAuditResponse],
    responses={404: {"model": ErrorResponse}},
)
async def list_audits(
    db: DbSession, actor: CurrentActor, payrun_id: PayrunId
) -> list[PayrunAuditResponse]:
    payrun = await PayrunService(db).get_payrun(actor.company_id, payrun_id)
    audits = sorted(payrun.audits, key=lambda a: a.created_at)
    return [PayrunAuditResponse.model_validate(a) for a in audits]


@router.get("/{payrun_id}/can-modify", response_model=CanModifyResponse)
async def can_modify(db: DbSession, actor: CurrentActor, payrun_id: PayrunId) -> CanModifyResponse:
    service = PayrunService(db)
    payrun = await service.get_payrun(actor.company_id, payrun_id)
    return CanModifyResponse(
        payrun_id=payrun.id,
        status=payrun.status,
        can_modify=await service.can_modify_payrun(payrun_id, actor),
    )


# ============================================================================
# Lifecycle
# ============================================================================


@router.post(
    "/{payrun_id}/submit",
    response_model=PayrunResponse,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def submit_payrun(db: DbSession, actor: CurrentActor, payrun_id: PayrunId) -> PayrunResponse:
    payrun = await PayrunService(db).submit_payrun(payrun_id, actor)
    await db.commit()
    return PayrunResponse.model_validate(payrun)


@router.post(
    "/{payrun_id}/approve",
    response_model=PayrunResponse,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def approve_payrun(
    db: DbSession, actor: CurrentActor, payrun_id: PayrunId
) -> PayrunResponse:
    """Approve a submitted payrun. The ledger entry is posted by the dispatcher."""
    payrun = await PayrunService(db).approve_payrun(payrun_id, actor)
    await db.commit()
    return PayrunResponse.model_validate(payrun)


@router.post(
    "/{payrun_id}/pay",
    response_model=PayrunResponse,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def pay_payrun(db: DbSession, actor: CurrentActor, payrun_id: PayrunId) -> PayrunResponse:
    payrun = await PayrunService(db).pay_payrun(payrun_id, actor)
    await db.commit()
    return PayrunResponse.model_validate(payrun)


@router.post(
    "/{payrun_id}/cancel",
    response_model=PayrunResponse,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def cancel_payrun(
    db: DbSession,
    actor: CurrentActor,
    payrun_id: PayrunId,
    payload: PayrunCancel | None = None,
) -> PayrunResponse:
    reason = payload.reason if payload else None
    payrun = await PayrunService(db).cancel_payrun(payrun_id, actor, reason=reason)
    await db.commit()
    return PayrunResponse.model_validate(payrun)


@router.patch(
    "/{payrun_id}",
    response_model=PayrunResponse,
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse, "description": "Role or status forbids the edit"},
        409: {"model": ErrorResponse},
    },
)
async def modify_payrun(
    db: DbSession,
    actor: CurrentActor,
    payrun_id: PayrunId,
    payload: PayrunModify,
) -> PayrunResponse:
    """Edit payrun amounts; every changed field is audited."""
    payrun = await PayrunService(db).modify_payrun(
        payrun_id, payload.changes, actor, reason=payload.reason
    )
    await db.commit()
    return PayrunResponse.model_validate(payrun)
