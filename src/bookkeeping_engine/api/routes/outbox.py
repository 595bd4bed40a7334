"""Outbox endpoints: raise events and watch the backlog."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from bookkeeping_engine.api.dependencies import CompanyId, CurrentActor, DbSession
from bookkeeping_engine.api.schemas import (
    EnqueueResponse,
    ErrorResponse,
    OutboxEnqueue,
    OutboxEventResponse,
    OutboxStatsResponse,
)
from bookkeeping_engine.errors import NotFoundError
from bookkeeping_engine.outbox.service import OutboxService

router = APIRouter(prefix="/outbox", tags=["outbox"])


@router.post(
    "/events",
    response_model=EnqueueResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={400: {"model": ErrorResponse}},
)
async def enqueue_event(
    db: DbSession,
    actor: CurrentActor,
    payload: OutboxEnqueue,
) -> EnqueueResponse:
    """Raise a domain event. The ledger is updated asynchronously by the dispatcher."""
    result = await OutboxService(db).enqueue_domain_event(
        actor,
        payload.event_type,
        payload.source_type,
        payload.source_id,
        payload.payload,
        idempotency_key=payload.idempotency_key,
    )
    await db.commit()
    return EnqueueResponse(event_id=result.event_id, is_new=result.is_new)


@router.get("/stats", response_model=OutboxStatsResponse)
async def outbox_stats(db: DbSession, company_id: CompanyId) -> OutboxStatsResponse:
    stats = await OutboxService(db).stats(company_id)
    return OutboxStatsResponse(
        pending=stats.pending,
        processing=stats.processing,
        done=stats.done,
        failed=stats.failed,
        unprocessed=stats.unprocessed,
        oldest_pending_age_seconds=stats.oldest_pending_age_seconds(),
    )


@router.get("/failed", response_model=list[OutboxEventResponse])
async def list_failed(
    db: DbSession,
    company_id: CompanyId,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> list[OutboxEventResponse]:
    events = await OutboxService(db).list_failed(company_id, limit=limit)
    return [OutboxEventResponse.model_validate(e) for e in events]


@router.get(
    "/events/{event_id}",
    response_model=OutboxEventResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_event(
    db: DbSession,
    company_id: CompanyId,
    event_id: Annotated[UUID, Path()],
) -> OutboxEventResponse:
    event = await OutboxService(db).get_event(event_id)
    if event.company_id != company_id:
        raise NotFoundError("Outbox event", event_id)
    return OutboxEventResponse.model_validate(event)


@router.post(
    "/events/{event_id}/requeue",
    response_model=OutboxEventResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def requeue_event(
    db: DbSession,
    company_id: CompanyId,
    event_id: Annotated[UUID, Path()],
) -> OutboxEventResponse:
    """Send a failed event back to pending with a fresh retry budget."""
    service = OutboxService(db)
    event = await service.get_event(event_id)
    if event.company_id != company_id:
        raise NotFoundError("Outbox event", event_id)
    event = await service.requeue_failed(event_id)
    await db.commit()
    return OutboxEventResponse.model_validate(event)
