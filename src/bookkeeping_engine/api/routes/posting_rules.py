"""Posting rule endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from bookkeeping_engine.api.dependencies import CompanyId, DbSession
from bookkeeping_engine.api.schemas import (
    ErrorResponse,
    PostingRuleCreate,
    PostingRuleResponse,
    PostingRuleToggle,
    ResolvedLineResponse,
    ResolveRequest,
)
from bookkeeping_engine.posting.rule_engine import PostingRuleEngine, PostingRuleService

router = APIRouter(prefix="/posting-rules", tags=["posting-rules"])


@router.get("", response_model=list[PostingRuleResponse])
async def list_rules(
    db: DbSession,
    company_id: CompanyId,
    event_type: Annotated[str | None, Query()] = None,
) -> list[PostingRuleResponse]:
    rules = await PostingRuleService(db).list_rules(company_id, event_type=event_type)
    return [PostingRuleResponse.model_validate(r) for r in rules]


@router.post(
    "",
    response_model=PostingRuleResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
)
async def create_rule(
    db: DbSession,
    company_id: CompanyId,
    payload: PostingRuleCreate,
) -> PostingRuleResponse:
    """Store a rule after validating its formula and target account."""
    rule = await PostingRuleService(db).create_rule(company_id, **payload.model_dump())
    await db.commit()
    return PostingRuleResponse.model_validate(rule)


@router.post(
    "/install-defaults",
    response_model=list[PostingRuleResponse],
    status_code=status.HTTP_201_CREATED,
)
async def install_defaults(db: DbSession, company_id: CompanyId) -> list[PostingRuleResponse]:
    rules = await PostingRuleService(db).install_default_rules(company_id)
    await db.commit()
    return [PostingRuleResponse.model_validate(r) for r in rules]


@router.patch(
    "/{rule_id}",
    response_model=PostingRuleResponse,
    responses={404: {"model": ErrorResponse}},
)
async def toggle_rule(
    db: DbSession,
    company_id: CompanyId,
    rule_id: Annotated[UUID, Path()],
    payload: PostingRuleToggle,
) -> PostingRuleResponse:
    rule = await PostingRuleService(db).set_active(company_id, rule_id, payload.is_active)
    await db.commit()
    return PostingRuleResponse.model_validate(rule)


@router.post(
    "/resolve",
    response_model=list[ResolvedLineResponse],
    responses={422: {"model": ErrorResponse, "description": "No rule or formula failure"}},
)
async def resolve(
    db: DbSession,
    company_id: CompanyId,
    payload: ResolveRequest,
) -> list[ResolvedLineResponse]:
    """Dry run: show the lines an event would post, without writing anything."""
    lines = await PostingRuleEngine(db).resolve(company_id, payload.event_type, payload.payload)
    return [ResolvedLineResponse.model_validate(line) for line in lines]
