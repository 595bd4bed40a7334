"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    context: dict[str, Any] | None = None


# ============================================================================
# Chart of accounts
# ============================================================================


class AccountCreate(BaseModel):
    """Schema for creating an account."""

    code: str = Field(min_length=1, max_length=20)
    name: str = Field(min_length=1)
    nature: Literal["asset", "liability", "expense", "revenue", "memo"]
    parent_code: str | None = None
    is_system: bool = False


class AccountUpdate(BaseModel):
    """Schema for renaming, reclassifying or re-parenting an account."""

    name: str | None = None
    nature: Literal["asset", "liability", "expense", "revenue", "memo"] | None = None
    parent_code: str | None = None
    clear_parent: bool = False


class AccountResponse(BaseModel):
    """Schema for account response."""

    model_config = ConfigDict(from_attributes=True)

    code: str
    name: str
    nature: str
    parent_code: str | None = None
    level: int
    is_active: bool
    is_system: bool


class AccountUsageResponse(BaseModel):
    account_code: str
    has_entries: bool


class AccountBalanceResponse(BaseModel):
    account_code: str
    debit_total: Decimal
    credit_total: Decimal
    balance: Decimal


class TrialBalanceResponse(BaseModel):
    rows: list[AccountBalanceResponse]
    total_debit: Decimal
    total_credit: Decimal


# ============================================================================
# Ledger
# ============================================================================


class LedgerLineCreate(BaseModel):
    """One line of a manual entry. Exactly one of debit/credit is non-zero."""

    account_code: str
    debit: Decimal = Decimal("0")
    credit: Decimal = Decimal("0")
    vat_code: str | None = None
    vat_rate: Decimal | None = None
    vat_amount: Decimal | None = None
    amount_net: Decimal | None = None
    description: str | None = None


class LedgerEntryCreate(BaseModel):
    """Schema for posting a manual entry."""

    lines: list[LedgerLineCreate]
    idempotency_key: str | None = Field(default=None, max_length=255)
    entry_date: date | None = None
    description: str | None = None
    source_type: str | None = None
    source_id: str | None = None


class LedgerLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    line_no: int
    account_code: str
    account_name: str | None = None
    debit: Decimal
    credit: Decimal
    vat_code: str | None = None
    vat_rate: Decimal | None = None
    vat_amount: Decimal | None = None
    amount_net: Decimal | None = None
    description: str | None = None


class LedgerEntryResponse(BaseModel):
    """Schema for ledger entry response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    entry_date: date
    description: str | None = None
    source_type: str | None = None
    source_id: str | None = None
    idempotency_key: str | None = None
    posted_at: datetime | None = None
    reversed_of: UUID | None = None
    auto_generated: bool
    lines: list[LedgerLineResponse]


class PostResponse(BaseModel):
    """Result of a posting; is_new is False for an idempotent replay."""

    entry_id: UUID
    is_new: bool


class ReverseRequest(BaseModel):
    reason: str | None = None
    entry_date: date | None = None


# ============================================================================
# Posting rules
# ============================================================================


class PostingRuleCreate(BaseModel):
    """Schema for creating a posting rule."""

    event_type: str
    line_type: str = Field(min_length=1, max_length=50)
    side: Literal["debit", "credit"]
    account_code: str
    formula: dict[str, Any]
    account_name: str | None = None
    vat_code_default: str | None = None
    vat_rate_field: str | None = None
    description: str | None = None
    sort_order: int = 0


class PostingRuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event_type: str
    line_type: str
    side: str
    account_code: str
    account_name: str | None = None
    vat_code_default: str | None = None
    vat_rate_field: str | None = None
    formula: dict[str, Any]
    description: str | None = None
    is_active: bool
    sort_order: int


class PostingRuleToggle(BaseModel):
    is_active: bool


class ResolveRequest(BaseModel):
    """Dry-run an event against the company's rules."""

    event_type: str
    payload: dict[str, Any]


class ResolvedLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    line_type: str
    side: str
    account_code: str
    account_name: str | None = None
    amount: Decimal
    vat_code: str | None = None
    vat_rate: Decimal | None = None


# ============================================================================
# Outbox
# ============================================================================


class OutboxEnqueue(BaseModel):
    """Schema for raising a domain event."""

    event_type: str
    source_type: str = Field(min_length=1, max_length=50)
    source_id: str = Field(min_length=1, max_length=100)
    payload: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: str | None = Field(default=None, max_length=255)


class EnqueueResponse(BaseModel):
    event_id: UUID
    is_new: bool


class OutboxEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event_type: str
    source_type: str
    source_id: str
    status: str
    retry_count: int
    next_run_at: datetime
    processed_at: datetime | None = None
    failed_at: datetime | None = None
    error_message: str | None = None
    ledger_entry_id: UUID | None = None
    created_at: datetime


class OutboxStatsResponse(BaseModel):
    pending: int
    processing: int
    done: int
    failed: int
    unprocessed: int
    oldest_pending_age_seconds: float


# ============================================================================
# Payruns
# ============================================================================


class PayrunCompute(BaseModel):
    """Inputs of ComputePayrun."""

    employee_id: UUID
    period_year: int = Field(ge=1900, le=2999)
    period_month: int = Field(ge=1, le=12)
    mode: Literal["hourly", "monthly", "event"]
    hours: Decimal | None = Field(default=None, gt=0)
    override_rate: Decimal | None = Field(default=None, gt=0)
    ytd_ac_basis: Decimal | None = Field(default=None, ge=0)


class PayrunCreate(PayrunCompute):
    notes: str | None = None


class PayrunLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: str
    code: str
    amount: Decimal
    basis: Decimal | None = None
    rate: Decimal | None = None
    explanation: str | None = None


class PayrunDraftResponse(BaseModel):
    """Computed draft; nothing is persisted."""

    employee_id: UUID
    period: str
    mode: str
    base_gross: Decimal
    thirteenth_amount: Decimal
    gross: Decimal
    benefits_amount: Decimal
    employee_deductions: Decimal
    employer_contributions: Decimal
    net: Decimal
    employer_cost: Decimal
    lpp_status: str
    lines: list[PayrunLineResponse]
    warnings: list[str]


class PayrunResponse(BaseModel):
    """Schema for payrun response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    employee_id: UUID
    period_year: int
    period_month: int
    mode: str
    status: str
    revision: int
    base_gross: Decimal
    thirteenth_fraction: Decimal
    thirteenth_amount: Decimal
    gross: Decimal
    benefits_amount: Decimal
    avs_ai_apg_emp: Decimal
    avs_ai_apg_er: Decimal
    ac_emp: Decimal
    ac_er: Decimal
    aap_er: Decimal
    aanp_emp: Decimal
    aanp_er: Decimal
    ijm_emp: Decimal
    ijm_er: Decimal
    af_er: Decimal
    lpp_emp: Decimal
    lpp_er: Decimal
    lpp_status: str
    net: Decimal
    employer_cost: Decimal
    notes: str | None = None
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    approved_by: UUID | None = None
    paid_at: datetime | None = None
    canceled_at: datetime | None = None
    modified_by: UUID | None = None
    modified_at: datetime | None = None
    modification_notes: str | None = None
    ledger_entry_id: UUID | None = None
    payment_entry_id: UUID | None = None


class PayrunModify(BaseModel):
    """Field edits; reason is mandatory once the payrun is approved."""

    changes: dict[str, Any] = Field(min_length=1)
    reason: str | None = None


class PayrunCancel(BaseModel):
    reason: str | None = None


class CanModifyResponse(BaseModel):
    payrun_id: UUID
    status: str
    can_modify: bool


class PayrunAuditResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    field_name: str
    old_value: str | None = None
    new_value: str | None = None
    modified_by: UUID | None = None
    change_reason: str | None = None
    status_at_change: str
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    created_at: datetime
