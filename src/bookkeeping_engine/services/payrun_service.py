"""Payrun service - lifecycle, audited edits and ledger linkage.

Operations:
- create_payrun: Persist a computed draft
- submit_payrun / approve_payrun / pay_payrun / cancel_payrun: Status transitions
- can_modify_payrun: Whether the caller's role permits an edit in the current status
- modify_payrun: Field edits with one audit row per change and the re-approval policy

Approval and payment raise outbox events in the same transaction; the
ledger postings happen later in the outbox dispatcher, which calls
record_payrun_posting to link the resulting entries back to the payrun.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bookkeeping_engine.actor import Actor
from bookkeeping_engine.calculators.types import PayPeriod, PayrunDraft
from bookkeeping_engine.config import get_settings
from bookkeeping_engine.errors import (
    AlreadyReversedError,
    ApprovalGateError,
    ConcurrentModificationError,
    NotFoundError,
    ValidationError,
)
from bookkeeping_engine.event_types import PAYRUN_AMOUNT_FIELDS, EventType, event_family
from bookkeeping_engine.models import (
    Company,
    Employee,
    PayrollLppLine,
    Payrun,
    PayrunAudit,
    utcnow,
)
from bookkeeping_engine.money import ZERO, round_to_cents, to_decimal
from bookkeeping_engine.outbox.service import EnqueueResult, OutboxService
from bookkeeping_engine.services.ledger_service import LedgerService
from bookkeeping_engine.services.state_machine import PayrunStateMachine, PayrunStatus

if TYPE_CHECKING:
    from bookkeeping_engine.models import OutboxEvent
    from bookkeeping_engine.services.ledger_service import PostResult

logger = logging.getLogger(__name__)

EMPLOYEE_DEDUCTION_FIELDS = PayrunDraft.EMPLOYEE_DEDUCTION_FIELDS
EMPLOYER_CONTRIBUTION_FIELDS = PayrunDraft.EMPLOYER_CONTRIBUTION_FIELDS

# Amount fields a user may overwrite after computation
EDITABLE_AMOUNT_FIELDS = (
    "base_gross",
    "thirteenth_amount",
    "benefits_amount",
    *EMPLOYEE_DEDUCTION_FIELDS,
    *EMPLOYER_CONTRIBUTION_FIELDS,
)
EDITABLE_TEXT_FIELDS = ("notes",)

# Recomputed from the editable fields after every edit
DERIVED_FIELDS = ("gross", "net", "employer_cost")


def employee_deductions(payrun: Payrun) -> Decimal:
    return sum((getattr(payrun, f) for f in EMPLOYEE_DEDUCTION_FIELDS), ZERO)


def employer_contributions(payrun: Payrun) -> Decimal:
    return sum((getattr(payrun, f) for f in EMPLOYER_CONTRIBUTION_FIELDS), ZERO)


def event_source_id(payrun: Payrun) -> str:
    """Source id of the payrun's ledger events; each revision posts separately."""
    if payrun.revision == 0:
        return str(payrun.id)
    return f"{payrun.id}:r{payrun.revision}"


def payrun_event_payload(payrun: Payrun) -> dict[str, Any]:
    """Amounts the posting rules may read, plus identifiers for the posting hook."""
    totals = {
        "employee_deductions": employee_deductions(payrun),
        "employer_contributions": employer_contributions(payrun),
    }
    payload: dict[str, Any] = {
        name: totals[name] if name in totals else getattr(payrun, name)
        for name in PAYRUN_AMOUNT_FIELDS
    }
    payload.update(
        payrun_id=payrun.id,
        employee_id=payrun.employee_id,
        period=f"{payrun.period_year}-{payrun.period_month:02d}",
        revision=payrun.revision,
    )
    return payload


class PayrunService:
    """Service for managing the payrun lifecycle."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.outbox = OutboxService(session)

    async def get_payrun(self, company_id: UUID, payrun_id: UUID) -> Payrun:
        result = await self.session.execute(
            select(Payrun)
            .where(Payrun.id == payrun_id, Payrun.company_id == company_id)
            .options(selectinload(Payrun.lpp_line), selectinload(Payrun.audits))
        )
        payrun = result.scalar_one_or_none()
        if payrun is None:
            raise NotFoundError("Payrun", payrun_id)
        return payrun

    async def list_payruns(
        self,
        company_id: UUID,
        period_year: int | None = None,
        period_month: int | None = None,
        status: str | None = None,
    ) -> list[Payrun]:
        query = select(Payrun).where(Payrun.company_id == company_id)
        if period_year is not None:
            query = query.where(Payrun.period_year == period_year)
        if period_month is not None:
            query = query.where(Payrun.period_month == period_month)
        if status is not None:
            query = query.where(Payrun.status == status)
        result = await self.session.execute(
            query.order_by(Payrun.period_year, Payrun.period_month, Payrun.created_at)
        )
        return list(result.scalars().all())

    async def create_payrun(
        self, actor: Actor, draft: PayrunDraft, notes: str | None = None
    ) -> Payrun:
        """Persist a computed draft.

        Only one non-canceled payrun may exist per employee, period and mode.
        """
        employee = await self.session.execute(
            select(Employee.id).where(
                Employee.id == draft.employee_id, Employee.company_id == actor.company_id
            )
        )
        if employee.scalar_one_or_none() is None:
            raise NotFoundError("Employee", draft.employee_id)

        existing = await self.session.execute(
            select(Payrun.id).where(
                Payrun.company_id == actor.company_id,
                Payrun.employee_id == draft.employee_id,
                Payrun.period_year == draft.period.year,
                Payrun.period_month == draft.period.month,
                Payrun.mode == draft.mode,
                Payrun.status != PayrunStatus.CANCELED.value,
            )
        )
        existing_id = existing.scalars().first()
        if existing_id is not None:
            raise ValidationError(
                f"Payrun {existing_id} already exists for employee {draft.employee_id} "
                f"in {draft.period} ({draft.mode})"
            )

        payrun = Payrun(
            company_id=actor.company_id,
            employee_id=draft.employee_id,
            period_year=draft.period.year,
            period_month=draft.period.month,
            mode=draft.mode,
            status=PayrunStatus.DRAFT.value,
            revision=0,
            hours=draft.hours,
            hourly_rate=draft.hourly_rate,
            base_gross=draft.base_gross,
            thirteenth_fraction=draft.thirteenth_fraction,
            thirteenth_amount=draft.thirteenth_amount,
            gross=draft.gross,
            benefit_lodging=draft.benefit_lodging,
            benefit_meals=draft.benefit_meals,
            benefit_transport=draft.benefit_transport,
            benefit_company_car=draft.benefit_company_car,
            benefits_amount=draft.benefits_amount,
            lpp_status=draft.lpp_status.value,
            net=draft.net,
            employer_cost=draft.employer_cost,
            notes=notes,
            engine_version=get_settings().engine_version,
            created_by=actor.user_id,
            **{f: getattr(draft, f) for f in EMPLOYEE_DEDUCTION_FIELDS + EMPLOYER_CONTRIBUTION_FIELDS},
        )
        if draft.lpp_line is not None:
            line = draft.lpp_line
            payrun.lpp_line = PayrollLppLine(
                plan_id=line.plan_id,
                age_years=line.age_years,
                annual_insured_salary=line.annual_insured_salary,
                saving_rate=line.saving_rate,
                risk_admin_rate=line.risk_admin_rate,
                employer_share=line.employer_share,
                employee_amount=line.employee_amount,
                employer_amount=line.employer_amount,
            )
        self.session.add(payrun)
        await self.session.flush()

        logger.info(
            "Created payrun %s for employee %s period %s (gross=%s net=%s)",
            payrun.id,
            draft.employee_id,
            draft.period,
            draft.gross,
            draft.net,
        )
        return payrun

    async def _transition(
        self,
        payrun: Payrun,
        to_status: PayrunStatus,
        actor: Actor,
        **values: Any,
    ) -> Payrun:
        """Validate and apply a status change with a conditional update.

        Raises:
            InvalidTransitionError: the state machine forbids the change
            ConcurrentModificationError: another transaction changed the status first
        """
        from_status = payrun.status
        PayrunStateMachine.validate_transition(from_status, to_status)

        result = await self.session.execute(
            update(Payrun)
            .where(Payrun.id == payrun.id, Payrun.status == from_status)
            .values(status=to_status.value, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConcurrentModificationError("Payrun", payrun.id)

        payrun.status = to_status.value
        for name, value in values.items():
            setattr(payrun, name, value)

        logger.info(
            "Payrun %s: %s -> %s by %s", payrun.id, from_status, to_status.value, actor.user_id
        )
        return payrun

    def _require_role(self, payrun: Payrun, actor: Actor, roles: set, action: str) -> None:
        if actor.role not in roles:
            raise ApprovalGateError(
                payrun.id, payrun.status, f"role {actor.role.value} cannot {action} payruns"
            )

    async def submit_payrun(self, payrun_id: UUID, actor: Actor) -> Payrun:
        payrun = await self.get_payrun(actor.company_id, payrun_id)
        self._require_role(payrun, actor, PayrunStateMachine.EDITOR_ROLES, "submit")
        return await self._transition(
            payrun,
            PayrunStatus.SUBMITTED,
            actor,
            submitted_at=utcnow(),
            submitted_by=actor.user_id,
        )

    async def approve_payrun(self, payrun_id: UUID, actor: Actor) -> Payrun:
        """Approve a submitted payrun and raise payrun.approved.

        Pending audit rows (edits waiting for re-approval) are stamped with
        the approver.
        """
        payrun = await self.get_payrun(actor.company_id, payrun_id)
        self._require_role(payrun, actor, PayrunStateMachine.APPROVER_ROLES, "approve")

        now = utcnow()
        await self._transition(
            payrun, PayrunStatus.APPROVED, actor, approved_at=now, approved_by=actor.user_id
        )
        await self._stamp_pending_audits(payrun, actor, now)
        await self._enqueue(payrun, EventType.PAYRUN_APPROVED, actor)
        return payrun

    async def pay_payrun(self, payrun_id: UUID, actor: Actor) -> Payrun:
        """Mark an approved payrun as paid and raise payrun.paid."""
        payrun = await self.get_payrun(actor.company_id, payrun_id)
        self._require_role(payrun, actor, PayrunStateMachine.APPROVER_ROLES, "pay")
        await self._transition(payrun, PayrunStatus.PAID, actor, paid_at=utcnow())
        await self._enqueue(payrun, EventType.PAYRUN_PAID, actor)
        return payrun

    async def cancel_payrun(self, payrun_id: UUID, actor: Actor, reason: str | None = None) -> Payrun:
        payrun = await self.get_payrun(actor.company_id, payrun_id)
        self._require_role(payrun, actor, PayrunStateMachine.EDITOR_ROLES, "cancel")
        values: dict[str, Any] = {"canceled_at": utcnow()}
        if reason:
            values["modification_notes"] = reason
        return await self._transition(payrun, PayrunStatus.CANCELED, actor, **values)

    async def can_modify_payrun(self, payrun_id: UUID, actor: Actor) -> bool:
        """Whether the payrun's status and the caller's role permit an edit."""
        payrun = await self.get_payrun(actor.company_id, payrun_id)
        return PayrunStateMachine.can_edit(payrun.status, actor.role)

    async def modify_payrun(
        self,
        payrun_id: UUID,
        changes: Mapping[str, Any],
        actor: Actor,
        reason: str | None = None,
    ) -> Payrun:
        """Edit payrun fields after computation.

        Every changed field, including the recomputed gross, net and
        employer_cost, gets a PayrunAudit row. Editing an approved or paid
        payrun requires a reason and bumps the revision. When the company
        requires re-approval the payrun goes back to submitted; otherwise
        the edit is approved by the editor and fresh ledger events are raised.

        Raises:
            ApprovalGateError: the role may not edit in this status, or a
                reason is missing for an edit after approval
            ValidationError: unknown field or invalid amount
            ConcurrentModificationError: the payrun changed underneath
        """
        payrun = await self.get_payrun(actor.company_id, payrun_id)
        status = payrun.status

        if not PayrunStateMachine.can_edit(status, actor.role):
            raise ApprovalGateError(
                payrun.id, status, f"role {actor.role.value} cannot edit a {status} payrun"
            )
        audited = PayrunStateMachine.requires_audit(status)
        if audited and not reason:
            raise ApprovalGateError(payrun.id, status, "a change reason is required after approval")

        new_values = self._coerce_changes(changes)
        diffs: dict[str, tuple[Any, Any]] = {}
        for name, value in new_values.items():
            old = getattr(payrun, name)
            if old != value:
                diffs[name] = (old, value)
        if not diffs:
            return payrun

        # Claim the edit: fails if the status or revision moved since we read
        old_revision = payrun.revision
        new_revision = old_revision + 1 if audited else old_revision
        now = utcnow()
        claim = await self.session.execute(
            update(Payrun)
            .where(
                Payrun.id == payrun.id,
                Payrun.status == status,
                Payrun.revision == old_revision,
            )
            .values(revision=new_revision, modified_at=now, modified_by=actor.user_id)
            .execution_options(synchronize_session=False)
        )
        if claim.rowcount == 0:
            raise ConcurrentModificationError("Payrun", payrun.id)

        for name, (_, value) in diffs.items():
            setattr(payrun, name, value)
        gross = payrun.base_gross + payrun.thirteenth_amount
        if gross <= 0:
            raise ValidationError(f"Gross must be greater than zero (got {gross})")
        derived = {
            "gross": gross,
            "net": gross + payrun.benefits_amount - employee_deductions(payrun),
            "employer_cost": gross + employer_contributions(payrun),
        }
        for name, value in derived.items():
            old = getattr(payrun, name)
            if old != value:
                diffs[name] = (old, value)
                setattr(payrun, name, value)

        payrun.revision = new_revision
        payrun.modified_at = now
        payrun.modified_by = actor.user_id
        payrun.modification_notes = reason

        audits = [
            PayrunAudit(
                payrun_id=payrun.id,
                company_id=payrun.company_id,
                field_name=name,
                old_value=None if old is None else str(old),
                new_value=None if new is None else str(new),
                modified_by=actor.user_id,
                change_reason=reason,
                status_at_change=status,
            )
            for name, (old, new) in diffs.items()
        ]
        self.session.add_all(audits)
        payrun.audits.extend(audits)

        logger.info(
            "Payrun %s modified by %s in status %s: %s",
            payrun.id,
            actor.user_id,
            status,
            ", ".join(sorted(diffs)),
        )

        if audited:
            company = await self.session.get(Company, payrun.company_id)
            if company is not None and company.edit_requires_reapproval:
                await self._reopen(payrun, actor)
            else:
                for audit in audits:
                    audit.approved_by = actor.user_id
                    audit.approved_at = now
                await self._enqueue(payrun, EventType.PAYRUN_APPROVED, actor)
                if status == PayrunStatus.PAID:
                    await self._enqueue(payrun, EventType.PAYRUN_PAID, actor)

        await self.session.flush()
        return payrun

    def _coerce_changes(self, changes: Mapping[str, Any]) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for name, raw in changes.items():
            if name in EDITABLE_TEXT_FIELDS:
                values[name] = None if raw is None else str(raw)
            elif name in EDITABLE_AMOUNT_FIELDS:
                amount = round_to_cents(to_decimal(raw, name))
                if amount < 0:
                    raise ValidationError(f"{name} must not be negative")
                values[name] = amount
            elif name in DERIVED_FIELDS:
                raise ValidationError(f"{name} is derived and cannot be edited directly")
            else:
                raise ValidationError(f"Field {name!r} cannot be modified")
        return values

    async def _reopen(self, payrun: Payrun, actor: Actor) -> None:
        """Send an edited approved/paid payrun back for approval."""
        from_status = payrun.status
        result = await self.session.execute(
            update(Payrun)
            .where(Payrun.id == payrun.id, Payrun.status == from_status)
            .values(status=PayrunStatus.SUBMITTED.value, approved_at=None, approved_by=None)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConcurrentModificationError("Payrun", payrun.id)
        payrun.status = PayrunStatus.SUBMITTED.value
        payrun.approved_at = None
        payrun.approved_by = None
        logger.info(
            "Payrun %s reopened %s -> submitted for re-approval by %s",
            payrun.id,
            from_status,
            actor.user_id,
        )

    async def _stamp_pending_audits(self, payrun: Payrun, actor: Actor, now: datetime) -> None:
        await self.session.execute(
            update(PayrunAudit)
            .where(PayrunAudit.payrun_id == payrun.id, PayrunAudit.approved_at.is_(None))
            .values(approved_by=actor.user_id, approved_at=now)
            .execution_options(synchronize_session=False)
        )
        for audit in payrun.audits:
            if audit.approved_at is None:
                audit.approved_by = actor.user_id
                audit.approved_at = now

    async def _enqueue(self, payrun: Payrun, event_type: EventType, actor: Actor) -> EnqueueResult:
        payload = payrun_event_payload(payrun)
        if event_type == EventType.PAYRUN_PAID and payrun.paid_at is not None:
            payload["entry_date"] = payrun.paid_at.date()
        else:
            payload["entry_date"] = PayPeriod(payrun.period_year, payrun.period_month).end
        action = event_type.value.split(".", 1)[1]
        return await self.outbox.enqueue(
            payrun.company_id,
            event_type.value,
            "payrun",
            event_source_id(payrun),
            payload,
            idempotency_key=f"payrun:{action}:{payrun.id}:r{payrun.revision}",
            user_id=actor.user_id,
        )


async def record_payrun_posting(
    session: AsyncSession, event: OutboxEvent, result: PostResult
) -> None:
    """Outbox hook for payrun.* postings.

    Links the posted entry to the payrun (ledger_entry_id for approval,
    payment_entry_id for payment) and writes a system audit row. An entry
    posted for a revision that has since been superseded is reversed
    instead of linked; a linked entry replaced by a newer revision is
    reversed as well. Replays are no-ops.
    """
    payload = event.payload or {}
    payrun = await session.get(Payrun, UUID(str(payload["payrun_id"])))
    if payrun is None or payrun.company_id != event.company_id:
        raise NotFoundError("Payrun", payload.get("payrun_id"))

    field = (
        "ledger_entry_id"
        if event_family(event.event_type) == EventType.PAYRUN_APPROVED.value
        else "payment_entry_id"
    )
    current = getattr(payrun, field)
    if current == result.entry_id:
        return

    ledger = LedgerService(session)
    revision = int(payload.get("revision", 0))
    if revision < payrun.revision:
        await _reverse_superseded(ledger, payrun, result.entry_id, revision)
        return

    if current is not None:
        await _reverse_superseded(ledger, payrun, current, revision - 1)
    setattr(payrun, field, result.entry_id)

    now = utcnow()
    session.add(
        PayrunAudit(
            payrun_id=payrun.id,
            company_id=payrun.company_id,
            field_name=field,
            old_value=None if current is None else str(current),
            new_value=str(result.entry_id),
            modified_by=None,
            change_reason=f"posted from outbox event {event.id}",
            status_at_change=payrun.status,
            approved_at=now,
        )
    )
    await session.flush()
    logger.info("Linked %s %s to payrun %s", field, result.entry_id, payrun.id)


async def _reverse_superseded(
    ledger: LedgerService, payrun: Payrun, entry_id: UUID, revision: int
) -> None:
    try:
        await ledger.reverse_entry(
            payrun.company_id,
            entry_id,
            reason=f"payrun {payrun.id} revision {revision} superseded",
        )
    except AlreadyReversedError:
        logger.info("Superseded entry %s of payrun %s already reversed", entry_id, payrun.id)
