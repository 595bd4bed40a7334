"""Outbox enqueue and inspection.

Enqueue runs inside the caller's session so the event commits or rolls back
together with the business write that raised it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bookkeeping_engine.actor import Actor
from bookkeeping_engine.database import dialect_insert
from bookkeeping_engine.errors import NotFoundError, ValidationError
from bookkeeping_engine.event_types import EventType, PaymentMethod, event_family
from bookkeeping_engine.models import OutboxEvent, OutboxStatus, utcnow

logger = logging.getLogger(__name__)


def json_safe(value: Any) -> Any:
    """Convert Decimals, UUIDs, dates and enums into JSON-serializable values."""
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(v) for v in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


@dataclass(frozen=True)
class EnqueueResult:
    """Outcome of an enqueue; is_new is False for a deduplicated event."""

    event_id: UUID
    is_new: bool


@dataclass(frozen=True)
class OutboxStats:
    """Outbox backlog, used to make ledger lag observable."""

    pending: int
    processing: int
    done: int
    failed: int
    oldest_pending_at: datetime | None

    @property
    def unprocessed(self) -> int:
        """Events with processed_at IS NULL."""
        return self.pending + self.processing + self.failed

    def oldest_pending_age_seconds(self, now: datetime | None = None) -> float:
        if self.oldest_pending_at is None:
            return 0.0
        return max(0.0, ((now or utcnow()) - self.oldest_pending_at).total_seconds())


class OutboxService:
    """Enqueue domain events and inspect the outbox."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def enqueue(
        self,
        company_id: UUID,
        event_type: str,
        source_type: str,
        source_id: str | UUID,
        payload: dict[str, Any],
        *,
        idempotency_key: str | None = None,
        user_id: UUID | None = None,
    ) -> EnqueueResult:
        """Record a domain event in the caller's transaction.

        An event with an idempotency_key already present for the company is
        not duplicated; the existing event id is returned.
        """
        if event_family(event_type) is None:
            raise ValidationError(f"Unknown event type {event_type!r}")
        if not source_type or not str(source_id):
            raise ValidationError("source_type and source_id are required")

        event_id = uuid4()
        now = utcnow()
        table = OutboxEvent.__table__
        stmt = dialect_insert(self.session, table).values(
            id=event_id,
            company_id=company_id,
            user_id=user_id,
            event_type=event_type,
            source_type=source_type,
            source_id=str(source_id),
            payload=json_safe(payload),
            idempotency_key=idempotency_key,
            status=OutboxStatus.PENDING.value,
            retry_count=0,
            next_run_at=now,
            created_at=now,
        )
        if idempotency_key is not None:
            stmt = stmt.on_conflict_do_nothing(index_elements=["company_id", "idempotency_key"])
        row = (await self.session.execute(stmt.returning(table.c.id))).first()

        if row is None:
            result = await self.session.execute(
                select(OutboxEvent.id).where(
                    OutboxEvent.company_id == company_id,
                    OutboxEvent.idempotency_key == idempotency_key,
                )
            )
            existing = result.scalar_one()
            logger.info("Duplicate outbox event for key %s -> %s", idempotency_key, existing)
            return EnqueueResult(event_id=existing, is_new=False)

        logger.info(
            "Enqueued %s for %s:%s (event %s, company %s)",
            event_type,
            source_type,
            source_id,
            event_id,
            company_id,
        )
        return EnqueueResult(event_id=event_id, is_new=True)

    async def enqueue_domain_event(
        self,
        actor: Actor,
        event_type: str,
        source_type: str,
        source_id: str | UUID,
        payload: dict[str, Any],
        idempotency_key: str | None = None,
    ) -> EnqueueResult:
        """Entry point for document, invoice and session modules."""
        return await self.enqueue(
            actor.company_id,
            event_type,
            source_type,
            source_id,
            payload,
            idempotency_key=idempotency_key,
            user_id=actor.user_id,
        )

    async def enqueue_invoice_paid(
        self,
        company_id: UUID,
        invoice_id: UUID,
        payment_id: UUID,
        method: PaymentMethod | str,
        *,
        amount_total: Decimal,
        vat_rate: Decimal = Decimal("0"),
        fee_amount: Decimal = Decimal("0"),
        paid_at: datetime | None = None,
        user_id: UUID | None = None,
    ) -> EnqueueResult:
        """Raise invoice.paid.<method> for a recorded payment.

        The payment is the event source, so each partial payment of an
        invoice posts its own ledger entry.
        """
        method = PaymentMethod(method)
        paid_at = paid_at or utcnow()
        return await self.enqueue(
            company_id,
            f"{EventType.INVOICE_PAID.value}.{method.value}",
            "invoice_payment",
            payment_id,
            {
                "invoice_id": invoice_id,
                "payment_id": payment_id,
                "amount_total": amount_total,
                "vat_rate": vat_rate,
                "fee_amount": fee_amount,
                "entry_date": paid_at.date(),
            },
            idempotency_key=(
                f"invoice:paid:{invoice_id}:{method.value}:{paid_at.strftime('%Y%m%d%H%M%S')}"
            ),
            user_id=user_id,
        )

    async def get_event(self, event_id: UUID) -> OutboxEvent:
        event = await self.session.get(OutboxEvent, event_id)
        if event is None:
            raise NotFoundError("Outbox event", event_id)
        return event

    async def stats(self, company_id: UUID | None = None) -> OutboxStats:
        """Counts per status and the oldest unprocessed pending event."""
        query = select(OutboxEvent.status, func.count()).group_by(OutboxEvent.status)
        oldest = select(func.min(OutboxEvent.created_at)).where(
            OutboxEvent.processed_at.is_(None),
            OutboxEvent.status == OutboxStatus.PENDING.value,
        )
        if company_id is not None:
            query = query.where(OutboxEvent.company_id == company_id)
            oldest = oldest.where(OutboxEvent.company_id == company_id)

        counts = {status: count for status, count in (await self.session.execute(query)).all()}
        oldest_at = (await self.session.execute(oldest)).scalar()
        return OutboxStats(
            pending=counts.get(OutboxStatus.PENDING.value, 0),
            processing=counts.get(OutboxStatus.PROCESSING.value, 0),
            done=counts.get(OutboxStatus.DONE.value, 0),
            failed=counts.get(OutboxStatus.FAILED.value, 0),
            oldest_pending_at=oldest_at,
        )

    async def list_failed(self, company_id: UUID | None = None, limit: int = 100) -> list[OutboxEvent]:
        """Events that exhausted their retries and need attention."""
        query = select(OutboxEvent).where(OutboxEvent.status == OutboxStatus.FAILED.value)
        if company_id is not None:
            query = query.where(OutboxEvent.company_id == company_id)
        result = await self.session.execute(query.order_by(OutboxEvent.failed_at).limit(limit))
        return list(result.scalars().all())

    async def requeue_failed(self, event_id: UUID) -> OutboxEvent:
        """Manually send a failed event back to pending with a fresh retry budget."""
        event = await self.get_event(event_id)
        if event.status != OutboxStatus.FAILED.value:
            raise ValidationError(f"Outbox event {event_id} is {event.status}, not failed")
        await self.session.execute(
            update(OutboxEvent)
            .where(OutboxEvent.id == event_id, OutboxEvent.status == OutboxStatus.FAILED.value)
            .values(
                status=OutboxStatus.PENDING.value,
                retry_count=0,
                next_run_at=utcnow(),
                failed_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.refresh(event)
        logger.info("Requeued failed outbox event %s", event_id)
        return event
