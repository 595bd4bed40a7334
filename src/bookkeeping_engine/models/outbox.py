"""Domain event outbox model."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from bookkeeping_engine.models.base import Base, TimestampMixin, utcnow


class OutboxStatus(str, Enum):
    """Outbox event processing status."""

    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class OutboxEvent(Base, TimestampMixin):
    """A domain event awaiting ledger posting. Rows are never deleted."""

    __tablename__ = "outbox_event"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID | None]
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    source_type: Mapped[str] = mapped_column(String(50), nullable=False)
    source_id: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)
    idempotency_key: Mapped[str | None] = mapped_column(String(255))

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OutboxStatus.PENDING.value
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_run_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    claimed_by: Mapped[str | None] = mapped_column(String(100))
    claimed_at: Mapped[datetime | None]
    last_attempt_at: Mapped[datetime | None]
    processed_at: Mapped[datetime | None]
    failed_at: Mapped[datetime | None]
    error_message: Mapped[str | None] = mapped_column(Text)
    ledger_entry_id: Mapped[UUID | None]

    __table_args__ = (
        UniqueConstraint("company_id", "idempotency_key", name="outbox_event_idempotency_unique"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'done', 'failed')",
            name="outbox_event_status_check",
        ),
        CheckConstraint("retry_count >= 0", name="outbox_event_retry_count_check"),
        Index("outbox_event_due_idx", "status", "next_run_at"),
    )

    @property
    def is_pending(self) -> bool:
        return self.processed_at is None and self.status == OutboxStatus.PENDING.value
