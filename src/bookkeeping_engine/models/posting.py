"""Posting rule model."""

from __future__ import annotations

from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from bookkeeping_engine.models.base import Base, TimestampMixin


class PostingRule(Base, TimestampMixin):
    """Maps one event type to one ledger line through a formula."""

    __tablename__ = "posting_rule"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    line_type: Mapped[str] = mapped_column(String(50), nullable=False)
    side: Mapped[str] = mapped_column(String(10), nullable=False)
    account_code: Mapped[str] = mapped_column(String(20), nullable=False)
    account_name: Mapped[str | None] = mapped_column(String)
    vat_code_default: Mapped[str | None] = mapped_column(String(20))
    vat_rate_field: Mapped[str | None] = mapped_column(String(50))
    formula: Mapped[dict[str, Any]] = mapped_column(nullable=False)
    description: Mapped[str | None] = mapped_column(String)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint(
            "company_id", "event_type", "line_type", name="posting_rule_event_line_unique"
        ),
        CheckConstraint("side IN ('debit', 'credit')", name="posting_rule_side_check"),
    )
