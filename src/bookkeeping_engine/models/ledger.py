"""Ledger entry and line models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bookkeeping_engine.models.base import Base, TimestampMixin


class LedgerEntry(Base, TimestampMixin):
    """A balanced accounting event owning one or more lines.

    posted_at is null for drafts. reversed_of points at the entry this one
    reverses; at most one reversal may exist per entry.
    """

    __tablename__ = "ledger_entry"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.id", ondelete="CASCADE"), nullable=False, index=True
    )
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    source_type: Mapped[str | None] = mapped_column(String(50))
    source_id: Mapped[str | None] = mapped_column(String(100))
    idempotency_key: Mapped[str | None] = mapped_column(String(255))
    posted_at: Mapped[datetime | None]
    reversed_of: Mapped[UUID | None] = mapped_column(ForeignKey("ledger_entry.id"))
    auto_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[UUID | None]

    __table_args__ = (
        UniqueConstraint("company_id", "idempotency_key", name="ledger_entry_idempotency_unique"),
        UniqueConstraint("reversed_of", name="ledger_entry_single_reversal"),
        Index("ledger_entry_source_idx", "company_id", "source_type", "source_id"),
    )

    lines: Mapped[list[LedgerLine]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="LedgerLine.line_no",
    )


class LedgerLine(Base):
    """A single debit or credit line; never mutated after posting."""

    __tablename__ = "ledger_line"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    entry_id: Mapped[UUID] = mapped_column(
        ForeignKey("ledger_entry.id", ondelete="CASCADE"), nullable=False, index=True
    )
    company_id: Mapped[UUID] = mapped_column(nullable=False)
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    account_code: Mapped[str] = mapped_column(String(20), nullable=False)
    account_name: Mapped[str | None] = mapped_column(String)
    debit: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    credit: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    vat_code: Mapped[str | None] = mapped_column(String(20))
    vat_rate: Mapped[Decimal | None] = mapped_column(Numeric(8, 5))
    vat_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    amount_net: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    description: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint("debit >= 0 AND credit >= 0", name="ledger_line_non_negative"),
        CheckConstraint(
            "(debit = 0 AND credit <> 0) OR (credit = 0 AND debit <> 0)",
            name="ledger_line_one_side",
        ),
        Index("ledger_line_account_idx", "company_id", "account_code"),
    )

    entry: Mapped[LedgerEntry] = relationship(back_populates="lines")
