"""Chart of accounts model."""

from __future__ import annotations

from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from bookkeeping_engine.models.base import Base, TimestampMixin


class AccountNature(str, Enum):
    """Account classification."""

    ASSET = "asset"
    LIABILITY = "liability"
    EXPENSE = "expense"
    REVENUE = "revenue"
    MEMO = "memo"


class Account(Base, TimestampMixin):
    """Tenant-scoped account. Identity is (company_id, code)."""

    __tablename__ = "account"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.id", ondelete="CASCADE"), nullable=False, index=True
    )
    code: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    nature: Mapped[str] = mapped_column(String(20), nullable=False)
    parent_code: Mapped[str | None] = mapped_column(String(20))
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("company_id", "code", name="account_company_code_unique"),
        CheckConstraint(
            "nature IN ('asset', 'liability', 'expense', 'revenue', 'memo')",
            name="account_nature_check",
        ),
        CheckConstraint("level >= 1", name="account_level_check"),
    )
