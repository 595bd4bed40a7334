"""Tenant model."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Boolean, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from bookkeeping_engine.models.base import Base, TimestampMixin


class Company(Base, TimestampMixin):
    """A tenant. Every other entity is scoped by company_id."""

    __tablename__ = "company"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    edit_requires_reapproval: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    # Overrides PayrollPolicy.thirteenth_fraction when set
    thirteenth_fraction: Mapped[Decimal | None] = mapped_column(Numeric(8, 5))
