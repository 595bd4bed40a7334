"""Resolved caller identity.

The surrounding application authenticates the caller and resolves the
tenant; the engine only receives the result.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from bookkeeping_engine.errors import ValidationError


class Role(str, Enum):
    """Caller roles supplied by the tenant/identity resolver."""

    OWNER = "owner"
    HR = "hr"
    FIDUCIARY = "fiduciary"
    EMPLOYEE = "employee"
    VIEWER = "viewer"


@dataclass(frozen=True)
class Actor:
    """(company_id, user_id, role) for one call."""

    company_id: UUID
    user_id: UUID | None
    role: Role = Role.VIEWER

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "role", Role(self.role))
        except ValueError as exc:
            raise ValidationError(f"Unknown role {self.role!r}") from exc

    @classmethod
    def system(cls, company_id: UUID) -> Actor:
        """Actor for background work such as the outbox dispatcher."""
        return cls(company_id=company_id, user_id=None, role=Role.OWNER)
