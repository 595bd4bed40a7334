"""Payrun state machine with transition validation."""

from __future__ import annotations

from enum import Enum

from bookkeeping_engine.actor import Role
from bookkeeping_engine.errors import InvalidTransitionError

__all__ = ["InvalidTransitionError", "PayrunStateMachine", "PayrunStatus", "Role"]


class PayrunStatus(str, Enum):
    """Payrun status values."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    PAID = "paid"
    CANCELED = "canceled"


class PayrunStateMachine:
    """State machine for payrun status transitions.

    Allowed transitions:
    - draft → submitted
    - draft → canceled
    - submitted → approved
    - submitted → canceled
    - approved → paid

    approved/paid → submitted is not a regular transition; it only happens
    when an edit after approval forces re-approval.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PayrunStatus.DRAFT: [PayrunStatus.SUBMITTED, PayrunStatus.CANCELED],
        PayrunStatus.SUBMITTED: [PayrunStatus.APPROVED, PayrunStatus.CANCELED],
        PayrunStatus.APPROVED: [PayrunStatus.PAID],
        PayrunStatus.PAID: [],
        PayrunStatus.CANCELED: [],  # Terminal state
    }

    REOPEN_FROM = {PayrunStatus.APPROVED, PayrunStatus.PAID}

    # Statuses where an edit needs an audit row
    AUDITED = {PayrunStatus.APPROVED, PayrunStatus.PAID}

    EDITABLE = {
        PayrunStatus.DRAFT,
        PayrunStatus.SUBMITTED,
        PayrunStatus.APPROVED,
        PayrunStatus.PAID,
    }

    EDITOR_ROLES = {Role.OWNER, Role.HR, Role.FIDUCIARY}
    APPROVER_ROLES = {Role.OWNER, Role.FIDUCIARY}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            reason = None
            if to_status == PayrunStatus.APPROVED and from_status == PayrunStatus.DRAFT:
                reason = "payrun must be submitted first"
            raise InvalidTransitionError(from_status, to_status, reason)

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])

    @classmethod
    def requires_audit(cls, status: str) -> bool:
        return status in cls.AUDITED

    @classmethod
    def is_reopen(cls, from_status: str, to_status: str) -> bool:
        """Check if this transition sends an approved or paid payrun back for approval."""
        return from_status in cls.REOPEN_FROM and to_status == PayrunStatus.SUBMITTED

    @classmethod
    def can_approve(cls, role: str) -> bool:
        return role in cls.APPROVER_ROLES

    @classmethod
    def can_edit(cls, status: str, role: str) -> bool:
        """Whether a caller with this role may edit a payrun in this status.

        Drafts and submitted payruns are editable by any editor role; approved
        and paid payruns only by approver roles.
        """
        if status not in cls.EDITABLE or role not in cls.EDITOR_ROLES:
            return False
        if status in cls.AUDITED:
            return role in cls.APPROVER_ROLES
        return True
