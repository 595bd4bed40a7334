"""Tests for payrun state machine."""

import pytest

from bookkeeping_engine.services.state_machine import (
    InvalidTransitionError,
    PayrunStateMachine,
    PayrunStatus,
)


class TestPayrunStateMachine:
    """Test state machine transitions."""

    def test_valid_transitions(self):
        """Test that valid transitions are allowed."""
        # draft → submitted
        assert PayrunStateMachine.can_transition("draft", "submitted") is True

        # submitted → approved
        assert PayrunStateMachine.can_transition("submitted", "approved") is True

        # approved → paid
        assert PayrunStateMachine.can_transition("approved", "paid") is True

        # draft/submitted → canceled
        assert PayrunStateMachine.can_transition("draft", "canceled") is True
        assert PayrunStateMachine.can_transition("submitted", "canceled") is True

    def test_invalid_transitions(self):
        """Test that invalid transitions are blocked."""
        # Can't skip submission
        assert PayrunStateMachine.can_transition("draft", "approved") is False
        assert PayrunStateMachine.can_transition("draft", "paid") is False

        # Approved payruns are not canceled, they are corrected
        assert PayrunStateMachine.can_transition("approved", "canceled") is False

        # Terminal states
        assert PayrunStateMachine.can_transition("paid", "approved") is False
        assert PayrunStateMachine.can_transition("canceled", "draft") is False

    def test_approving_a_draft_explains_why(self):
        """Test the reason attached to draft → approved."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            PayrunStateMachine.validate_transition("draft", "approved")

        assert exc_info.value.from_status == "draft"
        assert exc_info.value.to_status == "approved"
        assert exc_info.value.reason == "payrun must be submitted first"

    def test_validate_transition_raises(self):
        """Test that validate_transition raises for other invalid transitions."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            PayrunStateMachine.validate_transition("paid", "submitted")

        assert exc_info.value.reason is None

    def test_is_reopen(self):
        """Test reopen detection."""
        assert PayrunStateMachine.is_reopen("approved", "submitted") is True
        assert PayrunStateMachine.is_reopen("paid", "submitted") is True
        assert PayrunStateMachine.is_reopen("draft", "submitted") is False

    def test_requires_audit(self):
        """Test statuses where edits are audited."""
        assert PayrunStateMachine.requires_audit("draft") is False
        assert PayrunStateMachine.requires_audit("submitted") is False
        assert PayrunStateMachine.requires_audit("approved") is True
        assert PayrunStateMachine.requires_audit("paid") is True

    def test_get_next_statuses(self):
        """Test getting allowed next statuses."""
        assert set(PayrunStateMachine.get_next_statuses("draft")) == {"submitted", "canceled"}
        assert PayrunStateMachine.get_next_statuses("approved") == [PayrunStatus.PAID]
        assert PayrunStateMachine.get_next_statuses("canceled") == []


class TestRoles:
    """Test role gates."""

    @pytest.mark.parametrize(
        "role, expected",
        [("owner", True), ("fiduciary", True), ("hr", False), ("employee", False), ("viewer", False)],
    )
    def test_can_approve(self, role, expected):
        assert PayrunStateMachine.can_approve(role) is expected

    def test_can_edit_open_payrun(self):
        """Any editor role may edit drafts and submitted payruns."""
        assert PayrunStateMachine.can_edit("draft", "hr") is True
        assert PayrunStateMachine.can_edit("submitted", "fiduciary") is True
        assert PayrunStateMachine.can_edit("draft", "viewer") is False

    def test_can_edit_approved_payrun(self):
        """Only approver roles may edit approved or paid payruns."""
        assert PayrunStateMachine.can_edit("approved", "owner") is True
        assert PayrunStateMachine.can_edit("paid", "fiduciary") is True
        assert PayrunStateMachine.can_edit("approved", "hr") is False

    def test_canceled_payrun_not_editable(self):
        assert PayrunStateMachine.can_edit("canceled", "owner") is False
