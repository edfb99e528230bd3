"""Unit tests for the manuscript status state machine."""

import pytest
from journaldesk.models import ManuscriptStatus, ReviewDecision
from journaldesk.workflow import (
    can_be_edited,
    can_transition,
    decision_to_status,
    is_terminal,
    validate_transition,
)


class TestTransitions:
    @pytest.mark.parametrize(
        "current,target",
        [
            ("submitted", "under_review"),
            ("under_review", "approved"),
            ("under_review", "rejected"),
            ("under_review", "minor_revision"),
            ("under_review", "major_revision"),
            ("under_review", "in_reconciliation"),
            ("in_reconciliation", "approved"),
            ("in_reconciliation", "major_revision"),
            ("minor_revision", "revised"),
            ("major_revision", "revised"),
            ("revised", "under_review"),
            ("approved", "published"),
        ],
    )
    def test_allowed_edges(self, current, target):
        assert can_transition(current, target) is True
        assert validate_transition(current, target) == []

    def test_submitted_cannot_jump_to_approved(self):
        assert can_transition(ManuscriptStatus.SUBMITTED, ManuscriptStatus.APPROVED) is False
        assert validate_transition("submitted", "approved") == ["invalid_transition_submitted_to_approved"]

    def test_revised_cannot_be_published(self):
        assert validate_transition("revised", "published") == ["invalid_transition_revised_to_published"]

    def test_in_reconciliation_cannot_reenter_reconciliation(self):
        assert not can_transition("in_reconciliation", "in_reconciliation")

    def test_terminal_statuses(self):
        assert is_terminal("rejected")
        assert is_terminal(ManuscriptStatus.PUBLISHED)
        assert not is_terminal("approved")
        assert validate_transition("rejected", "under_review") == ["status_rejected_is_terminal"]
        assert validate_transition("published", "approved") == ["status_published_is_terminal"]

    def test_unknown_status(self):
        assert validate_transition("draft", "submitted") == ["unknown_status_draft"]
        assert validate_transition("submitted", "limbo") == ["unknown_status_limbo"]
        assert ManuscriptStatus.allowed_next("draft") == set()
        assert can_transition("submitted", "limbo") is False

    def test_every_status_has_an_entry(self):
        for status in ManuscriptStatus:
            ManuscriptStatus.allowed_next(status)


class TestHelpers:
    def test_editable_statuses(self):
        assert can_be_edited("submitted")
        assert can_be_edited("minor_revision")
        assert can_be_edited("major_revision")
        assert not can_be_edited("under_review")
        assert not can_be_edited("approved")

    def test_decision_to_status(self):
        assert decision_to_status(ReviewDecision.PUBLISHABLE) == ManuscriptStatus.APPROVED
        assert decision_to_status("not_publishable") == ManuscriptStatus.REJECTED
        assert decision_to_status("publishable_with_minor_revision") == ManuscriptStatus.MINOR_REVISION
        assert decision_to_status("publishable_with_major_revision") == ManuscriptStatus.MAJOR_REVISION

    def test_decision_to_status_rejects_unknown(self):
        with pytest.raises(ValueError):
            decision_to_status("accept")
