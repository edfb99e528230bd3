"""Unit tests for domain models."""

import pytest
from pydantic import ValidationError

from journaldesk.models import (
    CampaignCreate,
    DecisionRecord,
    Manuscript,
    ManuscriptStatus,
    PageRange,
    ReviewScores,
    RuleEvaluation,
    StatusOverride,
    UserCreate,
    UserRole,
    VolumeCreate,
)


class TestManuscriptModels:
    def test_manuscript_defaults(self):
        manuscript = Manuscript(title="A Study of Peer Review")
        assert manuscript.status == ManuscriptStatus.SUBMITTED
        assert manuscript.version == 1
        assert manuscript.revision_history == []
        assert manuscript.file_type == "application/pdf"
        assert manuscript.review_decision is None

    def test_status_values(self):
        expected = {
            "submitted", "under_review", "in_reconciliation", "minor_revision",
            "major_revision", "revised", "approved", "rejected", "published",
        }
        assert {s.value for s in ManuscriptStatus} == expected

    def test_override_requires_reason(self):
        with pytest.raises(ValidationError):
            StatusOverride(status=ManuscriptStatus.APPROVED, reason="")
        override = StatusOverride(status=ManuscriptStatus.APPROVED, reason="Editor-in-chief call")
        assert override.silent_update is True


class TestReviewModels:
    def test_scores_respect_criterion_maxima(self):
        with pytest.raises(ValidationError):
            ReviewScores(originality=21)
        with pytest.raises(ValidationError):
            ReviewScores(clarity=11)
        with pytest.raises(ValidationError):
            ReviewScores(results=-1)

    def test_scores_default_to_zero(self):
        assert set(ReviewScores().model_dump().values()) == {0}

    def test_decision_record(self):
        record = DecisionRecord(
            manuscript_id="MS-2026-00001",
            decision="publishable",
            rule_evaluations=[RuleEvaluation(rule_name="two_human_reviews", result=True)],
        )
        assert record.decided_by == "decision_engine"
        assert record.rule_evaluations[0].result is True


class TestUserAndPublicationModels:
    def test_user_create_validates_email(self):
        with pytest.raises(ValidationError):
            UserCreate(name="No Email", email="not-an-email")
        user = UserCreate(name="Ada", email="ada@example.org")
        assert user.role == UserRole.AUTHOR

    def test_volume_description_limit(self):
        with pytest.raises(ValidationError):
            VolumeCreate(volume_number=1, year=2026, description="x" * 501)

    def test_page_range_is_positive(self):
        with pytest.raises(ValidationError):
            PageRange(start=0, end=5)

    def test_campaign_requires_subject(self):
        with pytest.raises(ValidationError):
            CampaignCreate(subject="", body="Hello")
