"""Unit tests for submission screening rules."""

from journaldesk.config import settings
from journaldesk.manuscript_service import screen_submission
from journaldesk.models import ManuscriptSubmission


def _submission(**overrides) -> ManuscriptSubmission:
    fields = dict(
        title="Consensus in Double-Blind Review",
        abstract="A" * 150,
        keywords=["peer review", "consensus"],
        pdf_file="uploads/manuscript.pdf",
        original_filename="manuscript.pdf",
        file_size=250_000,
    )
    fields.update(overrides)
    return ManuscriptSubmission(**fields)


def _rules(sub: ManuscriptSubmission) -> set[str]:
    return {e.rule for e in screen_submission(sub)}


class TestSubmissionScreening:
    def test_valid_submission_passes(self):
        assert screen_submission(_submission()) == []

    def test_missing_title(self):
        assert "title_required" in _rules(_submission(title="   "))

    def test_short_title(self):
        assert "title_too_short" in _rules(_submission(title="Short"))

    def test_long_title(self):
        assert "title_too_long" in _rules(_submission(title="T" * (settings.workflow.title_max_length + 1)))

    def test_missing_abstract(self):
        assert "abstract_required" in _rules(_submission(abstract=""))

    def test_short_abstract(self):
        assert "abstract_too_short" in _rules(_submission(abstract="Too short"))

    def test_long_abstract(self):
        assert "abstract_too_long" in _rules(
            _submission(abstract="A" * (settings.workflow.abstract_max_length + 1))
        )

    def test_bad_keywords(self):
        errors = screen_submission(_submission(keywords=["x", "fine", "k" * 51]))
        assert [e.rule for e in errors] == ["invalid_keyword", "invalid_keyword"]

    def test_pdf_required(self):
        assert "pdf_required" in _rules(_submission(pdf_file=""))

    def test_only_pdf_allowed(self):
        assert "pdf_only" in _rules(_submission(file_type="application/msword"))

    def test_empty_file(self):
        assert "file_size_invalid" in _rules(_submission(file_size=0))

    def test_file_too_large(self):
        assert "file_too_large" in _rules(_submission(file_size=settings.workflow.max_pdf_bytes + 1))

    def test_errors_accumulate(self):
        rules = _rules(_submission(title="", abstract="", pdf_file="", file_size=0))
        assert {"title_required", "abstract_required", "pdf_required", "file_size_invalid"} <= rules

    def test_error_serialises(self):
        error = screen_submission(_submission(title=""))[0]
        assert error.to_dict() == {"rule": "title_required", "message": "Title is required"}
