"""Domain models for JournalDesk.

Every entity in the system is defined here as a Pydantic v2 model.
These models are shared across services, storage, MCP tools, and the REST API.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ManuscriptStatus(str, Enum):
    """Editorial workflow states of a manuscript."""

    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    IN_RECONCILIATION = "in_reconciliation"
    MINOR_REVISION = "minor_revision"
    MAJOR_REVISION = "major_revision"
    REVISED = "revised"
    APPROVED = "approved"
    REJECTED = "rejected"
    PUBLISHED = "published"

    @classmethod
    def allowed_next(cls, current: ManuscriptStatus | str) -> set[ManuscriptStatus]:
        """
        Statuses reachable in one step from ``current``.

        - submitted -> under_review
        - under_review -> approved / rejected / minor_revision / major_revision / in_reconciliation
        - in_reconciliation -> approved / rejected / minor_revision / major_revision
        - minor_revision / major_revision -> revised
        - revised -> under_review
        - approved -> published
        - rejected, published: terminal
        """
        try:
            status = cls(current)
        except ValueError:
            return set()
        return set(_TRANSITIONS.get(status, ()))


_TRANSITIONS: dict[ManuscriptStatus, tuple[ManuscriptStatus, ...]] = {
    ManuscriptStatus.SUBMITTED: (ManuscriptStatus.UNDER_REVIEW,),
    ManuscriptStatus.UNDER_REVIEW: (
        ManuscriptStatus.APPROVED,
        ManuscriptStatus.REJECTED,
        ManuscriptStatus.MINOR_REVISION,
        ManuscriptStatus.MAJOR_REVISION,
        ManuscriptStatus.IN_RECONCILIATION,
    ),
    ManuscriptStatus.IN_RECONCILIATION: (
        ManuscriptStatus.APPROVED,
        ManuscriptStatus.REJECTED,
        ManuscriptStatus.MINOR_REVISION,
        ManuscriptStatus.MAJOR_REVISION,
    ),
    ManuscriptStatus.MINOR_REVISION: (ManuscriptStatus.REVISED,),
    ManuscriptStatus.MAJOR_REVISION: (ManuscriptStatus.REVISED,),
    ManuscriptStatus.REVISED: (ManuscriptStatus.UNDER_REVIEW,),
    ManuscriptStatus.APPROVED: (ManuscriptStatus.PUBLISHED,),
    ManuscriptStatus.REJECTED: (),
    ManuscriptStatus.PUBLISHED: (),
}


class ReviewDecision(str, Enum):
    """A reviewer's publishability recommendation."""

    PUBLISHABLE = "publishable"
    NOT_PUBLISHABLE = "not_publishable"
    PUBLISHABLE_WITH_MINOR_REVISION = "publishable_with_minor_revision"
    PUBLISHABLE_WITH_MAJOR_REVISION = "publishable_with_major_revision"


class ReviewType(str, Enum):
    """Human reviews are the double-blind pair; reconciliation is the tie-breaker."""

    HUMAN = "human"
    RECONCILIATION = "reconciliation"


class ReviewStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    OVERDUE = "overdue"


class DiscrepancySeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class UserRole(str, Enum):
    ADMIN = "admin"
    EDITOR = "editor"
    REVIEWER = "reviewer"
    AUTHOR = "author"


class ArticleType(str, Enum):
    """Publication categories for accepted manuscripts."""

    RESEARCH_ARTICLE = "research_article"
    REVIEW_ARTICLE = "review_article"
    CASE_STUDY = "case_study"
    BOOK_REVIEW = "book_review"
    EDITORIAL = "editorial"
    COMMENTARY = "commentary"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"


class CampaignStatus(str, Enum):
    QUEUED = "queued"
    CANCELLED = "cancelled"


class AuditAction(str, Enum):
    """Actions tracked in the append-only audit log."""

    USER_REGISTERED = "user_registered"
    MANUSCRIPT_SUBMITTED = "manuscript_submitted"
    MANUSCRIPT_REVISED = "manuscript_revised"
    STATUS_CHANGED = "status_changed"
    STATUS_OVERRIDDEN = "status_overridden"
    REVIEWER_ASSIGNED = "reviewer_assigned"
    REVIEW_SUBMITTED = "review_submitted"
    REVIEWS_MARKED_OVERDUE = "reviews_marked_overdue"
    DISCREPANCY_DETECTED = "discrepancy_detected"
    DECISION_MADE = "decision_made"
    VOLUME_CREATED = "volume_created"
    VOLUME_UPDATED = "volume_updated"
    VOLUME_DELETED = "volume_deleted"
    ISSUE_CREATED = "issue_created"
    ISSUE_UPDATED = "issue_updated"
    ISSUE_DELETED = "issue_deleted"
    ARTICLE_PUBLISHED = "article_published"
    INVITATION_SENT = "invitation_sent"
    INVITATION_ACCEPTED = "invitation_accepted"
    CAMPAIGN_QUEUED = "campaign_queued"
    CAMPAIGN_CANCELLED = "campaign_cancelled"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _now() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

class User(BaseModel):
    """An account: author, reviewer, editor or administrator."""

    user_id: str = Field(default_factory=_uuid)
    name: str
    email: str
    role: UserRole = UserRole.AUTHOR
    affiliation: str = ""
    orcid: str = ""
    academic_title: str = ""
    is_editorial_board: bool = False
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class UserCreate(BaseModel):
    """Payload for registering a user."""

    name: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    role: UserRole = UserRole.AUTHOR
    affiliation: str = Field(default="", max_length=300)
    orcid: str = Field(default="", max_length=40)
    academic_title: str = Field(default="", max_length=100)
    is_editorial_board: bool = False


class ReviewerInvitation(BaseModel):
    """An emailed invitation to join the reviewer pool."""

    invitation_id: str = Field(default_factory=_uuid)
    email: str
    name: str = ""
    affiliation: str = ""
    token: str
    status: InvitationStatus = InvitationStatus.PENDING
    invited_by: str = ""
    expires_at: datetime
    created_at: datetime = Field(default_factory=_now)
    accepted_at: datetime | None = None


# ---------------------------------------------------------------------------
# Manuscript
# ---------------------------------------------------------------------------

class ReviewComments(BaseModel):
    comments_for_author: str = ""
    confidential_comments_to_editor: str = ""


class RevisionEntry(BaseModel):
    """A record of one revision in a manuscript's history."""

    version: int
    revised_at: datetime = Field(default_factory=_now)
    change_summary: str = ""
    previous_pdf_file: str = ""


class Manuscript(BaseModel):
    """A submitted research article tracked through the editorial workflow."""

    manuscript_id: str = ""  # MS-YYYY-NNNNN, assigned on submission
    title: str
    abstract: str = ""
    keywords: list[str] = Field(default_factory=list)

    pdf_file: str = ""
    original_filename: str = ""
    file_size: int = 0
    file_type: str = "application/pdf"

    submitter_id: str = ""
    co_authors: list[str] = Field(default_factory=list)

    status: ManuscriptStatus = ManuscriptStatus.SUBMITTED
    version: int = 1
    revision_history: list[RevisionEntry] = Field(default_factory=list)

    review_decision: ReviewDecision | None = None
    review_comments: ReviewComments = Field(default_factory=ReviewComments)
    reviewed_at: datetime | None = None
    decision_record_id: str | None = None

    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class ManuscriptSubmission(BaseModel):
    """Payload for submitting a new manuscript."""

    title: str
    abstract: str
    keywords: list[str] = Field(default_factory=list)
    pdf_file: str
    original_filename: str = ""
    file_size: int = 0
    file_type: str = "application/pdf"
    co_authors: list[str] = Field(default_factory=list)


class ManuscriptRevision(BaseModel):
    """Payload for an author's revised manuscript."""

    manuscript_id: str
    title: str | None = None
    abstract: str | None = None
    keywords: list[str] | None = None
    pdf_file: str | None = None
    original_filename: str | None = None
    file_size: int | None = None
    change_summary: str = ""


class StatusOverride(BaseModel):
    """Manual administrative status change that bypasses the workflow table."""

    status: ManuscriptStatus
    reason: str = Field(min_length=1, max_length=4_000)
    silent_update: bool = True


class EditorialDecision(BaseModel):
    """An editor's manual decision on a reviewed manuscript."""

    status: ManuscriptStatus
    comments_for_author: str = Field(default="", max_length=40_000)
    confidential_comments_to_editor: str = Field(default="", max_length=20_000)


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------

CRITERION_MAXIMA: dict[str, int] = {
    "originality": 20,
    "methodology": 20,
    "clarity": 10,
    "relevance": 10,
    "literature": 10,
    "results": 15,
    "contribution": 15,
}

MAX_TOTAL_SCORE = sum(CRITERION_MAXIMA.values())


class ReviewScores(BaseModel):
    """Seven-criterion review form; criterion maxima sum to 100."""

    originality: int = Field(default=0, ge=0, le=20)
    methodology: int = Field(default=0, ge=0, le=20)
    clarity: int = Field(default=0, ge=0, le=10)
    relevance: int = Field(default=0, ge=0, le=10)
    literature: int = Field(default=0, ge=0, le=10)
    results: int = Field(default=0, ge=0, le=15)
    contribution: int = Field(default=0, ge=0, le=15)


class Review(BaseModel):
    """A reviewer's scored evaluation of a manuscript."""

    review_id: str = Field(default_factory=_uuid)
    manuscript_id: str
    reviewer_id: str
    review_type: ReviewType = ReviewType.HUMAN
    review_round: int = 1
    scores: ReviewScores = Field(default_factory=ReviewScores)
    total_score: int = 0
    comments: ReviewComments = Field(default_factory=ReviewComments)
    review_decision: ReviewDecision | None = None
    status: ReviewStatus = ReviewStatus.IN_PROGRESS
    due_date: datetime
    completed_at: datetime | None = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class BlindedReview(BaseModel):
    """Author-facing view of a completed review: no reviewer identity, no editor-only comments."""

    review_id: str
    manuscript_id: str
    review_type: ReviewType
    review_round: int
    scores: ReviewScores
    total_score: int
    review_decision: ReviewDecision | None = None
    comments_for_author: str = ""
    completed_at: datetime | None = None

    @classmethod
    def from_review(cls, review: Review) -> "BlindedReview":
        return cls(
            review_id=review.review_id,
            manuscript_id=review.manuscript_id,
            review_type=review.review_type,
            review_round=review.review_round,
            scores=review.scores,
            total_score=review.total_score,
            review_decision=review.review_decision,
            comments_for_author=review.comments.comments_for_author,
            completed_at=review.completed_at,
        )


class ReviewAssignment(BaseModel):
    """Payload for assigning a reviewer."""

    reviewer_id: str
    review_type: ReviewType = ReviewType.HUMAN
    due_date: datetime | None = None


class ReviewSubmission(BaseModel):
    """Payload for completing a review."""

    scores: ReviewScores
    review_decision: ReviewDecision
    comments_for_author: str = Field(default="", max_length=40_000)
    confidential_comments_to_editor: str = Field(default="", max_length=20_000)


class CriterionDiscrepancy(BaseModel):
    criterion: str
    scores: list[int]
    max_score: int
    spread: int
    average_score: float
    percentage_difference: float


class DiscrepancyReport(BaseModel):
    """Comparison of the two completed human reviews of a manuscript."""

    manuscript_id: str = ""
    has_discrepancy: bool = False
    severity: DiscrepancySeverity | None = None
    compared_review_ids: list[str] = Field(default_factory=list)
    decisions: list[ReviewDecision] = Field(default_factory=list)
    total_scores: list[int] = Field(default_factory=list)
    score_difference: int = 0
    percent_difference: float = 0.0
    min_score: int = 0
    max_score: int = 0
    average_score: float = 0.0
    criteria_discrepancies: list[CriterionDiscrepancy] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Decision Record (Audit Trail)
# ---------------------------------------------------------------------------

class RuleEvaluation(BaseModel):
    """One rule evaluation in a decision — makes decisions explainable."""

    rule_name: str
    input_data: dict[str, Any] = Field(default_factory=dict)
    result: bool = False
    explanation: str = ""


class DecisionRecord(BaseModel):
    """Auditable record of a review-driven or editorial decision."""

    decision_id: str = Field(default_factory=_uuid)
    manuscript_id: str
    decision: str  # e.g. "publishable", "reconciliation_required", "insufficient_reviews"
    decided_by: str = "decision_engine"
    resulting_status: ManuscriptStatus | None = None
    rule_evaluations: list[RuleEvaluation] = Field(default_factory=list)
    review_summary: dict[str, Any] = Field(default_factory=dict)
    explanation: str = ""
    decided_at: datetime = Field(default_factory=_now)


# ---------------------------------------------------------------------------
# Volumes, issues, articles
# ---------------------------------------------------------------------------

class Volume(BaseModel):
    volume_id: str = Field(default_factory=_uuid)
    volume_number: int = Field(ge=1)
    year: int = Field(ge=1900, le=2100)
    description: str = ""
    cover_image: str = ""
    publish_date: datetime = Field(default_factory=_now)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class VolumeCreate(BaseModel):
    volume_number: int = Field(ge=1)
    year: int = Field(ge=1900, le=2100)
    description: str = Field(default="", max_length=500)
    cover_image: str = ""
    publish_date: datetime | None = None


class VolumeUpdate(BaseModel):
    volume_number: int | None = Field(default=None, ge=1)
    year: int | None = Field(default=None, ge=1900, le=2100)
    description: str | None = Field(default=None, max_length=500)
    cover_image: str | None = None
    publish_date: datetime | None = None


class Issue(BaseModel):
    issue_id: str = Field(default_factory=_uuid)
    volume_id: str
    issue_number: int = Field(ge=1)
    publish_date: datetime = Field(default_factory=_now)
    description: str = ""
    is_active: bool = True
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class IssueCreate(BaseModel):
    volume_id: str
    issue_number: int = Field(ge=1)
    publish_date: datetime | None = None
    description: str = Field(default="", max_length=500)
    is_active: bool = True


class IssueUpdate(BaseModel):
    issue_number: int | None = Field(default=None, ge=1)
    publish_date: datetime | None = None
    description: str | None = Field(default=None, max_length=500)
    is_active: bool | None = None


class PageRange(BaseModel):
    start: int = Field(ge=1)
    end: int = Field(ge=1)


class Article(BaseModel):
    """A published article — the public face of an approved manuscript."""

    article_id: str = Field(default_factory=_uuid)
    manuscript_id: str
    title: str
    abstract: str = ""
    keywords: list[str] = Field(default_factory=list)
    author_id: str = ""
    co_authors: list[str] = Field(default_factory=list)
    volume_id: str
    issue_id: str
    article_type: ArticleType = ArticleType.RESEARCH_ARTICLE
    pages: PageRange | None = None
    doi: str = ""
    pdf_file: str = ""
    publish_date: datetime = Field(default_factory=_now)
    created_at: datetime = Field(default_factory=_now)


class PublicationRequest(BaseModel):
    volume_id: str
    issue_id: str
    article_type: ArticleType = ArticleType.RESEARCH_ARTICLE
    publish_date: datetime | None = None
    pages: PageRange | None = None
    custom_doi: str = ""


# ---------------------------------------------------------------------------
# Email campaigns
# ---------------------------------------------------------------------------

class EmailCampaign(BaseModel):
    campaign_id: str = Field(default_factory=_uuid)
    subject: str
    body: str
    recipient_role: UserRole | None = None
    manuscript_status: ManuscriptStatus | None = None
    recipient_count: int = 0
    recipients: list[str] = Field(default_factory=list)
    status: CampaignStatus = CampaignStatus.QUEUED
    created_by: str = ""
    created_at: datetime = Field(default_factory=_now)


class CampaignCreate(BaseModel):
    """Explicit recipient IDs win over the role and manuscript-status filters."""

    subject: str = Field(min_length=1, max_length=300)
    body: str = Field(min_length=1, max_length=100_000)
    recipient_role: UserRole | None = None
    manuscript_status: ManuscriptStatus | None = None
    recipient_ids: list[str] = Field(default_factory=list)


class EmailRecipient(BaseModel):
    user_id: str
    name: str
    email: str
    role: UserRole
    manuscript_id: str | None = None
    manuscript_title: str | None = None


# ---------------------------------------------------------------------------
# Audit Event (Immutable Event Log)
# ---------------------------------------------------------------------------

class AuditEvent(BaseModel):
    """Append-only event for the system audit trail."""

    event_id: str = Field(default_factory=_uuid)
    action: AuditAction
    actor_id: str = ""  # user_id or "system"
    target_id: str = ""  # manuscript_id, review_id, user_id, etc.
    target_type: str = ""  # "manuscript", "review", "user", etc.
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_now)


# ---------------------------------------------------------------------------
# Dashboards and statistics
# ---------------------------------------------------------------------------

class ReviewerDashboard(BaseModel):
    reviewer_id: str
    total_assigned: int = 0
    completed: int = 0
    pending: int = 0
    overdue: int = 0
    reconciliation_pending: int = 0


class AssignmentStats(BaseModel):
    total_assigned: int = 0
    completed: int = 0
    pending: int = 0
    overdue: int = 0
    reconciliation: int = 0


class JournalStats(BaseModel):
    """System-wide statistics for the admin dashboard."""

    total_manuscripts: int = 0
    manuscripts_by_status: dict[str, int] = Field(default_factory=dict)
    total_reviews: int = 0
    total_reviewers: int = 0
    total_published_articles: int = 0
    total_volumes: int = 0
    total_issues: int = 0
    in_reconciliation: int = 0


# ---------------------------------------------------------------------------
# Public reading views
# ---------------------------------------------------------------------------

class IssueContents(BaseModel):
    """An issue with its volume and articles, ordered by first page."""

    volume: Volume
    issue: Issue
    articles: list[Article] = Field(default_factory=list)


class VolumeArchive(BaseModel):
    volume: Volume
    issues: list[Issue] = Field(default_factory=list)


class ArticlePage(BaseModel):
    """One page of published articles."""

    articles: list[Article] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10
    pages: int = 0


class SearchResult(BaseModel):
    """A published article matched by a search query."""

    article: Article
    relevance_score: float = 0.0
