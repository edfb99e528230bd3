"""Review service — reviewer assignment, conflict checks, drafts, submission, overdue sweep."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import aiosqlite

from journaldesk.audit_service import log_event
from journaldesk.config import settings
from journaldesk.database import from_json, iso, to_json, utcnow
from journaldesk.manuscript_service import get_manuscript, transition_manuscript
from journaldesk.models import (
    AssignmentStats,
    AuditAction,
    BlindedReview,
    Manuscript,
    ManuscriptStatus,
    Review,
    ReviewAssignment,
    ReviewComments,
    ReviewerDashboard,
    ReviewScores,
    ReviewStatus,
    ReviewSubmission,
    ReviewType,
    UserRole,
)
from journaldesk.scoring import total_score
from journaldesk.user_service import get_user

logger = logging.getLogger("journaldesk.reviews")

# Reviewable manuscript statuses per review type
_OPEN_STATUSES = {
    ReviewType.HUMAN: (ManuscriptStatus.SUBMITTED, ManuscriptStatus.UNDER_REVIEW),
    ReviewType.RECONCILIATION: (ManuscriptStatus.IN_RECONCILIATION,),
}

HUMAN_REVIEWERS_PER_ROUND = 2


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------

def _row_to_review(row: aiosqlite.Row | dict[str, Any]) -> Review:
    d = dict(row)
    scores_raw = from_json(d.get("scores", "{}"))
    d["scores"] = ReviewScores(**scores_raw) if isinstance(scores_raw, dict) else ReviewScores()
    comments_raw = from_json(d.get("comments", "{}"))
    d["comments"] = ReviewComments(**comments_raw) if isinstance(comments_raw, dict) else ReviewComments()
    return Review(**d)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Conflict of interest checks
# ---------------------------------------------------------------------------

async def check_conflicts(
    db: aiosqlite.Connection,
    manuscript: Manuscript,
    reviewer_id: str,
    review_type: ReviewType,
) -> list[str]:
    """
    Check whether a reviewer may take this manuscript in its current round.
    Returns list of conflict reasons (empty = no conflicts).
    """
    conflicts: list[str] = []

    if reviewer_id == manuscript.submitter_id:
        conflicts.append("reviewer_is_author")
    if reviewer_id in manuscript.co_authors:
        conflicts.append("reviewer_is_co_author")

    round_reviews = await get_reviews_for_manuscript(
        db, manuscript.manuscript_id, review_round=manuscript.version
    )
    if any(r.reviewer_id == reviewer_id for r in round_reviews):
        conflicts.append("already_assigned_this_round")

    humans = [r for r in round_reviews if r.review_type == ReviewType.HUMAN]
    if review_type == ReviewType.HUMAN:
        if len(humans) >= HUMAN_REVIEWERS_PER_ROUND:
            conflicts.append("human_reviewers_already_assigned")
    else:
        # The tie-breaker must be someone other than the disagreeing pair.
        if any(r.reviewer_id == reviewer_id for r in humans):
            conflicts.append("reconciliation_reviewer_reviewed_this_round")
        if any(r.review_type == ReviewType.RECONCILIATION for r in round_reviews):
            conflicts.append("reconciliation_already_assigned")

    return conflicts


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------

async def assign_reviewer(
    db: aiosqlite.Connection,
    manuscript_id: str,
    assignment: ReviewAssignment,
    assigned_by: str,
) -> tuple[Review | None, list[str]]:
    """
    Assign a reviewer to the manuscript's current review round.

    The first human assignment moves a ``submitted`` manuscript to
    ``under_review``. Returns (review, errors).
    """
    manuscript = await get_manuscript(db, manuscript_id)
    if manuscript is None:
        return None, ["manuscript_not_found"]

    if manuscript.status not in _OPEN_STATUSES[assignment.review_type]:
        return None, [
            f"manuscript_status_is_{manuscript.status.value}_not_open_for_{assignment.review_type.value}_review"
        ]

    reviewer = await get_user(db, assignment.reviewer_id)
    if reviewer is None:
        return None, ["reviewer_not_found"]
    if reviewer.role != UserRole.REVIEWER:
        return None, ["user_is_not_reviewer"]

    conflicts = await check_conflicts(db, manuscript, reviewer.user_id, assignment.review_type)
    if conflicts:
        return None, conflicts

    now = utcnow()
    due = (
        _as_utc(assignment.due_date)
        if assignment.due_date is not None
        else now + timedelta(days=settings.workflow.review_due_days)
    )
    review = Review(
        manuscript_id=manuscript_id,
        reviewer_id=reviewer.user_id,
        review_type=assignment.review_type,
        review_round=manuscript.version,
        due_date=due,
        created_at=now,
        updated_at=now,
    )

    await db.execute(
        """
        INSERT INTO reviews (
            review_id, manuscript_id, reviewer_id, review_type, review_round,
            scores, total_score, comments, review_decision, status,
            due_date, completed_at, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            review.review_id,
            review.manuscript_id,
            review.reviewer_id,
            review.review_type.value,
            review.review_round,
            to_json(review.scores),
            review.total_score,
            to_json(review.comments),
            None,
            review.status.value,
            review.due_date.isoformat(),
            None,
            now.isoformat(),
            now.isoformat(),
        ),
    )
    await db.commit()

    if manuscript.status == ManuscriptStatus.SUBMITTED:
        _, errors = await transition_manuscript(
            db,
            manuscript_id,
            ManuscriptStatus.UNDER_REVIEW,
            actor_id=assigned_by,
            details={"trigger": "first_reviewer_assigned"},
        )
        if errors:
            logger.error("Could not open review for %s: %s", manuscript_id, errors)

    await log_event(
        db,
        AuditAction.REVIEWER_ASSIGNED,
        actor_id=assigned_by,
        target_id=manuscript_id,
        target_type="manuscript",
        details={
            "review_id": review.review_id,
            "reviewer_id": review.reviewer_id,
            "review_type": review.review_type.value,
            "round": review.review_round,
            "due_date": review.due_date.isoformat(),
        },
    )
    return review, []


# ---------------------------------------------------------------------------
# Drafts and submission
# ---------------------------------------------------------------------------

async def _load_own_open_review(
    db: aiosqlite.Connection,
    review_id: str,
    reviewer_id: str,
) -> tuple[Review | None, list[str]]:
    review = await get_review(db, review_id)
    if review is None:
        return None, ["review_not_found"]
    if review.reviewer_id != reviewer_id:
        return None, ["not_assigned_reviewer"]
    if review.status == ReviewStatus.COMPLETED:
        return None, ["review_already_completed"]
    return review, []


async def save_review_draft(
    db: aiosqlite.Connection,
    review_id: str,
    reviewer_id: str,
    scores: ReviewScores,
    comments: ReviewComments | None = None,
) -> tuple[Review | None, list[str]]:
    """Save work in progress; the review keeps its status and due date."""
    review, errors = await _load_own_open_review(db, review_id, reviewer_id)
    if errors:
        return None, errors

    await db.execute(
        "UPDATE reviews SET scores = ?, total_score = ?, comments = ?, updated_at = ? WHERE review_id = ?",
        (
            to_json(scores),
            total_score(scores),
            to_json(comments or review.comments),
            utcnow().isoformat(),
            review_id,
        ),
    )
    await db.commit()
    return await get_review(db, review_id), []


async def submit_review(
    db: aiosqlite.Connection,
    review_id: str,
    reviewer_id: str,
    submission: ReviewSubmission,
) -> tuple[Review | None, list[str]]:
    """
    Complete an assigned review.

    Overdue reviews are still accepted. Returns (review, errors); the caller
    runs the decision engine afterwards.
    """
    review, errors = await _load_own_open_review(db, review_id, reviewer_id)
    if errors:
        return None, errors

    manuscript = await get_manuscript(db, review.manuscript_id)
    if manuscript is None:
        return None, ["manuscript_not_found"]
    expected = (
        ManuscriptStatus.UNDER_REVIEW
        if review.review_type == ReviewType.HUMAN
        else ManuscriptStatus.IN_RECONCILIATION
    )
    if manuscript.status != expected:
        return None, [f"manuscript_status_is_{manuscript.status.value}_not_{expected.value}"]

    now = utcnow()
    comments = ReviewComments(
        comments_for_author=submission.comments_for_author,
        confidential_comments_to_editor=submission.confidential_comments_to_editor,
    )
    total = total_score(submission.scores)
    await db.execute(
        """
        UPDATE reviews
        SET scores = ?, total_score = ?, comments = ?, review_decision = ?,
            status = ?, completed_at = ?, updated_at = ?
        WHERE review_id = ?
        """,
        (
            to_json(submission.scores),
            total,
            to_json(comments),
            submission.review_decision.value,
            ReviewStatus.COMPLETED.value,
            now.isoformat(),
            now.isoformat(),
            review_id,
        ),
    )
    await db.commit()

    await log_event(
        db,
        AuditAction.REVIEW_SUBMITTED,
        actor_id=reviewer_id,
        target_id=review.manuscript_id,
        target_type="manuscript",
        details={
            "review_id": review_id,
            "review_type": review.review_type.value,
            "round": review.review_round,
            "decision": submission.review_decision.value,
            "total_score": total,
            "was_overdue": review.status == ReviewStatus.OVERDUE,
        },
    )
    logger.info("Review %s completed for %s (total %d)", review_id, review.manuscript_id, total)
    return await get_review(db, review_id), []


# ---------------------------------------------------------------------------
# Query reviews
# ---------------------------------------------------------------------------

async def get_review(db: aiosqlite.Connection, review_id: str) -> Review | None:
    async with db.execute(
        "SELECT * FROM reviews WHERE review_id = ?", (review_id,)
    ) as cursor:
        row = await cursor.fetchone()
    if row is None:
        return None
    return _row_to_review(row)


async def get_reviews_for_manuscript(
    db: aiosqlite.Connection,
    manuscript_id: str,
    review_round: int | None = None,
) -> list[Review]:
    """Get all reviews for a manuscript, optionally filtered by round."""
    if review_round is not None:
        query = "SELECT * FROM reviews WHERE manuscript_id = ? AND review_round = ? ORDER BY created_at"
        params: tuple[Any, ...] = (manuscript_id, review_round)
    else:
        query = "SELECT * FROM reviews WHERE manuscript_id = ? ORDER BY review_round, created_at"
        params = (manuscript_id,)

    async with db.execute(query, params) as cursor:
        rows = await cursor.fetchall()
    return [_row_to_review(row) for row in rows]


def blind_reviews(reviews: list[Review]) -> list[BlindedReview]:
    """What an author may see: completed reviews, without reviewer identity or editor-only comments."""
    return [BlindedReview.from_review(r) for r in reviews if r.status == ReviewStatus.COMPLETED]


async def get_pending_by_reviewer(db: aiosqlite.Connection, reviewer_id: str) -> list[Review]:
    """Open assignments (in progress or overdue), earliest due first."""
    async with db.execute(
        """
        SELECT * FROM reviews
        WHERE reviewer_id = ? AND status IN (?, ?)
        ORDER BY due_date ASC
        """,
        (reviewer_id, ReviewStatus.IN_PROGRESS.value, ReviewStatus.OVERDUE.value),
    ) as cursor:
        rows = await cursor.fetchall()
    return [_row_to_review(row) for row in rows]


async def get_completed_by_reviewer(db: aiosqlite.Connection, reviewer_id: str) -> list[Review]:
    async with db.execute(
        "SELECT * FROM reviews WHERE reviewer_id = ? AND status = ? ORDER BY completed_at DESC",
        (reviewer_id, ReviewStatus.COMPLETED.value),
    ) as cursor:
        rows = await cursor.fetchall()
    return [_row_to_review(row) for row in rows]


async def update_overdue_reviews(
    db: aiosqlite.Connection,
    now: datetime | None = None,
    actor_id: str = "system",
) -> int:
    """Mark in-progress reviews past their due date as overdue. Returns the count."""
    cutoff = iso(_as_utc(now) if now is not None else utcnow())
    cursor = await db.execute(
        "UPDATE reviews SET status = ?, updated_at = ? WHERE status = ? AND due_date < ?",
        (ReviewStatus.OVERDUE.value, cutoff, ReviewStatus.IN_PROGRESS.value, cutoff),
    )
    count = cursor.rowcount
    await cursor.close()
    await db.commit()

    if count:
        await log_event(
            db,
            AuditAction.REVIEWS_MARKED_OVERDUE,
            actor_id=actor_id,
            target_type="review",
            details={"count": count, "cutoff": cutoff},
        )
        logger.info("Marked %d review(s) overdue", count)
    return count


# ---------------------------------------------------------------------------
# Dashboards
# ---------------------------------------------------------------------------

async def get_reviewer_dashboard(db: aiosqlite.Connection, reviewer_id: str) -> ReviewerDashboard:
    async with db.execute(
        """
        SELECT
            COUNT(*),
            COALESCE(SUM(status = 'completed'), 0),
            COALESCE(SUM(status = 'in_progress'), 0),
            COALESCE(SUM(status = 'overdue'), 0),
            COALESCE(SUM(review_type = 'reconciliation' AND status != 'completed'), 0)
        FROM reviews WHERE reviewer_id = ?
        """,
        (reviewer_id,),
    ) as cursor:
        row = await cursor.fetchone()
    return ReviewerDashboard(
        reviewer_id=reviewer_id,
        total_assigned=row[0],
        completed=row[1],
        pending=row[2],
        overdue=row[3],
        reconciliation_pending=row[4],
    )


async def get_assignment_stats(db: aiosqlite.Connection) -> AssignmentStats:
    """Journal-wide assignment counts for the admin assignments view."""
    async with db.execute(
        """
        SELECT
            COUNT(*),
            COALESCE(SUM(status = 'completed'), 0),
            COALESCE(SUM(status = 'in_progress'), 0),
            COALESCE(SUM(status = 'overdue'), 0),
            COALESCE(SUM(review_type = 'reconciliation'), 0)
        FROM reviews
        """
    ) as cursor:
        row = await cursor.fetchone()
    return AssignmentStats(
        total_assigned=row[0],
        completed=row[1],
        pending=row[2],
        overdue=row[3],
        reconciliation=row[4],
    )
