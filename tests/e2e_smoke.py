"""End-to-end smoke test: submission through double-blind review to publication."""

import asyncio
import os
import tempfile

# Use a temp database so we don't pollute real data
os.environ["JOURNALDESK_DATA"] = tempfile.mkdtemp(prefix="journaldesk_test_")

from journaldesk.database import get_db
from journaldesk.decision_engine import evaluate_manuscript, get_discrepancy_report
from journaldesk.manuscript_service import get_manuscript, submit_manuscript
from journaldesk.models import (
    IssueCreate,
    ManuscriptStatus,
    ManuscriptSubmission,
    PageRange,
    PublicationRequest,
    ReviewAssignment,
    ReviewDecision,
    ReviewScores,
    ReviewSubmission,
    ReviewType,
    UserCreate,
    UserRole,
    VolumeCreate,
)
from journaldesk.publication_service import create_issue, create_volume, get_current_issue, publish_article
from journaldesk.review_service import assign_reviewer, submit_review
from journaldesk.search_service import index_article, search_articles
from journaldesk.user_service import register_user


async def run(db):
    print("=== E2E Smoke Test ===")
    print()

    # 1. Register people
    people = {}
    for name, email, role in [
        ("Grace Hopper", "grace@example.org", UserRole.AUTHOR),
        ("Jean Sammet", "jean@example.org", UserRole.REVIEWER),
        ("Edsger Dijkstra", "edsger@example.org", UserRole.REVIEWER),
        ("Tony Hoare", "tony@example.org", UserRole.REVIEWER),
        ("Niklaus Wirth", "niklaus@example.org", UserRole.REVIEWER),
        ("Frances Allen", "frances@example.org", UserRole.EDITOR),
    ]:
        user, errors = await register_user(db, UserCreate(name=name, email=email, role=role))
        assert user is not None, f"Registration failed: {errors}"
        people[email.split("@")[0]] = user
    editor_id = people["frances"].user_id
    print(f"1. Registered {len(people)} users")

    # 2. Submit a manuscript
    manuscript, errors = await submit_manuscript(
        db,
        ManuscriptSubmission(
            title="Compiling Structured Programs for Small Machines",
            abstract=(
                "We describe a compiler pipeline that translates structured programs into compact "
                "machine code for memory-constrained hardware, and evaluate it on six workloads."
            ),
            keywords=["compilers", "code size", "structured programming"],
            pdf_file="uploads/compiling.pdf",
            original_filename="compiling.pdf",
            file_size=420_000,
            co_authors=[people["jean"].user_id],
        ),
        people["grace"].user_id,
    )
    assert manuscript is not None, f"Should pass screening: {[e.to_dict() for e in errors]}"
    assert manuscript.status == ManuscriptStatus.SUBMITTED
    print(f"2. Submitted: {manuscript.manuscript_id} - status={manuscript.status.value}")
    ms_id = manuscript.manuscript_id

    # 3. A co-author cannot review the manuscript, even with the reviewer role
    _, conflicts = await assign_reviewer(
        db, ms_id, ReviewAssignment(reviewer_id=people["jean"].user_id), editor_id
    )
    assert "reviewer_is_co_author" in conflicts, f"Co-author should be blocked, got: {conflicts}"
    print("3. Conflict of interest check: PASSED (co-author blocked from reviewing)")

    # 4. Two reviewers disagree
    reviews = {}
    for key in ("edsger", "tony"):
        review, errors = await assign_reviewer(
            db, ms_id, ReviewAssignment(reviewer_id=people[key].user_id), editor_id
        )
        assert review is not None, f"Assignment failed: {errors}"
        reviews[key] = review

    strong = ReviewScores(
        originality=18, methodology=17, clarity=9, relevance=9, literature=8, results=13, contribution=13,
    )
    weak = ReviewScores(
        originality=9, methodology=10, clarity=5, relevance=6, literature=5, results=8, contribution=8,
    )
    for key, scores, decision in [
        ("edsger", strong, ReviewDecision.PUBLISHABLE),
        ("tony", weak, ReviewDecision.NOT_PUBLISHABLE),
    ]:
        done, errors = await submit_review(
            db,
            reviews[key].review_id,
            people[key].user_id,
            ReviewSubmission(
                scores=scores,
                review_decision=decision,
                comments_for_author="See attached notes.",
            ),
        )
        assert done is not None, f"Review failed: {errors}"
        print(f"4. Review by {key}: total={done.total_score}, decision={decision.value}")

    record = await evaluate_manuscript(db, ms_id)
    report = await get_discrepancy_report(db, ms_id)
    assert (await get_manuscript(db, ms_id)).status == ManuscriptStatus.IN_RECONCILIATION
    print(f"5. Decision: {record.decision} - severity={report.severity.value}, gap={report.score_difference}")

    # 6. Reconciliation reviewer breaks the tie
    tie_breaker, errors = await assign_reviewer(
        db,
        ms_id,
        ReviewAssignment(reviewer_id=people["niklaus"].user_id, review_type=ReviewType.RECONCILIATION),
        editor_id,
    )
    assert tie_breaker is not None, f"Reconciliation assignment failed: {errors}"
    await submit_review(
        db,
        tie_breaker.review_id,
        people["niklaus"].user_id,
        ReviewSubmission(scores=strong, review_decision=ReviewDecision.PUBLISHABLE),
    )
    record = await evaluate_manuscript(db, ms_id)
    manuscript = await get_manuscript(db, ms_id)
    assert manuscript.status == ManuscriptStatus.APPROVED, manuscript.status
    print(f"6. Reconciled: {record.decision} - status={manuscript.status.value}")

    # 7. Publish into a new issue
    volume, _ = await create_volume(db, VolumeCreate(volume_number=1, year=2026), editor_id)
    issue, _ = await create_issue(db, IssueCreate(volume_id=volume.volume_id, issue_number=1), editor_id)
    article, errors = await publish_article(
        db,
        ms_id,
        PublicationRequest(
            volume_id=volume.volume_id,
            issue_id=issue.issue_id,
            pages=PageRange(start=1, end=14),
        ),
        editor_id,
    )
    assert article is not None, f"Publication failed: {errors}"
    index_article(article)
    print(f"7. Published: doi={article.doi}")

    current = await get_current_issue(db)
    assert current is not None and len(current.articles) == 1

    # 8. Article is searchable
    hits = await search_articles(db, "compiler")
    assert hits and hits[0].article.article_id == article.article_id
    print(f"8. Search 'compiler': {len(hits)} hit(s)")

    print()
    print("=== ALL E2E CHECKS PASSED ===")


async def main():
    db = await get_db()
    try:
        await run(db)
    finally:
        await db.close()


if __name__ == "__main__":
    asyncio.run(main())
