"""MCP server — editorial-office tools for agents and assistants.

Exposes Tools (actions), Resources (read-only data) and Prompts (workflow templates)
using the FastMCP framework. Connect via stdio, SSE or HTTP.
"""

from __future__ import annotations

import json
from typing import Any

from fastmcp import FastMCP

from journaldesk.database import get_db
from journaldesk.decision_engine import (
    evaluate_manuscript,
    get_decision_trace,
    get_discrepancy_report,
    record_editorial_decision,
)
from journaldesk.manuscript_service import (
    get_manuscript,
    override_status,
    revise_manuscript,
    submit_manuscript,
)
from journaldesk.models import (
    ArticleType,
    EditorialDecision,
    ManuscriptRevision,
    ManuscriptStatus,
    ManuscriptSubmission,
    PageRange,
    PublicationRequest,
    ReviewAssignment,
    ReviewComments,
    ReviewDecision,
    ReviewScores,
    ReviewSubmission,
    ReviewType,
    StatusOverride,
    UserCreate,
    UserRole,
)
from journaldesk.publication_service import (
    get_archives,
    get_current_issue,
    publish_article,
)
from journaldesk.review_service import (
    assign_reviewer,
    blind_reviews,
    get_pending_by_reviewer,
    get_reviews_for_manuscript,
    save_review_draft,
    submit_review,
)
from journaldesk.search_service import index_article, search_articles
from journaldesk.user_service import register_user

# ---------------------------------------------------------------------------
# Create MCP server
# ---------------------------------------------------------------------------

mcp = FastMCP(
    "JournalDesk",
    instructions=(
        "Editorial office of an academic journal. "
        "Authors submit manuscripts, two reviewers score each round blind, "
        "disagreements go to a reconciliation reviewer, and approved manuscripts "
        "are published into volumes and issues. "
        "Use register_user_tool first to get a user ID."
    ),
)


def _dump(payload: Any) -> str:
    return json.dumps(payload, default=str, indent=2)


# ===================================================================
# TOOLS
# ===================================================================

# ---- Users ----

@mcp.tool()
async def register_user_tool(
    name: str,
    email: str,
    role: str = "author",
    affiliation: str = "",
    orcid: str = "",
) -> str:
    """Register a user. role: admin, editor, reviewer, author."""
    db = await get_db()
    try:
        user, errors = await register_user(
            db,
            UserCreate(name=name, email=email, role=UserRole(role), affiliation=affiliation, orcid=orcid),
        )
        if errors:
            return _dump({"errors": errors})
        return _dump(user.model_dump())
    finally:
        await db.close()


# ---- Manuscripts ----

@mcp.tool()
async def submit_manuscript_tool(
    title: str,
    abstract: str,
    pdf_file: str,
    submitter_id: str,
    keywords: list[str] | None = None,
    original_filename: str = "",
    file_size: int = 0,
    co_authors: list[str] | None = None,
) -> str:
    """
    Submit a manuscript.

    The submission is screened first (title, abstract, keywords, PDF size and type).
    Nothing is stored when screening fails; the errors say which rule failed.
    """
    db = await get_db()
    try:
        submission = ManuscriptSubmission(
            title=title,
            abstract=abstract,
            keywords=keywords or [],
            pdf_file=pdf_file,
            original_filename=original_filename,
            file_size=file_size,
            co_authors=co_authors or [],
        )
        manuscript, errors = await submit_manuscript(db, submission, submitter_id)
        if errors:
            return _dump({"screening_errors": [e.to_dict() for e in errors]})
        return _dump(manuscript.model_dump())
    finally:
        await db.close()


@mcp.tool()
async def check_manuscript_status(manuscript_id: str) -> str:
    """Current status of a manuscript with its reviews for the current round and the decision trace."""
    db = await get_db()
    try:
        manuscript = await get_manuscript(db, manuscript_id)
        if manuscript is None:
            return _dump({"error": "Manuscript not found"})

        reviews = await get_reviews_for_manuscript(db, manuscript_id, review_round=manuscript.version)
        decisions = await get_decision_trace(db, manuscript_id)
        return _dump({
            "manuscript_id": manuscript.manuscript_id,
            "title": manuscript.title,
            "status": manuscript.status.value,
            "version": manuscript.version,
            "reviews": [
                {
                    "review_id": r.review_id,
                    "review_type": r.review_type.value,
                    "status": r.status.value,
                    "total_score": r.total_score,
                    "decision": r.review_decision.value if r.review_decision else None,
                }
                for r in reviews
            ],
            "decisions": [d.model_dump() for d in decisions],
        })
    finally:
        await db.close()


@mcp.tool()
async def revise_manuscript_tool(
    manuscript_id: str,
    author_id: str,
    title: str | None = None,
    abstract: str | None = None,
    keywords: list[str] | None = None,
    pdf_file: str | None = None,
    file_size: int | None = None,
    change_summary: str = "",
) -> str:
    """Upload a revised version of a manuscript that is awaiting revision."""
    db = await get_db()
    try:
        revision = ManuscriptRevision(
            manuscript_id=manuscript_id,
            title=title,
            abstract=abstract,
            keywords=keywords,
            pdf_file=pdf_file,
            file_size=file_size,
            change_summary=change_summary,
        )
        manuscript, errors = await revise_manuscript(db, revision, author_id)
        if errors:
            return _dump({"errors": errors})
        return _dump(manuscript.model_dump())
    finally:
        await db.close()


# ---- Reviews ----

@mcp.tool()
async def assign_reviewer_tool(
    manuscript_id: str,
    reviewer_id: str,
    assigned_by: str,
    review_type: str = "human",
) -> str:
    """Assign a reviewer. review_type: human (two per round) or reconciliation."""
    db = await get_db()
    try:
        review, errors = await assign_reviewer(
            db,
            manuscript_id,
            ReviewAssignment(reviewer_id=reviewer_id, review_type=ReviewType(review_type)),
            assigned_by,
        )
        if errors:
            return _dump({"errors": errors})
        return _dump(review.model_dump())
    finally:
        await db.close()


@mcp.tool()
async def list_my_reviews_tool(reviewer_id: str) -> str:
    """Reviews assigned to a reviewer that are not yet completed."""
    db = await get_db()
    try:
        reviews = await get_pending_by_reviewer(db, reviewer_id)
        return _dump([r.model_dump() for r in reviews])
    finally:
        await db.close()


@mcp.tool()
async def save_review_draft_tool(
    review_id: str,
    reviewer_id: str,
    scores: dict[str, int],
    comments_for_author: str = "",
    confidential_comments_to_editor: str = "",
) -> str:
    """Save partial scores and comments without submitting."""
    db = await get_db()
    try:
        review, errors = await save_review_draft(
            db,
            review_id,
            reviewer_id,
            ReviewScores(**scores),
            ReviewComments(
                comments_for_author=comments_for_author,
                confidential_comments_to_editor=confidential_comments_to_editor,
            ),
        )
        if errors:
            return _dump({"errors": errors})
        return _dump(review.model_dump())
    finally:
        await db.close()


@mcp.tool()
async def submit_review_tool(
    review_id: str,
    reviewer_id: str,
    originality: int,
    methodology: int,
    clarity: int,
    relevance: int,
    literature: int,
    results: int,
    contribution: int,
    review_decision: str,
    comments_for_author: str = "",
    confidential_comments_to_editor: str = "",
) -> str:
    """
    Submit a completed review.

    Maxima: originality 20, methodology 20, clarity 10, relevance 10,
    literature 10, results 15, contribution 15 (total 100).
    review_decision: publishable, publishable_with_minor_revision,
    publishable_with_major_revision, not_publishable.

    Once both human reviews are in, the decision engine evaluates the manuscript.
    """
    db = await get_db()
    try:
        submission = ReviewSubmission(
            scores=ReviewScores(
                originality=originality,
                methodology=methodology,
                clarity=clarity,
                relevance=relevance,
                literature=literature,
                results=results,
                contribution=contribution,
            ),
            review_decision=ReviewDecision(review_decision),
            comments_for_author=comments_for_author,
            confidential_comments_to_editor=confidential_comments_to_editor,
        )
        review, errors = await submit_review(db, review_id, reviewer_id, submission)
        if errors:
            return _dump({"errors": errors})

        decision = await evaluate_manuscript(db, review.manuscript_id)
        return _dump({
            "review": review.model_dump(),
            "decision": decision.model_dump() if decision else None,
        })
    finally:
        await db.close()


# ---- Decisions ----

@mcp.tool()
async def discrepancy_report_tool(manuscript_id: str) -> str:
    """Compare the current round's completed human reviews criterion by criterion."""
    db = await get_db()
    try:
        report = await get_discrepancy_report(db, manuscript_id)
        if report is None:
            return _dump({"error": "Manuscript not found"})
        return _dump(report.model_dump())
    finally:
        await db.close()


@mcp.tool()
async def editorial_decision_tool(
    manuscript_id: str,
    actor_id: str,
    status: str,
    comments_for_author: str = "",
    confidential_comments_to_editor: str = "",
) -> str:
    """
    Record an editor's decision.

    status: approved, minor_revision, major_revision, rejected.
    """
    db = await get_db()
    try:
        record, errors = await record_editorial_decision(
            db,
            manuscript_id,
            EditorialDecision(
                status=ManuscriptStatus(status),
                comments_for_author=comments_for_author,
                confidential_comments_to_editor=confidential_comments_to_editor,
            ),
            actor_id,
        )
        if errors:
            return _dump({"errors": errors})
        return _dump(record.model_dump())
    finally:
        await db.close()


@mcp.tool()
async def override_status_tool(
    manuscript_id: str,
    actor_id: str,
    status: str,
    reason: str,
    silent_update: bool = True,
) -> str:
    """Force a manuscript into any status, bypassing the workflow. A reason is required."""
    db = await get_db()
    try:
        manuscript, errors = await override_status(
            db,
            manuscript_id,
            StatusOverride(status=ManuscriptStatus(status), reason=reason, silent_update=silent_update),
            actor_id,
        )
        if errors:
            return _dump({"errors": errors})
        return _dump(manuscript.model_dump())
    finally:
        await db.close()


@mcp.tool()
async def decision_trace_tool(manuscript_id: str) -> str:
    """Every decision recorded for a manuscript, with the rule evaluations behind it."""
    db = await get_db()
    try:
        return _dump([d.model_dump() for d in await get_decision_trace(db, manuscript_id)])
    finally:
        await db.close()


# ---- Publication ----

@mcp.tool()
async def publish_article_tool(
    manuscript_id: str,
    actor_id: str,
    volume_id: str,
    issue_id: str,
    article_type: str = "research_article",
    page_start: int | None = None,
    page_end: int | None = None,
    custom_doi: str = "",
) -> str:
    """Publish an approved manuscript into an issue. A DOI is minted unless custom_doi is given."""
    db = await get_db()
    try:
        pages = None
        if page_start is not None and page_end is not None:
            pages = PageRange(start=page_start, end=page_end)
        article, errors = await publish_article(
            db,
            manuscript_id,
            PublicationRequest(
                volume_id=volume_id,
                issue_id=issue_id,
                article_type=ArticleType(article_type),
                pages=pages,
                custom_doi=custom_doi,
            ),
            actor_id,
        )
        if errors:
            return _dump({"errors": errors})
        index_article(article)
        return _dump(article.model_dump())
    finally:
        await db.close()


@mcp.tool()
async def current_issue_tool() -> str:
    """The latest active issue with its volume and articles."""
    db = await get_db()
    try:
        contents = await get_current_issue(db)
        if contents is None:
            return _dump({"error": "No current issue"})
        return _dump(contents.model_dump())
    finally:
        await db.close()


@mcp.tool()
async def search_articles_tool(query: str, article_type: str | None = None, limit: int = 20) -> str:
    """Search published articles by title, abstract, keywords or author name."""
    db = await get_db()
    try:
        results = await search_articles(
            db,
            query,
            article_type=ArticleType(article_type) if article_type else None,
            limit=max(1, min(limit, 100)),
        )
        return _dump([r.model_dump() for r in results])
    finally:
        await db.close()


# ===================================================================
# RESOURCES
# ===================================================================

@mcp.resource("journaldesk://manuscripts/{manuscript_id}")
async def manuscript_resource(manuscript_id: str) -> str:
    """Read a manuscript by ID."""
    db = await get_db()
    try:
        manuscript = await get_manuscript(db, manuscript_id)
        if manuscript is None:
            return _dump({"error": "Not found"})
        return _dump(manuscript.model_dump())
    finally:
        await db.close()


@mcp.resource("journaldesk://manuscripts/{manuscript_id}/reviews")
async def manuscript_reviews_resource(manuscript_id: str) -> str:
    """Completed reviews for a manuscript, every round, as the authors see them."""
    db = await get_db()
    try:
        reviews = await get_reviews_for_manuscript(db, manuscript_id)
        return _dump([b.model_dump() for b in blind_reviews(reviews)])
    finally:
        await db.close()


@mcp.resource("journaldesk://archives")
async def archives_resource() -> str:
    """Volumes with their issues, newest first."""
    db = await get_db()
    try:
        return _dump([a.model_dump() for a in await get_archives(db)])
    finally:
        await db.close()


# ===================================================================
# PROMPTS
# ===================================================================

@mcp.prompt()
def peer_review(review_id: str) -> str:
    """Guide a reviewer through scoring a manuscript."""
    return f"""You are completing review {review_id}. The review is double-blind: do not try to identify the authors.

1. Read the manuscript PDF in full.

2. SCORE each criterion up to its maximum:
   - originality (20), methodology (20), clarity (10), relevance (10)
   - literature (10), results (15), contribution (15)

3. WRITE COMMENTS FOR THE AUTHOR: specific and constructive.

4. WRITE CONFIDENTIAL COMMENTS TO THE EDITOR if anything should not reach the author.

5. DECIDE: publishable, publishable_with_minor_revision,
   publishable_with_major_revision or not_publishable.

6. Use save_review_draft_tool while working and submit_review_tool when done."""


@mcp.prompt()
def reconcile_reviews(manuscript_id: str) -> str:
    """Guide a reconciliation reviewer through resolving a discrepancy."""
    return f"""Manuscript {manuscript_id} received diverging reviews and needs reconciliation.

1. Use discrepancy_report_tool to see where the two reviews differ and by how much.

2. Read the manuscript yourself; the earlier reviews are context, not a vote.

3. Score every criterion and choose a decision. Your decision is final for this round.

4. Submit with submit_review_tool."""
