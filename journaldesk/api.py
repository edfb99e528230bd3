"""REST API — FastAPI endpoints for the editorial office, reviewers and public readers."""

from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from starlette.middleware.trustedhost import TrustedHostMiddleware

from journaldesk import __version__
from journaldesk.audit_service import get_events_for_target, query_events
from journaldesk.auth import (
    SCOPE_CAMPAIGNS,
    SCOPE_EDITORIAL,
    SCOPE_MANUSCRIPTS,
    SCOPE_PUBLICATION,
    SCOPE_REVIEWS,
    SCOPE_USERS,
    AuthContext,
    enforce_read_access,
    get_auth_context,
    require_scopes,
    resolve_actor_id,
)
from journaldesk.campaign_service import (
    cancel_campaign,
    create_campaign,
    get_recipients,
    list_campaigns,
)
from journaldesk.config import settings
from journaldesk.database import get_db
from journaldesk.decision_engine import (
    evaluate_manuscript,
    get_decision_trace,
    get_discrepancy_report,
    record_editorial_decision,
)
from journaldesk.manuscript_service import (
    count_manuscripts_by_status,
    get_manuscript,
    get_manuscripts_for_decision,
    list_manuscripts,
    override_status,
    resubmit_for_review,
    revise_manuscript,
    search_manuscripts,
    submit_manuscript,
    transition_manuscript,
)
from journaldesk.middleware import (
    RateLimitMiddleware,
    RequestLoggingMiddleware,
    RequestSizeLimitMiddleware,
    SecurityHeadersMiddleware,
)
from journaldesk.models import (
    ArticleType,
    AuditAction,
    CampaignCreate,
    CampaignStatus,
    EditorialDecision,
    InvitationStatus,
    IssueCreate,
    IssueUpdate,
    JournalStats,
    Manuscript,
    ManuscriptRevision,
    ManuscriptStatus,
    ManuscriptSubmission,
    PublicationRequest,
    ReviewAssignment,
    ReviewComments,
    ReviewScores,
    ReviewSubmission,
    StatusOverride,
    UserCreate,
    UserRole,
    VolumeCreate,
    VolumeUpdate,
)
from journaldesk.publication_service import (
    create_issue,
    create_volume,
    delete_issue,
    delete_volume,
    get_archives,
    get_current_issue,
    get_issue,
    get_issue_contents,
    get_pending_publications,
    get_published_article,
    get_published_articles,
    get_volume,
    list_issues,
    list_volumes,
    publish_article,
    update_issue,
    update_volume,
)
from journaldesk.review_service import (
    assign_reviewer,
    blind_reviews,
    get_assignment_stats,
    get_completed_by_reviewer,
    get_pending_by_reviewer,
    get_review,
    get_reviewer_dashboard,
    get_reviews_for_manuscript,
    save_review_draft,
    submit_review,
    update_overdue_reviews,
)
from journaldesk.search_service import find_related, index_article, search_articles
from journaldesk.user_service import (
    accept_invitation,
    create_invitation,
    get_editorial_board,
    get_user,
    list_invitations,
    list_users,
    register_user,
)

logger = logging.getLogger("journaldesk.api")

app = FastAPI(
    title="JournalDesk",
    description="Manuscript workflow, double-blind review and publication backend for an academic journal",
    version=__version__,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.server.trusted_hosts)
app.add_middleware(RequestSizeLimitMiddleware, max_bytes=settings.server.max_request_bytes)
app.add_middleware(SecurityHeadersMiddleware)

if settings.rate_limit.enabled:
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_minute=settings.rate_limit.requests_per_minute,
        write_requests_per_minute=settings.rate_limit.write_requests_per_minute,
    )

if settings.server.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

# Outermost, so errors raised by the other middleware are logged too.
app.add_middleware(RequestLoggingMiddleware)


def _clamp_limit(limit: int, default: int = 20, max_value: int = 200) -> int:
    if limit <= 0:
        return default
    return min(limit, max_value)


def _fail(errors: list, not_found: str | None = None) -> None:
    """Map a service error list to an HTTP error."""
    codes = [e if isinstance(e, str) else e.get("rule", "") for e in errors]
    if not_found and not_found in codes:
        raise HTTPException(404, not_found)
    raise HTTPException(400, {"errors": errors})


def _require_actor(explicit_id: str | None, auth: AuthContext, field: str = "actor_id") -> str:
    actor_id = resolve_actor_id(explicit_id, auth)
    if not actor_id:
        raise HTTPException(400, f"{field} is required when API auth is disabled")
    return actor_id


def _require_identity(auth: AuthContext) -> None:
    """Review content is never anonymous, whatever the read settings say."""
    if not auth.authenticated:
        raise HTTPException(401, "Authentication required to read reviews")


def _deny_review_access(auth: AuthContext) -> None:
    raise HTTPException(
        403, {"error": "review_access_denied", "actor_id": auth.actor_id, "role": auth.role}
    )


def _is_manuscript_author(manuscript: Manuscript, actor_id: str) -> bool:
    return actor_id == manuscript.submitter_id or actor_id in manuscript.co_authors


def _require_reviewer_or_editor(auth: AuthContext, reviewer_id: str) -> None:
    _require_identity(auth)
    if not auth.has_scope(SCOPE_EDITORIAL) and auth.actor_id != reviewer_id:
        _deny_review_access(auth)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class ManuscriptSubmitRequest(ManuscriptSubmission):
    submitter_id: str | None = None


class ManuscriptReviseRequest(BaseModel):
    author_id: str | None = None
    title: str | None = None
    abstract: str | None = None
    keywords: list[str] | None = None
    pdf_file: str | None = None
    original_filename: str | None = None
    file_size: int | None = None
    change_summary: str = Field(default="", max_length=10_000)


class ActorRequest(BaseModel):
    actor_id: str | None = None


class TransitionRequest(ActorRequest):
    status: ManuscriptStatus


class OverrideRequest(StatusOverride):
    actor_id: str | None = None


class EditorialDecisionRequest(EditorialDecision):
    actor_id: str | None = None


class AssignReviewerRequest(ReviewAssignment):
    assigned_by: str | None = None


class ReviewDraftRequest(BaseModel):
    reviewer_id: str | None = None
    scores: ReviewScores = Field(default_factory=ReviewScores)
    comments_for_author: str = Field(default="", max_length=40_000)
    confidential_comments_to_editor: str = Field(default="", max_length=20_000)


class ReviewSubmitRequest(ReviewSubmission):
    reviewer_id: str | None = None


class InvitationRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    name: str = Field(default="", max_length=200)
    affiliation: str = Field(default="", max_length=300)
    invited_by: str | None = None


class AcceptInvitationRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    affiliation: str = Field(default="", max_length=300)
    academic_title: str = Field(default="", max_length=100)


class PublishRequest(PublicationRequest):
    actor_id: str | None = None


class CampaignRequest(CampaignCreate):
    actor_id: str | None = None


# ---------------------------------------------------------------------------
# Users and invitations
# ---------------------------------------------------------------------------

@app.post("/api/users", tags=["users"])
async def api_register_user(
    req: UserCreate,
    _: AuthContext = Depends(require_scopes(SCOPE_USERS)),
):
    db = await get_db()
    try:
        user, errors = await register_user(db, req)
        if errors:
            _fail(errors)
        return user.model_dump()
    finally:
        await db.close()


@app.get("/api/users", tags=["users"])
async def api_list_users(
    role: UserRole | None = None,
    limit: int = 100,
    offset: int = 0,
    auth: AuthContext = Depends(get_auth_context),
):
    enforce_read_access(auth)
    db = await get_db()
    try:
        users = await list_users(db, role=role, limit=_clamp_limit(limit, 100, 500), offset=max(offset, 0))
        return [u.model_dump() for u in users]
    finally:
        await db.close()


@app.get("/api/users/{user_id}", tags=["users"])
async def api_get_user(
    user_id: str,
    auth: AuthContext = Depends(get_auth_context),
):
    enforce_read_access(auth)
    db = await get_db()
    try:
        user = await get_user(db, user_id)
        if not user:
            raise HTTPException(404, "User not found")
        return user.model_dump()
    finally:
        await db.close()


@app.get("/api/editorial-board", tags=["public"])
async def api_editorial_board(auth: AuthContext = Depends(get_auth_context)):
    enforce_read_access(auth)
    db = await get_db()
    try:
        return [u.model_dump() for u in await get_editorial_board(db)]
    finally:
        await db.close()


@app.post("/api/invitations", tags=["users"])
async def api_create_invitation(
    req: InvitationRequest,
    auth: AuthContext = Depends(require_scopes(SCOPE_USERS)),
):
    db = await get_db()
    try:
        invited_by = _require_actor(req.invited_by, auth, "invited_by")
        invitation, errors = await create_invitation(
            db, req.email, invited_by, name=req.name, affiliation=req.affiliation
        )
        if errors:
            _fail(errors)
        return invitation.model_dump()
    finally:
        await db.close()


@app.get("/api/invitations", tags=["users"])
async def api_list_invitations(
    status: InvitationStatus | None = None,
    limit: int = 100,
    _: AuthContext = Depends(require_scopes(SCOPE_USERS)),
):
    db = await get_db()
    try:
        invitations = await list_invitations(db, status=status, limit=_clamp_limit(limit, 100, 500))
        return [i.model_dump() for i in invitations]
    finally:
        await db.close()


@app.post("/api/invitations/{token}/accept", tags=["users"])
async def api_accept_invitation(token: str, req: AcceptInvitationRequest):
    """The token is the credential here; no API key is needed."""
    db = await get_db()
    try:
        user, errors = await accept_invitation(
            db, token, req.name, affiliation=req.affiliation, academic_title=req.academic_title
        )
        if errors:
            _fail(errors, not_found="invitation_not_found")
        return user.model_dump()
    finally:
        await db.close()


# ---------------------------------------------------------------------------
# Manuscripts
# ---------------------------------------------------------------------------

@app.post("/api/manuscripts", tags=["manuscripts"])
async def api_submit_manuscript(
    req: ManuscriptSubmitRequest,
    auth: AuthContext = Depends(require_scopes(SCOPE_MANUSCRIPTS)),
):
    db = await get_db()
    try:
        submitter_id = _require_actor(req.submitter_id, auth, "submitter_id")
        submission = ManuscriptSubmission(**req.model_dump(exclude={"submitter_id"}))
        manuscript, errors = await submit_manuscript(db, submission, submitter_id)
        if errors:
            _fail([e.to_dict() for e in errors])
        return manuscript.model_dump()
    finally:
        await db.close()


@app.get("/api/manuscripts", tags=["manuscripts"])
async def api_list_manuscripts(
    status: ManuscriptStatus | None = None,
    submitter_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
    auth: AuthContext = Depends(get_auth_context),
):
    enforce_read_access(auth)
    db = await get_db()
    try:
        manuscripts = await list_manuscripts(
            db,
            status=status,
            submitter_id=submitter_id,
            limit=_clamp_limit(limit, 50, 200),
            offset=max(offset, 0),
        )
        return [m.model_dump() for m in manuscripts]
    finally:
        await db.close()


@app.get("/api/manuscripts/search", tags=["manuscripts"])
async def api_search_manuscripts(
    q: str,
    limit: int = 50,
    auth: AuthContext = Depends(get_auth_context),
):
    enforce_read_access(auth)
    db = await get_db()
    try:
        manuscripts, errors = await search_manuscripts(db, q, limit=_clamp_limit(limit, 50, 200))
        if errors:
            _fail(errors)
        return [m.model_dump() for m in manuscripts]
    finally:
        await db.close()


@app.get("/api/manuscripts/for-decision", tags=["decisions"])
async def api_manuscripts_for_decision(auth: AuthContext = Depends(get_auth_context)):
    enforce_read_access(auth)
    db = await get_db()
    try:
        return [m.model_dump() for m in await get_manuscripts_for_decision(db)]
    finally:
        await db.close()


@app.get("/api/manuscripts/pending-publication", tags=["publication"])
async def api_pending_publications(auth: AuthContext = Depends(get_auth_context)):
    enforce_read_access(auth)
    db = await get_db()
    try:
        return [m.model_dump() for m in await get_pending_publications(db)]
    finally:
        await db.close()


@app.get("/api/manuscripts/{manuscript_id}", tags=["manuscripts"])
async def api_get_manuscript(
    manuscript_id: str,
    auth: AuthContext = Depends(get_auth_context),
):
    enforce_read_access(auth)
    db = await get_db()
    try:
        manuscript = await get_manuscript(db, manuscript_id)
        if not manuscript:
            raise HTTPException(404, "Manuscript not found")
        return manuscript.model_dump()
    finally:
        await db.close()


@app.get("/api/manuscripts/{manuscript_id}/history", tags=["manuscripts"])
async def api_manuscript_history(
    manuscript_id: str,
    auth: AuthContext = Depends(get_auth_context),
):
    enforce_read_access(auth)
    db = await get_db()
    try:
        return await get_events_for_target(db, manuscript_id)
    finally:
        await db.close()


@app.post("/api/manuscripts/{manuscript_id}/transition", tags=["manuscripts"])
async def api_transition_manuscript(
    manuscript_id: str,
    req: TransitionRequest,
    auth: AuthContext = Depends(require_scopes(SCOPE_EDITORIAL)),
):
    db = await get_db()
    try:
        actor_id = _require_actor(req.actor_id, auth)
        manuscript, errors = await transition_manuscript(db, manuscript_id, req.status, actor_id=actor_id)
        if errors:
            _fail(errors, not_found="manuscript_not_found")
        return manuscript.model_dump()
    finally:
        await db.close()


@app.post("/api/manuscripts/{manuscript_id}/override", tags=["manuscripts"])
async def api_override_status(
    manuscript_id: str,
    req: OverrideRequest,
    auth: AuthContext = Depends(require_scopes(SCOPE_EDITORIAL)),
):
    db = await get_db()
    try:
        actor_id = _require_actor(req.actor_id, auth)
        override = StatusOverride(**req.model_dump(exclude={"actor_id"}))
        manuscript, errors = await override_status(db, manuscript_id, override, actor_id)
        if errors:
            _fail(errors, not_found="manuscript_not_found")
        return manuscript.model_dump()
    finally:
        await db.close()


@app.put("/api/manuscripts/{manuscript_id}/revise", tags=["manuscripts"])
async def api_revise_manuscript(
    manuscript_id: str,
    req: ManuscriptReviseRequest,
    auth: AuthContext = Depends(require_scopes(SCOPE_MANUSCRIPTS)),
):
    db = await get_db()
    try:
        author_id = _require_actor(req.author_id, auth, "author_id")
        revision = ManuscriptRevision(
            manuscript_id=manuscript_id,
            **req.model_dump(exclude={"author_id"}),
        )
        manuscript, errors = await revise_manuscript(db, revision, author_id)
        if errors:
            _fail(errors, not_found="manuscript_not_found")
        return manuscript.model_dump()
    finally:
        await db.close()


@app.post("/api/manuscripts/{manuscript_id}/resubmit", tags=["manuscripts"])
async def api_resubmit_manuscript(
    manuscript_id: str,
    req: ActorRequest,
    auth: AuthContext = Depends(require_scopes(SCOPE_MANUSCRIPTS)),
):
    db = await get_db()
    try:
        actor_id = _require_actor(req.actor_id, auth)
        manuscript, errors = await resubmit_for_review(db, manuscript_id, actor_id)
        if errors:
            _fail(errors, not_found="manuscript_not_found")
        return manuscript.model_dump()
    finally:
        await db.close()


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------

@app.post("/api/manuscripts/{manuscript_id}/reviewers", tags=["reviews"])
async def api_assign_reviewer(
    manuscript_id: str,
    req: AssignReviewerRequest,
    auth: AuthContext = Depends(require_scopes(SCOPE_EDITORIAL)),
):
    db = await get_db()
    try:
        assigned_by = _require_actor(req.assigned_by, auth, "assigned_by")
        assignment = ReviewAssignment(**req.model_dump(exclude={"assigned_by"}))
        review, errors = await assign_reviewer(db, manuscript_id, assignment, assigned_by)
        if errors:
            _fail(errors, not_found="manuscript_not_found")
        return review.model_dump()
    finally:
        await db.close()


@app.get("/api/manuscripts/{manuscript_id}/reviews", tags=["reviews"])
async def api_manuscript_reviews(
    manuscript_id: str,
    review_round: int | None = None,
    auth: AuthContext = Depends(get_auth_context),
):
    """
    Editors see every review in full. A reviewer sees only their own
    reviews. The submitter and co-authors see completed reviews without
    reviewer identity or the confidential comments to the editor.
    """
    _require_identity(auth)
    db = await get_db()
    try:
        reviews = await get_reviews_for_manuscript(db, manuscript_id, review_round=review_round)
        if auth.has_scope(SCOPE_EDITORIAL):
            return [r.model_dump() for r in reviews]

        manuscript = await get_manuscript(db, manuscript_id)
        if not manuscript:
            raise HTTPException(404, "Manuscript not found")
        if _is_manuscript_author(manuscript, auth.actor_id):
            return [b.model_dump() for b in blind_reviews(reviews)]

        own = [r for r in reviews if r.reviewer_id == auth.actor_id]
        if not own:
            _deny_review_access(auth)
        return [r.model_dump() for r in own]
    finally:
        await db.close()


@app.get("/api/reviews/{review_id}", tags=["reviews"])
async def api_get_review(
    review_id: str,
    auth: AuthContext = Depends(get_auth_context),
):
    _require_identity(auth)
    db = await get_db()
    try:
        review = await get_review(db, review_id)
        if not review:
            raise HTTPException(404, "Review not found")
        if auth.has_scope(SCOPE_EDITORIAL) or review.reviewer_id == auth.actor_id:
            return review.model_dump()

        manuscript = await get_manuscript(db, review.manuscript_id)
        if not manuscript or not _is_manuscript_author(manuscript, auth.actor_id):
            _deny_review_access(auth)
        blinded = blind_reviews([review])
        # Authors never learn that an unfinished review exists.
        if not blinded:
            raise HTTPException(404, "Review not found")
        return blinded[0].model_dump()
    finally:
        await db.close()


@app.put("/api/reviews/{review_id}/draft", tags=["reviews"])
async def api_save_review_draft(
    review_id: str,
    req: ReviewDraftRequest,
    auth: AuthContext = Depends(require_scopes(SCOPE_REVIEWS)),
):
    db = await get_db()
    try:
        reviewer_id = _require_actor(req.reviewer_id, auth, "reviewer_id")
        comments = ReviewComments(
            comments_for_author=req.comments_for_author,
            confidential_comments_to_editor=req.confidential_comments_to_editor,
        )
        review, errors = await save_review_draft(db, review_id, reviewer_id, req.scores, comments)
        if errors:
            _fail(errors, not_found="review_not_found")
        return review.model_dump()
    finally:
        await db.close()


@app.post("/api/reviews/{review_id}/submit", tags=["reviews"])
async def api_submit_review(
    review_id: str,
    req: ReviewSubmitRequest,
    auth: AuthContext = Depends(require_scopes(SCOPE_REVIEWS)),
):
    db = await get_db()
    try:
        reviewer_id = _require_actor(req.reviewer_id, auth, "reviewer_id")
        submission = ReviewSubmission(**req.model_dump(exclude={"reviewer_id"}))
        review, errors = await submit_review(db, review_id, reviewer_id, submission)
        if errors:
            _fail(errors, not_found="review_not_found")

        decision = await evaluate_manuscript(db, review.manuscript_id)
        return {
            "review": review.model_dump(),
            "decision": decision.model_dump() if decision else None,
        }
    finally:
        await db.close()


@app.post("/api/reviews/mark-overdue", tags=["reviews"])
async def api_mark_overdue(
    req: ActorRequest,
    auth: AuthContext = Depends(require_scopes(SCOPE_EDITORIAL)),
):
    db = await get_db()
    try:
        actor_id = resolve_actor_id(req.actor_id, auth) or "system"
        return {"marked_overdue": await update_overdue_reviews(db, actor_id=actor_id)}
    finally:
        await db.close()


@app.get("/api/reviewers/{reviewer_id}/pending", tags=["reviews"])
async def api_reviewer_pending(
    reviewer_id: str,
    auth: AuthContext = Depends(get_auth_context),
):
    _require_reviewer_or_editor(auth, reviewer_id)
    db = await get_db()
    try:
        return [r.model_dump() for r in await get_pending_by_reviewer(db, reviewer_id)]
    finally:
        await db.close()


@app.get("/api/reviewers/{reviewer_id}/completed", tags=["reviews"])
async def api_reviewer_completed(
    reviewer_id: str,
    auth: AuthContext = Depends(get_auth_context),
):
    _require_reviewer_or_editor(auth, reviewer_id)
    db = await get_db()
    try:
        return [r.model_dump() for r in await get_completed_by_reviewer(db, reviewer_id)]
    finally:
        await db.close()


@app.get("/api/reviewers/{reviewer_id}/dashboard", tags=["reviews"])
async def api_reviewer_dashboard(
    reviewer_id: str,
    auth: AuthContext = Depends(get_auth_context),
):
    _require_reviewer_or_editor(auth, reviewer_id)
    db = await get_db()
    try:
        return (await get_reviewer_dashboard(db, reviewer_id)).model_dump()
    finally:
        await db.close()


@app.get("/api/assignments/stats", tags=["reviews"])
async def api_assignment_stats(auth: AuthContext = Depends(get_auth_context)):
    enforce_read_access(auth)
    db = await get_db()
    try:
        return (await get_assignment_stats(db)).model_dump()
    finally:
        await db.close()


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------

@app.get("/api/manuscripts/{manuscript_id}/discrepancy", tags=["decisions"])
async def api_discrepancy_report(
    manuscript_id: str,
    auth: AuthContext = Depends(get_auth_context),
):
    enforce_read_access(auth)
    db = await get_db()
    try:
        report = await get_discrepancy_report(db, manuscript_id)
        if report is None:
            raise HTTPException(404, "Manuscript not found")
        return report.model_dump()
    finally:
        await db.close()


@app.post("/api/manuscripts/{manuscript_id}/evaluate", tags=["decisions"])
async def api_evaluate_manuscript(
    manuscript_id: str,
    _: AuthContext = Depends(require_scopes(SCOPE_EDITORIAL)),
):
    db = await get_db()
    try:
        if await get_manuscript(db, manuscript_id) is None:
            raise HTTPException(404, "Manuscript not found")
        decision = await evaluate_manuscript(db, manuscript_id)
        return {"decision": decision.model_dump() if decision else None}
    finally:
        await db.close()


@app.post("/api/manuscripts/{manuscript_id}/decision", tags=["decisions"])
async def api_editorial_decision(
    manuscript_id: str,
    req: EditorialDecisionRequest,
    auth: AuthContext = Depends(require_scopes(SCOPE_EDITORIAL)),
):
    db = await get_db()
    try:
        actor_id = _require_actor(req.actor_id, auth)
        decision = EditorialDecision(**req.model_dump(exclude={"actor_id"}))
        record, errors = await record_editorial_decision(db, manuscript_id, decision, actor_id)
        if errors:
            _fail(errors, not_found="manuscript_not_found")
        return record.model_dump()
    finally:
        await db.close()


@app.get("/api/manuscripts/{manuscript_id}/decisions", tags=["decisions"])
async def api_decision_trace(
    manuscript_id: str,
    auth: AuthContext = Depends(get_auth_context),
):
    enforce_read_access(auth)
    db = await get_db()
    try:
        return [d.model_dump() for d in await get_decision_trace(db, manuscript_id)]
    finally:
        await db.close()


# ---------------------------------------------------------------------------
# Volumes and issues
# ---------------------------------------------------------------------------

@app.post("/api/volumes", tags=["publication"])
async def api_create_volume(
    req: VolumeCreate,
    auth: AuthContext = Depends(require_scopes(SCOPE_PUBLICATION)),
):
    db = await get_db()
    try:
        volume, errors = await create_volume(db, req, resolve_actor_id(None, auth) or "editor")
        if errors:
            _fail(errors)
        return volume.model_dump()
    finally:
        await db.close()


@app.get("/api/volumes", tags=["publication"])
async def api_list_volumes(auth: AuthContext = Depends(get_auth_context)):
    enforce_read_access(auth)
    db = await get_db()
    try:
        return [v.model_dump() for v in await list_volumes(db)]
    finally:
        await db.close()


@app.get("/api/volumes/{volume_id}", tags=["publication"])
async def api_get_volume(volume_id: str, auth: AuthContext = Depends(get_auth_context)):
    enforce_read_access(auth)
    db = await get_db()
    try:
        volume = await get_volume(db, volume_id)
        if not volume:
            raise HTTPException(404, "Volume not found")
        return volume.model_dump()
    finally:
        await db.close()


@app.patch("/api/volumes/{volume_id}", tags=["publication"])
async def api_update_volume(
    volume_id: str,
    req: VolumeUpdate,
    auth: AuthContext = Depends(require_scopes(SCOPE_PUBLICATION)),
):
    db = await get_db()
    try:
        volume, errors = await update_volume(db, volume_id, req, resolve_actor_id(None, auth) or "editor")
        if errors:
            _fail(errors, not_found="volume_not_found")
        return volume.model_dump()
    finally:
        await db.close()


@app.delete("/api/volumes/{volume_id}", tags=["publication"])
async def api_delete_volume(
    volume_id: str,
    auth: AuthContext = Depends(require_scopes(SCOPE_PUBLICATION)),
):
    db = await get_db()
    try:
        _, errors = await delete_volume(db, volume_id, resolve_actor_id(None, auth) or "editor")
        if errors:
            _fail(errors, not_found="volume_not_found")
        return {"deleted": volume_id}
    finally:
        await db.close()


@app.post("/api/issues", tags=["publication"])
async def api_create_issue(
    req: IssueCreate,
    auth: AuthContext = Depends(require_scopes(SCOPE_PUBLICATION)),
):
    db = await get_db()
    try:
        issue, errors = await create_issue(db, req, resolve_actor_id(None, auth) or "editor")
        if errors:
            _fail(errors, not_found="volume_not_found")
        return issue.model_dump()
    finally:
        await db.close()


@app.get("/api/issues", tags=["publication"])
async def api_list_issues(
    volume_id: str | None = None,
    auth: AuthContext = Depends(get_auth_context),
):
    enforce_read_access(auth)
    db = await get_db()
    try:
        return [i.model_dump() for i in await list_issues(db, volume_id=volume_id)]
    finally:
        await db.close()


@app.get("/api/issues/{issue_id}", tags=["publication"])
async def api_get_issue(issue_id: str, auth: AuthContext = Depends(get_auth_context)):
    enforce_read_access(auth)
    db = await get_db()
    try:
        contents = await get_issue_contents(db, issue_id)
        if contents is None:
            if await get_issue(db, issue_id) is None:
                raise HTTPException(404, "Issue not found")
            raise HTTPException(404, "Volume not found")
        return contents.model_dump()
    finally:
        await db.close()


@app.patch("/api/issues/{issue_id}", tags=["publication"])
async def api_update_issue(
    issue_id: str,
    req: IssueUpdate,
    auth: AuthContext = Depends(require_scopes(SCOPE_PUBLICATION)),
):
    db = await get_db()
    try:
        issue, errors = await update_issue(db, issue_id, req, resolve_actor_id(None, auth) or "editor")
        if errors:
            _fail(errors, not_found="issue_not_found")
        return issue.model_dump()
    finally:
        await db.close()


@app.delete("/api/issues/{issue_id}", tags=["publication"])
async def api_delete_issue(
    issue_id: str,
    auth: AuthContext = Depends(require_scopes(SCOPE_PUBLICATION)),
):
    db = await get_db()
    try:
        _, errors = await delete_issue(db, issue_id, resolve_actor_id(None, auth) or "editor")
        if errors:
            _fail(errors, not_found="issue_not_found")
        return {"deleted": issue_id}
    finally:
        await db.close()


@app.post("/api/manuscripts/{manuscript_id}/publish", tags=["publication"])
async def api_publish_article(
    manuscript_id: str,
    req: PublishRequest,
    auth: AuthContext = Depends(require_scopes(SCOPE_PUBLICATION)),
):
    db = await get_db()
    try:
        actor_id = resolve_actor_id(req.actor_id, auth) or "editor"
        request = PublicationRequest(**req.model_dump(exclude={"actor_id"}))
        article, errors = await publish_article(db, manuscript_id, request, actor_id)
        if errors:
            _fail(errors, not_found="manuscript_not_found")
        index_article(article)
        return article.model_dump()
    finally:
        await db.close()


# ---------------------------------------------------------------------------
# Public reading
# ---------------------------------------------------------------------------

@app.get("/api/current-issue", tags=["public"])
async def api_current_issue(auth: AuthContext = Depends(get_auth_context)):
    enforce_read_access(auth)
    db = await get_db()
    try:
        contents = await get_current_issue(db)
        if contents is None:
            raise HTTPException(404, "No current issue")
        return contents.model_dump()
    finally:
        await db.close()


@app.get("/api/archives", tags=["public"])
async def api_archives(auth: AuthContext = Depends(get_auth_context)):
    enforce_read_access(auth)
    db = await get_db()
    try:
        return [a.model_dump() for a in await get_archives(db)]
    finally:
        await db.close()


@app.get("/api/articles", tags=["public"])
async def api_articles(
    volume_id: str | None = None,
    issue_id: str | None = None,
    article_type: ArticleType | None = None,
    page: int = 1,
    limit: int = 10,
    auth: AuthContext = Depends(get_auth_context),
):
    enforce_read_access(auth)
    db = await get_db()
    try:
        result = await get_published_articles(
            db,
            volume_id=volume_id,
            issue_id=issue_id,
            article_type=article_type,
            page=page,
            limit=_clamp_limit(limit, 10, 100),
        )
        return result.model_dump()
    finally:
        await db.close()


@app.get("/api/articles/{article_id}", tags=["public"])
async def api_article(article_id: str, auth: AuthContext = Depends(get_auth_context)):
    enforce_read_access(auth)
    db = await get_db()
    try:
        article = await get_published_article(db, article_id)
        if not article:
            raise HTTPException(404, "Article not found")
        return article.model_dump()
    finally:
        await db.close()


@app.get("/api/articles/{article_id}/related", tags=["public"])
async def api_related_articles(
    article_id: str,
    limit: int = 5,
    auth: AuthContext = Depends(get_auth_context),
):
    enforce_read_access(auth)
    db = await get_db()
    try:
        results = await find_related(db, article_id, limit=_clamp_limit(limit, 5, 20))
        return [r.model_dump() for r in results]
    finally:
        await db.close()


@app.get("/api/search", tags=["public"])
async def api_search(
    q: str,
    article_type: ArticleType | None = None,
    limit: int = 20,
    auth: AuthContext = Depends(get_auth_context),
):
    enforce_read_access(auth)
    if len(q.strip()) < settings.search.min_query_length:
        raise HTTPException(400, {"errors": ["query_too_short"]})
    db = await get_db()
    try:
        results = await search_articles(db, q, article_type=article_type, limit=_clamp_limit(limit, 20, 100))
        return [r.model_dump() for r in results]
    finally:
        await db.close()


# ---------------------------------------------------------------------------
# Email campaigns
# ---------------------------------------------------------------------------

@app.get("/api/campaigns/recipients", tags=["campaigns"])
async def api_campaign_recipients(
    role: UserRole | None = None,
    manuscript_status: ManuscriptStatus | None = None,
    search: str | None = None,
    _: AuthContext = Depends(require_scopes(SCOPE_CAMPAIGNS)),
):
    db = await get_db()
    try:
        recipients = await get_recipients(db, role=role, manuscript_status=manuscript_status, search=search)
        return [r.model_dump() for r in recipients]
    finally:
        await db.close()


@app.post("/api/campaigns", tags=["campaigns"])
async def api_create_campaign(
    req: CampaignRequest,
    auth: AuthContext = Depends(require_scopes(SCOPE_CAMPAIGNS)),
):
    db = await get_db()
    try:
        actor_id = _require_actor(req.actor_id, auth)
        campaign, errors = await create_campaign(db, CampaignCreate(**req.model_dump(exclude={"actor_id"})), actor_id)
        if errors:
            _fail(errors)
        return campaign.model_dump()
    finally:
        await db.close()


@app.get("/api/campaigns", tags=["campaigns"])
async def api_list_campaigns(
    status: CampaignStatus | None = None,
    limit: int = 50,
    _: AuthContext = Depends(require_scopes(SCOPE_CAMPAIGNS)),
):
    db = await get_db()
    try:
        return [c.model_dump() for c in await list_campaigns(db, status=status, limit=_clamp_limit(limit, 50, 200))]
    finally:
        await db.close()


@app.post("/api/campaigns/{campaign_id}/cancel", tags=["campaigns"])
async def api_cancel_campaign(
    campaign_id: str,
    req: ActorRequest,
    auth: AuthContext = Depends(require_scopes(SCOPE_CAMPAIGNS)),
):
    db = await get_db()
    try:
        actor_id = resolve_actor_id(req.actor_id, auth) or "editor"
        campaign, errors = await cancel_campaign(db, campaign_id, actor_id)
        if errors:
            _fail(errors, not_found="campaign_not_found")
        return campaign.model_dump()
    finally:
        await db.close()


# ---------------------------------------------------------------------------
# Stats and ops
# ---------------------------------------------------------------------------

@app.get("/api/stats", tags=["stats"])
async def api_stats(auth: AuthContext = Depends(get_auth_context)):
    enforce_read_access(auth)
    db = await get_db()
    try:
        by_status = await count_manuscripts_by_status(db)

        async def _count(sql: str) -> int:
            async with db.execute(sql) as c:
                return (await c.fetchone())[0]

        stats = JournalStats(
            total_manuscripts=sum(by_status.values()),
            manuscripts_by_status=by_status,
            total_reviews=await _count("SELECT COUNT(*) FROM reviews"),
            total_reviewers=await _count("SELECT COUNT(*) FROM users WHERE role = 'reviewer'"),
            total_published_articles=await _count("SELECT COUNT(*) FROM articles"),
            total_volumes=await _count("SELECT COUNT(*) FROM volumes"),
            total_issues=await _count("SELECT COUNT(*) FROM issues"),
            in_reconciliation=by_status.get(ManuscriptStatus.IN_RECONCILIATION.value, 0),
        )
        return stats.model_dump()
    finally:
        await db.close()


@app.get("/api/audit", tags=["stats"])
async def api_audit_feed(
    action: AuditAction | None = None,
    actor_id: str | None = None,
    target_id: str | None = None,
    limit: int = 50,
    auth: AuthContext = Depends(require_scopes(SCOPE_EDITORIAL)),
):
    """Most recent audit events, newest first."""
    enforce_read_access(auth)
    db = await get_db()
    try:
        return await query_events(
            db,
            target_id=target_id,
            action=action,
            actor_id=actor_id,
            limit=_clamp_limit(limit, default=50),
        )
    finally:
        await db.close()


@app.get("/healthz", tags=["ops"])
async def healthz():
    """Liveness probe."""
    return {"status": "ok"}


@app.get("/readyz", tags=["ops"])
async def readyz():
    """Readiness probe (DB connectivity)."""
    db = await get_db()
    try:
        async with db.execute("SELECT 1") as cursor:
            _ = await cursor.fetchone()
        return {"status": "ready"}
    finally:
        await db.close()
