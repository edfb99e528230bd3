"""Manuscript service — submission screening, CRUD, status transitions, overrides, revisions.

This service owns the manuscript lifecycle from submission until a decision
or publication moves it on.
"""

from __future__ import annotations

import logging
from typing import Any

import aiosqlite

from journaldesk.audit_service import log_event
from journaldesk.config import settings
from journaldesk.database import (
    from_json,
    generate_manuscript_id,
    iso,
    to_json,
    utcnow,
)
from journaldesk.models import (
    AuditAction,
    Manuscript,
    ManuscriptRevision,
    ManuscriptStatus,
    ManuscriptSubmission,
    RevisionEntry,
    StatusOverride,
)
from journaldesk.user_service import user_exists
from journaldesk.workflow import validate_transition

logger = logging.getLogger("journaldesk.manuscripts")

PDF_CONTENT_TYPE = "application/pdf"


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------

def row_to_manuscript(row: aiosqlite.Row | dict[str, Any]) -> Manuscript:
    """Convert a SQLite row to a Manuscript model."""
    d = dict(row)
    d["keywords"] = from_json(d.get("keywords", "[]")) or []
    d["co_authors"] = from_json(d.get("co_authors", "[]")) or []
    d["revision_history"] = from_json(d.get("revision_history", "[]")) or []
    d["review_comments"] = from_json(d.get("review_comments", "{}")) or {}
    return Manuscript(**d)


# ---------------------------------------------------------------------------
# Submission screening
# ---------------------------------------------------------------------------

class ScreeningError:
    """A single validation failure from screening."""

    def __init__(self, rule: str, message: str):
        self.rule = rule
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"rule": self.rule, "message": self.message}

    def __repr__(self) -> str:
        return f"ScreeningError({self.rule!r})"


def screen_submission(submission: ManuscriptSubmission) -> list[ScreeningError]:
    """
    Check a submission against the journal's submission rules.

    Returns a list of errors. Empty list = passed screening.
    """
    errors: list[ScreeningError] = []
    wf = settings.workflow

    title = (submission.title or "").strip()
    if not title:
        errors.append(ScreeningError("title_required", "Title is required"))
    elif len(title) < wf.title_min_length:
        errors.append(ScreeningError(
            "title_too_short",
            f"Title must be at least {wf.title_min_length} characters (got {len(title)})",
        ))
    elif len(title) > wf.title_max_length:
        errors.append(ScreeningError(
            "title_too_long",
            f"Title cannot exceed {wf.title_max_length} characters (got {len(title)})",
        ))

    abstract = (submission.abstract or "").strip()
    if not abstract:
        errors.append(ScreeningError("abstract_required", "Abstract is required"))
    elif len(abstract) < wf.abstract_min_length:
        errors.append(ScreeningError(
            "abstract_too_short",
            f"Abstract must be at least {wf.abstract_min_length} characters (got {len(abstract)})",
        ))
    elif len(abstract) > wf.abstract_max_length:
        errors.append(ScreeningError(
            "abstract_too_long",
            f"Abstract cannot exceed {wf.abstract_max_length} characters (got {len(abstract)})",
        ))

    for keyword in submission.keywords:
        size = len(keyword.strip())
        if size < wf.keyword_min_length or size > wf.keyword_max_length:
            errors.append(ScreeningError(
                "invalid_keyword",
                f"Keyword {keyword!r} must be {wf.keyword_min_length}-{wf.keyword_max_length} characters",
            ))

    if not (submission.pdf_file or "").strip():
        errors.append(ScreeningError("pdf_required", "PDF file is required"))
    if submission.file_type != PDF_CONTENT_TYPE:
        errors.append(ScreeningError("pdf_only", "Only PDF files are allowed"))
    if submission.file_size <= 0:
        errors.append(ScreeningError("file_size_invalid", "File size must be greater than 0"))
    elif submission.file_size > wf.max_pdf_bytes:
        errors.append(ScreeningError(
            "file_too_large",
            f"File size cannot exceed {wf.max_pdf_bytes} bytes (got {submission.file_size})",
        ))

    return errors


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------

async def submit_manuscript(
    db: aiosqlite.Connection,
    submission: ManuscriptSubmission,
    submitter_id: str,
) -> tuple[Manuscript | None, list[ScreeningError]]:
    """
    Submit a new manuscript.

    Nothing is stored when screening fails. On success the manuscript gets
    the next MS-YYYY-NNNNN identifier and starts in ``submitted``.
    """
    if not await user_exists(db, submitter_id):
        return None, [ScreeningError("submitter_not_found", f"Unknown submitter: {submitter_id}")]

    errors = screen_submission(submission)
    if errors:
        logger.info("Submission by %s failed screening: %s", submitter_id, [e.rule for e in errors])
        return None, errors

    manuscript_id = await generate_manuscript_id(db)
    now = utcnow()
    manuscript = Manuscript(
        manuscript_id=manuscript_id,
        title=submission.title.strip(),
        abstract=submission.abstract.strip(),
        keywords=[k.strip() for k in submission.keywords],
        pdf_file=submission.pdf_file,
        original_filename=submission.original_filename,
        file_size=submission.file_size,
        file_type=submission.file_type,
        submitter_id=submitter_id,
        co_authors=submission.co_authors,
        created_at=now,
        updated_at=now,
    )

    await db.execute(
        """
        INSERT INTO manuscripts (
            manuscript_id, title, abstract, keywords, pdf_file, original_filename,
            file_size, file_type, submitter_id, co_authors, status, version,
            revision_history, review_decision, review_comments, reviewed_at,
            decision_record_id, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            manuscript.manuscript_id,
            manuscript.title,
            manuscript.abstract,
            to_json(manuscript.keywords),
            manuscript.pdf_file,
            manuscript.original_filename,
            manuscript.file_size,
            manuscript.file_type,
            manuscript.submitter_id,
            to_json(manuscript.co_authors),
            manuscript.status.value,
            manuscript.version,
            to_json([]),
            None,
            to_json(manuscript.review_comments),
            None,
            None,
            now.isoformat(),
            now.isoformat(),
        ),
    )
    await db.commit()

    await log_event(
        db,
        AuditAction.MANUSCRIPT_SUBMITTED,
        actor_id=submitter_id,
        target_id=manuscript.manuscript_id,
        target_type="manuscript",
        details={"title": manuscript.title},
    )
    logger.info("Manuscript %s submitted by %s", manuscript.manuscript_id, submitter_id)
    return manuscript, []


# ---------------------------------------------------------------------------
# Lookup / Query
# ---------------------------------------------------------------------------

async def get_manuscript(db: aiosqlite.Connection, manuscript_id: str) -> Manuscript | None:
    """Fetch a manuscript by its MS-YYYY-NNNNN identifier."""
    async with db.execute(
        "SELECT * FROM manuscripts WHERE manuscript_id = ?", (manuscript_id,)
    ) as cursor:
        row = await cursor.fetchone()
    if row is None:
        return None
    return row_to_manuscript(row)


async def list_manuscripts(
    db: aiosqlite.Connection,
    status: ManuscriptStatus | None = None,
    submitter_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Manuscript]:
    """List manuscripts, newest activity first."""
    clauses: list[str] = []
    params: list[Any] = []
    if status is not None:
        clauses.append("status = ?")
        params.append(status.value)
    if submitter_id:
        clauses.append("submitter_id = ?")
        params.append(submitter_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    async with db.execute(
        f"SELECT * FROM manuscripts {where} ORDER BY updated_at DESC LIMIT ? OFFSET ?",
        [*params, limit, offset],
    ) as cursor:
        rows = await cursor.fetchall()
    return [row_to_manuscript(row) for row in rows]


async def search_manuscripts(
    db: aiosqlite.Connection,
    query: str,
    limit: int = 50,
) -> tuple[list[Manuscript], list[str]]:
    """Admin search over title, abstract and keywords of every manuscript."""
    query = query.strip()
    if len(query) < settings.search.min_query_length:
        return [], ["query_too_short"]

    pattern = f"%{query}%"
    async with db.execute(
        """
        SELECT * FROM manuscripts
        WHERE title LIKE ? OR abstract LIKE ? OR keywords LIKE ? OR manuscript_id LIKE ?
        ORDER BY updated_at DESC LIMIT ?
        """,
        (pattern, pattern, pattern, pattern, limit),
    ) as cursor:
        rows = await cursor.fetchall()
    return [row_to_manuscript(row) for row in rows], []


async def get_manuscripts_for_decision(
    db: aiosqlite.Connection,
    limit: int = 50,
) -> list[Manuscript]:
    """
    Manuscripts awaiting an editorial decision.

    Under review or in reconciliation, with at least two completed human
    reviews in the current round, or a completed reconciliation review.
    """
    async with db.execute(
        """
        SELECT m.* FROM manuscripts m
        WHERE m.status IN (?, ?)
          AND (
            (SELECT COUNT(*) FROM reviews r
              WHERE r.manuscript_id = m.manuscript_id
                AND r.review_round = m.version
                AND r.review_type = 'human'
                AND r.status = 'completed') >= 2
            OR EXISTS (SELECT 1 FROM reviews r
              WHERE r.manuscript_id = m.manuscript_id
                AND r.review_round = m.version
                AND r.review_type = 'reconciliation'
                AND r.status = 'completed')
          )
        ORDER BY m.updated_at ASC LIMIT ?
        """,
        (ManuscriptStatus.UNDER_REVIEW.value, ManuscriptStatus.IN_RECONCILIATION.value, limit),
    ) as cursor:
        rows = await cursor.fetchall()
    return [row_to_manuscript(row) for row in rows]


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------

async def _write_status(
    db: aiosqlite.Connection,
    manuscript_id: str,
    new_status: ManuscriptStatus,
    extra: dict[str, Any] | None = None,
) -> None:
    """Update a manuscript's status (plus any extra columns) and timestamp."""
    updates: dict[str, Any] = {"status": new_status.value, "updated_at": utcnow().isoformat()}
    updates.update(extra or {})

    set_clause = ", ".join(f"{k} = ?" for k in updates)
    vals = list(updates.values()) + [manuscript_id]
    await db.execute(
        f"UPDATE manuscripts SET {set_clause} WHERE manuscript_id = ?",
        vals,
    )
    await db.commit()


async def transition_manuscript(
    db: aiosqlite.Connection,
    manuscript_id: str,
    new_status: ManuscriptStatus,
    actor_id: str = "system",
    details: dict[str, Any] | None = None,
    extra: dict[str, Any] | None = None,
) -> tuple[Manuscript | None, list[str]]:
    """Move a manuscript along one edge of the workflow, with audit logging."""
    manuscript = await get_manuscript(db, manuscript_id)
    if manuscript is None:
        return None, ["manuscript_not_found"]

    errors = validate_transition(manuscript.status, new_status)
    if errors:
        return None, errors

    await _write_status(db, manuscript_id, new_status, extra)
    await log_event(
        db,
        AuditAction.STATUS_CHANGED,
        actor_id=actor_id,
        target_id=manuscript_id,
        target_type="manuscript",
        details={"from": manuscript.status.value, "to": new_status.value, **(details or {})},
    )
    logger.info("Manuscript %s: %s -> %s", manuscript_id, manuscript.status.value, new_status.value)
    return await get_manuscript(db, manuscript_id), []


async def override_status(
    db: aiosqlite.Connection,
    manuscript_id: str,
    override: StatusOverride,
    actor_id: str,
) -> tuple[Manuscript | None, list[str]]:
    """
    Set any status regardless of the workflow table.

    The reason and the ``silent_update`` flag are kept in the audit log.
    No notifications are sent either way.
    """
    manuscript = await get_manuscript(db, manuscript_id)
    if manuscript is None:
        return None, ["manuscript_not_found"]
    reason = override.reason.strip()
    if not reason:
        return None, ["reason_required"]

    await _write_status(db, manuscript_id, override.status)
    await log_event(
        db,
        AuditAction.STATUS_OVERRIDDEN,
        actor_id=actor_id,
        target_id=manuscript_id,
        target_type="manuscript",
        details={
            "from": manuscript.status.value,
            "to": override.status.value,
            "reason": reason,
            "silent_update": override.silent_update,
        },
    )
    logger.warning(
        "Manuscript %s status overridden by %s: %s -> %s",
        manuscript_id, actor_id, manuscript.status.value, override.status.value,
    )
    return await get_manuscript(db, manuscript_id), []


# ---------------------------------------------------------------------------
# Revisions
# ---------------------------------------------------------------------------

async def revise_manuscript(
    db: aiosqlite.Connection,
    revision: ManuscriptRevision,
    author_id: str,
) -> tuple[Manuscript | None, list[str]]:
    """Submit a revised version in response to a revision decision."""
    manuscript = await get_manuscript(db, revision.manuscript_id)
    if manuscript is None:
        return None, ["manuscript_not_found"]

    # Only the submitting author may revise.
    if author_id != manuscript.submitter_id:
        return None, ["not_manuscript_author"]

    if manuscript.status not in (ManuscriptStatus.MINOR_REVISION, ManuscriptStatus.MAJOR_REVISION):
        return None, [f"manuscript_not_awaiting_revision_{manuscript.status.value}"]

    merged = ManuscriptSubmission(
        title=revision.title if revision.title is not None else manuscript.title,
        abstract=revision.abstract if revision.abstract is not None else manuscript.abstract,
        keywords=revision.keywords if revision.keywords is not None else manuscript.keywords,
        pdf_file=revision.pdf_file if revision.pdf_file is not None else manuscript.pdf_file,
        original_filename=(
            revision.original_filename
            if revision.original_filename is not None
            else manuscript.original_filename
        ),
        file_size=revision.file_size if revision.file_size is not None else manuscript.file_size,
        file_type=manuscript.file_type,
        co_authors=manuscript.co_authors,
    )
    screening = screen_submission(merged)
    if screening:
        return None, [e.rule for e in screening]

    history = list(manuscript.revision_history)
    history.append(RevisionEntry(
        version=manuscript.version,
        change_summary=revision.change_summary,
        previous_pdf_file=manuscript.pdf_file,
    ))
    new_version = manuscript.version + 1

    extra: dict[str, Any] = {
        "title": merged.title.strip(),
        "abstract": merged.abstract.strip(),
        "keywords": to_json([k.strip() for k in merged.keywords]),
        "pdf_file": merged.pdf_file,
        "original_filename": merged.original_filename,
        "file_size": merged.file_size,
        "version": new_version,
        "revision_history": to_json(history),
    }
    updated, errors = await transition_manuscript(
        db,
        manuscript.manuscript_id,
        ManuscriptStatus.REVISED,
        actor_id=author_id,
        details={"version": new_version},
        extra=extra,
    )
    if errors:
        return None, errors

    await log_event(
        db,
        AuditAction.MANUSCRIPT_REVISED,
        actor_id=author_id,
        target_id=manuscript.manuscript_id,
        target_type="manuscript",
        details={"version": new_version, "change_summary": revision.change_summary},
    )
    return updated, []


async def resubmit_for_review(
    db: aiosqlite.Connection,
    manuscript_id: str,
    actor_id: str,
) -> tuple[Manuscript | None, list[str]]:
    """Send a revised manuscript back into review for the next round."""
    return await transition_manuscript(
        db,
        manuscript_id,
        ManuscriptStatus.UNDER_REVIEW,
        actor_id=actor_id,
        details={"resubmitted": True},
        extra={"review_decision": None, "reviewed_at": None},
    )


async def record_review_outcome(
    db: aiosqlite.Connection,
    manuscript_id: str,
    decision: str | None,
    decision_record_id: str,
    comments: dict[str, str] | None = None,
) -> None:
    """Store the review decision fields on a manuscript without touching its status."""
    updates: dict[str, Any] = {
        "review_decision": decision,
        "reviewed_at": iso(utcnow()),
        "decision_record_id": decision_record_id,
        "updated_at": utcnow().isoformat(),
    }
    if comments is not None:
        updates["review_comments"] = to_json(comments)
    set_clause = ", ".join(f"{k} = ?" for k in updates)
    await db.execute(
        f"UPDATE manuscripts SET {set_clause} WHERE manuscript_id = ?",
        [*updates.values(), manuscript_id],
    )
    await db.commit()


# ---------------------------------------------------------------------------
# Stats helpers
# ---------------------------------------------------------------------------

async def count_manuscripts_by_status(db: aiosqlite.Connection) -> dict[str, int]:
    """Count manuscripts grouped by status."""
    async with db.execute(
        "SELECT status, COUNT(*) as cnt FROM manuscripts GROUP BY status"
    ) as cursor:
        rows = await cursor.fetchall()
    return {row[0]: row[1] for row in rows}
