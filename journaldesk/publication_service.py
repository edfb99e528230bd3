"""Publication service — volumes, issues, article publication and public archives."""

from __future__ import annotations

import logging
import math
from typing import Any

import aiosqlite

from journaldesk.audit_service import log_event
from journaldesk.config import settings
from journaldesk.database import from_json, next_sequence, to_json, utcnow
from journaldesk.manuscript_service import (
    get_manuscript,
    row_to_manuscript,
    transition_manuscript,
)
from journaldesk.models import (
    Article,
    ArticlePage,
    ArticleType,
    AuditAction,
    Issue,
    IssueContents,
    IssueCreate,
    IssueUpdate,
    Manuscript,
    ManuscriptStatus,
    PageRange,
    PublicationRequest,
    Volume,
    VolumeArchive,
    VolumeCreate,
    VolumeUpdate,
)
from journaldesk.workflow import validate_transition

logger = logging.getLogger("journaldesk.publication")


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------

def _row_to_volume(row: aiosqlite.Row | dict[str, Any]) -> Volume:
    return Volume(**dict(row))


def _row_to_issue(row: aiosqlite.Row | dict[str, Any]) -> Issue:
    d = dict(row)
    d["is_active"] = bool(d.get("is_active", 1))
    return Issue(**d)


def row_to_article(row: aiosqlite.Row | dict[str, Any]) -> Article:
    """Convert a SQLite row to an Article model."""
    d = dict(row)
    d["keywords"] = from_json(d.get("keywords", "[]")) or []
    d["co_authors"] = from_json(d.get("co_authors", "[]")) or []
    start = d.pop("page_start", None)
    end = d.pop("page_end", None)
    d["pages"] = PageRange(start=start, end=end) if start is not None and end is not None else None
    return Article(**d)


def _check_description(description: str | None) -> list[str]:
    limit = settings.publication.description_max_length
    if description is not None and len(description) > limit:
        return [f"description_exceeds_{limit}_characters"]
    return []


# ---------------------------------------------------------------------------
# Volumes
# ---------------------------------------------------------------------------

async def _volume_number_taken(
    db: aiosqlite.Connection, volume_number: int, exclude_id: str | None = None
) -> bool:
    async with db.execute(
        "SELECT volume_id FROM volumes WHERE volume_number = ?", (volume_number,)
    ) as cursor:
        row = await cursor.fetchone()
    return row is not None and row[0] != exclude_id


async def create_volume(
    db: aiosqlite.Connection,
    payload: VolumeCreate,
    actor_id: str,
) -> tuple[Volume | None, list[str]]:
    errors = _check_description(payload.description)
    if await _volume_number_taken(db, payload.volume_number):
        errors.append("volume_number_exists")
    if errors:
        return None, errors

    now = utcnow()
    volume = Volume(
        volume_number=payload.volume_number,
        year=payload.year,
        description=payload.description.strip(),
        cover_image=payload.cover_image,
        publish_date=payload.publish_date or now,
        created_at=now,
        updated_at=now,
    )
    await db.execute(
        """
        INSERT INTO volumes (
            volume_id, volume_number, year, description, cover_image,
            publish_date, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            volume.volume_id,
            volume.volume_number,
            volume.year,
            volume.description,
            volume.cover_image,
            volume.publish_date.isoformat(),
            volume.created_at.isoformat(),
            volume.updated_at.isoformat(),
        ),
    )
    await db.commit()

    await log_event(
        db,
        AuditAction.VOLUME_CREATED,
        actor_id=actor_id,
        target_id=volume.volume_id,
        target_type="volume",
        details={"volume_number": volume.volume_number, "year": volume.year},
    )
    return volume, []


async def get_volume(db: aiosqlite.Connection, volume_id: str) -> Volume | None:
    async with db.execute(
        "SELECT * FROM volumes WHERE volume_id = ?", (volume_id,)
    ) as cursor:
        row = await cursor.fetchone()
    if row is None:
        return None
    return _row_to_volume(row)


async def list_volumes(db: aiosqlite.Connection) -> list[Volume]:
    """All volumes, newest first."""
    async with db.execute(
        "SELECT * FROM volumes ORDER BY year DESC, volume_number DESC"
    ) as cursor:
        rows = await cursor.fetchall()
    return [_row_to_volume(row) for row in rows]


async def update_volume(
    db: aiosqlite.Connection,
    volume_id: str,
    payload: VolumeUpdate,
    actor_id: str,
) -> tuple[Volume | None, list[str]]:
    volume = await get_volume(db, volume_id)
    if volume is None:
        return None, ["volume_not_found"]

    errors = _check_description(payload.description)
    if payload.volume_number is not None and await _volume_number_taken(
        db, payload.volume_number, exclude_id=volume_id
    ):
        errors.append("volume_number_exists")
    if errors:
        return None, errors

    changes = payload.model_dump(exclude_none=True)
    if not changes:
        return volume, []
    if "publish_date" in changes:
        changes["publish_date"] = payload.publish_date.isoformat()
    changes["updated_at"] = utcnow().isoformat()

    set_clause = ", ".join(f"{k} = ?" for k in changes)
    await db.execute(
        f"UPDATE volumes SET {set_clause} WHERE volume_id = ?",
        [*changes.values(), volume_id],
    )
    await db.commit()

    await log_event(
        db,
        AuditAction.VOLUME_UPDATED,
        actor_id=actor_id,
        target_id=volume_id,
        target_type="volume",
        details={"fields": sorted(k for k in changes if k != "updated_at")},
    )
    return await get_volume(db, volume_id), []


async def delete_volume(
    db: aiosqlite.Connection,
    volume_id: str,
    actor_id: str,
) -> tuple[bool, list[str]]:
    """Delete an empty volume. Volumes that still hold issues are kept."""
    volume = await get_volume(db, volume_id)
    if volume is None:
        return False, ["volume_not_found"]

    async with db.execute(
        "SELECT COUNT(*) FROM issues WHERE volume_id = ?", (volume_id,)
    ) as cursor:
        issue_count = (await cursor.fetchone())[0]
    if issue_count:
        return False, ["volume_has_issues"]

    await db.execute("DELETE FROM volumes WHERE volume_id = ?", (volume_id,))
    await db.commit()
    await log_event(
        db,
        AuditAction.VOLUME_DELETED,
        actor_id=actor_id,
        target_id=volume_id,
        target_type="volume",
        details={"volume_number": volume.volume_number},
    )
    return True, []


# ---------------------------------------------------------------------------
# Issues
# ---------------------------------------------------------------------------

async def _issue_number_taken(
    db: aiosqlite.Connection,
    volume_id: str,
    issue_number: int,
    exclude_id: str | None = None,
) -> bool:
    async with db.execute(
        "SELECT issue_id FROM issues WHERE volume_id = ? AND issue_number = ?",
        (volume_id, issue_number),
    ) as cursor:
        row = await cursor.fetchone()
    return row is not None and row[0] != exclude_id


async def create_issue(
    db: aiosqlite.Connection,
    payload: IssueCreate,
    actor_id: str,
) -> tuple[Issue | None, list[str]]:
    if await get_volume(db, payload.volume_id) is None:
        return None, ["volume_not_found"]

    errors = _check_description(payload.description)
    if await _issue_number_taken(db, payload.volume_id, payload.issue_number):
        errors.append("issue_number_exists_in_volume")
    if errors:
        return None, errors

    now = utcnow()
    issue = Issue(
        volume_id=payload.volume_id,
        issue_number=payload.issue_number,
        publish_date=payload.publish_date or now,
        description=payload.description.strip(),
        is_active=payload.is_active,
        created_at=now,
        updated_at=now,
    )
    await db.execute(
        """
        INSERT INTO issues (
            issue_id, volume_id, issue_number, publish_date, description,
            is_active, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            issue.issue_id,
            issue.volume_id,
            issue.issue_number,
            issue.publish_date.isoformat(),
            issue.description,
            int(issue.is_active),
            issue.created_at.isoformat(),
            issue.updated_at.isoformat(),
        ),
    )
    await db.commit()

    await log_event(
        db,
        AuditAction.ISSUE_CREATED,
        actor_id=actor_id,
        target_id=issue.issue_id,
        target_type="issue",
        details={"volume_id": issue.volume_id, "issue_number": issue.issue_number},
    )
    return issue, []


async def get_issue(db: aiosqlite.Connection, issue_id: str) -> Issue | None:
    async with db.execute(
        "SELECT * FROM issues WHERE issue_id = ?", (issue_id,)
    ) as cursor:
        row = await cursor.fetchone()
    if row is None:
        return None
    return _row_to_issue(row)


async def list_issues(
    db: aiosqlite.Connection,
    volume_id: str | None = None,
) -> list[Issue]:
    """Issues newest first, optionally within one volume."""
    if volume_id:
        query = "SELECT * FROM issues WHERE volume_id = ? ORDER BY issue_number DESC"
        params: tuple[Any, ...] = (volume_id,)
    else:
        query = "SELECT * FROM issues ORDER BY publish_date DESC"
        params = ()
    async with db.execute(query, params) as cursor:
        rows = await cursor.fetchall()
    return [_row_to_issue(row) for row in rows]


async def update_issue(
    db: aiosqlite.Connection,
    issue_id: str,
    payload: IssueUpdate,
    actor_id: str,
) -> tuple[Issue | None, list[str]]:
    issue = await get_issue(db, issue_id)
    if issue is None:
        return None, ["issue_not_found"]

    errors = _check_description(payload.description)
    if payload.issue_number is not None and await _issue_number_taken(
        db, issue.volume_id, payload.issue_number, exclude_id=issue_id
    ):
        errors.append("issue_number_exists_in_volume")
    if errors:
        return None, errors

    changes = payload.model_dump(exclude_none=True)
    if not changes:
        return issue, []
    if "publish_date" in changes:
        changes["publish_date"] = payload.publish_date.isoformat()
    if "is_active" in changes:
        changes["is_active"] = int(changes["is_active"])
    changes["updated_at"] = utcnow().isoformat()

    set_clause = ", ".join(f"{k} = ?" for k in changes)
    await db.execute(
        f"UPDATE issues SET {set_clause} WHERE issue_id = ?",
        [*changes.values(), issue_id],
    )
    await db.commit()

    await log_event(
        db,
        AuditAction.ISSUE_UPDATED,
        actor_id=actor_id,
        target_id=issue_id,
        target_type="issue",
        details={"fields": sorted(k for k in changes if k != "updated_at")},
    )
    return await get_issue(db, issue_id), []


async def delete_issue(
    db: aiosqlite.Connection,
    issue_id: str,
    actor_id: str,
) -> tuple[bool, list[str]]:
    """Delete an issue that has no published articles."""
    issue = await get_issue(db, issue_id)
    if issue is None:
        return False, ["issue_not_found"]

    async with db.execute(
        "SELECT COUNT(*) FROM articles WHERE issue_id = ?", (issue_id,)
    ) as cursor:
        article_count = (await cursor.fetchone())[0]
    if article_count:
        return False, ["issue_has_articles"]

    await db.execute("DELETE FROM issues WHERE issue_id = ?", (issue_id,))
    await db.commit()
    await log_event(
        db,
        AuditAction.ISSUE_DELETED,
        actor_id=actor_id,
        target_id=issue_id,
        target_type="issue",
        details={"volume_id": issue.volume_id, "issue_number": issue.issue_number},
    )
    return True, []


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------

async def get_pending_publications(db: aiosqlite.Connection) -> list[Manuscript]:
    """Approved manuscripts that have not been placed in an issue yet."""
    async with db.execute(
        """
        SELECT m.* FROM manuscripts m
        LEFT JOIN articles a ON a.manuscript_id = m.manuscript_id
        WHERE m.status = ? AND a.article_id IS NULL
        ORDER BY m.reviewed_at ASC, m.updated_at ASC
        """,
        (ManuscriptStatus.APPROVED.value,),
    ) as cursor:
        rows = await cursor.fetchall()
    return [row_to_manuscript(row) for row in rows]


async def mint_doi(db: aiosqlite.Connection, year: int) -> str:
    """Next DOI of the form {prefix}/{journal_code}.{year}.{seq}."""
    seq = await next_sequence(db, "doi", year)
    pub = settings.publication
    return f"{pub.doi_prefix}/{pub.journal_code}.{year}.{seq:04d}"


async def _insert_article(db: aiosqlite.Connection, article: Article) -> None:
    await db.execute(
        """
        INSERT INTO articles (
            article_id, manuscript_id, title, abstract, keywords, author_id,
            co_authors, volume_id, issue_id, article_type, page_start, page_end,
            doi, pdf_file, publish_date, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            article.article_id,
            article.manuscript_id,
            article.title,
            article.abstract,
            to_json(article.keywords),
            article.author_id,
            to_json(article.co_authors),
            article.volume_id,
            article.issue_id,
            article.article_type.value,
            article.pages.start if article.pages else None,
            article.pages.end if article.pages else None,
            article.doi,
            article.pdf_file,
            article.publish_date.isoformat(),
            article.created_at.isoformat(),
        ),
    )
    await db.commit()


async def publish_article(
    db: aiosqlite.Connection,
    manuscript_id: str,
    request: PublicationRequest,
    actor_id: str,
) -> tuple[Article | None, list[str]]:
    """
    Publish an approved manuscript in an issue.

    Creates the Article and moves the manuscript to ``published``. Every
    check runs before a DOI is minted; the article row is written before the
    status so a published manuscript always has its article.
    """
    manuscript = await get_manuscript(db, manuscript_id)
    if manuscript is None:
        return None, ["manuscript_not_found"]
    if manuscript.status != ManuscriptStatus.APPROVED:
        return None, [f"manuscript_status_is_{manuscript.status.value}_not_approved"]
    errors = validate_transition(manuscript.status, ManuscriptStatus.PUBLISHED)
    if errors:
        return None, errors

    volume = await get_volume(db, request.volume_id)
    if volume is None:
        return None, ["volume_not_found"]
    issue = await get_issue(db, request.issue_id)
    if issue is None:
        return None, ["issue_not_found"]
    if issue.volume_id != volume.volume_id:
        return None, ["issue_not_in_volume"]

    if request.pages is not None and request.pages.start > request.pages.end:
        return None, ["page_start_after_page_end"]

    async with db.execute(
        "SELECT 1 FROM articles WHERE manuscript_id = ?", (manuscript_id,)
    ) as cursor:
        if await cursor.fetchone() is not None:
            return None, ["manuscript_already_published"]

    publish_date = request.publish_date or utcnow()
    doi = request.custom_doi.strip() or await mint_doi(db, publish_date.year)
    async with db.execute("SELECT 1 FROM articles WHERE doi = ?", (doi,)) as cursor:
        if await cursor.fetchone() is not None:
            return None, ["doi_already_in_use"]

    article = Article(
        manuscript_id=manuscript_id,
        title=manuscript.title,
        abstract=manuscript.abstract,
        keywords=manuscript.keywords,
        author_id=manuscript.submitter_id,
        co_authors=manuscript.co_authors,
        volume_id=volume.volume_id,
        issue_id=issue.issue_id,
        article_type=request.article_type,
        pages=request.pages,
        doi=doi,
        pdf_file=manuscript.pdf_file,
        publish_date=publish_date,
    )
    await _insert_article(db, article)

    _, errors = await transition_manuscript(
        db,
        manuscript_id,
        ManuscriptStatus.PUBLISHED,
        actor_id=actor_id,
        details={"article_id": article.article_id, "doi": doi},
    )
    if errors:
        # The status moved underneath us; take the article back out.
        await db.execute("DELETE FROM articles WHERE article_id = ?", (article.article_id,))
        await db.commit()
        logger.warning("Publishing %s rolled back: %s", manuscript_id, errors)
        return None, errors

    await log_event(
        db,
        AuditAction.ARTICLE_PUBLISHED,
        actor_id=actor_id,
        target_id=article.article_id,
        target_type="article",
        details={
            "manuscript_id": manuscript_id,
            "volume_number": volume.volume_number,
            "issue_number": issue.issue_number,
            "doi": doi,
        },
    )
    logger.info("Published %s as %s (%s)", manuscript_id, article.article_id, doi)
    return article, []


# ---------------------------------------------------------------------------
# Public reads
# ---------------------------------------------------------------------------

async def _articles_in_issue(db: aiosqlite.Connection, issue_id: str) -> list[Article]:
    async with db.execute(
        "SELECT * FROM articles WHERE issue_id = ? ORDER BY page_start IS NULL, page_start, publish_date",
        (issue_id,),
    ) as cursor:
        rows = await cursor.fetchall()
    return [row_to_article(row) for row in rows]


async def get_issue_contents(db: aiosqlite.Connection, issue_id: str) -> IssueContents | None:
    issue = await get_issue(db, issue_id)
    if issue is None:
        return None
    volume = await get_volume(db, issue.volume_id)
    if volume is None:
        return None
    return IssueContents(
        volume=volume,
        issue=issue,
        articles=await _articles_in_issue(db, issue_id),
    )


async def get_current_issue(db: aiosqlite.Connection) -> IssueContents | None:
    """The latest active issue by publish date, with its articles."""
    async with db.execute(
        "SELECT issue_id FROM issues WHERE is_active = 1 ORDER BY publish_date DESC, created_at DESC LIMIT 1"
    ) as cursor:
        row = await cursor.fetchone()
    if row is None:
        return None
    return await get_issue_contents(db, row[0])


async def get_archives(db: aiosqlite.Connection) -> list[VolumeArchive]:
    """Volumes newest first, each with its issues."""
    volumes = await list_volumes(db)
    issues = await list_issues(db)
    by_volume: dict[str, list[Issue]] = {}
    for issue in issues:
        by_volume.setdefault(issue.volume_id, []).append(issue)
    return [
        VolumeArchive(
            volume=v,
            issues=sorted(by_volume.get(v.volume_id, []), key=lambda i: i.issue_number, reverse=True),
        )
        for v in volumes
    ]


async def get_published_articles(
    db: aiosqlite.Connection,
    volume_id: str | None = None,
    issue_id: str | None = None,
    article_type: ArticleType | None = None,
    page: int = 1,
    limit: int = 10,
) -> ArticlePage:
    """Paginated published articles, newest first."""
    page = max(page, 1)
    limit = max(limit, 1)
    clauses: list[str] = []
    params: list[Any] = []
    if volume_id:
        clauses.append("volume_id = ?")
        params.append(volume_id)
    if issue_id:
        clauses.append("issue_id = ?")
        params.append(issue_id)
    if article_type is not None:
        clauses.append("article_type = ?")
        params.append(article_type.value)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    async with db.execute(f"SELECT COUNT(*) FROM articles {where}", params) as cursor:
        total = (await cursor.fetchone())[0]
    async with db.execute(
        f"SELECT * FROM articles {where} ORDER BY publish_date DESC LIMIT ? OFFSET ?",
        [*params, limit, (page - 1) * limit],
    ) as cursor:
        rows = await cursor.fetchall()

    return ArticlePage(
        articles=[row_to_article(row) for row in rows],
        total=total,
        page=page,
        limit=limit,
        pages=math.ceil(total / limit) if total else 0,
    )


async def get_published_article(db: aiosqlite.Connection, article_id: str) -> Article | None:
    async with db.execute(
        "SELECT * FROM articles WHERE article_id = ?", (article_id,)
    ) as cursor:
        row = await cursor.fetchone()
    if row is None:
        return None
    return row_to_article(row)
