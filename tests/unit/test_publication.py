"""Volumes, issues, article publication, public archives and article search."""

from __future__ import annotations

from datetime import datetime, timezone

import aiosqlite
import pytest

from journaldesk.config import settings
from journaldesk.database import SCHEMA_SQL
from journaldesk.manuscript_service import get_manuscript, override_status, submit_manuscript
from journaldesk.models import (
    ArticleType,
    IssueCreate,
    IssueUpdate,
    ManuscriptStatus,
    ManuscriptSubmission,
    PageRange,
    PublicationRequest,
    StatusOverride,
    UserCreate,
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
    get_pending_publications,
    get_published_articles,
    list_volumes,
    mint_doi,
    publish_article,
    update_issue,
    update_volume,
)
from journaldesk.search_service import find_related, search_articles
from journaldesk.user_service import register_user


async def _memory_db() -> aiosqlite.Connection:
    db = await aiosqlite.connect(":memory:")
    db.row_factory = aiosqlite.Row
    await db.executescript(SCHEMA_SQL)
    await db.execute("PRAGMA foreign_keys = ON;")
    await db.commit()
    return db


async def _approved_manuscript(db, author_id: str, title: str, keywords: list[str]) -> str:
    manuscript, errors = await submit_manuscript(
        db,
        ManuscriptSubmission(
            title=title,
            abstract="B" * 150,
            keywords=keywords,
            pdf_file=f"uploads/{title[:8]}.pdf",
            file_size=50_000,
        ),
        author_id,
    )
    assert not errors
    await override_status(
        db,
        manuscript.manuscript_id,
        StatusOverride(status=ManuscriptStatus.APPROVED, reason="test fixture"),
        "admin-1",
    )
    return manuscript.manuscript_id


async def _volume_and_issue(db, number: int = 1, year: int = 2026):
    volume, errors = await create_volume(db, VolumeCreate(volume_number=number, year=year), "editor-1")
    assert not errors
    issue, errors = await create_issue(
        db,
        IssueCreate(
            volume_id=volume.volume_id,
            issue_number=1,
            publish_date=datetime(year, 3, 1, tzinfo=timezone.utc),
        ),
        "editor-1",
    )
    assert not errors
    return volume, issue


@pytest.mark.asyncio
async def test_volume_and_issue_lifecycle():
    db = await _memory_db()
    try:
        volume, issue = await _volume_and_issue(db)

        _, errors = await create_volume(db, VolumeCreate(volume_number=1, year=2027), "editor-1")
        assert errors == ["volume_number_exists"]

        _, errors = await create_issue(db, IssueCreate(volume_id=volume.volume_id, issue_number=1), "editor-1")
        assert errors == ["issue_number_exists_in_volume"]

        _, errors = await create_issue(db, IssueCreate(volume_id="missing", issue_number=1), "editor-1")
        assert errors == ["volume_not_found"]

        updated, errors = await update_volume(
            db, volume.volume_id, VolumeUpdate(description="Special issue on review"), "editor-1"
        )
        assert errors == []
        assert updated.description == "Special issue on review"

        hidden, errors = await update_issue(db, issue.issue_id, IssueUpdate(is_active=False), "editor-1")
        assert errors == []
        assert hidden.is_active is False
        assert await get_current_issue(db) is None

        _, errors = await delete_volume(db, volume.volume_id, "editor-1")
        assert errors == ["volume_has_issues"]

        deleted, errors = await delete_issue(db, issue.issue_id, "editor-1")
        assert deleted is True and errors == []
        deleted, errors = await delete_volume(db, volume.volume_id, "editor-1")
        assert deleted is True and errors == []
        assert await list_volumes(db) == []
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_description_limit_is_enforced():
    original = settings.publication.description_max_length
    settings.publication.description_max_length = 10
    db = await _memory_db()
    try:
        _, errors = await create_volume(
            db, VolumeCreate(volume_number=3, year=2026, description="far too long a description"), "editor-1"
        )
        assert errors == ["description_exceeds_10_characters"]
    finally:
        settings.publication.description_max_length = original
        await db.close()


@pytest.mark.asyncio
async def test_publish_article_mints_doi_and_fills_archives():
    db = await _memory_db()
    try:
        author, _ = await register_user(db, UserCreate(name="Grace Hopper", email="grace@example.org"))
        ms_id = await _approved_manuscript(
            db, author.user_id, "Compilers for Editorial Workflows", ["compilers", "workflow"]
        )
        volume, issue = await _volume_and_issue(db)
        assert [m.manuscript_id for m in await get_pending_publications(db)] == [ms_id]

        article, errors = await publish_article(
            db,
            ms_id,
            PublicationRequest(
                volume_id=volume.volume_id,
                issue_id=issue.issue_id,
                pages=PageRange(start=1, end=14),
                publish_date=datetime(2026, 3, 1, tzinfo=timezone.utc),
            ),
            "editor-1",
        )
        assert errors == []
        assert article.doi == f"{settings.publication.doi_prefix}/{settings.publication.journal_code}.2026.0001"
        assert article.author_id == author.user_id
        assert article.pages.end == 14
        assert (await get_manuscript(db, ms_id)).status == ManuscriptStatus.PUBLISHED
        assert await get_pending_publications(db) == []

        _, errors = await publish_article(
            db, ms_id, PublicationRequest(volume_id=volume.volume_id, issue_id=issue.issue_id), "editor-1"
        )
        assert errors == ["manuscript_status_is_published_not_approved"]

        current = await get_current_issue(db)
        assert current.issue.issue_id == issue.issue_id
        assert [a.article_id for a in current.articles] == [article.article_id]

        archives = await get_archives(db)
        assert archives[0].volume.volume_id == volume.volume_id
        assert [i.issue_id for i in archives[0].issues] == [issue.issue_id]

        _, errors = await delete_issue(db, issue.issue_id, "editor-1")
        assert errors == ["issue_has_articles"]

        assert await mint_doi(db, 2026) == (
            f"{settings.publication.doi_prefix}/{settings.publication.journal_code}.2026.0002"
        )
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_publish_validation_errors():
    db = await _memory_db()
    try:
        author, _ = await register_user(db, UserCreate(name="Author", email="author@example.org"))
        ms_id = await _approved_manuscript(db, author.user_id, "Validation of Publication Requests", [])
        volume, issue = await _volume_and_issue(db)
        other_volume, other_issue = await _volume_and_issue(db, number=2)

        _, errors = await publish_article(
            db, "MS-1999-00001", PublicationRequest(volume_id=volume.volume_id, issue_id=issue.issue_id), "ed"
        )
        assert errors == ["manuscript_not_found"]

        _, errors = await publish_article(
            db, ms_id, PublicationRequest(volume_id=volume.volume_id, issue_id=other_issue.issue_id), "ed"
        )
        assert errors == ["issue_not_in_volume"]

        _, errors = await publish_article(
            db,
            ms_id,
            PublicationRequest(
                volume_id=volume.volume_id, issue_id=issue.issue_id, pages=PageRange(start=9, end=3)
            ),
            "ed",
        )
        assert errors == ["page_start_after_page_end"]

        first, errors = await publish_article(
            db,
            ms_id,
            PublicationRequest(volume_id=volume.volume_id, issue_id=issue.issue_id, custom_doi="10.1234/custom.1"),
            "ed",
        )
        assert errors == []
        assert first.doi == "10.1234/custom.1"

        second_id = await _approved_manuscript(db, author.user_id, "A Second Approved Manuscript", [])
        _, errors = await publish_article(
            db,
            second_id,
            PublicationRequest(volume_id=other_volume.volume_id, issue_id=other_issue.issue_id,
                               custom_doi="10.1234/custom.1"),
            "ed",
        )
        assert errors == ["doi_already_in_use"]
        assert (await get_manuscript(db, second_id)).status == ManuscriptStatus.APPROVED
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_publish_leaves_no_article_when_the_status_change_fails(monkeypatch):
    async def _refuse(db, manuscript_id, new_status, **kwargs):
        return None, ["invalid_transition_approved_to_published"]

    db = await _memory_db()
    try:
        author, _ = await register_user(db, UserCreate(name="Author", email="author@example.org"))
        ms_id = await _approved_manuscript(db, author.user_id, "Consistent Publication State", [])
        volume, issue = await _volume_and_issue(db)
        request = PublicationRequest(volume_id=volume.volume_id, issue_id=issue.issue_id)

        monkeypatch.setattr("journaldesk.publication_service.transition_manuscript", _refuse)
        article, errors = await publish_article(db, ms_id, request, "ed")
        assert article is None
        assert errors == ["invalid_transition_approved_to_published"]
        assert (await get_manuscript(db, ms_id)).status == ManuscriptStatus.APPROVED
        async with db.execute("SELECT COUNT(*) FROM articles") as cursor:
            assert (await cursor.fetchone())[0] == 0
        assert [m.manuscript_id for m in await get_pending_publications(db)] == [ms_id]

        monkeypatch.undo()
        article, errors = await publish_article(db, ms_id, request, "ed")
        assert errors == []
        assert (await get_manuscript(db, ms_id)).status == ManuscriptStatus.PUBLISHED
        assert [a.article_id for a in (await get_published_articles(db)).articles] == [article.article_id]
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_rejected_publish_does_not_consume_a_doi():
    db = await _memory_db()
    try:
        author, _ = await register_user(db, UserCreate(name="Author", email="author@example.org"))
        ms_id = await _approved_manuscript(db, author.user_id, "Sequence Numbers Without Gaps", [])
        volume, issue = await _volume_and_issue(db)
        _, other_issue = await _volume_and_issue(db, number=2)

        _, errors = await publish_article(
            db, ms_id, PublicationRequest(volume_id=volume.volume_id, issue_id=other_issue.issue_id), "ed"
        )
        assert errors == ["issue_not_in_volume"]

        article, errors = await publish_article(
            db,
            ms_id,
            PublicationRequest(
                volume_id=volume.volume_id,
                issue_id=issue.issue_id,
                publish_date=datetime(2026, 5, 1, tzinfo=timezone.utc),
            ),
            "ed",
        )
        assert errors == []
        assert article.doi.endswith(".2026.0001")
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_paging_search_and_related_articles():
    db = await _memory_db()
    try:
        author, _ = await register_user(db, UserCreate(name="Barbara Liskov", email="liskov@example.org"))
        volume, issue = await _volume_and_issue(db)
        titles = [
            ("Data Abstraction in Review Systems", ["abstraction", "types"], ArticleType.RESEARCH_ARTICLE),
            ("Types of Reviewer Bias", ["types", "bias"], ArticleType.REVIEW_ARTICLE),
            ("Distributed Editorial Offices", ["distributed"], ArticleType.CASE_STUDY),
        ]
        articles = []
        for title, keywords, article_type in titles:
            ms_id = await _approved_manuscript(db, author.user_id, title, keywords)
            article, errors = await publish_article(
                db,
                ms_id,
                PublicationRequest(volume_id=volume.volume_id, issue_id=issue.issue_id, article_type=article_type),
                "editor-1",
            )
            assert not errors
            articles.append(article)

        page = await get_published_articles(db, limit=2)
        assert page.total == 3
        assert page.pages == 2
        assert len(page.articles) == 2
        second = await get_published_articles(db, page=2, limit=2)
        assert len(second.articles) == 1

        reviews_only = await get_published_articles(db, article_type=ArticleType.REVIEW_ARTICLE)
        assert [a.title for a in reviews_only.articles] == ["Types of Reviewer Bias"]

        results = await search_articles(db, "Types")
        assert results[0].article.title == "Types of Reviewer Bias"
        assert results[0].relevance_score == 1.0
        assert {r.article.title for r in results} == {
            "Types of Reviewer Bias", "Data Abstraction in Review Systems",
        }

        by_author = await search_articles(db, "Liskov")
        assert len(by_author) == 3

        assert await search_articles(db, "x") == []

        related = await find_related(db, articles[0].article_id)
        assert [r.article.title for r in related] == ["Types of Reviewer Bias"]
        assert related[0].relevance_score == 0.5
    finally:
        await db.close()
