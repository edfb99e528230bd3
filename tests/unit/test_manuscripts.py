"""Admin manuscript search and per-status counts."""

from __future__ import annotations

import aiosqlite
import pytest

from journaldesk.database import SCHEMA_SQL
from journaldesk.manuscript_service import (
    count_manuscripts_by_status,
    override_status,
    search_manuscripts,
    submit_manuscript,
)
from journaldesk.models import (
    ManuscriptStatus,
    ManuscriptSubmission,
    StatusOverride,
    UserCreate,
)
from journaldesk.user_service import register_user


async def _memory_db() -> aiosqlite.Connection:
    db = await aiosqlite.connect(":memory:")
    db.row_factory = aiosqlite.Row
    await db.executescript(SCHEMA_SQL)
    await db.execute("PRAGMA foreign_keys = ON;")
    await db.commit()
    return db


async def _submit(db, author_id: str, title: str, abstract: str, keywords: list[str]) -> str:
    manuscript, errors = await submit_manuscript(
        db,
        ManuscriptSubmission(
            title=title,
            abstract=(abstract + " ") * 4,
            keywords=keywords,
            pdf_file="uploads/ms.pdf",
            file_size=10_000,
        ),
        author_id,
    )
    assert not errors
    return manuscript.manuscript_id


async def _corpus(db) -> dict[str, str]:
    author, errors = await register_user(db, UserCreate(name="Rosalind", email="rosalind@example.org"))
    assert not errors
    return {
        "ribosome": await _submit(
            db, author.user_id,
            "Ribosome Assembly Under Stress",
            "We measure assembly kinetics of bacterial translation machinery.",
            ["structural biology"],
        ),
        "crystal": await _submit(
            db, author.user_id,
            "Diffraction Patterns of Helical Fibres",
            "A crystallography study of fibre samples prepared with a new hydration method.",
            ["x-ray"],
        ),
        "tobacco": await _submit(
            db, author.user_id,
            "Plant Virus Particle Geometry",
            "Electron micrographs reveal the packing of coat proteins around viral RNA.",
            ["mosaic virus", "virology"],
        ),
    }


@pytest.mark.asyncio
async def test_search_matches_title_abstract_keywords_and_id():
    db = await _memory_db()
    try:
        ids = await _corpus(db)

        found, errors = await search_manuscripts(db, "ribosome")
        assert errors == []
        assert [m.manuscript_id for m in found] == [ids["ribosome"]]

        found, _ = await search_manuscripts(db, "crystallography")
        assert [m.manuscript_id for m in found] == [ids["crystal"]]

        found, _ = await search_manuscripts(db, "mosaic")
        assert [m.manuscript_id for m in found] == [ids["tobacco"]]

        found, _ = await search_manuscripts(db, ids["crystal"])
        assert [m.manuscript_id for m in found] == [ids["crystal"]]

        # LIKE is case-insensitive for ASCII text
        found, _ = await search_manuscripts(db, "HELICAL")
        assert [m.manuscript_id for m in found] == [ids["crystal"]]

        found, _ = await search_manuscripts(db, "MS-")
        assert {m.manuscript_id for m in found} == set(ids.values())

        found, _ = await search_manuscripts(db, "MS-", limit=2)
        assert len(found) == 2

        found, errors = await search_manuscripts(db, "  quasar  ")
        assert found == [] and errors == []
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_search_rejects_short_queries():
    db = await _memory_db()
    try:
        await _corpus(db)
        for query in ("", " ", "r", "  x  "):
            found, errors = await search_manuscripts(db, query)
            assert found == []
            assert errors == ["query_too_short"]
    finally:
        await db.close()


@pytest.mark.asyncio
async def test_count_manuscripts_by_status():
    db = await _memory_db()
    try:
        assert await count_manuscripts_by_status(db) == {}

        ids = await _corpus(db)
        assert await count_manuscripts_by_status(db) == {ManuscriptStatus.SUBMITTED.value: 3}

        for key, status in [("crystal", ManuscriptStatus.APPROVED), ("tobacco", ManuscriptStatus.REJECTED)]:
            _, errors = await override_status(
                db, ids[key], StatusOverride(status=status, reason="editorial cleanup"), "admin-1"
            )
            assert errors == []

        assert await count_manuscripts_by_status(db) == {
            ManuscriptStatus.SUBMITTED.value: 1,
            ManuscriptStatus.APPROVED.value: 1,
            ManuscriptStatus.REJECTED.value: 1,
        }
    finally:
        await db.close()
