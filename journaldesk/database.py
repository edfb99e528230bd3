"""Storage layer — SQLite for structured data, optional ChromaDB for article search.

Provides:
- async SQLite connection via aiosqlite
- schema creation
- sequential identifiers (MS-YYYY-NNNNN manuscripts, per-year DOI suffixes)
- ChromaDB collection setup
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

import aiosqlite

from journaldesk.config import settings

logger = logging.getLogger("journaldesk.database")

# ---------------------------------------------------------------------------
# Sequential identifiers
# ---------------------------------------------------------------------------

_MANUSCRIPT_ID_PREFIX = "MS"


def _current_year() -> int:
    return datetime.now(timezone.utc).year


async def next_sequence(db: aiosqlite.Connection, name: str, year: int | None = None) -> int:
    """Increment and return the counter for ``name`` in ``year``."""
    year = year if year is not None else _current_year()
    async with db.execute(
        "SELECT seq FROM id_sequence WHERE name = ? AND year = ?", (name, year)
    ) as cursor:
        row = await cursor.fetchone()

    if row is None:
        seq = 1
        await db.execute(
            "INSERT INTO id_sequence (name, year, seq) VALUES (?, ?, ?)", (name, year, seq)
        )
    else:
        seq = row[0] + 1
        await db.execute(
            "UPDATE id_sequence SET seq = ? WHERE name = ? AND year = ?", (seq, name, year)
        )
    await db.commit()
    return seq


async def generate_manuscript_id(db: aiosqlite.Connection) -> str:
    """Generate the next manuscript ID: MS-YYYY-NNNNN."""
    year = _current_year()
    seq = await next_sequence(db, "manuscript", year)
    return f"{_MANUSCRIPT_ID_PREFIX}-{year}-{seq:05d}"


# ---------------------------------------------------------------------------
# SQLite Schema
# ---------------------------------------------------------------------------

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS id_sequence (
    name     TEXT NOT NULL,
    year     INTEGER NOT NULL,
    seq      INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (name, year)
);

CREATE TABLE IF NOT EXISTS users (
    user_id            TEXT PRIMARY KEY,
    name               TEXT NOT NULL,
    email              TEXT NOT NULL UNIQUE,
    role               TEXT NOT NULL DEFAULT 'author',
    affiliation        TEXT NOT NULL DEFAULT '',
    orcid              TEXT NOT NULL DEFAULT '',
    academic_title     TEXT NOT NULL DEFAULT '',
    is_editorial_board INTEGER NOT NULL DEFAULT 0,
    created_at         TEXT NOT NULL,
    updated_at         TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_users_role ON users(role);

CREATE TABLE IF NOT EXISTS reviewer_invitations (
    invitation_id TEXT PRIMARY KEY,
    email         TEXT NOT NULL,
    name          TEXT NOT NULL DEFAULT '',
    affiliation   TEXT NOT NULL DEFAULT '',
    token         TEXT NOT NULL UNIQUE,
    status        TEXT NOT NULL DEFAULT 'pending',
    invited_by    TEXT NOT NULL DEFAULT '',
    expires_at    TEXT NOT NULL,
    created_at    TEXT NOT NULL,
    accepted_at   TEXT
);

CREATE TABLE IF NOT EXISTS manuscripts (
    manuscript_id      TEXT PRIMARY KEY,
    title              TEXT NOT NULL,
    abstract           TEXT NOT NULL DEFAULT '',
    keywords           TEXT NOT NULL DEFAULT '[]',
    pdf_file           TEXT NOT NULL DEFAULT '',
    original_filename  TEXT NOT NULL DEFAULT '',
    file_size          INTEGER NOT NULL DEFAULT 0,
    file_type          TEXT NOT NULL DEFAULT 'application/pdf',
    submitter_id       TEXT NOT NULL,
    co_authors         TEXT NOT NULL DEFAULT '[]',
    status             TEXT NOT NULL DEFAULT 'submitted',
    version            INTEGER NOT NULL DEFAULT 1,
    revision_history   TEXT NOT NULL DEFAULT '[]',
    review_decision    TEXT,
    review_comments    TEXT NOT NULL DEFAULT '{}',
    reviewed_at        TEXT,
    decision_record_id TEXT,
    created_at         TEXT NOT NULL,
    updated_at         TEXT NOT NULL,
    FOREIGN KEY (submitter_id) REFERENCES users(user_id)
);

CREATE INDEX IF NOT EXISTS idx_manuscripts_status ON manuscripts(status);
CREATE INDEX IF NOT EXISTS idx_manuscripts_submitter ON manuscripts(submitter_id, status);

CREATE TABLE IF NOT EXISTS reviews (
    review_id       TEXT PRIMARY KEY,
    manuscript_id   TEXT NOT NULL,
    reviewer_id     TEXT NOT NULL,
    review_type     TEXT NOT NULL DEFAULT 'human',
    review_round    INTEGER NOT NULL DEFAULT 1,
    scores          TEXT NOT NULL DEFAULT '{}',
    total_score     INTEGER NOT NULL DEFAULT 0,
    comments        TEXT NOT NULL DEFAULT '{}',
    review_decision TEXT,
    status          TEXT NOT NULL DEFAULT 'in_progress',
    due_date        TEXT NOT NULL,
    completed_at    TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL,
    FOREIGN KEY (manuscript_id) REFERENCES manuscripts(manuscript_id),
    FOREIGN KEY (reviewer_id) REFERENCES users(user_id)
);

CREATE INDEX IF NOT EXISTS idx_reviews_manuscript ON reviews(manuscript_id);
CREATE INDEX IF NOT EXISTS idx_reviews_reviewer ON reviews(reviewer_id, status);

CREATE TABLE IF NOT EXISTS decision_records (
    decision_id      TEXT PRIMARY KEY,
    manuscript_id    TEXT NOT NULL,
    decision         TEXT NOT NULL,
    decided_by       TEXT NOT NULL DEFAULT '',
    resulting_status TEXT,
    rule_evaluations TEXT NOT NULL DEFAULT '[]',
    review_summary   TEXT NOT NULL DEFAULT '{}',
    explanation      TEXT NOT NULL DEFAULT '',
    decided_at       TEXT NOT NULL,
    FOREIGN KEY (manuscript_id) REFERENCES manuscripts(manuscript_id)
);

CREATE TABLE IF NOT EXISTS volumes (
    volume_id     TEXT PRIMARY KEY,
    volume_number INTEGER NOT NULL UNIQUE,
    year          INTEGER NOT NULL,
    description   TEXT NOT NULL DEFAULT '',
    cover_image   TEXT NOT NULL DEFAULT '',
    publish_date  TEXT NOT NULL,
    created_at    TEXT NOT NULL,
    updated_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS issues (
    issue_id     TEXT PRIMARY KEY,
    volume_id    TEXT NOT NULL,
    issue_number INTEGER NOT NULL,
    publish_date TEXT NOT NULL,
    description  TEXT NOT NULL DEFAULT '',
    is_active    INTEGER NOT NULL DEFAULT 1,
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL,
    UNIQUE (volume_id, issue_number),
    FOREIGN KEY (volume_id) REFERENCES volumes(volume_id)
);

CREATE INDEX IF NOT EXISTS idx_issues_publish ON issues(publish_date);
CREATE INDEX IF NOT EXISTS idx_issues_active ON issues(is_active);

CREATE TABLE IF NOT EXISTS articles (
    article_id    TEXT PRIMARY KEY,
    manuscript_id TEXT NOT NULL UNIQUE,
    title         TEXT NOT NULL,
    abstract      TEXT NOT NULL DEFAULT '',
    keywords      TEXT NOT NULL DEFAULT '[]',
    author_id     TEXT NOT NULL DEFAULT '',
    co_authors    TEXT NOT NULL DEFAULT '[]',
    volume_id     TEXT NOT NULL,
    issue_id      TEXT NOT NULL,
    article_type  TEXT NOT NULL DEFAULT 'research_article',
    page_start    INTEGER,
    page_end      INTEGER,
    doi           TEXT NOT NULL DEFAULT '',
    pdf_file      TEXT NOT NULL DEFAULT '',
    publish_date  TEXT NOT NULL,
    created_at    TEXT NOT NULL,
    FOREIGN KEY (manuscript_id) REFERENCES manuscripts(manuscript_id),
    FOREIGN KEY (volume_id) REFERENCES volumes(volume_id),
    FOREIGN KEY (issue_id) REFERENCES issues(issue_id)
);

CREATE INDEX IF NOT EXISTS idx_articles_issue ON articles(issue_id);
CREATE INDEX IF NOT EXISTS idx_articles_volume ON articles(volume_id);

CREATE TABLE IF NOT EXISTS email_campaigns (
    campaign_id     TEXT PRIMARY KEY,
    subject         TEXT NOT NULL,
    body            TEXT NOT NULL,
    recipient_role  TEXT,
    manuscript_status TEXT,
    recipient_count INTEGER NOT NULL DEFAULT 0,
    recipients      TEXT NOT NULL DEFAULT '[]',
    status          TEXT NOT NULL DEFAULT 'queued',
    created_by      TEXT NOT NULL DEFAULT '',
    created_at      TEXT NOT NULL
);

-- Audit events (append-only)
CREATE TABLE IF NOT EXISTS audit_events (
    event_id    TEXT PRIMARY KEY,
    action      TEXT NOT NULL,
    actor_id    TEXT NOT NULL DEFAULT '',
    target_id   TEXT NOT NULL DEFAULT '',
    target_type TEXT NOT NULL DEFAULT '',
    details     TEXT NOT NULL DEFAULT '{}',
    timestamp   TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_audit_action ON audit_events(action);
CREATE INDEX IF NOT EXISTS idx_audit_actor ON audit_events(actor_id);
CREATE INDEX IF NOT EXISTS idx_audit_target ON audit_events(target_id);
CREATE INDEX IF NOT EXISTS idx_audit_time ON audit_events(timestamp);
"""


async def get_db() -> aiosqlite.Connection:
    """Open the SQLite database and ensure schema exists."""
    settings.ensure_dirs()
    db = await aiosqlite.connect(str(settings.db_path))
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA foreign_keys = ON;")
    await db.execute("PRAGMA journal_mode = WAL;")
    await db.execute("PRAGMA synchronous = NORMAL;")
    await db.execute("PRAGMA busy_timeout = 5000;")
    await db.executescript(SCHEMA_SQL)
    await db.commit()
    return db


# ---------------------------------------------------------------------------
# JSON helpers for SQLite columns that store serialised data
# ---------------------------------------------------------------------------

def _json_default(obj: Any) -> Any:
    """Custom JSON serialiser that handles Pydantic models and other types."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    return str(obj)


def to_json(obj: Any) -> str:
    """Serialise a Python object for storage in a TEXT column."""
    if isinstance(obj, str):
        return obj
    return json.dumps(obj, default=_json_default)


def from_json(text: str | None) -> Any:
    """Deserialise a TEXT column back to a Python object."""
    if text is None:
        return None
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return text


def iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# ChromaDB setup
# ---------------------------------------------------------------------------

_chroma_client = None
_chroma_collection = None

COLLECTION_NAME = "journaldesk_articles"


def get_chroma_client():
    """Lazy-initialise the ChromaDB persistent client."""
    global _chroma_client
    if _chroma_client is None:
        import chromadb

        settings.ensure_dirs()
        logger.info("Opening ChromaDB store at %s", settings.chroma_path)
        _chroma_client = chromadb.PersistentClient(path=str(settings.chroma_path))
    return _chroma_client


def get_chroma_collection():
    """Get (or create) the published-articles vector collection."""
    global _chroma_collection
    if _chroma_collection is None:
        client = get_chroma_client()
        _chroma_collection = client.get_or_create_collection(
            name=COLLECTION_NAME,
            metadata={"hnsw:space": "cosine"},
        )
    return _chroma_collection
