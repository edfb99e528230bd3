"""Who may read which reviews over REST: editors, the assigned reviewer, the authors."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from journaldesk.api import app
from journaldesk.auth import reload_api_key_cache
from journaldesk.config import settings
from journaldesk.database import get_db
from journaldesk.manuscript_service import submit_manuscript
from journaldesk.models import (
    ManuscriptSubmission,
    ReviewAssignment,
    ReviewDecision,
    ReviewScores,
    ReviewSubmission,
    UserCreate,
    UserRole,
)
from journaldesk.review_service import assign_reviewer, submit_review
from journaldesk.user_service import register_user

SCORES = ReviewScores(
    originality=17, methodology=17, clarity=9, relevance=9, literature=8, results=13, contribution=12,
)
CONFIDENTIAL = "Possible overlap with the authors' 2024 paper."


async def _seed() -> dict:
    """Author, co-author, outsider, two reviewers; one review completed, one still pending."""
    db = await get_db()
    try:
        users = {}
        for name, role in [
            ("author", UserRole.AUTHOR),
            ("coauthor", UserRole.AUTHOR),
            ("outsider", UserRole.AUTHOR),
            ("r1", UserRole.REVIEWER),
            ("r2", UserRole.REVIEWER),
        ]:
            user, errors = await register_user(
                db, UserCreate(name=name, email=f"{name}@example.org", role=role)
            )
            assert not errors
            users[name] = user.user_id

        manuscript, errors = await submit_manuscript(
            db,
            ManuscriptSubmission(
                title="Blind Review in Small Journals",
                abstract="A" * 150,
                keywords=["peer review"],
                pdf_file="uploads/blind.pdf",
                file_size=100_000,
                co_authors=[users["coauthor"]],
            ),
            users["author"],
        )
        assert not errors

        reviews = []
        for name in ("r1", "r2"):
            review, errors = await assign_reviewer(
                db, manuscript.manuscript_id, ReviewAssignment(reviewer_id=users[name]), "editor-9"
            )
            assert not errors
            reviews.append(review.review_id)

        _, errors = await submit_review(
            db,
            reviews[0],
            users["r1"],
            ReviewSubmission(
                scores=SCORES,
                review_decision=ReviewDecision.PUBLISHABLE,
                comments_for_author="Clear and well argued.",
                confidential_comments_to_editor=CONFIDENTIAL,
            ),
        )
        assert not errors
        return {
            "users": users,
            "manuscript_id": manuscript.manuscript_id,
            "completed": reviews[0],
            "pending": reviews[1],
        }
    finally:
        await db.close()


@pytest.fixture()
def _review_env(tmp_path: Path):
    original_data_dir = settings.data_dir
    original_require = settings.security.require_api_key
    original_anon = settings.security.allow_anonymous_read
    original_keys = settings.security.api_keys_json

    settings.data_dir = tmp_path
    settings.security.require_api_key = False
    settings.security.allow_anonymous_read = True

    try:
        seeded = asyncio.run(_seed())
        users = seeded["users"]
        keys = {"editor": ("editor-key-12345678", "editor-9", "editor")}
        for name, role in [
            ("author", "author"),
            ("coauthor", "author"),
            ("outsider", "author"),
            ("r1", "reviewer"),
            ("r2", "reviewer"),
        ]:
            keys[name] = (f"{name}-key-12345678", users[name], role)
        settings.security.api_keys_json = json.dumps(
            [{"key": key, "actor_id": actor, "role": role} for key, actor, role in keys.values()]
        )
        reload_api_key_cache()

        seeded["headers"] = {name: {"X-API-Key": key} for name, (key, _, _) in keys.items()}
        yield seeded
    finally:
        settings.data_dir = original_data_dir
        settings.security.require_api_key = original_require
        settings.security.allow_anonymous_read = original_anon
        settings.security.api_keys_json = original_keys
        reload_api_key_cache()


def test_editor_sees_every_review_in_full(_review_env):
    client = TestClient(app)
    ms_id = _review_env["manuscript_id"]

    r = client.get(f"/api/manuscripts/{ms_id}/reviews", headers=_review_env["headers"]["editor"])
    assert r.status_code == 200
    body = r.json()
    assert len(body) == 2
    assert {item["reviewer_id"] for item in body} == {
        _review_env["users"]["r1"],
        _review_env["users"]["r2"],
    }
    completed = next(item for item in body if item["review_id"] == _review_env["completed"])
    assert completed["comments"]["confidential_comments_to_editor"] == CONFIDENTIAL

    r = client.get(f"/api/reviews/{_review_env['pending']}", headers=_review_env["headers"]["editor"])
    assert r.status_code == 200
    assert r.json()["reviewer_id"] == _review_env["users"]["r2"]

    r = client.get(
        f"/api/reviewers/{_review_env['users']['r2']}/pending", headers=_review_env["headers"]["editor"]
    )
    assert r.status_code == 200
    assert [item["review_id"] for item in r.json()] == [_review_env["pending"]]


def test_reviewer_reads_only_their_own_reviews(_review_env):
    client = TestClient(app)
    ms_id = _review_env["manuscript_id"]
    r2 = _review_env["headers"]["r2"]

    r = client.get(f"/api/manuscripts/{ms_id}/reviews", headers=r2)
    assert r.status_code == 200
    body = r.json()
    assert [item["review_id"] for item in body] == [_review_env["pending"]]
    assert body[0]["reviewer_id"] == _review_env["users"]["r2"]

    r = client.get(f"/api/reviews/{_review_env['pending']}", headers=r2)
    assert r.status_code == 200

    r = client.get(f"/api/reviews/{_review_env['completed']}", headers=r2)
    assert r.status_code == 403
    assert r.json()["detail"]["error"] == "review_access_denied"

    r = client.get(f"/api/reviewers/{_review_env['users']['r2']}/dashboard", headers=r2)
    assert r.status_code == 200

    r = client.get(f"/api/reviewers/{_review_env['users']['r1']}/completed", headers=r2)
    assert r.status_code == 403

    r = client.get(f"/api/reviewers/{_review_env['users']['r1']}/completed", headers=_review_env["headers"]["r1"])
    assert r.status_code == 200
    assert [item["review_id"] for item in r.json()] == [_review_env["completed"]]


def test_authors_see_blinded_completed_reviews(_review_env):
    client = TestClient(app)
    ms_id = _review_env["manuscript_id"]

    for who in ("author", "coauthor"):
        headers = _review_env["headers"][who]
        r = client.get(f"/api/manuscripts/{ms_id}/reviews", headers=headers)
        assert r.status_code == 200
        body = r.json()
        assert [item["review_id"] for item in body] == [_review_env["completed"]]
        assert "reviewer_id" not in body[0]
        assert "comments" not in body[0]
        assert body[0]["comments_for_author"] == "Clear and well argued."
        assert body[0]["total_score"] == 85
        assert CONFIDENTIAL not in r.text
        assert _review_env["users"]["r1"] not in r.text

    headers = _review_env["headers"]["author"]
    r = client.get(f"/api/reviews/{_review_env['completed']}", headers=headers)
    assert r.status_code == 200
    assert "reviewer_id" not in r.json()
    assert CONFIDENTIAL not in r.text

    r = client.get(f"/api/reviews/{_review_env['pending']}", headers=headers)
    assert r.status_code == 404

    r = client.get(f"/api/reviewers/{_review_env['users']['r1']}/completed", headers=headers)
    assert r.status_code == 403


def test_strangers_and_anonymous_callers_are_refused(_review_env):
    client = TestClient(app)
    ms_id = _review_env["manuscript_id"]

    # Anonymous reads are allowed elsewhere in this setup, but never for reviews.
    r = client.get(f"/api/manuscripts/{ms_id}", headers={})
    assert r.status_code == 200

    r = client.get(f"/api/manuscripts/{ms_id}/reviews")
    assert r.status_code == 401
    r = client.get(f"/api/reviews/{_review_env['completed']}")
    assert r.status_code == 401
    r = client.get(f"/api/reviewers/{_review_env['users']['r1']}/pending")
    assert r.status_code == 401

    outsider = _review_env["headers"]["outsider"]
    r = client.get(f"/api/manuscripts/{ms_id}/reviews", headers=outsider)
    assert r.status_code == 403
    r = client.get(f"/api/reviews/{_review_env['completed']}", headers=outsider)
    assert r.status_code == 403
