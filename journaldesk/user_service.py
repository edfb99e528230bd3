"""User service — accounts, reviewer pool, editorial board, reviewer invitations."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Any

import aiosqlite

from journaldesk.audit_service import log_event
from journaldesk.config import settings
from journaldesk.database import iso, utcnow
from journaldesk.models import (
    AuditAction,
    InvitationStatus,
    ReviewerInvitation,
    User,
    UserCreate,
    UserRole,
)

logger = logging.getLogger("journaldesk.users")


def _row_to_user(row: dict[str, Any] | aiosqlite.Row) -> User:
    """Convert a SQLite row to a User model."""
    d = dict(row)
    d["is_editorial_board"] = bool(d.get("is_editorial_board", 0))
    return User(**d)


def _row_to_invitation(row: dict[str, Any] | aiosqlite.Row) -> ReviewerInvitation:
    return ReviewerInvitation(**dict(row))


async def register_user(
    db: aiosqlite.Connection,
    payload: UserCreate,
) -> tuple[User | None, list[str]]:
    """Register a new user. Emails are unique (case-insensitive)."""
    email = payload.email.strip().lower()
    if await get_user_by_email(db, email) is not None:
        return None, ["email_already_registered"]

    user = User(
        name=payload.name.strip(),
        email=email,
        role=payload.role,
        affiliation=payload.affiliation,
        orcid=payload.orcid,
        academic_title=payload.academic_title,
        is_editorial_board=payload.is_editorial_board,
    )
    await db.execute(
        """
        INSERT INTO users (
            user_id, name, email, role, affiliation, orcid,
            academic_title, is_editorial_board, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            user.user_id,
            user.name,
            user.email,
            user.role.value,
            user.affiliation,
            user.orcid,
            user.academic_title,
            int(user.is_editorial_board),
            user.created_at.isoformat(),
            user.updated_at.isoformat(),
        ),
    )
    await db.commit()

    await log_event(
        db,
        AuditAction.USER_REGISTERED,
        actor_id=user.user_id,
        target_id=user.user_id,
        target_type="user",
        details={"name": user.name, "role": user.role.value},
    )
    logger.info("Registered %s %s", user.role.value, user.user_id)
    return user, []


async def get_user(db: aiosqlite.Connection, user_id: str) -> User | None:
    """Look up a user by ID."""
    async with db.execute(
        "SELECT * FROM users WHERE user_id = ?", (user_id,)
    ) as cursor:
        row = await cursor.fetchone()
    if row is None:
        return None
    return _row_to_user(row)


async def get_user_by_email(db: aiosqlite.Connection, email: str) -> User | None:
    async with db.execute(
        "SELECT * FROM users WHERE email = ?", (email.strip().lower(),)
    ) as cursor:
        row = await cursor.fetchone()
    if row is None:
        return None
    return _row_to_user(row)


async def user_exists(db: aiosqlite.Connection, user_id: str) -> bool:
    async with db.execute(
        "SELECT 1 FROM users WHERE user_id = ?", (user_id,)
    ) as cursor:
        return await cursor.fetchone() is not None


async def list_users(
    db: aiosqlite.Connection,
    role: UserRole | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[User]:
    """List users, optionally restricted to one role, alphabetically."""
    if role is not None:
        query = "SELECT * FROM users WHERE role = ? ORDER BY name LIMIT ? OFFSET ?"
        params: tuple[Any, ...] = (role.value, limit, offset)
    else:
        query = "SELECT * FROM users ORDER BY name LIMIT ? OFFSET ?"
        params = (limit, offset)
    async with db.execute(query, params) as cursor:
        rows = await cursor.fetchall()
    return [_row_to_user(row) for row in rows]


async def get_editorial_board(db: aiosqlite.Connection) -> list[User]:
    async with db.execute(
        "SELECT * FROM users WHERE is_editorial_board = 1 ORDER BY role, name"
    ) as cursor:
        rows = await cursor.fetchall()
    return [_row_to_user(row) for row in rows]


# ---------------------------------------------------------------------------
# Reviewer invitations
# ---------------------------------------------------------------------------

async def create_invitation(
    db: aiosqlite.Connection,
    email: str,
    invited_by: str,
    name: str = "",
    affiliation: str = "",
) -> tuple[ReviewerInvitation | None, list[str]]:
    """Create a pending reviewer invitation with a one-time token."""
    email = email.strip().lower()
    if await get_user_by_email(db, email) is not None:
        return None, ["email_already_registered"]

    async with db.execute(
        "SELECT COUNT(*) FROM reviewer_invitations WHERE email = ? AND status = ? AND expires_at > ?",
        (email, InvitationStatus.PENDING.value, utcnow().isoformat()),
    ) as cursor:
        pending = (await cursor.fetchone())[0]
    if pending:
        return None, ["invitation_already_pending"]

    invitation = ReviewerInvitation(
        email=email,
        name=name,
        affiliation=affiliation,
        token=secrets.token_urlsafe(32),
        invited_by=invited_by,
        expires_at=utcnow() + timedelta(days=settings.publication.invitation_ttl_days),
    )
    await db.execute(
        """
        INSERT INTO reviewer_invitations (
            invitation_id, email, name, affiliation, token, status,
            invited_by, expires_at, created_at, accepted_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            invitation.invitation_id,
            invitation.email,
            invitation.name,
            invitation.affiliation,
            invitation.token,
            invitation.status.value,
            invitation.invited_by,
            invitation.expires_at.isoformat(),
            invitation.created_at.isoformat(),
            None,
        ),
    )
    await db.commit()

    await log_event(
        db,
        AuditAction.INVITATION_SENT,
        actor_id=invited_by,
        target_id=invitation.invitation_id,
        target_type="invitation",
        details={"email": email},
    )
    return invitation, []


async def list_invitations(
    db: aiosqlite.Connection,
    status: InvitationStatus | None = None,
    limit: int = 100,
) -> list[ReviewerInvitation]:
    if status is not None:
        query = "SELECT * FROM reviewer_invitations WHERE status = ? ORDER BY created_at DESC LIMIT ?"
        params: tuple[Any, ...] = (status.value, limit)
    else:
        query = "SELECT * FROM reviewer_invitations ORDER BY created_at DESC LIMIT ?"
        params = (limit,)
    async with db.execute(query, params) as cursor:
        rows = await cursor.fetchall()
    return [_row_to_invitation(row) for row in rows]


async def accept_invitation(
    db: aiosqlite.Connection,
    token: str,
    name: str,
    affiliation: str = "",
    academic_title: str = "",
    now: datetime | None = None,
) -> tuple[User | None, list[str]]:
    """Redeem an invitation token and create the reviewer account."""
    now = now or utcnow()
    async with db.execute(
        "SELECT * FROM reviewer_invitations WHERE token = ?", (token,)
    ) as cursor:
        row = await cursor.fetchone()
    if row is None:
        return None, ["invitation_not_found"]

    invitation = _row_to_invitation(row)
    if invitation.status != InvitationStatus.PENDING:
        return None, [f"invitation_{invitation.status.value}"]
    if invitation.expires_at <= now:
        await db.execute(
            "UPDATE reviewer_invitations SET status = ? WHERE invitation_id = ?",
            (InvitationStatus.EXPIRED.value, invitation.invitation_id),
        )
        await db.commit()
        return None, ["invitation_expired"]

    user, errors = await register_user(db, UserCreate(
        name=name or invitation.name or invitation.email,
        email=invitation.email,
        role=UserRole.REVIEWER,
        affiliation=affiliation or invitation.affiliation,
        academic_title=academic_title,
    ))
    if errors:
        return None, errors

    await db.execute(
        "UPDATE reviewer_invitations SET status = ?, accepted_at = ? WHERE invitation_id = ?",
        (InvitationStatus.ACCEPTED.value, iso(now), invitation.invitation_id),
    )
    await db.commit()

    await log_event(
        db,
        AuditAction.INVITATION_ACCEPTED,
        actor_id=user.user_id,
        target_id=invitation.invitation_id,
        target_type="invitation",
        details={"email": invitation.email},
    )
    return user, []
