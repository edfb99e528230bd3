"""Campaign service — email campaign records and recipient selection.

Campaigns are stored with their resolved recipient list and left ``queued``.
Nothing here delivers mail.
"""

from __future__ import annotations

import logging
from typing import Any

import aiosqlite

from journaldesk.audit_service import log_event
from journaldesk.database import from_json, to_json
from journaldesk.models import (
    AuditAction,
    CampaignCreate,
    CampaignStatus,
    EmailCampaign,
    EmailRecipient,
    ManuscriptStatus,
    UserRole,
)

logger = logging.getLogger("journaldesk.campaigns")


def _row_to_campaign(row: aiosqlite.Row | dict[str, Any]) -> EmailCampaign:
    d = dict(row)
    d["recipients"] = from_json(d.get("recipients", "[]")) or []
    return EmailCampaign(**d)


async def get_recipients(
    db: aiosqlite.Connection,
    role: UserRole | None = None,
    manuscript_status: ManuscriptStatus | None = None,
    search: str | None = None,
) -> list[EmailRecipient]:
    """
    Users matching the filters.

    With ``manuscript_status`` the result is one row per matching manuscript
    and its submitting author.
    """
    clauses: list[str] = []
    params: list[Any] = []
    if role is not None:
        clauses.append("u.role = ?")
        params.append(role.value)
    if search:
        clauses.append("(u.name LIKE ? OR u.email LIKE ?)")
        params.extend([f"%{search}%", f"%{search}%"])

    if manuscript_status is not None:
        clauses.append("m.status = ?")
        params.append(manuscript_status.value)
        query = """
            SELECT u.user_id, u.name, u.email, u.role,
                   m.manuscript_id, m.title AS manuscript_title
            FROM manuscripts m JOIN users u ON u.user_id = m.submitter_id
        """
    else:
        query = """
            SELECT u.user_id, u.name, u.email, u.role,
                   NULL AS manuscript_id, NULL AS manuscript_title
            FROM users u
        """
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    async with db.execute(f"{query}{where} ORDER BY u.name", params) as cursor:
        rows = await cursor.fetchall()
    return [EmailRecipient(**dict(row)) for row in rows]


async def _recipients_by_id(db: aiosqlite.Connection, user_ids: list[str]) -> list[EmailRecipient]:
    ids = sorted(set(user_ids))
    placeholders = ",".join("?" for _ in ids)
    async with db.execute(
        f"SELECT user_id, name, email, role FROM users WHERE user_id IN ({placeholders}) ORDER BY name",
        ids,
    ) as cursor:
        rows = await cursor.fetchall()
    return [EmailRecipient(**dict(row)) for row in rows]


async def create_campaign(
    db: aiosqlite.Connection,
    payload: CampaignCreate,
    actor_id: str,
) -> tuple[EmailCampaign | None, list[str]]:
    """Resolve recipients and record the campaign as queued."""
    if payload.recipient_ids:
        recipients = await _recipients_by_id(db, payload.recipient_ids)
        found = {r.user_id for r in recipients}
        missing = [uid for uid in payload.recipient_ids if uid not in found]
        if missing:
            return None, [f"recipient_not_found_{uid}" for uid in missing[:10]]
    else:
        recipients = await get_recipients(db, payload.recipient_role, payload.manuscript_status)

    emails = list(dict.fromkeys(r.email for r in recipients))
    if not emails:
        return None, ["no_recipients"]

    campaign = EmailCampaign(
        subject=payload.subject.strip(),
        body=payload.body,
        recipient_role=payload.recipient_role,
        manuscript_status=payload.manuscript_status,
        recipient_count=len(emails),
        recipients=emails,
        created_by=actor_id,
    )
    await db.execute(
        """
        INSERT INTO email_campaigns (
            campaign_id, subject, body, recipient_role, manuscript_status,
            recipient_count, recipients, status, created_by, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            campaign.campaign_id,
            campaign.subject,
            campaign.body,
            campaign.recipient_role.value if campaign.recipient_role else None,
            campaign.manuscript_status.value if campaign.manuscript_status else None,
            campaign.recipient_count,
            to_json(campaign.recipients),
            campaign.status.value,
            campaign.created_by,
            campaign.created_at.isoformat(),
        ),
    )
    await db.commit()

    await log_event(
        db,
        AuditAction.CAMPAIGN_QUEUED,
        actor_id=actor_id,
        target_id=campaign.campaign_id,
        target_type="campaign",
        details={"subject": campaign.subject, "recipient_count": campaign.recipient_count},
    )
    logger.info("Campaign %s queued for %d recipient(s)", campaign.campaign_id, campaign.recipient_count)
    return campaign, []


async def get_campaign(db: aiosqlite.Connection, campaign_id: str) -> EmailCampaign | None:
    async with db.execute(
        "SELECT * FROM email_campaigns WHERE campaign_id = ?", (campaign_id,)
    ) as cursor:
        row = await cursor.fetchone()
    if row is None:
        return None
    return _row_to_campaign(row)


async def list_campaigns(
    db: aiosqlite.Connection,
    status: CampaignStatus | None = None,
    limit: int = 50,
) -> list[EmailCampaign]:
    if status is not None:
        query = "SELECT * FROM email_campaigns WHERE status = ? ORDER BY created_at DESC LIMIT ?"
        params: tuple[Any, ...] = (status.value, limit)
    else:
        query = "SELECT * FROM email_campaigns ORDER BY created_at DESC LIMIT ?"
        params = (limit,)
    async with db.execute(query, params) as cursor:
        rows = await cursor.fetchall()
    return [_row_to_campaign(row) for row in rows]


async def cancel_campaign(
    db: aiosqlite.Connection,
    campaign_id: str,
    actor_id: str,
) -> tuple[EmailCampaign | None, list[str]]:
    campaign = await get_campaign(db, campaign_id)
    if campaign is None:
        return None, ["campaign_not_found"]
    if campaign.status != CampaignStatus.QUEUED:
        return None, [f"campaign_is_{campaign.status.value}"]

    await db.execute(
        "UPDATE email_campaigns SET status = ? WHERE campaign_id = ?",
        (CampaignStatus.CANCELLED.value, campaign_id),
    )
    await db.commit()
    await log_event(
        db,
        AuditAction.CAMPAIGN_CANCELLED,
        actor_id=actor_id,
        target_id=campaign_id,
        target_type="campaign",
    )
    return await get_campaign(db, campaign_id), []
