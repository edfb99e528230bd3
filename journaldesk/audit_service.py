"""Audit service — append-only editorial event log.

Submissions, assignments, reviews, decisions, overrides and publication
events land in ``audit_events``. Rows are never updated or deleted; a
manuscript's history page and the admin activity feed are both reads of
this table.
"""

from __future__ import annotations

import logging
from typing import Any

import aiosqlite

from journaldesk.database import from_json, to_json
from journaldesk.models import AuditAction, AuditEvent

logger = logging.getLogger("journaldesk.audit")

_INSERT = (
    "INSERT INTO audit_events (event_id, action, actor_id, target_id, target_type, details, timestamp) "
    "VALUES (?, ?, ?, ?, ?, ?, ?)"
)


def _event_row(row: aiosqlite.Row) -> dict[str, Any]:
    event = dict(row)
    event["details"] = from_json(event.get("details")) or {}
    return event


async def log_event(
    db: aiosqlite.Connection,
    action: AuditAction,
    actor_id: str = "",
    target_id: str = "",
    target_type: str = "",
    details: dict[str, Any] | None = None,
) -> AuditEvent:
    """Append one event and commit."""
    event = AuditEvent(
        action=action,
        actor_id=actor_id,
        target_id=target_id,
        target_type=target_type,
        details=details or {},
    )
    await db.execute(
        _INSERT,
        (
            event.event_id,
            event.action.value,
            event.actor_id,
            event.target_id,
            event.target_type,
            to_json(event.details),
            event.timestamp.isoformat(),
        ),
    )
    await db.commit()
    logger.debug("%s %s:%s by %s", action.value, target_type or "?", target_id, actor_id or "-")
    return event


async def query_events(
    db: aiosqlite.Connection,
    *,
    target_id: str | None = None,
    action: AuditAction | None = None,
    actor_id: str | None = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    """Newest-first events matching every filter given."""
    filters: list[tuple[str, Any]] = []
    if target_id is not None:
        filters.append(("target_id = ?", target_id))
    if action is not None:
        filters.append(("action = ?", action.value))
    if actor_id is not None:
        filters.append(("actor_id = ?", actor_id))

    sql = "SELECT * FROM audit_events"
    if filters:
        sql += " WHERE " + " AND ".join(clause for clause, _ in filters)
    sql += " ORDER BY timestamp DESC LIMIT ?"

    async with db.execute(sql, [value for _, value in filters] + [limit]) as cursor:
        rows = await cursor.fetchall()
    return [_event_row(row) for row in rows]


async def get_events_for_target(
    db: aiosqlite.Connection,
    target_id: str,
    limit: int = 100,
) -> list[dict[str, Any]]:
    """History of one manuscript, review, volume, campaign or user."""
    return await query_events(db, target_id=target_id, limit=limit)


async def get_recent_events(
    db: aiosqlite.Connection,
    action: AuditAction | None = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    return await query_events(db, action=action, limit=limit)
