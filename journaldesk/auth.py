"""API-key authentication and scope checks for the REST API.

Keys are configured through ``JOURNALDESK_API_KEYS_JSON`` as either a list
of records or a ``{"<key>": {...}}`` mapping. A record without explicit
scopes gets the default scopes of its journal role.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Iterable

from fastapi import Depends, Header, HTTPException, status
from pydantic import BaseModel, Field, ValidationError

from journaldesk.config import settings
from journaldesk.models import UserRole

logger = logging.getLogger("journaldesk.auth")

SCOPE_MANUSCRIPTS = "manuscripts:write"
SCOPE_REVIEWS = "reviews:write"
SCOPE_EDITORIAL = "editorial:write"
SCOPE_PUBLICATION = "publication:write"
SCOPE_USERS = "users:write"
SCOPE_CAMPAIGNS = "campaigns:write"
SCOPE_ALL = "*"

ROLE_SCOPES: dict[UserRole, frozenset[str]] = {
    UserRole.ADMIN: frozenset({SCOPE_ALL}),
    UserRole.EDITOR: frozenset({
        SCOPE_EDITORIAL, SCOPE_REVIEWS, SCOPE_PUBLICATION, SCOPE_USERS, SCOPE_CAMPAIGNS,
    }),
    UserRole.REVIEWER: frozenset({SCOPE_REVIEWS}),
    UserRole.AUTHOR: frozenset({SCOPE_MANUSCRIPTS}),
}


class ApiKeyRecord(BaseModel):
    """One configured API key and the journal identity behind it."""

    key: str = Field(min_length=8)
    actor_id: str = Field(min_length=1)
    role: UserRole = UserRole.AUTHOR
    scopes: list[str] = Field(default_factory=list)
    key_id: str = ""

    @property
    def effective_scopes(self) -> frozenset[str]:
        return frozenset(self.scopes) if self.scopes else ROLE_SCOPES[self.role]

    @property
    def label(self) -> str:
        return self.key_id or f"{self.role.value}:{self.actor_id}"


@dataclass(slots=True, frozen=True)
class AuthContext:
    """Who is calling, as far as the API can tell."""

    actor_id: str = ""
    role: str = "anonymous"
    scopes: frozenset[str] = frozenset()
    key_id: str = ""
    authenticated: bool = False

    def has_scope(self, scope: str) -> bool:
        return SCOPE_ALL in self.scopes or scope in self.scopes

    def missing_scopes(self, needed: Iterable[str]) -> list[str]:
        return [scope for scope in needed if not self.has_scope(scope)]

    @classmethod
    def from_record(cls, record: ApiKeyRecord) -> "AuthContext":
        return cls(
            actor_id=record.actor_id,
            role=record.role.value,
            scopes=record.effective_scopes,
            key_id=record.label,
            authenticated=True,
        )


ANONYMOUS = AuthContext()


def _iter_payloads(raw: Any) -> Iterable[dict]:
    if isinstance(raw, list):
        yield from (item for item in raw if isinstance(item, dict))
    elif isinstance(raw, dict):
        for key, meta in raw.items():
            if isinstance(meta, dict):
                yield {"key": key, **meta}


def parse_api_keys(raw_json: str) -> dict[str, ApiKeyRecord]:
    """Parse the configured key JSON; invalid records are logged and skipped."""
    if not raw_json.strip():
        return {}
    try:
        raw = json.loads(raw_json)
    except json.JSONDecodeError:
        logger.error("JOURNALDESK_API_KEYS_JSON is not valid JSON; no API keys loaded")
        return {}

    index: dict[str, ApiKeyRecord] = {}
    for payload in _iter_payloads(raw):
        try:
            record = ApiKeyRecord(**payload)
        except ValidationError:
            logger.warning("Skipping invalid API key record for actor %r", payload.get("actor_id"))
            continue
        index[record.key] = record
    return index


@lru_cache(maxsize=1)
def _key_index() -> dict[str, ApiKeyRecord]:
    return parse_api_keys(settings.security.api_keys_json)


def reload_api_key_cache() -> None:
    """Forget parsed keys so the next request re-reads settings."""
    _key_index.cache_clear()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


async def get_auth_context(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> AuthContext:
    """
    Resolve the caller from the ``X-API-Key`` header.

    With ``require_api_key`` off, a known key still identifies the caller and
    anything else is anonymous. With it on, a missing or unknown key is a 401.
    """
    record = _key_index().get(x_api_key) if x_api_key else None
    if record is not None:
        return AuthContext.from_record(record)
    if not settings.security.require_api_key:
        return ANONYMOUS
    raise _unauthorized("Missing API key" if not x_api_key else "Invalid API key")


def require_scopes(*required_scopes: str) -> Callable[..., Any]:
    """Dependency factory for mutating endpoints; anonymous callers pass when auth is off."""
    needed = tuple(scope for scope in required_scopes if scope)

    async def _dependency(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if not ctx.authenticated:
            return ctx
        missing = ctx.missing_scopes(needed)
        if missing:
            logger.info("Actor %s (%s) lacks scopes %s", ctx.actor_id, ctx.role, missing)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": "insufficient_scope",
                    "required_scopes": list(needed),
                    "actor_id": ctx.actor_id,
                    "role": ctx.role,
                },
            )
        return ctx

    return _dependency


def enforce_read_access(ctx: AuthContext) -> None:
    """Reject anonymous reads when ``allow_anonymous_read`` is off."""
    if not ctx.authenticated and not settings.security.allow_anonymous_read:
        raise _unauthorized("Authentication required")


def resolve_actor_id(explicit_id: str | None, ctx: AuthContext) -> str:
    """The key's actor wins over any id in the request body."""
    if ctx.authenticated:
        return ctx.actor_id
    return (explicit_id or "").strip()
