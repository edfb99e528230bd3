"""JournalDesk configuration — all tuneable settings in one place."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_csv(name: str, default: list[str]) -> list[str]:
    raw = os.environ.get(name)
    if raw is None:
        return default
    vals = [v.strip() for v in raw.split(",") if v.strip()]
    return vals if vals else default


def _default_data_dir() -> Path:
    """Resolve the data directory: $JOURNALDESK_DATA or ./data."""
    env = os.environ.get("JOURNALDESK_DATA")
    if env:
        return Path(env)
    return Path(__file__).resolve().parent.parent / "data"


class WorkflowConfig(BaseModel):
    """Knobs for the review and reconciliation workflow."""

    high_severity_difference: int = Field(
        default=30, ge=1, description="Total-score gap at or above which a discrepancy is high severity"
    )
    medium_severity_difference: int = Field(
        default=15, ge=1, description="Total-score gap at or above which a discrepancy is medium severity"
    )
    criterion_spread_ratio: float = Field(
        default=0.3,
        gt=0.0,
        le=1.0,
        description="Fraction of a criterion's maximum above which reviewer scores are flagged as diverging",
    )
    review_due_days: int = Field(
        default_factory=lambda: _env_int("JOURNALDESK_REVIEW_DUE_DAYS", 21),
        ge=1,
        description="Days a reviewer has to complete an assignment",
    )
    auto_apply_decisions: bool = Field(
        default_factory=lambda: _env_bool("JOURNALDESK_AUTO_APPLY_DECISIONS", True),
        description="If true, agreeing reviews move the manuscript to the decided status",
    )
    title_min_length: int = Field(default=10, ge=1)
    title_max_length: int = Field(default=500, ge=10)
    abstract_min_length: int = Field(default=100, ge=1)
    abstract_max_length: int = Field(default=5000, ge=100)
    keyword_min_length: int = Field(default=2, ge=1)
    keyword_max_length: int = Field(default=50, ge=2)
    max_pdf_bytes: int = Field(
        default_factory=lambda: _env_int("JOURNALDESK_MAX_PDF_BYTES", 20_000_000),
        ge=1_024,
    )


class PublicationConfig(BaseModel):
    """Settings for volumes, issues and DOI minting."""

    doi_prefix: str = Field(default_factory=lambda: os.environ.get("JOURNALDESK_DOI_PREFIX", "10.5555"))
    journal_code: str = Field(default_factory=lambda: os.environ.get("JOURNALDESK_JOURNAL_CODE", "jd"))
    description_max_length: int = Field(default=500, ge=1)
    invitation_ttl_days: int = Field(
        default_factory=lambda: _env_int("JOURNALDESK_INVITATION_TTL_DAYS", 14),
        ge=1,
    )


class SearchConfig(BaseModel):
    """Article search settings."""

    semantic_enabled: bool = Field(
        default_factory=lambda: _env_bool("JOURNALDESK_SEMANTIC_SEARCH", False),
        description="Use ChromaDB vector search before the SQLite LIKE search",
    )
    min_query_length: int = Field(default=2, ge=1)


class SecurityConfig(BaseModel):
    """Authentication and authorization settings."""

    require_api_key: bool = Field(
        default_factory=lambda: _env_bool("JOURNALDESK_REQUIRE_API_KEY", False),
        description="If true, API key auth is required for all mutating API endpoints",
    )
    allow_anonymous_read: bool = Field(
        default_factory=lambda: _env_bool("JOURNALDESK_ALLOW_ANON_READ", True),
        description="If true, read-only endpoints can be accessed without API keys",
    )
    api_keys_json: str = Field(
        default_factory=lambda: os.environ.get("JOURNALDESK_API_KEYS_JSON", ""),
        description=(
            "JSON list of key records: "
            "[{\"key\":\"...\",\"actor_id\":\"...\",\"role\":\"admin|editor|reviewer|author\",\"scopes\":[...]}]"
        ),
    )


class RateLimitConfig(BaseModel):
    """Basic API rate limiting controls."""

    enabled: bool = Field(default_factory=lambda: _env_bool("JOURNALDESK_RATE_LIMIT_ENABLED", True))
    requests_per_minute: int = Field(
        default_factory=lambda: _env_int("JOURNALDESK_RATE_LIMIT_RPM", 240),
        ge=1,
    )
    # Separate, smaller budget for POST/PUT/PATCH/DELETE
    write_requests_per_minute: int = Field(
        default_factory=lambda: _env_int("JOURNALDESK_RATE_LIMIT_WRITE_RPM", 60),
        ge=1,
    )


class ServerConfig(BaseModel):
    """Network and transport settings."""

    host: str = Field(default_factory=lambda: os.environ.get("JOURNALDESK_HOST", "127.0.0.1"))
    rest_port: int = Field(default_factory=lambda: _env_int("JOURNALDESK_PORT", 8000))
    mcp_transport: str = Field(
        default_factory=lambda: os.environ.get("JOURNALDESK_MCP_TRANSPORT", "stdio"),
        description="stdio | sse | streamable-http",
    )
    trusted_hosts: list[str] = Field(
        default_factory=lambda: _env_csv(
            "JOURNALDESK_TRUSTED_HOSTS",
            ["127.0.0.1", "localhost", "testserver"],
        ),
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: _env_csv("JOURNALDESK_CORS_ORIGINS", []),
    )
    max_request_bytes: int = Field(
        default_factory=lambda: _env_int("JOURNALDESK_MAX_REQUEST_BYTES", 1_000_000),
        ge=1_024,
    )
    workers: int = Field(default_factory=lambda: _env_int("JOURNALDESK_WORKERS", 1), ge=1)
    log_level: str = Field(default_factory=lambda: os.environ.get("JOURNALDESK_LOG_LEVEL", "info"))


class Config(BaseModel):
    """Top-level JournalDesk configuration."""

    environment: str = Field(default_factory=lambda: os.environ.get("JOURNALDESK_ENV", "development"))
    journal_name: str = Field(
        default_factory=lambda: os.environ.get("JOURNALDESK_JOURNAL_NAME", "JournalDesk Journal")
    )
    data_dir: Path = Field(default_factory=_default_data_dir)
    db_filename: str = Field(default="journaldesk.db")
    chroma_dir_name: str = Field(default="chroma")
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    publication: PublicationConfig = Field(default_factory=PublicationConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_filename

    @property
    def chroma_path(self) -> Path:
        return self.data_dir / self.chroma_dir_name

    def ensure_dirs(self) -> None:
        """Create data directories if they don't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        if self.search.semantic_enabled:
            self.chroma_path.mkdir(parents=True, exist_ok=True)


# Singleton, importable everywhere as `from journaldesk.config import settings`
settings = Config()
