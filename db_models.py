"""
Database models for the canonical catalog.

These Pydantic models mirror the ``companies``, ``jobs`` and
``ai_run_ledger`` tables. Repositories return them instead of raw rows so
callers never depend on the storage technology.

DO NOT rename fields without migrating the tables - column names match.
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from models import LocationKind, SalaryInterval, SalaryParseReason


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Company(BaseModel):
    """Represents a canonical employer in the companies table."""
    id: UUID = Field(default_factory=uuid4)
    name: str
    slug: str
    website: Optional[str] = None
    ats_provider: Optional[str] = None
    ats_url: Optional[str] = None
    logo_url: Optional[str] = None
    linkedin_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# Company fields the resolver may fill in but never overwrite.
COMPANY_FILLABLE_FIELDS = ("ats_provider", "ats_url", "website", "linkedin_url", "logo_url")


class Job(BaseModel):
    """Represents a canonical posting in the jobs table, keyed by (source, external_id)."""
    id: UUID = Field(default_factory=uuid4)
    company_id: UUID
    source: str
    external_id: str
    hash: str
    title: str
    url: Optional[str] = None
    apply_url: Optional[str] = None
    employment_type: Optional[str] = None
    department: Optional[str] = None
    description_html: Optional[str] = None

    # Location
    location_raw: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    remote_kind: LocationKind = LocationKind.UNKNOWN
    is_remote: Optional[bool] = None
    remote_region: Optional[str] = None
    is_multi_location: bool = False

    # Salary
    salary_raw: Optional[str] = None
    salary_min: Optional[float] = None
    salary_max: Optional[float] = None
    salary_currency: Optional[str] = None
    salary_interval: Optional[SalaryInterval] = None
    min_annual: Optional[int] = None
    max_annual: Optional[int] = None
    salary_confidence: Optional[int] = None
    salary_parse_reason: Optional[SalaryParseReason] = None
    is_high_salary: bool = False

    # AI enrichment
    ai_one_liner: Optional[str] = None
    ai_snippet: Optional[str] = None
    ai_summary_json: Optional[Dict[str, Any]] = None
    ai_enriched_at: Optional[datetime] = None

    # Lifecycle
    is_expired: bool = False
    posted_at: Optional[datetime] = None
    last_seen_at: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class AiRunLedger(BaseModel):
    """Represents one UTC day of AI enrichment usage in the ai_run_ledger table."""
    day: date
    jobs_processed: int = 0
    tokens_in: int = 0
    tokens_out: int = 0
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def tokens_total(self) -> int:
        return self.tokens_in + self.tokens_out

    def cost_usd(self, in_per_million: float, out_per_million: float) -> float:
        return (self.tokens_in * in_per_million + self.tokens_out * out_per_million) / 1_000_000
