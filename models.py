"""
Shared Pydantic models for the ingestion engine.

Transient shapes that flow between adapters, normalizers, the ingestion
engine and the HTTP surface live here. Persisted records are in
``db_models``.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# Type aliases for clarity
AtsProvider = Literal["greenhouse", "lever", "ashby", "workday"]
IngestStatus = Literal["created", "updated", "unchanged", "skipped"]
RunState = Literal["running", "completed", "failed"]
ScrapeMode = Literal["all", "boards", "ats"]

SUPPORTED_ATS_PROVIDERS = ("greenhouse", "lever", "ashby", "workday")


class LocationKind(str, Enum):
    REMOTE = "remote"
    HYBRID = "hybrid"
    ONSITE = "onsite"
    UNKNOWN = "unknown"


class SalaryInterval(str, Enum):
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class SalaryParseReason(str, Enum):
    """Terminal classification of a salary; exactly one per result."""

    OK = "ok"
    BELOW_THRESHOLD = "below_threshold"
    UNKNOWN_CURRENCY = "unknown_currency"
    BAD_RANGE = "bad_range"
    AMBIGUOUS = "ambiguous"
    TOO_HIGH = "too_high"
    CAPPED_DESCRIPTION = "capped_description"


class SalarySource(str, Enum):
    ATS = "ats"
    SALARY_RAW = "salary_raw"
    DESCRIPTION = "description"


class PipelineStage(str, Enum):
    PENDING = "pending"
    SCRAPING = "scraping"
    ENRICHING_URLS = "enriching-urls"
    ENRICHING_AI = "enriching-ai"
    REPAIRING_LOCATIONS = "repairing-locations"
    DONE = "done"
    FAILED = "failed"


class ScrapedJob(BaseModel):
    """One posting as returned by an ATS adapter or a board scraper."""

    external_id: str
    title: str
    url: Optional[str] = None
    apply_url: Optional[str] = None
    location_text: Optional[str] = None
    is_remote_hint: Optional[bool] = None
    salary_text: Optional[str] = None
    salary_min: Optional[float] = None
    salary_max: Optional[float] = None
    salary_currency: Optional[str] = None
    salary_interval: Optional[SalaryInterval] = None
    description_html: Optional[str] = None
    employment_type: Optional[str] = None
    department: Optional[str] = None
    posted_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class NormalizedLocation(BaseModel):
    """Location normalizer output. Not persisted on its own."""

    kind: LocationKind = LocationKind.UNKNOWN
    is_remote: Optional[bool] = None
    normalized_text: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    is_multi_location: bool = False
    remote_region: Optional[str] = None


class SalaryNormalizationResult(BaseModel):
    """Salary normalizer output. Annualized values are in local currency."""

    min: Optional[float] = None
    max: Optional[float] = None
    currency: Optional[str] = None
    interval: SalaryInterval = SalaryInterval.YEAR
    min_annual: Optional[int] = None
    max_annual: Optional[int] = None
    confidence: int = 0
    source: SalarySource = SalarySource.SALARY_RAW
    reason: SalaryParseReason
    is_high_salary: bool = False
    corrected_hundredfold: bool = False


class IngestResult(BaseModel):
    status: IngestStatus
    job_id: Optional[UUID] = None
    reason: Optional[str] = None


class IngestStats(BaseModel):
    """Counters for one ingest batch or one whole scrape stage."""

    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: int = 0
    expired: int = 0

    def record(self, result: IngestResult) -> None:
        if result.status == "created":
            self.created += 1
        elif result.status == "updated":
            self.updated += 1
        elif result.status == "unchanged":
            self.unchanged += 1
        else:
            self.skipped += 1

    def log_fields(self) -> Dict[str, int]:
        # "created" would collide with the LogRecord attribute
        return {f"jobs_{key}": value for key, value in self.model_dump().items()}

    def merge(self, other: "IngestStats") -> "IngestStats":
        return IngestStats(
            created=self.created + other.created,
            updated=self.updated + other.updated,
            unchanged=self.unchanged + other.unchanged,
            skipped=self.skipped + other.skipped,
            errors=self.errors + other.errors,
            expired=self.expired + other.expired,
        )


class EnrichmentOutput(BaseModel):
    """Strict schema the text-generation provider must satisfy."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    one_liner: str = Field(alias="oneLiner", min_length=10, max_length=180)
    snippet: str = Field(min_length=20, max_length=300)
    bullets: List[str] = Field(min_length=2, max_length=4)


# -------- Run status --------

class RunStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    jobs_added: int = Field(default=0, alias="jobsAdded")
    failures: int = 0
    failed_sources: List[str] = Field(default_factory=list, alias="failedSources")


class StageFailure(BaseModel):
    """Typed record of the stage error that ended a run."""

    model_config = ConfigDict(populate_by_name=True)

    stage: PipelineStage
    kind: str
    message: str
    exit_code: Optional[int] = Field(default=None, alias="exitCode")


class RunStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    status: RunState = "running"
    stage: PipelineStage = PipelineStage.PENDING
    mode: ScrapeMode = "all"
    started_at: datetime = Field(alias="startedAt")
    completed_at: Optional[datetime] = Field(default=None, alias="completedAt")
    stats: RunStats = Field(default_factory=RunStats)
    error: Optional[str] = None
    failure: Optional[StageFailure] = None


class TriggerResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    job_id: str = Field(alias="jobId")
    status_url: str = Field(alias="statusUrl")
