"""
Supabase-backed repositories for the canonical catalog.

Tables:
- companies       (unique slug)
- jobs            (unique source + external_id)
- ai_run_ledger   (one row per UTC day)

Every query goes through ``_execute`` so storage failures surface as
``RepositoryError`` instead of leaking client-specific exceptions.
"""

from datetime import date, datetime
from typing import Any, Dict, Iterable, List, NamedTuple, Optional
from uuid import UUID

from db_models import AiRunLedger, Company, Job, utcnow
from errors import RepositoryError
from logging_config import get_logger
from repositories import (
    AiRunLedgerRepository,
    CompanyRepository,
    InMemoryAiRunLedgerRepository,
    InMemoryCompanyRepository,
    InMemoryJobRepository,
    JobRepository,
)
from supabase_client import get_supabase_client

logger = get_logger(__name__)

COMPANIES_TABLE = "companies"
JOBS_TABLE = "jobs"
LEDGER_TABLE = "ai_run_ledger"


def _execute(query, action: str):
    try:
        return query.execute()
    except Exception as e:
        logger.error(f"Supabase {action} failed: {e}")
        raise RepositoryError(f"{action} failed: {e}") from e


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _serialize(fields: Dict[str, Any]) -> Dict[str, Any]:
    """JSON-safe column values (UUIDs, datetimes, enums)."""
    out = {}
    for key, value in fields.items():
        if isinstance(value, (UUID, datetime, date)):
            out[key] = value.isoformat() if not isinstance(value, UUID) else str(value)
        elif hasattr(value, "value"):
            out[key] = value.value
        else:
            out[key] = value
    return out


class SupabaseCompanyRepository(CompanyRepository):
    """Company storage in the ``companies`` table."""

    def __init__(self, client):
        self.client = client

    def _first(self, query, action: str) -> Optional[Company]:
        result = _execute(query.limit(1), action)
        return Company.model_validate(result.data[0]) if result.data else None

    def get(self, company_id: UUID) -> Optional[Company]:
        query = self.client.table(COMPANIES_TABLE).select("*").eq("id", str(company_id))
        return self._first(query, "get company")

    def find_by_name(self, name: str) -> Optional[Company]:
        query = self.client.table(COMPANIES_TABLE).select("*").ilike("name", _escape_like(name.strip()))
        return self._first(query, "find company by name")

    def find_by_ats_url(self, ats_url: str) -> Optional[Company]:
        query = self.client.table(COMPANIES_TABLE).select("*").eq("ats_url", ats_url)
        return self._first(query, "find company by ATS URL")

    def slug_exists(self, slug: str) -> bool:
        result = _execute(
            self.client.table(COMPANIES_TABLE).select("id").eq("slug", slug).limit(1),
            "check company slug",
        )
        return bool(result.data)

    def create(self, company: Company) -> Company:
        result = _execute(
            self.client.table(COMPANIES_TABLE).insert(company.model_dump(mode="json")),
            "create company",
        )
        logger.info(f"Created company: {company.name} ({company.slug})")
        return Company.model_validate(result.data[0]) if result.data else company

    def update(self, company_id: UUID, fields: Dict[str, Any]) -> Company:
        payload = _serialize({**fields, "updated_at": utcnow()})
        result = _execute(
            self.client.table(COMPANIES_TABLE).update(payload).eq("id", str(company_id)),
            "update company",
        )
        if not result.data:
            raise RepositoryError(f"unknown company: {company_id}")
        return Company.model_validate(result.data[0])

    def list_with_ats(self) -> List[Company]:
        result = _execute(
            self.client.table(COMPANIES_TABLE)
            .select("*")
            .not_.is_("ats_provider", "null")
            .not_.is_("ats_url", "null"),
            "list ATS companies",
        )
        return [Company.model_validate(row) for row in result.data or []]


class SupabaseJobRepository(JobRepository):
    """Job storage in the ``jobs`` table, keyed by (source, external_id)."""

    def __init__(self, client):
        self.client = client

    def find_by_key(self, source: str, external_id: str) -> Optional[Job]:
        result = _execute(
            self.client.table(JOBS_TABLE)
            .select("*")
            .eq("source", source)
            .eq("external_id", external_id)
            .limit(1),
            "find job",
        )
        return Job.model_validate(result.data[0]) if result.data else None

    def insert(self, job: Job) -> Job:
        result = _execute(
            self.client.table(JOBS_TABLE).insert(job.model_dump(mode="json")),
            "insert job",
        )
        return Job.model_validate(result.data[0]) if result.data else job

    def update(self, job_id: UUID, fields: Dict[str, Any]) -> Job:
        query = self.client.table(JOBS_TABLE).update(_serialize(fields)).eq("id", str(job_id))
        if fields.get("is_expired") is False:
            # An expired row never matches, so it stays expired
            query = query.eq("is_expired", False)
        result = _execute(query, "update job")
        if not result.data:
            raise RepositoryError(f"job {job_id} not found or expired")
        return Job.model_validate(result.data[0])

    def expire_stale(self, cutoff: datetime, source_prefix: str = "ats:") -> int:
        result = _execute(
            self.client.table(JOBS_TABLE)
            .update({"is_expired": True})
            .eq("is_expired", False)
            .like("source", f"{_escape_like(source_prefix)}%")
            .lt("updated_at", cutoff.isoformat()),
            "expire stale jobs",
        )
        return len(result.data or [])

    def expire_missing(self, source: str, company_id: UUID, seen_external_ids: Iterable[str]) -> int:
        seen = sorted(set(seen_external_ids))
        query = (
            self.client.table(JOBS_TABLE)
            .update({"is_expired": True})
            .eq("is_expired", False)
            .eq("source", source)
            .eq("company_id", str(company_id))
        )
        if seen:
            query = query.not_.in_("external_id", seen)
        result = _execute(query, "expire missing jobs")
        return len(result.data or [])

    def list_unenriched(self, limit: int) -> List[Job]:
        result = _execute(
            self.client.table(JOBS_TABLE)
            .select("*")
            .eq("is_expired", False)
            .is_("ai_one_liner", "null")
            .order("created_at")
            .limit(limit),
            "list unenriched jobs",
        )
        return [Job.model_validate(row) for row in result.data or []]

    def list_active(self, limit: int) -> List[Job]:
        result = _execute(
            self.client.table(JOBS_TABLE)
            .select("*")
            .eq("is_expired", False)
            .order("updated_at", desc=True)
            .limit(limit),
            "list active jobs",
        )
        return [Job.model_validate(row) for row in result.data or []]


class SupabaseAiRunLedgerRepository(AiRunLedgerRepository):
    """Daily AI usage in the ``ai_run_ledger`` table."""

    def __init__(self, client):
        self.client = client

    def get(self, day: date) -> Optional[AiRunLedger]:
        result = _execute(
            self.client.table(LEDGER_TABLE).select("*").eq("day", day.isoformat()).limit(1),
            "get ledger",
        )
        return AiRunLedger.model_validate(result.data[0]) if result.data else None

    def increment(self, day: date, jobs: int = 0, tokens_in: int = 0, tokens_out: int = 0) -> AiRunLedger:
        if min(jobs, tokens_in, tokens_out) < 0:
            raise RepositoryError("ledger counters only increase")
        current = self.get(day) or AiRunLedger(day=day)
        updated = current.model_copy(
            update={
                "jobs_processed": current.jobs_processed + jobs,
                "tokens_in": current.tokens_in + tokens_in,
                "tokens_out": current.tokens_out + tokens_out,
                "updated_at": utcnow(),
            }
        )
        _execute(
            self.client.table(LEDGER_TABLE).upsert(updated.model_dump(mode="json"), on_conflict="day"),
            "increment ledger",
        )
        return updated


class Repositories(NamedTuple):
    companies: CompanyRepository
    jobs: JobRepository
    ledger: AiRunLedgerRepository


def build_repositories(client=None) -> Repositories:
    """
    Repositories for the configured backend.

    Uses Supabase when a client is available, otherwise in-memory storage
    (useful for dry runs; nothing is persisted).
    """
    client = client or get_supabase_client()
    if client is None:
        logger.warning("Using in-memory repositories - Supabase is not configured")
        return Repositories(InMemoryCompanyRepository(), InMemoryJobRepository(), InMemoryAiRunLedgerRepository())
    return Repositories(
        SupabaseCompanyRepository(client),
        SupabaseJobRepository(client),
        SupabaseAiRunLedgerRepository(client),
    )
