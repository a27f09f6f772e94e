"""
Repository interfaces for the canonical catalog.

Normalizers, the company resolver, the ingestion engine and the AI batch
talk to storage only through these narrow contracts. ``db_service``
provides the Supabase implementations; the in-memory versions below back
the test suite and local dry runs.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from db_models import AiRunLedger, Company, Job, utcnow
from errors import RepositoryError


class CompanyRepository(ABC):

    @abstractmethod
    def get(self, company_id: UUID) -> Optional[Company]:
        ...

    @abstractmethod
    def find_by_name(self, name: str) -> Optional[Company]:
        """Case-insensitive exact name match."""

    @abstractmethod
    def find_by_ats_url(self, ats_url: str) -> Optional[Company]:
        ...

    @abstractmethod
    def slug_exists(self, slug: str) -> bool:
        ...

    @abstractmethod
    def create(self, company: Company) -> Company:
        ...

    @abstractmethod
    def update(self, company_id: UUID, fields: Dict[str, Any]) -> Company:
        ...

    @abstractmethod
    def list_with_ats(self) -> List[Company]:
        """Companies that have both an ATS provider and an ATS URL."""


class JobRepository(ABC):

    @abstractmethod
    def find_by_key(self, source: str, external_id: str) -> Optional[Job]:
        ...

    @abstractmethod
    def insert(self, job: Job) -> Job:
        ...

    @abstractmethod
    def update(self, job_id: UUID, fields: Dict[str, Any]) -> Job:
        ...

    @abstractmethod
    def expire_stale(self, cutoff: datetime, source_prefix: str = "ats:") -> int:
        """Expire non-expired rows of matching sources last updated before cutoff."""

    @abstractmethod
    def expire_missing(self, source: str, company_id: UUID, seen_external_ids: Iterable[str]) -> int:
        """Expire non-expired rows of one source/company whose id was not seen."""

    @abstractmethod
    def list_unenriched(self, limit: int) -> List[Job]:
        """Non-expired rows without an AI one-liner, oldest first."""

    @abstractmethod
    def list_active(self, limit: int) -> List[Job]:
        """Non-expired rows, most recently updated first."""


class AiRunLedgerRepository(ABC):

    @abstractmethod
    def get(self, day: date) -> Optional[AiRunLedger]:
        ...

    @abstractmethod
    def increment(self, day: date, jobs: int = 0, tokens_in: int = 0, tokens_out: int = 0) -> AiRunLedger:
        """Add to the day's counters, creating the row on first use."""


# ==================== IN-MEMORY IMPLEMENTATIONS ====================

class InMemoryCompanyRepository(CompanyRepository):

    def __init__(self, companies: Iterable[Company] = ()):
        self._companies: Dict[UUID, Company] = {}
        for company in companies:
            self.create(company)

    def get(self, company_id: UUID) -> Optional[Company]:
        company = self._companies.get(company_id)
        return company.model_copy() if company else None

    def find_by_name(self, name: str) -> Optional[Company]:
        wanted = name.strip().lower()
        for company in self._companies.values():
            if company.name.lower() == wanted:
                return company.model_copy()
        return None

    def find_by_ats_url(self, ats_url: str) -> Optional[Company]:
        for company in self._companies.values():
            if company.ats_url == ats_url:
                return company.model_copy()
        return None

    def slug_exists(self, slug: str) -> bool:
        return any(c.slug == slug for c in self._companies.values())

    def create(self, company: Company) -> Company:
        if self.slug_exists(company.slug):
            raise RepositoryError(f"duplicate company slug: {company.slug}")
        self._companies[company.id] = company.model_copy()
        return company.model_copy()

    def update(self, company_id: UUID, fields: Dict[str, Any]) -> Company:
        current = self._companies.get(company_id)
        if current is None:
            raise RepositoryError(f"unknown company: {company_id}")
        updated = current.model_copy(update={**fields, "updated_at": utcnow()})
        self._companies[company_id] = updated
        return updated.model_copy()

    def list_with_ats(self) -> List[Company]:
        return [c.model_copy() for c in self._companies.values() if c.ats_provider and c.ats_url]


class InMemoryJobRepository(JobRepository):

    def __init__(self):
        self._jobs: Dict[UUID, Job] = {}
        self._keys: Dict[Tuple[str, str], UUID] = {}

    def all(self) -> List[Job]:
        return [job.model_copy() for job in self._jobs.values()]

    def find_by_key(self, source: str, external_id: str) -> Optional[Job]:
        job_id = self._keys.get((source, external_id))
        return self._jobs[job_id].model_copy() if job_id else None

    def insert(self, job: Job) -> Job:
        key = (job.source, job.external_id)
        if key in self._keys:
            raise RepositoryError(f"duplicate job key: {key}")
        self._jobs[job.id] = job.model_copy()
        self._keys[key] = job.id
        return job.model_copy()

    def update(self, job_id: UUID, fields: Dict[str, Any]) -> Job:
        current = self._jobs.get(job_id)
        if current is None:
            raise RepositoryError(f"unknown job: {job_id}")
        if current.is_expired and fields.get("is_expired") is False:
            raise RepositoryError("expired jobs cannot be revived")
        updated = current.model_copy(update=fields)
        self._jobs[job_id] = updated
        return updated.model_copy()

    def expire_stale(self, cutoff: datetime, source_prefix: str = "ats:") -> int:
        count = 0
        for job in self._jobs.values():
            if not job.is_expired and job.source.startswith(source_prefix) and job.updated_at < cutoff:
                job.is_expired = True
                count += 1
        return count

    def expire_missing(self, source: str, company_id: UUID, seen_external_ids: Iterable[str]) -> int:
        seen = set(seen_external_ids)
        count = 0
        for job in self._jobs.values():
            if (
                not job.is_expired
                and job.source == source
                and job.company_id == company_id
                and job.external_id not in seen
            ):
                job.is_expired = True
                count += 1
        return count

    def list_unenriched(self, limit: int) -> List[Job]:
        rows = [j for j in self._jobs.values() if not j.is_expired and j.ai_one_liner is None]
        rows.sort(key=lambda j: j.created_at)
        return [j.model_copy() for j in rows[:limit]]

    def list_active(self, limit: int) -> List[Job]:
        rows = [j for j in self._jobs.values() if not j.is_expired]
        rows.sort(key=lambda j: j.updated_at, reverse=True)
        return [j.model_copy() for j in rows[:limit]]


class InMemoryAiRunLedgerRepository(AiRunLedgerRepository):

    def __init__(self):
        self._days: Dict[date, AiRunLedger] = {}

    def get(self, day: date) -> Optional[AiRunLedger]:
        ledger = self._days.get(day)
        return ledger.model_copy() if ledger else None

    def increment(self, day: date, jobs: int = 0, tokens_in: int = 0, tokens_out: int = 0) -> AiRunLedger:
        if min(jobs, tokens_in, tokens_out) < 0:
            raise RepositoryError("ledger counters only increase")
        ledger = self._days.setdefault(day, AiRunLedger(day=day))
        ledger.jobs_processed += jobs
        ledger.tokens_in += tokens_in
        ledger.tokens_out += tokens_out
        ledger.updated_at = utcnow()
        return ledger.model_copy()
