"""
Ingestion engine.

Merges ``ScrapedJob`` records into the canonical ``jobs`` table:
- one row per (source, external_id); re-ingesting identical input only
  touches timestamps, a changed field overwrites the stored value
- location and salary are normalized on the way in
- expiry is one-directional: expired rows are never revived

Sources are ``ats:<provider>`` for ATS boards and ``board:<name>`` for
aggregator boards. Only ATS sources take part in the staleness sweep.
"""

import asyncio
import hashlib
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional
from uuid import UUID

from ats_fetchers import scrape_company_ats_jobs
from company_resolver import CompanyResolver
from config import ATS_SCRAPE_CONCURRENCY, JOB_EXPIRY_DAYS
from db_models import Company, Job, utcnow
from models import IngestResult, IngestStats, SalarySource, ScrapedJob
from normalization import LocationNormalizer, coerce_remote_flag, html_to_text
from repositories import JobRepository
from salary import format_salary_range, normalize_salary, normalize_salary_text

logger = logging.getLogger(__name__)

ATS_SOURCE_PREFIX = "ats:"
BOARD_SOURCE_PREFIX = "board:"

# Providers whose fetch result is never authoritative for missing-posting expiry
NON_AUTHORITATIVE_PROVIDERS = {"workday"}


def ats_source(provider: str) -> str:
    return f"{ATS_SOURCE_PREFIX}{provider.lower()}"


def board_source(board: str) -> str:
    return f"{BOARD_SOURCE_PREFIX}{board.lower()}"


def calculate_job_hash(source: str, external_id: str) -> str:
    """
    Stable hash of a job's natural key.

    Args:
        source: Source id
        external_id: Provider-scoped posting id

    Returns:
        SHA256 hash string
    """
    data = f"{source}:{external_id}"
    return hashlib.sha256(data.encode()).hexdigest()


class BoardListing(NamedTuple):
    """One posting from an aggregator board, before company resolution."""
    company_name: str
    job: ScrapedJob
    website_url: Optional[str] = None
    linkedin_url: Optional[str] = None


class ScrapeOutcome(NamedTuple):
    stats: IngestStats
    failed_sources: List[str]


class IngestionEngine:
    """Idempotent upsert of scraped postings into the canonical catalog."""

    def __init__(
        self,
        jobs: JobRepository,
        resolver: CompanyResolver,
        location_normalizer: Optional[LocationNormalizer] = None,
        fetch: Callable = scrape_company_ats_jobs,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.jobs = jobs
        self.resolver = resolver
        self.locations = location_normalizer or LocationNormalizer()
        self.fetch = fetch
        self.clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)

    # ==================== NORMALIZATION ====================

    def build_job_fields(self, scraped: ScrapedJob, company: Company) -> Dict[str, Any]:
        """Every content column derived from one scraped posting."""
        location = self.locations.normalize(scraped.location_text)

        fields: Dict[str, Any] = {
            "company_id": company.id,
            "title": scraped.title.strip(),
            "url": scraped.url,
            "apply_url": scraped.apply_url or scraped.url,
            "employment_type": scraped.employment_type,
            "department": scraped.department,
            "description_html": scraped.description_html,
            "location_raw": scraped.location_text,
            "city": location.city,
            "region": location.region,
            "country": location.country,
            "remote_kind": location.kind,
            "is_remote": coerce_remote_flag(scraped.is_remote_hint, location),
            "remote_region": location.remote_region,
            "is_multi_location": location.is_multi_location,
            "posted_at": scraped.posted_at,
        }
        fields.update(self._salary_fields(scraped, location.country))
        return fields

    def _salary_fields(self, scraped: ScrapedJob, country: Optional[str]) -> Dict[str, Any]:
        result = None
        salary_raw = scraped.salary_text

        if scraped.salary_min is not None or scraped.salary_max is not None:
            result = normalize_salary(
                scraped.salary_min,
                scraped.salary_max,
                scraped.salary_currency,
                scraped.salary_interval,
                source=SalarySource.ATS,
            )
            salary_raw = salary_raw or format_salary_range(
                scraped.salary_min, scraped.salary_max, scraped.salary_currency
            )
        elif scraped.salary_text:
            result = normalize_salary_text(scraped.salary_text, SalarySource.SALARY_RAW, country)
        elif scraped.description_html:
            result = normalize_salary_text(html_to_text(scraped.description_html), SalarySource.DESCRIPTION, country)

        if result is None:
            return {
                "salary_raw": salary_raw,
                "salary_min": None,
                "salary_max": None,
                "salary_currency": None,
                "salary_interval": None,
                "min_annual": None,
                "max_annual": None,
                "salary_confidence": None,
                "salary_parse_reason": None,
                "is_high_salary": False,
            }

        return {
            "salary_raw": salary_raw,
            "salary_min": result.min,
            "salary_max": result.max,
            "salary_currency": result.currency,
            "salary_interval": result.interval,
            "min_annual": result.min_annual,
            "max_annual": result.max_annual,
            "salary_confidence": result.confidence,
            "salary_parse_reason": result.reason,
            "is_high_salary": result.is_high_salary,
        }

    # ==================== UPSERT ====================

    def ingest_job(self, scraped: ScrapedJob, company: Company, source: str) -> IngestResult:
        """
        Upsert one posting keyed by (source, external_id).

        Args:
            scraped: Posting from an adapter or board
            company: Resolved owning company
            source: Source id (``ats:<provider>`` / ``board:<name>``)

        Returns:
            IngestResult with status created, updated, unchanged or skipped
        """
        external_id = (scraped.external_id or "").strip()
        if not external_id or not scraped.title.strip():
            return IngestResult(status="skipped", reason="missing_identity")

        now = self.clock()
        fields = self.build_job_fields(scraped, company)
        existing = self.jobs.find_by_key(source, external_id)

        if existing is None:
            job = Job(
                source=source,
                external_id=external_id,
                hash=calculate_job_hash(source, external_id),
                last_seen_at=now,
                created_at=now,
                updated_at=now,
                **fields,
            )
            stored = self.jobs.insert(job)
            return IngestResult(status="created", job_id=stored.id)

        if existing.is_expired:
            return IngestResult(status="skipped", job_id=existing.id, reason="expired")

        changed = {key: value for key, value in fields.items() if getattr(existing, key) != value}
        self.jobs.update(existing.id, {**changed, "updated_at": now, "last_seen_at": now})
        if changed:
            self.logger.debug("Job changed", extra={"job_id": str(existing.id), "fields": sorted(changed)})
            return IngestResult(status="updated", job_id=existing.id)
        return IngestResult(status="unchanged", job_id=existing.id)

    def ingest_company_jobs(
        self,
        company: Company,
        scraped_jobs: Iterable[ScrapedJob],
        source: Optional[str] = None,
    ) -> IngestStats:
        """Ingest a batch for one company; one bad posting never aborts the batch."""
        source = source or ats_source(company.ats_provider or "unknown")
        stats = IngestStats()
        for scraped in scraped_jobs:
            try:
                stats.record(self.ingest_job(scraped, company, source))
            except Exception as e:
                stats.errors += 1
                self.logger.error(
                    "Failed to ingest job",
                    extra={"source": source, "external_id": scraped.external_id, "error": str(e)},
                )

        self.logger.info(
            "Ingested company batch",
            extra={"company": company.slug, "source": source, **stats.log_fields()},
        )
        return stats

    async def scrape_and_ingest_company(self, company: Company, session=None) -> IngestStats:
        """
        Fetch one company's ATS board, ingest it and expire postings that vanished.

        Fetch failures propagate so the caller can count the company as failed.
        """
        provider = (company.ats_provider or "").lower()
        source = ats_source(provider)
        scraped_jobs = await self.fetch(provider, company.ats_url, session=session)

        stats = self.ingest_company_jobs(company, scraped_jobs, source)
        # An empty fetch proves nothing, so it never expires anything
        if not scraped_jobs or provider in NON_AUTHORITATIVE_PROVIDERS:
            return stats
        # A capped or lossy fetch cannot tell a vanished posting from an unseen one
        if not getattr(scraped_jobs, "complete", True):
            self.logger.info(
                "Partial fetch, not expiring missing postings",
                extra={"company": company.slug, "source": source, "seen": len(scraped_jobs)},
            )
            return stats
        stats.expired = self.mark_jobs_expired_by_source(
            source, company.id, [job.external_id for job in scraped_jobs]
        )
        return stats

    async def scrape_companies(
        self,
        companies: List[Company],
        concurrency: int = ATS_SCRAPE_CONCURRENCY,
        session=None,
    ) -> ScrapeOutcome:
        """
        Scrape many companies with bounded parallelism.

        A failing company is logged and listed in ``failed_sources``; its
        siblings keep going.
        """
        semaphore = asyncio.Semaphore(max(1, concurrency))
        total = IngestStats()
        failed: List[str] = []

        async def run_one(company: Company):
            async with semaphore:
                try:
                    return await self.scrape_and_ingest_company(company, session=session)
                except Exception as e:
                    self.logger.error(
                        "Company scrape failed",
                        extra={"company": company.slug, "ats_url": company.ats_url, "error": str(e)},
                    )
                    failed.append(f"{company.ats_provider}:{company.slug}")
                    return None

        for stats in await asyncio.gather(*(run_one(c) for c in companies)):
            if stats is not None:
                total = total.merge(stats)
        return ScrapeOutcome(total, sorted(failed))

    def ingest_board_job(
        self,
        raw_company_name: str,
        board: str,
        scraped: ScrapedJob,
        website_url: Optional[str] = None,
        linkedin_url: Optional[str] = None,
    ) -> IngestResult:
        """Resolve the company behind a board posting, then upsert it."""
        source = board_source(board)
        company = self.resolver.resolve(
            raw_company_name,
            source=source,
            website_url=website_url,
            apply_url=scraped.apply_url or scraped.url,
            linkedin_url=linkedin_url,
        )
        if company is None:
            return IngestResult(status="skipped", reason="rejected_company")
        return self.ingest_job(scraped, company, source)

    def ingest_board_listings(self, board: str, listings: Iterable[BoardListing]) -> IngestStats:
        stats = IngestStats()
        for listing in listings:
            try:
                stats.record(
                    self.ingest_board_job(
                        listing.company_name,
                        board,
                        listing.job,
                        website_url=listing.website_url,
                        linkedin_url=listing.linkedin_url,
                    )
                )
            except Exception as e:
                stats.errors += 1
                self.logger.error("Failed to ingest board job", extra={"board": board, "error": str(e)})
        self.logger.info("Ingested board batch", extra={"board": board, **stats.log_fields()})
        return stats

    # ==================== EXPIRY ====================

    def run_expiry_cycle(self, now: Optional[datetime] = None) -> int:
        """
        Expire ATS-sourced rows not updated within the freshness window.

        Returns:
            Number of rows newly expired
        """
        now = now or self.clock()
        cutoff = now - timedelta(days=JOB_EXPIRY_DAYS)
        expired = self.jobs.expire_stale(cutoff, ATS_SOURCE_PREFIX)
        self.logger.info("Expiry cycle finished", extra={"expired": expired, "cutoff": cutoff.isoformat()})
        return expired

    def mark_jobs_expired_by_source(self, source: str, company_id: UUID, seen_external_ids: Iterable[str]) -> int:
        expired = self.jobs.expire_missing(source, company_id, seen_external_ids)
        if expired:
            self.logger.info("Expired missing postings", extra={"source": source, "expired": expired})
        return expired
