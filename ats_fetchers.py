"""
ATS adapters.

One fetcher per provider, each translating the provider's wire format
into ``ScrapedJob``:
- Greenhouse: boards API JSON, full HTML content
- Lever: paginated postings JSON
- Ashby: public posting API, else board HTML (JSON-LD first, then job
  anchors enriched from their detail pages)
- Workday: stub, no public API

A single bad record is logged and omitted. A board that cannot be fetched
after retries raises ``AtsFetchError`` so the caller can count the company
as failed instead of under-reporting its jobs. Fetchers return
``FetchedJobs``, which also says whether the whole board was seen.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urljoin

import aiohttp
from bs4 import BeautifulSoup
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from ats_detectors import extract_ashby_slug, extract_greenhouse_slug, extract_lever_slug
from config import (
    ATS_MAX_RETRIES,
    ATS_REQUEST_TIMEOUT,
    ATS_RETRY_BACKOFF,
    LEVER_MAX_JOBS,
    LEVER_PAGE_SIZE,
    USER_AGENT,
)
from errors import AtsBlockedError, AtsFetchError, TransientHttpError
from models import SalaryInterval, ScrapedJob
from salary import build_lever_salary_text, parse_greenhouse_pay_range

logger = logging.getLogger(__name__)

GREENHOUSE_API = "https://boards-api.greenhouse.io/v1/boards"
LEVER_API = "https://api.lever.co/v0/postings"
ASHBY_BOARD = "https://jobs.ashbyhq.com"
ASHBY_POSTING_API = "https://api.ashbyhq.com/posting-api/job-board"

RETRYABLE_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, TransientHttpError)

# Ashby compensation values are published in hundredths
ASHBY_COMPENSATION_DIVISOR = 100
ASHBY_DETAIL_CONCURRENCY = 6

UNIT_TEXT_INTERVALS = {
    "HOUR": SalaryInterval.HOUR,
    "DAY": SalaryInterval.DAY,
    "WEEK": SalaryInterval.WEEK,
    "MONTH": SalaryInterval.MONTH,
    "YEAR": SalaryInterval.YEAR,
}


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 strings and epoch milliseconds to aware UTC datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def interval_from_text(value: Optional[str]) -> Optional[SalaryInterval]:
    if not value:
        return None
    upper = str(value).upper()
    for key, interval in UNIT_TEXT_INTERVALS.items():
        if key in upper:
            return interval
    return None


def _mentions_remote(*values: Optional[str]) -> Optional[bool]:
    text = " ".join(v for v in values if v).lower()
    if any(word in text for word in ("remote", "anywhere", "work from home")):
        return True
    return None


class FetchedJobs(list):
    """
    Jobs from one board fetch.

    ``truncated`` is set when a page cap stopped the fetch early and
    ``omitted`` counts records that could not be mapped. Only a complete
    fetch may be used to expire postings that were not seen.
    """

    def __init__(self, jobs: Iterable[ScrapedJob] = (), truncated: bool = False, omitted: int = 0):
        super().__init__(jobs)
        self.truncated = truncated
        self.omitted = omitted

    @property
    def complete(self) -> bool:
        return not self.truncated and self.omitted == 0


@asynccontextmanager
async def _session_scope(session: Optional[aiohttp.ClientSession]):
    if session is not None:
        yield session
        return
    async with aiohttp.ClientSession(headers={"User-Agent": USER_AGENT}) as owned:
        yield owned


class BaseAtsFetcher:
    """Shared HTTP plumbing: timeout, bounded retries, body checks."""

    provider = "unknown"
    # Retry 4xx as well as 429/5xx
    retry_client_errors = False

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        retry_wait=None,
        attempts: int = ATS_MAX_RETRIES,
        timeout: float = ATS_REQUEST_TIMEOUT,
    ):
        self.session = session
        # 500 ms x attempt
        self.retry_wait = retry_wait or wait_incrementing(start=ATS_RETRY_BACKOFF, increment=ATS_RETRY_BACKOFF)
        self.attempts = attempts
        self.timeout = timeout
        self.truncated = False
        self.omitted = 0
        self.logger = logging.getLogger(self.__class__.__name__)

    async def fetch(self, ats_url: str) -> FetchedJobs:
        self.truncated = False
        self.omitted = 0
        async with _session_scope(self.session) as session:
            jobs = await self._fetch(session, ats_url)
        if self.truncated or self.omitted:
            self.logger.warning(
                "Partial %s fetch", self.provider,
                extra={"ats_url": ats_url, "truncated": self.truncated, "omitted": self.omitted},
            )
        return FetchedJobs(jobs, truncated=self.truncated, omitted=self.omitted)

    async def _fetch(self, session: aiohttp.ClientSession, ats_url: str) -> List[ScrapedJob]:
        raise NotImplementedError

    def _log_retry(self, retry_state):
        self.logger.warning(
            "Retrying %s request (attempt %d/%d): %s",
            self.provider,
            retry_state.attempt_number,
            self.attempts,
            retry_state.outcome.exception(),
        )

    async def _request(self, session: aiohttp.ClientSession, url: str, expect_json: bool):
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.attempts),
                wait=self.retry_wait,
                retry=retry_if_exception_type(RETRYABLE_ERRORS),
                before_sleep=self._log_retry,
                reraise=True,
            ):
                with attempt:
                    return await self._get_once(session, url, expect_json)
        except RETRYABLE_ERRORS as e:
            raise AtsFetchError(self.provider, url, str(e) or e.__class__.__name__) from e

    async def _get_once(self, session: aiohttp.ClientSession, url: str, expect_json: bool):
        headers = {"Accept": "application/json" if expect_json else "text/html,application/xhtml+xml"}
        async with session.get(url, headers=headers, timeout=aiohttp.ClientTimeout(total=self.timeout)) as response:
            if response.status == 429 or response.status >= 500 or (
                self.retry_client_errors and response.status >= 400
            ):
                raise TransientHttpError(response.status, url)
            if response.status >= 400:
                raise AtsFetchError(self.provider, url, f"HTTP {response.status}")
            body = await response.text()

            if not expect_json:
                return body

            content_type = (response.headers.get("Content-Type") or "").lower()
            if "html" in content_type or body.lstrip().startswith("<"):
                raise AtsBlockedError(self.provider, url, "received HTML instead of JSON")
            try:
                return json.loads(body)
            except ValueError as e:
                raise AtsFetchError(self.provider, url, f"invalid JSON: {e}") from e

    def _map_all(self, records: Iterable[Any], ats_url: str, mapper=None) -> List[ScrapedJob]:
        mapper = mapper or self._map_record
        jobs = []
        for record in records:
            try:
                jobs.append(mapper(record, ats_url))
            except Exception as e:
                self.omitted += 1
                self.logger.warning("Skipping malformed %s record from %s: %r", self.provider, ats_url, e)
        return jobs

    def _map_record(self, record: Any, ats_url: str) -> ScrapedJob:
        raise NotImplementedError


class GreenhouseFetcher(BaseAtsFetcher):
    provider = "greenhouse"
    retry_client_errors = True

    async def _fetch(self, session: aiohttp.ClientSession, ats_url: str) -> List[ScrapedJob]:
        slug = extract_greenhouse_slug(ats_url)
        if not slug:
            raise AtsFetchError(self.provider, ats_url, "no board slug in URL")

        url = f"{GREENHOUSE_API}/{slug}/jobs?content=true"
        payload = await self._request(session, url, expect_json=True)
        if not isinstance(payload, dict) or not isinstance(payload.get("jobs"), list):
            raise AtsFetchError(self.provider, url, "response has no jobs array")

        jobs = self._map_all(payload["jobs"], ats_url)
        self.logger.info(
            "Fetched Greenhouse board",
            extra={"slug": slug, "fetched": len(payload["jobs"]), "kept": len(jobs)},
        )
        return jobs

    def _map_record(self, record: Dict[str, Any], ats_url: str) -> ScrapedJob:
        content = record.get("content")
        location = (record.get("location") or {}).get("name")
        departments = record.get("departments") or []

        job = ScrapedJob(
            external_id=str(record["id"]),
            title=record["title"],
            url=record.get("absolute_url"),
            apply_url=record.get("absolute_url"),
            location_text=location,
            is_remote_hint=_mentions_remote(location),
            description_html=content,
            department=departments[0].get("name") if departments else None,
            posted_at=parse_timestamp(record.get("first_published_at") or record.get("first_published")),
            updated_at=parse_timestamp(record.get("updated_at")),
            raw=record,
        )

        pay_range = parse_greenhouse_pay_range(content)
        if pay_range is not None:
            job.salary_min = pay_range.min
            job.salary_max = pay_range.max
            job.salary_currency = pay_range.currency
            job.salary_interval = pay_range.interval
        return job


class LeverFetcher(BaseAtsFetcher):
    provider = "lever"

    def __init__(self, *args, page_size: int = LEVER_PAGE_SIZE, max_jobs: int = LEVER_MAX_JOBS, **kwargs):
        super().__init__(*args, **kwargs)
        self.page_size = page_size
        self.max_jobs = max_jobs

    async def _fetch(self, session: aiohttp.ClientSession, ats_url: str) -> List[ScrapedJob]:
        slug = extract_lever_slug(ats_url)
        if not slug:
            raise AtsFetchError(self.provider, ats_url, "no board slug in URL")

        jobs: List[ScrapedJob] = []
        seen = set()
        skip = 0
        pages = 0

        while len(jobs) < self.max_jobs:
            url = f"{LEVER_API}/{slug}?mode=json&skip={skip}&limit={self.page_size}"
            page = await self._request(session, url, expect_json=True)
            if not isinstance(page, list):
                raise AtsFetchError(self.provider, url, "expected a JSON array")
            pages += 1

            new_ids = 0
            mapped = self._map_all(page, ats_url)
            for index, job in enumerate(mapped):
                if job.external_id in seen:
                    continue
                seen.add(job.external_id)
                jobs.append(job)
                new_ids += 1
                if len(jobs) >= self.max_jobs:
                    # More postings may exist past the cap
                    self.truncated = index < len(mapped) - 1 or len(page) >= self.page_size
                    break

            # Some boards ignore skip/limit and return the same page forever
            if len(page) < self.page_size or new_ids == 0:
                break
            skip += self.page_size

        self.logger.info(
            "Fetched Lever board",
            extra={"slug": slug, "pages": pages, "kept": len(jobs), "truncated": self.truncated},
        )
        return jobs

    def _map_record(self, record: Dict[str, Any], ats_url: str) -> ScrapedJob:
        categories = record.get("categories") or {}
        location = categories.get("location")
        if not location and categories.get("allLocations"):
            location = " | ".join(categories["allLocations"])

        description = record.get("description") or record.get("descriptionPlain") or ""
        for section in record.get("lists") or []:
            description += f"<h3>{section.get('text', '')}</h3><ul>{section.get('content', '')}</ul>"
        if record.get("additional"):
            description += record["additional"]

        job = ScrapedJob(
            external_id=str(record["id"]),
            title=record["text"],
            url=record.get("hostedUrl"),
            apply_url=record.get("applyUrl") or record.get("hostedUrl"),
            location_text=location,
            is_remote_hint=True if record.get("workplaceType") == "remote" else _mentions_remote(location),
            salary_text=build_lever_salary_text(record),
            description_html=description or None,
            employment_type=categories.get("commitment"),
            department=categories.get("team") or categories.get("department"),
            posted_at=parse_timestamp(record.get("createdAt")),
            updated_at=parse_timestamp(record.get("updatedAt") or record.get("createdAt")),
            raw=record,
        )

        salary_range = record.get("salaryRange")
        if isinstance(salary_range, dict) and (salary_range.get("min") or salary_range.get("max")):
            job.salary_min = salary_range.get("min")
            job.salary_max = salary_range.get("max")
            job.salary_currency = salary_range.get("currency")
            job.salary_interval = interval_from_text(salary_range.get("interval"))
        return job


class AshbyFetcher(BaseAtsFetcher):
    provider = "ashby"

    def __init__(self, *args, detail_concurrency: int = ASHBY_DETAIL_CONCURRENCY, **kwargs):
        super().__init__(*args, **kwargs)
        self.detail_concurrency = detail_concurrency

    async def _fetch(self, session: aiohttp.ClientSession, ats_url: str) -> List[ScrapedJob]:
        slug = extract_ashby_slug(ats_url)
        if not slug:
            raise AtsFetchError(self.provider, ats_url, "no board slug in URL")

        board_url = f"{ASHBY_BOARD}/{slug}"
        postings = await self._api_postings(session, slug)
        if postings:
            jobs = self._map_all(postings, board_url, mapper=self._map_api_record)
            source = "api"
        else:
            html = await self._request(session, board_url, expect_json=False)
            soup = BeautifulSoup(html, "lxml")
            ld_postings = list(self._json_ld_postings(soup))
            if ld_postings:
                jobs = self._map_all(ld_postings, board_url)
                source = "json-ld"
            else:
                jobs = await self._map_anchors(session, soup, board_url)
                source = "anchors"

        self.logger.info("Fetched Ashby board", extra={"slug": slug, "via": source, "kept": len(jobs)})
        return jobs

    async def _api_postings(self, session: aiohttp.ClientSession, slug: str) -> List[Dict[str, Any]]:
        """Postings from the public posting API, or [] when it has nothing for this board."""
        url = f"{ASHBY_POSTING_API}/{slug}"
        try:
            payload = await self._request(session, url, expect_json=True)
        except AtsFetchError as e:
            self.logger.info("Ashby posting API unavailable for %s, falling back to board HTML: %s", slug, e)
            return []
        if isinstance(payload, list):
            return payload
        if isinstance(payload, dict):
            for key in ("jobs", "jobPostings"):
                if isinstance(payload.get(key), list):
                    return payload[key]
        return []

    def _map_api_record(self, posting: Dict[str, Any], board_url: str) -> ScrapedJob:
        external_id = posting.get("id") or posting.get("jobId") or posting.get("slug")
        if not external_id:
            raise ValueError("posting without id")
        url = posting.get("jobUrl") or posting.get("url") or board_url
        location = posting.get("location") or posting.get("locationName")
        compensation = posting.get("compensation") or {}

        return ScrapedJob(
            external_id=str(external_id),
            title=posting["title"],
            url=url,
            apply_url=posting.get("applyUrl") or url,
            location_text=location,
            is_remote_hint=True if posting.get("isRemote") is True else _mentions_remote(location),
            salary_text=compensation.get("compensationTierSummary"),
            description_html=posting.get("descriptionHtml") or posting.get("description"),
            employment_type=posting.get("employmentType"),
            department=posting.get("department") or posting.get("team"),
            posted_at=parse_timestamp(posting.get("publishedAt") or posting.get("datePosted")),
            updated_at=parse_timestamp(posting.get("updatedAt") or posting.get("publishedAt")),
            raw=posting,
        )

    def _json_ld_postings(self, soup: BeautifulSoup) -> Iterable[Dict[str, Any]]:
        for script in soup.find_all("script", type="application/ld+json"):
            try:
                data = json.loads(script.string or script.get_text() or "{}")
            except ValueError as e:
                self.logger.warning("Ignoring unparseable JSON-LD block: %s", e)
                continue
            if isinstance(data, dict):
                data = data.get("@graph", [data])
            for item in data if isinstance(data, list) else []:
                if isinstance(item, dict) and item.get("@type") == "JobPosting":
                    yield item

    def _map_record(self, posting: Dict[str, Any], board_url: str) -> ScrapedJob:
        identifier = posting.get("identifier")
        if isinstance(identifier, dict):
            identifier = identifier.get("value")
        url = posting.get("url")
        external_id = identifier or (url.rstrip("/").split("/")[-1] if url else None)
        if not external_id:
            raise ValueError("JobPosting without identifier or url")

        job_location = posting.get("jobLocation") or {}
        if isinstance(job_location, list):
            job_location = job_location[0] if job_location else {}
        if isinstance(job_location, str):
            job_location = {"name": job_location}
        address = job_location.get("address")
        if not isinstance(address, dict):
            address = {}
        location_parts = [
            address.get("addressLocality"),
            address.get("addressRegion"),
            address.get("addressCountry") if isinstance(address.get("addressCountry"), str) else None,
        ]
        location = ", ".join(p for p in location_parts if p) or job_location.get("name")
        remote = True if posting.get("jobLocationType") == "TELECOMMUTE" else _mentions_remote(location)

        job = ScrapedJob(
            external_id=str(external_id),
            title=posting["title"],
            url=url or board_url,
            apply_url=url,
            location_text=location,
            is_remote_hint=remote,
            description_html=posting.get("description"),
            employment_type=posting.get("employmentType") if isinstance(posting.get("employmentType"), str) else None,
            posted_at=parse_timestamp(posting.get("datePosted")),
            updated_at=parse_timestamp(posting.get("dateModified") or posting.get("datePosted")),
            raw=posting,
        )
        self._apply_salary(job, posting)
        return job

    @staticmethod
    def _apply_salary(job: ScrapedJob, posting: Dict[str, Any]):
        salary = posting.get("baseSalary")
        if not isinstance(salary, dict):
            return
        value = salary.get("value") if isinstance(salary.get("value"), dict) else salary
        low = value.get("minValue")
        high = value.get("maxValue")
        if low is None and high is None:
            return
        job.salary_min = float(low) / ASHBY_COMPENSATION_DIVISOR if low is not None else None
        job.salary_max = float(high) / ASHBY_COMPENSATION_DIVISOR if high is not None else None
        job.salary_currency = salary.get("currency") or value.get("currency")
        job.salary_interval = interval_from_text(value.get("unitText") or salary.get("unitText"))

    async def _map_anchors(
        self, session: aiohttp.ClientSession, soup: BeautifulSoup, board_url: str
    ) -> List[ScrapedJob]:
        jobs = []
        seen = set()
        for anchor in soup.select("a[data-job-id]"):
            job_id = anchor.get("data-job-id")
            href = anchor.get("href")
            title_el = anchor.select_one("[data-job-title]") or anchor.find(["h1", "h2", "h3"])
            title = (title_el or anchor).get_text(" ", strip=True)
            if not job_id or not title:
                self.omitted += 1
                self.logger.warning("Skipping Ashby job anchor without id or title on %s", board_url)
                continue
            if job_id in seen:
                self.logger.debug("Skipping duplicate Ashby job anchor %s on %s", job_id, board_url)
                continue
            seen.add(job_id)

            location_el = anchor.select_one('[data-job-location], [class*="location"]')
            comp_el = anchor.select_one('[data-job-compensation], [class*="compensation"], [class*="salary"]')
            url = urljoin(board_url + "/", href) if href else board_url

            jobs.append(ScrapedJob(
                external_id=str(job_id),
                title=title,
                url=url,
                apply_url=url,
                location_text=location_el.get_text(" ", strip=True) if location_el else None,
                is_remote_hint=_mentions_remote(location_el.get_text() if location_el else None),
                salary_text=comp_el.get_text(" ", strip=True) if comp_el else None,
                raw={"source": "anchor", "href": href},
            ))

        semaphore = asyncio.Semaphore(max(1, self.detail_concurrency))
        return list(await asyncio.gather(*(
            self._with_detail(session, job, semaphore) if job.url != board_url else self._unchanged(job)
            for job in jobs
        )))

    @staticmethod
    async def _unchanged(job: ScrapedJob) -> ScrapedJob:
        return job

    async def _with_detail(
        self, session: aiohttp.ClientSession, job: ScrapedJob, semaphore: asyncio.Semaphore
    ) -> ScrapedJob:
        """Fill description, dates and salary from the job's own page; board data is kept on failure."""
        async with semaphore:
            try:
                html = await self._request(session, job.url, expect_json=False)
            except AtsFetchError as e:
                self.logger.warning("Ashby job page unavailable, keeping board data: %s", e)
                return job
        try:
            self._apply_detail_page(job, html)
        except Exception as e:
            self.logger.warning("Could not read Ashby job page %s: %r", job.url, e)
        return job

    def _apply_detail_page(self, job: ScrapedJob, html: str):
        soup = BeautifulSoup(html, "lxml")
        posting = next(iter(self._json_ld_postings(soup)), None)
        if posting is not None:
            job.description_html = posting.get("description") or None
            if isinstance(posting.get("employmentType"), str):
                job.employment_type = posting["employmentType"]
            job.posted_at = parse_timestamp(posting.get("datePosted"))
            job.updated_at = parse_timestamp(posting.get("dateModified") or posting.get("datePosted"))
            self._apply_salary(job, posting)

        if not job.description_html:
            container = soup.select_one('.job-description, [class*="job-description"], [class*="description"]')
            if container is not None:
                job.description_html = container.decode_contents().strip() or None


class WorkdayFetcher(BaseAtsFetcher):
    """Workday has no public listing API; reported as unsupported rather than empty."""

    provider = "workday"

    async def fetch(self, ats_url: str) -> FetchedJobs:
        self.logger.warning("Workday scraping is not implemented; skipping %s", ats_url)
        return FetchedJobs()


FETCHERS = {
    "greenhouse": GreenhouseFetcher,
    "lever": LeverFetcher,
    "ashby": AshbyFetcher,
    "workday": WorkdayFetcher,
}


async def scrape_company_ats_jobs(
    provider: Optional[str],
    ats_url: Optional[str],
    session: Optional[aiohttp.ClientSession] = None,
    retry_wait=None,
) -> FetchedJobs:
    """
    Dispatch to the adapter for ``provider``.

    Args:
        provider: ATS provider id
        ats_url: Board URL for the company
        session: Optional shared aiohttp session
        retry_wait: Optional tenacity wait strategy

    Returns:
        Scraped jobs; empty for a missing or unsupported provider or URL

    Raises:
        AtsFetchError: The board could not be fetched
    """
    if not provider or not ats_url or not ats_url.strip():
        return FetchedJobs()
    fetcher_cls = FETCHERS.get(provider.lower())
    if fetcher_cls is None:
        logger.warning(f"Unsupported ATS provider: {provider}")
        return FetchedJobs()
    return await fetcher_cls(session=session, retry_wait=retry_wait).fetch(ats_url.strip())
