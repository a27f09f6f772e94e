"""
AI enrichment batch.

Picks canonical jobs without a one-liner, asks an OpenAI-compatible
chat-completion endpoint for a one-liner, a snippet and 2-4 bullets, and
writes them back. Spend is bounded by the daily ``AiRunLedger``: the budget
is re-checked before every job and the run stops cleanly once any cap is
reached, leaving the rest for the next UTC day.
"""

import json
import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional

import openai
from openai import OpenAI
from pydantic import BaseModel, ValidationError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential, wait_random

from config import (
    AI_API_KEY,
    AI_BASE_URL,
    AI_COST_IN_USD_PER_MILLION,
    AI_COST_OUT_USD_PER_MILLION,
    AI_ENRICH_MAX_DAILY_JOBS,
    AI_ENRICH_MAX_DAILY_TOKENS_TOTAL,
    AI_ENRICH_MAX_DAILY_USD,
    AI_ENRICH_MAX_JOBS_PER_RUN,
    AI_ENRICH_MAX_OUTPUT_TOKENS,
    AI_ENRICH_MAX_RETRIES,
    AI_ENRICH_MODEL,
    AI_REQUEST_TIMEOUT,
)
from db_models import Job, utcnow
from errors import InvalidEnrichmentOutput
from models import EnrichmentOutput
from normalization import html_to_text
from repositories import AiRunLedgerRepository, CompanyRepository, JobRepository

logger = logging.getLogger(__name__)

SYSTEM_MSG = """You summarize job postings for a job board.
Return ONLY valid JSON with keys:
- oneLiner (10-180 chars; what the role does, no company name, no salary)
- snippet (20-300 chars; 1-2 sentences on scope and impact)
- bullets (array of 2-4 short strings; concrete responsibilities or requirements)
No extra text - JSON only.
"""

MAX_DESCRIPTION_CHARS = 4000

RETRYABLE_ERRORS = (
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
    InvalidEnrichmentOutput,
)


class EnrichmentRunSummary(BaseModel):
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    tokens_in: int = 0
    tokens_out: int = 0
    stopped_reason: Optional[str] = None


def build_user_prompt(job: Job, company_name: Optional[str] = None) -> str:
    description = html_to_text(job.description_html)[:MAX_DESCRIPTION_CHARS]
    location = job.location_raw or ("Remote" if job.is_remote else None)
    return json.dumps({
        "job": {
            "title": job.title,
            "company": company_name,
            "location": location,
            "employment_type": job.employment_type,
            "description": description,
        },
        "output_spec": {
            "oneLiner": "string 10-180 chars",
            "snippet": "string 20-300 chars",
            "bullets": "array of 2-4 strings",
        },
    }, ensure_ascii=False)


def parse_enrichment_output(content: Optional[str]) -> EnrichmentOutput:
    """
    Validate raw model output against the enrichment schema.

    Raises:
        InvalidEnrichmentOutput: Empty, not JSON, or out of bounds
    """
    text = (content or "").strip()
    if not text:
        raise InvalidEnrichmentOutput("empty completion")
    # tolerate fenced JSON
    if text.startswith("```"):
        text = text.strip("`")
        if text[:4].lower() == "json":
            text = text[4:].strip()
    try:
        data = json.loads(text)
    except ValueError as e:
        raise InvalidEnrichmentOutput(f"completion is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise InvalidEnrichmentOutput("completion is not a JSON object")
    try:
        return EnrichmentOutput.model_validate(data)
    except ValidationError as e:
        raise InvalidEnrichmentOutput(f"completion failed schema: {e.error_count()} errors") from e


class AiEnricher:
    """Runs one cost-bounded enrichment batch."""

    def __init__(
        self,
        jobs: JobRepository,
        ledger: AiRunLedgerRepository,
        companies: Optional[CompanyRepository] = None,
        client: Optional[OpenAI] = None,
        model: str = AI_ENRICH_MODEL,
        clock: Callable[[], datetime] = utcnow,
        retry_wait=None,
        attempts: int = AI_ENRICH_MAX_RETRIES,
        max_jobs_per_run: int = AI_ENRICH_MAX_JOBS_PER_RUN,
        max_daily_jobs: int = AI_ENRICH_MAX_DAILY_JOBS,
        max_daily_tokens: int = AI_ENRICH_MAX_DAILY_TOKENS_TOTAL,
        max_daily_usd: float = AI_ENRICH_MAX_DAILY_USD,
        max_output_tokens: int = AI_ENRICH_MAX_OUTPUT_TOKENS,
    ):
        self.jobs = jobs
        self.ledger = ledger
        self.companies = companies
        self._client = client
        self.model = model
        self.clock = clock
        # 0.5s, 1s, 2s ... capped, plus jitter
        self.retry_wait = retry_wait or (wait_exponential(multiplier=0.5, max=8) + wait_random(0, 0.25))
        self.attempts = attempts
        self.max_jobs_per_run = max_jobs_per_run
        self.max_daily_jobs = max_daily_jobs
        self.max_daily_tokens = max_daily_tokens
        self.max_daily_usd = max_daily_usd
        self.max_output_tokens = max_output_tokens
        self.run_tokens = [0, 0]
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            # tenacity owns retries
            self._client = OpenAI(
                api_key=AI_API_KEY,
                base_url=AI_BASE_URL,
                timeout=AI_REQUEST_TIMEOUT,
                max_retries=0,
            )
        return self._client

    def today(self) -> date:
        return self.clock().date()

    def budget_exhausted(self, attempted_this_run: int) -> Optional[str]:
        """Name of the first exhausted cap, or None when another job may run."""
        if attempted_this_run >= self.max_jobs_per_run:
            return "max_jobs_per_run"
        usage = self.ledger.get(self.today())
        if usage is None:
            return None
        if usage.tokens_total >= self.max_daily_tokens:
            return "max_daily_tokens"
        if usage.jobs_processed >= self.max_daily_jobs:
            return "max_daily_jobs"
        cost = usage.cost_usd(AI_COST_IN_USD_PER_MILLION, AI_COST_OUT_USD_PER_MILLION)
        if cost >= self.max_daily_usd:
            return "max_daily_usd"
        return None

    def _log_retry(self, retry_state):
        self.logger.warning(
            "Retrying enrichment call (attempt %d/%d): %s",
            retry_state.attempt_number,
            self.attempts,
            retry_state.outcome.exception(),
        )

    def enrich_job(self, job: Job, company_name: Optional[str] = None) -> EnrichmentOutput:
        """
        Generate enrichment for one job.

        Raises:
            InvalidEnrichmentOutput, openai.APIError: After all attempts fail
        """
        prompt = build_user_prompt(job, company_name)
        for attempt in Retrying(
            stop=stop_after_attempt(self.attempts),
            wait=self.retry_wait,
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=self._log_retry,
            reraise=True,
        ):
            with attempt:
                return self._complete(prompt)

    def _complete(self, prompt: str) -> EnrichmentOutput:
        resp = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_MSG},
                {"role": "user", "content": prompt},
            ],
            temperature=0.2,
            max_tokens=self.max_output_tokens,
            response_format={"type": "json_object"},
        )

        # Tokens are spent whether or not the output validates
        usage = getattr(resp, "usage", None)
        if usage is not None:
            tokens_in = usage.prompt_tokens or 0
            tokens_out = usage.completion_tokens or 0
            self.ledger.increment(self.today(), tokens_in=tokens_in, tokens_out=tokens_out)
            self.run_tokens[0] += tokens_in
            self.run_tokens[1] += tokens_out

        content = resp.choices[0].message.content if resp.choices else None
        return parse_enrichment_output(content)

    def _company_name(self, job: Job) -> Optional[str]:
        if self.companies is None:
            return None
        company = self.companies.get(job.company_id)
        return company.name if company else None

    def run(self) -> EnrichmentRunSummary:
        """Enrich un-enriched jobs until none are left or a cap is reached."""
        summary = EnrichmentRunSummary()
        self.run_tokens = [0, 0]

        if self._client is None and not AI_API_KEY:
            self.logger.warning("AI_API_KEY is not set; skipping enrichment")
            summary.stopped_reason = "not_configured"
            return summary

        candidates = self.jobs.list_unenriched(self.max_jobs_per_run)
        for index, job in enumerate(candidates):
            reason = self.budget_exhausted(summary.processed + summary.failed)
            if reason:
                summary.stopped_reason = reason
                summary.skipped = len(candidates) - index
                self.logger.info("Enrichment budget reached", extra={"cap": reason, "remaining": summary.skipped})
                break

            try:
                output = self.enrich_job(job, self._company_name(job))
            except (InvalidEnrichmentOutput, openai.APIError) as e:
                summary.failed += 1
                self.logger.error("Enrichment failed", extra={"job_id": str(job.id), "error": str(e)})
                continue

            self.jobs.update(job.id, self._enrichment_fields(output))
            self.ledger.increment(self.today(), jobs=1)
            summary.processed += 1

        summary.tokens_in, summary.tokens_out = self.run_tokens
        self.logger.info(
            "Enrichment run finished",
            extra={
                "processed": summary.processed,
                "failed": summary.failed,
                "skipped_jobs": summary.skipped,
                "stopped_reason": summary.stopped_reason,
            },
        )
        return summary

    def _enrichment_fields(self, output: EnrichmentOutput) -> Dict[str, Any]:
        return {
            "ai_one_liner": output.one_liner,
            "ai_snippet": output.snippet,
            "ai_summary_json": output.model_dump(by_alias=True),
            "ai_enriched_at": self.clock(),
        }
