"""
Environment configuration for the ingestion engine.

Values are read once at import time. A ``.env`` file in the working
directory is loaded first so local runs match the deployed environment.
"""

import os
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


# ATS adapters
ATS_REQUEST_TIMEOUT = _float("ATS_REQUEST_TIMEOUT", 15.0)  # seconds
ATS_MAX_RETRIES = _int("ATS_MAX_RETRIES", 3)
ATS_RETRY_BACKOFF = _float("ATS_RETRY_BACKOFF", 0.5)  # seconds, multiplied by attempt
LEVER_PAGE_SIZE = _int("LEVER_PAGE_SIZE", 100)
LEVER_MAX_JOBS = _int("LEVER_MAX_JOBS", 500)
ATS_SCRAPE_CONCURRENCY = _int("ATS_SCRAPE_CONCURRENCY", 5)
USER_AGENT = os.getenv("SCRAPER_USER_AGENT", "job-ingest/1.0 (+https://example.com/bot)")

# Ingestion
JOB_EXPIRY_DAYS = _int("JOB_EXPIRY_DAYS", 30)

# AI enrichment
AI_ENRICH_MAX_JOBS_PER_RUN = _int("AI_ENRICH_MAX_JOBS_PER_RUN", 200)
AI_ENRICH_MAX_DAILY_JOBS = _int("AI_ENRICH_MAX_DAILY_JOBS", 500)
AI_ENRICH_MAX_DAILY_TOKENS_TOTAL = _int("AI_ENRICH_MAX_DAILY_TOKENS_TOTAL", 500_000)
AI_ENRICH_MAX_DAILY_USD = _float("AI_ENRICH_MAX_DAILY_USD", 0.33)
AI_COST_IN_USD_PER_MILLION = _float("AI_COST_IN_USD_PER_MILLION", 0.14)
AI_COST_OUT_USD_PER_MILLION = _float("AI_COST_OUT_USD_PER_MILLION", 0.28)
AI_ENRICH_MAX_OUTPUT_TOKENS = _int("AI_ENRICH_MAX_OUTPUT_TOKENS", 220)
AI_ENRICH_MAX_RETRIES = _int("AI_ENRICH_MAX_RETRIES", 4)
AI_REQUEST_TIMEOUT = _float("AI_REQUEST_TIMEOUT", 30.0)
AI_ENRICH_MODEL = os.getenv("AI_ENRICH_MODEL", "deepseek-chat")
AI_BASE_URL = os.getenv("AI_BASE_URL", "https://api.deepseek.com")
AI_API_KEY = os.getenv("AI_API_KEY") or os.getenv("DEEPSEEK_API_KEY")

# Orchestration / HTTP surface
# "{mode}" in SCRAPE_COMMAND is replaced with the run mode
SCRAPE_COMMAND = os.getenv("SCRAPE_COMMAND", "")
APPLY_URL_ENRICH_COMMAND = os.getenv("APPLY_URL_ENRICH_COMMAND", "")
LOCATION_REPAIR_LIMIT = _int("LOCATION_REPAIR_LIMIT", 5000)
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")


def cron_secrets() -> List[str]:
    """Bearer secrets currently accepted; two are allowed during rotation."""
    return [s for s in (os.getenv("CRON_SECRET"), os.getenv("CRON_SECRET_NEXT")) if s]
