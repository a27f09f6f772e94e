"""
FastAPI surface for triggering and polling pipeline runs.

Endpoints:
- GET|POST /api/cron/scrape?mode=all|boards|ats  start a run in the background
- GET /api/scrape/status/{job_id}                 poll a run
- GET /health

Both cron endpoints require ``Authorization: Bearer <secret>`` where the
secret is CRON_SECRET or, during rotation, CRON_SECRET_NEXT.
"""

import hmac
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Request

from config import PUBLIC_BASE_URL, cron_secrets
from logging_config import setup_logging
from models import RunStatus, ScrapeMode, TriggerResponse
from pipeline import run_pipeline
from state import run_tracker

setup_logging()
logger = logging.getLogger(__name__)

VERSION = "1.0.0"

app = FastAPI(
    title="Job Ingestion Engine",
    description="Trigger and monitor ATS/board ingestion runs",
    version=VERSION,
)


def require_cron_secret(authorization: Optional[str] = Header(default=None)):
    """Reject requests whose bearer token matches no accepted secret."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")
    token = authorization[len("Bearer "):]
    if not any(hmac.compare_digest(token.encode(), s.encode()) for s in cron_secrets()):
        raise HTTPException(status_code=401, detail="Unauthorized")


# -------- Runs --------

@app.api_route(
    "/api/cron/scrape",
    methods=["GET", "POST"],
    response_model=TriggerResponse,
    dependencies=[Depends(require_cron_secret)],
)
async def trigger_scrape(request: Request, background_tasks: BackgroundTasks, mode: ScrapeMode = "all"):
    """
    Start a pipeline run.

    Returns immediately with the run id; the run continues in the background.
    """
    run_id = run_tracker.create_run(mode)
    background_tasks.add_task(run_pipeline, run_id, mode)

    base = PUBLIC_BASE_URL or str(request.base_url).rstrip("/")
    logger.info("Run triggered via API", extra={"run_id": run_id, "mode": mode})
    return TriggerResponse(success=True, job_id=run_id, status_url=f"{base}/api/scrape/status/{run_id}")


@app.get(
    "/api/scrape/status/{job_id}",
    response_model=RunStatus,
    response_model_exclude_none=True,
    dependencies=[Depends(require_cron_secret)],
)
async def get_scrape_status(job_id: str):
    """Current status of a run, including stats and any stage failure."""
    run = run_tracker.get_run(job_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return run


# -------- Health --------

@app.get("/health")
async def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
    }
