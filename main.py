"""
Command line entry points for the ingestion engine.

    python main.py scrape --mode ats
    python main.py expire
    python main.py enrich
    python main.py repair-locations
    python main.py pipeline --mode all
    python main.py serve --port 8000

``scrape`` prints one ``SCRAPE_STATS {...}`` line so a parent pipeline can
recover its statistics from stdout.
"""

import asyncio
import json
import os
from typing import get_args

import typer

from ai_enrichment import AiEnricher
from company_resolver import CompanyResolver
from db_service import build_repositories
from ingestion import IngestionEngine
from logging_config import setup_logging
from models import ScrapeMode
from pipeline import BOARD_SOURCES, format_stats_marker, repair_locations, run_pipeline, scrape_stage
from state import run_tracker

logger = setup_logging("job_ingest")

app = typer.Typer(help="Job ingestion engine")

MODES = get_args(ScrapeMode)


def _check_mode(mode: str) -> str:
    if mode not in MODES:
        raise typer.BadParameter(f"mode must be one of {', '.join(MODES)}")
    return mode


@app.command()
def scrape(mode: str = typer.Option("all", "--mode", callback=_check_mode, help="all | boards | ats")):
    """Scrape ATS and/or aggregator boards and ingest the results."""
    repos = build_repositories()
    engine = IngestionEngine(repos.jobs, CompanyResolver(repos.companies))
    try:
        stats = asyncio.run(scrape_stage(mode, engine, repos.companies, BOARD_SOURCES))
    except Exception as e:
        logger.error(f"Scrape failed: {e}")
        raise typer.Exit(code=1)
    typer.echo(format_stats_marker(stats))


@app.command()
def expire():
    """Expire ATS jobs not seen within the freshness window."""
    repos = build_repositories()
    engine = IngestionEngine(repos.jobs, CompanyResolver(repos.companies))
    count = engine.run_expiry_cycle()
    typer.echo(f"Expired {count} jobs.")


@app.command()
def enrich():
    """Run one AI enrichment batch within the daily budget."""
    repos = build_repositories()
    summary = AiEnricher(repos.jobs, repos.ledger, companies=repos.companies).run()
    typer.echo(json.dumps(summary.model_dump()))


@app.command("repair-locations")
def repair_locations_command():
    """Re-normalize stored locations and patch rows that changed."""
    repos = build_repositories()
    patched = repair_locations(repos.jobs)
    typer.echo(f"Patched {patched} jobs.")


@app.command()
def pipeline(mode: str = typer.Option("all", "--mode", callback=_check_mode, help="all | boards | ats")):
    """Run the full pipeline once in this process."""
    run_id = run_tracker.create_run(mode)
    status = asyncio.run(run_pipeline(run_id, mode))
    typer.echo(status.model_dump_json(by_alias=True, exclude_none=True))
    if status.status != "completed":
        raise typer.Exit(code=1)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(int(os.getenv("PORT", "8000")), "--port"),
):
    """Serve the trigger/status API."""
    import uvicorn

    uvicorn.run("api_server:app", host=host, port=port, log_level="info")


if __name__ == "__main__":
    app()
