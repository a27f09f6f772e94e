"""
Pipeline orchestration.

A run is a small state machine driven by awaited stage results:

    pending -> scraping -> enriching-urls -> enriching-ai
            -> repairing-locations -> done
    (any stage error) -> failed

Each stage either runs in-process or as an external command. A failing
stage raises its own ``StageError`` subclass, which halts the run and is
recorded as a typed ``StageFailure``. Rows written by earlier stages are
kept; there is no rollback.
"""

import asyncio
import json
import logging
import shlex
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence, Type

from ai_enrichment import AiEnricher
from company_resolver import CompanyResolver
from config import APPLY_URL_ENRICH_COMMAND, LOCATION_REPAIR_LIMIT, SCRAPE_COMMAND
from db_service import Repositories, build_repositories
from errors import (
    AiEnrichmentStageError,
    LocationRepairStageError,
    ScrapeStageError,
    StageError,
    UrlEnrichmentStageError,
)
from ingestion import BoardListing, IngestionEngine
from models import PipelineStage, RunStats, RunStatus, ScrapeMode, StageFailure
from normalization import LocationNormalizer, coerce_remote_flag
from repositories import CompanyRepository, JobRepository
from state import ScrapeStatusTracker, run_tracker

logger = logging.getLogger(__name__)

STATS_MARKER = "SCRAPE_STATS"
OUTPUT_TAIL_CHARS = 2000

LOCATION_FIELDS = ("city", "region", "country", "remote_kind", "is_remote", "remote_region", "is_multi_location")


def format_stats_marker(stats: RunStats) -> str:
    """The single machine-readable line a scrape process prints on stdout."""
    return f"{STATS_MARKER} {json.dumps(stats.model_dump(by_alias=True))}"


def parse_stats_marker(output: str) -> Optional[RunStats]:
    """Recover scrape stats from process output; the last marker line wins."""
    found = None
    for line in output.splitlines():
        line = line.strip()
        if not line.startswith(STATS_MARKER + " "):
            continue
        try:
            found = RunStats.model_validate(json.loads(line[len(STATS_MARKER) + 1:]))
        except ValueError as e:
            logger.warning(f"Ignoring malformed stats marker: {e}")
    return found


def merge_stats(a: RunStats, b: Optional[RunStats]) -> RunStats:
    if b is None:
        return a
    return RunStats(
        jobs_added=a.jobs_added + b.jobs_added,
        failures=a.failures + b.failures,
        failed_sources=a.failed_sources + b.failed_sources,
    )


# ==================== STAGES ====================

class Stage(ABC):
    """One step of a run. ``run`` returns stats to merge, or None."""

    stage: PipelineStage
    error_cls: Type[StageError] = StageError

    @abstractmethod
    async def run(self) -> Optional[RunStats]:
        ...


class CommandStage(Stage):
    """Runs an external process; a non-zero exit fails the stage."""

    def __init__(self, stage: PipelineStage, error_cls: Type[StageError], argv: Sequence[str]):
        self.stage = stage
        self.error_cls = error_cls
        self.argv = list(argv)
        self.logger = logging.getLogger(self.__class__.__name__)

    async def run(self) -> Optional[RunStats]:
        if not self.argv:
            self.logger.info("No command configured, skipping stage", extra={"stage": self.stage.value})
            return None

        self.logger.info("Starting command", extra={"stage": self.stage.value, "command": " ".join(self.argv)})
        try:
            process = await asyncio.create_subprocess_exec(
                *self.argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise self.error_cls(f"could not start {self.argv[0]}: {e}") from e

        raw, _ = await process.communicate()
        output = raw.decode("utf-8", errors="replace")
        if process.returncode != 0:
            raise self.error_cls(
                f"{self.stage.value} exited with code {process.returncode}",
                exit_code=process.returncode,
                output=output[-OUTPUT_TAIL_CHARS:],
            )
        return parse_stats_marker(output)


class InProcessStage(Stage):
    """Awaits a coroutine function; any exception becomes this stage's error."""

    def __init__(
        self,
        stage: PipelineStage,
        error_cls: Type[StageError],
        func: Callable[[], Awaitable[Optional[RunStats]]],
    ):
        self.stage = stage
        self.error_cls = error_cls
        self.func = func

    async def run(self) -> Optional[RunStats]:
        try:
            return await self.func()
        except StageError:
            raise
        except Exception as e:
            raise self.error_cls(f"{self.stage.value} failed: {e}") from e


# ==================== BOARD SOURCES ====================

class BoardSource(ABC):
    """An aggregator board scraper feeding the board intake."""

    name: str

    @abstractmethod
    async def fetch_listings(self) -> List[BoardListing]:
        ...


BOARD_SOURCES: List[BoardSource] = []


def register_board_source(source: BoardSource) -> BoardSource:
    BOARD_SOURCES.append(source)
    return source


# ==================== STAGE IMPLEMENTATIONS ====================

async def scrape_stage(
    mode: ScrapeMode,
    engine: IngestionEngine,
    companies: CompanyRepository,
    board_sources: Iterable[BoardSource] = (),
) -> RunStats:
    """Scrape ATS boards and/or aggregator boards for one run mode."""
    stats = RunStats()

    if mode in ("all", "ats"):
        outcome = await engine.scrape_companies(companies.list_with_ats())
        stats = merge_stats(stats, RunStats(
            jobs_added=outcome.stats.created,
            failures=len(outcome.failed_sources),
            failed_sources=outcome.failed_sources,
        ))

    if mode in ("all", "boards"):
        sources = list(board_sources)
        results = await asyncio.gather(*(s.fetch_listings() for s in sources), return_exceptions=True)
        for source, result in zip(sources, results):
            if isinstance(result, BaseException):
                logger.error(f"Board source {source.name} failed: {result}")
                stats = merge_stats(stats, RunStats(failures=1, failed_sources=[f"board:{source.name}"]))
                continue
            board_stats = engine.ingest_board_listings(source.name, result)
            stats = merge_stats(stats, RunStats(jobs_added=board_stats.created))

    logger.info(
        "Scrape finished",
        extra={"mode": mode, "jobs_added": stats.jobs_added, "failures": stats.failures},
    )
    return stats


def repair_locations(
    jobs: JobRepository,
    normalizer: Optional[LocationNormalizer] = None,
    limit: int = LOCATION_REPAIR_LIMIT,
) -> int:
    """
    Re-run the location normalizer over stored jobs.

    Only fields that actually change are written; multi-location rows get
    city/region/country cleared.

    Returns:
        Number of rows patched
    """
    normalizer = normalizer or LocationNormalizer()
    patched = 0
    for job in jobs.list_active(limit):
        if not job.location_raw:
            continue
        location = normalizer.normalize(job.location_raw)
        target = {
            "city": location.city,
            "region": location.region,
            "country": location.country,
            "remote_kind": location.kind,
            "is_remote": coerce_remote_flag(job.is_remote, location),
            "remote_region": location.remote_region,
            "is_multi_location": location.is_multi_location,
        }
        patch = {key: value for key, value in target.items() if getattr(job, key) != value}
        if patch:
            jobs.update(job.id, patch)
            patched += 1

    logger.info("Location repair finished", extra={"patched": patched})
    return patched


# ==================== RUNNER ====================

class PipelineRunner:
    """Drives one run through its stages and records every transition."""

    def __init__(self, stages: Sequence[Stage], tracker: ScrapeStatusTracker = run_tracker):
        self.stages = list(stages)
        self.tracker = tracker
        self.logger = logging.getLogger(self.__class__.__name__)

    async def run(self, run_id: str) -> RunStatus:
        stats = RunStats()
        try:
            for stage in self.stages:
                self.tracker.update_run(run_id, stage=stage.stage)
                result = await stage.run()
                if result is not None:
                    stats = merge_stats(stats, result)
                    self.tracker.update_run(run_id, stats=stats)
        except StageError as e:
            failure = StageFailure(
                stage=e.stage,
                kind=type(e).__name__,
                message=str(e),
                exit_code=e.exit_code,
            )
            self.logger.error(
                "Pipeline stage failed",
                extra={"run_id": run_id, "stage": e.stage.value, "exit_code": e.exit_code, "output": e.output[-500:]},
            )
            self.tracker.update_run(run_id, stats=stats)
            return self.tracker.fail_run(run_id, str(e), failure)

        return self.tracker.complete_run(run_id, stats)


def build_pipeline(
    mode: ScrapeMode,
    repos: Optional[Repositories] = None,
    tracker: ScrapeStatusTracker = run_tracker,
    board_sources: Optional[Iterable[BoardSource]] = None,
    enricher: Optional[AiEnricher] = None,
) -> PipelineRunner:
    """Assemble the standard four-stage pipeline for ``mode``."""
    repos = repos or build_repositories()
    engine = IngestionEngine(repos.jobs, CompanyResolver(repos.companies))
    enricher = enricher or AiEnricher(repos.jobs, repos.ledger, companies=repos.companies)
    sources = list(BOARD_SOURCES if board_sources is None else board_sources)

    if SCRAPE_COMMAND:
        scrape: Stage = CommandStage(
            PipelineStage.SCRAPING, ScrapeStageError, shlex.split(SCRAPE_COMMAND.format(mode=mode))
        )
    else:
        scrape = InProcessStage(
            PipelineStage.SCRAPING,
            ScrapeStageError,
            lambda: scrape_stage(mode, engine, repos.companies, sources),
        )

    async def enrich_ai() -> None:
        await asyncio.to_thread(enricher.run)

    async def repair() -> None:
        await asyncio.to_thread(repair_locations, repos.jobs)

    return PipelineRunner(
        [
            scrape,
            CommandStage(PipelineStage.ENRICHING_URLS, UrlEnrichmentStageError, shlex.split(APPLY_URL_ENRICH_COMMAND)),
            InProcessStage(PipelineStage.ENRICHING_AI, AiEnrichmentStageError, enrich_ai),
            InProcessStage(PipelineStage.REPAIRING_LOCATIONS, LocationRepairStageError, repair),
        ],
        tracker=tracker,
    )


async def run_pipeline(run_id: str, mode: ScrapeMode, tracker: ScrapeStatusTracker = run_tracker) -> RunStatus:
    """Background entry point used by the trigger endpoint and the CLI."""
    try:
        runner = build_pipeline(mode, tracker=tracker)
    except Exception as e:
        logger.error(f"Could not assemble pipeline for run {run_id}: {e}")
        failure = StageFailure(stage=PipelineStage.PENDING, kind=type(e).__name__, message=str(e))
        return tracker.fail_run(run_id, str(e), failure)
    return await runner.run(run_id)
