"""
Run status tracking for pipeline runs.

State lives in process memory only: it is valid for the lifetime of one
process and is not shared between orchestrator instances. Running more
than one orchestrator needs an external store (a keyed table with a TTL).
"""

import logging
import threading
from collections import OrderedDict
from typing import Any, Dict, Optional
from uuid import uuid4

from db_models import utcnow
from models import PipelineStage, RunStats, RunStatus, ScrapeMode, StageFailure

logger = logging.getLogger(__name__)

# Stage graph; anything may move to FAILED
ALLOWED_TRANSITIONS = {
    PipelineStage.PENDING: {PipelineStage.SCRAPING},
    PipelineStage.SCRAPING: {PipelineStage.ENRICHING_URLS},
    PipelineStage.ENRICHING_URLS: {PipelineStage.ENRICHING_AI},
    PipelineStage.ENRICHING_AI: {PipelineStage.REPAIRING_LOCATIONS},
    PipelineStage.REPAIRING_LOCATIONS: {PipelineStage.DONE},
    PipelineStage.DONE: set(),
    PipelineStage.FAILED: set(),
}

TERMINAL_STAGES = {PipelineStage.DONE, PipelineStage.FAILED}


class InvalidTransition(Exception):
    """A run was asked to move to a stage its current stage cannot reach."""


class ScrapeStatusTracker:
    """
    In-memory map of run id -> RunStatus.

    Keeps the most recent ``max_runs`` runs; older ones are dropped.
    """

    def __init__(self, max_runs: int = 200):
        self._runs: "OrderedDict[str, RunStatus]" = OrderedDict()
        self._lock = threading.Lock()
        self.max_runs = max_runs

    def create_run(self, mode: ScrapeMode = "all") -> str:
        """Register a new run in the pending stage and return its id."""
        run_id = uuid4().hex
        with self._lock:
            self._runs[run_id] = RunStatus(id=run_id, mode=mode, started_at=utcnow())
            while len(self._runs) > self.max_runs:
                self._runs.popitem(last=False)
        logger.info("Run created", extra={"run_id": run_id, "mode": mode})
        return run_id

    def get_run(self, run_id: str) -> Optional[RunStatus]:
        with self._lock:
            run = self._runs.get(run_id)
            return run.model_copy(deep=True) if run else None

    def update_run(self, run_id: str, **fields: Any) -> RunStatus:
        """
        Update fields of a live run.

        A ``stage`` change must follow the stage graph.

        Raises:
            KeyError: Unknown run id
            InvalidTransition: Illegal stage change or a finished run
        """
        with self._lock:
            run = self._require(run_id)
            if run.stage in TERMINAL_STAGES:
                raise InvalidTransition(f"run {run_id} already finished ({run.stage.value})")

            stage = fields.get("stage")
            if stage is not None:
                stage = PipelineStage(stage)
                if stage != run.stage and stage not in ALLOWED_TRANSITIONS[run.stage] | {PipelineStage.FAILED}:
                    raise InvalidTransition(f"{run.stage.value} -> {stage.value}")
                fields["stage"] = stage

            updated = run.model_copy(update=fields)
            self._runs[run_id] = updated

        if stage is not None and stage != run.stage:
            logger.info("Run stage changed", extra={"run_id": run_id, "stage": stage.value})
        return updated.model_copy(deep=True)

    def complete_run(self, run_id: str, stats: Optional[RunStats] = None) -> RunStatus:
        fields: Dict[str, Any] = {"status": "completed", "stage": PipelineStage.DONE, "completed_at": utcnow()}
        if stats is not None:
            fields["stats"] = stats
        run = self.update_run(run_id, **fields)
        logger.info("Run completed", extra={"run_id": run_id, "jobs_added": run.stats.jobs_added})
        return run

    def fail_run(self, run_id: str, error: str, failure: Optional[StageFailure] = None) -> RunStatus:
        run = self.update_run(
            run_id,
            status="failed",
            stage=PipelineStage.FAILED,
            completed_at=utcnow(),
            error=error,
            failure=failure,
        )
        logger.error("Run failed", extra={"run_id": run_id, "error": error})
        return run

    def _require(self, run_id: str) -> RunStatus:
        run = self._runs.get(run_id)
        if run is None:
            raise KeyError(run_id)
        return run

    def clear(self):
        with self._lock:
            self._runs.clear()


# Global tracker instance
run_tracker = ScrapeStatusTracker()
