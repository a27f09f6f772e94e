"""
Exception types raised across the ingestion engine.
"""

from typing import Optional

from models import PipelineStage


class IngestError(Exception):
    """Base class for engine errors."""


class AtsFetchError(IngestError):
    """An ATS board could not be fetched after retries."""

    def __init__(self, provider: str, url: str, message: str):
        super().__init__(f"{provider} fetch failed for {url}: {message}")
        self.provider = provider
        self.url = url


class AtsBlockedError(AtsFetchError):
    """The provider answered with HTML where JSON was expected."""


class TransientHttpError(IngestError):
    """Retryable HTTP status (429 or 5xx)."""

    def __init__(self, status: int, url: str):
        super().__init__(f"HTTP {status} from {url}")
        self.status = status
        self.url = url


class InvalidEnrichmentOutput(IngestError):
    """Text-generation output was empty, not JSON, or failed the schema."""


class RepositoryError(IngestError):
    """A storage operation failed."""


class StageError(IngestError):
    """A pipeline stage failed; subclasses identify the stage."""

    stage: PipelineStage = PipelineStage.FAILED

    def __init__(self, message: str, exit_code: Optional[int] = None, output: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output


class ScrapeStageError(StageError):
    stage = PipelineStage.SCRAPING


class UrlEnrichmentStageError(StageError):
    stage = PipelineStage.ENRICHING_URLS


class AiEnrichmentStageError(StageError):
    stage = PipelineStage.ENRICHING_AI


class LocationRepairStageError(StageError):
    stage = PipelineStage.REPAIRING_LOCATIONS
