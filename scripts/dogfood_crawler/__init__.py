"""
Pipeline de ingesta de comida para perros.

Cada fuente tiene su propio submódulo que implementa SourceFetcher.
"""

from .base import SourceFetcher
from .dedup import DeduplicationIndex
from .models import (
    SOURCE_RING,
    Batch,
    CanonicalProduct,
    CrawlState,
    Nutrients,
    RawProduct,
    RunContext,
    SourceId,
    Submission,
    ValidationResult,
)
from .orchestrator import CrawlOrchestrator, RunConfig
from .sink import DryRunSink, SubmissionSink
from .state import CrawlStateStore
from .validators import validate_product

__all__ = [
    "SourceFetcher",
    "DeduplicationIndex",
    "SOURCE_RING",
    "Batch",
    "CanonicalProduct",
    "CrawlState",
    "Nutrients",
    "RawProduct",
    "RunContext",
    "SourceId",
    "Submission",
    "ValidationResult",
    "CrawlOrchestrator",
    "RunConfig",
    "DryRunSink",
    "SubmissionSink",
    "CrawlStateStore",
    "validate_product",
]
