from .config import KNOWN_SOURCES, PipelineConfig
from .errors import NormalizationError, RegwatchError, SourceRunError, UnknownSourceError
from .models import NormalizedEvent, PersistedEvent, PipelineRunResult, ScoredEvent, SourceStatus
from .pipeline import Pipeline, build_pipeline

__all__ = [
    "KNOWN_SOURCES",
    "PipelineConfig",
    "RegwatchError",
    "SourceRunError",
    "UnknownSourceError",
    "NormalizationError",
    "NormalizedEvent",
    "ScoredEvent",
    "PersistedEvent",
    "SourceStatus",
    "PipelineRunResult",
    "Pipeline",
    "build_pipeline",
]
