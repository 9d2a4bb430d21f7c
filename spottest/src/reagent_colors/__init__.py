from .errors import (
    AnalysisError,
    AnalysisTimeoutError,
    DecodeError,
    ExtractionError,
    ValidationError,
)
from .extract import extract_dominant_colors
from .matching import closest_match, resolve_choice
from .models import (
    ColorChoice,
    DetectedColor,
    MatchResult,
    ReferenceEntry,
    ResolvedColor,
)
from .pipeline import SpotTestPipeline
from .session import AnalysisSession, SessionStatus

__all__ = [
    "AnalysisError",
    "AnalysisSession",
    "AnalysisTimeoutError",
    "ColorChoice",
    "DecodeError",
    "DetectedColor",
    "ExtractionError",
    "MatchResult",
    "ReferenceEntry",
    "ResolvedColor",
    "SessionStatus",
    "SpotTestPipeline",
    "ValidationError",
    "closest_match",
    "extract_dominant_colors",
    "resolve_choice",
]
