"""Memory extraction and consolidation."""

from .client import ExtractionClient
from .consolidate import consolidate, primary_id, underlying_ids
from .continuity import ContinuityManager
from .facts import FactStore
from .heuristics import LocalExtractor
from .models import (
    ContinuityDelta,
    ContinuitySummary,
    DisplayMemory,
    DisplaySection,
    ExtractionOutcome,
    Fact,
    FactCandidate,
)
from .pipeline import MemoryPipeline, build_pipeline
from .result import ErrorKind, Result
from .service import (
    ExtractionRequest,
    ExtractionServiceError,
    GroqExtractionService,
    HttpExtractionService,
)
from .store import MemoryStore
from .transcript import ChatTurn, TranscriptStore, select_window

__all__ = [
    "ChatTurn",
    "ContinuityDelta",
    "ContinuityManager",
    "ContinuitySummary",
    "DisplayMemory",
    "DisplaySection",
    "ErrorKind",
    "ExtractionClient",
    "ExtractionOutcome",
    "ExtractionRequest",
    "ExtractionServiceError",
    "Fact",
    "FactCandidate",
    "FactStore",
    "GroqExtractionService",
    "HttpExtractionService",
    "LocalExtractor",
    "MemoryPipeline",
    "MemoryStore",
    "Result",
    "TranscriptStore",
    "build_pipeline",
    "consolidate",
    "primary_id",
    "select_window",
    "underlying_ids",
]
