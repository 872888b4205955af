"""
Streamed lesson generation.

Modules:
- events: request, stream event and structured error types
- stream_parser: incremental `data:` record parser
- client: httpx client for the streaming endpoint
- error_classifier: user-facing messages for local failures
- orchestrator: runs a generation against an extraction session
"""
from linguaspark.generation.client import GenerationClient
from linguaspark.generation.error_classifier import ErrorClassifier, ErrorType
from linguaspark.generation.events import (
    CompleteEvent,
    ErrorEvent,
    GenerationRequest,
    ProgressEvent,
    StructuredError,
    UpstreamErrorPayload,
)
from linguaspark.generation.orchestrator import (
    PHASE_STATUS_MAP,
    GenerationOrchestrator,
    GenerationProgress,
    status_for_phase,
)
from linguaspark.generation.stream_parser import StreamProgressParser

__all__ = [
    "GenerationClient",
    "ErrorClassifier",
    "ErrorType",
    "CompleteEvent",
    "ErrorEvent",
    "GenerationRequest",
    "ProgressEvent",
    "StructuredError",
    "UpstreamErrorPayload",
    "PHASE_STATUS_MAP",
    "GenerationOrchestrator",
    "GenerationProgress",
    "status_for_phase",
    "StreamProgressParser",
]
