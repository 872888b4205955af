"""
Extraction session tracking.

Modules:
- models: session, history and telemetry records
- session_store: async key-value persistence (memory, JSON files, fallback)
- retry_policy: injectable retry decisions
- session_manager: the session state machine
- analytics: summary statistics over history
"""
from linguaspark.extraction.analytics import AnalyticsSummary, summarize
from linguaspark.extraction.models import (
    ContentMetadata,
    ContentQuality,
    ExtractedContent,
    ExtractionHistoryEntry,
    ExtractionMode,
    ExtractionSession,
    InteractionEventType,
    SessionStatus,
    UserInteractionEvent,
)
from linguaspark.extraction.retry_policy import (
    BoundedRetryPolicy,
    ExponentialBackoffPolicy,
    RetryPolicy,
    may_retry,
)
from linguaspark.extraction.session_manager import ExtractionSessionManager
from linguaspark.extraction.session_store import (
    FallbackSessionStore,
    InMemorySessionStore,
    JsonFileSessionStore,
    SessionStore,
)

__all__ = [
    "AnalyticsSummary",
    "summarize",
    "ContentMetadata",
    "ContentQuality",
    "ExtractedContent",
    "ExtractionHistoryEntry",
    "ExtractionMode",
    "ExtractionSession",
    "InteractionEventType",
    "SessionStatus",
    "UserInteractionEvent",
    "BoundedRetryPolicy",
    "ExponentialBackoffPolicy",
    "RetryPolicy",
    "may_retry",
    "ExtractionSessionManager",
    "FallbackSessionStore",
    "InMemorySessionStore",
    "JsonFileSessionStore",
    "SessionStore",
]
