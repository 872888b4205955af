"""
Error taxonomy for the lesson pipeline.

Contract violations (SessionNotFound, InvalidTransition) are hard errors and
are never retried automatically. Generation failures derive from
GenerationFailed and carry a StructuredError for UI consumers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from linguaspark.generation.events import StructuredError


class LinguaSparkError(Exception):
    """Base class for all pipeline errors."""


# =============================================================================
# Session errors
# =============================================================================


class SessionNotFound(LinguaSparkError, KeyError):
    """Raised when a session id is unknown to the store."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")

    def __str__(self) -> str:
        return self.args[0]


class InvalidTransition(LinguaSparkError):
    """Raised when a status change is not permitted by the state machine."""

    def __init__(self, session_id: str, current: str, requested: str, reason: str = ""):
        self.session_id = session_id
        self.current = current
        self.requested = requested
        message = f"Session {session_id}: cannot move from '{current}' to '{requested}'"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class RetryExhausted(LinguaSparkError):
    """Raised by ensure_retry() when the retry cap has been reached."""

    def __init__(self, session_id: str, retry_count: int, max_retries: int):
        self.session_id = session_id
        self.retry_count = retry_count
        self.max_retries = max_retries
        super().__init__(
            f"Session {session_id} exhausted its retries ({retry_count}/{max_retries})"
        )


class StoreUnavailable(LinguaSparkError):
    """Raised when the backing session store cannot be read or written."""


# =============================================================================
# Streaming / generation errors
# =============================================================================


class MalformedEventFrame(LinguaSparkError):
    """A single stream record could not be decoded. Never reaches callers."""

    def __init__(self, record: str, reason: str):
        self.record = record
        self.reason = reason
        super().__init__(f"Malformed event frame: {reason}")


class GenerationFailed(LinguaSparkError):
    """
    Base class for failed generation runs.

    error_type is the StructuredError.type used when the failure is detected
    locally rather than reported by the generation service.
    """

    error_type = "GenerationFailed"

    def __init__(self, structured: StructuredError):
        self.structured = structured
        super().__init__(structured.message)

    @property
    def retries_exhausted(self) -> bool:
        return self.structured.retries_exhausted


class UpstreamGenerationError(GenerationFailed):
    """The generation service reported an error event."""


class NoTerminalEvent(GenerationFailed):
    """The stream ended without a complete or error event."""

    error_type = "NoTerminalEvent"


class GenerationTimeout(GenerationFailed):
    """The run exceeded its timeout and was abandoned."""

    error_type = "Timeout"


class GenerationCancelled(GenerationFailed):
    """The caller abandoned the run."""

    error_type = "Cancelled"


class GenerationRequestError(GenerationFailed):
    """The generation request could not be sent or was rejected."""


class GenerationAborted(GenerationFailed):
    """The run stopped on an unexpected error, such as a failing store or callback."""

    error_type = "Aborted"
