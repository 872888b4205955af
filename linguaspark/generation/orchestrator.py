"""
Generation Orchestrator.

Runs one streamed lesson generation for one extraction session:

1. moves the session to extracting
2. pipes the response body through StreamProgressParser
3. advances the session along phase boundaries (never backwards)
4. completes or fails the session on the terminal event

Every way a run can end (complete, upstream error, truncated stream, HTTP
failure, timeout, cancellation, a crash) leaves the session complete or failed. The
caller gets the lesson dict, or a GenerationFailed carrying a StructuredError.
"""

from __future__ import annotations

import asyncio
import inspect
import math
from collections.abc import Awaitable, Callable
from contextlib import aclosing
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx
from loguru import logger

from linguaspark.config import Settings, get_settings
from linguaspark.exceptions import (
    GenerationAborted,
    GenerationCancelled,
    GenerationFailed,
    GenerationRequestError,
    GenerationTimeout,
    InvalidTransition,
    NoTerminalEvent,
    RetryExhausted,
    UpstreamGenerationError,
)
from linguaspark.extraction.models import (
    ContentMetadata,
    ContentQuality,
    ExtractedContent,
    SessionStatus,
    domain_of,
)
from linguaspark.extraction.session_manager import ExtractionSessionManager
from linguaspark.generation.client import GenerationClient
from linguaspark.generation.error_classifier import ErrorClassifier
from linguaspark.generation.events import (
    CompleteEvent,
    ErrorEvent,
    GenerationRequest,
    ProgressEvent,
    StructuredError,
    generate_error_id,
)
from linguaspark.generation.stream_parser import StreamEvent, StreamProgressParser

# Phase names sent by the generation service. Anything else leaves the
# session status alone.
PHASE_STATUS_MAP: dict[str, SessionStatus] = {
    "initialization": SessionStatus.EXTRACTING,
    "extraction": SessionStatus.EXTRACTING,
    "extracting": SessionStatus.EXTRACTING,
    "analysis": SessionStatus.EXTRACTING,
    "authentication": SessionStatus.EXTRACTING,
    "phase1": SessionStatus.EXTRACTING,
    "phase2": SessionStatus.EXTRACTING,
    "validation": SessionStatus.VALIDATING,
    "validating": SessionStatus.VALIDATING,
    "finalization": SessionStatus.VALIDATING,
    "saving": SessionStatus.VALIDATING,
}

WORDS_PER_MINUTE = 200
SUITABLE_WORD_COUNT = 200


def status_for_phase(phase: str | None) -> SessionStatus | None:
    if not phase:
        return None
    return PHASE_STATUS_MAP.get(phase.strip().lower())


@dataclass(frozen=True)
class GenerationProgress:
    """Progress snapshot handed to on_progress callbacks."""

    session_id: str
    step: str
    progress: float
    status: SessionStatus
    phase: str | None = None
    section: str | None = None


ProgressCallback = Callable[[GenerationProgress], "Awaitable[None] | None"]


@dataclass
class _RunState:
    session_id: str
    status: SessionStatus
    progress: float = 0.0


def derive_extracted_content(request: GenerationRequest, lesson: dict[str, Any]) -> ExtractedContent:
    """Build the ExtractedContent recorded on the session from a finished run."""
    meta = request.content_metadata or {}
    word_count = request.word_count
    if word_count is None:
        word_count = len(request.source_text.split())
    reading_time = request.reading_time
    if reading_time is None:
        reading_time = max(1, math.ceil(word_count / WORDS_PER_MINUTE))

    suitability = meta.get("suitabilityScore")
    if isinstance(suitability, (int, float)):
        suitability = min(1.0, max(0.0, float(suitability)))
    else:
        suitability = min(1.0, word_count / SUITABLE_WORD_COUNT)

    publication_date = None
    if isinstance(meta.get("publicationDate"), str):
        try:
            publication_date = datetime.fromisoformat(meta["publicationDate"])
        except ValueError:
            logger.debug("Ignoring unparseable publicationDate {!r}", meta["publicationDate"])

    domain = domain_of(request.source_url)
    title = lesson.get("lessonTitle") or lesson.get("title") or meta.get("title") or domain

    return ExtractedContent(
        text=request.source_text,
        title=str(title),
        metadata=ContentMetadata(
            source_url=request.source_url,
            domain=domain,
            author=meta.get("author"),
            publication_date=publication_date,
            description=meta.get("description"),
        ),
        quality=ContentQuality(
            word_count=word_count,
            reading_time=reading_time,
            suitability_score=suitability,
        ),
    )


class GenerationOrchestrator:
    """
    Drives a generation run and keeps its extraction session in step.

    Runs for different sessions may proceed concurrently; cancel() abandons
    the run of one session.
    """

    def __init__(
        self,
        manager: ExtractionSessionManager,
        client: GenerationClient,
        *,
        timeout_seconds: float | None = None,
        classifier: ErrorClassifier | None = None,
        parser_factory: Callable[[], StreamProgressParser] = StreamProgressParser,
    ):
        """
        Initialize the orchestrator.

        Args:
            manager: Session manager that owns the sessions being generated for
            client: Generation HTTP client
            timeout_seconds: Abandon a run after this long (None waits forever)
            classifier: Maps local exceptions to user-facing errors
            parser_factory: Builds one stream parser per run
        """
        self.manager = manager
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.classifier = classifier or ErrorClassifier()
        self._parser_factory = parser_factory
        self._running: dict[str, asyncio.Task] = {}
        self._cancel_requested: set[str] = set()

    @classmethod
    def from_settings(
        cls,
        manager: ExtractionSessionManager,
        client: GenerationClient | None = None,
        settings: Settings | None = None,
    ) -> GenerationOrchestrator:
        settings = settings or get_settings()
        return cls(
            manager,
            client or GenerationClient.from_settings(settings),
            timeout_seconds=settings.generation_timeout_seconds,
            classifier=ErrorClassifier(support_contact=settings.support_contact),
        )

    # =========================================================================
    # Public API
    # =========================================================================

    async def run_generation(
        self,
        request: GenerationRequest,
        session_id: str,
        on_progress: ProgressCallback | None = None,
    ) -> dict[str, Any]:
        """
        Generate a lesson for an active extraction session.

        Args:
            request: Generation request body
            session_id: Session the run belongs to
            on_progress: Called for every progress event (sync or async)

        Returns:
            The lesson object from the complete event

        Raises:
            UpstreamGenerationError: The service sent an error event
            NoTerminalEvent: The stream ended without a result
            GenerationRequestError: The request failed at the HTTP level
            GenerationTimeout: The run exceeded timeout_seconds
            GenerationCancelled: cancel() was called for this session
            GenerationAborted: Anything else went wrong mid-run (store, callback)
            SessionNotFound / InvalidTransition: The session is unknown or not active
        """
        session = await self.manager.get_session(session_id)
        if not session.is_active:
            raise InvalidTransition(
                session_id,
                session.status.value,
                SessionStatus.EXTRACTING.value,
                "session is not active, retry it first",
            )

        task = asyncio.current_task()
        if task is not None:
            self._running[session_id] = task

        try:
            if self.timeout_seconds is None:
                return await self._consume(request, session_id, on_progress)
            return await asyncio.wait_for(
                self._consume(request, session_id, on_progress), self.timeout_seconds
            )

        except asyncio.TimeoutError:
            raise await self._abandon(
                session_id,
                GenerationTimeout,
                f"Lesson generation timed out after {self.timeout_seconds:g}s",
            ) from None

        except asyncio.CancelledError:
            if session_id in self._cancel_requested:
                self._cancel_requested.discard(session_id)
                if task is not None and hasattr(task, "uncancel"):
                    task.uncancel()
                raise await self._abandon(
                    session_id, GenerationCancelled, "Lesson generation was cancelled"
                ) from None
            # Cancelled from outside: record the failure, then let cancellation propagate.
            await asyncio.shield(
                self._abandon(session_id, GenerationCancelled, "Lesson generation was cancelled")
            )
            raise

        except GenerationFailed:
            raise

        except Exception as e:
            logger.exception("Generation for session {} aborted", session_id)
            raise await self._abandon(
                session_id,
                GenerationAborted,
                f"Lesson generation stopped unexpectedly: {e}",
            ) from e

        finally:
            self._running.pop(session_id, None)
            self._cancel_requested.discard(session_id)

    def cancel(self, session_id: str) -> bool:
        """
        Abandon the in-flight run of a session.

        Returns:
            True if a running generation was signalled
        """
        task = self._running.get(session_id)
        if task is None or task.done():
            return False
        logger.info("Cancelling generation for session {}", session_id)
        self._cancel_requested.add(session_id)
        task.cancel()
        return True

    async def retry_generation(
        self,
        request: GenerationRequest,
        session_id: str,
        on_progress: ProgressCallback | None = None,
    ) -> dict[str, Any]:
        """
        Retry a failed session and run generation again.

        Waits for the retry policy's delay before reopening the stream.

        Raises:
            RetryExhausted: No retries left
        """
        before = await self.manager.get_session(session_id)
        if not await self.manager.retry_extraction(session_id):
            raise RetryExhausted(
                session_id, before.retry_count, self.manager.retry_policy.max_retries
            )
        delay = self.manager.retry_policy.delay_before(before.retry_count)
        if delay > 0:
            logger.info("Waiting {}s before retrying session {}", delay, session_id)
            await asyncio.sleep(delay)
        return await self.run_generation(request, session_id, on_progress)

    # =========================================================================
    # Stream consumption
    # =========================================================================

    async def _consume(
        self,
        request: GenerationRequest,
        session_id: str,
        on_progress: ProgressCallback | None,
    ) -> dict[str, Any]:
        parser = self._parser_factory()
        session = await self.manager.get_session(session_id)
        state = _RunState(session_id=session_id, status=session.status)
        if state.status == SessionStatus.STARTED:
            await self.manager.update_session(session_id, status=SessionStatus.EXTRACTING)
            state.status = SessionStatus.EXTRACTING

        logger.info(
            "Starting {} lesson generation for session {} ({} chars)",
            request.lesson_type,
            session_id,
            len(request.source_text),
        )

        try:
            async with aclosing(self.client.stream_lesson(request)) as stream:
                async for chunk in stream:
                    for event in parser.feed(chunk):
                        lesson = await self._dispatch(event, request, state, on_progress)
                        if lesson is not None:
                            return lesson
            for event in parser.flush():
                lesson = await self._dispatch(event, request, state, on_progress)
                if lesson is not None:
                    return lesson

        except httpx.HTTPError as e:
            classified = self.classifier.classify(
                e, {"session_id": session_id, "lesson_type": request.lesson_type}
            )
            logger.error(
                "Generation request for session {} failed ({}): {}",
                session_id,
                classified.type.value,
                e,
            )
            await self.manager.fail_session(session_id, str(e) or classified.type.value)
            raise GenerationRequestError(
                self.classifier.user_message(
                    classified,
                    session_id=session_id,
                    retries_exhausted=await self._retries_exhausted(session_id),
                )
            ) from e

        if parser.malformed_count or parser.quarantined:
            logger.warning(
                "Session {} stream ended after {} malformed and {} quarantined frames",
                session_id,
                parser.malformed_count,
                len(parser.quarantined),
            )
        raise await self._abandon(
            session_id, NoTerminalEvent, "Lesson generation ended without a result"
        )

    async def _dispatch(
        self,
        event: StreamEvent,
        request: GenerationRequest,
        state: _RunState,
        on_progress: ProgressCallback | None,
    ) -> dict[str, Any] | None:
        """Apply one event. Returns the lesson on completion, raises on error."""
        if isinstance(event, ProgressEvent):
            await self._on_progress_event(event, state, on_progress)
            return None

        if isinstance(event, CompleteEvent):
            content = derive_extracted_content(request, event.lesson)
            await self.manager.complete_session(state.session_id, content)
            state.status = SessionStatus.COMPLETE
            state.progress = 100.0
            await self._notify(
                on_progress,
                GenerationProgress(
                    session_id=state.session_id,
                    step=event.step,
                    progress=100.0,
                    status=state.status,
                ),
            )
            return event.lesson

        if isinstance(event, ErrorEvent):
            await self.manager.fail_session(state.session_id, event.error.message)
            state.status = SessionStatus.FAILED
            raise UpstreamGenerationError(
                StructuredError.from_upstream(
                    event.error,
                    session_id=state.session_id,
                    retries_exhausted=await self._retries_exhausted(state.session_id),
                )
            )

        return None

    async def _on_progress_event(
        self,
        event: ProgressEvent,
        state: _RunState,
        on_progress: ProgressCallback | None,
    ) -> None:
        if event.progress < state.progress:
            logger.debug(
                "Session {}: progress went back from {} to {}, keeping {}",
                state.session_id,
                state.progress,
                event.progress,
                state.progress,
            )
        state.progress = max(state.progress, event.progress)

        target = status_for_phase(event.phase)
        if target is not None and target.rank > state.status.rank:
            await self.manager.update_session(state.session_id, status=target)
            state.status = target

        await self._notify(
            on_progress,
            GenerationProgress(
                session_id=state.session_id,
                step=event.step,
                progress=state.progress,
                status=state.status,
                phase=event.phase,
                section=event.section,
            ),
        )

    @staticmethod
    async def _notify(on_progress: ProgressCallback | None, update: GenerationProgress) -> None:
        if on_progress is None:
            return
        result = on_progress(update)
        if inspect.isawaitable(result):
            await result

    # =========================================================================
    # Failure handling
    # =========================================================================

    async def _retries_exhausted(self, session_id: str) -> bool:
        session = await self.manager.find_session(session_id)
        return session is not None and self.manager.is_retry_exhausted(session)

    async def _abandon(
        self,
        session_id: str,
        error_cls: type[GenerationFailed],
        message: str,
    ) -> GenerationFailed:
        """Fail the session (if still active) and build the error to raise."""
        session = await self.manager.find_session(session_id)
        if session is not None and session.is_active:
            await self.manager.fail_session(session_id, message)
        else:
            logger.debug("Session {} already settled, not failing it again", session_id)

        steps = ["Try generating the lesson again"]
        if error_cls is GenerationTimeout:
            steps.append("Try a shorter text selection")
        return error_cls(
            StructuredError(
                type=error_cls.error_type,
                message=message,
                actionable_steps=steps,
                error_id=generate_error_id(),
                session_id=session_id,
                retries_exhausted=await self._retries_exhausted(session_id),
            )
        )
