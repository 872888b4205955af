"""
Extraction Session Manager.

Owns every status change of an extraction session:

    started -> extracting -> validating -> complete
    started | extracting | validating -> failed
    failed -> started   (retry_extraction only, while retries remain)

complete and a retry-exhausted failed are terminal. Forward skips
(started -> validating, extracting -> complete, ...) are allowed so a run that
never reports a validation phase can still complete.

Mutations of one session are serialized with a per-session asyncio.Lock;
different sessions never block each other.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta
from typing import Any

from loguru import logger

from linguaspark.config import Settings, get_settings
from linguaspark.exceptions import InvalidTransition, RetryExhausted, SessionNotFound
from linguaspark.extraction.analytics import AnalyticsSummary, summarize
from linguaspark.extraction.models import (
    ExtractedContent,
    ExtractionHistoryEntry,
    ExtractionMode,
    ExtractionSession,
    InteractionEventType,
    SessionMetadata,
    SessionStatus,
    UserInteractionEvent,
    domain_of,
    new_event_id,
    new_session_id,
    utc_now,
)
from linguaspark.extraction.retry_policy import BoundedRetryPolicy, RetryPolicy
from linguaspark.extraction.session_store import SessionStore

ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.STARTED: frozenset(
        {
            SessionStatus.EXTRACTING,
            SessionStatus.VALIDATING,
            SessionStatus.COMPLETE,
            SessionStatus.FAILED,
        }
    ),
    SessionStatus.EXTRACTING: frozenset(
        {SessionStatus.VALIDATING, SessionStatus.COMPLETE, SessionStatus.FAILED}
    ),
    SessionStatus.VALIDATING: frozenset({SessionStatus.COMPLETE, SessionStatus.FAILED}),
    SessionStatus.COMPLETE: frozenset(),
    SessionStatus.FAILED: frozenset(),
}

_STATUS_EVENTS = {
    SessionStatus.COMPLETE: InteractionEventType.EXTRACTION_COMPLETED,
    SessionStatus.FAILED: InteractionEventType.EXTRACTION_FAILED,
}

_METADATA_FIELDS = frozenset(f.name for f in fields(SessionMetadata))

DEFAULT_SESSION_TIMEOUT = timedelta(hours=24)
DEFAULT_MAX_HISTORY_ENTRIES = 50
DEFAULT_MAX_EVENT_ENTRIES = 100


@dataclass
class _SessionLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class ExtractionSessionManager:
    """
    Creates, transitions and retires extraction sessions.

    One instance per process, constructed with the store it should use.
    All reads and writes go through that store.
    """

    def __init__(
        self,
        store: SessionStore,
        retry_policy: RetryPolicy | None = None,
        *,
        session_timeout: timedelta = DEFAULT_SESSION_TIMEOUT,
        max_history_entries: int = DEFAULT_MAX_HISTORY_ENTRIES,
        max_event_entries: int = DEFAULT_MAX_EVENT_ENTRIES,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = new_session_id,
        event_id_factory: Callable[[], str] = new_event_id,
    ):
        """
        Initialize the manager.

        Args:
            store: Backing session store
            retry_policy: Retry decision (defaults to 3 retries, no delay)
            session_timeout: Age after which cleanup_expired_sessions removes a session
            max_history_entries: Rolling history capacity
            max_event_entries: Rolling interaction event capacity
            clock: Timestamp source
            id_factory: Session id source
            event_id_factory: Interaction event id source
        """
        self.store = store
        self.retry_policy = retry_policy or BoundedRetryPolicy()
        self.session_timeout = session_timeout
        self.max_history_entries = max_history_entries
        self.max_event_entries = max_event_entries
        self._clock = clock
        self._new_id = id_factory
        self._new_event_id = event_id_factory
        self._locks: dict[str, _SessionLock] = {}

    @classmethod
    def from_settings(
        cls,
        store: SessionStore,
        settings: Settings | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> ExtractionSessionManager:
        """Build a manager with limits taken from application settings."""
        settings = settings or get_settings()
        return cls(
            store,
            retry_policy or BoundedRetryPolicy(max_retries=settings.extraction_max_retries),
            session_timeout=timedelta(seconds=settings.session_timeout_seconds),
            max_history_entries=settings.extraction_max_history_entries,
            max_event_entries=settings.extraction_max_event_entries,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @asynccontextmanager
    async def _lock(self, session_id: str) -> AsyncIterator[None]:
        """Hold the session's lock. The lock is dropped once nobody holds or awaits it."""
        entry = self._locks.get(session_id)
        if entry is None:
            entry = self._locks[session_id] = _SessionLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(session_id) is entry:
                del self._locks[session_id]

    async def _require(self, session_id: str) -> ExtractionSession:
        session = await self.store.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    @staticmethod
    def _check_transition(session: ExtractionSession, target: SessionStatus) -> None:
        if target not in ALLOWED_TRANSITIONS[session.status]:
            reason = "session is terminal" if not session.is_active else ""
            raise InvalidTransition(
                session.session_id, session.status.value, target.value, reason
            )

    async def _append_history(self, session: ExtractionSession) -> None:
        entry = ExtractionHistoryEntry(
            url=session.source_url,
            timestamp=session.end_time or self._clock(),
            status=session.status,
            error=session.error,
            session_id=session.session_id,
            retry_count=session.retry_count,
        )
        await self.store.append_history(entry)
        history = await self.store.list_history()
        if len(history) > self.max_history_entries:
            await self.store.replace_history(history[-self.max_history_entries :])

    async def _finish(
        self,
        session: ExtractionSession,
        status: SessionStatus,
        *,
        content: ExtractedContent | None = None,
        error: str | None = None,
    ) -> None:
        session.status = status
        session.end_time = self._clock()
        session.extracted_content = content
        session.error = error
        if content is not None:
            session.metadata.word_count = content.quality.word_count
        await self.store.put_session(session)
        await self._append_history(session)
        await self.log_interaction_event(
            session.session_id,
            _STATUS_EVENTS[status],
            session.source_url,
            {"status": status.value, "error": error} if error else {"status": status.value},
        )

    # =========================================================================
    # Lifecycle operations
    # =========================================================================

    async def create_session(
        self,
        source_url: str,
        extraction_mode: ExtractionMode | str = ExtractionMode.FULL_PAGE,
        page_title: str = "",
        user_agent: str | None = None,
    ) -> ExtractionSession:
        """
        Create and persist a new session in the started state.

        Returns:
            A copy of the stored session
        """
        mode = ExtractionMode(extraction_mode)
        session = ExtractionSession(
            session_id=self._new_id(),
            source_url=source_url,
            extraction_mode=mode,
            start_time=self._clock(),
            user_agent=user_agent,
            metadata=SessionMetadata(
                page_title=page_title,
                domain=domain_of(source_url),
                extraction_method=mode,
            ),
        )
        await self.store.put_session(session)
        await self.log_interaction_event(
            session.session_id, InteractionEventType.EXTRACTION_STARTED, source_url
        )
        logger.info("Created extraction session {} for {}", session.session_id, source_url)
        return session.copy()

    async def update_session(
        self,
        session_id: str,
        *,
        status: SessionStatus | str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        """
        Apply a status-only or metadata-only partial update.

        Terminal statuses are reached only through complete_session and
        fail_session.

        Raises:
            SessionNotFound: Unknown session id
            InvalidTransition: Status not reachable from the current status
            ValueError: Unknown metadata field
        """
        if metadata:
            unknown = set(metadata) - _METADATA_FIELDS
            if unknown:
                raise ValueError(f"Unknown session metadata fields: {sorted(unknown)}")

        async with self._lock(session_id):
            session = await self._require(session_id)

            if status is not None:
                target = SessionStatus(status)
                if target in (SessionStatus.COMPLETE, SessionStatus.FAILED):
                    raise InvalidTransition(
                        session_id,
                        session.status.value,
                        target.value,
                        "use complete_session or fail_session",
                    )
                if target != session.status or not session.is_active:
                    self._check_transition(session, target)
                    logger.debug(
                        "Session {}: {} -> {}", session_id, session.status.value, target.value
                    )
                    session.status = target

            if metadata:
                for key, value in metadata.items():
                    if key == "extraction_method":
                        value = ExtractionMode(value)
                    setattr(session.metadata, key, value)

            await self.store.put_session(session)

    async def complete_session(self, session_id: str, content: ExtractedContent) -> None:
        """
        Mark a session complete with its extracted content.

        Raises:
            SessionNotFound: Unknown session id
            InvalidTransition: Session already complete or failed
        """
        async with self._lock(session_id):
            session = await self._require(session_id)
            self._check_transition(session, SessionStatus.COMPLETE)
            await self._finish(session, SessionStatus.COMPLETE, content=content)
        logger.info("Session {} complete", session_id)

    async def fail_session(self, session_id: str, error_message: str) -> None:
        """
        Mark a session failed.

        Raises:
            SessionNotFound: Unknown session id
            InvalidTransition: Session already complete or failed
        """
        async with self._lock(session_id):
            session = await self._require(session_id)
            self._check_transition(session, SessionStatus.FAILED)
            await self._finish(session, SessionStatus.FAILED, error=error_message)
            exhausted = not self.retry_policy.may_retry(session.retry_count)
        logger.warning(
            "Session {} failed (retry {}/{}{}): {}",
            session_id,
            session.retry_count,
            self.retry_policy.max_retries,
            ", retries exhausted" if exhausted else "",
            error_message,
        )

    async def retry_extraction(self, session_id: str) -> bool:
        """
        Reset a session for another attempt if the retry policy allows it.

        Returns:
            True if the session was reset to started, False if retries are
            exhausted (the session is left untouched)

        Raises:
            SessionNotFound: Unknown session id
            InvalidTransition: Session is complete
        """
        async with self._lock(session_id):
            session = await self._require(session_id)
            if session.status == SessionStatus.COMPLETE:
                raise InvalidTransition(
                    session_id, session.status.value, SessionStatus.STARTED.value,
                    "session is terminal",
                )

            if not self.retry_policy.may_retry(session.retry_count):
                await self.log_interaction_event(
                    session_id,
                    InteractionEventType.RETRY_ATTEMPTED,
                    session.source_url,
                    {"retry_count": session.retry_count, "max_retries_exceeded": True},
                )
                logger.info(
                    "Session {} retry refused: {}/{} used",
                    session_id,
                    session.retry_count,
                    self.retry_policy.max_retries,
                )
                return False

            session.retry_count += 1
            session.status = SessionStatus.STARTED
            session.error = None
            session.end_time = None
            await self.store.put_session(session)
            await self.log_interaction_event(
                session_id,
                InteractionEventType.RETRY_ATTEMPTED,
                session.source_url,
                {"retry_count": session.retry_count},
            )

        logger.info(
            "Session {} retry {}/{}",
            session_id,
            session.retry_count,
            self.retry_policy.max_retries,
        )
        return True

    async def ensure_retry(self, session_id: str) -> None:
        """Like retry_extraction, but raises RetryExhausted instead of returning False."""
        if not await self.retry_extraction(session_id):
            session = await self._require(session_id)
            raise RetryExhausted(session_id, session.retry_count, self.retry_policy.max_retries)

    def retries_remaining(self, session: ExtractionSession) -> int:
        return max(0, self.retry_policy.max_retries - session.retry_count)

    def is_retry_exhausted(self, session: ExtractionSession) -> bool:
        """True when a failed session may not be retried again."""
        return session.status == SessionStatus.FAILED and not self.retry_policy.may_retry(
            session.retry_count
        )

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_session(self, session_id: str) -> ExtractionSession:
        """Raises SessionNotFound for unknown ids."""
        return await self._require(session_id)

    async def find_session(self, session_id: str) -> ExtractionSession | None:
        return await self.store.get_session(session_id)

    async def get_active_sessions(self) -> list[ExtractionSession]:
        """Sessions that are neither complete nor failed, oldest first."""
        sessions = [s for s in await self.store.list_sessions() if s.is_active]
        return sorted(sessions, key=lambda s: s.start_time)

    async def get_extraction_history(self, limit: int | None = None) -> list[ExtractionHistoryEntry]:
        """History entries, most recent first."""
        history = list(reversed(await self.store.list_history()))
        history.sort(key=lambda e: e.timestamp, reverse=True)
        return history if limit is None else history[:limit]

    async def get_interaction_events(self, limit: int | None = None) -> list[UserInteractionEvent]:
        """Interaction events, most recent first."""
        events = list(reversed(await self.store.list_events()))
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events if limit is None else events[:limit]

    async def get_analytics_summary(self) -> AnalyticsSummary:
        history = await self.store.list_history()
        sessions = {s.session_id: s for s in await self.store.list_sessions()}
        return summarize(history, sessions)

    # =========================================================================
    # Telemetry and housekeeping
    # =========================================================================

    async def log_interaction_event(
        self,
        session_id: str,
        event_type: InteractionEventType | str,
        url: str,
        metadata: dict[str, Any] | None = None,
    ) -> UserInteractionEvent:
        """Append an interaction event, trimming the collection to capacity."""
        event = UserInteractionEvent(
            event_id=self._new_event_id(),
            event_type=InteractionEventType(event_type),
            session_id=session_id,
            url=url,
            timestamp=self._clock(),
            metadata=metadata,
        )
        await self.store.append_event(event)
        events = await self.store.list_events()
        if len(events) > self.max_event_entries:
            await self.store.replace_events(events[-self.max_event_entries :])
        return event

    async def cleanup_expired_sessions(self, max_age: timedelta | None = None) -> int:
        """
        Remove sessions started longer ago than max_age, whatever their status.

        Interaction events of removed sessions go with them; history is kept
        for analytics and only trimmed to capacity. Safe to call repeatedly.

        Args:
            max_age: Age threshold (defaults to the manager's session_timeout)

        Returns:
            Number of sessions removed
        """
        max_age = max_age if max_age is not None else self.session_timeout
        now = self._clock()
        removed: set[str] = set()

        for session in await self.store.list_sessions():
            if not session.is_expired(max_age, now):
                continue
            async with self._lock(session.session_id):
                if await self.store.delete_session(session.session_id):
                    removed.add(session.session_id)
                    logger.debug(
                        "Removed expired session {} ({}, age {})",
                        session.session_id,
                        session.status.value,
                        now - session.start_time,
                    )

        events = [e for e in await self.store.list_events() if e.session_id not in removed]
        await self.store.replace_events(events[-self.max_event_entries :])

        history = await self.store.list_history()
        if len(history) > self.max_history_entries:
            await self.store.replace_history(history[-self.max_history_entries :])

        if removed:
            logger.info("Cleaned up {} expired extraction sessions", len(removed))
        return len(removed)
