"""
Extraction session records.

Sessions, history entries and interaction events are plain dataclasses that
serialize to JSON-friendly dicts (ISO-8601 timestamps) so any key-value store
can hold them.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any
from urllib.parse import urlparse

# =============================================================================
# Clock / id source
# =============================================================================


def utc_now() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(timezone.utc)


def new_session_id() -> str:
    return f"session_{uuid.uuid4().hex[:16]}"


def new_event_id() -> str:
    return f"event_{uuid.uuid4().hex[:16]}"


def domain_of(url: str) -> str:
    """Hostname of a URL, empty string when it has none."""
    try:
        return urlparse(url).hostname or ""
    except ValueError:
        return ""


def _parse_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_time(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


# =============================================================================
# Enums
# =============================================================================


class SessionStatus(str, Enum):
    """Lifecycle status of an extraction session."""

    STARTED = "started"
    EXTRACTING = "extracting"
    VALIDATING = "validating"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    @property
    def rank(self) -> int:
        """Position in the forward-only progress lattice."""
        return _STATUS_RANK[self]


ACTIVE_STATUSES = frozenset(
    {SessionStatus.STARTED, SessionStatus.EXTRACTING, SessionStatus.VALIDATING}
)

_STATUS_RANK = {
    SessionStatus.STARTED: 0,
    SessionStatus.EXTRACTING: 1,
    SessionStatus.VALIDATING: 2,
    SessionStatus.COMPLETE: 3,
    SessionStatus.FAILED: 3,
}


class ExtractionMode(str, Enum):
    """Scope of the extraction."""

    FULL_PAGE = "full_page"
    SELECTION = "selection"


class InteractionEventType(str, Enum):
    """User interaction telemetry event types."""

    BUTTON_SHOWN = "button_shown"
    BUTTON_CLICKED = "button_clicked"
    EXTRACTION_STARTED = "extraction_started"
    EXTRACTION_COMPLETED = "extraction_completed"
    EXTRACTION_FAILED = "extraction_failed"
    RETRY_ATTEMPTED = "retry_attempted"
    LESSON_OPENED = "lesson_opened"
    SESSION_CLEANUP = "session_cleanup"


# =============================================================================
# Extracted content
# =============================================================================


@dataclass(frozen=True)
class ContentMetadata:
    """Provenance of extracted content."""

    source_url: str
    domain: str
    author: str | None = None
    publication_date: datetime | None = None
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_url": self.source_url,
            "domain": self.domain,
            "author": self.author,
            "publication_date": _format_time(self.publication_date),
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContentMetadata:
        return cls(
            source_url=data["source_url"],
            domain=data.get("domain") or domain_of(data["source_url"]),
            author=data.get("author"),
            publication_date=_parse_time(data.get("publication_date")),
            description=data.get("description"),
        )


@dataclass(frozen=True)
class ContentQuality:
    """Readability measures of extracted content."""

    word_count: int
    reading_time: int  # minutes
    suitability_score: float  # 0.0 - 1.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.suitability_score <= 1.0:
            raise ValueError(
                f"suitability_score must be within [0, 1], got {self.suitability_score}"
            )
        if self.word_count < 0 or self.reading_time < 0:
            raise ValueError("word_count and reading_time must be non-negative")

    def to_dict(self) -> dict[str, Any]:
        return {
            "word_count": self.word_count,
            "reading_time": self.reading_time,
            "suitability_score": self.suitability_score,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContentQuality:
        return cls(
            word_count=int(data["word_count"]),
            reading_time=int(data["reading_time"]),
            suitability_score=float(data["suitability_score"]),
        )


@dataclass(frozen=True)
class ExtractedContent:
    """Content attached to a completed session. Immutable."""

    text: str
    title: str
    metadata: ContentMetadata
    quality: ContentQuality

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "title": self.title,
            "metadata": self.metadata.to_dict(),
            "quality": self.quality.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExtractedContent:
        return cls(
            text=data["text"],
            title=data["title"],
            metadata=ContentMetadata.from_dict(data["metadata"]),
            quality=ContentQuality.from_dict(data["quality"]),
        )


# =============================================================================
# Session
# =============================================================================


@dataclass
class SessionMetadata:
    """Page-level details captured alongside a session."""

    page_title: str = ""
    domain: str = ""
    extraction_method: ExtractionMode = ExtractionMode.FULL_PAGE
    content_type: str | None = None
    word_count: int | None = None
    language: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "page_title": self.page_title,
            "domain": self.domain,
            "extraction_method": self.extraction_method.value,
            "content_type": self.content_type,
            "word_count": self.word_count,
            "language": self.language,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionMetadata:
        return cls(
            page_title=data.get("page_title", ""),
            domain=data.get("domain", ""),
            extraction_method=ExtractionMode(data.get("extraction_method", "full_page")),
            content_type=data.get("content_type"),
            word_count=data.get("word_count"),
            language=data.get("language"),
        )


@dataclass
class ExtractionSession:
    """Tracked lifecycle of one extraction attempt."""

    session_id: str
    source_url: str
    extraction_mode: ExtractionMode
    start_time: datetime
    status: SessionStatus = SessionStatus.STARTED
    retry_count: int = 0
    end_time: datetime | None = None
    extracted_content: ExtractedContent | None = None
    error: str | None = None
    user_agent: str | None = None
    metadata: SessionMetadata = field(default_factory=SessionMetadata)

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    @property
    def duration(self) -> timedelta | None:
        if self.end_time is None:
            return None
        return self.end_time - self.start_time

    def is_terminal(self, max_retries: int) -> bool:
        """Complete, or failed with no retries left under the given cap."""
        if self.status == SessionStatus.COMPLETE:
            return True
        return self.status == SessionStatus.FAILED and self.retry_count >= max_retries

    def is_expired(self, max_age: timedelta, now: datetime) -> bool:
        return now - self.start_time > max_age

    def copy(self) -> ExtractionSession:
        """Detached copy; nested content is frozen so a shallow copy suffices."""
        return replace(self, metadata=replace(self.metadata))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "session_id": self.session_id,
            "source_url": self.source_url,
            "extraction_mode": self.extraction_mode.value,
            "status": self.status.value,
            "retry_count": self.retry_count,
            "start_time": _format_time(self.start_time),
            "end_time": _format_time(self.end_time),
            "extracted_content": (
                self.extracted_content.to_dict() if self.extracted_content else None
            ),
            "error": self.error,
            "user_agent": self.user_agent,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExtractionSession:
        """Create from dictionary."""
        content = data.get("extracted_content")
        return cls(
            session_id=data["session_id"],
            source_url=data["source_url"],
            extraction_mode=ExtractionMode(data.get("extraction_mode", "full_page")),
            status=SessionStatus(data["status"]),
            retry_count=int(data.get("retry_count", 0)),
            start_time=_parse_time(data["start_time"]),
            end_time=_parse_time(data.get("end_time")),
            extracted_content=ExtractedContent.from_dict(content) if content else None,
            error=data.get("error"),
            user_agent=data.get("user_agent"),
            metadata=SessionMetadata.from_dict(data.get("metadata") or {}),
        )


# =============================================================================
# History and telemetry
# =============================================================================


@dataclass(frozen=True)
class ExtractionHistoryEntry:
    """One terminal outcome. Never mutated after insertion."""

    url: str
    timestamp: datetime
    status: SessionStatus
    error: str | None = None
    session_id: str | None = None
    retry_count: int | None = None  # None when the session linkage is unknown

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "timestamp": _format_time(self.timestamp),
            "status": self.status.value,
            "error": self.error,
            "session_id": self.session_id,
            "retry_count": self.retry_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExtractionHistoryEntry:
        return cls(
            url=data["url"],
            timestamp=_parse_time(data["timestamp"]),
            status=SessionStatus(data["status"]),
            error=data.get("error"),
            session_id=data.get("session_id"),
            retry_count=data.get("retry_count"),
        )


@dataclass(frozen=True)
class UserInteractionEvent:
    """Append-only telemetry record."""

    event_id: str
    event_type: InteractionEventType
    session_id: str
    url: str
    timestamp: datetime
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "session_id": self.session_id,
            "url": self.url,
            "timestamp": _format_time(self.timestamp),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserInteractionEvent:
        return cls(
            event_id=data["event_id"],
            event_type=InteractionEventType(data["event_type"]),
            session_id=data["session_id"],
            url=data["url"],
            timestamp=_parse_time(data["timestamp"]),
            metadata=data.get("metadata"),
        )
