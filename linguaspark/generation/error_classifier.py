"""
Classification of local generation failures into user-facing messages.

Errors raised on this side of the wire (HTTP status errors, connection
failures, timeouts) are sorted into the same categories the generation
service uses, so the UI shows one vocabulary of titles and next steps.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import httpx

from linguaspark.generation.events import StructuredError, generate_error_id


class ErrorType(str, Enum):
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    CONTENT_ISSUE = "CONTENT_ISSUE"
    NETWORK_ERROR = "NETWORK_ERROR"
    UNKNOWN = "UNKNOWN"


QUOTA_INDICATORS = (
    "quota",
    "rate limit",
    "too many requests",
    "limit exceeded",
    "429",
    "resource_exhausted",
)
NETWORK_INDICATORS = (
    "network",
    "connection",
    "timeout",
    "timed out",
    "fetch",
    "econnrefused",
    "enotfound",
    "etimedout",
)
CONTENT_INDICATORS = (
    "invalid input",
    "content too short",
    "unsupported format",
    "parsing error",
    "invalid content",
    "content validation",
    "invalid_argument",
)


@dataclass
class ClassifiedError:
    type: ErrorType
    original_error: BaseException
    error_id: str
    status_code: int | None = None
    context: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def technical_details(self) -> str:
        details = [f"Message: {self.original_error}"]
        if self.status_code is not None:
            details.append(f"Status: {self.status_code}")
        details.append(f"Exception: {type(self.original_error).__name__}")
        return "\n".join(details)


class ErrorClassifier:
    """Maps exceptions to ErrorType and renders StructuredError messages."""

    def __init__(self, support_contact: str | None = "support@linguaspark.com"):
        self.support_contact = support_contact

    def classify(self, error: BaseException, context: dict[str, Any] | None = None) -> ClassifiedError:
        status = None
        if isinstance(error, httpx.HTTPStatusError):
            status = error.response.status_code
        return ClassifiedError(
            type=self._determine_type(error, status),
            original_error=error,
            error_id=generate_error_id(),
            status_code=status,
            context=dict(context or {}),
        )

    def _determine_type(self, error: BaseException, status: int | None) -> ErrorType:
        text = str(error).lower()

        if status == 429 or any(i in text for i in QUOTA_INDICATORS):
            return ErrorType.QUOTA_EXCEEDED

        if (
            isinstance(error, (httpx.TransportError, TimeoutError))
            or status in (502, 503, 504)
            or any(i in text for i in NETWORK_INDICATORS)
        ):
            return ErrorType.NETWORK_ERROR

        if status == 400 or any(i in text for i in CONTENT_INDICATORS):
            return ErrorType.CONTENT_ISSUE

        return ErrorType.UNKNOWN

    def user_message(
        self,
        classified: ClassifiedError,
        session_id: str | None = None,
        retries_exhausted: bool = False,
    ) -> StructuredError:
        """Render a classified error the way the generation service would."""
        if classified.type == ErrorType.QUOTA_EXCEEDED:
            title = "API Quota Exceeded"
            message = "API quota exceeded, please try again later"
            steps = [
                "Wait a few minutes before trying again",
                "Try generating a shorter lesson",
                "Contact support if the issue persists",
            ]
            contact = self.support_contact
        elif classified.type == ErrorType.CONTENT_ISSUE:
            title = "Content Processing Error"
            message = "Unable to process this content, please try different text"
            steps = [
                "Ensure the content has at least 100 words",
                "Try selecting different text from the webpage",
                "Check that the content is in a supported language",
                "Remove any special characters or formatting",
            ]
            contact = None
        elif classified.type == ErrorType.NETWORK_ERROR:
            title = "Connection Error"
            message = "Connection error, please check your internet and try again"
            steps = [
                "Check your internet connection",
                "Try refreshing the page",
                "Wait a moment and try again",
                "Contact support if the problem continues",
            ]
            contact = None
        else:
            title = "Service Temporarily Unavailable"
            message = "AI service temporarily unavailable, please try again later"
            steps = [
                "Wait a few minutes and try again",
                "Try refreshing the page",
                "Contact support with the error ID below",
            ]
            contact = self.support_contact

        return StructuredError(
            type=title,
            message=message,
            actionable_steps=steps,
            error_id=classified.error_id,
            support_contact=contact,
            session_id=session_id,
            retries_exhausted=retries_exhausted,
        )
