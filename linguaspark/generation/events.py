"""
Wire types for streamed lesson generation.

The response body is a sequence of `data: <json>` records. Each JSON payload
is one of three shapes, discriminated on its `type` field:

- progress: {"type": "progress", "step"?, "progress": 0-100, "phase"?, "section"?}
- complete: {"type": "complete", "step": ..., "progress": 100, "lesson": {...}}
- error:    {"type": "error", "error": {"type", "message", "actionableSteps"?, "errorId"?, "supportContact"?}}

Payloads that match none of them are rejected at decode time.
"""

from __future__ import annotations

import time
import uuid
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


def generate_error_id() -> str:
    """Support-traceable id such as ERR_LZ3K9X1A_4F2C9D1E."""
    stamp = _base36(int(time.time() * 1000))
    return f"ERR_{stamp}_{uuid.uuid4().hex[:8]}".upper()


def _base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while value:
        value, rem = divmod(value, 36)
        out = digits[rem] + out
    return out or "0"


class _WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Request
# =============================================================================


class GenerationRequest(_WireModel):
    """Body of the single POST that starts a generation run."""

    source_text: str = Field(min_length=1)
    lesson_type: str = Field(min_length=1)  # discussion, grammar, travel, business, pronunciation
    student_level: str = Field(min_length=1)  # A1 - C1
    target_language: str = Field(min_length=1)
    source_url: str
    content_metadata: dict[str, Any] | None = None
    structured_content: dict[str, Any] | None = None
    word_count: int | None = Field(default=None, ge=0)
    reading_time: int | None = Field(default=None, ge=0)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# =============================================================================
# Stream events
# =============================================================================


class ProgressEvent(_WireModel):
    type: Literal["progress"] = "progress"
    step: str = ""
    progress: float = Field(ge=0, le=100)
    phase: str | None = None
    section: str | None = None


class CompleteEvent(_WireModel):
    type: Literal["complete"] = "complete"
    step: str = ""
    progress: float = Field(default=100, ge=0, le=100)
    lesson: dict[str, Any]


class UpstreamErrorPayload(_WireModel):
    type: str
    message: str
    actionable_steps: list[str] = Field(default_factory=list)
    # assigned locally when the service omits it
    error_id: str = Field(default_factory=generate_error_id)
    support_contact: str | None = None


class ErrorEvent(_WireModel):
    type: Literal["error"] = "error"
    error: UpstreamErrorPayload


GenerationEvent = Annotated[
    Union[ProgressEvent, CompleteEvent, ErrorEvent],
    Field(discriminator="type"),
]

GENERATION_EVENT_ADAPTER: TypeAdapter[GenerationEvent] = TypeAdapter(GenerationEvent)


def decode_event(payload: Any) -> ProgressEvent | CompleteEvent | ErrorEvent:
    """
    Validate a decoded JSON payload against the event union.

    Raises:
        pydantic.ValidationError: Payload matches none of the event shapes
    """
    return GENERATION_EVENT_ADAPTER.validate_python(payload)


# =============================================================================
# Caller-facing error
# =============================================================================


class StructuredError(_WireModel):
    """What a caller of run_generation receives instead of a lesson."""

    type: str
    message: str
    actionable_steps: list[str] = Field(default_factory=list)
    error_id: str
    support_contact: str | None = None
    session_id: str | None = None
    retries_exhausted: bool = False

    @classmethod
    def from_upstream(
        cls,
        payload: UpstreamErrorPayload,
        session_id: str | None = None,
        retries_exhausted: bool = False,
    ) -> StructuredError:
        return cls(
            type=payload.type,
            message=payload.message,
            actionable_steps=list(payload.actionable_steps),
            error_id=payload.error_id,
            support_contact=payload.support_contact,
            session_id=session_id,
            retries_exhausted=retries_exhausted,
        )
