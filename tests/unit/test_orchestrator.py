"""
Unit tests for GenerationOrchestrator.

The HTTP client is replaced with FakeGenerationClient, which yields canned
response chunks.
"""

import asyncio
from datetime import datetime

import httpx
import pytest

from linguaspark.exceptions import (
    GenerationAborted,
    GenerationCancelled,
    GenerationRequestError,
    GenerationTimeout,
    InvalidTransition,
    NoTerminalEvent,
    RetryExhausted,
    UpstreamGenerationError,
)
from linguaspark.extraction.models import SessionStatus
from linguaspark.extraction.retry_policy import BoundedRetryPolicy
from linguaspark.extraction.session_manager import ExtractionSessionManager
from linguaspark.generation.events import GenerationRequest
from linguaspark.generation.orchestrator import (
    GenerationOrchestrator,
    derive_extracted_content,
    status_for_phase,
)
from tests.helpers import FakeGenerationClient, sse

URL = "https://example.com/a"


@pytest.fixture
def request_body():
    return GenerationRequest(
        source_text="The city council approved a new bike lane network on Tuesday.",
        lesson_type="discussion",
        student_level="B1",
        target_language="english",
        source_url=URL,
    )


def progress(step, value, phase=None, section=None):
    payload = {"type": "progress", "step": step, "progress": value}
    if phase:
        payload["phase"] = phase
    if section:
        payload["section"] = section
    return sse(payload)


def complete(lesson):
    return sse({"type": "complete", "step": "Lesson ready", "progress": 100, "lesson": lesson})


def upstream_error(message="API quota exceeded, please try again later"):
    return sse(
        {
            "type": "error",
            "error": {
                "type": "API Quota Exceeded",
                "message": message,
                "actionableSteps": ["Wait a few minutes before trying again"],
                "errorId": "ERR_TEST_0000ABCD",
                "supportContact": "support@linguaspark.com",
            },
        }
    )


async def wait_for_request(client):
    for _ in range(100):
        if client.requests:
            return
        await asyncio.sleep(0)
    raise AssertionError("stream was never opened")


class TestPhaseMapping:
    @pytest.mark.parametrize(
        "phase, expected",
        [
            ("initialization", SessionStatus.EXTRACTING),
            ("phase1", SessionStatus.EXTRACTING),
            ("Phase2", SessionStatus.EXTRACTING),
            ("validation", SessionStatus.VALIDATING),
            (" saving ", SessionStatus.VALIDATING),
            ("mystery", None),
            (None, None),
        ],
    )
    def test_status_for_phase(self, phase, expected):
        assert status_for_phase(phase) == expected


class TestRunGeneration:
    @pytest.mark.asyncio
    async def test_successful_run(self, manager, request_body, sample_lesson):
        session = await manager.create_session(URL)
        client = FakeGenerationClient(
            [
                progress("Authenticating", 5, "authentication"),
                progress("Generating vocabulary", 40, "phase1", "vocabulary"),
                progress("Validating lesson", 90, "validation"),
                complete(sample_lesson),
            ]
        )
        updates = []
        orchestrator = GenerationOrchestrator(manager, client)

        lesson = await orchestrator.run_generation(request_body, session.session_id, updates.append)

        assert lesson == sample_lesson
        assert [u.status for u in updates] == [
            SessionStatus.EXTRACTING,
            SessionStatus.EXTRACTING,
            SessionStatus.VALIDATING,
            SessionStatus.COMPLETE,
        ]
        assert updates[1].section == "vocabulary"
        assert updates[-1].progress == 100.0

        stored = await manager.get_session(session.session_id)
        assert stored.status == SessionStatus.COMPLETE
        assert stored.extracted_content.title == "Cycling in the City"
        assert client.closed

    @pytest.mark.asyncio
    async def test_moves_started_session_to_extracting(self, manager, request_body):
        session = await manager.create_session(URL)
        seen = []

        async def on_progress(update):
            seen.append((await manager.get_session(session.session_id)).status)

        client = FakeGenerationClient([progress("Starting", 0), complete({"title": "T"})])

        await GenerationOrchestrator(manager, client).run_generation(
            request_body, session.session_id, on_progress
        )

        assert seen[0] == SessionStatus.EXTRACTING

    @pytest.mark.asyncio
    async def test_status_and_progress_never_go_back(self, manager, request_body):
        session = await manager.create_session(URL)
        client = FakeGenerationClient(
            [
                progress("Validating", 60, "validation"),
                progress("Late phase1 update", 30, "phase1"),
                complete({"title": "T"}),
            ]
        )
        updates = []

        await GenerationOrchestrator(manager, client).run_generation(
            request_body, session.session_id, updates.append
        )

        assert [u.status for u in updates[:2]] == [SessionStatus.VALIDATING] * 2
        assert [u.progress for u in updates[:2]] == [60, 60]

    @pytest.mark.asyncio
    async def test_unknown_phase_keeps_status(self, manager, request_body):
        session = await manager.create_session(URL)
        client = FakeGenerationClient(
            [progress("Thinking", 10, "brainstorm"), complete({"title": "T"})]
        )
        updates = []

        await GenerationOrchestrator(manager, client).run_generation(
            request_body, session.session_id, updates.append
        )

        assert updates[0].status == SessionStatus.EXTRACTING
        assert updates[0].phase == "brainstorm"

    @pytest.mark.asyncio
    async def test_upstream_error_fails_session(self, manager, request_body):
        session = await manager.create_session(URL)
        client = FakeGenerationClient(
            [progress("Generating", 20, "phase1"), upstream_error(), complete({"title": "T"})]
        )

        with pytest.raises(UpstreamGenerationError) as exc_info:
            await GenerationOrchestrator(manager, client).run_generation(
                request_body, session.session_id
            )

        error = exc_info.value.structured
        assert error.type == "API Quota Exceeded"
        assert error.error_id == "ERR_TEST_0000ABCD"
        assert error.session_id == session.session_id
        assert error.retries_exhausted is False

        stored = await manager.get_session(session.session_id)
        assert stored.status == SessionStatus.FAILED
        assert stored.error == "API quota exceeded, please try again later"
        assert client.closed

    @pytest.mark.asyncio
    async def test_retries_exhausted_flag(self, store, clock, request_body):
        manager = ExtractionSessionManager(store, BoundedRetryPolicy(max_retries=0), clock=clock)
        session = await manager.create_session(URL)
        client = FakeGenerationClient([upstream_error()])

        with pytest.raises(UpstreamGenerationError) as exc_info:
            await GenerationOrchestrator(manager, client).run_generation(
                request_body, session.session_id
            )

        assert exc_info.value.retries_exhausted is True

    @pytest.mark.asyncio
    async def test_stream_without_terminal_event(self, manager, request_body):
        session = await manager.create_session(URL)
        client = FakeGenerationClient([progress("Generating", 20, "phase1"), b"data: {oops}\n\n"])

        with pytest.raises(NoTerminalEvent):
            await GenerationOrchestrator(manager, client).run_generation(
                request_body, session.session_id
            )

        stored = await manager.get_session(session.session_id)
        assert stored.status == SessionStatus.FAILED

    @pytest.mark.asyncio
    async def test_complete_record_without_trailing_separator(self, manager, request_body):
        session = await manager.create_session(URL)
        client = FakeGenerationClient([complete({"title": "T"}).rstrip(b"\n")])

        lesson = await GenerationOrchestrator(manager, client).run_generation(
            request_body, session.session_id
        )

        assert lesson == {"title": "T"}

    @pytest.mark.asyncio
    async def test_http_error_fails_session(self, manager, request_body):
        session = await manager.create_session(URL)
        client = FakeGenerationClient(error=httpx.ConnectError("connection refused"))

        with pytest.raises(GenerationRequestError) as exc_info:
            await GenerationOrchestrator(manager, client).run_generation(
                request_body, session.session_id
            )

        assert exc_info.value.structured.type == "Connection Error"
        stored = await manager.get_session(session.session_id)
        assert stored.status == SessionStatus.FAILED
        assert stored.error == "connection refused"

    @pytest.mark.asyncio
    async def test_timeout(self, manager, request_body):
        session = await manager.create_session(URL)
        client = FakeGenerationClient([progress("Generating", 20, "phase1")], hang=True)
        orchestrator = GenerationOrchestrator(manager, client, timeout_seconds=0.05)

        with pytest.raises(GenerationTimeout) as exc_info:
            await orchestrator.run_generation(request_body, session.session_id)

        assert exc_info.value.structured.type == "Timeout"
        assert "timed out" in exc_info.value.structured.message
        stored = await manager.get_session(session.session_id)
        assert stored.status == SessionStatus.FAILED
        assert client.closed

    @pytest.mark.asyncio
    async def test_cancel(self, manager, request_body):
        session = await manager.create_session(URL)
        client = FakeGenerationClient(hang=True)
        orchestrator = GenerationOrchestrator(manager, client)

        task = asyncio.create_task(orchestrator.run_generation(request_body, session.session_id))
        await wait_for_request(client)

        assert orchestrator.cancel(session.session_id) is True
        with pytest.raises(GenerationCancelled):
            await task

        stored = await manager.get_session(session.session_id)
        assert stored.status == SessionStatus.FAILED
        assert orchestrator.cancel(session.session_id) is False

    @pytest.mark.asyncio
    async def test_external_cancellation_still_fails_session(self, manager, request_body):
        session = await manager.create_session(URL)
        client = FakeGenerationClient(hang=True)
        orchestrator = GenerationOrchestrator(manager, client)

        task = asyncio.create_task(orchestrator.run_generation(request_body, session.session_id))
        await wait_for_request(client)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        stored = await manager.get_session(session.session_id)
        assert stored.status == SessionStatus.FAILED

    @pytest.mark.asyncio
    async def test_inactive_session_rejected(self, manager, request_body):
        session = await manager.create_session(URL)
        await manager.fail_session(session.session_id, "boom")
        client = FakeGenerationClient([complete({"title": "T"})])

        with pytest.raises(InvalidTransition):
            await GenerationOrchestrator(manager, client).run_generation(
                request_body, session.session_id
            )

        assert client.requests == []

    @pytest.mark.asyncio
    async def test_concurrent_sessions_are_independent(self, manager, request_body):
        a = await manager.create_session("https://example.com/a")
        b = await manager.create_session("https://example.com/b")
        ok = GenerationOrchestrator(manager, FakeGenerationClient([complete({"title": "A"})]))
        bad = GenerationOrchestrator(manager, FakeGenerationClient([upstream_error()]))

        results = await asyncio.gather(
            ok.run_generation(request_body, a.session_id),
            bad.run_generation(request_body, b.session_id),
            return_exceptions=True,
        )

        assert results[0] == {"title": "A"}
        assert isinstance(results[1], UpstreamGenerationError)
        assert (await manager.get_session(a.session_id)).status == SessionStatus.COMPLETE
        assert (await manager.get_session(b.session_id)).status == SessionStatus.FAILED

    @pytest.mark.asyncio
    async def test_upstream_error_without_error_id(self, manager, request_body):
        session = await manager.create_session(URL)
        client = FakeGenerationClient(
            [sse({"type": "error", "error": {"type": "Timeout", "message": "upstream timed out"}})]
        )

        with pytest.raises(UpstreamGenerationError) as exc_info:
            await GenerationOrchestrator(manager, client).run_generation(
                request_body, session.session_id
            )

        error = exc_info.value.structured
        assert error.type == "Timeout"
        assert error.message == "upstream timed out"
        assert error.error_id.startswith("ERR_")
        stored = await manager.get_session(session.session_id)
        assert stored.status == SessionStatus.FAILED
        assert stored.error == "upstream timed out"

    @pytest.mark.asyncio
    async def test_failing_progress_callback_fails_session(self, manager, request_body):
        session = await manager.create_session(URL)
        client = FakeGenerationClient(
            [progress("Generating", 20, "extraction"), complete({"title": "T"})]
        )

        def on_progress(update):
            raise ValueError("display went away")

        with pytest.raises(GenerationAborted) as exc_info:
            await GenerationOrchestrator(manager, client).run_generation(
                request_body, session.session_id, on_progress
            )

        assert isinstance(exc_info.value.__cause__, ValueError)
        assert exc_info.value.structured.type == "Aborted"
        assert "display went away" in exc_info.value.structured.message
        stored = await manager.get_session(session.session_id)
        assert stored.status == SessionStatus.FAILED
        assert "display went away" in stored.error
        assert client.closed

    @pytest.mark.asyncio
    async def test_stream_error_fails_session(self, manager, request_body):
        session = await manager.create_session(URL)
        client = FakeGenerationClient(
            [progress("Generating", 20, "phase1")], error=httpx.StreamConsumed()
        )
        orchestrator = GenerationOrchestrator(manager, client)

        with pytest.raises(GenerationAborted):
            await orchestrator.run_generation(request_body, session.session_id)

        stored = await manager.get_session(session.session_id)
        assert stored.status == SessionStatus.FAILED
        assert orchestrator.cancel(session.session_id) is False


class TestRetryGeneration:
    @pytest.mark.asyncio
    async def test_retry_after_failure(self, manager, request_body):
        session = await manager.create_session(URL)
        await manager.fail_session(session.session_id, "Timeout")
        client = FakeGenerationClient([complete({"title": "Second try"})])

        lesson = await GenerationOrchestrator(manager, client).retry_generation(
            request_body, session.session_id
        )

        assert lesson == {"title": "Second try"}
        stored = await manager.get_session(session.session_id)
        assert stored.status == SessionStatus.COMPLETE
        assert stored.retry_count == 1

    @pytest.mark.asyncio
    async def test_retry_exhausted(self, store, clock, request_body):
        manager = ExtractionSessionManager(store, BoundedRetryPolicy(max_retries=0), clock=clock)
        session = await manager.create_session(URL)
        await manager.fail_session(session.session_id, "Timeout")
        client = FakeGenerationClient([complete({"title": "T"})])

        with pytest.raises(RetryExhausted):
            await GenerationOrchestrator(manager, client).retry_generation(
                request_body, session.session_id
            )

        assert client.requests == []


class TestDeriveExtractedContent:
    def test_defaults_from_source_text(self, request_body):
        content = derive_extracted_content(request_body, {"lessonTitle": "Bikes"})

        assert content.title == "Bikes"
        assert content.quality.word_count == 11
        assert content.quality.reading_time == 1
        assert content.quality.suitability_score == pytest.approx(11 / 200)
        assert content.metadata.domain == "example.com"

    def test_uses_request_metadata(self):
        request = GenerationRequest(
            source_text="word " * 450,
            lesson_type="grammar",
            student_level="C1",
            target_language="english",
            source_url="https://news.org/story",
            content_metadata={
                "title": "Story",
                "author": "A. Writer",
                "publicationDate": "2024-04-30T08:00:00+00:00",
                "suitabilityScore": 1.7,
            },
        )

        content = derive_extracted_content(request, {})

        assert content.title == "Story"
        assert content.metadata.author == "A. Writer"
        assert content.metadata.publication_date == datetime.fromisoformat(
            "2024-04-30T08:00:00+00:00"
        )
        assert content.quality.word_count == 450
        assert content.quality.reading_time == 3
        assert content.quality.suitability_score == 1.0

    def test_bad_publication_date_ignored(self):
        request = GenerationRequest(
            source_text="Short text",
            lesson_type="travel",
            student_level="A2",
            target_language="english",
            source_url="https://example.com/x",
            content_metadata={"publicationDate": "last Tuesday"},
        )

        content = derive_extracted_content(request, {})

        assert content.metadata.publication_date is None
        assert content.title == "example.com"
