"""Shared test doubles."""
import asyncio
import json
from datetime import datetime, timedelta, timezone


class FakeClock:
    """Deterministic clock for session timestamps."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeGenerationClient:
    """Stands in for GenerationClient; yields canned chunks."""

    def __init__(self, chunks=None, error=None, hang=False):
        self.chunks = list(chunks or [])
        self.error = error
        self.hang = hang
        self.requests = []
        self.closed = False

    async def stream_lesson(self, request):
        self.requests.append(request)
        try:
            for chunk in self.chunks:
                yield chunk
            if self.error is not None:
                raise self.error
            if self.hang:
                await asyncio.Event().wait()
        finally:
            self.closed = True


def sse(payload) -> bytes:
    """Encode one event record the way the generation service frames it."""
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")
