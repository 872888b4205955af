"""
HTTP client for the streaming lesson generation endpoint.

Opens one POST per run and yields the raw response body chunk by chunk.
Opening the stream is retried on timeouts, connection errors and 5xx
responses; once bytes are flowing, failures are left to the caller.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import httpx
from loguru import logger

from linguaspark.config import Settings, get_settings
from linguaspark.generation.events import GenerationRequest


class GenerationClient:
    """Async HTTP client for the lesson generation service."""

    STREAM_PATH = "/api/generate-lesson-stream"

    def __init__(
        self,
        api_url: str,
        api_token: str | None = None,
        timeout_seconds: float = 120.0,
        connect_retries: int = 3,
        backoff_base: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the generation client.

        Args:
            api_url: Base URL of the generation service
            api_token: Optional bearer token
            timeout_seconds: Read timeout per chunk
            connect_retries: Attempts to open the stream
            backoff_base: First retry delay in seconds (doubles each attempt)
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self.api_url = api_url.rstrip("/")
        self.api_token = api_token or None
        self.connect_retries = max(1, connect_retries)
        self.backoff_base = backoff_base
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            follow_redirects=True,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> GenerationClient:
        settings = settings or get_settings()
        return cls(
            api_url=settings.generation_api_url,
            api_token=settings.generation_api_token,
            timeout_seconds=settings.generation_timeout_seconds,
            connect_retries=settings.generation_connect_retries,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> GenerationClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def stream_url(self) -> str:
        return f"{self.api_url}{self.STREAM_PATH}"

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "text/event-stream"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    async def _open_stream(self, request: GenerationRequest) -> httpx.Response:
        """
        Send the request and return the response with its body unread.

        Raises:
            httpx.HTTPStatusError: 4xx response, or 5xx after all attempts
            httpx.RequestError: Connection failure after all attempts
        """
        last_error: Exception | None = None

        for attempt in range(self.connect_retries):
            wait_time = self.backoff_base * (2 ** attempt)
            try:
                http_request = self.client.build_request(
                    "POST",
                    self.stream_url,
                    json=request.to_payload(),
                    headers=self._headers(),
                )
                response = await self.client.send(http_request, stream=True)
                if response.is_error:
                    await response.aread()
                    await response.aclose()
                    response.raise_for_status()
                return response

            except httpx.HTTPStatusError as e:
                last_error = e
                if e.response.status_code < 500:
                    logger.error("Generation request rejected: {}", e.response.status_code)
                    raise
                logger.warning(
                    "Generation server error {} on attempt {}/{}. Retrying in {}s...",
                    e.response.status_code,
                    attempt + 1,
                    self.connect_retries,
                    wait_time,
                )

            except httpx.RequestError as e:
                last_error = e
                logger.warning(
                    "Generation request error on attempt {}/{}: {}. Retrying in {}s...",
                    attempt + 1,
                    self.connect_retries,
                    e,
                    wait_time,
                )

            if attempt < self.connect_retries - 1:
                await asyncio.sleep(wait_time)

        logger.error(
            "Generation stream could not be opened after {} attempts: {}",
            self.connect_retries,
            last_error,
        )
        raise last_error

    async def stream_lesson(self, request: GenerationRequest) -> AsyncIterator[bytes]:
        """
        Yield the raw response body of a generation run.

        The response is closed when the iterator is exhausted or closed early.
        """
        response = await self._open_stream(request)
        try:
            async for chunk in response.aiter_bytes():
                yield chunk
        finally:
            await response.aclose()

    async def health_check(self) -> bool:
        """
        Check if the generation service is reachable.

        Returns:
            True if the service answered 200, False otherwise
        """
        try:
            response = await self.client.get(f"{self.api_url}/api/health", timeout=5.0)
            return response.status_code == 200
        except httpx.HTTPError:
            return False
