"""
Incremental parser for the generation event stream.

Network reads split records anywhere, including inside a multi-byte UTF-8
character. The parser keeps a text buffer, emits every complete record in
arrival order and holds the trailing partial record until more bytes arrive.

A record that is not valid JSON is logged and dropped. A record that is valid
JSON but matches no event shape is quarantined (kept for inspection) and
dropped. Neither stops the stream.
"""

from __future__ import annotations

import codecs
import json
import re
from typing import Any

from loguru import logger
from pydantic import ValidationError

from linguaspark.exceptions import MalformedEventFrame
from linguaspark.generation.events import (
    CompleteEvent,
    ErrorEvent,
    ProgressEvent,
    decode_event,
)

StreamEvent = ProgressEvent | CompleteEvent | ErrorEvent

DATA_FIELD = "data"

# A blank line ends a record; whitespace-only lines count as blank.
_RECORD_SEPARATOR = re.compile(r"\n[ \t]*\n")


def _flatten_legacy(payload: Any) -> Any:
    """Older servers nested the event body under "data": {"type": ..., "data": {...}}."""
    if (
        isinstance(payload, dict)
        and isinstance(payload.get("data"), dict)
        and payload.get("type") in ("progress", "complete")
    ):
        flattened = {k: v for k, v in payload.items() if k != "data"}
        body = payload["data"]
        if payload["type"] == "complete" and "lesson" not in body:
            flattened["lesson"] = body
        else:
            flattened.update(body)
        return flattened
    return payload


class StreamProgressParser:
    """Turns raw response chunks into typed generation events."""

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self.malformed_count = 0
        self.quarantined: list[dict[str, Any]] = []

    @property
    def pending(self) -> str:
        """Text held back waiting for the rest of its record."""
        return self._buffer

    def feed(self, chunk: bytes | str) -> list[StreamEvent]:
        """
        Append a chunk and return every event it completes.

        Args:
            chunk: Raw bytes from the response body (or already-decoded text)

        Returns:
            Decoded events in arrival order (possibly empty)
        """
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        if not text:
            return []

        self._buffer = (self._buffer + text).replace("\r\n", "\n")
        # A lone trailing \r may be the first half of \r\n; keep it buffered as is.
        records = _RECORD_SEPARATOR.split(self._buffer)
        self._buffer = records.pop()
        return self._decode_records(records)

    def flush(self) -> list[StreamEvent]:
        """Decode whatever is left once the stream has ended."""
        tail = self._decoder.decode(b"", final=True)
        remainder = (self._buffer + tail).replace("\r\n", "\n").replace("\r", "\n")
        self._buffer = ""
        return self._decode_records(_RECORD_SEPARATOR.split(remainder))

    def _decode_records(self, records: list[str]) -> list[StreamEvent]:
        events = []
        for record in records:
            try:
                event = self._decode_record(record)
            except MalformedEventFrame as e:
                self.malformed_count += 1
                logger.warning("{} ({!r})", e, e.record[:200])
                continue
            if event is not None:
                events.append(event)
        return events

    def _decode_record(self, record: str) -> StreamEvent | None:
        data_lines = []
        for line in record.split("\n"):
            line = line.strip()
            if not line or line.startswith(":"):
                continue
            name, sep, value = line.partition(":")
            if not sep or name.strip() != DATA_FIELD:
                # event:, id:, retry: and unknown fields carry nothing we use
                continue
            data_lines.append(value.strip())

        if not data_lines:
            return None

        data = "\n".join(data_lines)
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            raise MalformedEventFrame(record, f"invalid JSON: {e.msg}") from e

        payload = _flatten_legacy(payload)
        try:
            return decode_event(payload)
        except ValidationError as e:
            if isinstance(payload, dict):
                self.quarantined.append(payload)
            else:
                self.quarantined.append({"payload": payload})
            logger.warning(
                "Quarantined event with unexpected shape ({} validation errors): {}",
                e.error_count(),
                data[:200],
            )
            return None
