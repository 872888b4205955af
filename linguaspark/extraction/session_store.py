"""
Session persistence for extraction sessions.

Three namespaced collections live behind one async interface:

- sessions: keyed by session_id, last write wins
- history: append-only list of terminal outcomes
- events: append-only list of interaction telemetry

Backends raise StoreUnavailable when they cannot be used. FallbackSessionStore
switches to a second backend the first time that happens.
"""

from __future__ import annotations

import json
import os
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from loguru import logger

from linguaspark.exceptions import StoreUnavailable
from linguaspark.extraction.models import (
    ExtractionHistoryEntry,
    ExtractionSession,
    UserInteractionEvent,
)


class SessionStore(ABC):
    """Abstract key-value store for sessions, history and events."""

    # ---- sessions -----------------------------------------------------------

    @abstractmethod
    async def get_session(self, session_id: str) -> ExtractionSession | None:
        """Return a copy of the stored session, or None."""

    @abstractmethod
    async def put_session(self, session: ExtractionSession) -> None:
        """Insert or replace a session."""

    @abstractmethod
    async def delete_session(self, session_id: str) -> bool:
        """Remove a session. Returns False if it did not exist."""

    @abstractmethod
    async def list_sessions(self) -> list[ExtractionSession]:
        """All stored sessions, in no particular order."""

    # ---- history ------------------------------------------------------------

    @abstractmethod
    async def append_history(self, entry: ExtractionHistoryEntry) -> None:
        ...

    @abstractmethod
    async def list_history(self) -> list[ExtractionHistoryEntry]:
        """History in insertion order."""

    @abstractmethod
    async def replace_history(self, entries: Iterable[ExtractionHistoryEntry]) -> None:
        """Overwrite the history collection. Used only for capacity trimming."""

    # ---- events -------------------------------------------------------------

    @abstractmethod
    async def append_event(self, event: UserInteractionEvent) -> None:
        ...

    @abstractmethod
    async def list_events(self) -> list[UserInteractionEvent]:
        """Events in insertion order."""

    @abstractmethod
    async def replace_events(self, events: Iterable[UserInteractionEvent]) -> None:
        ...


class InMemorySessionStore(SessionStore):
    """Process-local store. Used in tests and as the usual fallback."""

    def __init__(self) -> None:
        self._sessions: dict[str, ExtractionSession] = {}
        self._history: list[ExtractionHistoryEntry] = []
        self._events: list[UserInteractionEvent] = []

    async def get_session(self, session_id: str) -> ExtractionSession | None:
        session = self._sessions.get(session_id)
        return session.copy() if session else None

    async def put_session(self, session: ExtractionSession) -> None:
        self._sessions[session.session_id] = session.copy()

    async def delete_session(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    async def list_sessions(self) -> list[ExtractionSession]:
        return [s.copy() for s in self._sessions.values()]

    async def append_history(self, entry: ExtractionHistoryEntry) -> None:
        self._history.append(entry)

    async def list_history(self) -> list[ExtractionHistoryEntry]:
        return list(self._history)

    async def replace_history(self, entries: Iterable[ExtractionHistoryEntry]) -> None:
        self._history = list(entries)

    async def append_event(self, event: UserInteractionEvent) -> None:
        self._events.append(event)

    async def list_events(self) -> list[UserInteractionEvent]:
        return list(self._events)

    async def replace_events(self, events: Iterable[UserInteractionEvent]) -> None:
        self._events = list(events)


class JsonFileSessionStore(SessionStore):
    """
    Stores sessions as JSON files.

    Layout under the store directory:
        sessions/{session_id}.json
        history.json
        events.json

    Corrupted session files are skipped with a warning; any OS-level failure
    surfaces as StoreUnavailable.
    """

    def __init__(self, store_dir: Path):
        self.store_dir = Path(store_dir)
        self.sessions_dir = self.store_dir / "sessions"
        self.history_path = self.store_dir / "history.json"
        self.events_path = self.store_dir / "events.json"
        try:
            self.sessions_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailable(f"Cannot create store at {self.store_dir}: {e}") from e

    def _session_path(self, session_id: str) -> Path:
        """Raises ValueError for ids that would escape the sessions directory."""
        if (
            not session_id
            or session_id in (".", "..")
            or "/" in session_id
            or "\\" in session_id
            or "\x00" in session_id
        ):
            raise ValueError(f"Invalid session id: {session_id!r}")
        return self.sessions_dir / f"{session_id}.json"

    def _write_json(self, path: Path, data: Any) -> None:
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, path)
        except OSError as e:
            raise StoreUnavailable(f"Failed to write {path}: {e}") from e

    def _read_json(self, path: Path, default: Any) -> Any:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return default
        except json.JSONDecodeError as e:
            logger.warning("Ignoring corrupted store file {}: {}", path, e)
            return default
        except OSError as e:
            raise StoreUnavailable(f"Failed to read {path}: {e}") from e

    def _load_session_file(self, path: Path) -> ExtractionSession | None:
        data = self._read_json(path, None)
        if data is None:
            return None
        try:
            return ExtractionSession.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping unreadable session file {}: {}", path, e)
            return None

    async def get_session(self, session_id: str) -> ExtractionSession | None:
        return self._load_session_file(self._session_path(session_id))

    async def put_session(self, session: ExtractionSession) -> None:
        self._write_json(self._session_path(session.session_id), session.to_dict())

    async def delete_session(self, session_id: str) -> bool:
        path = self._session_path(session_id)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StoreUnavailable(f"Failed to delete {path}: {e}") from e

    async def list_sessions(self) -> list[ExtractionSession]:
        sessions = []
        for path in sorted(self.sessions_dir.glob("*.json")):
            session = self._load_session_file(path)
            if session is not None:
                sessions.append(session)
        return sessions

    async def append_history(self, entry: ExtractionHistoryEntry) -> None:
        data = self._read_json(self.history_path, [])
        data.append(entry.to_dict())
        self._write_json(self.history_path, data)

    async def list_history(self) -> list[ExtractionHistoryEntry]:
        return [
            ExtractionHistoryEntry.from_dict(item)
            for item in self._read_json(self.history_path, [])
        ]

    async def replace_history(self, entries: Iterable[ExtractionHistoryEntry]) -> None:
        self._write_json(self.history_path, [e.to_dict() for e in entries])

    async def append_event(self, event: UserInteractionEvent) -> None:
        data = self._read_json(self.events_path, [])
        data.append(event.to_dict())
        self._write_json(self.events_path, data)

    async def list_events(self) -> list[UserInteractionEvent]:
        return [
            UserInteractionEvent.from_dict(item)
            for item in self._read_json(self.events_path, [])
        ]

    async def replace_events(self, events: Iterable[UserInteractionEvent]) -> None:
        self._write_json(self.events_path, [e.to_dict() for e in events])


class FallbackSessionStore(SessionStore):
    """
    Delegates to a primary store until it raises StoreUnavailable, then
    switches permanently to the fallback store.

    The failing operation is replayed against the fallback. Data already in
    the primary is not migrated.
    """

    def __init__(self, primary: SessionStore, fallback: SessionStore | None = None):
        self.primary = primary
        self.fallback = fallback or InMemorySessionStore()
        self._active: SessionStore = primary

    @property
    def using_fallback(self) -> bool:
        return self._active is self.fallback

    async def _call(self, method: str, *args: Any) -> Any:
        try:
            return await getattr(self._active, method)(*args)
        except StoreUnavailable as e:
            if self.using_fallback:
                raise
            logger.warning(
                "Primary session store unavailable ({}), switching to {}",
                e,
                type(self.fallback).__name__,
            )
            self._active = self.fallback
            return await getattr(self._active, method)(*args)

    async def get_session(self, session_id: str) -> ExtractionSession | None:
        return await self._call("get_session", session_id)

    async def put_session(self, session: ExtractionSession) -> None:
        await self._call("put_session", session)

    async def delete_session(self, session_id: str) -> bool:
        return await self._call("delete_session", session_id)

    async def list_sessions(self) -> list[ExtractionSession]:
        return await self._call("list_sessions")

    async def append_history(self, entry: ExtractionHistoryEntry) -> None:
        await self._call("append_history", entry)

    async def list_history(self) -> list[ExtractionHistoryEntry]:
        return await self._call("list_history")

    async def replace_history(self, entries: Iterable[ExtractionHistoryEntry]) -> None:
        await self._call("replace_history", list(entries))

    async def append_event(self, event: UserInteractionEvent) -> None:
        await self._call("append_event", event)

    async def list_events(self) -> list[UserInteractionEvent]:
        return await self._call("list_events")

    async def replace_events(self, events: Iterable[UserInteractionEvent]) -> None:
        await self._call("replace_events", list(events))
