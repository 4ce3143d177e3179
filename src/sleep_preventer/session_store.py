#!/usr/bin/env python3
"""
Session Store - registry of reporter processes currently holding sleep prevention.

One entry per reporter pid. All mutations are serialized by a single lock that is
held only for the in-memory change; the JSON state file is written afterwards so
that disk latency never blocks concurrent registrations or a reaper pass.
"""

import json
import logging
import os
import threading
import time
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .errors import InvalidSessionId

logger = logging.getLogger(__name__)

STATE_VERSION = 1


@dataclass(frozen=True)
class Session:
    """One registered reporter"""
    id: int
    registered_at: float
    last_refreshed_at: float
    origin: Optional[str] = None
    # Bumped from a store-wide counter on every register(); not persisted
    generation: int = 0

    def age(self, now: float) -> float:
        return max(0.0, now - self.registered_at)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        del data['generation']
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        session_id = validate_session_id(data["id"])
        registered_at = float(data["registered_at"])
        last_refreshed_at = float(data.get("last_refreshed_at", registered_at))
        origin = data.get("origin")
        return cls(
            id=session_id,
            registered_at=registered_at,
            last_refreshed_at=max(registered_at, last_refreshed_at),
            origin=str(origin) if origin is not None else None,
        )


def validate_session_id(value: Any) -> int:
    """Session ids are positive integer pids"""
    if isinstance(value, bool):
        raise InvalidSessionId(f"Invalid session id: {value!r}")
    try:
        session_id = int(value)
    except (TypeError, ValueError):
        raise InvalidSessionId(f"Invalid session id: {value!r}") from None
    if session_id <= 0 or (isinstance(value, float) and value != session_id):
        raise InvalidSessionId(f"Invalid session id: {value!r}")
    return session_id


class SessionStore:
    """
    Persisted mapping of session id -> Session.

    - register() is an upsert keyed by id
    - deregister() of an unknown id is a no-op
    - snapshot() returns a consistent copy, most recently refreshed first
    """

    def __init__(self, state_file: Path, time_source: Callable[[], float] = time.time):
        self.state_file = Path(state_file)
        self._time = time_source

        self._lock = threading.Lock()
        self._sessions: Dict[int, Session] = {}
        self._version = 0
        self._generation = 0

        # Disk writes are ordered by version; a stale payload is never written over a newer one
        self._persist_lock = threading.Lock()
        self._persisted_version = 0

        self._load_state()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load_state(self):
        """Load persisted sessions; a missing or corrupt file yields an empty store"""
        if not self.state_file.exists():
            logger.info(f"No session state at {self.state_file}, starting empty")
            return

        try:
            with open(self.state_file, 'r', encoding='utf-8') as f:
                state = json.load(f)
            if not isinstance(state, dict) or not isinstance(state.get('sessions'), list):
                raise ValueError("unexpected session state layout")
        except (OSError, ValueError) as e:
            logger.warning(f"Session state {self.state_file} is unreadable ({e}), starting empty")
            self._quarantine_state_file()
            return

        loaded: Dict[int, Session] = {}
        for entry in state['sessions']:
            try:
                session = Session.from_dict(entry)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping invalid session entry {entry!r}: {e}")
                continue
            previous = loaded.get(session.id)
            if previous is None or session.last_refreshed_at >= previous.last_refreshed_at:
                loaded[session.id] = session

        with self._lock:
            for session_id, session in loaded.items():
                self._generation += 1
                loaded[session_id] = replace(session, generation=self._generation)
            self._sessions = loaded
        logger.info(f"Restored {len(loaded)} session(s) from {self.state_file}")

    def _quarantine_state_file(self):
        corrupt = self.state_file.with_name(f"{self.state_file.name}.corrupt")
        try:
            os.replace(self.state_file, corrupt)
            logger.warning(f"Moved unreadable session state to {corrupt}")
        except OSError as e:
            logger.error(f"Failed to move unreadable session state aside: {e}")

    def _payload_locked(self) -> Dict[str, Any]:
        self._version += 1
        return {
            'version': STATE_VERSION,
            'sessions': [s.to_dict() for s in self._sessions.values()],
            'timestamp': self._time(),
        }

    def _persist(self, version: int, payload: Dict[str, Any]):
        """Write state atomically (tmp + fsync + replace); failures are logged only"""
        with self._persist_lock:
            if version <= self._persisted_version:
                return

            tmp_state_file = self.state_file.with_name(f"{self.state_file.name}.tmp")
            try:
                self.state_file.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp_state_file, 'w', encoding='utf-8') as f:
                    json.dump(payload, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_state_file, self.state_file)
                self._persisted_version = version
            except OSError as e:
                logger.error(f"Failed to save session state: {e}")
                try:
                    if tmp_state_file.exists():
                        tmp_state_file.unlink()
                except OSError:
                    pass

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def register(self, session_id: Any, origin: Optional[str] = None) -> Session:
        """Insert a new session or refresh an existing one"""
        session_id = validate_session_id(session_id)

        with self._lock:
            now = self._time()
            self._generation += 1
            existing = self._sessions.get(session_id)
            if existing is None:
                session = Session(
                    id=session_id,
                    registered_at=now,
                    last_refreshed_at=now,
                    origin=origin,
                    generation=self._generation,
                )
            else:
                session = replace(
                    existing,
                    last_refreshed_at=max(existing.last_refreshed_at, now),
                    origin=origin if origin is not None else existing.origin,
                    generation=self._generation,
                )
            self._sessions[session_id] = session
            payload = self._payload_locked()
            version = self._version

        if existing is None:
            logger.info(f"Session {session_id} registered (origin={origin})")
        else:
            logger.debug(f"Session {session_id} refreshed")
        self._persist(version, payload)
        return session

    def deregister(self, session_id: Any) -> bool:
        """Remove a session. Returns False if it was not registered"""
        session_id = validate_session_id(session_id)

        with self._lock:
            removed = self._sessions.pop(session_id, None)
            if removed is None:
                return False
            payload = self._payload_locked()
            version = self._version

        logger.info(f"Session {session_id} deregistered")
        self._persist(version, payload)
        return True

    def remove_if_unchanged(self, session_id: int, generation: int) -> bool:
        """
        Remove a session only if it was not registered again since it was judged stale.

        Every register() after the caller's snapshot bumps the generation, even
        on the same clock reading, and therefore wins over the removal.
        """
        with self._lock:
            current = self._sessions.get(session_id)
            if current is None or current.generation != generation:
                return False
            del self._sessions[session_id]
            payload = self._payload_locked()
            version = self._version

        self._persist(version, payload)
        return True

    def clear(self) -> int:
        """Remove every session atomically. Returns the number removed"""
        with self._lock:
            removed = len(self._sessions)
            self._sessions.clear()
            payload = self._payload_locked()
            version = self._version

        self._persist(version, payload)
        return removed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> List[Session]:
        with self._lock:
            sessions = list(self._sessions.values())
        sessions.sort(key=lambda s: s.last_refreshed_at, reverse=True)
        return sessions

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def get(self, session_id: int) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)
