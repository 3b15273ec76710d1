"""Single-use, time-limited update sessions."""

from __future__ import annotations

import logging
import secrets
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from .protocol import PermittedChange, canonical_path

logger = logging.getLogger("treesync.sync.sessions")

DEFAULT_SESSION_TIMEOUT = 60.0  # seconds


def generate_session_id() -> str:
    return f"session_{secrets.token_hex(16)}"


@dataclass
class Session:
    """A batch of permitted changes that may be applied once before expiry."""

    id: str
    changes: List[PermittedChange]
    expires_at: float  # time.monotonic() deadline
    _timer: Optional[threading.Timer] = field(default=None, repr=False, compare=False)

    def expired(self, now: Optional[float] = None) -> bool:
        return (time.monotonic() if now is None else now) >= self.expires_at

    def permits(self, path: str) -> Optional[PermittedChange]:
        key = canonical_path(path)
        if key is None:
            return None
        for change in self.changes:
            if change.path == key:
                return change
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "permittedChanges": [c.to_dict() for c in self.changes],
        }


class SessionManager:
    """Owns the table of live sessions.

    Every transition (create, consume, delete, expire) happens under one
    lock, so a session racing its own timer ends up either consumed or
    expired, never both.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_SESSION_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.timeout = timeout
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def create_session(
        self,
        changes: Sequence[PermittedChange],
        timeout: Optional[float] = None,
    ) -> Session:
        """Register a new session and start its expiry timer."""
        window = self.timeout if timeout is None else timeout
        with self._lock:
            session_id = generate_session_id()
            while session_id in self._sessions:
                session_id = generate_session_id()

            session = Session(
                id=session_id,
                changes=list(changes),
                expires_at=self._clock() + window,
            )
            timer = threading.Timer(window, self._expire, args=(session_id,))
            timer.daemon = True
            session._timer = timer
            self._sessions[session_id] = session
            timer.start()

        logger.info(
            "Created update session %s with %d changes (expires in %.1fs)",
            session_id, len(session.changes), window,
        )
        return session

    def split_into_sessions(
        self,
        changes: Sequence[PermittedChange],
        batch_size: int,
    ) -> List[Session]:
        """Partition changes into consecutive sessions of at most batch_size."""
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")

        sessions: List[Session] = []
        try:
            for start in range(0, len(changes), batch_size):
                sessions.append(self.create_session(changes[start:start + batch_size]))
        except Exception:
            # Leave no partial batch behind to block later requests
            for session in sessions:
                self.delete(session.id)
            raise
        return sessions

    def get(self, session_id: str) -> Optional[Session]:
        """Look up a live session; expired sessions are discarded on sight."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None and session.expired(self._clock()):
                self._discard(session_id)
                session = None

        if session is None:
            logger.warning("Update session not found: %s", session_id)
        return session

    def consume(self, session_id: str) -> Optional[Session]:
        """Atomically remove and return a live session."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                self._discard(session_id)
                if session.expired(self._clock()):
                    session = None

        if session is None:
            logger.warning("Update session not found or expired: %s", session_id)
        else:
            logger.info("Consumed update session %s", session_id)
        return session

    def delete(self, session_id: str) -> None:
        """Cancel a session's timer and remove it; unknown ids are ignored."""
        with self._lock:
            removed = self._discard(session_id)
        if removed:
            logger.info("Update session deleted: %s", session_id)
        else:
            logger.debug("Update session already gone: %s", session_id)

    def has_outstanding(self) -> bool:
        with self._lock:
            return bool(self._sessions)

    def clear(self) -> None:
        """Drop every session and cancel all timers."""
        with self._lock:
            for session_id in list(self._sessions):
                self._discard(session_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _expire(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            logger.info("Update session timed out: %s", session_id)

    def _discard(self, session_id: str) -> bool:
        # Caller holds self._lock
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        if session._timer is not None:
            session._timer.cancel()
        return True


__all__ = ["Session", "SessionManager", "DEFAULT_SESSION_TIMEOUT", "generate_session_id"]
