"""In-memory session store for the authentication gateway."""

from __future__ import annotations

import dataclasses
import secrets
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional


@dataclass
class Session:
    """A single session record, keyed by the value of the session cookie."""

    session_id: str
    token: str = ""
    original_url: str = ""
    state: str = ""
    created_at: float = field(default_factory=time.time)
    last_access: float = field(default_factory=time.time)

    @property
    def authenticated(self) -> bool:
        return bool(self.token)


@dataclass
class _KeyLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class SessionStore:
    """A thread-safe in-memory store of session records.

    ``put`` is an upsert: it replaces every field of the record, so callers
    that need to keep a value must read it first. Read-then-write sequences
    for one session id are serialised by holding :meth:`lock`.
    """

    def __init__(
        self,
        cookie_name: str,
        idle_timeout_seconds: int = 0,
        absolute_timeout_seconds: int = 0,
        *,
        cookie_secure: bool,
        cookie_samesite: str,
    ) -> None:
        self._cookie_name = cookie_name
        self._idle_timeout = idle_timeout_seconds
        self._absolute_timeout = absolute_timeout_seconds
        self._cookie_secure = cookie_secure
        self._cookie_samesite = cookie_samesite
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()
        self._key_locks: Dict[str, _KeyLock] = {}

    @property
    def cookie_name(self) -> str:
        return self._cookie_name

    def get(self, session_id: Optional[str]) -> Optional[Session]:
        """Return a copy of the record for ``session_id``, or ``None``."""

        if not session_id:
            return None
        now = time.time()
        with self._lock:
            self._purge_expired(now)
            entry = self._sessions.get(session_id)
            if entry is None:
                return None
            entry.last_access = now
            return dataclasses.replace(entry)

    def put(
        self, session_id: str, token: str, original_url: str, state: str = ""
    ) -> Session:
        """Create or overwrite the record for ``session_id``."""

        if not session_id:
            raise ValueError("session_id must be a non-empty string")
        now = time.time()
        with self._lock:
            previous = self._sessions.get(session_id)
            # Expiry bookkeeping survives the overwrite; every data field
            # is replaced.
            created_at = previous.created_at if previous else now
            entry = Session(
                session_id=session_id,
                token=token or "",
                original_url=original_url or "",
                state=state or "",
                created_at=created_at,
                last_access=now,
            )
            self._sessions[session_id] = entry
            return dataclasses.replace(entry)

    @contextmanager
    def lock(self, session_id: str) -> Iterator[None]:
        """Hold exclusive access to ``session_id`` for the duration of the block."""

        with self._lock:
            key_lock = self._key_locks.get(session_id)
            if key_lock is None:
                key_lock = self._key_locks[session_id] = _KeyLock()
            key_lock.users += 1
        key_lock.lock.acquire()
        try:
            yield
        finally:
            key_lock.lock.release()
            with self._lock:
                key_lock.users -= 1
                if key_lock.users == 0:
                    del self._key_locks[session_id]

    @staticmethod
    def new_session_id() -> str:
        return secrets.token_urlsafe(32)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _purge_expired(self, now: float) -> None:
        if not self._idle_timeout and not self._absolute_timeout:
            return
        # Collect keys first so we can safely delete while iterating.
        expired = [
            session_id
            for session_id, entry in self._sessions.items()
            if self._is_expired(entry, now)
        ]
        for session_id in expired:
            del self._sessions[session_id]

    def _is_expired(self, entry: Session, now: float) -> bool:
        # A zero timeout disables that bound; with both at zero records live
        # for as long as the store does.
        if self._idle_timeout and now - entry.last_access > self._idle_timeout:
            return True
        if self._absolute_timeout and now - entry.created_at > self._absolute_timeout:
            return True
        return False

    def set_cookie(self, response, session_id: str) -> None:
        """Issue ``session_id`` to the client as the session cookie."""

        max_age = self._absolute_timeout if self._absolute_timeout > 0 else None
        response.set_cookie(
            self._cookie_name,
            session_id,
            max_age=max_age,
            httponly=True,
            secure=self._cookie_secure,
            samesite=self._cookie_samesite,
            path="/",
        )
