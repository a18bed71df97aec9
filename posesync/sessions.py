"""
In-memory session store.

Sessions are created on the first join to an unseen key and deleted in the
same locked operation that removes their last member, so no caller ever sees
an empty session.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Tuple

logger = logging.getLogger("posesync")

# Passed as ``connection=`` to leave() when any owner should match
ANY_CONNECTION = object()


@dataclass
class Member:
    user_id: str
    connection: Any
    joined_at: float
    last_activity: float


@dataclass
class Session:
    session_id: str
    created_at: float
    members: Dict[str, Member] = field(default_factory=dict)


class SessionStore:
    """Session id -> members, guarded by one lock for the whole store"""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def join(self, session_id: str, user_id: str, connection: Any) -> int:
        """
        Insert or replace ``user_id`` in ``session_id``, creating the session
        if needed. Returns the resulting member count.

        A repeated join with the same user id replaces the member entry (last
        writer wins); the previous connection is not closed here.
        """
        with self._lock:
            now = self._clock()
            session = self._sessions.get(session_id)
            if session is None:
                session = Session(session_id=session_id, created_at=now)
                self._sessions[session_id] = session
                logger.info("🎪 Session created: %s", session_id)

            previous = session.members.get(user_id)
            session.members[user_id] = Member(
                user_id=user_id,
                connection=connection,
                joined_at=previous.joined_at if previous else now,
                last_activity=now,
            )
            return len(session.members)

    def leave(
        self, session_id: str, user_id: str, connection: Any = ANY_CONNECTION
    ) -> Optional[int]:
        """
        Remove ``user_id`` from ``session_id``.

        Returns the member count after removal (0 means the session is gone),
        or ``None`` when there was nothing to remove. When ``connection`` is
        given, the member is only removed if that connection still owns it.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                logger.debug("leave: no session %s", session_id)
                return None
            member = session.members.get(user_id)
            if member is None:
                logger.debug("leave: %s not in %s", user_id, session_id)
                return None
            if connection is not ANY_CONNECTION and member.connection is not connection:
                logger.debug("leave: %s in %s is owned by a newer connection", user_id, session_id)
                return None

            del session.members[user_id]
            remaining = len(session.members)
            if remaining == 0:
                del self._sessions[session_id]
                logger.info("🗑️ Session deleted: %s", session_id)
            return remaining

    def touch(self, session_id: str, user_id: str) -> bool:
        """Refresh last activity; returns False if the member is absent"""
        with self._lock:
            session = self._sessions.get(session_id)
            member = session.members.get(user_id) if session else None
            if member is None:
                return False
            member.last_activity = self._clock()
            return True

    def members(self, session_id: str) -> Set[str]:
        with self._lock:
            session = self._sessions.get(session_id)
            return set(session.members) if session else set()

    def connections(self, session_id: str) -> List[Tuple[str, Any]]:
        """Snapshot of ``(user_id, connection)`` pairs for fan-out"""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return []
            return [(m.user_id, m.connection) for m in session.members.values()]

    def connection_for(self, session_id: str, user_id: str) -> Optional[Any]:
        with self._lock:
            session = self._sessions.get(session_id)
            member = session.members.get(user_id) if session else None
            return member.connection if member else None

    def stale_members(
        self, now: float, threshold: float
    ) -> Iterator[Tuple[str, str, Any]]:
        """
        Members idle for longer than ``threshold`` seconds at ``now``.

        The scan is taken under the lock and iterated afterwards, so callers
        may join/leave while consuming it. Every call starts a fresh scan.
        """
        with self._lock:
            stale = [
                (session_id, member.user_id, member.connection)
                for session_id, session in self._sessions.items()
                for member in session.members.values()
                if now - member.last_activity > threshold
            ]
        return iter(stale)

    def now(self) -> float:
        return self._clock()

    @property
    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    @property
    def member_count(self) -> int:
        with self._lock:
            return sum(len(s.members) for s in self._sessions.values())

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions
