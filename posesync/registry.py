"""
Connection registry: which live connection has joined as whom
"""
import threading
from typing import Any, Dict, Optional, Tuple

Binding = Tuple[str, str]  # (session_id, user_id)


class ConnectionRegistry:
    """
    Maps a live connection to the ``(session_id, user_id)`` it claimed on join.

    Absence is always an empty result, never an error. ``unbind`` returning
    ``None`` on the second call is what keeps disconnect handling single-shot
    when a client close and a reaper close race.
    """

    def __init__(self) -> None:
        self._bindings: Dict[Any, Binding] = {}
        self._lock = threading.Lock()

    def bind(self, connection: Any, session_id: str, user_id: str) -> None:
        with self._lock:
            self._bindings[connection] = (session_id, user_id)

    def unbind(self, connection: Any) -> Optional[Binding]:
        with self._lock:
            return self._bindings.pop(connection, None)

    def lookup(self, connection: Any) -> Optional[Binding]:
        with self._lock:
            return self._bindings.get(connection)

    def __len__(self) -> int:
        with self._lock:
            return len(self._bindings)
