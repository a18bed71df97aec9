"""
Event router: validates inbound events against the sender's binding and fans
them out to the right members of the session.

Every method is synchronous. Sends only enqueue onto the peers' outboxes, so
each operation runs to completion without yielding to the event loop.
"""
import logging
from typing import Any, Dict, Optional

from .events import (
    RECEIVE_POSE, MUSIC_EVENT, SESSION_USERS, USER_JOINED, USER_LEFT,
    InboundEvent, JoinSession, MalformedEvent, MusicControl, PoseData,
    parse_event,
)
from .registry import ConnectionRegistry
from .sessions import SessionStore
from .utils import now_ms

logger = logging.getLogger("posesync")


class EventRouter:
    def __init__(self, store: SessionStore, registry: ConnectionRegistry) -> None:
        self.store = store
        self.registry = registry

    # ============================================================
    # BOUNDARY
    # ============================================================

    def dispatch(self, connection: Any, name: str, payload: Any) -> None:
        """Validate one inbound event and route it; malformed input is dropped"""
        try:
            event = parse_event(name, payload)
        except MalformedEvent as e:
            logger.debug("Dropping %s from %s: %s", name, connection, e)
            return
        self.route(connection, event)

    def route(self, connection: Any, event: InboundEvent) -> None:
        if isinstance(event, JoinSession):
            self.on_join(connection, event.session_id, event.user_id)
        elif isinstance(event, PoseData):
            self.on_pose(connection, event)
        elif isinstance(event, MusicControl):
            self.on_media_control(connection, event)

    # ============================================================
    # MEMBERSHIP
    # ============================================================

    def on_join(self, connection: Any, session_id: str, user_id: str) -> int:
        previous = self.registry.lookup(connection)
        if previous is not None and previous != (session_id, user_id):
            logger.warning(
                "%s rejoined as %s/%s while bound to %s/%s",
                connection, session_id, user_id, *previous,
            )
            self._depart(connection, *previous)

        replaced = self.store.connection_for(session_id, user_id)
        count = self.store.join(session_id, user_id, connection)
        if replaced is not None and replaced is not connection:
            # One live binding per identity: the older socket stops relaying
            self.registry.unbind(replaced)
            logger.info("%s took over %s/%s from %s", connection, session_id, user_id, replaced)
        self.registry.bind(connection, session_id, user_id)

        # Roster goes out before anything else can be queued for this peer
        roster = sorted(self.store.members(session_id) - {user_id})
        connection.send(SESSION_USERS, {"users": roster})
        self._broadcast(
            session_id,
            USER_JOINED,
            {"userId": user_id, "userCount": count},
            exclude=connection,
        )
        logger.info("✅ %s joined %s (%d members)", user_id, session_id, count)
        return count

    def on_disconnect(self, connection: Any) -> Optional[int]:
        """Handle a closed connection; only the first call per connection acts"""
        binding = self.registry.unbind(connection)
        if binding is None:
            return None
        return self._depart(connection, *binding)

    def _depart(self, connection: Any, session_id: str, user_id: str) -> Optional[int]:
        remaining = self.store.leave(session_id, user_id, connection=connection)
        if remaining is None:
            return None
        if remaining > 0:
            self._broadcast(
                session_id, USER_LEFT, {"userId": user_id, "userCount": remaining}
            )
        logger.info("👋 %s left %s (%d remaining)", user_id, session_id, remaining)
        return remaining

    # ============================================================
    # RELAY
    # ============================================================

    def on_pose(self, connection: Any, event: PoseData) -> int:
        """Forward a pose to every other member; returns the number of recipients"""
        binding = self.registry.lookup(connection)
        if binding != (event.session_id, event.user_id):
            logger.debug("Dropping pose from unbound %s", connection)
            return 0

        self.store.touch(event.session_id, event.user_id)
        return self._broadcast(
            event.session_id,
            RECEIVE_POSE,
            {
                "userId": event.user_id,
                "poseData": event.pose_data,
                "timestamp": event.timestamp if event.timestamp is not None else now_ms(),
            },
            exclude=connection,
        )

    def on_media_control(self, connection: Any, event: MusicControl) -> int:
        """Echo a transport action to the whole session, sender included"""
        binding = self.registry.lookup(connection)
        if binding is None or binding[0] != event.session_id:
            logger.debug("Dropping music-control from unbound %s", connection)
            return 0
        if event.session_id not in self.store:
            return 0

        logger.info(
            "🎵 %s at %ss (session: %s)", event.action, event.position, event.session_id
        )
        return self._broadcast(
            event.session_id,
            MUSIC_EVENT,
            {
                "action": event.action,
                "position": event.position,
                "timestamp": event.timestamp if event.timestamp is not None else now_ms(),
            },
        )

    def _broadcast(
        self,
        session_id: str,
        event: str,
        data: Dict[str, Any],
        exclude: Any = None,
    ) -> int:
        delivered = 0
        for user_id, peer in self.store.connections(session_id):
            if peer is exclude:
                continue
            if peer.send(event, data):
                delivered += 1
        return delivered
