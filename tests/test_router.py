"""Tests for event routing and fan-out."""

from posesync.events import MusicControl, PoseData
from posesync.router import EventRouter
from posesync.sessions import SessionStore
from tests.conftest import FakeClock, FakeConnection


def _join_ab(router: EventRouter) -> tuple[FakeConnection, FakeConnection]:
    a, b = FakeConnection("a"), FakeConnection("b")
    router.on_join(a, "s1", "A")
    router.on_join(b, "s1", "B")
    return a, b


def test_join_sends_roster_and_announces(router: EventRouter) -> None:
    a, b = _join_ab(router)

    assert a.sent == [
        ("session-users", {"users": []}),
        ("user-joined", {"userId": "B", "userCount": 2}),
    ]
    assert b.sent == [("session-users", {"users": ["A"]})]


def test_join_binds_connection(router: EventRouter) -> None:
    a = FakeConnection("a")

    assert router.on_join(a, "s1", "A") == 1
    assert router.registry.lookup(a) == ("s1", "A")


def test_roster_is_first_message_for_joiner(router: EventRouter) -> None:
    a, b = _join_ab(router)
    c = FakeConnection("c")
    router.on_join(c, "s1", "C")
    router.on_pose(a, PoseData(sessionId="s1", userId="A", poseData={"k": 1}, timestamp=5))

    assert c.sent[0] == ("session-users", {"users": ["A", "B"]})
    assert c.sent[1][0] == "receive-pose"


def test_join_counts_match_bindings(router: EventRouter, store: SessionStore) -> None:
    conns = [FakeConnection(str(i)) for i in range(5)]
    for i, conn in enumerate(conns):
        assert router.on_join(conn, "s1", f"U{i}") == i + 1

    assert len(router.registry) == 5
    assert store.member_count == 5


def test_pose_goes_to_others_only(router: EventRouter) -> None:
    a, b = _join_ab(router)
    c = FakeConnection("c")
    router.on_join(c, "s1", "C")
    for conn in (a, b, c):
        conn.sent.clear()

    delivered = router.on_pose(a, PoseData(sessionId="s1", userId="A", poseData={"keypoints": []}, timestamp=1234))

    assert delivered == 2
    assert a.sent == []
    expected = ("receive-pose", {"userId": "A", "poseData": {"keypoints": []}, "timestamp": 1234})
    assert b.sent == [expected]
    assert c.sent == [expected]


def test_pose_does_not_cross_sessions(router: EventRouter) -> None:
    a, b = _join_ab(router)
    other = FakeConnection("other")
    router.on_join(other, "s2", "X")
    other.sent.clear()

    router.on_pose(a, PoseData(sessionId="s1", userId="A", poseData={}, timestamp=1))

    assert other.sent == []


def test_pose_without_timestamp_is_stamped(router: EventRouter) -> None:
    a, b = _join_ab(router)
    b.sent.clear()

    router.on_pose(a, PoseData(sessionId="s1", userId="A", poseData={}))

    (payload,) = b.events("receive-pose")
    assert isinstance(payload["timestamp"], int)


def test_pose_from_unbound_connection_dropped(router: EventRouter) -> None:
    a, b = _join_ab(router)
    b.sent.clear()
    stranger = FakeConnection("stranger")

    assert router.on_pose(stranger, PoseData(sessionId="s1", userId="A", poseData={}, timestamp=1)) == 0
    assert b.sent == []
    assert stranger.sent == []


def test_pose_with_spoofed_user_dropped(router: EventRouter) -> None:
    a, b = _join_ab(router)
    a.sent.clear()

    assert router.on_pose(b, PoseData(sessionId="s1", userId="A", poseData={}, timestamp=1)) == 0
    assert a.sent == []


def test_pose_for_other_session_dropped(router: EventRouter) -> None:
    a, b = _join_ab(router)
    other = FakeConnection("other")
    router.on_join(other, "s2", "X")
    other.sent.clear()

    assert router.on_pose(a, PoseData(sessionId="s2", userId="A", poseData={}, timestamp=1)) == 0
    assert other.sent == []


def test_pose_refreshes_liveness(router: EventRouter, store: SessionStore, clock: FakeClock) -> None:
    a, b = _join_ab(router)
    clock.advance(250)
    router.on_pose(a, PoseData(sessionId="s1", userId="A", poseData={}, timestamp=1))
    clock.advance(100)

    stale = [user for _, user, _ in store.stale_members(clock.now, 300)]
    assert stale == ["B"]


def test_music_echoes_to_everyone(router: EventRouter) -> None:
    a, b = _join_ab(router)
    a.sent.clear()
    b.sent.clear()

    delivered = router.on_media_control(a, MusicControl(sessionId="s1", action="play", position=12.5, timestamp=99))

    expected = ("music-event", {"action": "play", "position": 12.5, "timestamp": 99})
    assert delivered == 2
    assert a.sent == [expected]
    assert b.sent == [expected]


def test_music_has_no_liveness_effect(router: EventRouter, store: SessionStore, clock: FakeClock) -> None:
    a, b = _join_ab(router)
    clock.advance(301)
    router.on_media_control(a, MusicControl(sessionId="s1", action="pause", position=3.0))

    assert len(list(store.stale_members(clock.now, 300))) == 2


def test_music_from_unbound_connection_dropped(router: EventRouter) -> None:
    a, b = _join_ab(router)
    a.sent.clear()
    b.sent.clear()

    assert router.on_media_control(FakeConnection("x"), MusicControl(sessionId="s1", action="play", position=0)) == 0
    assert router.on_media_control(a, MusicControl(sessionId="s2", action="play", position=0)) == 0
    assert a.sent == [] and b.sent == []


def test_disconnect_announces_departure(router: EventRouter, store: SessionStore) -> None:
    a, b = _join_ab(router)
    a.sent.clear()

    assert router.on_disconnect(b) == 1
    assert a.sent == [("user-left", {"userId": "B", "userCount": 1})]
    assert store.members("s1") == {"A"}
    assert router.registry.lookup(b) is None


def test_last_disconnect_deletes_session(router: EventRouter, store: SessionStore, clock: FakeClock) -> None:
    a = FakeConnection("a")
    router.on_join(a, "s1", "A")

    assert router.on_disconnect(a) == 0
    assert "s1" not in store
    clock.advance(1000)
    assert list(store.stale_members(clock.now, 300)) == []


def test_disconnect_is_single_shot(router: EventRouter) -> None:
    a, b = _join_ab(router)
    a.sent.clear()

    router.on_disconnect(b)
    assert router.on_disconnect(b) is None
    assert a.events("user-left") == [{"userId": "B", "userCount": 1}]


def test_disconnect_without_join(router: EventRouter) -> None:
    assert router.on_disconnect(FakeConnection("never")) is None


def test_duplicate_identity_last_join_wins(router: EventRouter, store: SessionStore) -> None:
    a, b = _join_ab(router)
    b2 = FakeConnection("b2")

    assert router.on_join(b2, "s1", "B") == 2
    assert store.connection_for("s1", "B") is b2

    # The superseded socket closing must not evict the newer one
    a.sent.clear()
    assert router.on_disconnect(b) is None
    assert store.connection_for("s1", "B") is b2
    assert a.sent == []


def test_superseded_socket_stops_relaying(router: EventRouter, store: SessionStore) -> None:
    a, b = _join_ab(router)
    b2 = FakeConnection("b2")
    router.on_join(b2, "s1", "B")

    assert router.registry.lookup(b) is None
    assert len(router.registry) == store.member_count == 2

    router.on_disconnect(b2)
    a.sent.clear()
    pose = PoseData(sessionId="s1", userId="B", poseData={"k": 1}, timestamp=1)

    assert router.on_pose(b, pose) == 0
    assert a.sent == []
    assert store.members("s1") == {"A"}
    assert len(router.registry) == store.member_count == 1
    assert router.on_disconnect(b) is None


def test_rejoin_elsewhere_leaves_previous_session(router: EventRouter, store: SessionStore) -> None:
    a, b = _join_ab(router)
    a.sent.clear()

    router.on_join(b, "s2", "B")

    assert a.sent == [("user-left", {"userId": "B", "userCount": 1})]
    assert store.members("s1") == {"A"}
    assert store.members("s2") == {"B"}
    assert router.registry.lookup(b) == ("s2", "B")


def test_dispatch_routes_valid_payloads(router: EventRouter) -> None:
    a, b = FakeConnection("a"), FakeConnection("b")
    router.dispatch(a, "join-session", {"sessionId": "s1", "userId": "A"})
    router.dispatch(b, "join-session", {"sessionId": "s1", "userId": "B"})
    router.dispatch(a, "music-control", {"sessionId": "s1", "action": "seek", "position": 30})

    (to_b,) = b.events("music-event")
    (to_a,) = a.events("music-event")
    assert to_a == to_b
    assert to_b["action"] == "seek"
    assert to_b["position"] == 30


def test_dispatch_drops_malformed_silently(router: EventRouter, store: SessionStore) -> None:
    a = FakeConnection("a")
    router.dispatch(a, "join-session", {"sessionId": "s1"})
    router.dispatch(a, "no-such-event", {})

    assert a.sent == []
    assert store.session_count == 0


def test_send_failure_to_one_peer_does_not_stop_fanout(router: EventRouter) -> None:
    a, b = _join_ab(router)
    c = FakeConnection("c")
    router.on_join(c, "s1", "C")
    b.closed = True
    c.sent.clear()

    delivered = router.on_pose(a, PoseData(sessionId="s1", userId="A", poseData={}, timestamp=1))

    assert delivered == 1
    assert c.events("receive-pose")
