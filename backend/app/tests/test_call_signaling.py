"""
Unit tests for the call signaling engine.

Runs the engine against a real registry/directory/relay with fake sockets.
Covers:
  - initiate preconditions (auth, self-call, unknown and offline targets)
  - multi-device ringing and accept from a second device
  - identity checks on accept / reject / end
  - competing accept / reject / end on one room: one winner, no resurrection
  - disconnect-triggered teardown, notified exactly once
  - opaque signal relay and the unreachable notification
"""

import asyncio
from itertools import permutations

import pytest

from app.core.errors import (
    DuplicateRoom,
    InvalidState,
    RoomNotFound,
    SignalingError,
    TargetUnreachable,
    Unauthorized,
)
from app.tests.conftest import FakeSocket, connect
from app.websocket.connection import Connection
from app.websocket.presence import PresenceRegistry
from app.websocket.rooms import CallKind, CallStatus, RoomDirectory
from app.websocket.signaling import CallSignalingEngine
from app.websocket.transport import TransportRelay

ALICE, BOB, CAROL = 1, 2, 3


class FakeUsers:
    def __init__(self, *known: int):
        self._known = set(known)

    async def exists(self, user_id: int) -> bool:
        return user_id in self._known


@pytest.fixture()
def presence():
    return PresenceRegistry()


@pytest.fixture()
def rooms():
    return RoomDirectory()


@pytest.fixture()
def engine(presence, rooms):
    return CallSignalingEngine(presence, rooms, TransportRelay(presence), max_signal_bytes=1024)


@pytest.fixture()
def alice(presence):
    return connect(presence, ALICE, "Alice")


@pytest.fixture()
def bob_devices(presence):
    return connect(presence, BOB, "Bob"), connect(presence, BOB, "Bob")


async def _ring(engine, alice, room_id="room-1", kind=CallKind.VIDEO):
    return await engine.initiate(alice, BOB, kind, room_id=room_id)


# ---------------------------------------------------------------------------
# Initiate
# ---------------------------------------------------------------------------


class TestInitiate:
    @pytest.mark.asyncio
    async def test_offline_target_creates_no_room(self, engine, rooms, alice):
        with pytest.raises(TargetUnreachable) as exc:
            await engine.initiate(alice, BOB, CallKind.AUDIO)
        assert exc.value.context["target_user_id"] == BOB
        assert len(rooms) == 0
        assert alice.websocket.sent == []

    @pytest.mark.asyncio
    async def test_unregistered_caller_rejected(self, engine, rooms, bob_devices):
        anonymous = Connection(FakeSocket())
        with pytest.raises(Unauthorized):
            await engine.initiate(anonymous, BOB, CallKind.AUDIO)
        assert len(rooms) == 0

    @pytest.mark.asyncio
    async def test_cannot_call_yourself(self, engine, presence, alice):
        connect(presence, ALICE)
        with pytest.raises(InvalidState):
            await engine.initiate(alice, ALICE, CallKind.AUDIO)

    @pytest.mark.asyncio
    async def test_unknown_user_is_unreachable(self, engine, rooms, alice, bob_devices):
        with pytest.raises(TargetUnreachable):
            await engine.initiate(alice, BOB, CallKind.AUDIO, users=FakeUsers(ALICE))
        assert len(rooms) == 0

    @pytest.mark.asyncio
    async def test_rings_every_callee_device(self, engine, rooms, alice, bob_devices):
        room = await engine.initiate(alice, BOB, CallKind.VIDEO, users=FakeUsers(ALICE, BOB))

        for device in bob_devices:
            (incoming,) = device.websocket.of_type("incoming-call")
            assert incoming["roomId"] == room.room_id
            assert incoming["kind"] == "video"
            assert incoming["from"] == ALICE
            assert incoming["caller"] == {"id": ALICE, "name": "Alice"}

        (ack,) = alice.websocket.of_type("call-initiated")
        assert ack["roomId"] == room.room_id
        assert rooms.get(room.room_id).status is CallStatus.RINGING
        assert room.room_id.startswith("call_")

    @pytest.mark.asyncio
    async def test_duplicate_room_id(self, engine, alice, bob_devices):
        await _ring(engine, alice, room_id="dup")
        with pytest.raises(DuplicateRoom):
            await _ring(engine, alice, room_id="dup")


# ---------------------------------------------------------------------------
# Accept
# ---------------------------------------------------------------------------


class TestAccept:
    @pytest.mark.asyncio
    async def test_second_device_accepts(self, engine, rooms, alice, bob_devices):
        bob1, bob2 = bob_devices
        room = await _ring(engine, alice)

        await engine.accept(bob2, room.room_id)

        (accepted,) = alice.websocket.of_type("call-accepted")
        assert accepted["acceptedBy"] == BOB
        assert accepted["acceptorName"] == "Bob"
        for conn in (alice, bob2):
            (ready,) = conn.websocket.of_type("room-ready")
            assert ready["participants"] == [ALICE, BOB]
            assert ready["roomId"] == room.room_id
        assert bob1.websocket.of_type("room-ready") == []

        stored = rooms.get(room.room_id)
        assert stored.status is CallStatus.ACCEPTED
        assert stored.accepted_by == BOB
        assert stored.accepted_at is not None

    @pytest.mark.asyncio
    async def test_third_party_cannot_accept(self, engine, presence, rooms, alice, bob_devices):
        carol = connect(presence, CAROL)
        room = await _ring(engine, alice)
        with pytest.raises(Unauthorized):
            await engine.accept(carol, room.room_id)
        assert rooms.get(room.room_id).status is CallStatus.RINGING

    @pytest.mark.asyncio
    async def test_caller_cannot_accept_own_call(self, engine, alice, bob_devices):
        room = await _ring(engine, alice)
        with pytest.raises(Unauthorized):
            await engine.accept(alice, room.room_id)

    @pytest.mark.asyncio
    async def test_double_accept_is_invalid_state(self, engine, alice, bob_devices):
        bob1, bob2 = bob_devices
        room = await _ring(engine, alice)
        await engine.accept(bob1, room.room_id)
        with pytest.raises(InvalidState):
            await engine.accept(bob2, room.room_id)
        assert len(alice.websocket.of_type("call-accepted")) == 1

    @pytest.mark.asyncio
    async def test_unknown_room(self, engine, bob_devices):
        with pytest.raises(RoomNotFound):
            await engine.accept(bob_devices[0], "missing")


# ---------------------------------------------------------------------------
# Reject / End
# ---------------------------------------------------------------------------


class TestRejectAndEnd:
    @pytest.mark.asyncio
    async def test_reject_notifies_caller_and_removes_room(self, engine, rooms, alice, bob_devices):
        room = await _ring(engine, alice)
        result = await engine.reject(bob_devices[0], room.room_id)

        assert result.status is CallStatus.REJECTED
        assert rooms.get(room.room_id) is None
        (rejected,) = alice.websocket.of_type("call-rejected")
        assert rejected["rejectedBy"] == BOB

    @pytest.mark.asyncio
    async def test_reject_by_outsider(self, engine, presence, alice, bob_devices):
        room = await _ring(engine, alice)
        with pytest.raises(Unauthorized):
            await engine.reject(connect(presence, CAROL), room.room_id)

    @pytest.mark.asyncio
    async def test_reject_after_accept_is_invalid(self, engine, alice, bob_devices):
        room = await _ring(engine, alice)
        await engine.accept(bob_devices[0], room.room_id)
        with pytest.raises(InvalidState):
            await engine.reject(bob_devices[0], room.room_id)

    @pytest.mark.asyncio
    async def test_caller_hangs_up_unanswered_call(self, engine, rooms, alice, bob_devices):
        room = await _ring(engine, alice)
        await engine.end(alice, room_id=room.room_id)

        for device in bob_devices:
            (ended,) = device.websocket.of_type("call-ended")
            assert ended["endedBy"] == ALICE
            assert ended["reason"] == "hangup"
        assert rooms.get(room.room_id) is None

        with pytest.raises(RoomNotFound):
            await engine.accept(bob_devices[0], room.room_id)

    @pytest.mark.asyncio
    async def test_end_resolves_room_by_participants(self, engine, rooms, alice, bob_devices):
        room = await _ring(engine, alice)
        await engine.accept(bob_devices[0], room.room_id)

        ended = await engine.end(bob_devices[0], target_user_id=ALICE)

        assert ended.room_id == room.room_id
        assert ended.status is CallStatus.ENDED
        assert ended.duration() is not None
        (event,) = alice.websocket.of_type("call-ended")
        assert event["endedBy"] == BOB
        assert len(rooms) == 0

    @pytest.mark.asyncio
    async def test_end_without_room_or_target(self, engine, alice):
        with pytest.raises(InvalidState):
            await engine.end(alice)

    @pytest.mark.asyncio
    async def test_end_with_no_call_between_users(self, engine, alice):
        with pytest.raises(RoomNotFound):
            await engine.end(alice, target_user_id=BOB)

    @pytest.mark.asyncio
    async def test_outsider_cannot_end(self, engine, presence, rooms, alice, bob_devices):
        room = await _ring(engine, alice)
        with pytest.raises(Unauthorized):
            await engine.end(connect(presence, CAROL), room_id=room.room_id)
        assert room.room_id in rooms


# ---------------------------------------------------------------------------
# Competing transitions
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize("order", list(permutations(["accept", "reject", "end"])))
async def test_competing_transitions_never_resurrect(order, engine, rooms, alice, bob_devices):
    bob1, bob2 = bob_devices
    room = await _ring(engine, alice)
    ops = {
        "accept": lambda: engine.accept(bob1, room.room_id),
        "reject": lambda: engine.reject(bob2, room.room_id),
        "end": lambda: engine.end(alice, room_id=room.room_id),
    }

    outcomes = {}
    for name in order:
        try:
            await ops[name]()
            outcomes[name] = "ok"
        except SignalingError as exc:
            outcomes[name] = exc.code

    assert outcomes[order[0]] == "ok"
    if order[0] == "accept":
        # an accepted call can only be hung up, not rejected
        assert outcomes["reject"] in ("INVALID_STATE", "ROOM_NOT_FOUND")
    else:
        assert [outcomes[name] for name in order[1:]] == ["ROOM_NOT_FOUND", "ROOM_NOT_FOUND"]
    assert len(alice.websocket.of_type("call-accepted")) <= 1
    assert rooms.get(room.room_id) is None


@pytest.mark.asyncio
async def test_concurrent_accept_and_reject_single_winner(engine, rooms, alice, bob_devices):
    bob1, bob2 = bob_devices
    room = await _ring(engine, alice)

    results = await asyncio.gather(
        engine.accept(bob1, room.room_id),
        engine.reject(bob2, room.room_id),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    assert len(winners) == 1
    assert isinstance(results[1], InvalidState)
    assert rooms.get(room.room_id).status is CallStatus.ACCEPTED


# ---------------------------------------------------------------------------
# Disconnect teardown
# ---------------------------------------------------------------------------


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_last_connection_tears_down_calls(self, engine, presence, rooms, alice, bob_devices):
        bob1, _ = bob_devices
        room = await _ring(engine, alice)
        await engine.accept(bob1, room.room_id)

        torn = await engine.disconnect(alice)

        assert [r.room_id for r in torn] == [room.room_id]
        assert presence.is_online(ALICE) is False
        assert len(rooms) == 0
        for device in bob_devices:
            (ended,) = device.websocket.of_type("call-ended")
            assert ended["reason"] == "disconnect"
            assert ended["endedBy"] == ALICE

    @pytest.mark.asyncio
    async def test_other_device_keeps_call_alive(self, engine, presence, rooms, alice, bob_devices):
        bob1, bob2 = bob_devices
        room = await _ring(engine, alice)

        assert await engine.disconnect(bob1) == []

        assert presence.is_online(BOB)
        assert room.room_id in rooms
        assert alice.websocket.of_type("call-ended") == []

    @pytest.mark.asyncio
    async def test_every_room_of_user_is_cleaned(self, engine, presence, rooms, alice, bob_devices):
        carol = connect(presence, CAROL)
        await engine.initiate(alice, BOB, CallKind.AUDIO, room_id="ab")
        await engine.initiate(carol, ALICE, CallKind.AUDIO, room_id="ca")

        torn = await engine.disconnect(alice)

        assert {r.room_id for r in torn} == {"ab", "ca"}
        assert len(carol.websocket.of_type("call-ended")) == 1
        assert len(rooms) == 0

    @pytest.mark.asyncio
    async def test_double_disconnect_notifies_once(self, engine, alice, bob_devices):
        await _ring(engine, alice)
        await engine.disconnect(alice)
        assert await engine.disconnect(alice) == []
        assert len(bob_devices[0].websocket.of_type("call-ended")) == 1

    @pytest.mark.asyncio
    async def test_unregistered_connection(self, engine):
        assert await engine.disconnect(Connection(FakeSocket())) == []


# ---------------------------------------------------------------------------
# Signal relay and stats
# ---------------------------------------------------------------------------


class TestSignalRelay:
    @pytest.mark.asyncio
    async def test_payload_forwarded_verbatim_with_sender(self, engine, alice, bob_devices):
        blob = {"kind": "offer", "sdp": "v=0\r\n...", "nested": [1, 2, {"x": None}]}
        delivered = await engine.relay_signal(alice, BOB, blob)

        assert delivered == 2
        for device in bob_devices:
            (signal,) = device.websocket.of_type("signal")
            assert signal == {"type": "signal", "fromUserId": ALICE, "payload": blob}

    @pytest.mark.asyncio
    async def test_offline_target_gets_unreachable(self, engine, alice):
        assert await engine.relay_signal(alice, BOB, {"candidate": "c"}) == 0
        (event,) = alice.websocket.of_type("unreachable")
        assert event["targetUserId"] == BOB

    @pytest.mark.asyncio
    async def test_oversized_payload_refused(self, engine, alice, bob_devices):
        with pytest.raises(InvalidState):
            await engine.relay_signal(alice, BOB, {"sdp": "x" * 2048})
        assert bob_devices[0].websocket.sent == []

    @pytest.mark.asyncio
    async def test_unregistered_sender(self, engine, bob_devices):
        with pytest.raises(Unauthorized):
            await engine.relay_signal(Connection(FakeSocket()), BOB, {"sdp": "x"})


@pytest.mark.asyncio
async def test_stats_lists_active_rooms(engine, alice, bob_devices):
    room = await _ring(engine, alice)
    stats = engine.stats()
    assert stats["activeRooms"] == 1
    (snapshot,) = stats["rooms"]
    assert snapshot["roomId"] == room.room_id
    assert snapshot["participants"] == [ALICE, BOB]
    assert snapshot["status"] == "ringing"
