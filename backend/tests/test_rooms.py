from __future__ import annotations

import gc
import threading
from typing import Any

from backend.taskhub.realtime.rooms import RoomRegistry


class FakeMember:
    def __init__(self, session_id: str, *, capacity: int = 100, explode: bool = False) -> None:
        self.session_id = session_id
        self.capacity = capacity
        self.explode = explode
        self.received: list[dict[str, Any]] = []
        self.aborted: list[str] = []

    def deliver(self, payload: dict[str, Any]) -> bool:
        if self.explode:
            raise RuntimeError("socket gone")
        if len(self.received) >= self.capacity:
            return False
        self.received.append(payload)
        return True

    def abort(self, reason: str) -> None:
        self.aborted.append(reason)


def test_join_is_idempotent() -> None:
    registry = RoomRegistry()
    member = FakeMember("s1")

    assert registry.join("t1", member) is True
    assert registry.join("t1", member) is False
    assert registry.members("t1") == {"s1"}

    assert registry.broadcast("t1", {"n": 1}) == 1
    assert member.received == [{"n": 1}]


def test_broadcast_reaches_only_room_members() -> None:
    registry = RoomRegistry()
    alice, bob, carol = FakeMember("a"), FakeMember("b"), FakeMember("c")
    registry.join("t1", alice)
    registry.join("t1", bob)
    registry.join("t2", carol)

    delivered = registry.broadcast("t1", {"event": "newMessage"})

    assert delivered == 2
    assert alice.received == bob.received == [{"event": "newMessage"}]
    assert carol.received == []
    assert registry.broadcast("empty", {"event": "x"}) == 0


def test_leave_removes_session_from_every_room() -> None:
    registry = RoomRegistry()
    member, other = FakeMember("s1"), FakeMember("s2")
    registry.join("t1", member)
    registry.join("t2", member)
    registry.join("t2", other)

    left = registry.leave("s1")

    assert sorted(left) == ["t1", "t2"]
    assert registry.rooms_of("s1") == frozenset()
    assert registry.members("t2") == {"s2"}
    assert len(registry) == 1
    assert registry.leave("s1") == []


def test_leave_room_only_touches_one_room() -> None:
    registry = RoomRegistry()
    member = FakeMember("s1")
    registry.join("t1", member)
    registry.join("t2", member)

    registry.leave_room("t1", "s1")
    registry.leave_room("missing", "s1")

    assert not registry.is_member("t1", "s1")
    assert registry.is_member("t2", "s1")


def test_failing_member_does_not_block_others() -> None:
    registry = RoomRegistry()
    broken = FakeMember("broken", explode=True)
    healthy = FakeMember("healthy")
    registry.join("t1", broken)
    registry.join("t1", healthy)
    registry.join("t2", broken)

    delivered = registry.broadcast("t1", {"n": 1})

    assert delivered == 1
    assert healthy.received == [{"n": 1}]
    assert broken.aborted == ["error"]
    assert registry.rooms_of("broken") == frozenset()


def test_overflowing_member_is_dropped() -> None:
    registry = RoomRegistry()
    slow = FakeMember("slow", capacity=1)
    fast = FakeMember("fast")
    registry.join("t1", slow)
    registry.join("t1", fast)

    assert registry.broadcast("t1", {"n": 1}) == 2
    assert registry.broadcast("t1", {"n": 2}) == 1

    assert slow.received == [{"n": 1}]
    assert slow.aborted == ["overflow"]
    assert fast.received == [{"n": 1}, {"n": 2}]
    assert registry.members("t1") == {"fast"}


def test_collected_sessions_are_pruned_on_broadcast() -> None:
    registry = RoomRegistry()
    keeper = FakeMember("keeper")
    registry.join("t1", keeper)
    registry.join("t1", FakeMember("ghost"))
    gc.collect()

    assert registry.broadcast("t1", {"n": 1}) == 1
    assert registry.members("t1") == {"keeper"}


def test_concurrent_joins_and_leaves_stay_consistent() -> None:
    registry = RoomRegistry()
    members = [FakeMember(f"s{index}", capacity=100_000) for index in range(16)]
    start = threading.Barrier(len(members))

    def churn(member: FakeMember) -> None:
        start.wait()
        for round_ in range(51):
            registry.join("shared", member)
            registry.join(f"own-{member.session_id}", member)
            registry.broadcast("shared", {"round": round_})
            if round_ % 2:
                registry.leave(member.session_id)

    threads = [threading.Thread(target=churn, args=(member,)) for member in members]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    # The last round is even, so every member ends joined.
    assert registry.members("shared") == {member.session_id for member in members}
    for member in members:
        assert registry.rooms_of(member.session_id) == {"shared", f"own-{member.session_id}"}
        assert member.aborted == []
