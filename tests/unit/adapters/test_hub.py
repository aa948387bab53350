"""Unit tests for the broadcast hub."""

import asyncio
import json
import threading

import pytest

from agent_router.adapters.web.hub import (
    GOING_AWAY,
    TRY_AGAIN_LATER,
    BroadcastHub,
    Subscriber,
)
from agent_router.core.registry import AgentRegistry
from agent_router.schemas.messages import AgentRecord
from agent_router.schemas.types import AgentStatus


class FakeSubscriber:
    """In-memory subscriber recording what it receives."""

    def __init__(self, name: str, fail_after: int | None = None):
        self.name = name
        self.fail_after = fail_after
        self.open = True
        self.sent: list[str] = []
        self.closed_with: tuple[int, str] | None = None
        self.release: asyncio.Event | None = None

    @property
    def is_open(self) -> bool:
        return self.open

    async def send_text(self, data: str) -> None:
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            raise ConnectionResetError("peer went away")
        if self.release is not None:
            await self.release.wait()
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.open = False
        self.closed_with = (code, reason)

    @property
    def messages(self) -> list[dict]:
        return [json.loads(m) for m in self.sent]

    def __repr__(self) -> str:
        return f"FakeSubscriber({self.name})"


class Clock:
    def __init__(self) -> None:
        self.now = 1_700_000_000_000

    def __call__(self) -> int:
        self.now += 1
        return self.now


@pytest.fixture
def registry() -> AgentRegistry:
    registry = AgentRegistry(clock=Clock())
    for agent_id, name in (("a1", "Frontend"), ("a2", "Backend")):
        registry.upsert(
            AgentRecord(
                agent_id=agent_id,
                name=name,
                status=AgentStatus.RUNNING,
                summary="Working",
            )
        )
    return registry


@pytest.fixture
def hub(registry: AgentRegistry) -> BroadcastHub:
    hub = BroadcastHub(registry)
    hub.attach()
    yield hub
    hub.detach()


async def settle() -> None:
    """Give scheduled callbacks and close tasks a chance to run."""
    for _ in range(5):
        await asyncio.sleep(0)


def test_fake_subscriber_satisfies_protocol() -> None:
    assert isinstance(FakeSubscriber("x"), Subscriber)


class TestJoin:
    """Test snapshot delivery on connect."""

    @pytest.mark.asyncio
    async def test_snapshot_is_first_message(self, hub, registry) -> None:
        sub = FakeSubscriber("s1")

        await hub.on_connect(sub)
        await hub.join()

        assert len(sub.messages) == 1
        snapshot = sub.messages[0]
        assert snapshot["type"] == "snapshot"
        assert snapshot["agents"] == [r.to_wire() for r in registry.list()]
        assert isinstance(snapshot["ts"], int)
        assert [a["agent_id"] for a in snapshot["agents"]] == ["a1", "a2"]
        assert snapshot["agents"][0]["actions"] == ["pause"]
        assert "link" not in snapshot["agents"][0]
        assert hub.subscriber_count == 1

    @pytest.mark.asyncio
    async def test_empty_registry_snapshot(self) -> None:
        hub = BroadcastHub(AgentRegistry())
        sub = FakeSubscriber("s1")

        await hub.on_connect(sub)
        await hub.join()

        assert len(sub.messages) == 1
        assert sub.messages[0]["agents"] == []

    @pytest.mark.asyncio
    async def test_join_during_concurrent_mutations(self, registry) -> None:
        """Test a join racing mutations never misses or repeats an update."""
        hub = BroadcastHub(registry, max_queue_depth=1_000_000)
        hub.attach()
        stop = threading.Event()

        def churn() -> None:
            while not stop.is_set():
                registry.apply_action("a1", "pause")
                registry.apply_action("a1", "resume")

        worker = threading.Thread(target=churn)
        worker.start()
        try:
            await asyncio.sleep(0.01)
            sub = FakeSubscriber("late")
            await hub.on_connect(sub)
            await asyncio.sleep(0.01)
        finally:
            stop.set()
            await asyncio.to_thread(worker.join, 5)

        await hub.join()
        hub.detach()

        snapshot, *updates = sub.messages
        assert snapshot["type"] == "snapshot"
        snap_ts = {a["agent_id"]: a["ts"] for a in snapshot["agents"]}
        a1_ts = [u["ts"] for u in updates if u["agent_id"] == "a1"]
        assert all(ts > snap_ts["a1"] for ts in a1_ts)
        assert a1_ts == sorted(set(a1_ts))

        last = updates[-1] if updates else snapshot["agents"][0]
        assert last["status"] == registry.get("a1").status.value

    @pytest.mark.asyncio
    async def test_join_covers_offers_in_flight(self, hub, registry) -> None:
        """Test join waits for offers still queued as loop callbacks."""
        sub = FakeSubscriber("s1")
        await hub.on_connect(sub)
        await hub.join()

        registry.apply_action("a1", "pause")
        outbox = hub._outboxes[sub]
        assert outbox.pending == 1

        await hub.join()

        assert outbox.pending == 0
        assert sub.messages[-1]["status"] == "PAUSED"

    @pytest.mark.asyncio
    async def test_join_after_burst_from_another_thread(self, hub, registry) -> None:
        sub = FakeSubscriber("s1")
        await hub.on_connect(sub)

        def burst() -> None:
            for _ in range(50):
                registry.apply_action("a2", "pause")
                registry.apply_action("a2", "resume")

        worker = threading.Thread(target=burst)
        worker.start()
        await asyncio.to_thread(worker.join, 5)
        await hub.join()

        updates = sub.messages[1:]
        assert len(updates) == 100
        assert updates[-1]["status"] == "RUNNING"


class TestBroadcast:
    """Test fan-out of committed mutations."""

    @pytest.mark.asyncio
    async def test_every_subscriber_gets_each_update(self, hub, registry) -> None:
        subs = [FakeSubscriber(f"s{i}") for i in range(3)]
        for sub in subs:
            await hub.on_connect(sub)

        registry.apply_action("a1", "pause")
        await hub.join()

        for sub in subs:
            assert [m["type"] for m in sub.messages] == ["snapshot", "agent_update"]
            update = sub.messages[1]
            assert update["agent_id"] == "a1"
            assert update["status"] == "PAUSED"
            assert update["summary"] == "Paused by user"
            assert update["actions"] == ["resume"]
            assert update["name"] == "Frontend"
        assert len({sub.sent[1] for sub in subs}) == 1

    @pytest.mark.asyncio
    async def test_updates_arrive_in_commit_order(self, hub, registry) -> None:
        sub = FakeSubscriber("s1")
        await hub.on_connect(sub)

        for _ in range(10):
            registry.apply_action("a1", "pause")
            registry.apply_action("a1", "resume")
        await hub.join()

        statuses = [m["status"] for m in sub.messages[1:]]
        assert statuses == ["PAUSED", "RUNNING"] * 10
        timestamps = [m["ts"] for m in sub.messages[1:]]
        assert timestamps == sorted(timestamps)

    @pytest.mark.asyncio
    async def test_mutation_from_another_thread(self, hub, registry) -> None:
        sub = FakeSubscriber("s1")
        await hub.on_connect(sub)

        await asyncio.to_thread(registry.apply_action, "a2", "pause")
        await hub.join()

        assert sub.messages[-1]["agent_id"] == "a2"
        assert sub.messages[-1]["status"] == "PAUSED"

    @pytest.mark.asyncio
    async def test_disconnected_subscriber_excluded(self, hub, registry) -> None:
        stays, leaves = FakeSubscriber("stays"), FakeSubscriber("leaves")
        await hub.on_connect(stays)
        await hub.on_connect(leaves)

        await hub.on_disconnect(leaves)
        registry.apply_action("a1", "pause")
        await hub.join()

        assert len(stays.messages) == 2
        assert [m["type"] for m in leaves.messages] in (["snapshot"], [])
        assert hub.subscribers() == [stays]

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, hub) -> None:
        sub = FakeSubscriber("s1")
        await hub.on_connect(sub)

        await hub.on_disconnect(sub)
        await hub.on_disconnect(sub)

        assert hub.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_closed_subscriber_is_pruned(self, hub, registry) -> None:
        good, gone = FakeSubscriber("good"), FakeSubscriber("gone")
        await hub.on_connect(good)
        await hub.on_connect(gone)
        await hub.join()

        gone.open = False
        registry.apply_action("a1", "pause")
        await hub.join()

        assert hub.subscribers() == [good]
        assert len(good.messages) == 2
        assert len(gone.messages) == 1

    @pytest.mark.asyncio
    async def test_failing_subscriber_is_isolated(self, hub, registry) -> None:
        """Test a send failure prunes only that subscriber."""
        good, bad = FakeSubscriber("good"), FakeSubscriber("bad", fail_after=1)
        await hub.on_connect(bad)
        await hub.on_connect(good)

        mutated = registry.apply_action("a1", "pause")
        await hub.join()
        await settle()

        assert mutated.status == AgentStatus.PAUSED
        assert len(good.messages) == 2
        assert len(bad.messages) == 1
        assert hub.subscribers() == [good]
        assert bad.closed_with is not None
        assert bad.closed_with[0] == TRY_AGAIN_LATER

        registry.apply_action("a1", "resume")
        await hub.join()
        assert len(good.messages) == 3

    @pytest.mark.asyncio
    async def test_slow_subscriber_overflow_is_pruned(self, registry) -> None:
        """Test a subscriber that falls behind its outbox bound is dropped."""
        hub = BroadcastHub(registry, max_queue_depth=2)
        hub.attach()
        slow, fast = FakeSubscriber("slow"), FakeSubscriber("fast")
        slow.release = asyncio.Event()
        await hub.on_connect(slow)
        await hub.on_connect(fast)
        await settle()

        for _ in range(3):
            registry.apply_action("a1", "pause")
            registry.apply_action("a1", "resume")
        await settle()

        assert slow not in hub.subscribers()
        assert slow.closed_with is not None
        assert slow.closed_with[0] == TRY_AGAIN_LATER

        hub.detach()

    @pytest.mark.asyncio
    async def test_detach_stops_broadcasts(self, hub, registry) -> None:
        sub = FakeSubscriber("s1")
        await hub.on_connect(sub)

        hub.detach()
        registry.apply_action("a1", "pause")
        await hub.join()

        assert len(sub.messages) == 1


class TestDirectSendAndClose:
    """Test per-subscriber replies and shutdown."""

    @pytest.mark.asyncio
    async def test_send_to_queues_behind_updates(self, hub, registry) -> None:
        sub = FakeSubscriber("s1")
        await hub.on_connect(sub)

        registry.apply_action("a1", "pause")
        assert hub.send_to(sub, '{"type":"action_result","success":true}')
        await hub.join()

        assert [m["type"] for m in sub.messages] == [
            "snapshot",
            "agent_update",
            "action_result",
        ]

    @pytest.mark.asyncio
    async def test_send_to_unknown_subscriber(self, hub) -> None:
        assert hub.send_to(FakeSubscriber("stranger"), "{}") is False

    @pytest.mark.asyncio
    async def test_close_closes_every_connection(self, hub) -> None:
        subs = [FakeSubscriber(f"s{i}") for i in range(2)]
        for sub in subs:
            await hub.on_connect(sub)

        await hub.close()

        assert hub.subscriber_count == 0
        assert all(sub.closed_with[0] == GOING_AWAY for sub in subs)
