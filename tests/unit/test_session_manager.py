"""Unit tests for session bookkeeping and event fan-out."""

import asyncio

import pytest

from backend.api.schemas import ReceiveMessage, UserJoined, UserLeft, UserTyping
from backend.core.session_manager import SessionManager


def drain(session):
    """Pop everything currently queued for a session."""
    events = []
    while not session.outbox.empty():
        events.append(session.outbox.get_nowait())
    return events


@pytest.fixture
def manager():
    return SessionManager()


@pytest.mark.asyncio
class TestMembership:

    async def test_join_announced_to_everyone(self, manager):
        alice = await manager.join("c1", "Alice")
        bob = await manager.join("c2", "Bob")

        assert drain(alice) == [
            UserJoined(display_name="Alice", connection_id="c1"),
            UserJoined(display_name="Bob", connection_id="c2"),
        ]
        assert drain(bob) == [UserJoined(display_name="Bob", connection_id="c2")]
        assert len(manager) == 2
        assert "c1" in manager

    async def test_join_then_leave_restores_empty_set(self, manager):
        await manager.join("c1", "Alice")
        assert await manager.leave("c1") is True
        assert len(manager) == 0
        assert manager.active_ids() == []

    async def test_leave_is_idempotent(self, manager):
        await manager.join("c1", "Alice")
        bob = await manager.join("c2", "Bob")
        drain(bob)

        assert await manager.leave("c1") is True
        assert await manager.leave("c1") is False
        assert drain(bob) == [UserLeft(connection_id="c1")]

    async def test_leave_unknown_is_silent(self, manager):
        bob = await manager.join("c2", "Bob")
        drain(bob)
        assert await manager.leave("never-joined") is False
        assert drain(bob) == []

    async def test_rejoin_renames(self, manager):
        first = await manager.join("c1", "Alice")
        second = await manager.join("c1", "Alicia")
        assert first is second
        assert manager.get("c1").display_name == "Alicia"
        assert len(manager) == 1

    async def test_supplied_outbox_used(self, manager):
        outbox = asyncio.Queue()
        session = await manager.join("c1", "Alice", outbox=outbox)
        assert session.outbox is outbox
        assert outbox.qsize() == 1


@pytest.mark.asyncio
class TestFanOut:

    async def test_typing_not_echoed_to_originator(self, manager):
        alice = await manager.join("c1", "Alice")
        bob = await manager.join("c2", "Bob")
        drain(alice), drain(bob)

        await manager.set_typing("c1", True)

        assert drain(alice) == []
        assert drain(bob) == [UserTyping(connection_id="c1", is_typing=True)]
        assert manager.get("c1").is_typing is True

    async def test_typing_from_unknown_connection_ignored(self, manager):
        alice = await manager.join("c1", "Alice")
        drain(alice)
        await manager.set_typing("ghost", True)
        assert drain(alice) == []

    async def test_broadcast_order_preserved(self, manager):
        alice = await manager.join("c1", "Alice")
        bob = await manager.join("c2", "Bob")
        drain(alice), drain(bob)

        sent = [ReceiveMessage(user="Alice", content=str(i), type="user") for i in range(10)]
        for event in sent:
            assert await manager.broadcast(event) == 2

        assert drain(alice) == sent
        assert drain(bob) == sent

    async def test_late_joiner_misses_earlier_broadcast(self, manager):
        await manager.join("c1", "Alice")
        await manager.broadcast(ReceiveMessage(user="Alice", content="early", type="user"))

        bob = await manager.join("c2", "Bob")
        assert drain(bob) == [UserJoined(display_name="Bob", connection_id="c2")]

    async def test_broadcast_to_empty_set(self, manager):
        assert await manager.broadcast(ReceiveMessage(user="AI", content="x", type="bot")) == 0

    async def test_send_to_single_session(self, manager):
        alice = await manager.join("c1", "Alice")
        bob = await manager.join("c2", "Bob")
        drain(alice), drain(bob)

        event = ReceiveMessage(user="System", content="only you", type="system")
        assert await manager.send_to("c1", event) is True
        assert drain(alice) == [event]
        assert drain(bob) == []

    async def test_send_to_departed_session(self, manager):
        await manager.join("c1", "Alice")
        await manager.leave("c1")
        event = ReceiveMessage(user="AI", content="late", type="bot")
        assert await manager.send_to("c1", event) is False


@pytest.mark.asyncio
class TestConcurrency:

    async def test_interleaved_join_leave_broadcast(self, manager):
        observer = await manager.join("observer", "Observer")
        sessions = {}

        async def client(index):
            cid = f"c{index}"
            sessions[cid] = await manager.join(cid, f"User{index}")
            await asyncio.sleep(0)
            if index % 2 == 0:
                await manager.leave(cid)

        async def talker():
            for n in range(30):
                await manager.broadcast(ReceiveMessage(user="Observer", content=str(n), type="user"))
                await asyncio.sleep(0)

        await asyncio.gather(talker(), *(client(i) for i in range(20)))

        assert sorted(manager.active_ids()) == sorted(["observer"] + [f"c{i}" for i in range(1, 20, 2)])

        seen = [int(e.content) for e in drain(observer) if isinstance(e, ReceiveMessage)]
        assert seen == list(range(30))

        for cid, session in sessions.items():
            received = [int(e.content) for e in drain(session) if isinstance(e, ReceiveMessage)]
            assert received == sorted(received), cid
            if received:
                assert received == list(range(received[0], received[-1] + 1)), cid
