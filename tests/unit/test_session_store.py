"""
Unit tests for the session store.

Tests snapshot isolation, persistence across restarts and listing.
"""

import json

import pytest

from agentd.models.event import Event
from agentd.models.session import SessionStatus
from agentd.models.turn import MessageRole, Turn
from agentd.services.session_store import SessionStore


@pytest.fixture
def storage_dir(tmp_path):
    return str(tmp_path / "sessions")


def _event(text: str, conversation_id: str = "conv-1") -> Event:
    return Event(channel="cli", conversation_id=conversation_id, sender="alice", text=text)


class TestSessionStore:
    """Test SessionStore behaviour."""

    @pytest.mark.asyncio
    async def test_get_or_create_returns_same_live_copy(self):
        """The runtime keeps working on one object per conversation."""
        store = SessionStore()

        first = await store.get_or_create("conv-1", "cli")
        second = await store.get_or_create("conv-1")

        assert first is second
        assert first.channel == "cli"

    @pytest.mark.asyncio
    async def test_readers_only_see_saved_snapshots(self):
        """Unsaved changes to the live copy are invisible to readers."""
        store = SessionStore()
        session = await store.get_or_create("conv-1", "cli")

        session.append_turn(Turn(role=MessageRole.USER, content="draft"))
        assert (await store.get("conv-1")).history == []
        assert store.peek("conv-1").history == []

        await store.save(session)
        assert len((await store.get("conv-1")).history) == 1

    @pytest.mark.asyncio
    async def test_get_returns_private_copy(self):
        store = SessionStore()
        session = await store.get_or_create("conv-1")
        await store.save(session)

        copy = await store.get("conv-1")
        copy.append_turn(Turn(role=MessageRole.USER, content="mine"))

        assert store.peek("conv-1").history == []
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_persistence_round_trip(self, storage_dir):
        """Saved sessions, including processed event ids, survive a restart."""
        store = SessionStore(storage_path=storage_dir)
        await store.initialize()

        session = await store.get_or_create("conv-1", "cli")
        event = _event("remember me")
        session.transition_to(SessionStatus.RUNNING)
        session.start_turn(event, store.processed_event_window)
        assert await store.save(session)

        reloaded = SessionStore(storage_path=storage_dir)
        await reloaded.initialize()
        restored = await reloaded.get("conv-1")

        assert restored is not None
        assert restored.status == SessionStatus.RUNNING
        assert restored.history[0].content == "remember me"
        assert restored.has_processed(event.event_id)
        assert restored.current_event.event_id == event.event_id

    @pytest.mark.asyncio
    async def test_file_layout(self, storage_dir, tmp_path):
        """Conversation ids are escaped into safe file names."""
        store = SessionStore(storage_path=storage_dir)
        await store.initialize()

        session = await store.get_or_create("matrix/!room:server")
        await store.save(session)

        files = list((tmp_path / "sessions").glob("*.json"))
        assert len(files) == 1
        assert "/" not in files[0].name

        data = json.loads(files[0].read_text())
        assert data["version"] == "1.0"
        assert data["session"]["conversation_id"] == "matrix/!room:server"

    @pytest.mark.asyncio
    async def test_corrupt_files_are_skipped(self, storage_dir, tmp_path):
        store = SessionStore(storage_path=storage_dir)
        await store.initialize()
        (tmp_path / "sessions" / "broken.json").write_text("{not json")

        reloaded = SessionStore(storage_path=storage_dir)
        await reloaded.initialize()

        assert reloaded.get_statistics()["total_sessions"] == 0

    @pytest.mark.asyncio
    async def test_list_active_and_sessions(self):
        store = SessionStore()
        idle = await store.get_or_create("idle")
        running = await store.get_or_create("running")
        running.transition_to(SessionStatus.RUNNING)
        await store.save(idle)
        await store.save(running)

        active = await store.list_active()
        assert [s.conversation_id for s in active] == ["running"]

        idle_summaries = await store.list_sessions(status=SessionStatus.IDLE)
        assert [s["conversation_id"] for s in idle_summaries] == ["idle"]
        assert len(await store.list_sessions()) == 2

    @pytest.mark.asyncio
    async def test_delete(self, storage_dir, tmp_path):
        store = SessionStore(storage_path=storage_dir)
        await store.initialize()
        session = await store.get_or_create("conv-1")
        await store.save(session)

        assert await store.delete("conv-1")
        assert store.peek("conv-1") is None
        assert list((tmp_path / "sessions").glob("*.json")) == []
        assert not await store.delete("conv-1")

    @pytest.mark.asyncio
    async def test_statistics(self):
        store = SessionStore()
        session = await store.get_or_create("conv-1")
        session.transition_to(SessionStatus.RUNNING)
        session.transition_to(SessionStatus.AWAITING_APPROVAL)
        await store.save(session)

        stats = store.get_statistics()

        assert stats["total_sessions"] == 1
        assert stats["active_sessions"] == 1
        assert stats["sessions_by_status"]["awaiting_approval"] == 1
        assert stats["persistent"] is False
